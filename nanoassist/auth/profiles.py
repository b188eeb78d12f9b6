"""
User profiles.

Derives the dashboard profile from a raw ``profiles`` row. ``stores`` is
stored remotely as one comma-delimited string.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from nanoassist.backend.records import ProfileRow
from nanoassist.database.models import UserRole


def parse_stores(stores: Optional[str]) -> List[str]:
    """
    Split a delimited store list.
    
    Segments are trimmed, blanks dropped, order kept:
    ``parse_stores("a, b ,,c") == ["a", "b", "c"]``.
    """
    if not stores:
        return []
    return [segment.strip() for segment in stores.split(",") if segment.strip()]


class Profile(BaseModel):
    """Authorization context of the signed-in user"""
    id: str
    email: Optional[str] = None
    role: Literal["admin", "user"] = "user"
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    stores: List[str] = Field(default_factory=list)
    
    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value
    
    def can_view_store(self, store_name: str) -> bool:
        return self.is_admin or store_name in self.stores


def degraded_profile(user_id: str, email: Optional[str] = None) -> Profile:
    """Minimal profile used when no row exists or it cannot be read."""
    return Profile(id=user_id, email=email, role="user", stores=[])


def profile_from_row(row: ProfileRow, user_id: str, email: Optional[str] = None) -> Profile:
    """Build the profile of ``user_id`` from its row. Unknown roles read as ``user``."""
    role = row.role if row.role in (UserRole.ADMIN.value, UserRole.USER.value) else UserRole.USER.value
    return Profile(
        id=user_id,
        email=row.email or email,
        role=role,
        full_name=row.full_name,
        avatar_url=row.avatar_url,
        stores=parse_stores(row.stores),
    )
