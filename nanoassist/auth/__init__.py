"""
Session and profile resolution
"""
from .profiles import Profile, degraded_profile, parse_stores, profile_from_row
from .resolver import AuthSnapshot, AuthState, SessionResolver

__all__ = [
    "Profile",
    "degraded_profile",
    "parse_stores",
    "profile_from_row",
    "AuthSnapshot",
    "AuthState",
    "SessionResolver",
]
