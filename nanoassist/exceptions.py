"""
Error taxonomy.

Only AuthError is meant to reach the user; everything downstream of a
successful sign-in degrades to defaults or empty results.
"""

from typing import Optional


class NanoassistError(Exception):
    """Base class for all dashboard errors"""
    pass


class AuthError(NanoassistError):
    """Credential or session failure, surfaced to the caller."""
    
    def __init__(self, message: str, user_message: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.user_message = user_message or message
        self.status_code = status_code


class ProfileFetchError(NanoassistError):
    """Profile row could not be read. Triggers the fallback profile."""
    pass


class QueryError(NanoassistError):
    """A record store query failed."""
    
    def __init__(self, message: str, table: Optional[str] = None):
        super().__init__(message)
        self.table = table


class SubscriptionError(NanoassistError):
    """A change notification subscription could not be opened."""
    pass
