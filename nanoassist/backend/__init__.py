"""
Backend Collaborators

Interfaces to the hosted record store, auth service and change feed, with
their concrete implementations.
"""
from .base import (
    AuthClient,
    AuthEvent,
    AuthUser,
    ChangeEvent,
    ChangeFeed,
    ChangeType,
    RecordStore,
    Session,
    Subscription,
)
from .records import CallRecord, MetricSnapshot, ProfileRow

__all__ = [
    "AuthClient",
    "AuthEvent",
    "AuthUser",
    "ChangeEvent",
    "ChangeFeed",
    "ChangeType",
    "RecordStore",
    "Session",
    "Subscription",
    "CallRecord",
    "MetricSnapshot",
    "ProfileRow",
]
