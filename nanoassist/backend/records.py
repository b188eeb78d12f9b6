"""
Record Schemas

Validators for rows read from the hosted store. Rows arrive untyped
(ORM objects, JSON payloads from change notifications), so every field is
defaulted deterministically here instead of trusted downstream.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive timestamps, convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class RemoteRecord(BaseModel):
    """Base for rows coming from the store"""
    
    model_config = ConfigDict(from_attributes=True, extra="ignore")


class ProfileRow(RemoteRecord):
    """Raw ``profiles`` row"""
    id: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    stores: Optional[str] = None
    
    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, v: Any) -> Optional[str]:
        # uuid.UUID from asyncpg
        return None if v is None else str(v)


class CallRecord(RemoteRecord):
    """One ``call_recordings`` row"""
    id: int
    user_id: str
    created_at: datetime
    duration_seconds: Optional[int] = None
    recording_url: Optional[str] = None
    phone_number: Optional[str] = None
    direction: Optional[str] = None
    store_name: Optional[str] = None
    client_personal_id: Optional[str] = None
    recording_transcript: Optional[str] = None
    status: Optional[str] = None
    
    @field_validator("user_id", mode="before")
    @classmethod
    def stringify_user_id(cls, v: Any) -> Any:
        return None if v is None else str(v)
    
    @field_validator("created_at")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return as_utc(v)


class MetricSnapshot(RemoteRecord):
    """
    One ``call_metrics`` row.
    
    Missing counters read as zero.
    """
    id: Optional[int] = None
    user_id: Optional[str] = None
    created_at: datetime
    store_name: Optional[str] = None
    total_apeluri: int = 0
    apeluri_initiate: int = 0
    apeluri_primite: int = 0
    rata_conversie: float = 0.0
    rata_conversie_drafturi: float = 0.0
    minute_consumate: float = 0.0
    total_comenzi: int = 0
    cosuri_abandonate: int = 0
    cosuri_recuperate: int = 0
    vanzari_generate: float = 0.0
    comenzi_confirmate: int = 0
    nume_admin: Optional[str] = None
    
    @field_validator("user_id", mode="before")
    @classmethod
    def stringify_user_id(cls, v: Any) -> Any:
        return None if v is None else str(v)
    
    @field_validator(
        "total_apeluri",
        "apeluri_initiate",
        "apeluri_primite",
        "rata_conversie",
        "rata_conversie_drafturi",
        "minute_consumate",
        "total_comenzi",
        "cosuri_abandonate",
        "cosuri_recuperate",
        "vanzari_generate",
        "comenzi_confirmate",
        mode="before",
    )
    @classmethod
    def zero_if_missing(cls, v: Any) -> Any:
        if v is None:
            return 0
        if isinstance(v, Decimal):
            return float(v)
        return v
    
    @field_validator("created_at")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return as_utc(v)
