"""
Database Models

Tables owned by the hosted backend and read by the dashboard:

- profiles: per-user role and store assignments
- call_recordings: one row per phone call handled by the assistant
- call_metrics: pre-aggregated counters, one row per store per day

Column names follow the remote schema as-is, including the Romanian
counter names of call_metrics.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    DateTime,
    Float,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# =============================================================================
# ENUMERATIONS
# =============================================================================

class UserRole(str, Enum):
    """Dashboard role"""
    ADMIN = "admin"
    USER = "user"


class CallDirection(str, Enum):
    """Call direction"""
    INBOUND = "inbound"
    OUTBOUND = "outbound"


# =============================================================================
# TABLES
# =============================================================================

class Profile(Base):
    """
    Profile Table
    
    Keyed by the auth user id. ``stores`` is a single comma-delimited
    string of store names.
    """
    __tablename__ = "profiles"
    
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), index=True)
    role: Mapped[str] = mapped_column(String(20), default=UserRole.USER.value, nullable=False)
    full_name: Mapped[Optional[str]] = mapped_column(String(255))
    avatar_url: Mapped[Optional[str]] = mapped_column(Text)
    stores: Mapped[Optional[str]] = mapped_column(Text)


class CallRecording(Base):
    """
    Call Recording Table
    
    One row per call, written by the voice assistant.
    """
    __tablename__ = "call_recordings"
    
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    duration_seconds: Mapped[Optional[int]] = mapped_column(Integer)
    recording_url: Mapped[Optional[str]] = mapped_column(Text)
    phone_number: Mapped[Optional[str]] = mapped_column(String(50))
    direction: Mapped[Optional[str]] = mapped_column(String(20))
    store_name: Mapped[Optional[str]] = mapped_column(String(100))
    client_personal_id: Mapped[Optional[str]] = mapped_column(String(100))
    recording_transcript: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[Optional[str]] = mapped_column(String(50))
    
    __table_args__ = (
        Index("idx_recordings_user_store_time", "user_id", "store_name", "created_at"),
    )


class CallMetric(Base):
    """
    Call Metrics Table
    
    Daily (or finer) snapshot of counters for one store.
    """
    __tablename__ = "call_metrics"
    
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    store_name: Mapped[Optional[str]] = mapped_column(String(100))
    
    total_apeluri: Mapped[Optional[int]] = mapped_column(Integer)
    apeluri_initiate: Mapped[Optional[int]] = mapped_column(Integer)
    apeluri_primite: Mapped[Optional[int]] = mapped_column(Integer)
    rata_conversie: Mapped[Optional[float]] = mapped_column(Float)
    rata_conversie_drafturi: Mapped[Optional[float]] = mapped_column(Float)
    minute_consumate: Mapped[Optional[float]] = mapped_column(Float)
    total_comenzi: Mapped[Optional[int]] = mapped_column(Integer)
    cosuri_abandonate: Mapped[Optional[int]] = mapped_column(Integer)
    cosuri_recuperate: Mapped[Optional[int]] = mapped_column(Integer)
    vanzari_generate: Mapped[Optional[float]] = mapped_column(Numeric(14, 2))
    comenzi_confirmate: Mapped[Optional[int]] = mapped_column(Integer)
    nume_admin: Mapped[Optional[str]] = mapped_column(String(255))
    
    __table_args__ = (
        Index("idx_metrics_user_store_time", "user_id", "store_name", "created_at"),
    )
