"""
SQLAlchemy ORM models for trips, availability and generated periods.

trips / trip_members are owned by the trip & membership side of the
application; this service only reads them (plus the availability_submitted
flag).  availabilities is the per-member ledger, available_periods is the
generated result set, notifications is the store the notifier writes into.

Dates are stored as real DATE columns; every trip window is inclusive on
both ends.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    JSON, Boolean, Column, Date, DateTime, Enum, Float, ForeignKey, Integer, String, Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


def _values(enum_cls):
    # persist "free" rather than "FREE"
    return [member.value for member in enum_cls]


class AvailabilityStatus(str, enum.Enum):
    FREE = "free"
    FLEXIBLE = "flexible"
    BUSY = "busy"


class MemberStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class Trip(Base):
    __tablename__ = "trips"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    creator_id = Column(String(36), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    members = relationship("TripMember", back_populates="trip", cascade="all, delete-orphan")


class TripMember(Base):
    __tablename__ = "trip_members"
    __table_args__ = (UniqueConstraint("trip_id", "user_id", name="uq_trip_members_trip_user"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    trip_id = Column(String(36), ForeignKey("trips.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), nullable=False, index=True)
    role = Column(String(20), nullable=False, default="member")  # "creator" | "member"
    status = Column(
        Enum(MemberStatus, name="member_status", values_callable=_values),
        nullable=False,
        default=MemberStatus.PENDING,
    )
    availability_submitted = Column(Boolean, nullable=False, default=False)

    trip = relationship("Trip", back_populates="members")


class Availability(Base):
    """One row per member per day they reported.  Replaced wholesale on resubmission."""
    __tablename__ = "availabilities"
    __table_args__ = (UniqueConstraint("trip_id", "user_id", "date", name="uq_availabilities_trip_user_date"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    trip_id = Column(String(36), ForeignKey("trips.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    status = Column(
        Enum(AvailabilityStatus, name="availability_status", values_callable=_values),
        nullable=False,
        default=AvailabilityStatus.FREE,
    )
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class AvailablePeriod(Base):
    """A ranked candidate window.  The whole set for a trip is replaced per generation run."""
    __tablename__ = "available_periods"
    __table_args__ = (UniqueConstraint("trip_id", "period_number", name="uq_available_periods_trip_number"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    trip_id = Column(String(36), ForeignKey("trips.id", ondelete="CASCADE"), nullable=False, index=True)
    period_number = Column(Integer, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    duration_days = Column(Integer, nullable=False)
    free_count = Column(Integer, nullable=False, default=0)      # bottleneck (min free across the span)
    flexible_count = Column(Integer, nullable=False, default=0)  # not counted yet, always 0
    total_members = Column(Integer, nullable=False)
    availability_percentage = Column(Float, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), nullable=False, index=True)
    type = Column(String(50), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=True)
    data = Column(JSON, nullable=True)
    action_url = Column(Text, nullable=True)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
