"""
SQLAlchemy ORM models.

Tables
------
* ``users``        -- riders and drivers (profile data for projections)
* ``rides``        -- one row per ride: status, checkpoints, cancellation,
                      fare, safety side-channel, optimistic ``version``
* ``ride_events``  -- transactional outbox written with every transition
* ``ride_archive`` -- terminal snapshots kept by the trip-history adapter

Indexes
-------
* **B-Tree** on ``status``, ``rider_id``, ``driver_id`` and
  ``safety_state`` for the read surface and the admin escalation list.
* ``ride_events`` is indexed on ``(dispatched_at, next_attempt_at)`` so the
  dispatcher's due-event scan stays cheap, and unique on
  ``(ride_id, command_id, type)`` so a replayed command cannot insert twice.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)

from .database import Base
from ride_lifecycle.domain.enums import (
    CancelledBy,
    RideStatus,
    Role,
    SafetyResponse,
    SafetyState,
    UserRole,
)


def _values(enum_cls):
    return [member.value for member in enum_cls]


def _enum(enum_cls, name: str) -> Enum:
    return Enum(enum_cls, name=name, values_callable=_values)


class UserModel(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    role = Column(_enum(UserRole, "user_role"), nullable=False)
    name = Column(String(120), nullable=False)
    rating = Column(Float, default=5.0)
    vehicle = Column(String(120), nullable=True)  # drivers only
    emergency_contact = Column(String(120), nullable=True)  # riders only
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class RideModel(Base):
    __tablename__ = "rides"

    id = Column(String(36), primary_key=True)
    # identities come from the session context; users only feeds profile cards
    rider_id = Column(String(64), nullable=False)
    driver_id = Column(String(64), nullable=True)
    status = Column(
        _enum(RideStatus, "ride_status"),
        default=RideStatus.REQUESTED,
        nullable=False,
    )
    passenger_count = Column(Integer, default=1, nullable=False)

    pickup_address = Column(String(255), nullable=False)
    pickup_lat = Column(Float, nullable=True)
    pickup_lng = Column(Float, nullable=True)
    dropoff_address = Column(String(255), nullable=False)
    dropoff_lat = Column(Float, nullable=True)
    dropoff_lng = Column(Float, nullable=True)
    en_route_origin_address = Column(String(255), nullable=True)
    en_route_origin_lat = Column(Float, nullable=True)
    en_route_origin_lng = Column(Float, nullable=True)

    # Checkpoints -- each written exactly once
    requested_at = Column(DateTime(timezone=True), nullable=False)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    en_route_at = Column(DateTime(timezone=True), nullable=True)
    arrived_at = Column(DateTime(timezone=True), nullable=True)
    waiting_started_at = Column(DateTime(timezone=True), nullable=True)
    in_progress_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    cancelled_by = Column(_enum(CancelledBy, "cancelled_by"), nullable=True)
    cancel_reason = Column(String(255), nullable=True)
    cancellation_fee_applies = Column(Boolean, default=False, nullable=False)
    driver_compensation_eligible = Column(Boolean, default=False, nullable=False)
    driver_moved_km = Column(Float, nullable=True)

    fare_estimate = Column(Float, nullable=True)
    fare_final = Column(Float, nullable=True)
    fare_currency = Column(String(3), nullable=True)
    fare_breakdown = Column(JSON, nullable=True)

    safety_state = Column(
        _enum(SafetyState, "safety_state"),
        default=SafetyState.IDLE,
        nullable=False,
    )
    safety_last_check_at = Column(DateTime(timezone=True), nullable=True)
    safety_response = Column(_enum(SafetyResponse, "safety_response"), nullable=True)
    safety_requested_by = Column(_enum(Role, "safety_role"), nullable=True)
    safety_responded_by = Column(_enum(Role, "safety_responder_role"), nullable=True)
    safety_source = Column(String(32), nullable=True)

    early_end = Column(Boolean, default=False, nullable=False)
    early_end_address = Column(String(255), nullable=True)
    early_end_lat = Column(Float, nullable=True)
    early_end_lng = Column(Float, nullable=True)

    idempotency_key = Column(String(64), unique=True, nullable=True)
    version = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_rides_status", "status"),
        Index("idx_rides_rider", "rider_id"),
        Index("idx_rides_driver", "driver_id"),
        Index("idx_rides_safety", "safety_state"),
    )


class RideEventModel(Base):
    __tablename__ = "ride_events"

    id = Column(String(36), primary_key=True)
    ride_id = Column(String(36), ForeignKey("rides.id"), nullable=False)
    type = Column(String(64), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    command_id = Column(String(64), nullable=True)
    action = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    attempts = Column(Integer, default=0, nullable=False)
    next_attempt_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)
    dispatched_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("ride_id", "command_id", "type", name="uq_ride_events_command"),
        Index("idx_ride_events_due", "dispatched_at", "next_attempt_at"),
        Index("idx_ride_events_ride", "ride_id"),
    )


class RideArchiveModel(Base):
    __tablename__ = "ride_archive"

    ride_id = Column(String(36), primary_key=True)
    status = Column(String(20), nullable=False)
    snapshot = Column(JSON, nullable=False)
    event_id = Column(String(36), nullable=False)
    archived_at = Column(DateTime(timezone=True), server_default=func.now())
