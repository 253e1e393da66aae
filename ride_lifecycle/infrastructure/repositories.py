"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  ``RideRepository`` is the single place where
``Ride`` entities are mapped to and from ``RideModel`` rows.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import RideArchiveModel, RideEventModel, RideModel, UserModel
from ride_lifecycle.domain.entities import (
    Cancellation,
    Checkpoints,
    Fare,
    Location,
    Ride,
    RideEvent,
    SafetyCheck,
)
from ride_lifecycle.domain.enums import TERMINAL_STATUSES, SafetyState
from ride_lifecycle.domain.projections import ParticipantCard


class StaleRideError(Exception):
    """The row changed since it was read (optimistic version mismatch)."""


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone=True columns
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _location(address, lat, lng) -> Optional[Location]:
    if address is None:
        return None
    return Location(address=address, latitude=lat, longitude=lng)


def ride_from_row(row: RideModel) -> Ride:
    cancellation = None
    if row.cancelled_by is not None:
        cancellation = Cancellation(
            by=row.cancelled_by,
            reason=row.cancel_reason,
            at=_utc(row.cancelled_at),
            fee_applies=bool(row.cancellation_fee_applies),
            driver_compensation_eligible=bool(row.driver_compensation_eligible),
            driver_moved_km=row.driver_moved_km,
        )
    return Ride(
        id=row.id,
        rider_id=row.rider_id,
        driver_id=row.driver_id,
        status=row.status,
        passenger_count=row.passenger_count,
        pickup=_location(row.pickup_address, row.pickup_lat, row.pickup_lng),
        dropoff=_location(row.dropoff_address, row.dropoff_lat, row.dropoff_lng),
        checkpoints=Checkpoints(
            requested_at=_utc(row.requested_at),
            accepted_at=_utc(row.accepted_at),
            en_route_at=_utc(row.en_route_at),
            arrived_at=_utc(row.arrived_at),
            waiting_started_at=_utc(row.waiting_started_at),
            in_progress_at=_utc(row.in_progress_at),
            completed_at=_utc(row.completed_at),
            cancelled_at=_utc(row.cancelled_at),
        ),
        cancellation=cancellation,
        fare=Fare(
            estimate=row.fare_estimate,
            final_amount=row.fare_final,
            currency=row.fare_currency,
            breakdown=dict(row.fare_breakdown or {}),
        ),
        safety=SafetyCheck(
            state=row.safety_state,
            last_check_at=_utc(row.safety_last_check_at),
            response=row.safety_response,
            requested_by=row.safety_requested_by,
            responded_by=row.safety_responded_by,
            source=row.safety_source,
        ),
        early_end=bool(row.early_end),
        early_end_location=_location(
            row.early_end_address, row.early_end_lat, row.early_end_lng
        ),
        en_route_origin=_location(
            row.en_route_origin_address,
            row.en_route_origin_lat,
            row.en_route_origin_lng,
        ),
        idempotency_key=row.idempotency_key,
        version=row.version,
    )


def ride_columns(ride: Ride) -> dict[str, Any]:
    """Mutable columns of a ride (everything except id / identity keys)."""
    cp = ride.checkpoints
    cancel = ride.cancellation
    early = ride.early_end_location
    origin = ride.en_route_origin
    return {
        "rider_id": ride.rider_id,
        "driver_id": ride.driver_id,
        "status": ride.status,
        "passenger_count": ride.passenger_count,
        "pickup_address": ride.pickup.address,
        "pickup_lat": ride.pickup.latitude,
        "pickup_lng": ride.pickup.longitude,
        "dropoff_address": ride.dropoff.address,
        "dropoff_lat": ride.dropoff.latitude,
        "dropoff_lng": ride.dropoff.longitude,
        "en_route_origin_address": origin.address if origin else None,
        "en_route_origin_lat": origin.latitude if origin else None,
        "en_route_origin_lng": origin.longitude if origin else None,
        "requested_at": cp.requested_at,
        "accepted_at": cp.accepted_at,
        "en_route_at": cp.en_route_at,
        "arrived_at": cp.arrived_at,
        "waiting_started_at": cp.waiting_started_at,
        "in_progress_at": cp.in_progress_at,
        "completed_at": cp.completed_at,
        "cancelled_at": cp.cancelled_at,
        "cancelled_by": cancel.by if cancel else None,
        "cancel_reason": cancel.reason if cancel else None,
        "cancellation_fee_applies": cancel.fee_applies if cancel else False,
        "driver_compensation_eligible": (
            cancel.driver_compensation_eligible if cancel else False
        ),
        "driver_moved_km": cancel.driver_moved_km if cancel else None,
        "fare_estimate": ride.fare.estimate,
        "fare_final": ride.fare.final_amount,
        "fare_currency": ride.fare.currency,
        "fare_breakdown": ride.fare.breakdown or None,
        "safety_state": ride.safety.state,
        "safety_last_check_at": ride.safety.last_check_at,
        "safety_response": ride.safety.response,
        "safety_requested_by": ride.safety.requested_by,
        "safety_responded_by": ride.safety.responded_by,
        "safety_source": ride.safety.source,
        "early_end": ride.early_end,
        "early_end_address": early.address if early else None,
        "early_end_lat": early.latitude if early else None,
        "early_end_lng": early.longitude if early else None,
    }


class RideRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, ride: Ride) -> Ride:
        row = RideModel(
            id=ride.id,
            idempotency_key=ride.idempotency_key,
            version=ride.version,
            **ride_columns(ride),
        )
        self.session.add(row)
        await self.session.flush()
        return ride

    async def get_by_id(self, ride_id: str) -> Optional[Ride]:
        row = await self.session.get(RideModel, ride_id)
        return ride_from_row(row) if row else None

    async def get_by_idempotency_key(self, key: str) -> Optional[Ride]:
        result = await self.session.execute(
            select(RideModel).where(RideModel.idempotency_key == key)
        )
        row = result.scalar_one_or_none()
        return ride_from_row(row) if row else None

    async def save(self, ride: Ride, expected_version: int) -> Ride:
        """Write *ride* only if nobody else wrote it since it was read."""
        result = await self.session.execute(
            update(RideModel)
            .where(RideModel.id == ride.id, RideModel.version == expected_version)
            .values(version=expected_version + 1, **ride_columns(ride))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StaleRideError(f"Ride {ride.id} changed concurrently")
        ride.version = expected_version + 1
        return ride

    async def get_active_escalations(self) -> list[Ride]:
        result = await self.session.execute(
            select(RideModel)
            .where(
                RideModel.safety_state == SafetyState.ESCALATED,
                RideModel.status.notin_(list(TERMINAL_STATUSES)),
            )
            .order_by(RideModel.safety_last_check_at)
        )
        return [ride_from_row(r) for r in result.scalars().all()]


class RideEventRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    def add_all(self, events: list[RideEvent]) -> None:
        self.session.add_all(
            [
                RideEventModel(
                    id=e.id,
                    ride_id=e.ride_id,
                    type=e.type.value,
                    payload=e.payload,
                    command_id=e.command_id,
                    action=e.action,
                    created_at=e.occurred_at,
                    attempts=0,
                    next_attempt_at=e.occurred_at,
                )
                for e in events
            ]
        )

    async def get_command_action(self, ride_id: str, command_id: str) -> Optional[str]:
        """Action already recorded under *command_id* on this ride, if any."""
        result = await self.session.execute(
            select(RideEventModel.action)
            .where(
                RideEventModel.ride_id == ride_id,
                RideEventModel.command_id == command_id,
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_by_id(self, event_id: str) -> Optional[RideEventModel]:
        return await self.session.get(RideEventModel, event_id)

    async def get_due(self, now: datetime, limit: int = 100) -> list[RideEventModel]:
        result = await self.session.execute(
            select(RideEventModel)
            .where(
                RideEventModel.dispatched_at.is_(None),
                RideEventModel.next_attempt_at <= now,
            )
            .order_by(RideEventModel.created_at, RideEventModel.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_for_ride(self, ride_id: str) -> list[RideEventModel]:
        result = await self.session.execute(
            select(RideEventModel)
            .where(RideEventModel.ride_id == ride_id)
            .order_by(RideEventModel.created_at, RideEventModel.id)
        )
        return list(result.scalars().all())

    async def count_pending(self) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(RideEventModel)
            .where(RideEventModel.dispatched_at.is_(None))
        )
        return result.scalar() or 0

    async def oldest_pending_at(self) -> Optional[datetime]:
        result = await self.session.execute(
            select(func.min(RideEventModel.created_at)).where(
                RideEventModel.dispatched_at.is_(None)
            )
        )
        return _utc(result.scalar())


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: str) -> Optional[UserModel]:
        return await self.session.get(UserModel, user_id)

    async def get_card(self, user_id: Optional[str]) -> Optional[ParticipantCard]:
        if user_id is None:
            return None
        user = await self.get_by_id(user_id)
        if user is None:
            return None
        return ParticipantCard(
            user_id=user.id,
            name=user.name,
            rating=user.rating,
            vehicle=user.vehicle,
        )

    async def get_emergency_contact(self, user_id: Optional[str]) -> Optional[str]:
        if user_id is None:
            return None
        user = await self.get_by_id(user_id)
        return user.emergency_contact if user else None


class RideArchiveRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, ride_id: str) -> Optional[RideArchiveModel]:
        return await self.session.get(RideArchiveModel, ride_id)

    async def add(
        self, ride_id: str, status: str, snapshot: dict, event_id: str
    ) -> RideArchiveModel:
        row = RideArchiveModel(
            ride_id=ride_id, status=status, snapshot=snapshot, event_id=event_id
        )
        self.session.add(row)
        await self.session.flush()
        return row
