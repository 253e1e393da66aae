"""
Waiting-Compensation Engine
===========================

Phases after the driver arrives (durations are configuration)::

    |-- grace --|------ paid ------|---- bonus ----|  expired ...
    0        grace          grace+paid     grace+paid+bonus

``elapsed`` is measured from ``waiting_started_at`` when the wait timer was
started, otherwise from ``arrived_at``.

Everything here is a pure function of checkpoints, ``now`` and the
configured durations.  Nothing is persisted: the phase is recomputed on
every read, so a client tick and a server tick always agree with the
stored checkpoints.  ``EXPIRED`` is advisory and never cancels the ride.

Complexity: O(1) per call.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from .entities import Ride
from .enums import RideStatus, WaitingPhase

_ZERO = timedelta(0)


@dataclass(frozen=True)
class WaitingConfig:
    grace_period: timedelta = timedelta(minutes=2)
    paid_wait: timedelta = timedelta(minutes=5)
    bonus_wait: timedelta = timedelta(minutes=4)

    @classmethod
    def from_settings(cls, settings) -> "WaitingConfig":
        return cls(
            grace_period=timedelta(seconds=settings.waiting_grace_seconds),
            paid_wait=timedelta(seconds=settings.waiting_paid_seconds),
            bonus_wait=timedelta(seconds=settings.waiting_bonus_seconds),
        )

    @property
    def total(self) -> timedelta:
        return self.grace_period + self.paid_wait + self.bonus_wait

    def boundaries(self) -> list[tuple[WaitingPhase, timedelta]]:
        """Upper bound (exclusive) of each bounded phase, in order."""
        return [
            (WaitingPhase.GRACE, self.grace_period),
            (WaitingPhase.PAID, self.grace_period + self.paid_wait),
            (WaitingPhase.BONUS, self.total),
        ]


@dataclass(frozen=True)
class WaitingSnapshot:
    phase: WaitingPhase
    started_at: datetime
    elapsed: timedelta
    remaining_in_phase: timedelta

    @property
    def expired(self) -> bool:
        return self.phase is WaitingPhase.EXPIRED


@dataclass(frozen=True)
class WaitingBreakdown:
    free: timedelta
    paid: timedelta
    bonus: timedelta

    @property
    def total(self) -> timedelta:
        return self.free + self.paid + self.bonus


def compute_waiting(
    arrived_at: datetime,
    waiting_started_at: Optional[datetime],
    now: datetime,
    config: WaitingConfig,
) -> WaitingSnapshot:
    """Derive the current waiting phase and time left in it."""
    started_at = waiting_started_at or arrived_at
    # clock skew between writer and reader must not produce negative waits
    elapsed = max(now - started_at, _ZERO)

    for phase, upper in config.boundaries():
        if elapsed < upper:
            return WaitingSnapshot(
                phase=phase,
                started_at=started_at,
                elapsed=elapsed,
                remaining_in_phase=max(upper - elapsed, _ZERO),
            )
    return WaitingSnapshot(
        phase=WaitingPhase.EXPIRED,
        started_at=started_at,
        elapsed=elapsed,
        remaining_in_phase=_ZERO,
    )


def waiting_for_ride(
    ride: Ride, now: datetime, config: WaitingConfig
) -> Optional[WaitingSnapshot]:
    """Waiting snapshot while the driver is at the pickup, else ``None``."""
    if ride.status not in (RideStatus.ARRIVED, RideStatus.WAITING):
        return None
    if ride.checkpoints.arrived_at is None:
        return None
    return compute_waiting(
        ride.checkpoints.arrived_at,
        ride.checkpoints.waiting_started_at,
        now,
        config,
    )


def waiting_breakdown(
    started_at: Optional[datetime],
    ended_at: datetime,
    config: WaitingConfig,
) -> WaitingBreakdown:
    """Split a finished (or ongoing) wait into free / paid / bonus time."""
    if started_at is None:
        return WaitingBreakdown(_ZERO, _ZERO, _ZERO)

    total = max(ended_at - started_at, _ZERO)
    free = min(total, config.grace_period)
    after_free = max(total - config.grace_period, _ZERO)
    paid = min(after_free, config.paid_wait)
    after_paid = max(after_free - config.paid_wait, _ZERO)
    bonus = min(after_paid, config.bonus_wait)
    return WaitingBreakdown(free=free, paid=paid, bonus=bonus)


def ride_waiting_breakdown(ride: Ride, config: WaitingConfig) -> WaitingBreakdown:
    """Breakdown of the pickup wait of a ride that has started its trip."""
    start = ride.checkpoints.waiting_started_at or ride.checkpoints.arrived_at
    end = ride.checkpoints.in_progress_at
    if start is None or end is None:
        return WaitingBreakdown(_ZERO, _ZERO, _ZERO)
    return waiting_breakdown(start, end, config)
