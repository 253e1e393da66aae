"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 6 riders and 4 drivers (ids usable as ``X-User-Id``)
  - 4 sample rides driven through the orchestrator: one matching, one with
    the driver waiting at pickup, one in progress, one completed
"""

import asyncio
from datetime import timedelta

from sqlalchemy import text

from ride_lifecycle.domain.entities import Actor, Location, utcnow
from ride_lifecycle.domain.enums import RideAction, Role, UserRole
from ride_lifecycle.domain.state_machine import Command
from ride_lifecycle.infrastructure.database import async_session_factory, engine
from ride_lifecycle.infrastructure.models import UserModel
from ride_lifecycle.services.orchestrator import RideOrchestrator

RIDERS = [
    {"id": "rider-aarav", "name": "Aarav Sharma", "rating": 4.8, "emergency_contact": "+91 98200 00001"},
    {"id": "rider-priya", "name": "Priya Patel", "rating": 4.9, "emergency_contact": "+91 98200 00002"},
    {"id": "rider-rohan", "name": "Rohan Mehta", "rating": 4.5, "emergency_contact": None},
    {"id": "rider-sneha", "name": "Sneha Gupta", "rating": 4.7, "emergency_contact": "+91 98200 00004"},
    {"id": "rider-vikram", "name": "Vikram Singh", "rating": 4.6, "emergency_contact": None},
    {"id": "rider-ananya", "name": "Ananya Reddy", "rating": 4.9, "emergency_contact": "+91 98200 00006"},
]

DRIVERS = [
    {"id": "driver-karan", "name": "Karan Joshi", "rating": 4.3, "vehicle": "White Swift Dzire MH02 AB 1234"},
    {"id": "driver-meera", "name": "Meera Nair", "rating": 4.8, "vehicle": "Grey Innova MH04 CD 5678"},
    {"id": "driver-arjun", "name": "Arjun Kumar", "rating": 4.4, "vehicle": "Blue WagonR MH01 EF 9012"},
    {"id": "driver-diya", "name": "Diya Iyer", "rating": 4.7, "vehicle": "Black Ertiga MH03 GH 3456"},
]

AIRPORT = Location("Mumbai Airport T2", 19.0896, 72.8656)
ANDHERI = Location("Andheri West", 19.1364, 72.8296)
POWAI = Location("Powai Lake", 19.1176, 72.9060)
BANDRA = Location("Bandra Bandstand", 19.0544, 72.8181)
DADAR = Location("Dadar TT", 19.0178, 72.8478)

# rider, driver, pickup, dropoff, driver actions applied after acceptance
RIDES = [
    ("rider-aarav", None, AIRPORT, ANDHERI, []),
    (
        "rider-priya",
        "driver-karan",
        AIRPORT,
        POWAI,
        [RideAction.START_PICKUP, RideAction.MARK_ARRIVED, RideAction.START_WAITING],
    ),
    (
        "rider-rohan",
        "driver-meera",
        AIRPORT,
        BANDRA,
        [RideAction.START_PICKUP, RideAction.MARK_ARRIVED, RideAction.START_TRIP],
    ),
    (
        "rider-sneha",
        "driver-arjun",
        AIRPORT,
        DADAR,
        [
            RideAction.START_PICKUP,
            RideAction.MARK_ARRIVED,
            RideAction.START_TRIP,
            RideAction.COMPLETE_TRIP,
        ],
    ),
]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM users"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Users ─────────────────────────────────────────────────────
        for r in RIDERS:
            session.add(UserModel(role=UserRole.RIDER, **r))
        for d in DRIVERS:
            session.add(UserModel(role=UserRole.DRIVER, **d))
        await session.commit()
        print(f"  Created {len(RIDERS)} riders and {len(DRIVERS)} drivers")

    # ── Rides (through the orchestrator so the outbox is populated) ───
    start = utcnow() - timedelta(minutes=30)
    tick = {"now": start}

    def clock():
        tick["now"] += timedelta(minutes=1)
        return tick["now"]

    orchestrator = RideOrchestrator(async_session_factory, clock=clock)
    for rider_id, driver_id, pickup, dropoff, actions in RIDES:
        ride = await orchestrator.request_ride(
            Actor(Role.RIDER, rider_id), pickup=pickup, dropoff=dropoff
        )
        if driver_id is None:
            continue
        driver = Actor(Role.DRIVER, driver_id)
        await orchestrator.execute(ride.id, Command(RideAction.ACCEPT, driver))
        for action in actions:
            await orchestrator.execute(ride.id, Command(action, driver))
    print(f"  Created {len(RIDES)} rides")

    print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
