"""Tests for the role-scoped gateways over the orchestrator."""

from __future__ import annotations

from datetime import timedelta

import pytest

from ride_lifecycle.domain.entities import Location
from ride_lifecycle.domain.enums import RideAction, RideStatus, SafetyResponse, SafetyState
from ride_lifecycle.domain.errors import Unauthorized
from ride_lifecycle.domain.projections import DriverView, RiderView
from ride_lifecycle.services.gateways import DriverGateway, RiderGateway, SystemGateway
from tests.conftest import AIRPORT, ANDHERI, DRIVER, RIDER, SYSTEM


@pytest.fixture
def rider_gw(orchestrator):
    return RiderGateway(orchestrator)


@pytest.fixture
def driver_gw(orchestrator):
    return DriverGateway(orchestrator)


@pytest.fixture
def system_gw(orchestrator):
    return SystemGateway(orchestrator)


async def _requested(rider_gw):
    return await rider_gw.request(RIDER, pickup=AIRPORT, dropoff=ANDHERI)


class TestRiderGateway:
    @pytest.mark.asyncio
    async def test_request_returns_rider_view(self, rider_gw):
        view = await _requested(rider_gw)
        assert isinstance(view, RiderView)
        assert view.status == RideStatus.MATCHING
        assert RideAction.CANCEL in view.allowed_actions

    @pytest.mark.asyncio
    async def test_driver_cannot_use_rider_gateway(self, rider_gw):
        with pytest.raises(Unauthorized):
            await rider_gw.request(DRIVER, pickup=AIRPORT, dropoff=ANDHERI)

    def test_rider_gateway_has_no_driving_actions(self):
        gateway = RiderGateway(orchestrator=None)
        assert not hasattr(gateway, "accept")
        assert not hasattr(gateway, "complete_trip")


class TestDriverGateway:
    @pytest.mark.asyncio
    async def test_drive_to_completion(self, rider_gw, driver_gw, clock):
        ride_id = (await _requested(rider_gw)).ride_id
        view = await driver_gw.accept(DRIVER, ride_id)
        assert isinstance(view, DriverView)
        assert view.rider.name == "Priya Patel"

        await driver_gw.start_pickup(DRIVER, ride_id)
        view = await driver_gw.mark_arrived(DRIVER, ride_id)
        assert view.waiting is not None

        clock.advance(minutes=1)
        await driver_gw.start_waiting(DRIVER, ride_id)
        clock.advance(minutes=4)
        rider_view = await rider_gw.view(RIDER, ride_id)
        driver_view = await driver_gw.view(DRIVER, ride_id)
        assert rider_view.waiting == driver_view.waiting
        assert rider_view.waiting.elapsed == timedelta(minutes=4)

        await driver_gw.start_trip(DRIVER, ride_id)
        view = await driver_gw.complete_trip(DRIVER, ride_id)
        assert view.status == RideStatus.COMPLETED
        assert view.allowed_actions == []

    @pytest.mark.asyncio
    async def test_early_end(self, rider_gw, driver_gw):
        ride_id = (await _requested(rider_gw)).ride_id
        for step in ("accept", "start_pickup", "mark_arrived", "start_trip"):
            await getattr(driver_gw, step)(DRIVER, ride_id)
        here = Location("Marol Naka", 19.1100, 72.8800)
        view = await driver_gw.request_early_end(DRIVER, ride_id, here)
        assert view.status == RideStatus.COMPLETED
        assert view.early_end is True
        assert view.early_end_location == here
        assert view.dropoff == ANDHERI

    @pytest.mark.asyncio
    async def test_rider_cannot_use_driver_gateway(self, rider_gw, driver_gw):
        ride_id = (await _requested(rider_gw)).ride_id
        with pytest.raises(Unauthorized):
            await driver_gw.accept(RIDER, ride_id)


class TestSharedActions:
    @pytest.mark.asyncio
    async def test_safety_round_trip_from_both_sides(self, rider_gw, driver_gw):
        ride_id = (await _requested(rider_gw)).ride_id
        await driver_gw.accept(DRIVER, ride_id)
        view = await driver_gw.trigger_safety_check(DRIVER, ride_id)
        assert view.safety.state == SafetyState.PENDING

        view = await rider_gw.respond_safety(RIDER, ride_id, SafetyResponse.SAFE)
        assert view.safety.state == SafetyState.RESOLVED_SAFE
        assert view.status == RideStatus.ACCEPTED

    @pytest.mark.asyncio
    async def test_driver_cancel(self, rider_gw, driver_gw):
        ride_id = (await _requested(rider_gw)).ride_id
        await driver_gw.accept(DRIVER, ride_id)
        view = await driver_gw.cancel(DRIVER, ride_id, reason="vehicle_issue")
        assert view.status == RideStatus.CANCELLED
        assert view.cancellation.reason == "vehicle_issue"

    @pytest.mark.asyncio
    async def test_driver_sos_skips_the_check(self, rider_gw, driver_gw):
        ride_id = (await _requested(rider_gw)).ride_id
        await driver_gw.accept(DRIVER, ride_id)
        view = await driver_gw.sos(DRIVER, ride_id, silent=True)
        assert view.safety.state == SafetyState.ESCALATED
        assert view.status == RideStatus.ACCEPTED

    @pytest.mark.asyncio
    async def test_system_has_no_sos(self, system_gw):
        with pytest.raises(Unauthorized):
            await system_gw.sos(SYSTEM, "any")


class TestSystemGateway:
    @pytest.mark.asyncio
    async def test_system_can_cancel(self, rider_gw, system_gw):
        ride_id = (await _requested(rider_gw)).ride_id
        view = await system_gw.cancel(SYSTEM, ride_id, reason="other")
        assert view.status == RideStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_system_cannot_answer_safety(self, system_gw):
        with pytest.raises(Unauthorized):
            await system_gw.respond_safety(SYSTEM, "any", SafetyResponse.SAFE)

    @pytest.mark.asyncio
    async def test_idle_check_needs_system_actor(self, rider_gw, system_gw, clock):
        ride_id = (await _requested(rider_gw)).ride_id
        with pytest.raises(Unauthorized):
            await system_gw.check_idle(RIDER, ride_id, clock())
        assert await system_gw.check_idle(SYSTEM, ride_id, clock()) is False
