"""
Tests for the scan-station flow: scan, decide, display, resume.
"""

import asyncio
import json
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from eventgate.models.check_in import CheckIn
from eventgate.schemas.check_in import CheckInErrorCode
from eventgate.services.check_in_service import CheckInService
from eventgate.services.check_in_state_machine import (
    CheckInStateMachine,
    InvalidTransition,
    ScanStation,
    StationState,
)
from eventgate.services.qr_scanner import QRScannerAdapter
from eventgate.services.registration_lookup import RegistrationLookupService
from eventgate.services.stats_projector import StatsProjector

SUCCESS_DELAY = 0.05
ERROR_DELAY = 0.02


def ticket(user_id="U1", event_id="E1"):
    return json.dumps({"eventId": event_id, "userId": user_id})


def store_down():
    return OperationalError("SELECT", {}, Exception("database is unreachable"))


class FakeScanner:
    def __init__(self):
        self.paused = False
        self.pauses = 0
        self.resumes = 0

    def pause(self):
        self.paused = True
        self.pauses += 1

    def resume(self):
        self.paused = False
        self.resumes += 1


class FakeCapture:
    def __init__(self, opened=True):
        self.opened = opened
        self.released = False

    def isOpened(self):
        return self.opened

    def read(self):
        return True, "frame"

    def release(self):
        self.released = True


async def wait_for(condition, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


class TestStationFixtures:

    @pytest.fixture
    def scanner(self):
        return FakeScanner()

    @pytest.fixture
    def cards(self):
        return []

    @pytest.fixture
    def machine(self, db, scanner, cards):
        machine = CheckInStateMachine(
            "E1",
            scanner,
            RegistrationLookupService(db, retry_backoff=0),
            CheckInService(db, retry_backoff=0),
            on_card=cards.append,
            success_display_seconds=SUCCESS_DELAY,
            error_display_seconds=ERROR_DELAY,
        )
        yield machine
        machine.close()


class TestScanAndApprove(TestStationFixtures):

    @pytest.mark.asyncio
    async def test_example_admission_flow(self, db, machine, scanner, cards, admin, make_registration):
        make_registration("U1", full_name="Ada Participant", dependents=["d1", "d2"], registration_id="R1")
        before = await StatsProjector(db).recompute("E1")

        pending = await machine.handle_scan(ticket())

        assert pending.kind == "pending_approval"
        assert pending.resolved.registration_id == "R1"
        assert [d.full_name for d in pending.resolved.dependents] == ["d1", "d2"]
        assert machine.state == StationState.pending_approval
        assert scanner.paused

        success = await machine.approve(admin.id)

        assert success.kind == "success"
        assert success.check_in.registration_id == "R1"
        assert success.check_in.dependent_count == 2
        assert success.check_in.status.value == "active"
        assert machine.state == StationState.checked_in
        after = await StatsProjector(db).get_stats("E1")
        assert after.total_checked_in == before.total_checked_in + 3

        await wait_for(lambda: machine.state == StationState.scanning)
        assert not scanner.paused

        again = await machine.handle_scan(ticket())

        assert again.kind == "already_checked_in"
        assert again.check_in.id == success.check_in.id
        assert again.check_in.occurred_at == success.check_in.occurred_at
        assert again.performed_by_name == admin.email
        assert db.query(CheckIn).count() == 1
        assert [card.kind for card in cards] == ["pending_approval", "success", "already_checked_in"]

    @pytest.mark.asyncio
    async def test_scan_never_commits_by_itself(self, db, machine, make_registration):
        make_registration("U1")

        await machine.handle_scan(ticket())

        assert db.query(CheckIn).count() == 0

    @pytest.mark.asyncio
    async def test_scan_while_pending_is_ignored(self, machine, make_registration):
        make_registration("U1")
        make_registration("U2")
        first = await machine.handle_scan(ticket("U1"))

        second = await machine.handle_scan(ticket("U2"))

        assert second is first
        assert machine.state == StationState.pending_approval

    @pytest.mark.asyncio
    async def test_pending_does_not_resume_on_its_own(self, machine, scanner, make_registration):
        make_registration("U1")
        await machine.handle_scan(ticket())

        await asyncio.sleep(SUCCESS_DELAY * 3)

        assert machine.state == StationState.pending_approval
        assert scanner.resumes == 0

    @pytest.mark.asyncio
    async def test_reject(self, db, machine, scanner, make_registration):
        make_registration("U1")
        await machine.handle_scan(ticket())

        card = await machine.reject()

        assert card.kind == "invalid"
        assert card.error.code == CheckInErrorCode.entry_rejected
        assert machine.state == StationState.rejected
        assert db.query(CheckIn).count() == 0
        await wait_for(lambda: machine.state == StationState.scanning)
        assert scanner.resumes == 1

    @pytest.mark.asyncio
    async def test_decisions_need_a_pending_scan(self, machine, admin):
        with pytest.raises(InvalidTransition):
            await machine.approve(admin.id)
        with pytest.raises(InvalidTransition):
            await machine.reject()

    @pytest.mark.asyncio
    async def test_reject_is_refused_while_approval_commits(
        self, db, machine, scanner, cards, admin, make_registration
    ):
        make_registration("U1")
        await machine.handle_scan(ticket())

        release = asyncio.Event()
        real_commit = machine.check_in_service.commit_check_in

        async def slow_commit(*args, **kwargs):
            await release.wait()
            return await real_commit(*args, **kwargs)

        with patch.object(machine.check_in_service, "commit_check_in", side_effect=slow_commit):
            approving = asyncio.create_task(machine.approve(admin.id))
            await wait_for(lambda: machine.state == StationState.committing)

            with pytest.raises(InvalidTransition):
                await machine.reject()
            with pytest.raises(InvalidTransition):
                await machine.approve(admin.id)
            assert machine._resume_handle is None

            release.set()
            card = await approving

        assert card.kind == "success"
        assert [c.kind for c in cards] == ["pending_approval", "success"]
        assert machine.state == StationState.checked_in
        assert scanner.resumes == 0
        assert db.query(CheckIn).count() == 1


class TestErrors(TestStationFixtures):

    @pytest.mark.asyncio
    async def test_bad_payload_shows_error_then_resumes(self, machine, scanner, event):
        card = await machine.handle_scan("definitely not a ticket")

        assert card.kind == "invalid"
        assert card.error.code == CheckInErrorCode.malformed_payload
        assert machine.state == StationState.invalid
        assert not machine.can_retry
        await wait_for(lambda: machine.state == StationState.scanning)
        assert scanner.resumes == 1

    @pytest.mark.asyncio
    async def test_wrong_event(self, machine, event):
        card = await machine.handle_scan(ticket(event_id="E9"))

        assert card.error.code == CheckInErrorCode.wrong_event_payload

    @pytest.mark.asyncio
    async def test_not_approved(self, machine, event):
        card = await machine.handle_scan(ticket("U-unknown"))

        assert card.error.code == CheckInErrorCode.not_found

    @pytest.mark.asyncio
    async def test_lookup_failure_can_be_retried(self, machine, make_registration):
        make_registration("U1")

        with patch(
            "eventgate.controllers.registration.get_approved_registration",
            side_effect=store_down(),
        ):
            failed = await machine.handle_scan(ticket())

        assert failed.error.code == CheckInErrorCode.lookup_failed
        assert machine.can_retry

        retried = await machine.retry()

        assert retried.kind == "pending_approval"
        assert not machine.can_retry

    @pytest.mark.asyncio
    async def test_commit_failure_can_be_retried(self, db, machine, admin, make_registration):
        make_registration("U1")
        await machine.handle_scan(ticket())

        with patch(
            "eventgate.controllers.check_in.create_check_in",
            side_effect=store_down(),
        ):
            failed = await machine.approve(admin.id)

        assert failed.error.code == CheckInErrorCode.commit_failed
        assert machine.can_retry

        retried = await machine.retry()

        assert retried.kind == "success"
        assert db.query(CheckIn).count() == 1


    @pytest.mark.asyncio
    async def test_unconfirmed_commit_retries_into_already_checked_in(self, db, machine, admin, make_registration):
        make_registration("U1")
        await machine.handle_scan(ticket())

        with patch("eventgate.controllers.check_in.get_check_in", side_effect=store_down()):
            failed = await machine.approve(admin.id)

        assert failed.kind == "invalid"
        assert failed.error.code == CheckInErrorCode.commit_failed
        assert machine.state == StationState.invalid
        assert machine.can_retry
        assert machine._resume_handle is not None

        retried = await machine.retry()

        assert retried.kind == "already_checked_in"
        assert retried.performed_by_name == admin.email
        assert db.query(CheckIn).count() == 1

    @pytest.mark.asyncio
    async def test_operator_lookup_failure_still_shows_already_checked_in(self, machine, admin, make_registration):
        make_registration("U1")
        await machine.handle_scan(ticket())
        await machine.approve(admin.id)
        machine._cancel_resume()
        machine._resume()

        with patch.object(machine.check_in_service.resolver, "resolve", side_effect=store_down()):
            card = await machine.handle_scan(ticket())

        assert card.kind == "already_checked_in"
        assert card.performed_by_name == admin.id
        assert machine.state == StationState.already_checked_in

    @pytest.mark.asyncio
    async def test_retry_without_failure(self, machine):
        with pytest.raises(InvalidTransition):
            await machine.retry()

    @pytest.mark.asyncio
    async def test_camera_unavailable_does_not_resume(self, machine, scanner, cards):
        card = machine.camera_unavailable("Camera 0 could not be opened")

        await asyncio.sleep(SUCCESS_DELAY * 2)

        assert card.error.code == CheckInErrorCode.camera_unavailable
        assert cards == [card]
        assert scanner.resumes == 0


class TestClose(TestStationFixtures):

    @pytest.mark.asyncio
    async def test_close_cancels_pending_resume(self, machine, scanner, cards, admin, make_registration):
        make_registration("U1")
        await machine.handle_scan(ticket())
        await machine.approve(admin.id)

        machine.close()
        await asyncio.sleep(SUCCESS_DELAY * 2)

        assert machine.state == StationState.closed
        assert scanner.resumes == 0
        assert machine.current_card is None

    @pytest.mark.asyncio
    async def test_closed_station_rejects_scans(self, machine):
        machine.close()

        with pytest.raises(InvalidTransition):
            await machine.handle_scan(ticket())


class TestScanStation:

    @pytest.mark.asyncio
    async def test_camera_failure_is_reported(self, db, event):
        cards = []

        def no_camera(index):
            raise RuntimeError("permission denied")

        scanner = QRScannerAdapter(camera_index=0, capture_factory=no_camera, decoder=lambda frame: None)
        station = ScanStation.create(db, "E1", scanner=scanner, on_card=cards.append)

        await station.run()

        assert len(cards) == 1
        assert cards[0].error.code == CheckInErrorCode.camera_unavailable
        assert station.machine.state == StationState.invalid

    @pytest.mark.asyncio
    async def test_scan_loop_admits_and_publishes_stats(self, db, admin, make_registration):
        make_registration("U1", dependents=["Ben"])
        cards = []
        stats = []
        capture = FakeCapture()
        scanner = QRScannerAdapter(
            camera_index=0,
            capture_factory=lambda index: capture,
            decoder=lambda frame: ticket(),
            poll_interval=0.01,
        )
        station = ScanStation.create(db, "E1", scanner=scanner, on_card=cards.append, on_stats=stats.append)

        task = asyncio.create_task(station.run())
        try:
            await wait_for(lambda: station.machine.state == StationState.pending_approval)
            await station.machine.approve(admin.id)
        finally:
            station.stop()
            await asyncio.wait_for(task, timeout=2.0)

        # One projection at startup, one handed over by the commit
        assert len(stats) == 2
        assert stats[0].total_checked_in == 0
        assert stats[1].total_checked_in == 2
        assert [card.kind for card in cards] == ["pending_approval", "success"]
        assert capture.released
        assert station.machine.is_closed
