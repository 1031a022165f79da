"""
Scan-station check-in flow.

One state machine per scanner station, bound to one event. A scan never
admits anyone by itself: a successful lookup parks the station in
``pending_approval`` with the scanner paused until the operator approves or
rejects. Approval holds the station in ``committing`` until the store
answers; no other decision is accepted meanwhile. Every terminal outcome is shown for a fixed interval before the
scanner resumes.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol

from sqlalchemy.orm import Session

from eventgate.core.config import settings
from eventgate.schemas.check_in import (
    AlreadyCheckedInCard,
    CheckInError,
    CheckInErrorCode,
    CheckInOut,
    CheckInRequest,
    InvalidCard,
    PendingApprovalCard,
    ResolvedRegistration,
    ScanCard,
    SuccessCard,
)
from eventgate.schemas.stats import CheckInStatsOut
from eventgate.services.check_in_service import CheckInService
from eventgate.services.payload_validator import validate_payload
from eventgate.services.qr_scanner import CameraUnavailable, QRScannerAdapter
from eventgate.services.registration_lookup import RegistrationLookupService
from eventgate.services.stats_projector import StatsProjector
from eventgate.services.user_info_resolver import UserInfoResolver
from eventgate.utils.result import Err

logger = logging.getLogger(__name__)


class StationState(str, Enum):
    scanning = "scanning"
    pending_approval = "pending_approval"
    committing = "committing"
    checked_in = "checked_in"
    rejected = "rejected"
    already_checked_in = "already_checked_in"
    invalid = "invalid"
    closed = "closed"


class InvalidTransition(RuntimeError):
    """The operator action is not allowed in the current station state."""


class PausableScanner(Protocol):
    def pause(self) -> None: ...

    def resume(self) -> None: ...


class CheckInStateMachine:
    def __init__(
        self,
        event_id: str,
        scanner: PausableScanner,
        lookup_service: RegistrationLookupService,
        check_in_service: CheckInService,
        on_card: Optional[Callable[[ScanCard], None]] = None,
        success_display_seconds: Optional[float] = None,
        error_display_seconds: Optional[float] = None,
    ):
        self.event_id = event_id
        self.scanner = scanner
        self.lookup_service = lookup_service
        self.check_in_service = check_in_service
        self.on_card = on_card
        self.success_display_seconds = (
            settings.SUCCESS_DISPLAY_SECONDS if success_display_seconds is None else success_display_seconds
        )
        self.error_display_seconds = (
            settings.ERROR_DISPLAY_SECONDS if error_display_seconds is None else error_display_seconds
        )

        self.state = StationState.scanning
        self.current_card: Optional[ScanCard] = None
        self._pending: Optional[ResolvedRegistration] = None
        self._retry: Optional[Callable[[], Awaitable[ScanCard]]] = None
        self._resume_handle: Optional[asyncio.TimerHandle] = None

    @property
    def is_closed(self) -> bool:
        return self.state == StationState.closed

    @property
    def can_retry(self) -> bool:
        return self._retry is not None and not self.is_closed

    # ========================
    # Operator-facing transitions
    # ========================

    async def handle_scan(self, raw: str) -> ScanCard:
        if self.is_closed:
            raise InvalidTransition("Scan station is closed")
        if self.state in (StationState.pending_approval, StationState.committing):
            # A decision is outstanding; the scanner should not have fired
            logger.warning(f"Ignoring scan on event {self.event_id} while {self.state.value}")
            return self.current_card

        self._cancel_resume()
        self.scanner.pause()
        self._retry = None

        validation = validate_payload(raw, self.event_id)
        if isinstance(validation, Err):
            return self._finish_error(validation.error)

        return await self._lookup(validation.value)

    async def approve(self, admin_id: str) -> ScanCard:
        if self.state != StationState.pending_approval or self._pending is None:
            raise InvalidTransition(f"Cannot approve from state {self.state.value}")

        resolved, self._pending = self._pending, None
        return await self._commit(resolved, admin_id)

    async def reject(self) -> ScanCard:
        if self.state != StationState.pending_approval or self._pending is None:
            raise InvalidTransition(f"Cannot reject from state {self.state.value}")

        resolved, self._pending = self._pending, None
        logger.info(f"Operator rejected entry for registration {resolved.registration_id}")
        card = InvalidCard(error=CheckInError(
            code=CheckInErrorCode.entry_rejected,
            message="Entry rejected by operator",
        ))
        return self._finish(card, StationState.rejected, self.error_display_seconds)

    async def retry(self) -> ScanCard:
        """Re-run the last failed lookup or commit without a new scan."""
        if not self.can_retry:
            raise InvalidTransition("Nothing to retry")

        operation, self._retry = self._retry, None
        self._cancel_resume()
        self.scanner.pause()
        return await operation()

    def camera_unavailable(self, message: str) -> ScanCard:
        """Fatal to the session: no resume is scheduled."""
        card = InvalidCard(error=CheckInError(code=CheckInErrorCode.camera_unavailable, message=message))
        self.state = StationState.invalid
        self.current_card = card
        self._emit(card)
        return card

    def close(self) -> None:
        """Stop rendering outcomes. Commits already sent to the store still land."""
        self._cancel_resume()
        self._pending = None
        self._retry = None
        self.state = StationState.closed
        self.current_card = None

    # ========================
    # Pipeline steps
    # ========================

    async def _lookup(self, request: CheckInRequest) -> ScanCard:
        result = await self.lookup_service.lookup_registration(request)
        if isinstance(result, Err):
            if result.error.retryable:
                self._retry = lambda: self._lookup(request)
            return self._finish_error(result.error)

        resolved = result.value
        if resolved.active_check_in is not None:
            return self._already_checked_in(resolved.active_check_in)

        if self.is_closed:
            return PendingApprovalCard(resolved=resolved)

        self._pending = resolved
        self.state = StationState.pending_approval
        self.current_card = PendingApprovalCard(resolved=resolved)
        self._emit(self.current_card)
        return self.current_card

    async def _commit(self, resolved: ResolvedRegistration, admin_id: str) -> ScanCard:
        if not self.is_closed:
            # Approve and reject are refused until the write settles
            self.state = StationState.committing
        result = await self.check_in_service.commit_check_in(resolved, admin_id)
        if isinstance(result, Err):
            if result.error.code == CheckInErrorCode.already_checked_in and result.error.existing_check_in:
                return self._already_checked_in(result.error.existing_check_in)
            if result.error.retryable:
                self._retry = lambda: self._commit(resolved, admin_id)
            return self._finish_error(result.error)

        card = SuccessCard(check_in=result.value, participant=resolved.participant, dependents=resolved.dependents)
        return self._finish(card, StationState.checked_in, self.success_display_seconds)

    def _already_checked_in(self, check_in: CheckInOut) -> ScanCard:
        card = AlreadyCheckedInCard(
            check_in=check_in,
            performed_by_name=self.check_in_service.operator_name(check_in.performed_by),
        )
        return self._finish(card, StationState.already_checked_in, self.success_display_seconds)

    # ========================
    # Display / resume
    # ========================

    def _finish_error(self, error: CheckInError) -> ScanCard:
        return self._finish(InvalidCard(error=error), StationState.invalid, self.error_display_seconds)

    def _finish(self, card: ScanCard, state: StationState, display_seconds: float) -> ScanCard:
        if self.is_closed:
            return card

        self.state = state
        self.current_card = card
        self._emit(card)
        self._schedule_resume(display_seconds)
        return card

    def _emit(self, card: ScanCard) -> None:
        if self.on_card is not None and not self.is_closed:
            self.on_card(card)

    def _schedule_resume(self, delay: float) -> None:
        self._cancel_resume()
        loop = asyncio.get_running_loop()
        self._resume_handle = loop.call_later(delay, self._resume)

    def _cancel_resume(self) -> None:
        if self._resume_handle is not None:
            self._resume_handle.cancel()
            self._resume_handle = None

    def _resume(self) -> None:
        self._resume_handle = None
        if self.is_closed:
            return
        self.state = StationState.scanning
        self.current_card = None
        self.scanner.resume()


class ScanStation:
    """Wires a camera adapter to a state machine for one event."""

    def __init__(
        self,
        event_id: str,
        scanner: QRScannerAdapter,
        machine: CheckInStateMachine,
        projector: StatsProjector,
        on_stats: Optional[Callable[[CheckInStatsOut], None]] = None,
    ):
        self.event_id = event_id
        self.scanner = scanner
        self.machine = machine
        self.projector = projector
        self.on_stats = on_stats

    @classmethod
    def create(
        cls,
        db: Session,
        event_id: str,
        scanner: Optional[QRScannerAdapter] = None,
        resolver: Optional[UserInfoResolver] = None,
        on_card: Optional[Callable[[ScanCard], None]] = None,
        on_stats: Optional[Callable[[CheckInStatsOut], None]] = None,
    ) -> "ScanStation":
        config = settings.get_station_config()
        resolver = resolver or UserInfoResolver.from_names()
        projector = StatsProjector(db)
        scanner = scanner or QRScannerAdapter(
            camera_index=config["camera_index"],
            poll_interval=config["poll_interval"],
        )
        station = cls(event_id, scanner, None, projector, on_stats)
        station.machine = CheckInStateMachine(
            event_id,
            scanner,
            RegistrationLookupService(db, resolver=resolver),
            CheckInService(db, resolver=resolver, projector=projector, on_stats=station._publish_stats),
            on_card=on_card,
            success_display_seconds=config["success_display_seconds"],
            error_display_seconds=config["error_display_seconds"],
        )
        return station

    def _publish_stats(self, stats: CheckInStatsOut) -> None:
        # Called by the check-in service with the projection it just wrote
        if self.on_stats is not None:
            self.on_stats(stats)

    async def refresh_stats(self) -> CheckInStatsOut:
        stats = await self.projector.recompute(self.event_id)
        self._publish_stats(stats)
        return stats

    async def run(self) -> None:
        try:
            self.scanner.open()
        except CameraUnavailable as e:
            logger.error(f"Scanner for event {self.event_id} could not start: {e}")
            self.machine.camera_unavailable(str(e))
            return

        try:
            # Commits may have landed while this station was closed
            await self.refresh_stats()
            async for payload in self.scanner.payloads():
                if self.machine.is_closed:
                    break
                await self.machine.handle_scan(payload)
        finally:
            self.stop()

    def stop(self) -> None:
        self.machine.close()
        self.scanner.close()
