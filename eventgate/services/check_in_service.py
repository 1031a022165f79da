import asyncio
import logging
from typing import Callable, List, Optional, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from eventgate.controllers import check_in as crud_check_in
from eventgate.core.config import settings
from eventgate.schemas.check_in import (
    CheckInError,
    CheckInErrorCode,
    CheckInMethodEnum,
    CheckInOut,
    CheckInRosterEntry,
    CheckInStatusEnum,
    ResolvedRegistration,
    RosterParticipantTypeEnum,
    RosterRow,
)
from eventgate.schemas.stats import CheckInStatsOut
from eventgate.services.logging_service import LoggingService
from eventgate.services.stats_projector import StatsProjector
from eventgate.services.user_info_resolver import UserInfoResolver
from eventgate.utils.result import Err, Ok, Result

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_COMMIT_ATTEMPTS = 2


class CheckInService:
    """
    Writes to the check-in audit table.

    The at-most-once guarantee lives in the store (partial unique index on
    active rows). This service only translates the store's verdict into
    results and keeps the stats view and the operator audit log in step.
    """

    def __init__(
        self,
        db: Session,
        resolver: Optional[UserInfoResolver] = None,
        projector: Optional[StatsProjector] = None,
        retry_backoff: Optional[float] = None,
        on_stats: Optional[Callable[[CheckInStatsOut], None]] = None,
    ):
        self.db = db
        self.on_stats = on_stats
        self.resolver = resolver or UserInfoResolver.from_names()
        self.projector = projector or StatsProjector(db)
        self.retry_backoff = settings.COMMIT_RETRY_BACKOFF_SECONDS if retry_backoff is None else retry_backoff

    # ========================
    # Commit
    # ========================

    async def commit_check_in(
        self,
        resolved: ResolvedRegistration,
        admin_id: str,
        method: CheckInMethodEnum = CheckInMethodEnum.qr_scanner,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Result[CheckInOut, CheckInError]:
        if resolved.active_check_in is not None:
            return Err(self._already_checked_in_error(resolved.active_check_in))

        try:
            outcome = await self._attempt(
                lambda: crud_check_in.create_check_in(
                    self.db,
                    event_id=resolved.event_id,
                    registration_id=resolved.registration_id,
                    user_id=resolved.user_id,
                    participant_name=resolved.participant.full_name,
                    participant_email=resolved.participant.email,
                    dependents=resolved.dependents,
                    performed_by=admin_id,
                    method=method,
                ),
                f"check-in of registration {resolved.registration_id}",
            )
        except IntegrityError:
            self.db.rollback()
            return self._resolve_lost_race(resolved.registration_id)

        if isinstance(outcome, Err):
            return outcome

        # Re-read the committed row before declaring success
        check_in_id = outcome.value.id
        reread = await self._attempt(
            lambda: self._reload_check_in(check_in_id),
            f"confirmation of check-in {check_in_id}",
        )
        if isinstance(reread, Err):
            # The row may have landed; a retry re-inserts and resolves to already_checked_in
            return reread

        confirmed = reread.value
        if not confirmed or confirmed.status != CheckInStatusEnum.active:
            logger.error(f"Check-in {check_in_id} not found as active after commit")
            return Err(CheckInError(
                code=CheckInErrorCode.commit_failed,
                message="Check-in could not be confirmed. Retry when ready.",
            ))

        logger.info(
            f"Checked in registration {confirmed.registration_id} for event {confirmed.event_id} "
            f"with {confirmed.dependent_count} dependents by {admin_id}"
        )
        result = CheckInOut.model_validate(confirmed)

        self._audit(
            lambda name: LoggingService.log_check_in(
                self.db, admin_id, name, confirmed, ip_address=ip_address, user_agent=user_agent
            ),
            admin_id,
        )
        await self._refresh_stats(result.event_id)
        return Ok(result)

    def _reload_check_in(self, check_in_id: str):
        self.db.expire_all()
        return crud_check_in.get_check_in(self.db, check_in_id)

    def _resolve_lost_race(self, registration_id: str) -> Result[CheckInOut, CheckInError]:
        try:
            existing = crud_check_in.get_active_check_in(self.db, registration_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Could not re-query check-in state for registration {registration_id}: {e}")
            existing = None

        if existing:
            logger.info(f"Registration {registration_id} was checked in by another station first")
            return Err(self._already_checked_in_error(CheckInOut.model_validate(existing)))

        logger.error(f"Check-in insert for registration {registration_id} violated a constraint")
        return Err(CheckInError(
            code=CheckInErrorCode.commit_failed,
            message="Check-in was refused by the registration store",
        ))

    def _already_checked_in_error(self, check_in: CheckInOut) -> CheckInError:
        return CheckInError(
            code=CheckInErrorCode.already_checked_in,
            message="Participant already checked in",
            existing_check_in=check_in,
        )

    # ========================
    # Cancel / notes
    # ========================

    async def cancel_check_in(
        self,
        check_in_id: str,
        admin_id: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Result[None, CheckInError]:
        """Soft-cancel an admission. Cancelling twice is a no-op."""
        lookup = await self._attempt(lambda: crud_check_in.get_check_in(self.db, check_in_id), "check-in lookup")
        if isinstance(lookup, Err):
            return lookup

        check_in = lookup.value
        if not check_in:
            return Err(CheckInError(code=CheckInErrorCode.not_found, message="Check-in not found"))
        if check_in.status == CheckInStatusEnum.cancelled:
            return Ok(None)

        outcome = await self._attempt(
            lambda: crud_check_in.cancel_check_in(self.db, check_in, admin_id),
            f"cancellation of check-in {check_in_id}",
        )
        if isinstance(outcome, Err):
            return outcome

        logger.info(f"Cancelled check-in {check_in_id} for event {check_in.event_id} by {admin_id}")
        self._audit(
            lambda name: LoggingService.log_check_in_cancellation(
                self.db, admin_id, name, check_in, ip_address=ip_address, user_agent=user_agent
            ),
            admin_id,
        )
        await self._refresh_stats(check_in.event_id)
        return Ok(None)

    async def update_notes(self, check_in_id: str, notes: Optional[str], admin_id: str) -> Result[CheckInOut, CheckInError]:
        lookup = await self._attempt(lambda: crud_check_in.get_check_in(self.db, check_in_id), "check-in lookup")
        if isinstance(lookup, Err):
            return lookup

        check_in = lookup.value
        if not check_in:
            return Err(CheckInError(code=CheckInErrorCode.not_found, message="Check-in not found"))

        outcome = await self._attempt(
            lambda: crud_check_in.update_check_in_notes(self.db, check_in, notes),
            f"notes update of check-in {check_in_id}",
        )
        if isinstance(outcome, Err):
            return outcome

        self._audit(lambda name: LoggingService.log_check_in_notes_update(self.db, admin_id, name, check_in), admin_id)
        return Ok(CheckInOut.model_validate(outcome.value))

    # ========================
    # Reads
    # ========================

    def operator_name(self, admin_id: str) -> str:
        """Display name for the admin who performed a check-in. Falls back to the raw id."""
        try:
            info = self.resolver.resolve(self.db, admin_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning(f"Could not resolve operator {admin_id}, showing id instead: {e}")
            return admin_id
        return info.email or info.full_name

    async def list_active_check_ins(self, event_id: str) -> List[CheckInRosterEntry]:
        entries = []
        names = {}
        for check_in in crud_check_in.list_active_check_ins(self.db, event_id):
            if check_in.performed_by not in names:
                names[check_in.performed_by] = self.operator_name(check_in.performed_by)
            data = CheckInOut.model_validate(check_in).model_dump()
            entries.append(CheckInRosterEntry(**data, performed_by_name=names[check_in.performed_by]))
        return entries

    async def list_roster(self, event_id: str, q: Optional[str] = None) -> List[RosterRow]:
        """
        Everyone currently admitted to the event, one row per person.

        Dependents follow the registrant they arrived with. ``q`` matches
        case-insensitively against name, email and the registrant's name.
        """
        rows = []
        for entry in await self.list_active_check_ins(event_id):
            common = dict(
                check_in_id=entry.id,
                primary_participant=entry.participant_name,
                occurred_at=entry.occurred_at,
                performed_by_name=entry.performed_by_name,
                notes=entry.notes,
            )
            rows.append(RosterRow(
                participant_type=RosterParticipantTypeEnum.primary,
                full_name=entry.participant_name,
                email=entry.participant_email,
                **common,
            ))
            for dependent in entry.dependent_snapshot:
                rows.append(RosterRow(
                    participant_type=RosterParticipantTypeEnum.dependent,
                    full_name=dependent.full_name,
                    age=dependent.age,
                    relationship=dependent.relationship,
                    **common,
                ))

        if q and q.strip():
            needle = q.strip().lower()
            rows = [
                row for row in rows
                if any(needle in (value or "").lower() for value in (row.full_name, row.email, row.primary_participant))
            ]
        return rows

    # ========================
    # Helpers
    # ========================

    async def _attempt(self, operation: Callable[[], T], description: str) -> Result[T, CheckInError]:
        """Run a store operation with one retry. IntegrityError is a verdict, not a fault, and propagates."""
        for attempt in range(1, MAX_COMMIT_ATTEMPTS + 1):
            try:
                return Ok(operation())
            except IntegrityError:
                raise
            except SQLAlchemyError as e:
                self.db.rollback()
                if attempt == MAX_COMMIT_ATTEMPTS:
                    logger.error(f"Store write failed for {description}: {e}")
                    return Err(CheckInError(
                        code=CheckInErrorCode.commit_failed,
                        message="Could not save to the registration store. Retry when ready.",
                    ))
                logger.warning(f"Store write attempt {attempt} failed for {description}, retrying: {e}")
                await asyncio.sleep(self.retry_backoff * attempt)

    def _audit(self, write: Callable[[str], object], admin_id: str) -> None:
        # The check-in is already committed; an audit-log failure must not undo it
        try:
            write(self.operator_name(admin_id))
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to write operator audit log for {admin_id}: {e}")

    async def _refresh_stats(self, event_id: str) -> Optional[CheckInStatsOut]:
        try:
            stats = await self.projector.recompute(event_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Stats recomputation failed for event {event_id}: {e}")
            return None

        if self.on_stats is not None:
            self.on_stats(stats)
        return stats
