import asyncio
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from eventgate.controllers import check_in as crud_check_in
from eventgate.controllers import registration as crud_registration
from eventgate.core.config import settings
from eventgate.schemas.check_in import (
    CheckInError,
    CheckInErrorCode,
    CheckInOut,
    CheckInRequest,
    DependentSnapshot,
    ResolvedRegistration,
)
from eventgate.services.user_info_resolver import UserInfoResolver
from eventgate.utils.result import Err, Ok, Result

logger = logging.getLogger(__name__)

# One try plus one retry; an unreachable store must not stall the queue
MAX_LOOKUP_ATTEMPTS = 2


class RegistrationLookupService:
    """Read-only resolution of a scanned request to an approved registration."""

    def __init__(
        self,
        db: Session,
        resolver: Optional[UserInfoResolver] = None,
        retry_backoff: Optional[float] = None,
    ):
        self.db = db
        self.resolver = resolver or UserInfoResolver.from_names()
        self.retry_backoff = settings.LOOKUP_RETRY_BACKOFF_SECONDS if retry_backoff is None else retry_backoff

    async def lookup_registration(self, request: CheckInRequest) -> Result[ResolvedRegistration, CheckInError]:
        for attempt in range(1, MAX_LOOKUP_ATTEMPTS + 1):
            try:
                return self._resolve(request)
            except SQLAlchemyError as e:
                self.db.rollback()
                if attempt == MAX_LOOKUP_ATTEMPTS:
                    logger.error(
                        f"Registration lookup failed for event {request.event_id} user {request.user_id}: {e}"
                    )
                    return Err(CheckInError(
                        code=CheckInErrorCode.lookup_failed,
                        message="Could not reach the registration store. Retry when ready.",
                    ))
                logger.warning(f"Registration lookup attempt {attempt} failed, retrying: {e}")
                await asyncio.sleep(self.retry_backoff * attempt)

    def _resolve(self, request: CheckInRequest) -> Result[ResolvedRegistration, CheckInError]:
        registration = crud_registration.get_approved_registration(self.db, request.event_id, request.user_id)
        if not registration:
            logger.info(f"No approved registration for event {request.event_id} user {request.user_id}")
            return Err(CheckInError(
                code=CheckInErrorCode.not_found,
                message="Participant is not approved for this event",
            ))

        participant = self.resolver.resolve(self.db, registration.user_id)
        dependents = [
            DependentSnapshot.model_validate(dependent)
            for dependent in crud_registration.list_dependents(self.db, registration.user_id)
        ]
        active = crud_check_in.get_active_check_in(self.db, registration.id)

        return Ok(ResolvedRegistration(
            registration_id=registration.id,
            event_id=registration.event_id,
            event_title=registration.event.title if registration.event else "",
            user_id=registration.user_id,
            participant=participant,
            dependents=dependents,
            active_check_in=CheckInOut.model_validate(active) if active else None,
        ))
