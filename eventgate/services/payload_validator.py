import json
import logging
from typing import Any

from eventgate.schemas.check_in import CheckInError, CheckInErrorCode, CheckInRequest
from eventgate.utils.result import Err, Ok, Result

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("eventId", "userId")


def _as_identifier(value: Any) -> str:
    # Ticket issuers have emitted both numeric and string ids
    if isinstance(value, bool) or value is None:
        return ""
    if isinstance(value, (int, str)):
        return str(value).strip()
    return ""


def validate_payload(raw: Any, active_event_id: str) -> Result[CheckInRequest, CheckInError]:
    """
    Parse a decoded QR string into a CheckInRequest for the event being scanned.

    Pure function of its inputs: never raises, never touches the store.
    """
    if not isinstance(raw, str) or not raw.strip():
        return Err(CheckInError(code=CheckInErrorCode.malformed_payload, message="Empty QR code"))

    try:
        data = json.loads(raw)
    except (ValueError, RecursionError):
        logger.debug("Rejected non-JSON QR payload")
        return Err(CheckInError(code=CheckInErrorCode.malformed_payload, message="Invalid QR code format"))

    if not isinstance(data, dict):
        return Err(CheckInError(code=CheckInErrorCode.malformed_payload, message="Invalid QR code format"))

    event_id = _as_identifier(data.get("eventId"))
    user_id = _as_identifier(data.get("userId"))
    if not event_id or not user_id:
        missing = [field for field, value in zip(REQUIRED_FIELDS, (event_id, user_id)) if not value]
        return Err(CheckInError(
            code=CheckInErrorCode.incomplete_payload,
            message=f"Incomplete QR code data: missing {', '.join(missing)}",
        ))

    if event_id != str(active_event_id):
        logger.info(f"QR code for event {event_id} scanned during session for event {active_event_id}")
        return Err(CheckInError(
            code=CheckInErrorCode.wrong_event_payload,
            message="This ticket belongs to a different event",
        ))

    extras = {key: value for key, value in data.items() if key not in REQUIRED_FIELDS}
    return Ok(CheckInRequest(event_id=event_id, user_id=user_id, extras=extras))
