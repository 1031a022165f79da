import csv
import io
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from eventgate.controllers import registration as crud_registration
from eventgate.core.permissions import get_admin_user
from eventgate.db.session import get_db
from eventgate.models.user import User
from eventgate.schemas.check_in import (
    AlreadyCheckedInCard,
    CheckInError,
    CheckInErrorCode,
    CheckInNotesUpdate,
    CheckInOut,
    CheckInRosterEntry,
    InvalidCard,
    PendingApprovalCard,
    ScanCard,
    RosterRow,
    ScanPayloadIn,
    SuccessCard,
)
from eventgate.schemas.stats import CheckInStatsOut
from eventgate.services.check_in_service import CheckInService
from eventgate.services.payload_validator import validate_payload
from eventgate.services.registration_lookup import RegistrationLookupService
from eventgate.services.stats_projector import StatsProjector
from eventgate.services.user_info_resolver import UserInfoResolver
from eventgate.utils.result import Err

router = APIRouter(tags=["Check-in"])


def _client_info(request: Request) -> dict:
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


def _require_event(db: Session, event_id: str) -> None:
    if not crud_registration.get_event(db, event_id):
        raise HTTPException(status_code=404, detail="Event not found")


def _invalid(error: CheckInError, response: Response) -> InvalidCard:
    # Retryable store failures are reported as 503
    if error.retryable:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return InvalidCard(error=error)


def _already_checked_in(service: CheckInService, check_in: CheckInOut) -> AlreadyCheckedInCard:
    return AlreadyCheckedInCard(check_in=check_in, performed_by_name=service.operator_name(check_in.performed_by))


# ========================
# Scan verification and admission
# ========================

@router.post("/events/{event_id}/verify", response_model=ScanCard)
async def verify_scan(
    event_id: str,
    payload: ScanPayloadIn,
    response: Response,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user),
):
    """Validate a scanned payload and show who is at the door. Never admits."""
    _require_event(db, event_id)

    validation = validate_payload(payload.qrData, event_id)
    if isinstance(validation, Err):
        return _invalid(validation.error, response)

    resolver = UserInfoResolver.from_names()
    lookup = await RegistrationLookupService(db, resolver=resolver).lookup_registration(validation.value)
    if isinstance(lookup, Err):
        return _invalid(lookup.error, response)

    resolved = lookup.value
    if resolved.active_check_in is not None:
        return _already_checked_in(CheckInService(db, resolver=resolver), resolved.active_check_in)

    return PendingApprovalCard(resolved=resolved)


@router.post("/events/{event_id}/approve", response_model=ScanCard)
async def approve_scan(
    event_id: str,
    payload: ScanPayloadIn,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user),
):
    """Admit the participant (and dependents) behind a payload the operator has verified."""
    _require_event(db, event_id)

    validation = validate_payload(payload.qrData, event_id)
    if isinstance(validation, Err):
        return _invalid(validation.error, response)

    # Re-query: the station's earlier verify result may be stale
    resolver = UserInfoResolver.from_names()
    lookup = await RegistrationLookupService(db, resolver=resolver).lookup_registration(validation.value)
    if isinstance(lookup, Err):
        return _invalid(lookup.error, response)

    service = CheckInService(db, resolver=resolver)
    result = await service.commit_check_in(lookup.value, current_user.id, **_client_info(request))
    if isinstance(result, Err):
        if result.error.code == CheckInErrorCode.already_checked_in and result.error.existing_check_in:
            return _already_checked_in(service, result.error.existing_check_in)
        return _invalid(result.error, response)

    return SuccessCard(
        check_in=result.value,
        participant=lookup.value.participant,
        dependents=lookup.value.dependents,
    )


@router.post("/{check_in_id}/cancel", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_check_in(
    check_in_id: str,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user),
):
    result = await CheckInService(db).cancel_check_in(check_in_id, current_user.id, **_client_info(request))
    if isinstance(result, Err):
        if result.error.code == CheckInErrorCode.not_found:
            raise HTTPException(status_code=404, detail=result.error.message)
        raise HTTPException(status_code=503, detail=result.error.message)


@router.patch("/{check_in_id}/notes", response_model=CheckInOut)
async def update_check_in_notes(
    check_in_id: str,
    payload: CheckInNotesUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user),
):
    result = await CheckInService(db).update_notes(check_in_id, payload.notes, current_user.id)
    if isinstance(result, Err):
        if result.error.code == CheckInErrorCode.not_found:
            raise HTTPException(status_code=404, detail=result.error.message)
        raise HTTPException(status_code=503, detail=result.error.message)
    return result.value


# ========================
# Roster and stats
# ========================

@router.get("/events/{event_id}/check-ins", response_model=List[CheckInRosterEntry])
async def list_check_ins(
    event_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user),
):
    _require_event(db, event_id)
    return await CheckInService(db).list_active_check_ins(event_id)


@router.get("/events/{event_id}/stats", response_model=CheckInStatsOut)
async def get_stats(
    event_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user),
):
    _require_event(db, event_id)
    return await StatsProjector(db).get_stats(event_id)


@router.post("/events/{event_id}/stats/refresh", response_model=CheckInStatsOut)
async def refresh_stats(
    event_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user),
):
    _require_event(db, event_id)
    return await StatsProjector(db).recompute(event_id)


ROSTER_CSV_COLUMNS = [
    "check_in_id",
    "participant_type",
    "full_name",
    "email",
    "age",
    "relationship",
    "primary_participant",
    "occurred_at",
    "performed_by_name",
    "notes",
]


@router.get("/events/{event_id}/roster", response_model=List[RosterRow])
async def get_roster(
    event_id: str,
    q: Optional[str] = Query(None, description="Filter by name or email"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user),
):
    """Everyone currently admitted, dependents included, one row per person."""
    _require_event(db, event_id)
    return await CheckInService(db).list_roster(event_id, q=q)


@router.get("/events/{event_id}/roster.csv")
async def export_roster(
    event_id: str,
    q: Optional[str] = Query(None, description="Filter by name or email"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user),
):
    _require_event(db, event_id)
    rows = await CheckInService(db).list_roster(event_id, q=q)

    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=ROSTER_CSV_COLUMNS)
    writer.writeheader()
    for row in rows:
        data = row.model_dump(mode="json")
        writer.writerow({column: data[column] for column in ROSTER_CSV_COLUMNS})

    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename=checkins_{event_id}.csv"},
    )
