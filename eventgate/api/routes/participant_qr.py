import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from eventgate.controllers import registration as crud_registration
from eventgate.core.permissions import require_self_or_admin
from eventgate.core.security import get_current_user
from eventgate.db.session import get_db
from eventgate.models.user import User
from eventgate.services.qr_code_service import build_ticket_payload, render_qr_png

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Participant QR"])


@router.get("/events/{event_id}/participants/{user_id}/qr")
def get_participant_qr_png(
    event_id: str,
    user_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_self_or_admin(current_user, user_id)

    event = crud_registration.get_event(db, event_id)
    if not event:
        raise HTTPException(status_code=404, detail="Event not found")

    registration = crud_registration.get_approved_registration(db, event_id, user_id)
    if not registration:
        raise HTTPException(status_code=404, detail="No approved registration for this participant")

    user = crud_registration.get_user(db, user_id)
    payload = build_ticket_payload(
        event_id,
        user_id,
        event_title=event.title or "",
        user_name=(user.full_name if user else "") or "",
    )

    try:
        buf = render_qr_png(payload)
    except Exception as e:
        logger.error(f"Failed to generate ticket QR for user {user_id} event {event_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to generate QR code: {e}")

    return StreamingResponse(
        buf,
        media_type="image/png",
        headers={"Cache-Control": "no-store"},
    )
