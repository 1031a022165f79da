from __future__ import annotations

from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from eventgate.models.check_in import CheckIn
from eventgate.models.event import Registration
from eventgate.schemas.check_in import CheckInMethodEnum, CheckInStatusEnum, DependentSnapshot
from eventgate.schemas.event import RegistrationStatusEnum
from eventgate.utils.datetime_utils import utc_now


def get_check_in(db: Session, check_in_id: str) -> Optional[CheckIn]:
    return db.query(CheckIn).filter(CheckIn.id == check_in_id).first()


def get_active_check_in(db: Session, registration_id: str) -> Optional[CheckIn]:
    return (
        db.query(CheckIn)
        .filter(CheckIn.registration_id == registration_id, CheckIn.status == CheckInStatusEnum.active)
        .first()
    )


def create_check_in(
    db: Session,
    *,
    event_id: str,
    registration_id: str,
    user_id: str,
    participant_name: str,
    participant_email: Optional[str],
    dependents: list[DependentSnapshot],
    performed_by: str,
    method: CheckInMethodEnum = CheckInMethodEnum.qr_scanner,
) -> CheckIn:
    """
    Insert an active check-in. The partial unique index on active rows makes
    the commit fail with IntegrityError when the registration is already in.
    """
    check_in = CheckIn(
        event_id=event_id,
        registration_id=registration_id,
        user_id=user_id,
        participant_name=participant_name,
        participant_email=participant_email,
        dependent_count=len(dependents),
        dependent_snapshot=[d.model_dump(exclude={"notes"}) for d in dependents],
        method=method,
        performed_by=performed_by,
        occurred_at=utc_now(),
        status=CheckInStatusEnum.active,
    )
    db.add(check_in)
    db.commit()
    db.refresh(check_in)
    return check_in


def cancel_check_in(db: Session, check_in: CheckIn, cancelled_by: str) -> CheckIn:
    check_in.status = CheckInStatusEnum.cancelled
    check_in.cancelled_at = utc_now()
    check_in.cancelled_by = cancelled_by
    db.add(check_in)
    db.commit()
    db.refresh(check_in)
    return check_in


def update_check_in_notes(db: Session, check_in: CheckIn, notes: Optional[str]) -> CheckIn:
    check_in.notes = notes.strip() if notes else None
    db.add(check_in)
    db.commit()
    db.refresh(check_in)
    return check_in


def list_active_check_ins(db: Session, event_id: str) -> list[CheckIn]:
    return (
        db.query(CheckIn)
        .filter(CheckIn.event_id == event_id, CheckIn.status == CheckInStatusEnum.active)
        .order_by(CheckIn.occurred_at.desc())
        .all()
    )


def active_check_in_totals(db: Session, event_id: str) -> tuple[int, int]:
    """(active check-ins, dependents admitted with them) for one event"""
    count, dependents = (
        db.query(func.count(CheckIn.id), func.coalesce(func.sum(CheckIn.dependent_count), 0))
        .filter(CheckIn.event_id == event_id, CheckIn.status == CheckInStatusEnum.active)
        .one()
    )
    return int(count), int(dependents)


def count_checked_in_approved(db: Session, event_id: str) -> int:
    """Approved registrations that currently hold an active check-in"""
    return (
        db.query(func.count(func.distinct(CheckIn.registration_id)))
        .join(Registration, Registration.id == CheckIn.registration_id)
        .filter(
            CheckIn.event_id == event_id,
            CheckIn.status == CheckInStatusEnum.active,
            Registration.status == RegistrationStatusEnum.approved,
        )
        .scalar()
        or 0
    )
