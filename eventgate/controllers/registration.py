from typing import Optional

from sqlalchemy.orm import Session

from eventgate.models.dependent import Dependent
from eventgate.models.event import Event, Registration
from eventgate.models.user import User
from eventgate.schemas.event import RegistrationStatusEnum


def get_event(db: Session, event_id: str) -> Optional[Event]:
    return db.query(Event).filter(Event.id == event_id).first()


def get_user(db: Session, user_id: str) -> Optional[User]:
    return db.query(User).filter(User.id == user_id).first()


def get_approved_registration(db: Session, event_id: str, user_id: str) -> Optional[Registration]:
    """Only approved registrations are eligible for check-in."""
    return (
        db.query(Registration)
        .filter(
            Registration.event_id == event_id,
            Registration.user_id == user_id,
            Registration.status == RegistrationStatusEnum.approved,
        )
        .first()
    )


def list_dependents(db: Session, user_id: str) -> list[Dependent]:
    return (
        db.query(Dependent)
        .filter(Dependent.user_id == user_id)
        .order_by(Dependent.created_at.asc())
        .all()
    )


def count_approved_registrations(db: Session, event_id: str) -> int:
    return (
        db.query(Registration)
        .filter(Registration.event_id == event_id, Registration.status == RegistrationStatusEnum.approved)
        .count()
    )
