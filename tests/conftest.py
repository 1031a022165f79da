from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import eventgate.models  # noqa: F401
from eventgate.db.session import Base
from eventgate.models.dependent import Dependent
from eventgate.models.event import Event, Registration
from eventgate.models.user import User
from eventgate.schemas.event import RegistrationStatusEnum
from eventgate.schemas.user import RoleEnum


@pytest.fixture
def engine():
    """In-memory SQLite shared across threads and sessions"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def admin(db):
    user = User(id="A1", email="door.admin@example.com", full_name="Door Admin", role=RoleEnum.admin)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def event(db):
    event = Event(id="E1", title="Youth Summer Camp", event_date=date(2026, 8, 1), location="Main Hall")
    db.add(event)
    db.commit()
    return event


@pytest.fixture
def make_registration(db, event):
    """Create a user with a registration for ``event`` and optional dependents."""

    def _make(
        user_id,
        full_name="Ada Participant",
        email=None,
        status=RegistrationStatusEnum.approved,
        dependents=(),
        registration_id=None,
        event_id=None,
    ):
        user = db.query(User).filter(User.id == user_id).first()
        if user is None:
            user = User(id=user_id, email=email or f"{user_id.lower()}@example.com", full_name=full_name)
            db.add(user)
            base = datetime(2026, 1, 1, tzinfo=timezone.utc)
            for offset, name in enumerate(dependents):
                db.add(Dependent(
                    user_id=user_id,
                    full_name=name,
                    relationship="child",
                    age=8 + offset,
                    created_at=base + timedelta(minutes=offset),
                ))

        registration = Registration(
            event_id=event_id or event.id,
            user_id=user_id,
            status=status,
        )
        if registration_id:
            registration.id = registration_id
        db.add(registration)
        db.commit()
        db.refresh(registration)
        return registration

    return _make
