from sqlalchemy import Column, String, Integer, Text, DateTime, Enum, ForeignKey, Index, JSON, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from eventgate.db.session import Base
from eventgate.schemas.check_in import CheckInStatusEnum, CheckInMethodEnum
from eventgate.utils.datetime_utils import new_id, utc_now


class CheckIn(Base):
    """Append-only admission record. Removal is a soft cancel."""
    __tablename__ = "event_checkins"
    __table_args__ = (
        # At most one active check-in per registration, arbitrated by the store
        Index(
            "uq_event_checkins_active_registration",
            "registration_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
        Index("ix_event_checkins_event_status", "event_id", "status"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False)
    registration_id = Column(String(36), ForeignKey("registrations.id"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)

    # Primary participant snapshot at admission time
    participant_name = Column(String, nullable=False)
    participant_email = Column(String, nullable=True)
    dependent_count = Column(Integer, nullable=False, default=0)
    dependent_snapshot = Column(JSON, nullable=False, default=list)

    method = Column(Enum(CheckInMethodEnum), nullable=False, default=CheckInMethodEnum.qr_scanner)
    performed_by = Column(String(36), nullable=False)
    occurred_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    status = Column(
        Enum(CheckInStatusEnum, native_enum=False, values_callable=lambda e: [m.value for m in e]),
        default=CheckInStatusEnum.active,
        nullable=False,
    )
    notes = Column(Text, nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_by = Column(String(36), nullable=True)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    registration = relationship("Registration", back_populates="check_ins")
