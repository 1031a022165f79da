from sqlalchemy import Column, String, Integer, DateTime, ForeignKey

from eventgate.db.session import Base
from eventgate.utils.datetime_utils import utc_now


class CheckInStats(Base):
    """Read-optimized per-event counts. Written only by StatsProjector.recompute."""
    __tablename__ = "event_checkin_stats"

    event_id = Column(String(36), ForeignKey("events.id", ondelete="CASCADE"), primary_key=True)
    total_registered = Column(Integer, nullable=False, default=0)
    total_checked_in = Column(Integer, nullable=False, default=0)
    total_pending = Column(Integer, nullable=False, default=0)
    checked_in_registrations = Column(Integer, nullable=False, default=0)
    checked_in_dependents = Column(Integer, nullable=False, default=0)
    check_in_rate = Column(Integer, nullable=False, default=0)
    refreshed_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
