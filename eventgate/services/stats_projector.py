import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from eventgate.controllers import check_in as crud_check_in
from eventgate.controllers import registration as crud_registration
from eventgate.models.check_in_stats import CheckInStats
from eventgate.schemas.stats import CheckInStatsOut
from eventgate.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)


class StatsProjector:
    """
    Materialized per-event check-in counts.

    Always rebuilt from Registration and CheckIn rows, never incremented, so
    the view cannot drift from the audit table. It is a read optimization and
    never the source of truth.
    """

    def __init__(self, db: Session):
        self.db = db

    async def recompute(self, event_id: str) -> CheckInStatsOut:
        total_registered = crud_registration.count_approved_registrations(self.db, event_id)
        active_check_ins, checked_in_dependents = crud_check_in.active_check_in_totals(self.db, event_id)
        checked_in_approved = crud_check_in.count_checked_in_approved(self.db, event_id)

        values = {
            "total_registered": total_registered,
            "total_checked_in": active_check_ins + checked_in_dependents,
            "total_pending": max(total_registered - checked_in_approved, 0),
            "checked_in_registrations": active_check_ins,
            "checked_in_dependents": checked_in_dependents,
            "check_in_rate": round(checked_in_approved / total_registered * 100) if total_registered else 0,
        }

        try:
            stats = self._store(event_id, values)
        except IntegrityError:
            # Another station created the row first; overwrite it
            self.db.rollback()
            stats = self._store(event_id, values)

        logger.debug(
            f"Stats for event {event_id}: registered={stats.total_registered} "
            f"checked_in={stats.total_checked_in} pending={stats.total_pending}"
        )
        return CheckInStatsOut.model_validate(stats)

    def _store(self, event_id: str, values: dict) -> CheckInStats:
        stats = self.db.query(CheckInStats).filter(CheckInStats.event_id == event_id).first()
        if not stats:
            stats = CheckInStats(event_id=event_id)

        for key, value in values.items():
            setattr(stats, key, value)
        stats.refreshed_at = utc_now()

        self.db.add(stats)
        self.db.commit()
        self.db.refresh(stats)
        return stats

    async def get_stats(self, event_id: str) -> CheckInStatsOut:
        stats = self.db.query(CheckInStats).filter(CheckInStats.event_id == event_id).first()
        if not stats:
            return await self.recompute(event_id)
        return CheckInStatsOut.model_validate(stats)
