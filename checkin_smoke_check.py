import asyncio

from eventgate.controllers import check_in as crud_check_in
from eventgate.db.session import SessionLocal
from eventgate.models.event import Event
from eventgate.services.stats_projector import StatsProjector


async def main() -> None:
    db = SessionLocal()
    try:
        events = db.query(Event).order_by(Event.event_date.desc()).limit(10).all()
        projector = StatsProjector(db)

        for event in events:
            stats = await projector.recompute(event.id)
            roster = crud_check_in.list_active_check_ins(db, event.id)
            print(
                f"event_id={event.id} title={event.title} registered={stats.total_registered} "
                f"checked_in={stats.total_checked_in} pending={stats.total_pending} "
                f"rate={stats.check_in_rate}% active_rows={len(roster)}"
            )

        print(f"events_total={len(events)}")
    finally:
        db.close()


if __name__ == "__main__":
    asyncio.run(main())
