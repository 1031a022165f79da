from datetime import datetime

from pydantic import BaseModel


class CheckInStatsOut(BaseModel):
    event_id: str
    total_registered: int
    total_checked_in: int  # people through the door, dependents included
    total_pending: int
    checked_in_registrations: int
    checked_in_dependents: int
    check_in_rate: int
    refreshed_at: datetime

    class Config:
        from_attributes = True
