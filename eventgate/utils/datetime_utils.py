from datetime import datetime, timezone
from typing import Optional
import uuid

def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime"""
    return datetime.now(timezone.utc)

def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Ensure datetime is in UTC timezone"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)

def to_iso_format(dt: Optional[datetime]) -> Optional[str]:
    """Convert datetime to ISO 8601 format string"""
    dt = ensure_utc(dt)
    return dt.isoformat() if dt else None

def new_id() -> str:
    """String primary keys; QR payloads carry identifiers as text"""
    return str(uuid.uuid4())
