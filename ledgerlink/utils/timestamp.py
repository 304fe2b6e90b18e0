"""Timestamp helpers."""
from datetime import datetime, timezone

def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)

def parse_timestamp(s: str) -> datetime:
    """Parse an ISO 8601 timestamp as written by ``isoformat()``; naive values are taken as UTC."""
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
