from .privacy import mask_secret, mask_url_token
from .timestamp import parse_timestamp, utc_now
from .locking import KeyedLock
from .logging_config import configure_logging

__all__ = [
    "mask_secret",
    "mask_url_token",
    "parse_timestamp",
    "utc_now",
    "KeyedLock",
    "configure_logging",
]
