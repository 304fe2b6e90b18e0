"""Error types shared by the gateway, storage and synchronization layers."""
from typing import Optional


class LedgerLinkError(Exception):
    """Base class for all application errors."""


class UpstreamError(LedgerLinkError):
    """The bank aggregator call failed or returned malformed data."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(LedgerLinkError):
    """A connection or account does not exist or is not owned by the caller."""


class PersistenceError(LedgerLinkError):
    """A datastore read or write failed."""


class DispatchError(LedgerLinkError):
    """A background synchronization could not be started."""


class ConfigurationError(LedgerLinkError):
    """Required configuration (credentials, URLs) is missing."""
