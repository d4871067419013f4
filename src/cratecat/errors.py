"""Exception types for cratecat."""

from typing import Optional


class CrateError(Exception):
    """Base class for all cratecat errors."""


class ConfigError(CrateError):
    """Raised when an importer or the planner is misconfigured."""


class InputError(CrateError, ValueError):
    """Raised for malformed prompts, filters, tracks or instructions."""


class InvalidKeyError(InputError):
    """Raised when a string is not one of the 24 Camelot keys."""


class NotFoundError(CrateError, LookupError):
    """Raised when a track, plan or pool identifier does not resolve."""


class PlanStateError(CrateError):
    """Raised when an operation is not allowed in the plan's current state."""


class RevisionError(CrateError):
    """Raised when a requested plan revision cannot be applied."""


class UpstreamError(CrateError):
    """Raised when an external API call fails.

    Attributes:
        status_code: HTTP status, or None for network failures and timeouts.
        transient: Whether retrying the call could succeed.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, transient: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.transient = transient

    @property
    def is_client_error(self) -> bool:
        return self.status_code is not None and 400 <= self.status_code < 500
