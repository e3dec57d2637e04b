# /logic/exceptions.py

from typing import Optional


class BatScopeError(Exception):
    """Base class for every error the dashboard shows to the user."""


class NetworkFailure(BatScopeError):
    """The service could not be reached or answered with a non-2xx status."""
    def __init__(self, message: str, status_code: Optional[int] = None, detail: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class NormalizationError(BatScopeError):
    """A service payload matched none of the known result shapes."""
