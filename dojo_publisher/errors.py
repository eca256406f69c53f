from __future__ import annotations

from typing import Optional


class ApiClientError(Exception):
    """Any failure talking to DefectDojo. ``status`` is set when a response was received."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class ApiConnectionError(ApiClientError):
    """Transport level failure (refused, timed out, reset). The only kind that is retried."""


class ApiProtocolError(ApiClientError):
    """A successful response whose body is not what the API promises."""


class AbortError(Exception):
    """Raised by the publisher step; the pipeline must stop with this message."""
