"""Exception types raised by the events pipeline."""
from typing import Optional


class EventsError(Exception):
    """Base class for events pipeline errors."""


class FetchError(EventsError):
    """The source could not be retrieved from either URL."""


class FetchTimeout(FetchError):
    """A fetch attempt exceeded its deadline."""


class FetchHttpError(FetchError):
    """The fallback source answered with a non-2xx status."""

    def __init__(self, status_code: int, url: Optional[str] = None):
        self.status_code = status_code
        self.url = url
        super().__init__(f"Failed to fetch events ({status_code})")


class UnexpectedFormat(EventsError):
    """The source came back in a different format than the caller required."""


class ParseFailure(EventsError):
    """A structured-data block could not be decoded."""


class DateResolutionFailure(EventsError):
    """Date text could not be resolved to a calendar date."""
