"""Timezone-anchored calendar date resolution."""
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Tuple

from dateutil import parser, tz

from processor.errors import DateResolutionFailure

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = 'America/New_York'

MONTHS = {
    'january': 1,
    'february': 2,
    'march': 3,
    'april': 4,
    'may': 5,
    'june': 6,
    'july': 7,
    'august': 8,
    'september': 9,
    'october': 10,
    'november': 11,
    'december': 12,
}


def format_date_parts(year: int, month: int, day: int) -> str:
    """Render a (year, month, day) triple as YYYY-MM-DD."""
    return f"{year:04d}-{month:02d}-{day:02d}"


class DateResolver:
    """Resolves instants and date text to calendar dates in one timezone."""

    def __init__(self, timezone_name: str = DEFAULT_TIMEZONE):
        """
        Initialize the resolver.

        Args:
            timezone_name: IANA timezone name (default: America/New_York)

        Raises:
            ValueError: If the timezone name is unknown
        """
        self.timezone_name = timezone_name
        self.tz = tz.gettz(timezone_name)
        if self.tz is None:
            raise ValueError(f"Unknown timezone: {timezone_name}")

    def _localize(self, instant: datetime) -> datetime:
        # Naive instants are UTC, never the host's local time
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        return instant.astimezone(self.tz)

    def local_date_parts(self, instant: datetime) -> Tuple[int, int, int]:
        """
        Project an instant onto the civil calendar of the configured timezone.

        Args:
            instant: Point in time (naive values are treated as UTC)

        Returns:
            Tuple of (year, month, day)
        """
        local = self._localize(instant)
        return local.year, local.month, local.day

    def local_date(self, instant: datetime) -> str:
        return format_date_parts(*self.local_date_parts(instant))

    def today_tomorrow(self, now: datetime) -> Tuple[str, str]:
        """
        Compute the today and tomorrow calendar dates.

        Tomorrow is the local date of now plus 24 hours, so the two can
        coincide or skip a day around a DST transition.

        Args:
            now: Reference instant

        Returns:
            Tuple of (today, tomorrow) as YYYY-MM-DD strings
        """
        today = self.local_date(now)
        tomorrow = self.local_date(now + timedelta(hours=24))
        return today, tomorrow

    def resolve_partial_date(
        self,
        month_name: str,
        day: int,
        reference_now: datetime
    ) -> Optional[str]:
        """
        Resolve a month name and day of month to a full calendar date.

        The year is taken from the reference instant, except that a January
        date seen in December belongs to the following year.

        Args:
            month_name: Full English month name (e.g. "March")
            day: Day of month
            reference_now: Instant used to infer the year

        Returns:
            YYYY-MM-DD string or None if the month or day is invalid
        """
        month = MONTHS.get(month_name.strip().lower())
        if month is None:
            logger.debug(f"Unrecognized month name: {month_name!r}")
            return None

        ref_year, ref_month, _ = self.local_date_parts(reference_now)
        year = ref_year
        if month == 1 and ref_month == 12:
            year += 1

        try:
            resolved = date(year, month, day)
        except ValueError:
            logger.debug(f"Invalid day {day} for {month_name} {year}")
            return None

        return resolved.isoformat()

    def _parse_instant(self, text: str) -> datetime:
        """
        Parse date text into an aware datetime in the configured timezone.

        Raises:
            DateResolutionFailure: If the text cannot be parsed
        """
        if not isinstance(text, str) or not text.strip():
            raise DateResolutionFailure(f"Empty date text: {text!r}")

        try:
            parsed = parser.parse(text.strip())
        except (ValueError, OverflowError) as e:
            raise DateResolutionFailure(f"Unparseable date text {text!r}: {e}") from e

        # Offset-less text is wall time in the configured zone
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=self.tz)
        return parsed.astimezone(self.tz)

    def parse_freeform_date(self, text: str) -> Optional[str]:
        """
        Parse ISO-8601 or free-form date text into a calendar date.

        Args:
            text: Date or date-time string (e.g. "2024-03-14T21:00:00-04:00")

        Returns:
            YYYY-MM-DD string or None if unparseable
        """
        try:
            instant = self._parse_instant(text)
        except DateResolutionFailure as e:
            logger.debug(str(e))
            return None
        return format_date_parts(instant.year, instant.month, instant.day)

    def parse_freeform_time(self, text: str) -> str:
        """
        Format the time of a date-time string as h:mm AM/PM.

        Args:
            text: Date-time string

        Returns:
            Display time (e.g. "9:00 PM") or empty string if unparseable
        """
        try:
            instant = self._parse_instant(text)
        except DateResolutionFailure as e:
            logger.debug(str(e))
            return ''

        hour = instant.hour % 12 or 12
        meridiem = 'AM' if instant.hour < 12 else 'PM'
        return f"{hour}:{instant.minute:02d} {meridiem}"
