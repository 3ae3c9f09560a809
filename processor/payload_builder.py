"""Builds the bucketed events payload from the fetched source."""
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from processor.date_resolver import DateResolver
from processor.errors import UnexpectedFormat
from processor.models import HTML_FORMAT, MARKDOWN_FORMAT, EventItem, EventsPayload
from scraper.markdown_parser import MarkdownEventParser
from scraper.source_fetcher import SourceFetcher
from scraper.structured_data_parser import StructuredDataEventParser

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(instant: datetime) -> str:
    """Render an instant as an ISO-8601 UTC timestamp with millisecond precision."""
    utc = instant.astimezone(timezone.utc)
    return utc.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


class PayloadBuilder:
    """Runs fetch, parse and bucketing to produce an EventsPayload."""

    def __init__(
        self,
        fetcher: SourceFetcher,
        source_url: str,
        date_resolver: Optional[DateResolver] = None,
        markdown_parser: Optional[MarkdownEventParser] = None,
        structured_parser: Optional[StructuredDataEventParser] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize the builder.

        Args:
            fetcher: Source fetcher
            source_url: Primary URL recorded in the payload
            date_resolver: Resolver for the fixed timezone (default: America/New_York)
            markdown_parser: Parser for the proxy rendering
            structured_parser: Parser for JSON-LD blocks in HTML
            clock: Callable returning the current instant (default: UTC now)
        """
        self.fetcher = fetcher
        self.source_url = source_url
        self.date_resolver = date_resolver or DateResolver()
        self.markdown_parser = markdown_parser or MarkdownEventParser(self.date_resolver)
        self.structured_parser = structured_parser or StructuredDataEventParser(self.date_resolver)
        self.clock = clock or utc_now

    def build(self, now: Optional[datetime] = None) -> EventsPayload:
        """
        Build a fresh events payload.

        Args:
            now: Reference instant for today/tomorrow (default: clock())

        Returns:
            EventsPayload with today's and tomorrow's events

        Raises:
            FetchError: If the source cannot be fetched
            UnexpectedFormat: If the fetched document has an unknown format
        """
        if now is None:
            now = self.clock()

        today, tomorrow = self.date_resolver.today_tomorrow(now)
        logger.info(f"Building events payload for today={today}, tomorrow={tomorrow}")

        document = self.fetcher.fetch()
        events = self._parse(document.format, document.body, now)

        today_events = tuple(event for event in events if event.date == today)
        tomorrow_events = tuple(event for event in events if event.date == tomorrow)

        dropped = len(events) - len(today_events) - len(tomorrow_events)
        if dropped:
            logger.debug(f"Dropped {dropped} events outside today/tomorrow")

        logger.info(
            f"Bucketed {len(today_events)} events for today and "
            f"{len(tomorrow_events)} for tomorrow from {len(events)} parsed"
        )

        return EventsPayload(
            fetched_at=format_timestamp(self.clock()),
            source=self.source_url,
            today=today,
            tomorrow=tomorrow,
            today_events=today_events,
            tomorrow_events=tomorrow_events
        )

    def _parse(self, source_format: str, body: str, now: datetime) -> List[EventItem]:
        if source_format == MARKDOWN_FORMAT:
            events = self.markdown_parser.parse(body, now)
        elif source_format == HTML_FORMAT:
            events = self.structured_parser.parse(body)
        else:
            raise UnexpectedFormat(f"Unsupported source format: {source_format!r}")
        return [event for event in events if event.is_valid()]
