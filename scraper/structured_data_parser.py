"""Event parser for JSON-LD blocks embedded in the events HTML page."""
import enum
import json
import logging
import re
from typing import Any, List, Optional

from bs4 import BeautifulSoup

from processor.date_resolver import DateResolver
from processor.errors import ParseFailure
from processor.models import EventItem

logger = logging.getLogger(__name__)

JSON_LD_TYPE = re.compile(r'^\s*application/ld\+json\s*$', re.IGNORECASE)


class BlockShape(enum.Enum):
    """Top-level shapes a JSON-LD block can take."""
    LIST = 'list'
    GRAPH = 'graph'
    RECORD = 'record'
    SCALAR = 'scalar'


def classify_block(parsed: Any) -> BlockShape:
    if isinstance(parsed, list):
        return BlockShape.LIST
    if isinstance(parsed, dict):
        if isinstance(parsed.get('@graph'), list):
            return BlockShape.GRAPH
        return BlockShape.RECORD
    return BlockShape.SCALAR


def flatten_candidates(parsed: Any) -> List[dict]:
    """
    Normalize a decoded JSON-LD block into a flat list of records.

    Args:
        parsed: Decoded JSON value

    Returns:
        List of dict records (non-object entries are dropped)
    """
    shape = classify_block(parsed)
    if shape is BlockShape.LIST:
        items = parsed
    elif shape is BlockShape.GRAPH:
        items = parsed['@graph']
    elif shape is BlockShape.RECORD:
        items = [parsed]
    else:
        items = []
    return [item for item in items if isinstance(item, dict)]


def is_event_record(record: dict) -> bool:
    raw_type = record.get('@type')
    types = raw_type if isinstance(raw_type, list) else [raw_type]
    return any(isinstance(value, str) and 'Event' in value for value in types)


def resolve_venue(location: Any) -> str:
    """
    Resolve a venue name from a JSON-LD location value.

    Accepts a plain string, a Place with a name, or a Place whose address
    carries the name. First matching form wins.
    """
    if isinstance(location, str):
        return location
    if isinstance(location, dict):
        name = location.get('name')
        if isinstance(name, str):
            return name
        address = location.get('address')
        if isinstance(address, dict) and isinstance(address.get('name'), str):
            return address['name']
    return ''


class StructuredDataEventParser:
    """Extracts events from schema.org JSON-LD blocks."""

    def __init__(self, date_resolver: Optional[DateResolver] = None):
        self.date_resolver = date_resolver or DateResolver()

    def parse(self, html_content: str) -> List[EventItem]:
        """
        Parse events from every JSON-LD block in an HTML document.

        Malformed blocks are skipped without aborting the scan.

        Args:
            html_content: Raw HTML page

        Returns:
            List of EventItem objects in block order, then record order
        """
        events = []

        for index, block_text in enumerate(self._script_blocks(html_content)):
            try:
                parsed = self._decode_block(block_text)
            except ParseFailure as e:
                logger.warning(f"Skipping JSON-LD block {index}: {e}")
                continue

            for record in flatten_candidates(parsed):
                if not is_event_record(record):
                    continue
                event = self._record_to_event(record)
                if event:
                    events.append(event)

        logger.info(f"Parsed {len(events)} events from JSON-LD")
        return events

    def _script_blocks(self, html_content: str) -> List[str]:
        soup = BeautifulSoup(html_content, 'html.parser')
        blocks = []
        for tag in soup.find_all('script', attrs={'type': JSON_LD_TYPE}):
            text = (tag.string or tag.get_text() or '').strip()
            if text:
                blocks.append(text)
        return blocks

    def _decode_block(self, block_text: str) -> Any:
        """
        Decode a JSON-LD block.

        Raises:
            ParseFailure: If the block is not valid JSON
        """
        try:
            return json.loads(block_text)
        except ValueError as e:
            raise ParseFailure(f"Invalid JSON-LD: {e}") from e

    def _record_to_event(self, record: dict) -> Optional[EventItem]:
        """
        Convert an event record into an EventItem.

        Args:
            record: JSON-LD record whose @type names an Event

        Returns:
            EventItem or None if title, url, or date cannot be resolved
        """
        name = record.get('name')
        title = name.strip() if isinstance(name, str) else ''
        if not title:
            return None

        url = self._record_url(record)
        if not url:
            logger.debug(f"Dropping event without url: {title!r}")
            return None

        start_date = record.get('startDate')
        if not isinstance(start_date, str) or not start_date:
            logger.debug(f"Dropping event without startDate: {title!r}")
            return None

        event_date = self.date_resolver.parse_freeform_date(start_date)
        if not event_date:
            logger.debug(f"Dropping event with unparseable startDate {start_date!r}: {title!r}")
            return None

        return EventItem(
            title=title,
            url=url,
            time=self.date_resolver.parse_freeform_time(start_date),
            venue=resolve_venue(record.get('location')),
            date=event_date
        )

    def _record_url(self, record: dict) -> str:
        """Return the string url, else the @id; an empty string url is not replaced."""
        for key in ('url', '@id'):
            value = record.get(key)
            if isinstance(value, str):
                return value
        return ''
