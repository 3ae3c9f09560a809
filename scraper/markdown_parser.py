"""Event parser for the markdown rendering of the events listing."""
import enum
import logging
import re
from datetime import datetime
from typing import List, Optional

from processor.date_resolver import DateResolver
from processor.models import EventItem

logger = logging.getLogger(__name__)

DATE_LINE_PATTERN = re.compile(r'^[A-Za-z]+,\s+([A-Za-z]+)\s+(\d{1,2})\s+@\s+(.+)$')
HEADING_LINK_PATTERN = re.compile(r'^### \[(.+?)\]\(([^\s)]+)[^)]*\)')

# Line prefixes that are page chrome rather than venue text
CHROME_PREFIXES = (
    '**',
    '[',
    '###',
    'Event Category',
    'Events Search',
)


class ScanState(enum.Enum):
    NO_DATE_SEEN = 'no_date_seen'
    DATE_ESTABLISHED = 'date_established'


class _Scanner:
    """Running date/time context while walking the document."""

    def __init__(self):
        self.state = ScanState.NO_DATE_SEEN
        self.current_date: Optional[str] = None
        self.current_time = ''

    def on_date(self, resolved_date: str, time_text: str) -> None:
        self.state = ScanState.DATE_ESTABLISHED
        self.current_date = resolved_date
        self.current_time = time_text.split('[')[0].strip()

    def emit(self, title: str, url: str, venue: str) -> EventItem:
        return EventItem(
            title=title,
            url=url,
            time=self.current_time,
            venue=venue,
            date=self.current_date
        )


class MarkdownEventParser:
    """Extracts events from the markdown listing using line heuristics."""

    def __init__(self, date_resolver: Optional[DateResolver] = None):
        self.date_resolver = date_resolver or DateResolver()

    def parse(self, markdown: str, reference_now: datetime) -> List[EventItem]:
        """
        Parse events from a markdown document.

        Date lines ("Friday, March 14 @ 9:00 PM") set the date and time for
        the event headings ("### [Title](url)") that follow them.

        Args:
            markdown: Markdown body from the rendering proxy
            reference_now: Instant used to infer the year of date lines

        Returns:
            List of EventItem objects in document order
        """
        lines = markdown.split('\n')
        scanner = _Scanner()
        events = []

        for index, raw_line in enumerate(lines):
            line = raw_line.strip()
            if not line:
                continue

            date_match = DATE_LINE_PATTERN.match(line)
            if date_match:
                month_name, day_text, time_text = date_match.groups()
                resolved = self.date_resolver.resolve_partial_date(
                    month_name, int(day_text), reference_now
                )
                if resolved:
                    scanner.on_date(resolved, time_text)
                else:
                    logger.debug(f"Ignoring date line with unresolved date: {line!r}")
                continue

            if line.startswith('### ['):
                link = self._extract_heading_link(line)
                if not link:
                    continue
                title, url = link
                if scanner.state is ScanState.NO_DATE_SEEN:
                    logger.debug(f"Skipping event before any date line: {title!r}")
                    continue
                events.append(scanner.emit(title, url, self._find_venue(lines, index + 1)))

        logger.info(f"Parsed {len(events)} events from markdown")
        return events

    def _extract_heading_link(self, line: str) -> Optional[tuple[str, str]]:
        """
        Extract title and URL from a markdown link heading.

        Args:
            line: Heading line (e.g. "### [The Band](https://example.com/x)")

        Returns:
            Tuple of (title, url) or None if the line is not a link heading
        """
        match = HEADING_LINK_PATTERN.match(line)
        if not match:
            return None
        return match.group(1).strip(), match.group(2).strip()

    def _find_venue(self, lines: List[str], start_index: int) -> str:
        """Return the first non-blank, non-chrome line at or after start_index."""
        for candidate in lines[start_index:]:
            candidate = candidate.strip()
            if not candidate or candidate.startswith(CHROME_PREFIXES):
                continue
            return candidate
        return ''
