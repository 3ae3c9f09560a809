"""Data models for event ingestion."""
from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

HTML_FORMAT = 'html'
MARKDOWN_FORMAT = 'markdown'


@dataclass(frozen=True)
class EventItem:
    """Normalized event produced by either parser."""
    title: str
    url: str
    time: str
    venue: str
    date: str

    def is_valid(self) -> bool:
        return bool(self.title and self.url and self.date)

    def to_dict(self) -> Dict[str, str]:
        return {
            'title': self.title,
            'url': self.url,
            'time': self.time,
            'venue': self.venue,
            'date': self.date
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EventItem':
        return cls(
            title=data['title'],
            url=data['url'],
            time=data.get('time', ''),
            venue=data.get('venue', ''),
            date=data['date']
        )


@dataclass(frozen=True)
class SourceDocument:
    """Raw source body tagged with the format it arrived in."""
    format: str
    body: str


@dataclass(frozen=True)
class EventsPayload:
    """Bucketed result of one ingestion run."""
    fetched_at: str
    source: str
    today: str
    tomorrow: str
    today_events: Tuple[EventItem, ...] = field(default_factory=tuple)
    tomorrow_events: Tuple[EventItem, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert to the JSON shape read by the events endpoint.

        Returns:
            Dictionary with camelCase keys and nested event buckets
        """
        return {
            'fetchedAt': self.fetched_at,
            'source': self.source,
            'today': self.today,
            'tomorrow': self.tomorrow,
            'events': {
                'today': [event.to_dict() for event in self.today_events],
                'tomorrow': [event.to_dict() for event in self.tomorrow_events]
            }
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EventsPayload':
        """
        Rebuild a payload from its JSON shape.

        Raises:
            KeyError: If a required key is missing
        """
        events = data.get('events', {})
        return cls(
            fetched_at=data['fetchedAt'],
            source=data['source'],
            today=data['today'],
            tomorrow=data['tomorrow'],
            today_events=tuple(
                EventItem.from_dict(item) for item in events.get('today', [])
            ),
            tomorrow_events=tuple(
                EventItem.from_dict(item) for item in events.get('tomorrow', [])
            )
        )


@dataclass
class RefreshResult:
    """Result of a refresh run."""
    payload: EventsPayload
    duration_ms: int
