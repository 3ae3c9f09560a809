"""AWS Lambda handlers for the Athens live-music events feed."""
import json
import logging
import os
import time
from typing import Dict, Any, Optional

from processor.date_resolver import DateResolver, DEFAULT_TIMEZONE
from processor.models import RefreshResult
from processor.payload_builder import PayloadBuilder
from scraper.source_fetcher import SourceConfig, SourceFetcher
from storage.cache_invalidator import (
    CacheInvalidator,
    EVENTS_CACHE_TAG,
    HOMEPAGE_CACHE_TAG,
)
from storage.payload_store import PayloadStore

DEFAULT_TABLE_NAME = 'athens-bands'

JSON_HEADERS = {'Content-Type': 'application/json; charset=utf-8'}

EVENTS_CACHE_HEADERS = {
    'Cache-Control': 'public, s-maxage=43200, stale-while-revalidate=86400',
    'Cache-Tag': EVENTS_CACHE_TAG,
}

ALLOWED_REFRESH_METHODS = ('GET', 'POST')


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    EXTRA_FIELDS = (
        'trigger',
        'table_name',
        'source_url',
        'events_today',
        'events_tomorrow',
        'duration_ms',
        'error_type',
    )

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for field in self.EXTRA_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def _response(
    status_code: int,
    body: Dict[str, Any],
    headers: Optional[Dict[str, str]] = None
) -> Dict[str, Any]:
    return {
        'statusCode': status_code,
        'headers': {**JSON_HEADERS, **(headers or {})},
        'body': json.dumps(body)
    }


def _trigger_name(event: Dict[str, Any]) -> str:
    if event.get('source') == 'aws.events':
        return 'scheduled-refresh'
    return 'manual-refresh'


def _request_method(event: Dict[str, Any]) -> str:
    """Return the HTTP method of an API Gateway event, or '' for other triggers."""
    if 'httpMethod' in event:
        return event['httpMethod'] or ''
    http = (event.get('requestContext') or {}).get('http') or {}
    return http.get('method') or ''


def refresh_events(
    builder: PayloadBuilder,
    store: PayloadStore,
    invalidator: CacheInvalidator,
    trigger: str
) -> RefreshResult:
    """
    Build, store and publish a fresh events payload.

    Args:
        builder: Payload builder
        store: Payload store
        invalidator: CDN cache invalidator
        trigger: Name of the trigger, used as log prefix

    Returns:
        RefreshResult with the stored payload and run duration

    Raises:
        Exception: Any fetch, storage or purge failure
    """
    logger = logging.getLogger(__name__)
    start_time = time.time()
    logger.info(f"[{trigger}] Starting events refresh", extra={'trigger': trigger})

    logger.info(f"[{trigger}] Fetching events payload...")
    payload = builder.build()
    logger.info(
        f"[{trigger}] Fetched {len(payload.today_events)} events for today, "
        f"{len(payload.tomorrow_events)} for tomorrow",
        extra={
            'events_today': len(payload.today_events),
            'events_tomorrow': len(payload.tomorrow_events)
        }
    )

    logger.info(f"[{trigger}] Storing payload...")
    store.put_payload(payload)
    logger.info(f"[{trigger}] Payload stored successfully")

    logger.info(f"[{trigger}] Purging CDN cache...")
    invalidator.purge([EVENTS_CACHE_TAG, HOMEPAGE_CACHE_TAG])

    duration_ms = int((time.time() - start_time) * 1000)
    logger.info(
        f"[{trigger}] Completed successfully in {duration_ms}ms",
        extra={'duration_ms': duration_ms}
    )
    return RefreshResult(payload=payload, duration_ms=duration_ms)


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Refresh handler for the EventBridge schedule and the manual refresh endpoint.

    Args:
        event: EventBridge event or API Gateway request
        context: Lambda context object

    Returns:
        Response dict with statusCode and refresh summary
    """
    table_name = os.environ.get('TABLE_NAME', DEFAULT_TABLE_NAME)
    log_level = os.environ.get('LOG_LEVEL', 'INFO')
    timezone_name = os.environ.get('TIMEZONE', DEFAULT_TIMEZONE)
    distribution_id = os.environ.get('CLOUDFRONT_DISTRIBUTION_ID')

    setup_logging(log_level)
    logger = logging.getLogger(__name__)

    method = _request_method(event or {})
    if method and method.upper() not in ALLOWED_REFRESH_METHODS:
        logger.warning(f"Rejected refresh request with method {method}")
        return _response(405, {'ok': False, 'error': 'Method not allowed'})

    trigger = _trigger_name(event or {})
    start_time = time.time()

    try:
        config = SourceConfig.from_env()
        builder = PayloadBuilder(
            fetcher=SourceFetcher(config),
            source_url=config.source_url,
            date_resolver=DateResolver(timezone_name)
        )
        store = PayloadStore(table_name=table_name)
        invalidator = CacheInvalidator(distribution_id)

        result = refresh_events(builder, store, invalidator, trigger)

    except Exception as e:
        duration_ms = int((time.time() - start_time) * 1000)
        logger.error(
            f"[{trigger}] Failed after {duration_ms}ms: {str(e)}",
            extra={
                'trigger': trigger,
                'duration_ms': duration_ms,
                'error_type': type(e).__name__
            },
            exc_info=True
        )
        return _response(500, {
            'ok': False,
            'error': str(e),
            'error_type': type(e).__name__
        })

    payload = result.payload
    return _response(200, {
        'ok': True,
        'fetchedAt': payload.fetched_at,
        'today': payload.today,
        'tomorrow': payload.tomorrow,
        'counts': {
            'today': len(payload.today_events),
            'tomorrow': len(payload.tomorrow_events)
        },
        'durationMs': result.duration_ms
    })


def events_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Read handler returning the cached events payload.

    Args:
        event: API Gateway request
        context: Lambda context object

    Returns:
        200 with the payload, or 503 when nothing is cached yet
    """
    table_name = os.environ.get('TABLE_NAME', DEFAULT_TABLE_NAME)
    setup_logging(os.environ.get('LOG_LEVEL', 'INFO'))
    logger = logging.getLogger(__name__)

    unavailable = {
        'ok': False,
        'message': 'No events cached yet. Try again soon.'
    }

    try:
        payload = PayloadStore(table_name=table_name).get_payload()
    except Exception as e:
        logger.error(
            f"Failed to read events payload: {str(e)}",
            extra={'table_name': table_name, 'error_type': type(e).__name__},
            exc_info=True
        )
        return _response(503, unavailable)

    if payload is None:
        return _response(503, unavailable)

    return _response(200, payload.to_dict(), EVENTS_CACHE_HEADERS)
