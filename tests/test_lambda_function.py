"""Integration tests for Lambda handlers."""
import json
import logging
import os
from unittest.mock import Mock, patch

import pytest

from lambda_function import (
    JsonFormatter,
    events_handler,
    lambda_handler,
    refresh_events,
    setup_logging,
)
from processor.errors import FetchHttpError
from processor.models import EventItem, EventsPayload


@pytest.fixture
def mock_env():
    """Set up environment variables for testing."""
    env_vars = {
        'TABLE_NAME': 'test-athens-bands',
        'LOG_LEVEL': 'INFO',
        'SOURCE_URL': 'https://events.example.com/events/list',
        'FALLBACK_URL': 'https://reader.example.com/events/list',
        'FETCH_TIMEOUT_SECONDS': '15',
        'CLOUDFRONT_DISTRIBUTION_ID': 'E2QWRUHAPOMQZL'
    }
    with patch.dict(os.environ, env_vars):
        yield env_vars


@pytest.fixture
def mock_context():
    """Create a mock Lambda context."""
    context = Mock()
    context.function_name = 'test-function'
    context.memory_limit_in_mb = 512
    context.invoked_function_arn = 'arn:aws:lambda:us-east-1:123456789012:function:test-function'
    context.aws_request_id = 'test-request-id'
    return context


@pytest.fixture
def sample_payload():
    return EventsPayload(
        fetched_at='2025-03-14T16:00:00.000Z',
        source='https://events.example.com/events/list',
        today='2025-03-14',
        tomorrow='2025-03-15',
        today_events=(
            EventItem('The Band', 'https://example.com/x', '9:00 PM', 'Caledonia Lounge', '2025-03-14'),
            EventItem('Second Band', 'https://example.com/y', '10:00 PM', '40 Watt Club', '2025-03-14'),
        ),
        tomorrow_events=(
            EventItem('Tomorrow Band', 'https://example.com/z', '8:00 PM', '', '2025-03-15'),
        )
    )


SCHEDULED_EVENT = {
    'source': 'aws.events',
    'detail-type': 'Scheduled Event',
    'detail': {}
}


class TestRefreshHandler:
    """Test cases for the refresh handler."""

    @patch('lambda_function.CacheInvalidator')
    @patch('lambda_function.PayloadStore')
    @patch('lambda_function.PayloadBuilder')
    def test_successful_refresh(
        self,
        mock_builder_class,
        mock_store_class,
        mock_invalidator_class,
        mock_env,
        mock_context,
        sample_payload
    ):
        """Test successful end-to-end refresh."""
        mock_builder_class.return_value.build.return_value = sample_payload

        response = lambda_handler(SCHEDULED_EVENT, mock_context)

        assert response['statusCode'] == 200
        body = json.loads(response['body'])
        assert body['ok'] is True
        assert body['fetchedAt'] == '2025-03-14T16:00:00.000Z'
        assert body['today'] == '2025-03-14'
        assert body['tomorrow'] == '2025-03-15'
        assert body['counts'] == {'today': 2, 'tomorrow': 1}
        assert 'durationMs' in body

        builder_kwargs = mock_builder_class.call_args.kwargs
        assert builder_kwargs['source_url'] == 'https://events.example.com/events/list'
        assert builder_kwargs['fetcher'].config.fallback_url == 'https://reader.example.com/events/list'

        mock_store_class.assert_called_once_with(table_name='test-athens-bands')
        mock_store_class.return_value.put_payload.assert_called_once_with(sample_payload)
        mock_invalidator_class.assert_called_once_with('E2QWRUHAPOMQZL')
        mock_invalidator_class.return_value.purge.assert_called_once_with(
            ['events-data', 'homepage']
        )

    @patch('lambda_function.CacheInvalidator')
    @patch('lambda_function.PayloadStore')
    @patch('lambda_function.PayloadBuilder')
    def test_fetch_failure_stores_nothing(
        self,
        mock_builder_class,
        mock_store_class,
        mock_invalidator_class,
        mock_env,
        mock_context
    ):
        """Test that a fetch failure returns 500 and skips storage and purge."""
        mock_builder_class.return_value.build.side_effect = FetchHttpError(502)

        response = lambda_handler(SCHEDULED_EVENT, mock_context)

        assert response['statusCode'] == 500
        body = json.loads(response['body'])
        assert body['ok'] is False
        assert '502' in body['error']
        assert body['error_type'] == 'FetchHttpError'

        assert not mock_store_class.return_value.put_payload.called
        assert not mock_invalidator_class.return_value.purge.called

    @patch('lambda_function.CacheInvalidator')
    @patch('lambda_function.PayloadStore')
    @patch('lambda_function.PayloadBuilder')
    def test_store_failure(
        self,
        mock_builder_class,
        mock_store_class,
        mock_invalidator_class,
        mock_env,
        mock_context,
        sample_payload
    ):
        mock_builder_class.return_value.build.return_value = sample_payload
        mock_store_class.return_value.put_payload.side_effect = Exception('DynamoDB error')

        response = lambda_handler(SCHEDULED_EVENT, mock_context)

        assert response['statusCode'] == 500
        assert 'DynamoDB error' in json.loads(response['body'])['error']
        assert not mock_invalidator_class.return_value.purge.called

    @pytest.mark.parametrize('method', ['GET', 'POST'])
    @patch('lambda_function.CacheInvalidator')
    @patch('lambda_function.PayloadStore')
    @patch('lambda_function.PayloadBuilder')
    def test_manual_refresh_methods(
        self,
        mock_builder_class,
        mock_store_class,
        mock_invalidator_class,
        method,
        mock_env,
        mock_context,
        sample_payload
    ):
        mock_builder_class.return_value.build.return_value = sample_payload

        response = lambda_handler({'httpMethod': method, 'path': '/api/refresh'}, mock_context)

        assert response['statusCode'] == 200

    @patch('lambda_function.PayloadBuilder')
    def test_method_not_allowed(self, mock_builder_class, mock_env, mock_context):
        response = lambda_handler(
            {'requestContext': {'http': {'method': 'DELETE'}}},
            mock_context
        )

        assert response['statusCode'] == 405
        assert response['headers'] == {'Content-Type': 'application/json; charset=utf-8'}
        mock_builder_class.assert_not_called()

    @pytest.mark.parametrize('event', [
        {'requestContext': None},
        {'requestContext': {'http': None}},
        {'requestContext': {'http': {'method': None}}},
        {'httpMethod': None},
    ])
    @patch('lambda_function.CacheInvalidator')
    @patch('lambda_function.PayloadStore')
    @patch('lambda_function.PayloadBuilder')
    def test_null_request_context_treated_as_refresh(
        self,
        mock_builder_class,
        mock_store_class,
        mock_invalidator_class,
        event,
        mock_env,
        mock_context,
        sample_payload
    ):
        """Test that null request fields mean no HTTP method rather than a crash."""
        mock_builder_class.return_value.build.return_value = sample_payload

        response = lambda_handler(event, mock_context)

        assert response['statusCode'] == 200
        mock_store_class.return_value.put_payload.assert_called_once_with(sample_payload)

    @patch('lambda_function.CacheInvalidator')
    @patch('lambda_function.PayloadStore')
    @patch('lambda_function.PayloadBuilder')
    @patch('lambda_function.setup_logging')
    def test_logging_output(
        self,
        mock_setup_logging,
        mock_builder_class,
        mock_store_class,
        mock_invalidator_class,
        mock_env,
        mock_context,
        sample_payload,
        caplog
    ):
        """Test that the refresh logs each stage with the trigger prefix."""
        mock_builder_class.return_value.build.return_value = sample_payload

        with caplog.at_level(logging.INFO, logger='lambda_function'):
            response = lambda_handler(SCHEDULED_EVENT, mock_context)

        assert response['statusCode'] == 200
        log_messages = [record.message for record in caplog.records]
        assert any('[scheduled-refresh] Starting events refresh' in msg for msg in log_messages)
        assert any('Fetched 2 events for today, 1 for tomorrow' in msg for msg in log_messages)
        assert any('Payload stored successfully' in msg for msg in log_messages)
        assert any('Purging CDN cache' in msg for msg in log_messages)
        assert any('Completed successfully' in msg for msg in log_messages)


class TestRefreshEvents:
    """Test cases for the shared refresh sequence."""

    def test_runs_build_store_purge_in_order(self, sample_payload):
        calls = Mock()
        calls.builder.build.return_value = sample_payload

        result = refresh_events(calls.builder, calls.store, calls.invalidator, 'manual-refresh')

        assert result.payload is sample_payload
        assert result.duration_ms >= 0
        assert [name for name, _, _ in calls.mock_calls] == [
            'builder.build',
            'store.put_payload',
            'invalidator.purge',
        ]


class TestEventsHandler:
    """Test cases for the events read handler."""

    @patch('lambda_function.PayloadStore')
    def test_returns_cached_payload(self, mock_store_class, mock_env, mock_context, sample_payload):
        mock_store_class.return_value.get_payload.return_value = sample_payload

        response = events_handler({'httpMethod': 'GET'}, mock_context)

        assert response['statusCode'] == 200
        assert json.loads(response['body']) == sample_payload.to_dict()
        assert response['headers']['Cache-Tag'] == 'events-data'
        assert 's-maxage=43200' in response['headers']['Cache-Control']

    @patch('lambda_function.PayloadStore')
    def test_not_populated_yet(self, mock_store_class, mock_env, mock_context):
        mock_store_class.return_value.get_payload.return_value = None

        response = events_handler({'httpMethod': 'GET'}, mock_context)

        assert response['statusCode'] == 503
        body = json.loads(response['body'])
        assert body == {'ok': False, 'message': 'No events cached yet. Try again soon.'}

    @patch('lambda_function.PayloadStore')
    def test_store_error_reports_unavailable(self, mock_store_class, mock_env, mock_context):
        mock_store_class.return_value.get_payload.side_effect = Exception('DynamoDB error')

        response = events_handler({'httpMethod': 'GET'}, mock_context)

        assert response['statusCode'] == 503
        assert 'DynamoDB error' not in response['body']


class TestSetupLogging:
    """Test cases for logging setup."""

    def test_setup_logging_default_level(self):
        setup_logging()
        assert logging.getLogger().level == logging.INFO

    def test_setup_logging_debug_level(self):
        setup_logging('DEBUG')
        assert logging.getLogger().level == logging.DEBUG

    def test_setup_logging_unknown_level_falls_back_to_info(self):
        setup_logging('CHATTY')
        assert logging.getLogger().level == logging.INFO

    def test_json_formatter_includes_extra_fields(self):
        record = logging.LogRecord(
            'lambda_function', logging.INFO, __file__, 1, 'Refreshed', None, None
        )
        record.trigger = 'scheduled-refresh'
        record.duration_ms = 120

        data = json.loads(JsonFormatter().format(record))

        assert data['message'] == 'Refreshed'
        assert data['level'] == 'INFO'
        assert data['trigger'] == 'scheduled-refresh'
        assert data['duration_ms'] == 120
        assert 'events_today' not in data
