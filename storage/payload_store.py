"""DynamoDB store for the latest events payload."""
import json
import logging
import time
from typing import Optional

import boto3
from botocore.exceptions import ClientError

from processor.models import EventsPayload

logger = logging.getLogger(__name__)

EVENTS_STORE_KEY = 'events'


class PayloadStore:
    """Keeps the latest EventsPayload as a single DynamoDB item."""

    def __init__(self, table_name: str, store_key: str = EVENTS_STORE_KEY):
        """
        Initialize DynamoDB table reference.

        Args:
            table_name: Name of the DynamoDB table (partition key: store_key)
            store_key: Item key holding the payload (default: "events")
        """
        self.table_name = table_name
        self.store_key = store_key
        self.dynamodb = boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized PayloadStore for table: {table_name}")

    def put_payload(self, payload: EventsPayload) -> None:
        """
        Overwrite the stored payload.

        Concurrent writers race; the last write wins.

        Args:
            payload: Payload to store

        Raises:
            ClientError: If the write fails
        """
        item = {
            'store_key': self.store_key,
            'payload': json.dumps(payload.to_dict()),
            'fetched_at': payload.fetched_at,
            'last_updated': int(time.time())
        }

        try:
            self.table.put_item(Item=item)
        except ClientError as e:
            logger.error(f"Error writing payload to DynamoDB: {e}")
            raise

        logger.info(
            f"Stored payload fetched at {payload.fetched_at} "
            f"({len(payload.today_events)} today, {len(payload.tomorrow_events)} tomorrow)"
        )

    def get_payload(self) -> Optional[EventsPayload]:
        """
        Read the stored payload.

        Returns:
            EventsPayload, or None if nothing has been stored yet or the
            stored item cannot be decoded

        Raises:
            ClientError: If the read fails
        """
        try:
            response = self.table.get_item(Key={'store_key': self.store_key})
        except ClientError as e:
            logger.error(f"Error reading payload from DynamoDB: {e}")
            raise

        item = response.get('Item')
        if not item:
            logger.info("No payload stored yet")
            return None

        return self._item_to_payload(item)

    def _item_to_payload(self, item: dict) -> Optional[EventsPayload]:
        try:
            return EventsPayload.from_dict(json.loads(item['payload']))
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Failed to decode stored payload: {e}")
            return None
