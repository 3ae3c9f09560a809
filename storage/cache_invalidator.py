"""CloudFront cache purge for refreshed events data."""
import logging
import time
from typing import Any, Iterable, List, Optional

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

EVENTS_CACHE_TAG = 'events-data'
HOMEPAGE_CACHE_TAG = 'homepage'

# CloudFront invalidates by path, so each cache tag maps to the paths it covers
TAG_PATHS = {
    EVENTS_CACHE_TAG: ['/api/events'],
    HOMEPAGE_CACHE_TAG: ['/'],
}


class CacheInvalidator:
    """Issues CloudFront invalidations for cache tags."""

    def __init__(self, distribution_id: Optional[str], client: Optional[Any] = None):
        """
        Initialize the invalidator.

        Args:
            distribution_id: CloudFront distribution ID, or None to disable purging
            client: Optional boto3 CloudFront client
        """
        self.distribution_id = distribution_id
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client('cloudfront')
        return self._client

    def paths_for_tags(self, tags: Iterable[str]) -> List[str]:
        paths = []
        for tag in tags:
            for path in TAG_PATHS.get(tag, []):
                if path not in paths:
                    paths.append(path)
        return paths

    def purge(self, tags: Iterable[str]) -> Optional[str]:
        """
        Invalidate the paths behind the given cache tags.

        Args:
            tags: Cache tags (e.g. "events-data", "homepage")

        Returns:
            Invalidation ID, or None if purging is disabled or there is nothing to purge

        Raises:
            ClientError: If CloudFront rejects the invalidation
        """
        if not self.distribution_id:
            logger.info("No CloudFront distribution configured, skipping cache purge")
            return None

        paths = self.paths_for_tags(tags)
        if not paths:
            logger.info("No cache paths to purge")
            return None

        try:
            response = self.client.create_invalidation(
                DistributionId=self.distribution_id,
                InvalidationBatch={
                    'Paths': {'Quantity': len(paths), 'Items': paths},
                    'CallerReference': f"events-refresh-{time.time_ns()}"
                }
            )
        except ClientError as e:
            logger.error(f"Error creating CloudFront invalidation: {e}")
            raise

        invalidation_id = response['Invalidation']['Id']
        logger.info(f"Created CloudFront invalidation {invalidation_id} for {paths}")
        return invalidation_id
