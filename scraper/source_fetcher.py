"""Fetcher for the events listing with a markdown proxy fallback."""
import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import requests
from urllib3.exceptions import HTTPError

from processor.errors import FetchError, FetchHttpError, FetchTimeout, UnexpectedFormat
from processor.models import HTML_FORMAT, MARKDOWN_FORMAT, SourceDocument

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_URL = 'https://flagpole.com/events/list/?tribe_eventcategory%5B0%5D=13592'
DEFAULT_FALLBACK_URL = (
    'https://r.jina.ai/http://flagpole.com/events/list/?tribe_eventcategory%5B0%5D=13592'
)
DEFAULT_TIMEOUT_SECONDS = 15
READ_CHUNK_SIZE = 64 * 1024

# Substrings that mark an anti-bot interstitial served with a 200 status
CHALLENGE_MARKERS = (
    'Just a moment',
    'cf-chl',
    'Enable JavaScript and cookies',
)

BROWSER_HEADERS = {
    'Accept': (
        'text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,'
        'image/webp,image/apng,*/*;q=0.8,application/signed-exchange;v=b3;q=0.7'
    ),
    'Accept-Language': 'en-US,en;q=0.9',
    'Cache-Control': 'no-cache',
    'Pragma': 'no-cache',
    'Priority': 'u=0, i',
    'Sec-CH-UA': '"Not(A:Brand";v="8", "Chromium";v="144", "Google Chrome";v="144"',
    'Sec-CH-UA-Mobile': '?0',
    'Sec-CH-UA-Platform': '"macOS"',
    'Sec-Fetch-Dest': 'document',
    'Sec-Fetch-Mode': 'navigate',
    'Sec-Fetch-Site': 'none',
    'Sec-Fetch-User': '?1',
    'Upgrade-Insecure-Requests': '1',
    'User-Agent': (
        'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 '
        '(KHTML, like Gecko) Chrome/144.0.0.0 Safari/537.36'
    ),
}


@dataclass(frozen=True)
class SourceConfig:
    """Where and how to fetch the events listing."""
    source_url: str = DEFAULT_SOURCE_URL
    fallback_url: str = DEFAULT_FALLBACK_URL
    cookie: Optional[str] = None
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    @classmethod
    def from_env(cls) -> 'SourceConfig':
        """
        Build configuration from environment variables.

        Reads SOURCE_URL, FALLBACK_URL, SOURCE_COOKIE and FETCH_TIMEOUT_SECONDS.
        """
        return cls(
            source_url=os.environ.get('SOURCE_URL', DEFAULT_SOURCE_URL),
            fallback_url=os.environ.get('FALLBACK_URL', DEFAULT_FALLBACK_URL),
            cookie=os.environ.get('SOURCE_COOKIE') or None,
            timeout_seconds=float(
                os.environ.get('FETCH_TIMEOUT_SECONDS', str(DEFAULT_TIMEOUT_SECONDS))
            )
        )


def build_browser_headers(cookie: Optional[str] = None) -> Dict[str, str]:
    headers = dict(BROWSER_HEADERS)
    if cookie:
        headers['Cookie'] = cookie
    return headers


def is_challenge_page(content: str) -> bool:
    return any(marker in content for marker in CHALLENGE_MARKERS)


class SourceFetcher:
    """Fetches the listing as HTML, falling back to the markdown proxy."""

    def __init__(self, config: SourceConfig, session: Optional[requests.Session] = None):
        """
        Initialize the fetcher.

        Args:
            config: Source URLs, cookie and timeout
            session: Optional requests session (default: module-level requests)
        """
        self.config = config
        self.http = session or requests
        self.headers = build_browser_headers(config.cookie)

    def fetch(self) -> SourceDocument:
        """
        Fetch the events listing.

        The primary URL is tried first. A timeout, transport error, non-2xx
        status or bot challenge page sends the request to the fallback URL.

        Returns:
            SourceDocument tagged "html" (primary) or "markdown" (fallback)

        Raises:
            FetchTimeout: If the fallback request times out
            FetchHttpError: If the fallback answers with a non-2xx status
            FetchError: If the fallback request fails for any other reason
        """
        html = self._fetch_primary()
        if html is not None:
            logger.info(f"Fetched HTML source ({len(html)} bytes)")
            return SourceDocument(format=HTML_FORMAT, body=html)

        markdown = self._fetch_fallback()
        logger.info(f"Fetched markdown source ({len(markdown)} bytes)")
        return SourceDocument(format=MARKDOWN_FORMAT, body=markdown)

    def fetch_markdown(self) -> str:
        """
        Fetch the listing and require the markdown rendering.

        Raises:
            UnexpectedFormat: If the primary HTML came back instead
        """
        document = self.fetch()
        if document.format != MARKDOWN_FORMAT:
            raise UnexpectedFormat('Expected markdown response but received HTML')
        return document.body

    def _get(self, url: str) -> Tuple[int, str]:
        """
        GET a URL and read its body within the configured total deadline.

        The requests timeout only bounds the connect and each socket read, so
        the body is streamed and a watchdog shuts the socket down once the
        deadline passes.

        Args:
            url: URL to fetch

        Returns:
            Tuple of (status_code, body text); the body is empty for non-2xx

        Raises:
            requests.Timeout: If the request does not complete before the deadline
            requests.RequestException: If the request fails for any other reason
        """
        timeout = self.config.timeout_seconds
        deadline = time.monotonic() + timeout
        response = self.http.get(
            url,
            headers=self.headers,
            timeout=timeout,
            allow_redirects=True,
            stream=True
        )

        watchdog = threading.Timer(
            max(deadline - time.monotonic(), 0),
            _abort_read,
            args=(response,)
        )
        watchdog.daemon = True
        watchdog.start()

        try:
            if not 200 <= response.status_code < 300:
                return response.status_code, ''

            chunks = []
            while True:
                try:
                    chunk = response.raw.read1(READ_CHUNK_SIZE, decode_content=True)
                except (HTTPError, OSError) as e:
                    if time.monotonic() >= deadline:
                        raise requests.Timeout(f"Read of {url} exceeded {timeout}s") from e
                    raise requests.ConnectionError(f"Read of {url} failed: {e}") from e

                if time.monotonic() >= deadline:
                    raise requests.Timeout(f"Read of {url} exceeded {timeout}s")
                if not chunk:
                    break
                chunks.append(chunk)
        finally:
            watchdog.cancel()
            response.close()

        body = b''.join(chunks)
        return response.status_code, body.decode(response.encoding or 'utf-8', errors='replace')

    def _fetch_primary(self) -> Optional[str]:
        """Return the primary HTML, or None when the attempt is unusable."""
        url = self.config.source_url
        try:
            status_code, text = self._get(url)
        except requests.Timeout:
            logger.warning(
                f"Primary source timed out after {self.config.timeout_seconds}s, "
                f"using fallback"
            )
            return None
        except requests.RequestException as e:
            logger.warning(f"Primary source request failed: {e}. Using fallback")
            return None

        if not 200 <= status_code < 300:
            logger.warning(f"Primary source returned HTTP {status_code}, using fallback")
            return None

        if is_challenge_page(text):
            logger.warning("Primary source returned a bot challenge page, using fallback")
            return None

        return text

    def _fetch_fallback(self) -> str:
        url = self.config.fallback_url
        try:
            status_code, text = self._get(url)
        except requests.Timeout as e:
            logger.error(f"Fallback source timed out after {self.config.timeout_seconds}s")
            raise FetchTimeout(f"Timed out fetching {url}") from e
        except requests.RequestException as e:
            logger.error(f"Fallback source request failed: {e}")
            raise FetchError(f"Failed to fetch {url}: {e}") from e

        if not 200 <= status_code < 300:
            logger.error(f"Fallback source returned HTTP {status_code}")
            raise FetchHttpError(status_code, url=url)

        return text


def _abort_read(response: requests.Response) -> None:
    """Wake a read blocked on the response socket."""
    try:
        response.raw.shutdown()
    except (ValueError, OSError):
        # Stream already closed or not backed by a socket
        pass
