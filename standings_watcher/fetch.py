"""
Fetch module for the Standings Watcher.

This module retrieves the standings page from the configured endpoint with
proper error handling, bounded retries, and exponential backoff on timeouts.
"""

import time
from dataclasses import dataclass
from typing import Dict, Optional
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from standings_watcher.utils import (
    DEFAULT_BACKOFF_BASE,
    DEFAULT_HTTP_HEADERS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_REQUEST_TIMEOUT,
    get_logger,
)


# Module logger
logger = get_logger("fetch")

# Gateway errors the adapter retries on its own before we see the response
TRANSIENT_STATUS_CODES = [502, 503, 504]


class NetworkError(Exception):
    """Raised when the standings page cannot be retrieved."""

    def __init__(self, message: str, status_code: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class FetchTimeoutError(NetworkError):
    """Raised when every attempt within the retry budget timed out."""


@dataclass
class FetchResult:
    """
    Represents a successfully fetched page.

    Attributes:
        source_url: The URL that was fetched.
        html_content: Raw HTML content.
        status_code: HTTP status code of the final response.
        attempts: Number of requests issued (1 when no retry was needed).
    """
    source_url: str
    html_content: str
    status_code: int
    attempts: int = 1


def create_session(
    headers: Optional[Dict[str, str]] = None,
    transient_retries: int = DEFAULT_MAX_RETRIES
) -> requests.Session:
    """
    Create a requests session with browser-like headers.

    The mounted adapter retries gateway errors (502/503/504) a few times;
    timeouts are not retried here, fetch_standings_page owns that loop.

    Args:
        headers: Extra headers merged over the defaults.
        transient_retries: Retry budget for gateway errors.

    Returns:
        Configured requests.Session instance.
    """
    session = requests.Session()

    retry_strategy = Retry(
        total=transient_retries,
        connect=0,
        read=0,
        status=transient_retries,
        backoff_factor=1,
        status_forcelist=TRANSIENT_STATUS_CODES,
        allowed_methods=["GET", "HEAD"],
        raise_on_status=False
    )

    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    session.headers.update(DEFAULT_HTTP_HEADERS)
    if headers:
        session.headers.update(headers)

    return session


def validate_url(url: str) -> bool:
    """True for an absolute http(s) URL with a host."""
    try:
        parsed = urlparse(url)
        return parsed.scheme in ("http", "https") and bool(parsed.netloc)
    except Exception:
        return False


def backoff_delay(attempt: int, base: float = DEFAULT_BACKOFF_BASE) -> float:
    """Delay before retry number `attempt` (1-based): base ** attempt seconds."""
    return base ** attempt


def fetch_standings_page(
    url: str,
    headers: Optional[Dict[str, str]] = None,
    timeout: float = DEFAULT_REQUEST_TIMEOUT,
    max_retries: int = DEFAULT_MAX_RETRIES,
    backoff_base: float = DEFAULT_BACKOFF_BASE,
    session: Optional[requests.Session] = None
) -> FetchResult:
    """
    Perform a single logical GET of the standings page.

    A timed out request is retried up to max_retries times, sleeping
    backoff_base ** attempt seconds before each retry.

    Args:
        url: Standings page URL.
        headers: Extra request headers (merged over the defaults).
        timeout: Per-request timeout in seconds.
        max_retries: Number of retries allowed after a timeout.
        backoff_base: Base of the exponential backoff.
        session: Session to use; a new one is created (and closed) if None.

    Returns:
        FetchResult for the successful response.

    Raises:
        FetchTimeoutError: If the retry budget is exhausted by timeouts.
        NetworkError: On a non-success status, an invalid URL, or a
                      connection failure.
    """
    if not validate_url(url):
        logger.warning(f"Invalid URL format: {url}")
        raise NetworkError(f"Invalid URL format: {url}", url=url)

    owns_session = session is None
    if owns_session:
        session = create_session(headers=headers)
        request_headers = None
    else:
        request_headers = headers

    logger.info(f"Fetching standings from {url}")

    attempt = 0
    try:
        while True:
            try:
                response = session.get(url, headers=request_headers, timeout=timeout)
                break

            except requests.exceptions.Timeout as e:
                attempt += 1
                if attempt > max_retries:
                    logger.error(f"Max retries reached fetching {url}: {e}")
                    raise FetchTimeoutError(
                        f"Request timed out after {max_retries} retries: {e}",
                        url=url
                    ) from e

                delay = backoff_delay(attempt, backoff_base)
                logger.warning(
                    f"Request timeout, retrying ({attempt}/{max_retries}) in {delay:.1f}s: {e}"
                )
                time.sleep(delay)

            except requests.exceptions.ConnectionError as e:
                logger.warning(f"Connection error for {url}: {e}")
                raise NetworkError(f"Connection error: {e}", url=url) from e

            except requests.exceptions.RequestException as e:
                logger.error(f"Request exception for {url}: {e}")
                raise NetworkError(f"Request failed: {e}", url=url) from e
    finally:
        if owns_session:
            session.close()

    if not response.ok:
        reason = getattr(response, "reason", "") or ""
        logger.warning(f"HTTP {response.status_code} for {url}")
        raise NetworkError(
            f"HTTP request failed with status {response.status_code}: {reason}".rstrip(": "),
            status_code=response.status_code,
            url=url
        )

    logger.info(f"Successfully fetched {url} ({len(response.text)} bytes)")

    return FetchResult(
        source_url=url,
        html_content=response.text,
        status_code=response.status_code,
        attempts=attempt + 1
    )
