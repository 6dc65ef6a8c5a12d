"""Async sitemap download with retries on transient failures."""

from __future__ import annotations

import asyncio
import gzip
import logging
from dataclasses import dataclass
from typing import Final
from urllib.parse import urlsplit

import httpx

from venue_indexer.config import get_settings

DEFAULT_TIMEOUT_SECONDS: Final[float] = 30.0
DEFAULT_MAX_REDIRECTS: Final[int] = 5
DEFAULT_MAX_RETRIES: Final[int] = 3
DEFAULT_BACKOFF_BASE_SECONDS: Final[float] = 0.5
TRANSIENT_HTTP_STATUS_CODES: Final[frozenset[int]] = frozenset(
    {408, 425, 429, 500, 502, 503, 504}
)
SITEMAP_ACCEPT_HEADER: Final[str] = "application/xml,text/xml;q=0.9,*/*;q=0.8"
_GZIP_MAGIC: Final[bytes] = b"\x1f\x8b"

_LOGGER = logging.getLogger("venue_indexer.sitemap")


@dataclass(slots=True, frozen=True)
class SitemapFetchResult:
    """Body and response metadata of a fetched sitemap."""

    content: bytes
    status_code: int
    content_type: str | None
    url: str


class SitemapFetchError(Exception):
    """Sitemap could not be downloaded."""


class SitemapFetchHTTPError(SitemapFetchError):
    """Sitemap request ended with an unrecoverable HTTP status."""

    def __init__(self, url: str, status_code: int) -> None:
        self.url = url
        self.status_code = status_code
        super().__init__(f"Failed to fetch sitemap {url!r}: HTTP {status_code}")


def _retry_delay_seconds(attempt_index: int, backoff_base_seconds: float) -> float:
    return float(backoff_base_seconds * (2**attempt_index))


def _sanitize_sitemap_url(url: str) -> str:
    split_url = urlsplit(url)
    host = split_url.netloc.rsplit("@", maxsplit=1)[-1]
    return f"{host}{split_url.path or '/'}".strip() or "sitemap"


def _maybe_decompress(url: str, content: bytes) -> bytes:
    if not content.startswith(_GZIP_MAGIC):
        return content
    try:
        return gzip.decompress(content)
    except (OSError, EOFError) as error:
        raise SitemapFetchError(
            f"Failed to decompress sitemap {url!r}: {error}"
        ) from error


async def fetch_sitemap(
    url: str,
    *,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    max_redirects: int = DEFAULT_MAX_REDIRECTS,
    max_retries: int = DEFAULT_MAX_RETRIES,
    backoff_base_seconds: float = DEFAULT_BACKOFF_BASE_SECONDS,
    user_agent: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> SitemapFetchResult:
    """Fetch a sitemap, retrying timeouts, network errors and transient statuses."""

    if timeout_seconds <= 0:
        raise ValueError("timeout_seconds must be greater than zero")
    if max_retries < 0:
        raise ValueError("max_retries must be zero or greater")
    if backoff_base_seconds < 0:
        raise ValueError("backoff_base_seconds must be zero or greater")

    headers = {
        "User-Agent": user_agent or get_settings().OUTBOUND_HTTP_USER_AGENT,
        "Accept": SITEMAP_ACCEPT_HEADER,
    }
    sanitized_url = _sanitize_sitemap_url(url)

    async with httpx.AsyncClient(
        timeout=httpx.Timeout(timeout_seconds),
        follow_redirects=True,
        max_redirects=max_redirects,
        transport=transport,
    ) as client:
        for attempt in range(max_retries + 1):
            try:
                response = await client.get(url, headers=headers)
                response.raise_for_status()
                return SitemapFetchResult(
                    content=_maybe_decompress(url, response.content),
                    status_code=response.status_code,
                    content_type=response.headers.get("content-type"),
                    url=str(response.url),
                )
            except httpx.TimeoutException as error:
                _LOGGER.warning(
                    "sitemap_fetch_timeout",
                    extra={
                        "sitemap_url_sanitized": sanitized_url,
                        "attempt": attempt + 1,
                        "max_attempts": max_retries + 1,
                    },
                )
                if attempt == max_retries:
                    raise SitemapFetchError(
                        f"Timed out fetching sitemap {url!r} "
                        f"after {max_retries + 1} attempts"
                    ) from error
            except httpx.NetworkError as error:
                _LOGGER.warning(
                    "sitemap_fetch_network_error",
                    extra={
                        "sitemap_url_sanitized": sanitized_url,
                        "attempt": attempt + 1,
                        "max_attempts": max_retries + 1,
                        "exception_class": error.__class__.__name__,
                    },
                )
                if attempt == max_retries:
                    raise SitemapFetchError(
                        f"Network error fetching sitemap {url!r}: {error}"
                    ) from error
            except httpx.HTTPStatusError as error:
                status_code = error.response.status_code
                retryable = status_code in TRANSIENT_HTTP_STATUS_CODES
                _LOGGER.warning(
                    "sitemap_fetch_http_status",
                    extra={
                        "sitemap_url_sanitized": sanitized_url,
                        "attempt": attempt + 1,
                        "http_status": status_code,
                        "retryable": retryable,
                    },
                )
                if not retryable or attempt == max_retries:
                    raise SitemapFetchHTTPError(
                        str(error.response.url), status_code
                    ) from error
            except httpx.HTTPError as error:
                _LOGGER.error(
                    "sitemap_fetch_http_error",
                    extra={
                        "sitemap_url_sanitized": sanitized_url,
                        "exception_class": error.__class__.__name__,
                    },
                )
                raise SitemapFetchError(
                    f"HTTP error while fetching sitemap {url!r}: {error}"
                ) from error

            await asyncio.sleep(_retry_delay_seconds(attempt, backoff_base_seconds))

    raise SitemapFetchError(f"Unexpected failure while fetching sitemap {url!r}")


__all__ = [
    "SitemapFetchError",
    "SitemapFetchHTTPError",
    "SitemapFetchResult",
    "TRANSIENT_HTTP_STATUS_CODES",
    "fetch_sitemap",
]
