"""Google Indexing API v3 client implementing the submission capability."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Protocol, cast
from urllib.parse import urlsplit

from googleapiclient.discovery import build  # type: ignore[import-untyped]

from venue_indexer.config import Settings
from venue_indexer.schemas.indexing import SubmissionAction
from venue_indexer.services.google_credentials import (
    GoogleCredentialsError,
    load_service_account_credentials,
)
from venue_indexer.services.google_errors import (
    GoogleAPIError,
    execute_with_google_retry,
)
from venue_indexer.services.submission_client import (
    DisabledSubmissionClient,
    SubmissionClient,
    SubmissionOutcome,
)

INDEXING_SCOPE = "https://www.googleapis.com/auth/indexing"
PUBLISH_OPERATION = "urlNotifications.publish"
_LOGGER = logging.getLogger("venue_indexer.google_api.indexing")


class _GoogleBuildCallable(Protocol):
    def __call__(
        self,
        service_name: str,
        version: str,
        *,
        credentials: Any,
        cache_discovery: bool,
    ) -> Any: ...


class GoogleIndexingClient:
    """Publishes URL notifications for one site through the Indexing API."""

    def __init__(
        self,
        *,
        credentials_path: str | Path,
        site_base_url: str,
        builder: _GoogleBuildCallable = build,
        max_retries: int = 3,
    ) -> None:
        self._credentials_path = str(Path(credentials_path).expanduser().resolve())
        self._site_host = (urlsplit(site_base_url).hostname or "").lower()
        self._builder = builder
        self._max_retries = max_retries
        self._service: Any | None = None

    @property
    def _indexing_service(self) -> Any:
        if self._service is None:
            credentials = load_service_account_credentials(
                self._credentials_path, scopes=[INDEXING_SCOPE]
            )
            self._service = self._builder(
                "indexing",
                "v3",
                credentials=credentials,
                cache_discovery=False,
            )
        return self._service

    def is_site_url(self, url: str) -> bool:
        """Only https URLs on the configured site host may be submitted."""

        parsed_url = urlsplit(url)
        hostname = (parsed_url.hostname or "").lower()
        if parsed_url.scheme != "https" or not hostname:
            return False
        return hostname == self._site_host or hostname.endswith(f".{self._site_host}")

    def submit_one_sync(
        self,
        url: str,
        action: SubmissionAction = SubmissionAction.URL_UPDATED,
    ) -> SubmissionOutcome:
        if not self.is_site_url(url):
            _LOGGER.warning(
                "google_api_invalid_url",
                extra={"url": url, "site_host": self._site_host},
            )
            return SubmissionOutcome.rejected(
                url,
                reason=f"URL must be an https URL on {self._site_host}",
                error_code="INVALID_URL",
            )

        try:
            response = execute_with_google_retry(
                lambda: cast(
                    dict[str, Any],
                    self._indexing_service.urlNotifications()
                    .publish(body={"url": url, "type": action.value})
                    .execute(),
                ),
                operation=PUBLISH_OPERATION,
                max_retries=self._max_retries,
            )
        except GoogleAPIError as error:
            return SubmissionOutcome.rejected(
                url,
                reason=error.message,
                error_code=error.error_code,
                http_status=error.status_code,
            )
        except GoogleCredentialsError as error:
            _LOGGER.error(
                "google_api_credentials_error",
                extra={"credentials_path": self._credentials_path},
            )
            return SubmissionOutcome.rejected(
                url, reason=str(error), error_code="AUTH_ERROR"
            )

        _LOGGER.debug(
            "google_api_url_published",
            extra={
                "url": url,
                "action": action.value,
                "metadata": response.get("urlNotificationMetadata", {}),
            },
        )
        return SubmissionOutcome(url=url, accepted=True, http_status=200)

    async def submit_one(
        self,
        url: str,
        action: SubmissionAction = SubmissionAction.URL_UPDATED,
    ) -> SubmissionOutcome:
        return await asyncio.to_thread(self.submit_one_sync, url, action)


def build_submission_client(settings: Settings) -> SubmissionClient:
    """Return the Indexing API client, or a disabled stand-in when unconfigured."""

    if not settings.GOOGLE_INDEXING_ENABLED:
        return DisabledSubmissionClient()
    if settings.GOOGLE_SERVICE_ACCOUNT_FILE is None:
        return DisabledSubmissionClient(
            "GOOGLE_SERVICE_ACCOUNT_FILE is not configured"
        )

    return GoogleIndexingClient(
        credentials_path=settings.GOOGLE_SERVICE_ACCOUNT_FILE,
        site_base_url=settings.SITE_BASE_URL,
    )


__all__ = [
    "GoogleIndexingClient",
    "INDEXING_SCOPE",
    "build_submission_client",
]
