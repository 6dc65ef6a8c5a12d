"""Google API error classification and transient retry helper."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from time import sleep
from typing import Any, TypeVar, cast

from googleapiclient.errors import HttpError  # type: ignore[import-untyped]

TRANSIENT_HTTP_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})
TRANSIENT_ERROR_REASONS = frozenset(
    {
        "backenderror",
        "internalerror",
        "ratelimitexceeded",
        "userratelimitexceeded",
    }
)
QUOTA_ERROR_REASONS = frozenset(
    {"quotaexceeded", "dailylimitexceeded", "resource_exhausted"}
)
AUTH_ERROR_REASONS = frozenset(
    {"autherror", "forbidden", "insufficientpermissions", "unauthorized"}
)

_LOGGER = logging.getLogger("venue_indexer.google_api")

R = TypeVar("R")


class GoogleAPIError(Exception):
    """Google API failure with the parsed response context."""

    error_code = "API_ERROR"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        reasons: frozenset[str] = frozenset(),
        operation: str | None = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.reasons = reasons
        self.operation = operation
        super().__init__(message)


class QuotaExceededError(GoogleAPIError):
    """The remote daily quota is used up."""

    error_code = "QUOTA_EXCEEDED"


class AuthenticationError(GoogleAPIError):
    """Credentials were rejected or lack the indexing scope."""

    error_code = "AUTH_ERROR"


class InvalidURLError(GoogleAPIError):
    """The URL was refused as malformed or not owned by the property."""

    error_code = "INVALID_URL"


def _status_code(error: HttpError) -> int | None:
    response = getattr(error, "resp", None)
    if response is None:
        return None
    return cast(int | None, getattr(response, "status", None))


def _error_details(error: HttpError) -> dict[str, Any]:
    content = getattr(error, "content", b"")
    text = (
        content.decode("utf-8", errors="replace")
        if isinstance(content, bytes)
        else str(content or "")
    )
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return {}

    if not isinstance(payload, dict):
        return {}
    details = payload.get("error", payload)
    return details if isinstance(details, dict) else {}


def _reasons(details: dict[str, Any]) -> frozenset[str]:
    reasons: set[str] = set()
    status_text = details.get("status")
    if isinstance(status_text, str):
        reasons.add(status_text.strip().lower())

    for item in details.get("errors") or []:
        if isinstance(item, dict) and isinstance(item.get("reason"), str):
            reasons.add(item["reason"].strip().lower())
    return frozenset(reasons)


def parse_google_http_error(
    error: HttpError, *, operation: str | None = None
) -> GoogleAPIError:
    """Translate an ``HttpError`` into the matching ``GoogleAPIError``."""

    status_code = _status_code(error)
    details = _error_details(error)
    reasons = _reasons(details)
    message = str(details.get("message") or error)
    lowered_message = message.lower()

    error_type: type[GoogleAPIError] = GoogleAPIError
    if reasons & QUOTA_ERROR_REASONS or "quota" in lowered_message:
        error_type = QuotaExceededError
    elif status_code in {401, 403} and (
        not reasons or reasons & AUTH_ERROR_REASONS or "permission" in lowered_message
    ):
        error_type = AuthenticationError
    elif status_code in {400, 422} and "url" in lowered_message:
        error_type = InvalidURLError

    parsed_error = error_type(
        message,
        status_code=status_code,
        reasons=reasons,
        operation=operation,
    )
    _LOGGER.warning(
        "google_api_http_error",
        extra={
            "operation": operation,
            "status_code": status_code,
            "error_type": error_type.__name__,
            "error_message": message,
        },
    )
    return parsed_error


def is_retryable_google_error(error: GoogleAPIError) -> bool:
    if isinstance(error, (QuotaExceededError, AuthenticationError, InvalidURLError)):
        return False
    if error.status_code in TRANSIENT_HTTP_STATUS_CODES:
        return True
    return bool(error.reasons & TRANSIENT_ERROR_REASONS)


def execute_with_google_retry(
    request: Callable[[], R],
    *,
    operation: str,
    max_retries: int = 3,
    base_delay_seconds: float = 0.1,
) -> R:
    """Run a blocking Google API call, retrying transient failures."""

    if max_retries < 0:
        raise ValueError("max_retries must be zero or greater")

    attempt = 0
    while True:
        try:
            return request()
        except HttpError as error:
            parsed_error = parse_google_http_error(error, operation=operation)
            if attempt >= max_retries or not is_retryable_google_error(parsed_error):
                raise parsed_error from error

        _LOGGER.info(
            "google_api_retrying",
            extra={
                "operation": operation,
                "attempt": attempt + 1,
                "max_retries": max_retries,
            },
        )
        sleep(base_delay_seconds * (2**attempt))
        attempt += 1


__all__ = [
    "AuthenticationError",
    "GoogleAPIError",
    "InvalidURLError",
    "QuotaExceededError",
    "execute_with_google_retry",
    "is_retryable_google_error",
    "parse_google_http_error",
]
