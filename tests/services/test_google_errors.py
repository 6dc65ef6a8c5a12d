"""Tests for Google API error parsing and retry helpers."""

from __future__ import annotations

from types import SimpleNamespace

import pytest
from googleapiclient.errors import HttpError  # type: ignore[import-untyped]

from venue_indexer.services.google_errors import (
    AuthenticationError,
    GoogleAPIError,
    InvalidURLError,
    QuotaExceededError,
    execute_with_google_retry,
    is_retryable_google_error,
    parse_google_http_error,
)

SLEEP_PATH = "venue_indexer.services.google_errors.sleep"


def _http_error(status: int, reason: str, content: str) -> HttpError:
    response = SimpleNamespace(status=status, reason=reason)
    return HttpError(response, content.encode("utf-8"), uri=None)


def test_parse_google_http_error_extracts_quota_details() -> None:
    error = _http_error(
        429,
        "Too Many Requests",
        '{"error": {"code": 429, "message": "Quota exceeded for quota metric", '
        '"errors": [{"reason": "rateLimitExceeded"}], "status": "RESOURCE_EXHAUSTED"}}',
    )

    parsed_error = parse_google_http_error(error, operation="urlNotifications.publish")

    assert isinstance(parsed_error, QuotaExceededError)
    assert parsed_error.error_code == "QUOTA_EXCEEDED"
    assert parsed_error.status_code == 429
    assert parsed_error.message == "Quota exceeded for quota metric"
    assert parsed_error.reasons == frozenset(
        {"ratelimitexceeded", "resource_exhausted"}
    )
    assert parsed_error.operation == "urlNotifications.publish"


def test_parse_google_http_error_classifies_auth_and_invalid_url() -> None:
    auth_error = _http_error(
        403,
        "Forbidden",
        '{"error": {"message": "Permission denied. Failed to verify the URL '
        'ownership.", "errors": [{"reason": "forbidden"}]}}',
    )
    invalid_url_error = _http_error(
        400,
        "Bad Request",
        '{"error": {"message": "Invalid value at url", '
        '"errors": [{"reason": "invalidArgument"}]}}',
    )

    assert isinstance(parse_google_http_error(auth_error), AuthenticationError)
    assert isinstance(parse_google_http_error(invalid_url_error), InvalidURLError)


def test_parse_google_http_error_tolerates_non_json_body() -> None:
    parsed_error = parse_google_http_error(
        _http_error(502, "Bad Gateway", "<html>upstream</html>")
    )

    assert type(parsed_error) is GoogleAPIError
    assert parsed_error.status_code == 502
    assert parsed_error.reasons == frozenset()
    assert is_retryable_google_error(parsed_error) is True


def test_execute_with_google_retry_retries_transient_errors(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    delays: list[float] = []
    monkeypatch.setattr(SLEEP_PATH, delays.append)
    attempts = {"count": 0}

    def flaky_request() -> str:
        attempts["count"] += 1
        if attempts["count"] < 3:
            raise _http_error(
                503,
                "Service Unavailable",
                '{"error": {"message": "Backend error", '
                '"errors": [{"reason": "backendError"}]}}',
            )
        return "ok"

    result = execute_with_google_retry(
        flaky_request, operation="test", max_retries=2, base_delay_seconds=0.5
    )

    assert result == "ok"
    assert attempts["count"] == 3
    assert delays == [0.5, 1.0]


def test_execute_with_google_retry_fails_fast_for_non_retryable_error(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(SLEEP_PATH, lambda _: None)
    attempts = {"count": 0}

    def request() -> str:
        attempts["count"] += 1
        raise _http_error(
            400,
            "Bad Request",
            '{"error": {"message": "Invalid argument", '
            '"errors": [{"reason": "invalidArgument"}]}}',
        )

    with pytest.raises(GoogleAPIError) as error_info:
        execute_with_google_retry(request, operation="test", max_retries=2)

    assert attempts["count"] == 1
    assert isinstance(error_info.value.__cause__, HttpError)


def test_execute_with_google_retry_gives_up_after_max_retries(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(SLEEP_PATH, lambda _: None)
    attempts = {"count": 0}

    def request() -> str:
        attempts["count"] += 1
        raise _http_error(500, "Internal Server Error", "{}")

    with pytest.raises(GoogleAPIError):
        execute_with_google_retry(request, operation="test", max_retries=1)

    assert attempts["count"] == 2


def test_execute_with_google_retry_rejects_negative_retries() -> None:
    with pytest.raises(ValueError):
        execute_with_google_retry(lambda: None, operation="test", max_retries=-1)


def test_is_retryable_google_error_returns_expected_value() -> None:
    assert (
        is_retryable_google_error(
            GoogleAPIError("Backend error", status_code=503, operation="publish")
        )
        is True
    )
    assert (
        is_retryable_google_error(
            QuotaExceededError("Quota exceeded", status_code=429)
        )
        is False
    )
    assert (
        is_retryable_google_error(InvalidURLError("Invalid URL", status_code=400))
        is False
    )
