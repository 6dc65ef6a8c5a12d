"""Service account credentials for the Indexing API.

Loaded credentials are cached per key file and scope set. The cache key
includes the file's modification time, so a rotated key file is picked up
on the next load without restarting the process.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from threading import Lock
from typing import Any, cast

from google.oauth2 import service_account

REQUIRED_SERVICE_ACCOUNT_FIELDS = ("client_email", "private_key", "token_uri")

_LOGGER = logging.getLogger("venue_indexer.google_api")

_CacheKey = tuple[str, int, tuple[str, ...]]
_credentials_cache: dict[_CacheKey, service_account.Credentials] = {}
_cache_lock = Lock()


class GoogleCredentialsError(Exception):
    """Service account credentials could not be loaded."""


def _key_file(credentials_path: str | Path) -> tuple[Path, int]:
    path = Path(credentials_path).expanduser().resolve()
    try:
        return path, path.stat().st_mtime_ns
    except FileNotFoundError as error:
        raise GoogleCredentialsError(
            f"Service account credential file does not exist: {path}"
        ) from error


def _read_key_file(path: Path) -> dict[str, Any]:
    try:
        payload: Any = json.loads(path.read_text(encoding="utf-8"))
    except OSError as error:
        raise GoogleCredentialsError(
            f"Unable to read service account credential file {path}: {error}"
        ) from error
    except json.JSONDecodeError as error:
        raise GoogleCredentialsError(
            f"Service account credential file {path} contains invalid JSON "
            f"(line {error.lineno}, column {error.colno})"
        ) from error

    if not isinstance(payload, dict):
        raise GoogleCredentialsError(
            f"Service account credential file must hold a JSON object: {path}"
        )
    missing = [
        field for field in REQUIRED_SERVICE_ACCOUNT_FIELDS if not payload.get(field)
    ]
    if missing:
        raise GoogleCredentialsError(
            f"Service account credential file {path} is missing "
            f"{', '.join(missing)}"
        )
    if payload.get("type") != "service_account":
        raise GoogleCredentialsError(
            f"Credential file must have type='service_account': {path}"
        )
    return cast(dict[str, Any], payload)


def load_service_account_credentials(
    credentials_path: str | Path,
    *,
    scopes: list[str] | tuple[str, ...] | None = None,
) -> service_account.Credentials:
    """Return credentials for the key file, reusing a cached instance."""

    path, modified_ns = _key_file(credentials_path)
    scope_set = tuple(dict.fromkeys(scope.strip() for scope in scopes or ()))
    cache_key = (str(path), modified_ns, scope_set)

    with _cache_lock:
        cached = _credentials_cache.get(cache_key)
        if cached is not None:
            return cached

        info = _read_key_file(path)
        try:
            from_info = service_account.Credentials.from_service_account_info
            credentials = from_info(  # type: ignore[no-untyped-call]
                info, scopes=list(scope_set) or None
            )
        except (ValueError, KeyError) as error:
            raise GoogleCredentialsError(
                f"Unable to build service account credentials from {path}: {error}"
            ) from error

        for stale_key in [key for key in _credentials_cache if key[0] == str(path)]:
            if stale_key[1] != modified_ns:
                del _credentials_cache[stale_key]
        _credentials_cache[cache_key] = credentials

    _LOGGER.info(
        "google_credentials_loaded",
        extra={"client_email": info["client_email"], "scopes": list(scope_set)},
    )
    return cast(service_account.Credentials, credentials)


def clear_google_credentials_cache() -> None:
    with _cache_lock:
        _credentials_cache.clear()


__all__ = [
    "GoogleCredentialsError",
    "REQUIRED_SERVICE_ACCOUNT_FIELDS",
    "clear_google_credentials_cache",
    "load_service_account_credentials",
]
