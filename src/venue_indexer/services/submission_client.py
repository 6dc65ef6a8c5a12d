"""Submission capability contract used by the batch submitter."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from venue_indexer.schemas.indexing import SubmissionAction

FATAL_ERROR_CODES = frozenset({"QUOTA_EXCEEDED", "AUTH_ERROR", "DISABLED"})


@dataclass(slots=True, frozen=True)
class SubmissionOutcome:
    """Result of asking the remote service to (re)crawl one URL.

    ``fatal`` marks failures that make further submissions in the same run
    pointless, such as remote quota exhaustion or broken credentials.
    """

    url: str
    accepted: bool
    reason: str | None = None
    error_code: str | None = None
    http_status: int | None = None
    fatal: bool = False

    @classmethod
    def rejected(
        cls,
        url: str,
        *,
        reason: str,
        error_code: str,
        http_status: int | None = None,
    ) -> SubmissionOutcome:
        return cls(
            url=url,
            accepted=False,
            reason=reason,
            error_code=error_code,
            http_status=http_status,
            fatal=error_code in FATAL_ERROR_CODES,
        )


class SubmissionClient(Protocol):
    """Remote indexing capability: submit one URL, report acceptance."""

    async def submit_one(
        self,
        url: str,
        action: SubmissionAction = SubmissionAction.URL_UPDATED,
    ) -> SubmissionOutcome: ...


class DisabledSubmissionClient:
    """Client used when remote indexing is switched off or unconfigured."""

    def __init__(self, reason: str = "Google Indexing API is disabled") -> None:
        self._reason = reason

    async def submit_one(
        self,
        url: str,
        action: SubmissionAction = SubmissionAction.URL_UPDATED,
    ) -> SubmissionOutcome:
        del action
        return SubmissionOutcome.rejected(
            url, reason=self._reason, error_code="DISABLED"
        )


__all__ = [
    "DisabledSubmissionClient",
    "FATAL_ERROR_CODES",
    "SubmissionClient",
    "SubmissionOutcome",
]
