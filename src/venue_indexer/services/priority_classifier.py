"""Path-prefix based URL priority classification."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from urllib.parse import urlsplit

from venue_indexer.config import URL_PRIORITY_PATTERNS, PriorityPattern
from venue_indexer.schemas.indexing import TIER_ORDER, PriorityTier


def _url_path(url: str) -> str:
    stripped_url = url.strip()
    parsed_url = urlsplit(stripped_url)
    if parsed_url.scheme or parsed_url.netloc:
        return parsed_url.path or "/"

    path = parsed_url.path
    if not path.startswith("/"):
        path = f"/{path}"
    return path


def _path_segments(path: str) -> int:
    return len([segment for segment in path.split("/") if segment])


def _matches(pattern: PriorityPattern, path: str) -> bool:
    if not path.startswith(pattern.prefix):
        return False
    return _path_segments(path) >= pattern.min_path_segments


class PriorityClassifier:
    """Map URLs to priority tiers using ordered prefix tables.

    Tiers are tested HIGH, then MEDIUM, then LOW; the first tier owning a
    matching pattern wins. URLs matching nothing are unclassified (``None``).
    """

    def __init__(
        self,
        patterns: Mapping[str, Sequence[PriorityPattern]] | None = None,
    ) -> None:
        source_patterns = URL_PRIORITY_PATTERNS if patterns is None else patterns
        self._patterns: tuple[tuple[PriorityTier, tuple[PriorityPattern, ...]], ...]
        self._patterns = tuple(
            (tier, tuple(source_patterns.get(tier.value, ())))
            for tier in TIER_ORDER
        )

    def classify(self, url: str) -> PriorityTier | None:
        path = _url_path(url)
        for tier, tier_patterns in self._patterns:
            if any(_matches(pattern, path) for pattern in tier_patterns):
                return tier
        return None

    def classify_or_default(
        self,
        url: str,
        default: PriorityTier = PriorityTier.LOW,
    ) -> PriorityTier:
        tier = self.classify(url)
        return default if tier is None else tier


__all__ = ["PriorityClassifier"]
