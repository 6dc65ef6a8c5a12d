"""Tests for path-prefix URL priority classification."""

from __future__ import annotations

import pytest

from venue_indexer.config import PriorityPattern
from venue_indexer.schemas.indexing import PriorityTier
from venue_indexer.services.priority_classifier import PriorityClassifier


@pytest.mark.parametrize(
    ("url", "expected_tier"),
    [
        (
            "https://escaperoomsfinder.com/locations/us/ca/los-angeles/the-vault",
            PriorityTier.HIGH,
        ),
        (
            "https://escaperoomsfinder.com/locations/us/ca/los-angeles",
            PriorityTier.MEDIUM,
        ),
        ("https://escaperoomsfinder.com/locations/us", PriorityTier.MEDIUM),
        ("https://escaperoomsfinder.com/themes/horror", PriorityTier.MEDIUM),
        ("https://escaperoomsfinder.com/blog/best-rooms-2024", PriorityTier.MEDIUM),
        ("https://escaperoomsfinder.com/browse?page=2", PriorityTier.LOW),
        ("https://escaperoomsfinder.com/contact", PriorityTier.LOW),
        ("https://escaperoomsfinder.com/privacy", PriorityTier.LOW),
        ("https://escaperoomsfinder.com/terms", PriorityTier.LOW),
    ],
)
def test_classify_maps_site_sections_to_tiers(
    url: str, expected_tier: PriorityTier
) -> None:
    assert PriorityClassifier().classify(url) is expected_tier


def test_classify_returns_none_for_unmatched_paths() -> None:
    classifier = PriorityClassifier()

    assert classifier.classify("https://escaperoomsfinder.com/") is None
    assert classifier.classify("https://escaperoomsfinder.com/about") is None


def test_classify_or_default_falls_back_for_unmatched_paths() -> None:
    classifier = PriorityClassifier()

    assert classifier.classify_or_default("https://escaperoomsfinder.com/about") is (
        PriorityTier.LOW
    )
    assert (
        classifier.classify_or_default(
            "https://escaperoomsfinder.com/about", PriorityTier.MEDIUM
        )
        is PriorityTier.MEDIUM
    )


def test_classify_accepts_bare_paths() -> None:
    classifier = PriorityClassifier()

    assert classifier.classify("/themes/sci-fi") is PriorityTier.MEDIUM
    assert classifier.classify("contact") is PriorityTier.LOW


def test_custom_patterns_are_checked_in_tier_order() -> None:
    classifier = PriorityClassifier(
        {
            "LOW": (PriorityPattern("/events/"),),
            "HIGH": (PriorityPattern("/events/featured/"),),
        }
    )

    assert classifier.classify("https://example.com/events/featured/x") is (
        PriorityTier.HIGH
    )
    assert classifier.classify("https://example.com/events/other") is PriorityTier.LOW
    assert classifier.classify("https://example.com/themes/horror") is None
