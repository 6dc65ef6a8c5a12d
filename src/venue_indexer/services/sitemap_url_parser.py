"""Streaming sitemap parsing for URL sets and sitemap indexes."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, date, datetime, time
from io import BytesIO
from urllib.parse import urlsplit

from lxml import etree  # type: ignore[import-untyped]

_LOGGER = logging.getLogger("venue_indexer.sitemap")


class SitemapParseError(Exception):
    """Sitemap XML could not be parsed."""


@dataclass(slots=True, frozen=True)
class SitemapURLRecord:
    """One ``<url>`` entry of a URL set."""

    url: str
    lastmod: datetime | None
    changefreq: str | None
    priority: float | None


def _local_name(tag_name: str) -> str:
    if tag_name.startswith("{"):
        _, _, tag_name = tag_name.partition("}")
    return tag_name.rpartition(":")[2].lower()


def _to_xml_bytes(xml_content: bytes | str) -> bytes:
    xml_bytes = (
        xml_content if isinstance(xml_content, bytes) else xml_content.encode("utf-8")
    )
    if not xml_bytes.strip():
        raise SitemapParseError("Sitemap XML content is empty")
    return xml_bytes


def _is_valid_http_url(url: str) -> bool:
    parsed_url = urlsplit(url)
    return parsed_url.scheme in {"http", "https"} and bool(parsed_url.netloc)


def parse_lastmod(value: str | None) -> datetime | None:
    """Parse a W3C datetime ``lastmod``; date-only values mean midnight UTC."""

    if not value:
        return None

    text = value.strip()
    try:
        if len(text) == 10:
            return datetime.combine(date.fromisoformat(text), time.min, tzinfo=UTC)
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        _LOGGER.warning("sitemap_invalid_lastmod", extra={"lastmod": text})
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _parse_priority(value: str | None, *, url: str) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        _LOGGER.warning(
            "sitemap_invalid_priority", extra={"url": url, "priority": value}
        )
        return None


def _child_texts(element: etree._Element) -> dict[str, str]:
    texts: dict[str, str] = {}
    for child in element:
        if not isinstance(child.tag, str) or not child.text:
            continue
        text = child.text.strip()
        if text:
            texts[_local_name(child.tag)] = text
    return texts


def _release_element_memory(element: etree._Element) -> None:
    element.clear()
    parent = element.getparent()
    if parent is None:
        return
    while element.getprevious() is not None:
        del parent[0]


def _iterparse(xml_content: bytes | str) -> Iterator[tuple[str, etree._Element]]:
    stream = BytesIO(_to_xml_bytes(xml_content))
    try:
        for event, element in etree.iterparse(
            stream,
            events=("start", "end"),
            resolve_entities=False,
            no_network=True,
            recover=False,
        ):
            if isinstance(element.tag, str):
                yield event, element
    except etree.XMLSyntaxError as error:
        raise SitemapParseError(f"Invalid sitemap XML: {error}") from error


def is_sitemap_index(xml_content: bytes | str) -> bool:
    """Return whether the document root is ``<sitemapindex>``."""

    for event, element in _iterparse(xml_content):
        if event == "start":
            return _local_name(element.tag) == "sitemapindex"
    return False


def parse_sitemap_urls_stream(xml_content: bytes | str) -> Iterator[SitemapURLRecord]:
    """Stream-parse a URL set and yield its valid entries."""

    for event, element in _iterparse(xml_content):
        if event != "end" or _local_name(element.tag) != "url":
            continue

        texts = _child_texts(element)
        _release_element_memory(element)
        loc = texts.get("loc")
        if not loc or not _is_valid_http_url(loc):
            _LOGGER.warning("sitemap_url_skipped", extra={"loc": loc})
            continue

        yield SitemapURLRecord(
            url=loc,
            lastmod=parse_lastmod(texts.get("lastmod")),
            changefreq=texts.get("changefreq"),
            priority=_parse_priority(texts.get("priority"), url=loc),
        )


def parse_sitemap_index(xml_content: bytes | str) -> list[str]:
    """Return the child sitemap locations listed in a sitemap index."""

    locations: list[str] = []
    for event, element in _iterparse(xml_content):
        if event != "end" or _local_name(element.tag) != "sitemap":
            continue
        loc = _child_texts(element).get("loc")
        _release_element_memory(element)
        if loc and _is_valid_http_url(loc):
            locations.append(loc)
    return locations


__all__ = [
    "SitemapParseError",
    "SitemapURLRecord",
    "is_sitemap_index",
    "parse_lastmod",
    "parse_sitemap_index",
    "parse_sitemap_urls_stream",
]
