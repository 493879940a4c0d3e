"""
Listing content policy.

Crawled output must not contain property listings. Two checks run over the
parsed crawl result:

  1. URL check: every string under a url-like key anywhere in the tree is
     matched against the forbidden path segments.
  2. Content check: the text fields of each page are matched against listing
     keywords. A strong keyword alone is enough; a weak keyword needs a
     currency amount in the same text.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any

from .models import Violation

REASON_URL = "URL matched forbidden listing pattern"
REASON_STRONG = "Content looked like a listing (listing field keyword)"
REASON_PRICE = "Content looked like a listing (price + listing keyword)"

_URL_KEYS = frozenset({"url", "sourceurl"})
_TEXT_FIELDS = ("content", "markdown", "html", "text", "raw")

STRONG_KEYWORD_RE = re.compile(
    r"(objektnr|objekt-nr|energieausweis|expos[eé]|kaufpreis|kaltmiete|warmmiete|provision|wohnfl(ä|a)che|zimmer)",
    re.IGNORECASE,
)
CONTENT_KEYWORD_RE = re.compile(r"(preis|miete|grundst(ü|u)ck|wohnfl(ä|a)che|m²|m2)", re.IGNORECASE)
PRICE_RE = re.compile(r"((€|\beur\b)\s?\d[\d.\s,]*|\d[\d.,]*\s?(€|eur\b))", re.IGNORECASE)


def collect_urls(node: Any, acc: list[str] | None = None) -> list[str]:
    """Every string value stored under a url-like key, depth-first, in document order."""
    if acc is None:
        acc = []
    if isinstance(node, list):
        for item in node:
            collect_urls(item, acc)
    elif isinstance(node, dict):
        for key, value in node.items():
            if isinstance(key, str) and key.lower() in _URL_KEYS and isinstance(value, str):
                acc.append(value)
            collect_urls(value, acc)
    return acc


def collect_pages(data: Any) -> list[Any]:
    """Page-like records: a top-level list, or the `pages` / `data` list of an object."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in ("pages", "data"):
            if isinstance(data.get(key), list):
                return data[key]
    return []


def page_url(page: dict[str, Any]) -> str | None:
    url = page.get("url")
    if isinstance(url, str):
        return url
    metadata = page.get("metadata")
    if isinstance(metadata, dict):
        for key in ("url", "sourceURL"):
            if isinstance(metadata.get(key), str):
                return metadata[key]
    return None


def page_text(page: dict[str, Any]) -> str:
    parts = [page.get(f) for f in _TEXT_FIELDS]
    metadata = page.get("metadata")
    if isinstance(metadata, dict):
        parts.append(metadata.get("description"))
    return "\n".join(p for p in parts if isinstance(p, str))


def matches_segment(url: str, segments: Iterable[str]) -> bool:
    low = url.lower()
    return any(seg in low for seg in segments)


def find_url_violations(data: Any, forbidden_segments: list[str]) -> list[Violation]:
    return [
        Violation(url=u, reason=REASON_URL)
        for u in collect_urls(data)
        if matches_segment(u, forbidden_segments)
    ]


def find_content_violations(pages: list[Any], forbidden_segments: list[str]) -> list[Violation]:
    out: list[Violation] = []
    for page in pages:
        if not isinstance(page, dict):
            continue
        url = page_url(page)
        text = page_text(page)

        if url and matches_segment(url, forbidden_segments):
            reason = REASON_URL
        elif text and STRONG_KEYWORD_RE.search(text):
            reason = REASON_STRONG
        elif text and CONTENT_KEYWORD_RE.search(text) and PRICE_RE.search(text):
            reason = REASON_PRICE
        else:
            continue
        out.append(Violation(url=url or "unknown", reason=reason))
    return out


def scan(data: Any, forbidden_segments: list[str]) -> list[Violation]:
    """URL check first; the content check only runs when every URL is clean."""
    violations = find_url_violations(data, forbidden_segments)
    if violations:
        return violations
    return find_content_violations(collect_pages(data), forbidden_segments)
