from __future__ import annotations

from .models import FallbackReason, RunMeta

FALLBACK_MODE = "scrape"


def apply_fallback(meta: RunMeta, fallback_needed: bool, reason: FallbackReason | None) -> bool:
    """
    Mark `meta` for hand-off to the whitelist scrape when the crawl could not
    complete. Violations always win: a meta already classified as violations
    is left untouched. Returns True when the hand-off was signalled.
    """
    if not fallback_needed or meta.violations:
        return False
    meta.fallback = FALLBACK_MODE
    meta.fallback_reason = reason or FallbackReason.FAILED
    return True


def wants_fallback(meta_record: dict | None) -> bool:
    """Reader side of the contract, used by the calling pipeline step."""
    if not isinstance(meta_record, dict):
        return False
    return meta_record.get("fallback") == FALLBACK_MODE or meta_record.get("result") == "fallback"
