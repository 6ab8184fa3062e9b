"""Order reference normalization and extraction."""
from __future__ import annotations

import re

_ORDER_IN_NOTES = re.compile(r"Order\s*#?\s*([A-Za-z0-9\-_]+)", re.IGNORECASE)


def normalize_reference(value: object, prefix: str = "#") -> str:
    """Matching key for an order number / invoice reference.

    Trimmed, case-folded, with a leading ``prefix`` removed. Returns ""
    for missing values; callers treat "" as "no reference".
    """
    if value is None:
        return ""
    key = str(value).strip()
    if prefix:
        while key.lower().startswith(prefix.lower()):
            key = key[len(prefix):].lstrip()
    return key.casefold()


def reference_from_notes(notes: str | None) -> str | None:
    """Pull ``Order #1234`` style references out of free-form invoice notes."""
    if not notes:
        return None
    match = _ORDER_IN_NOTES.search(notes)
    return match.group(1) if match else None


__all__ = ["normalize_reference", "reference_from_notes"]
