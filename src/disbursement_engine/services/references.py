"""Idempotency references correlating gateway transfers with batch items.

The reference is a pure function of (batch_id, item_id), so every retry of
the same item carries the same string and notifications can be routed back.
"""

from __future__ import annotations

from dataclasses import dataclass

REFERENCE_PREFIX = "PAYROLL"


@dataclass(frozen=True)
class ItemReference:
    """Parsed item correlation reference."""

    batch_id: int
    item_id: int


def build_item_reference(batch_id: int, item_id: int) -> str:
    """Synthesize the idempotency reference for an item."""
    return f"{REFERENCE_PREFIX}_{batch_id}_{item_id}"


def parse_item_reference(reference: object) -> ItemReference | None:
    """Parse a reference built by build_item_reference.

    Returns None for anything malformed: wrong prefix, wrong number of
    parts, non-numeric ids, or a value that is not a string at all.
    """
    if not isinstance(reference, str) or not reference:
        return None

    parts = reference.split("_")
    if len(parts) != 3 or parts[0] != REFERENCE_PREFIX:
        return None

    batch_part, item_part = parts[1], parts[2]
    if not all(p.isascii() and p.isdigit() for p in (batch_part, item_part)):
        return None

    return ItemReference(batch_id=int(batch_part), item_id=int(item_part))
