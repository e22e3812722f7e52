"""
Plate marker helpers.

A plate groups the dishes of one order that are served together. It is not a
column: the plate number travels as a hidden prefix on ``OrderItem.notes``,
e.g. ``"[PLATE:2] no onions"``.
"""

import re

DEFAULT_PLATE = 1

_PLATE_MARKER_RE = re.compile(r"^\[PLATE:([^\]]*)\]\s?")


def encode_notes(plate: int, notes: str | None) -> str:
    """Prefix the user's note with the plate marker."""
    if plate is None or plate < 1:
        plate = DEFAULT_PLATE
    return f"[PLATE:{plate}] {(notes or '').strip()}".rstrip()


def split_notes(raw: str | None) -> tuple[int, str]:
    """Return ``(plate, user_notes)``; plate is 1 when absent or unparsable."""
    raw = raw or ""
    match = _PLATE_MARKER_RE.match(raw)
    if not match:
        return DEFAULT_PLATE, raw.strip()

    user_notes = raw[match.end():].strip()
    try:
        plate = int(match.group(1).strip())
    except ValueError:
        return DEFAULT_PLATE, user_notes
    if plate < 1:
        return DEFAULT_PLATE, user_notes
    return plate, user_notes
