"""
Utilities for converting token contents to displayable strings.
"""

import unicodedata
from typing import Sequence

from .processing import Marker
from .types import Symbol

_MARKER_NAMES = {int(m): f"<{m.name.lower()}>" for m in Marker}


def _escape_ctrl_chars(s: str) -> str:
    """Replace all Unicode control characters with their escape sequences."""
    cleaned = []
    for c in s:
        # control category codes vary: Cc, Cf, Cn etc.
        # so check via first character
        if unicodedata.category(c)[0] != "C":
            cleaned.append(c)
        else:
            cleaned.append(f"\\u{ord(c):04x}")
    return "".join(cleaned)


def render_bytes(b: bytes) -> str:
    """
    Decode bytes as UTF-8 and escape control characters.

    Invalid UTF-8 sequences are replaced with the Unicode replacement character.
    """
    return _escape_ctrl_chars(b.decode("utf-8", errors="replace"))


def render_symbols(symbols: Sequence[Symbol]) -> str:
    """Render bytes and markers, spelling markers by name."""
    parts: list[str] = []
    run = bytearray()
    for sym in symbols:
        if sym < 256:
            run.append(sym)
            continue
        if run:
            parts.append(render_bytes(bytes(run)))
            run.clear()
        parts.append(_MARKER_NAMES[sym])
    if run:
        parts.append(render_bytes(bytes(run)))
    return "".join(parts)
