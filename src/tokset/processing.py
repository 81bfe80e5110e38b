"""
Reversible case and word-boundary processing.

The ``capswords`` processing lowers the case of capitalized and all-caps
words behind a marker, closes every word with an end-of-word marker and
drops the single space that separates two words. Decoding restores the
original bytes exactly.

Words are maximal runs of ASCII letters. Bytes outside ``A-Z``/``a-z``,
including the bytes of multi-byte UTF-8 letters, are treated as
non-letters and pass through untouched.
"""

from enum import Enum, IntEnum
from typing import Sequence

import regex as re

from .errors import MalformedInputError, SchemeError
from .types import Symbol


class Marker(IntEnum):
    """Synthetic symbols inserted by the capswords processing."""

    CAPITALIZED = 256
    ALL_CAPS = 257
    END_OF_WORD = 258

    @property
    def display_byte(self) -> int:
        """Control byte used when writing processed text for inspection."""
        return _DISPLAY_BYTES[self]

    @classmethod
    def from_name(cls, name: str) -> "Marker":
        """Look up a marker by its lowercase name."""
        try:
            return cls[name.upper()]
        except KeyError:
            raise SchemeError(
                "unknown marker",
                invalid_name=name,
                available=[m.name.lower() for m in cls],
            )


_DISPLAY_BYTES = {
    Marker.CAPITALIZED: 0x14,
    Marker.ALL_CAPS: 0x15,
    Marker.END_OF_WORD: 0x16,
}

_MODE_MARKERS = (Marker.CAPITALIZED, Marker.ALL_CAPS)

_WORD = re.compile(rb"[A-Za-z]+")

_SPACE = 0x20


def _is_letter(sym: Symbol) -> bool:
    return 0x41 <= sym <= 0x5A or 0x61 <= sym <= 0x7A


def _is_upper(sym: Symbol) -> bool:
    return 0x41 <= sym <= 0x5A


def _add_word(out: list[Symbol], word: bytes) -> None:
    """Append one word with its case marker and end-of-word marker."""
    first, rest = word[:1], word[1:]
    if first.isupper() and (not rest or rest.islower()):
        # single uppercase letters are capitalized, never all-caps
        out.append(Marker.CAPITALIZED)
        out.extend(word.lower())
    elif word.isupper():
        out.append(Marker.ALL_CAPS)
        out.extend(word.lower())
    else:
        # plain words, and mixed case words kept verbatim
        out.extend(word)
    out.append(Marker.END_OF_WORD)


def encode_capswords(data: bytes) -> list[Symbol]:
    """Apply the capswords transform to ``data``."""
    out: list[Symbol] = []
    pos = 0
    n = len(data)
    for m in _WORD.finditer(data):
        start, end = m.span()
        out.extend(data[pos:start])
        _add_word(out, m.group())
        pos = end
        # a lone space between two words is implied by the end-of-word marker
        if end + 1 < n and data[end] == _SPACE and _is_letter(data[end + 1]):
            pos = end + 1
    out.extend(data[pos:])
    return out


def decode_capswords(symbols: Sequence[Symbol]) -> bytes:
    """
    Invert :func:`encode_capswords`.

    :raises MalformedInputError: On misplaced markers, with the offending position.
    """
    out = bytearray()
    n = len(symbols)
    # mode set by a marker and not yet applied to a letter
    pending: Marker | None = None
    # mode of the word being decoded
    mode: Marker | None = None
    in_word = False

    for pos, sym in enumerate(symbols):
        if sym in _MODE_MARKERS:
            if pending is not None:
                raise MalformedInputError("two case markers in a row", position=pos)
            if in_word:
                raise MalformedInputError(
                    "case marker inside an unterminated word", position=pos
                )
            pending = Marker(sym)
        elif sym == Marker.END_OF_WORD:
            if pending is not None:
                raise MalformedInputError(
                    "case marker not followed by a letter", position=pos
                )
            if not in_word:
                raise MalformedInputError(
                    "end-of-word marker outside a word", position=pos
                )
            in_word = False
            mode = None
            if pos + 1 < n:
                nxt = symbols[pos + 1]
                if _is_letter(nxt) or nxt in _MODE_MARKERS:
                    out.append(_SPACE)
        elif 0 <= sym < 256 and _is_letter(sym):
            if pending is not None:
                mode, pending = pending, None
                if _is_upper(sym):
                    raise MalformedInputError(
                        "uppercase letter after a case marker", position=pos
                    )
                out.append(sym - 0x20)
                in_word = True
            elif in_word and mode is not None:
                if _is_upper(sym):
                    raise MalformedInputError(
                        "uppercase letter inside a marked word", position=pos
                    )
                out.append(sym - 0x20 if mode is Marker.ALL_CAPS else sym)
            else:
                in_word = True
                out.append(sym)
        elif 0 <= sym < 256:
            if pending is not None:
                raise MalformedInputError(
                    "case marker not followed by a letter", position=pos
                )
            if in_word:
                raise MalformedInputError(
                    "word not closed by an end-of-word marker", position=pos
                )
            out.append(sym)
        else:
            raise MalformedInputError(f"unknown symbol {sym}", position=pos)

    if pending is not None:
        raise MalformedInputError("trailing case marker", position=n - 1)
    if in_word:
        raise MalformedInputError(
            "word not closed by an end-of-word marker", position=n
        )
    return bytes(out)


def _decode_raw(symbols: Sequence[Symbol]) -> bytes:
    for pos, sym in enumerate(symbols):
        if not 0 <= sym < 256:
            raise MalformedInputError(f"marker {sym} in raw input", position=pos)
    return bytes(symbols)


class Processing(str, Enum):
    """Named processing stages applied before tokenization."""

    RAW = "raw"
    CAPSWORDS = "capswords"

    @classmethod
    def get(cls, name: "str | Processing") -> "Processing":
        """Get processing by name (case-insensitive)."""
        if isinstance(name, Processing):
            return name
        try:
            return cls[name.upper()]
        except KeyError:
            raise SchemeError(
                "unknown processing",
                invalid_name=name,
                available=list_processings(),
            )

    @property
    def markers(self) -> tuple[Marker, ...]:
        """Marker symbols this processing can emit."""
        if self is Processing.CAPSWORDS:
            return tuple(Marker)
        return ()

    def encode(self, data: bytes) -> list[Symbol]:
        """Forward transform: bytes to symbols."""
        if self is Processing.CAPSWORDS:
            return encode_capswords(data)
        return list(data)

    def decode(self, symbols: Sequence[Symbol]) -> bytes:
        """Inverse transform: symbols back to the original bytes."""
        if self is Processing.CAPSWORDS:
            return decode_capswords(symbols)
        return _decode_raw(symbols)


def list_processings() -> list[str]:
    """Return available processing names."""
    return [p.value for p in Processing]


def to_display_bytes(symbols: Sequence[Symbol]) -> bytes:
    """Render symbols as bytes, writing markers as control characters."""
    return bytes(
        sym if sym < 256 else Marker(sym).display_byte for sym in symbols
    )


__all__ = [
    "Marker",
    "Processing",
    "encode_capswords",
    "decode_capswords",
    "list_processings",
    "to_display_bytes",
]
