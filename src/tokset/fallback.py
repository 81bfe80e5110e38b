"""
Byte fallback codecs.

A fallback scheme gives every byte a fixed-length spelling in a small
alphabet of synthetic tokens, so a token set can represent any input even
when it is too small to hold one token per byte.
"""

from abc import ABC, abstractmethod
from typing import Final, Iterable, Literal, override

from .errors import MalformedInputError, SchemeError


class FallbackScheme(ABC):
    """Total, fixed-arity, byte-wise bijection between a byte and fallback digits."""

    NAME: str = "base"
    # number of distinct fallback tokens
    alphabet_size: int = 0
    # fallback tokens spent per byte
    arity: int = 0

    @abstractmethod
    def encode(self, byte: int) -> tuple[int, ...]:
        """Spell ``byte`` as ``arity`` digits, most significant first."""
        ...

    @abstractmethod
    def decode(self, digits: tuple[int, ...] | list[int]) -> int:
        """Rebuild one byte from exactly ``arity`` digits."""
        ...

    @property
    def covers_all_bytes(self) -> bool:
        """Whether every byte has a dedicated base token under this scheme."""
        return self.arity == 0

    def min_tokens(self) -> int:
        """Smallest vocabulary that can still represent every byte."""
        return self.alphabet_size

    def decode_stream(self, digits: Iterable[int]) -> bytes:
        """
        Decode concatenated digit groups.

        :raises MalformedInputError: If the digits do not split into whole groups.
        """
        out = bytearray()
        group: list[int] = []
        for pos, digit in enumerate(digits):
            group.append(digit)
            if len(group) == self.arity:
                try:
                    out.append(self.decode(group))
                except MalformedInputError as e:
                    raise MalformedInputError(
                        f"invalid fallback group {group}", position=pos
                    ) from e
                group = []
        if group:
            raise MalformedInputError(
                f"unmatched fallback digits {group} at end of input",
                position=len(out) * self.arity + len(group) - 1,
            )
        return bytes(out)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class _RadixScheme(FallbackScheme):
    """Spell bytes in base ``2 ** bits`` with a fixed number of digits."""

    bits: int = 8

    def __init__(self) -> None:
        super().__init__()
        self.alphabet_size = 1 << self.bits
        self.arity = 8 // self.bits
        self._mask = self.alphabet_size - 1

    @override
    def encode(self, byte: int) -> tuple[int, ...]:
        if not 0 <= byte <= 255:
            raise ValueError(f"not a byte value: {byte}")
        return tuple(
            (byte >> (self.bits * shift)) & self._mask
            for shift in reversed(range(self.arity))
        )

    @override
    def decode(self, digits: tuple[int, ...] | list[int]) -> int:
        if len(digits) != self.arity:
            raise MalformedInputError(
                f"expected {self.arity} fallback digits, got {len(digits)}"
            )
        byte = 0
        for pos, digit in enumerate(digits):
            if not 0 <= digit < self.alphabet_size:
                raise MalformedInputError(
                    f"fallback digit out of range: {digit}", position=pos
                )
            byte = (byte << self.bits) | digit
        return byte


class Bits1Scheme(_RadixScheme):
    """Two fallback tokens, eight per byte."""

    NAME = "bits1"
    bits = 1


class Bits2Scheme(_RadixScheme):
    """Four fallback tokens, four per byte."""

    NAME = "bits2"
    bits = 2


class Bits4Scheme(_RadixScheme):
    """Sixteen fallback tokens, one hex nibble each, high nibble first."""

    NAME = "bits4"
    bits = 4


class BytesScheme(FallbackScheme):
    """No fallback: every byte value gets its own base token."""

    NAME = "bytes"

    @override
    def encode(self, byte: int) -> tuple[int, ...]:
        raise MalformedInputError(f"bytes scheme has no fallback for byte {byte}")

    @override
    def decode(self, digits: tuple[int, ...] | list[int]) -> int:
        raise MalformedInputError("bytes scheme has no fallback digits")

    @override
    def min_tokens(self) -> int:
        return 256


SchemeName = Literal["bits1", "bits2", "bits4", "bytes"]

_SCHEMES: Final[dict[str, type[FallbackScheme]]] = {
    "bits1": Bits1Scheme,
    "bits2": Bits2Scheme,
    "bits4": Bits4Scheme,
    "bytes": BytesScheme,
}


def list_schemes() -> list[str]:
    """Return available fallback scheme names."""
    return list(_SCHEMES.keys())


def get_scheme(name: SchemeName | str) -> FallbackScheme:
    """
    Create a fallback scheme by name.

    :param name: Scheme identifier: "bits1", "bits2", "bits4" or "bytes".
    :raises SchemeError: If the name is unknown.
    """
    if name not in _SCHEMES:
        raise SchemeError(
            "unknown fallback scheme",
            invalid_name=name,
            available=list_schemes(),
        )
    return _SCHEMES[name]()


__all__ = [
    "FallbackScheme",
    "Bits1Scheme",
    "Bits2Scheme",
    "Bits4Scheme",
    "BytesScheme",
    "SchemeName",
    "get_scheme",
    "list_schemes",
]
