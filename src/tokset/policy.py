"""Acceptance rules for the token replacement search."""

from abc import ABC, abstractmethod
from typing import Final, Literal, override

from .errors import ConfigurationError, SchemeError


class AcceptancePolicy(ABC):
    """Decides whether a tentative token replacement is kept."""

    NAME: str = "base"

    @abstractmethod
    def accept(self, before: int, after: int) -> bool:
        """
        Judge a replacement by the corpus length it leaves behind.

        :param before: Stream tokens before retiring the old token.
        :param after: Stream tokens after the replacement merge.
        """

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class StrictImprovementPolicy(AcceptancePolicy):
    """Keep a replacement only if the corpus needs fewer tokens."""

    NAME = "strict"

    @override
    def accept(self, before: int, after: int) -> bool:
        return after < before


class MinGainPolicy(AcceptancePolicy):
    """Keep a replacement only if it saves at least ``min_gain`` tokens."""

    NAME = "min-gain"

    def __init__(self, min_gain: int = 1) -> None:
        super().__init__()
        if min_gain < 1:
            raise ConfigurationError(f"min_gain must be at least 1, got {min_gain}")
        self.min_gain = min_gain

    @override
    def accept(self, before: int, after: int) -> bool:
        return before - after >= self.min_gain

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(min_gain={self.min_gain})"


PolicyName = Literal["strict", "min-gain"]

_POLICIES: Final[dict[str, type[AcceptancePolicy]]] = {
    "strict": StrictImprovementPolicy,
    "min-gain": MinGainPolicy,
}


def list_policies() -> list[str]:
    """Return available acceptance policy names."""
    return list(_POLICIES.keys())


def get_policy(name: PolicyName | str = "strict", min_gain: int = 1) -> AcceptancePolicy:
    """
    Create an acceptance policy by name.

    :param name: "strict" or "min-gain".
    :param min_gain: Token savings required by "min-gain".
    :raises SchemeError: If the name is unknown.
    """
    if name not in _POLICIES:
        raise SchemeError(
            "unknown acceptance policy",
            invalid_name=name,
            available=list_policies(),
        )
    if name == "min-gain":
        return MinGainPolicy(min_gain)
    return _POLICIES[name]()


__all__ = [
    "AcceptancePolicy",
    "StrictImprovementPolicy",
    "MinGainPolicy",
    "PolicyName",
    "get_policy",
    "list_policies",
]
