"""Run configuration for token set construction."""

from dataclasses import dataclass
from typing import Final

from .errors import ConfigurationError
from .fallback import FallbackScheme, get_scheme
from .policy import AcceptancePolicy, get_policy
from .processing import Processing

MIN_TOKENS: Final[int] = 2
MAX_TOKENS: Final[int] = 65536


@dataclass(frozen=True)
class TrainingConfig:
    """
    Options for one ``optimize`` run, validated on construction.

    :param n_tokens: Target vocabulary size.
    :param scheme: Byte fallback scheme name.
    :param processing: Processing stage name.
    :param optimize: Run the token replacement search after training.
    :param max_iterations: Bound on attempted replacements; ``None`` runs to a
        fixed point.
    :param policy: Acceptance policy name for replacements.
    :param min_gain: Savings required by the "min-gain" policy.
    :param num_workers: Threads for the initial pair count; ``None`` uses
        the CPU count.
    :param split_paragraphs: Never merge anything but newlines onto a blank
        line, so no token spans two paragraphs.
    :raises ConfigurationError: On any invalid option.
    """

    n_tokens: int
    scheme: str = "bits4"
    processing: str = "raw"
    optimize: bool = True
    max_iterations: int | None = None
    policy: str = "strict"
    min_gain: int = 1
    num_workers: int | None = None
    split_paragraphs: bool = False

    def __post_init__(self) -> None:
        if not MIN_TOKENS <= self.n_tokens <= MAX_TOKENS:
            raise ConfigurationError(
                f"token count must be in [{MIN_TOKENS}, {MAX_TOKENS}]",
                n_tokens=self.n_tokens,
            )
        # name lookups raise on unknown names
        scheme = self.fallback
        processing = self.processing_stage
        _ = self.acceptance

        min_tokens = self.min_tokens(scheme, processing)
        if self.n_tokens < min_tokens:
            raise ConfigurationError(
                f"{scheme.NAME} with {processing.value} processing needs more tokens",
                n_tokens=self.n_tokens,
                min_tokens=min_tokens,
            )
        if self.max_iterations is not None and self.max_iterations < 0:
            raise ConfigurationError(
                f"max_iterations must not be negative, got {self.max_iterations}"
            )
        if self.num_workers is not None and self.num_workers < 1:
            raise ConfigurationError(
                f"num_workers must be positive, got {self.num_workers}"
            )

    @staticmethod
    def min_tokens(scheme: FallbackScheme, processing: Processing) -> int:
        """Smallest vocabulary that represents every byte and marker."""
        return max(MIN_TOKENS, scheme.min_tokens() + len(processing.markers))

    @property
    def fallback(self) -> FallbackScheme:
        return get_scheme(self.scheme)

    @property
    def processing_stage(self) -> Processing:
        return Processing.get(self.processing)

    @property
    def acceptance(self) -> AcceptancePolicy:
        return get_policy(self.policy, self.min_gain)


__all__ = ["MIN_TOKENS", "MAX_TOKENS", "TrainingConfig"]
