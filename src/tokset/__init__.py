"""tokset: compact token sets with byte fallback and reversible case processing."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("tokset")
except PackageNotFoundError:
    __version__ = "dev"

from ._progress import disable_progress, enable_progress
from .config import MAX_TOKENS, MIN_TOKENS, TrainingConfig
from .errors import (
    ConfigurationError,
    InputFormatError,
    InvariantError,
    MalformedInputError,
    ModelLoadError,
    SchemeError,
    TokSetError,
    TrainingError,
)
from .fallback import FallbackScheme, get_scheme, list_schemes
from .optimizer import OptimizationResult, Optimizer
from .pipeline import TrainingRun, build_token_set
from .policy import AcceptancePolicy, get_policy, list_policies
from .processing import Marker, Processing, list_processings
from .stream import SymbolStream
from .symbolizer import Symbolizer, symbolize_corpus
from .tokenset import TokenSet, TokenSetStats, from_pretrained
from .trainer import Trainer, TrainerState
from .vocab import MergeRecord, Token, TokenKind, Vocabulary

__all__ = [
    "AcceptancePolicy",
    "ConfigurationError",
    "FallbackScheme",
    "InputFormatError",
    "InvariantError",
    "MAX_TOKENS",
    "MIN_TOKENS",
    "MalformedInputError",
    "Marker",
    "MergeRecord",
    "ModelLoadError",
    "OptimizationResult",
    "Optimizer",
    "Processing",
    "SchemeError",
    "SymbolStream",
    "Symbolizer",
    "Token",
    "TokenKind",
    "TokSetError",
    "TokenSet",
    "TokenSetStats",
    "Trainer",
    "TrainerState",
    "TrainingConfig",
    "TrainingError",
    "TrainingRun",
    "Vocabulary",
    "build_token_set",
    "disable_progress",
    "enable_progress",
    "from_pretrained",
    "get_policy",
    "get_scheme",
    "list_policies",
    "list_processings",
    "list_schemes",
    "symbolize_corpus",
]
