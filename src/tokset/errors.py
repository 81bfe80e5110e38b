"""Custom exception hierarchy for tokset errors."""


class TokSetError(Exception):
    """Base exception for all user-facing tokset errors."""


class ConfigurationError(TokSetError):
    """Raised when a run is configured with invalid options."""

    def __init__(
        self,
        message: str,
        *,
        n_tokens: int | None = None,
        min_tokens: int | None = None,
    ) -> None:
        """Initialize with optional token counts that get appended to the message."""
        extra = " "
        if n_tokens is not None:
            extra += f"(requested: {n_tokens}) "
        if min_tokens is not None:
            extra += f"(minimum: {min_tokens}) "
        super().__init__(message + extra)
        self.n_tokens = n_tokens
        self.min_tokens = min_tokens


class SchemeError(ConfigurationError):
    """Raised when a fallback scheme, processing or policy name is unknown."""

    def __init__(
        self,
        message: str,
        *,
        invalid_name: str | None = None,
        available: list[str] | None = None,
    ) -> None:
        if invalid_name:
            message += f" (available: {available}) (got {invalid_name})"
        super().__init__(message)
        self.invalid_name = invalid_name
        self.available = available


class InputFormatError(TokSetError):
    """Raised when training or encoding input cannot be represented."""

    def __init__(
        self,
        message: str,
        *,
        position: int | None = None,
        path: str | None = None,
    ) -> None:
        extra = " "
        if path:
            extra += f"(path: {path}) "
        if position is not None:
            extra += f"(offset: {position}) "
        super().__init__(message + extra)
        self.position = position
        self.path = path


class MalformedInputError(TokSetError):
    """Raised when a decoder meets a sequence no encoder could have produced."""

    def __init__(self, message: str, *, position: int | None = None) -> None:
        if position is not None:
            message = f"{message} (position: {position})"
        super().__init__(message)
        self.position = position


class TrainingError(TokSetError):
    """Raised when token set training fails."""

    def __init__(self, message: str, *, n_tokens: int | None = None) -> None:
        super().__init__(message)
        self.n_tokens = n_tokens


class ModelLoadError(TokSetError):
    """Raised when loading a token set artifact fails."""

    def __init__(
        self,
        message: str,
        *,
        model_path: str | None = None,
        version_mismatch: tuple[str, str] | None = None,
        line: int | None = None,
    ) -> None:
        extra = " "
        if model_path:
            extra += f"(path: {model_path}) "
        if version_mismatch is not None:
            extra += f"(expected: {version_mismatch[1]}) (got {version_mismatch[0]}) "
        if line is not None:
            extra += f"(line: {line}) "
        super().__init__(message + extra)
        self.model_path = model_path
        self.version_mismatch = version_mismatch
        self.line = line


class InvariantError(RuntimeError):
    """
    Raised when internal state is inconsistent.

    Not a ``TokSetError``: it signals a defect in tokset itself, never bad
    user input, and is not meant to be caught and retried.
    """
