"""Reading and validating training data."""

import logging
from pathlib import Path

from .errors import ConfigurationError, InputFormatError

log = logging.getLogger(__name__)


def check_line_terminators(data: bytes, path: str | None = None) -> None:
    """
    Reject two-byte line terminators.

    :raises InputFormatError: If ``data`` contains ``\\r\\n``.
    """
    offset = data.find(b"\r\n")
    if offset >= 0:
        raise InputFormatError(
            "CRLF line terminator found, convert the data to LF line endings",
            position=offset,
            path=path,
        )


def read_corpus(path: str | Path) -> bytes:
    """
    Read a whole data file and validate its line terminators.

    :raises ConfigurationError: If the file cannot be read.
    :raises InputFormatError: If the file uses CRLF line terminators.
    """
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as e:
        raise ConfigurationError(f"cannot read data file {path}: {e.strerror}") from e

    check_line_terminators(data, str(path))
    log.info(f"read {len(data)} bytes from {path}")
    return data


__all__ = ["check_line_terminators", "read_corpus"]
