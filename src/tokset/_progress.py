"""
Periodic progress lines for long training and optimization loops.

Progress goes through the caller's logger at INFO level. Set
``TOKSET_DISABLE_PROGRESS=1`` or call :func:`disable_progress` to silence it
without touching the log level.
"""

import logging
import os

_ENV_VAR = "TOKSET_DISABLE_PROGRESS"
_enabled: bool = True


def enable_progress() -> None:
    global _enabled
    _enabled = True


def disable_progress() -> None:
    global _enabled
    _enabled = False


def progress_enabled() -> bool:
    """Whether progress lines are emitted; the environment wins."""
    if os.environ.get(_ENV_VAR, "").strip() == "1":
        return False
    return _enabled


class Progress:
    """
    Emit ``"<label> <done>/<total>, <detail>"`` every ``every`` units of work.

    Example:
       >>> progress = Progress(log, "merges", total=4096, every=1000)
       >>> progress.update(1000, "812345 stream tokens")
    """

    def __init__(
        self, logger: logging.Logger, label: str, total: int | None, every: int
    ) -> None:
        self.logger = logger
        self.label = label
        self.total = total
        self.every = max(1, every)
        self._next = self.every

    def update(self, done: int, detail: str = "") -> None:
        if done < self._next:
            return
        # skip ahead past the thresholds crossed in one jump
        self._next = (done // self.every + 1) * self.every
        if not progress_enabled():
            return
        of = f"/{self.total}" if self.total is not None else ""
        suffix = f", {detail}" if detail else ""
        self.logger.info(f"{self.label} {done}{of}{suffix}")
