"""Exceptions raised while configuring or training cleaners."""

from __future__ import annotations

from typing import Iterable, List


class ConfigurationError(RuntimeError):
    """Model resolution cannot proceed with the current setup."""

    def __init__(self, message: str, errors: Iterable[str] | None = None) -> None:
        self.errors: List[str] = list(errors or [])
        if self.errors and message:
            message = f"{message}: {'; '.join(self.errors)}"
        elif self.errors:
            message = "; ".join(self.errors)
        super().__init__(message)


class TrainingCancelled(RuntimeError):
    """Training stopped at a chunk boundary after a stop request."""
