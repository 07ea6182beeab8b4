"""Error taxonomy for the ranking engine.

Only ``InvalidInput`` ever escapes ``SimilarityEngine``; the other kinds are
raised by collaborators and absorbed by the pipeline, which degrades to a
smaller result instead.
"""
from __future__ import annotations

from typing import Optional


class DepsimError(Exception):
    """Base class for all project errors."""


class InvalidInput(DepsimError, ValueError):
    """Empty or malformed package name, or an out-of-range argument."""


class DataUnavailable(DepsimError):
    """Dependency data for a package could not be retrieved."""

    def __init__(self, package: str, reason: str = "unavailable"):
        super().__init__(f"{package}: {reason}")
        self.package = package
        self.reason = reason


class TransientFetchFailure(DataUnavailable):
    """Network/429/5xx failure that persisted after the retry budget."""

    def __init__(self, package: str, reason: str, attempts: int, status: Optional[int] = None):
        super().__init__(package, reason)
        self.attempts = attempts
        self.status = status


class StageTimeout(DepsimError):
    """A pipeline stage exceeded its wall-clock budget."""

    def __init__(self, stage: str, budget_ms: int):
        super().__init__(f"stage {stage} exceeded {budget_ms}ms")
        self.stage = stage
        self.budget_ms = budget_ms
