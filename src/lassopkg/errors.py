"""Exceptions and warnings raised by the grouped-Lasso development pipeline."""

from __future__ import annotations

from dataclasses import dataclass


class LassoPipelineError(Exception):
    """Base class for every error raised by lassopkg."""


class GroupMismatchError(LassoPipelineError, ValueError):
    """Group vector length differs from the number of model-matrix columns."""


class SchemaMismatchError(LassoPipelineError, ValueError):
    """A subset does not match the schema captured on the training subset."""


class DegenerateColumnError(LassoPipelineError, ValueError):
    """A categorical predictor has fewer than two levels."""

    def __init__(self, column: str, n_levels: int):
        self.column = column
        self.n_levels = n_levels
        super().__init__(
            f"Categorical column {column!r} has {n_levels} level(s); "
            "at least 2 are needed to build a contrast"
        )


class InsufficientDataError(LassoPipelineError, ValueError):
    """Not enough rows (or classes) for the requested cross-validation."""


class ShapeMismatchError(LassoPipelineError, ValueError):
    """Array dimensions disagree with the fitted model or with each other."""


class ConvergenceError(LassoPipelineError, RuntimeError):
    """The convex solver did not reach an optimal solution."""


class AuxiliaryModelWarning(UserWarning):
    """The row-wise explanation GLM could not be fitted."""


@dataclass(frozen=True)
class NotApplicable:
    """Placeholder returned instead of a curve that cannot be computed."""

    reason: str

    def __bool__(self) -> bool:
        return False
