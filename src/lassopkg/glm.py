"""Unpenalized GLM kept next to the group lasso for row-wise explanations."""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

import cvxpy as cp
import numpy as np
import pandas as pd

from lassopkg.additional_functions.encoding import (
    FactorLevels,
    build_model_matrix,
    capture_factor_levels,
    encode_label,
)
from lassopkg.errors import AuxiliaryModelWarning, ConvergenceError
from lassopkg.grouped_lasso import SolverConfig, inverse_link, log_likelihood, solve_problem

PROB_EPS = 1e-8


@dataclass(frozen=True)
class AuxiliaryGLM:
    """Fitted coefficients of the unpenalized GLM, keyed by model-matrix column."""

    family: str
    predicted_col: str
    intercept: float
    coefficients: Dict[str, float]
    factor_levels: FactorLevels
    label_levels: Optional[Tuple] = None

    def design(self, data: pd.DataFrame) -> np.ndarray:
        return build_model_matrix(data, self.factor_levels).values

    def predict(self, data: pd.DataFrame) -> np.ndarray:
        beta = np.fromiter(self.coefficients.values(), dtype=float)
        return inverse_link(self.family, self.design(data) @ beta + self.intercept)

    def row_contributions(self, data: pd.DataFrame) -> pd.DataFrame:
        """Per-row coefficient * value products on the linear-predictor scale."""
        beta = np.fromiter(self.coefficients.values(), dtype=float)
        return pd.DataFrame(self.design(data) * beta, columns=list(self.coefficients), index=data.index)


def _fit_glm_no_pen(X: np.ndarray, y: np.ndarray, family: str, cfg: SolverConfig) -> Tuple[float, np.ndarray]:
    """Unpenalized GLM (CVXPy) on the full design."""
    beta = cp.Variable(X.shape[1])
    intercept = cp.Variable()
    ll = log_likelihood(family, X, y, beta, intercept)

    prob = cp.Problem(cp.Minimize(-ll / len(y)))
    solve_problem(prob, cfg)

    b = np.asarray(beta.value, dtype=float)
    b0 = float(intercept.value)
    if not (np.all(np.isfinite(b)) and np.isfinite(b0)):
        raise ConvergenceError("GLM coefficients are not finite")

    # Complete separation: the solver reports optimal but the coefficients diverge
    if family == "binomial":
        p = inverse_link(family, X @ b + b0)
        if np.any((p < PROB_EPS) | (p > 1 - PROB_EPS)):
            raise ConvergenceError("fitted probabilities numerically 0 or 1 occurred")
    return b0, b


def fit_auxiliary_glm(
    train: pd.DataFrame,
    predicted_col: str,
    model_type: str,
    predictors: Optional[Sequence[str]] = None,
    solver_cfg: Optional[SolverConfig] = None,
) -> Optional[AuxiliaryGLM]:
    """Fit `predicted_col ~ .` on the training subset.

    Classification uses the logit link, regression the identity link with
    squared-error loss. Predictors are expanded with treatment coding (first
    level as reference). A solver failure is reported as an
    AuxiliaryModelWarning and None is returned, so the caller can go on
    without row-wise explanations.
    """
    if predictors is None:
        predictors = [c for c in train.columns if c != predicted_col]
    cfg = solver_cfg or SolverConfig()

    levels = capture_factor_levels(train, predictors, method="First")
    X = build_model_matrix(train, levels).values

    if model_type == "classification":
        family = "binomial"
        y, label_levels = encode_label(train[predicted_col])
    else:
        family = "gaussian"
        y, label_levels = train[predicted_col].to_numpy(dtype=float), None

    try:
        intercept, beta = _fit_glm_no_pen(X, y, family, cfg)
    except ConvergenceError as exc:
        warnings.warn(
            f"Row-wise explanation GLM did not converge ({exc}); continuing without it",
            AuxiliaryModelWarning,
            stacklevel=2,
        )
        return None

    return AuxiliaryGLM(
        family=family,
        predicted_col=predicted_col,
        intercept=intercept,
        coefficients=dict(zip(levels.column_names(), beta.tolist())),
        factor_levels=levels,
        label_levels=label_levels,
    )
