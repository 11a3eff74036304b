"""
grouped_lasso.py
================

Cross-validated group-lasso GLM along a regularization path.

The penalized problem is solved with CVXPy, with lambda held in a
`cp.Parameter` so that one canonicalized problem is reused (warm started)
along the whole path:

    minimize  -(1/n) * loglik(intercept, beta) + lambda * sum_g sqrt(|g|) * ||beta_g||_2

Columns are standardized before solving and coefficients are mapped back to
the original scale. The intercept is never penalized.

Supported families
------------------
- "gaussian": identity link, squared-error loss (regression)
- "binomial": logit link, Bernoulli deviance (classification)

Model selection
---------------
K-fold cross-validation scores every lambda of the path on each held-out
fold. The selected lambda follows the one-standard-error rule: the path is
ordered from the largest lambda to the smallest, and the *smallest index*
whose CV error is within one standard error of the minimum is kept, i.e. the
most regularized model that is statistically indistinguishable from the best.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import cvxpy as cp
import numpy as np
from sklearn.model_selection import KFold, StratifiedKFold

from lassopkg.additional_functions.timing import time_it
from lassopkg.errors import (
    ConvergenceError,
    GroupMismatchError,
    InsufficientDataError,
    ShapeMismatchError,
)

FAMILIES = ("gaussian", "binomial")

# Groups whose coefficient norm falls below this are treated as dropped
ZERO_TOL = 1e-6


# -----------------------------------------------------------------------------
# CVXPy building blocks
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class SolverConfig:
    solver: str = "CLARABEL"
    warm_start: bool = True
    verbose: bool = False


def solve_problem(prob: cp.Problem, cfg: SolverConfig) -> None:
    """Solve a CVXPy problem with configured solver, failing on a non-optimal status."""
    try:
        prob.solve(solver=getattr(cp, cfg.solver), warm_start=cfg.warm_start, verbose=cfg.verbose)
    except cp.SolverError as exc:
        raise ConvergenceError(f"Solver {cfg.solver} failed: {exc}") from exc

    if prob.status not in (cp.OPTIMAL, cp.OPTIMAL_INACCURATE):
        raise ConvergenceError(f"Solver {cfg.solver} ended with status {prob.status!r}")


def check_family(family: str) -> str:
    fam = family.lower()
    if fam not in FAMILIES:
        raise ValueError(f"Unsupported family: {family!r} (supported: {', '.join(FAMILIES)})")
    return fam


def log_likelihood(
    family: str,
    X: np.ndarray,
    y: np.ndarray,
    beta: cp.Expression,
    intercept: cp.Expression,
) -> cp.Expression:
    """Return a concave log-likelihood expression for supported families."""
    eta = X @ beta + intercept
    fam = check_family(family)

    if fam == "binomial":
        return cp.sum(cp.multiply(y, eta) - cp.logistic(eta))
    return -0.5 * cp.sum_squares(y - eta)


def group_indices(group: np.ndarray) -> List[np.ndarray]:
    """Column indices of each group, in increasing group id order."""
    group = np.asarray(group)
    return [np.flatnonzero(group == g) for g in np.unique(group)]


def build_group_lasso_problem(
    X: np.ndarray,
    y: np.ndarray,
    group: np.ndarray,
    family: str,
) -> Tuple[cp.Problem, cp.Variable, cp.Variable, cp.Parameter]:
    """Build the group-lasso GLM problem with lambda as a Parameter (for reuse)."""
    n, p = X.shape
    beta = cp.Variable(p)
    intercept = cp.Variable()
    lam = cp.Parameter(nonneg=True, name="lambda_group")

    ll = log_likelihood(family, X, y, beta, intercept)

    group_pen = 0
    for idxs in group_indices(group):
        w = np.sqrt(len(idxs))
        group_pen += w * cp.norm(beta[idxs], 2)

    prob = cp.Problem(cp.Minimize(-ll / n + lam * group_pen))
    return prob, beta, intercept, lam


# -----------------------------------------------------------------------------
# Path helpers
# -----------------------------------------------------------------------------

def standardize(X: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Center and scale columns; constant columns keep a unit scale."""
    center = X.mean(axis=0)
    scale = X.std(axis=0)
    scale = np.where(scale > 0, scale, 1.0)
    return (X - center) / scale, center, scale


def lambda_max(Xs: np.ndarray, y: np.ndarray, group: np.ndarray) -> float:
    """Smallest lambda at which every group is zero (intercept-only model).

    Valid for both families because the intercept-only residual is y - mean(y)
    in each case.
    """
    n = len(y)
    r = y - y.mean()
    return max(
        float(np.linalg.norm(Xs[:, idxs].T @ r) / (n * np.sqrt(len(idxs))))
        for idxs in group_indices(group)
    )


def lambda_path(lmax: float, n_lambda: int, lambda_min_ratio: float) -> np.ndarray:
    """Log-spaced decreasing sequence from `lmax` to `lmax * lambda_min_ratio`."""
    return np.exp(np.linspace(np.log(lmax), np.log(lmax * lambda_min_ratio), n_lambda))


def _zero_small_groups(beta: np.ndarray, group: np.ndarray, tol: float = ZERO_TOL) -> np.ndarray:
    beta = beta.copy()
    for idxs in group_indices(group):
        if np.linalg.norm(beta[idxs]) < tol:
            beta[idxs] = 0.0
    return beta


def fit_path(
    X: np.ndarray,
    y: np.ndarray,
    group: np.ndarray,
    family: str,
    lambdas: Sequence[float],
    cfg: SolverConfig,
) -> Tuple[np.ndarray, np.ndarray]:
    """Fit the group lasso at every lambda and return (intercepts, coefficients).

    Coefficients are on the original column scale, shape (p, len(lambdas)).
    """
    Xs, center, scale = standardize(X)
    prob, beta, intercept, lam = build_group_lasso_problem(Xs, y, group, family)

    intercepts = np.empty(len(lambdas))
    coefs = np.empty((X.shape[1], len(lambdas)))

    for j, lbd in enumerate(lambdas):
        lam.value = float(lbd)
        solve_problem(prob, cfg)

        b = _zero_small_groups(np.asarray(beta.value, dtype=float), group) / scale
        coefs[:, j] = b
        intercepts[j] = float(intercept.value) - float(center @ b)

    return intercepts, coefs


# -----------------------------------------------------------------------------
# Losses and predictions
# -----------------------------------------------------------------------------

def inverse_link(family: str, eta: np.ndarray) -> np.ndarray:
    if check_family(family) == "binomial":
        # 1 / (1 + exp(-eta)) without overflow
        return np.exp(-np.logaddexp(0.0, -eta))
    return eta


def cv_loss(family: str, y: np.ndarray, pred: np.ndarray) -> float:
    """Held-out loss: Bernoulli deviance (binomial) or mean squared error (gaussian)."""
    y = np.asarray(y, dtype=float)
    pred = np.asarray(pred, dtype=float)

    if check_family(family) == "binomial":
        eps = 1e-12
        prob = np.clip(pred, eps, 1 - eps)
        return float(-2.0 * np.mean(y * np.log(prob) + (1 - y) * np.log(1 - prob)))
    return float(np.mean((y - pred) ** 2))


def predict_response(
    intercepts: np.ndarray,
    coefficients: np.ndarray,
    family: str,
    X: np.ndarray,
    lambda_index: int,
) -> np.ndarray:
    """Response-scale predictions (probabilities or values) at one path index."""
    X = np.asarray(X, dtype=float)
    if X.ndim != 2 or X.shape[1] != coefficients.shape[0]:
        raise ShapeMismatchError(
            f"Design has shape {X.shape} but the model holds {coefficients.shape[0]} coefficients"
        )
    eta = X @ coefficients[:, lambda_index] + intercepts[lambda_index]
    return inverse_link(family, eta)


def one_standard_error_index(cve: np.ndarray, cvse: np.ndarray) -> int:
    """Index chosen by the one-standard-error rule.

    With the path ordered from the largest lambda to the smallest, this is the
    minimum index whose CV error is <= cve[min] + cvse[min].
    """
    cve = np.asarray(cve, dtype=float)
    cvse = np.asarray(cvse, dtype=float)
    min_idx = int(np.argmin(cve))
    threshold = cve[min_idx] + cvse[min_idx]
    return int(np.flatnonzero(cve <= threshold).min())


# -----------------------------------------------------------------------------
# Fit result
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class CVGroupLassoFit:
    """Everything kept from a cross-validated path fit (read-only)."""

    family: str
    lambdas: np.ndarray
    intercepts: np.ndarray
    coefficients: np.ndarray
    cve: np.ndarray
    cvse: np.ndarray
    fold_errors: np.ndarray
    fold_ids: np.ndarray
    group: np.ndarray
    columns: Tuple[str, ...]
    variables: Tuple[str, ...]

    @property
    def min_index(self) -> int:
        return int(np.argmin(self.cve))

    @property
    def index_1se(self) -> int:
        return one_standard_error_index(self.cve, self.cvse)

    @property
    def lambda_min(self) -> float:
        return float(self.lambdas[self.min_index])

    @property
    def lambda_1se(self) -> float:
        return float(self.lambdas[self.index_1se])

    def predict(self, X: np.ndarray, lambda_index: Optional[int] = None) -> np.ndarray:
        idx = self.index_1se if lambda_index is None else lambda_index
        return predict_response(self.intercepts, self.coefficients, self.family, X, idx)

    def coef(self, lambda_index: Optional[int] = None) -> dict:
        """Intercept and coefficients by column name at one path index."""
        idx = self.index_1se if lambda_index is None else lambda_index
        out = {"(Intercept)": float(self.intercepts[idx])}
        out.update(zip(self.columns, self.coefficients[:, idx].tolist()))
        return out

    def nonzero_groups(self, lambda_index: Optional[int] = None) -> List[int]:
        """Ids of the groups with at least one non-zero coefficient."""
        idx = self.index_1se if lambda_index is None else lambda_index
        beta = self.coefficients[:, idx]
        return [int(g) for g in np.unique(self.group) if np.any(beta[self.group == g] != 0)]

    def variables_kept(self, lambda_index: Optional[int] = None) -> List[str]:
        """Source predictors whose group has non-zero coefficients."""
        position = {int(g): i for i, g in enumerate(np.unique(self.group))}
        return [self.variables[position[g]] for g in self.nonzero_groups(lambda_index)]


# -----------------------------------------------------------------------------
# Cross-validated trainer
# -----------------------------------------------------------------------------

class CVGroupLasso:
    """K-fold cross-validated group lasso, mirroring `cv.grpreg(penalty="grLasso")`.

    Parameters
    ----------
    family:
        "binomial" (classification) or "gaussian" (regression).
    n_folds:
        Number of CV folds (>= 2 and <= number of rows).
    n_lambda:
        Length of the regularization path.
    lambda_min_ratio:
        Smallest lambda as a fraction of lambda_max. Defaults to 0.001 when
        there are more rows than columns, 0.05 otherwise.
    random_state:
        Seed of the fold shuffling.
    n_jobs:
        Threads used to fit folds concurrently.
    """

    def __init__(
        self,
        family: str,
        n_folds: int = 5,
        n_lambda: int = 100,
        lambda_min_ratio: Optional[float] = None,
        random_state: Optional[int] = 0,
        solver: str = "CLARABEL",
        warm_start: bool = True,
        verbose: bool = False,
        n_jobs: int = 1,
    ):
        self.family = check_family(family)
        if n_lambda < 2:
            raise ValueError(f"n_lambda must be at least 2, got {n_lambda}")
        if lambda_min_ratio is not None and not 0 < lambda_min_ratio < 1:
            raise ValueError(f"lambda_min_ratio must be in (0, 1), got {lambda_min_ratio}")

        self.n_folds = int(n_folds)
        self.n_lambda = int(n_lambda)
        self.lambda_min_ratio = lambda_min_ratio
        self.random_state = random_state
        self.solver_cfg = SolverConfig(solver=solver, warm_start=warm_start, verbose=verbose)
        self.verbose = verbose
        self.n_jobs = int(n_jobs) if n_jobs is not None else 1

    def make_folds(self, y: np.ndarray) -> List[Tuple[np.ndarray, np.ndarray]]:
        """Fold splits; stratified on the label for the binomial family."""
        n = len(y)
        if self.n_folds < 2:
            raise InsufficientDataError(f"At least 2 folds are needed, got {self.n_folds}")
        if self.n_folds > n:
            raise InsufficientDataError(f"{self.n_folds} folds requested but only {n} training rows")

        if self.family == "binomial":
            counts = np.bincount(y.astype(int), minlength=2)
            if counts.min() < self.n_folds:
                raise InsufficientDataError(
                    f"Label class counts {counts.tolist()} are too small for {self.n_folds} folds"
                )
            splitter = StratifiedKFold(n_splits=self.n_folds, shuffle=True, random_state=self.random_state)
        else:
            splitter = KFold(n_splits=self.n_folds, shuffle=True, random_state=self.random_state)

        return list(splitter.split(np.zeros((n, 1)), y))

    def _check_fold(self, fold_id: int, y_train: np.ndarray) -> None:
        if len(y_train) < 2:
            raise InsufficientDataError(f"Fold {fold_id} leaves {len(y_train)} training row(s)")
        if self.family == "binomial" and len(np.unique(y_train)) < 2:
            raise InsufficientDataError(f"Fold {fold_id} training data holds a single label class")
        if self.family == "gaussian" and np.ptp(y_train) == 0:
            raise InsufficientDataError(f"Fold {fold_id} training label is constant")

    def _cv_fold_loss(
        self,
        fold_id: int,
        train_idx: np.ndarray,
        test_idx: np.ndarray,
        X: np.ndarray,
        y: np.ndarray,
        group: np.ndarray,
        lambdas: np.ndarray,
    ) -> Tuple[int, np.ndarray]:
        """Held-out loss at every lambda for one fold.

        Each call builds its own CVXPy problem, so folds can run in threads.
        """
        intercepts, coefs = fit_path(X[train_idx], y[train_idx], group, self.family, lambdas, self.solver_cfg)

        errors = np.empty(len(lambdas))
        for j in range(len(lambdas)):
            pred = predict_response(intercepts, coefs, self.family, X[test_idx], j)
            errors[j] = cv_loss(self.family, y[test_idx], pred)
        return fold_id, errors

    @time_it
    def fit(
        self,
        X: np.ndarray,
        y: np.ndarray,
        group: np.ndarray,
        columns: Optional[Sequence[str]] = None,
        variables: Optional[Sequence[str]] = None,
    ) -> CVGroupLassoFit:
        X = np.asarray(X, dtype=float)
        y = np.asarray(y, dtype=float)
        group = np.asarray(group, dtype=int)
        n, p = X.shape

        if len(group) != p:
            raise GroupMismatchError(f"Group vector has {len(group)} entries but X has {p} columns")
        if len(y) != n:
            raise ShapeMismatchError(f"X has {n} rows but y has {len(y)} values")
        if p == 0:
            raise ShapeMismatchError("The model matrix has no columns")
        if self.family == "binomial" and not np.isin(y, (0.0, 1.0)).all():
            raise ValueError("The binomial family needs a 0/1 label")

        columns = tuple(columns) if columns is not None else tuple(f"V{i + 1}" for i in range(p))
        n_groups = len(np.unique(group))
        variables = tuple(variables) if variables is not None else tuple(f"G{g}" for g in np.unique(group))
        if len(variables) != n_groups:
            raise GroupMismatchError(f"{len(variables)} variable names for {n_groups} groups")

        splits = self.make_folds(y)
        for fold_id, (train_idx, _) in enumerate(splits):
            self._check_fold(fold_id, y[train_idx])

        # Path shared by the full fit and every fold
        Xs, _, _ = standardize(X)
        lmax = lambda_max(Xs, y, group)
        if lmax <= 0:
            raise InsufficientDataError("No predictor is correlated with the label (lambda_max is 0)")
        ratio = self.lambda_min_ratio
        if ratio is None:
            ratio = 0.001 if n > p else 0.05
        lambdas = lambda_path(lmax, self.n_lambda, ratio)

        if self.verbose:
            print(f"Group lasso path: {self.n_lambda} lambdas from {lambdas[0]:.4g} to {lambdas[-1]:.4g}")

        intercepts, coefs = fit_path(X, y, group, self.family, lambdas, self.solver_cfg)

        if self.n_jobs > 1:
            with ThreadPoolExecutor(max_workers=self.n_jobs) as ex:
                futs = [
                    ex.submit(self._cv_fold_loss, fold_id, train_idx, test_idx, X, y, group, lambdas)
                    for fold_id, (train_idx, test_idx) in enumerate(splits)
                ]
                out = [f.result() for f in futs]
        else:
            out = [
                self._cv_fold_loss(fold_id, train_idx, test_idx, X, y, group, lambdas)
                for fold_id, (train_idx, test_idx) in enumerate(splits)
            ]

        # Keep ordering stable by fold_id
        out.sort(key=lambda t: t[0])
        fold_errors = np.vstack([errors for _, errors in out])

        fold_ids = np.empty(n, dtype=int)
        for fold_id, (_, test_idx) in enumerate(splits):
            fold_ids[test_idx] = fold_id

        cve = fold_errors.mean(axis=0)
        cvse = fold_errors.std(axis=0, ddof=1) / np.sqrt(self.n_folds)

        return CVGroupLassoFit(
            family=self.family,
            lambdas=lambdas,
            intercepts=intercepts,
            coefficients=coefs,
            cve=cve,
            cvse=cvse,
            fold_errors=fold_errors,
            fold_ids=fold_ids,
            group=group,
            columns=columns,
            variables=variables,
        )
