import numpy as np
import pytest

from lassopkg.errors import GroupMismatchError, InsufficientDataError, ShapeMismatchError
from lassopkg.grouped_lasso import (
    CVGroupLasso,
    cv_loss,
    lambda_path,
    one_standard_error_index,
    standardize,
)


def _regression_data(n: int = 120, seed: int = 0):
    """x1 drives y; x2 and the 3-level dummies (columns 2-3) are noise."""
    rng = np.random.default_rng(seed)
    x1 = rng.normal(size=n)
    x2 = rng.normal(size=n)
    cat = rng.integers(0, 3, size=n)
    X = np.column_stack([x1, x2, (cat == 1).astype(float), (cat == 2).astype(float)])
    y = 1.0 + 3.0 * x1 + rng.normal(scale=0.5, size=n)
    group = np.array([1, 2, 3, 3])
    return X, y, group


def _classification_data(n: int = 150, seed: int = 1):
    rng = np.random.default_rng(seed)
    x1 = rng.normal(size=n)
    x2 = rng.normal(size=n)
    p = 1.0 / (1.0 + np.exp(-2.5 * x1))
    y = (rng.uniform(size=n) < p).astype(float)
    return np.column_stack([x1, x2]), y, np.array([1, 2])


def test_one_standard_error_index_picks_most_regularized() -> None:
    cve = np.array([5.0, 3.0, 2.0, 1.9, 2.5])
    cvse = np.array([0.1, 0.1, 0.1, 0.2, 0.1])
    idx = one_standard_error_index(cve, cvse)
    assert idx == 2
    threshold = cve.min() + cvse[np.argmin(cve)]
    assert cve[idx] <= threshold
    assert not np.any(cve[:idx] <= threshold)


def test_one_standard_error_index_ties() -> None:
    assert one_standard_error_index(np.array([1.0, 1.0, 1.0]), np.zeros(3)) == 0
    assert one_standard_error_index(np.array([4.0, 1.0, 1.0]), np.zeros(3)) == 1


def test_lambda_path_is_decreasing() -> None:
    path = lambda_path(2.0, 10, 0.01)
    assert path[0] == pytest.approx(2.0)
    assert path[-1] == pytest.approx(0.02)
    assert np.all(np.diff(path) < 0)


def test_standardize_keeps_constant_columns() -> None:
    X = np.array([[1.0, 5.0], [3.0, 5.0]])
    Xs, center, scale = standardize(X)
    assert scale.tolist() == [1.0, 1.0]
    assert Xs[:, 1].tolist() == [0.0, 0.0]


def test_cv_loss() -> None:
    assert cv_loss("gaussian", [1.0, 2.0], [1.0, 4.0]) == pytest.approx(2.0)
    assert cv_loss("binomial", [1.0, 0.0], [0.5, 0.5]) == pytest.approx(2 * np.log(2))


def test_fold_count_validation() -> None:
    y = np.arange(4, dtype=float)
    with pytest.raises(InsufficientDataError):
        CVGroupLasso("gaussian", n_folds=5).make_folds(y)
    with pytest.raises(InsufficientDataError):
        CVGroupLasso("gaussian", n_folds=1).make_folds(y)
    with pytest.raises(InsufficientDataError):
        CVGroupLasso("binomial", n_folds=5).make_folds(np.array([0, 0, 0, 0, 0, 0, 1, 1, 1, 1.0]))


def test_unknown_family() -> None:
    with pytest.raises(ValueError):
        CVGroupLasso("poisson")


def test_gaussian_fit_path_and_selection() -> None:
    X, y, group = _regression_data()
    fit = CVGroupLasso("gaussian", n_folds=5, n_lambda=15, random_state=0).fit(
        X, y, group, columns=["x1", "x2", "c_b", "c_c"], variables=["x1", "x2", "c"]
    )

    assert fit.coefficients.shape == (4, 15)
    assert fit.cve.shape == (15,) and fit.cvse.shape == (15,)
    assert fit.fold_errors.shape == (5, 15)
    assert np.all(np.diff(fit.lambdas) < 0)
    assert np.all(fit.cvse >= 0)
    assert sorted(set(fit.fold_ids.tolist())) == [0, 1, 2, 3, 4]

    # lambda_max zeroes every group
    assert fit.nonzero_groups(0) == []

    idx = fit.index_1se
    assert fit.cve[idx] <= fit.cve[fit.min_index] + fit.cvse[fit.min_index]
    assert idx <= fit.min_index
    assert fit.lambda_1se >= fit.lambda_min
    assert "x1" in fit.variables_kept()

    # Dummies of one categorical predictor enter or leave together
    for j in range(15):
        b = fit.coefficients[2:, j]
        assert np.all(b == 0) or np.all(b != 0)


def test_gaussian_recovers_signal_at_small_lambda() -> None:
    X, y, group = _regression_data(n=200)
    fit = CVGroupLasso("gaussian", n_lambda=12, random_state=0).fit(X, y, group)
    coef = fit.coef(len(fit.lambdas) - 1)
    assert coef["V1"] == pytest.approx(3.0, abs=0.2)
    assert coef["(Intercept)"] == pytest.approx(1.0, abs=0.3)


def test_binomial_predictions_are_probabilities() -> None:
    X, y, group = _classification_data()
    fit = CVGroupLasso("binomial", n_lambda=10, random_state=3).fit(X, y, group, variables=["x1", "x2"])
    prob = fit.predict(X)
    assert prob.shape == (len(y),)
    assert np.all((prob >= 0) & (prob <= 1))
    assert "x1" in fit.variables_kept()


def test_parallel_folds_match_sequential() -> None:
    X, y, group = _regression_data(n=80)
    seq = CVGroupLasso("gaussian", n_lambda=8, random_state=2, n_jobs=1).fit(X, y, group)
    par = CVGroupLasso("gaussian", n_lambda=8, random_state=2, n_jobs=3).fit(X, y, group)
    np.testing.assert_allclose(seq.cve, par.cve, rtol=1e-6)
    assert seq.index_1se == par.index_1se


def test_shape_and_group_mismatch() -> None:
    X, y, group = _regression_data(n=60)
    with pytest.raises(GroupMismatchError):
        CVGroupLasso("gaussian", n_lambda=5).fit(X, y, group[:3])

    fit = CVGroupLasso("gaussian", n_lambda=5).fit(X, y, group)
    with pytest.raises(ShapeMismatchError):
        fit.predict(X[:, :3])


def test_binomial_needs_zero_one_label() -> None:
    X, y, group = _classification_data()
    with pytest.raises(ValueError):
        CVGroupLasso("binomial", n_lambda=5).fit(X, y + 1, group)
