import numpy as np
import pandas as pd
import pytest

import lassopkg.glm as glm
from lassopkg.errors import AuxiliaryModelWarning, ConvergenceError
from lassopkg.glm import fit_auxiliary_glm


def _linear_frame(n: int = 60) -> pd.DataFrame:
    rng = np.random.default_rng(4)
    x = rng.normal(size=n)
    site = np.array(["north", "south", "west"])[np.arange(n) % 3]
    y = 1.0 + 2.0 * x + np.where(site == "south", 0.5, 0.0) - np.where(site == "west", 1.0, 0.0)
    return pd.DataFrame({"x": x, "site": site, "y": y})


def test_regression_glm_recovers_coefficients() -> None:
    df = _linear_frame()
    model = fit_auxiliary_glm(df, "y", "regression")

    assert model is not None
    assert list(model.coefficients) == ["x", "site_south", "site_west"]
    assert model.intercept == pytest.approx(1.0, abs=1e-3)
    assert model.coefficients["x"] == pytest.approx(2.0, abs=1e-3)
    assert model.coefficients["site_south"] == pytest.approx(0.5, abs=1e-3)
    assert model.coefficients["site_west"] == pytest.approx(-1.0, abs=1e-3)
    np.testing.assert_allclose(model.predict(df), df["y"], atol=1e-3)


def test_row_contributions() -> None:
    df = _linear_frame()
    model = fit_auxiliary_glm(df, "y", "regression")
    contrib = model.row_contributions(df.head(3))

    assert contrib.shape == (3, 3)
    assert list(contrib.index) == list(df.index[:3])
    np.testing.assert_allclose(contrib["x"], df["x"].head(3) * model.coefficients["x"])


def test_classification_glm_returns_probabilities() -> None:
    rng = np.random.default_rng(5)
    x = rng.normal(size=200)
    label = np.where(rng.uniform(size=200) < 1 / (1 + np.exp(-x)), "Y", "N")
    df = pd.DataFrame({"x": x, "label": label})

    model = fit_auxiliary_glm(df, "label", "classification")
    assert model.family == "binomial"
    assert model.label_levels == ("N", "Y")
    prob = model.predict(df)
    assert np.all((prob > 0) & (prob < 1))
    assert model.coefficients["x"] > 0


def test_solver_failure_warns_and_returns_none(monkeypatch) -> None:
    def _fail(*args, **kwargs):
        raise ConvergenceError("status 'infeasible_inaccurate'")

    monkeypatch.setattr(glm, "_fit_glm_no_pen", _fail)
    with pytest.warns(AuxiliaryModelWarning, match="did not converge"):
        assert fit_auxiliary_glm(_linear_frame(), "y", "regression") is None


def test_separable_classification_warns_and_returns_none() -> None:
    x = np.linspace(-3, 3, 80)
    df = pd.DataFrame({"x": x, "label": np.where(x > 0, "Y", "N")})

    with pytest.warns(AuxiliaryModelWarning, match="did not converge"):
        assert fit_auxiliary_glm(df, "label", "classification") is None
