import numpy as np
import pytest

from lassopkg.additional_functions.performance import calculate_performance
from lassopkg.errors import NotApplicable, ShapeMismatchError


def test_regression_metrics_zero_for_exact_predictions() -> None:
    y = np.array([1.5, 2.0, -3.0, 4.0])
    metrics = calculate_performance(y.copy(), y, "regression")
    assert metrics.rmse == 0.0
    assert metrics.mae == 0.0
    assert isinstance(metrics.roc, NotApplicable)
    assert isinstance(metrics.pr, NotApplicable)
    assert metrics.auroc is None


def test_regression_metrics_values() -> None:
    y = np.array([0.0, 0.0, 0.0, 0.0])
    pred = np.array([1.0, -1.0, 3.0, -3.0])
    metrics = calculate_performance(pred, y, "regression")
    assert metrics.mae == pytest.approx(2.0)
    assert metrics.rmse == pytest.approx(np.sqrt(5.0))
    assert metrics.rmse > 0 and metrics.mae > 0


def test_classification_perfect_ranking() -> None:
    metrics = calculate_performance([0.1, 0.2, 0.8, 0.9], [0, 0, 1, 1], "classification")
    assert metrics.auroc == pytest.approx(1.0)
    assert metrics.aupr == pytest.approx(1.0)
    assert metrics.rmse is None
    assert metrics.roc.fpr[0] == 0.0 and metrics.roc.tpr[-1] == 1.0


def test_classification_text_labels() -> None:
    metrics = calculate_performance([0.9, 0.2, 0.7, 0.4], ["Y", "N", "Y", "N"], "classification")
    assert metrics.auroc == pytest.approx(1.0)


def test_random_predictions_auroc_near_half() -> None:
    rng = np.random.default_rng(7)
    y = np.repeat([0, 1], 2000)
    pred = rng.uniform(size=y.size)
    metrics = calculate_performance(pred, y, "classification")
    assert 0.0 <= metrics.auroc <= 1.0
    assert 0.0 <= metrics.aupr <= 1.0
    assert metrics.auroc == pytest.approx(0.5, abs=0.05)


def test_non_binary_label_curves_not_applicable() -> None:
    metrics = calculate_performance([0.1, 0.5, 0.9], ["a", "b", "c"], "classification")
    assert isinstance(metrics.roc, NotApplicable)
    assert isinstance(metrics.pr, NotApplicable)
    assert not metrics.roc
    assert metrics.auroc is None and metrics.aupr is None
    assert "3 distinct" in metrics.roc.reason


def test_length_mismatch() -> None:
    with pytest.raises(ShapeMismatchError):
        calculate_performance([0.1, 0.2], [0, 1, 1], "classification")


def test_unknown_model_type() -> None:
    with pytest.raises(ValueError):
        calculate_performance([0.1], [0], "ranking")


def test_summary_lists_available_metrics() -> None:
    text = calculate_performance([1.0, 2.0], [1.0, 1.0], "regression").summary()
    assert "RMSE" in text and "MAE" in text and "not applicable" in text


def test_label_levels_decide_binary_and_mapping() -> None:
    pred, y = [0.1, 0.2, 0.8, 0.9], ["N", "N", "Y", "Y"]

    metrics = calculate_performance(pred, y, "classification", label_levels=("N", "Y", "Z"))
    assert isinstance(metrics.roc, NotApplicable)
    assert metrics.auroc is None and metrics.aupr is None

    # "Y" as first level makes "N" the positive class
    metrics = calculate_performance(pred, y, "classification", label_levels=("Y", "N"))
    assert metrics.auroc == pytest.approx(0.0)
