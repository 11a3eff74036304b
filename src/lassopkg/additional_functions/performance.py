"""Performance metrics for classification and regression predictions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

import numpy as np
import pandas as pd
from sklearn.metrics import auc, mean_absolute_error, mean_squared_error, precision_recall_curve, roc_curve

from lassopkg.additional_functions.encoding import encode_label
from lassopkg.errors import NotApplicable, ShapeMismatchError

MODEL_TYPES = ("classification", "regression")


@dataclass(frozen=True)
class RocCurve:
    fpr: np.ndarray
    tpr: np.ndarray
    thresholds: np.ndarray


@dataclass(frozen=True)
class PRCurve:
    precision: np.ndarray
    recall: np.ndarray
    thresholds: np.ndarray


@dataclass(frozen=True)
class PerformanceMetrics:
    """Metrics bundle; fields that do not apply to the model type are None or NotApplicable."""

    roc: Union[RocCurve, NotApplicable]
    pr: Union[PRCurve, NotApplicable]
    auroc: Optional[float] = None
    aupr: Optional[float] = None
    rmse: Optional[float] = None
    mae: Optional[float] = None

    def summary(self) -> str:
        lines = []
        if self.auroc is not None:
            lines.append(f"AUROC: {self.auroc:.4f}")
        if self.aupr is not None:
            lines.append(f"AUPR: {self.aupr:.4f}")
        if self.rmse is not None:
            lines.append(f"RMSE: {self.rmse:.4f}")
        if self.mae is not None:
            lines.append(f"MAE: {self.mae:.4f}")
        if isinstance(self.roc, NotApplicable):
            lines.append(f"ROC / PR curves: not applicable ({self.roc.reason})")
        return "\n".join(lines)


def calculate_performance(
    predictions, y_true, model_type: str, label_levels: Optional[tuple] = None
) -> PerformanceMetrics:
    """Compute the metrics bundle from predictions and ground truth.

    Parameters
    ----------
    predictions:
        Probabilities (classification) or values (regression), one per row.
    y_true:
        Ground truth in the same row order. For classification it may hold
        raw labels (e.g. "N"/"Y"); the first level in sorted order is the
        negative class.
    model_type:
        "classification" or "regression".
    label_levels:
        Levels of the whole label column, first level negative. When given,
        the curves are only built for exactly two levels and `y_true` is
        encoded with them; otherwise the levels are read from `y_true`.

    Returns
    -------
    PerformanceMetrics
        Classification fills ROC, PR, AUROC and AUPR (areas by trapezoidal
        integration). A label without exactly two distinct values leaves
        the curves as NotApplicable. Regression fills RMSE and MAE.
    """
    if model_type not in MODEL_TYPES:
        raise ValueError(f"model_type must be one of {MODEL_TYPES}, got {model_type!r}")

    pred = np.asarray(predictions, dtype=float).ravel()
    truth = pd.Series(np.asarray(y_true).ravel())
    if len(pred) != len(truth):
        raise ShapeMismatchError(f"{len(pred)} predictions for {len(truth)} ground-truth values")

    if model_type == "regression":
        y = truth.to_numpy(dtype=float)
        return PerformanceMetrics(
            roc=NotApplicable("ROC is only computed for a binary classification label"),
            pr=NotApplicable("PR curve is only computed for a binary classification label"),
            rmse=float(np.sqrt(mean_squared_error(y, pred))),
            mae=float(mean_absolute_error(y, pred)),
        )

    n_distinct = truth.dropna().nunique() if label_levels is None else len(label_levels)
    if n_distinct != 2:
        reason = f"the predicted column has {n_distinct} distinct value(s), not 2"
        return PerformanceMetrics(
            roc=NotApplicable(f"ROC is not created because {reason}"),
            pr=NotApplicable(f"PR curve is not created because {reason}"),
        )

    y, _ = encode_label(truth, label_levels)

    fpr, tpr, roc_thresholds = roc_curve(y, pred)
    precision, recall, pr_thresholds = precision_recall_curve(y, pred)

    return PerformanceMetrics(
        roc=RocCurve(fpr=fpr, tpr=tpr, thresholds=roc_thresholds),
        pr=PRCurve(precision=precision, recall=recall, thresholds=pr_thresholds),
        auroc=float(auc(fpr, tpr)),
        aupr=float(auc(recall, precision)),
    )
