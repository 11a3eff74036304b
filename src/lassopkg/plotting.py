"""Plots comparing developed models and showing the CV curve."""

from typing import Sequence

import matplotlib.pyplot as plt
import numpy as np

from lassopkg.additional_functions.performance import PRCurve, RocCurve
from lassopkg.errors import NotApplicable
from lassopkg.grouped_lasso import CVGroupLassoFit


def _drop_not_applicable(curves, names):
    kept = [(c, n) for c, n in zip(curves, names) if not isinstance(c, NotApplicable)]
    if not kept:
        raise ValueError("None of the curves can be plotted (all are not applicable)")
    return kept


def plot_rocs(rocs: Sequence[RocCurve], names: Sequence[str], legend_loc: str = "lower right", show: bool = True):
    """Overlay ROC curves of several models."""
    if len(rocs) != len(names):
        raise ValueError(f"{len(rocs)} curves but {len(names)} names")

    fig, ax = plt.subplots(figsize=(6, 6))
    for roc, name in _drop_not_applicable(rocs, names):
        ax.plot(roc.fpr, roc.tpr, label=name)
    ax.plot([0, 1], [0, 1], color="grey", linestyle="--", linewidth=0.8)

    ax.set_xlabel("False Positive Rate")
    ax.set_ylabel("True Positive Rate")
    ax.set_title("ROC")
    ax.legend(loc=legend_loc)
    fig.tight_layout()
    if show:
        plt.show()
    return fig


def plot_pr_curves(curves: Sequence[PRCurve], names: Sequence[str], legend_loc: str = "lower left", show: bool = True):
    """Overlay precision-recall curves of several models."""
    if len(curves) != len(names):
        raise ValueError(f"{len(curves)} curves but {len(names)} names")

    fig, ax = plt.subplots(figsize=(6, 6))
    for pr, name in _drop_not_applicable(curves, names):
        ax.plot(pr.recall, pr.precision, label=name)

    ax.set_xlabel("Recall")
    ax.set_ylabel("Precision")
    ax.set_xlim(0, 1)
    ax.set_ylim(0, 1.05)
    ax.set_title("Precision-Recall Curve")
    ax.legend(loc=legend_loc)
    fig.tight_layout()
    if show:
        plt.show()
    return fig


def plot_cv_curve(fit: CVGroupLassoFit, show: bool = True):
    """CV error +/- one standard error along log(lambda), with lambda.min and lambda.1se."""
    log_lambda = np.log(fit.lambdas)

    fig, ax = plt.subplots(figsize=(8, 6))
    ax.errorbar(log_lambda, fit.cve, yerr=fit.cvse, fmt="o", markersize=3, color="tab:red", ecolor="grey")
    ax.axvline(np.log(fit.lambda_min), linestyle="--", color="black", label="lambda.min")
    ax.axvline(np.log(fit.lambda_1se), linestyle=":", color="black", label="lambda.1se")

    # Largest lambda on the left, as the path is fitted
    ax.invert_xaxis()
    ax.set_xlabel("log(lambda)")
    ax.set_ylabel("CV loss (binomial deviance or Gaussian MSE)")
    ax.set_title("Group lasso cross-validation")
    ax.legend()
    fig.tight_layout()
    if show:
        plt.show()
    return fig
