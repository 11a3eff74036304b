"""
development.py
==============

Develop (train, test and report on) a grouped-Lasso model from a labeled
DataFrame.

Pipeline of one run
-------------------
1. Prepare data: drop the grain column, turn text predictors into
   categoricals, impute or drop missing values, split train / test.
2. Fit the unpenalized GLM used for row-wise explanations (auxiliary; a
   failure only warns).
3. Build the model matrix and group vector from the training subset, fit the
   cross-validated group lasso and pick lambda with the one-standard-error
   rule.
4. Save both fitted objects (when `model_dir` is set).
5. Predict the test subset and compute the performance metrics.

Example
-------
>>> params = DevelopmentParams(df=df, model_type="classification", predicted_col="ThirtyDayReadmitFLG",
...                            grain_col="PatientEncounterID", impute=True)
>>> lasso = LassoDevelopment(params)
>>> lasso.run()
>>> lasso.get_auroc()
"""

from __future__ import annotations

import warnings
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple, Union

import joblib
import numpy as np
import pandas as pd
from sklearn.model_selection import train_test_split

from lassopkg.additional_functions.encoding import (
    FactorLevels,
    ModelMatrix,
    build_model_matrix,
    capture_factor_levels,
    encode_label,
    impute_columns,
    is_binary,
    observed_levels,
    to_categorical,
)
from lassopkg.additional_functions.performance import PerformanceMetrics, PRCurve, RocCurve, calculate_performance
from lassopkg.additional_functions.timing import time_it
from lassopkg.errors import InsufficientDataError, NotApplicable
from lassopkg.glm import AuxiliaryGLM, fit_auxiliary_glm
from lassopkg.grouped_lasso import CVGroupLasso, CVGroupLassoFit, SolverConfig

MODEL_FILE = "rmodel_probability_lasso.joblib"
AUX_MODEL_FILE = "rmodel_var_import_lasso.joblib"


# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------

@dataclass
class DevelopmentParams:
    """Options of a development run.

    `df_test` is optional: when given, `df` is used as the training subset
    as is and no split is made.
    """

    df: pd.DataFrame
    model_type: str
    predicted_col: str
    grain_col: Optional[str] = None
    impute: bool = False
    debug: bool = False
    print_results: bool = True
    var_imp: bool = False
    df_test: Optional[pd.DataFrame] = None
    test_size: float = 0.2
    random_state: Optional[int] = 42
    n_folds: int = 5
    n_lambda: int = 100
    lambda_min_ratio: Optional[float] = None
    n_jobs: int = 1
    model_dir: Optional[Union[str, Path]] = None
    solver: SolverConfig = field(default_factory=SolverConfig)

    def __post_init__(self):
        if self.model_type not in ("classification", "regression"):
            raise ValueError(f"model_type must be 'classification' or 'regression', got {self.model_type!r}")
        if self.predicted_col not in self.df.columns:
            raise ValueError(f"Predicted column {self.predicted_col!r} not found in df")
        if self.grain_col == "":
            self.grain_col = None
        if self.grain_col is not None and self.grain_col not in self.df.columns:
            raise ValueError(f"Grain column {self.grain_col!r} not found in df")
        if self.df_test is None and not 0 < self.test_size < 1:
            raise ValueError(f"test_size must be in (0, 1), got {self.test_size}")
        if self.model_type == "regression" and not pd.api.types.is_numeric_dtype(self.df[self.predicted_col]):
            raise ValueError(f"Regression needs a numeric predicted column, {self.predicted_col!r} is not")


# -----------------------------------------------------------------------------
# Data preparation
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class PreparedData:
    train: pd.DataFrame
    test: pd.DataFrame
    predictors: Tuple[str, ...]
    grain_train: Optional[pd.Series] = None
    grain_test: Optional[pd.Series] = None


def _clean(df: pd.DataFrame, params: DevelopmentParams, predictors: List[str]) -> pd.DataFrame:
    df = df.dropna(subset=[params.predicted_col])
    df = to_categorical(df, predictors)
    if params.impute:
        return impute_columns(df, predictors)
    return df.dropna(subset=predictors)


def prepare_development_data(params: DevelopmentParams) -> PreparedData:
    """Clean the input table and split it into training and test subsets."""
    drop = [params.predicted_col] + ([params.grain_col] if params.grain_col else [])
    predictors = [c for c in params.df.columns if c not in drop]
    if not predictors:
        raise ValueError("No predictor columns left once the predicted and grain columns are removed")

    if params.df_test is not None:
        # Convert the two subsets together so they share categorical levels
        both = pd.concat([params.df, params.df_test], keys=["train", "test"])
        both = _clean(both, params, predictors)
        part = both.index.get_level_values(0)
        train, test = both[part == "train"].droplevel(0), both[part == "test"].droplevel(0)
    else:
        df = _clean(params.df, params, predictors)
        if len(df) < 2:
            raise InsufficientDataError(f"{len(df)} usable row(s) left after removing missing values")
        stratify = df[params.predicted_col] if params.model_type == "classification" else None
        train, test = train_test_split(
            df, test_size=params.test_size, random_state=params.random_state, stratify=stratify
        )

    if len(train) == 0 or len(test) == 0:
        raise InsufficientDataError(f"Split left {len(train)} training and {len(test)} test row(s)")

    grain_train = grain_test = None
    if params.grain_col:
        grain_train, grain_test = train[params.grain_col], test[params.grain_col]
        train, test = train.drop(columns=params.grain_col), test.drop(columns=params.grain_col)

    return PreparedData(
        train=train,
        test=test,
        predictors=tuple(predictors),
        grain_train=grain_train,
        grain_test=grain_test,
    )


# -----------------------------------------------------------------------------
# Run artifacts
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class TrainingArtifacts:
    """Outputs of `build_model`, created once per run."""

    matrix: ModelMatrix
    group: np.ndarray
    fitted_model: CVGroupLassoFit
    selected_index: int
    selected_strength: float
    factor_levels: FactorLevels
    y_train: np.ndarray
    label_levels: Optional[Tuple] = None


@dataclass(frozen=True)
class LassoModelArtifact:
    """What is saved for deploy-time scoring of new rows."""

    fitted_model: CVGroupLassoFit
    factor_levels: FactorLevels
    selected_index: int
    model_type: str
    predicted_col: str
    label_levels: Optional[Tuple] = None

    def predict(self, data: pd.DataFrame) -> np.ndarray:
        X = build_model_matrix(data, self.factor_levels).values
        return self.fitted_model.predict(X, self.selected_index)


def load_model(path: Union[str, Path]):
    """Reload an object written by `LassoDevelopment.save_model`."""
    return joblib.load(path)


# -----------------------------------------------------------------------------
# Models
# -----------------------------------------------------------------------------

class SupervisedModel(ABC):
    """Interface shared by the model development classes."""

    @abstractmethod
    def build_model(self):
        ...

    @abstractmethod
    def perform_prediction(self, artifacts=None):
        ...

    @abstractmethod
    def generate_performance_metrics(self, predictions=None):
        ...

    def run(self):
        artifacts = self.build_model()
        predictions = self.perform_prediction(artifacts)
        return self.generate_performance_metrics(predictions)


class LassoDevelopment(SupervisedModel):
    """Grouped-Lasso model development.

    Dummy columns of a categorical predictor form one group, so the whole
    predictor enters or leaves the model together. Lambda is picked by
    cross-validation with the one-standard-error rule.
    """

    def __init__(self, params: DevelopmentParams, data: Optional[PreparedData] = None):
        self.params = params
        self.verbose = params.debug
        self.data = data if data is not None else prepare_development_data(params)
        self.family = "binomial" if params.model_type == "classification" else "gaussian"

        self._artifacts: Optional[TrainingArtifacts] = None
        self._aux: Optional[AuxiliaryGLM] = None
        self._predictions: Optional[np.ndarray] = None
        self._metrics: Optional[PerformanceMetrics] = None

        if self.verbose:
            print(f"Training rows: {len(self.data.train)}, test rows: {len(self.data.test)}")
            print(f"Predictors: {list(self.data.predictors)}")

    # -------------------------
    # Pipeline stages
    # -------------------------

    def fit_generalized_linear_model(self) -> Optional[AuxiliaryGLM]:
        """Fit the GLM used downstream for row-wise guidance."""
        if self.verbose:
            print("Generating GLM for row-wise guidance...")
        self._aux = fit_auxiliary_glm(
            self.data.train,
            self.params.predicted_col,
            self.params.model_type,
            predictors=self.data.predictors,
            solver_cfg=self.params.solver,
        )
        return self._aux

    def _encode_label(self, subset: pd.DataFrame, label_levels: Optional[Tuple] = None) -> Tuple[np.ndarray, Optional[Tuple]]:
        col = subset[self.params.predicted_col]
        if self.params.model_type == "classification":
            return encode_label(col, label_levels)
        return col.to_numpy(dtype=float), None

    @time_it
    def build_model(self) -> TrainingArtifacts:
        """Build the model matrix and groups, then fit the cross-validated group lasso."""
        levels = capture_factor_levels(self.data.train, self.data.predictors)
        matrix = build_model_matrix(self.data.train, levels)
        y_train, label_levels = self._encode_label(self.data.train)

        if self.verbose:
            print(f"Model matrix: {matrix.n_rows} rows x {matrix.n_columns} columns")
            print(f"Groups: {matrix.group.tolist()}")

        trainer = CVGroupLasso(
            family=self.family,
            n_folds=self.params.n_folds,
            n_lambda=self.params.n_lambda,
            lambda_min_ratio=self.params.lambda_min_ratio,
            random_state=self.params.random_state,
            solver=self.params.solver.solver,
            warm_start=self.params.solver.warm_start,
            verbose=self.params.debug,
            n_jobs=self.params.n_jobs,
        )
        fit = trainer.fit(matrix.values, y_train, matrix.group, columns=matrix.columns, variables=matrix.variables)

        selected = fit.index_1se
        self._artifacts = TrainingArtifacts(
            matrix=matrix,
            group=matrix.group,
            fitted_model=fit,
            selected_index=selected,
            selected_strength=float(fit.lambdas[selected]),
            factor_levels=levels,
            y_train=y_train,
            label_levels=label_levels,
        )

        if self.verbose:
            print(f"lambda.min = {fit.lambda_min:.4g}, lambda.1se = {fit.lambda_1se:.4g} (index {selected})")
        return self._artifacts

    def save_model(self, artifacts: Optional[TrainingArtifacts] = None) -> Optional[Tuple[Path, Path]]:
        """Write the fitted group lasso and the auxiliary GLM to `model_dir`."""
        if self.params.model_dir is None:
            return None
        artifacts = artifacts or self._require_artifacts()
        if self.verbose:
            print("Saving model...")

        model_dir = Path(self.params.model_dir)
        model_dir.mkdir(parents=True, exist_ok=True)

        model = LassoModelArtifact(
            fitted_model=artifacts.fitted_model,
            factor_levels=artifacts.factor_levels,
            selected_index=artifacts.selected_index,
            model_type=self.params.model_type,
            predicted_col=self.params.predicted_col,
            label_levels=artifacts.label_levels,
        )
        model_path = model_dir / MODEL_FILE
        aux_path = model_dir / AUX_MODEL_FILE
        joblib.dump(model, model_path)
        joblib.dump(self._aux, aux_path)
        return model_path, aux_path

    def perform_prediction(self, artifacts: Optional[TrainingArtifacts] = None) -> np.ndarray:
        """Predict the test subset at the one-standard-error lambda."""
        artifacts = artifacts or self._require_artifacts()
        X_test = build_model_matrix(self.data.test, artifacts.factor_levels).values
        self._predictions = artifacts.fitted_model.predict(X_test, artifacts.selected_index)

        if self.verbose:
            print(f"Rows in prediction: {len(self._predictions)}")
            kind = "classification probability" if self.params.model_type == "classification" else "regression value"
            print(f"First 10 raw {kind} predictions")
            print(np.round(self._predictions[:10], 2))
        return self._predictions

    def generate_performance_metrics(self, predictions: Optional[np.ndarray] = None) -> PerformanceMetrics:
        """Score the test predictions and print the requested summaries."""
        if predictions is None:
            predictions = self._predictions
        if predictions is None:
            raise RuntimeError("perform_prediction must run before generate_performance_metrics")
        artifacts = self._require_artifacts()

        y_test = self.data.test[self.params.predicted_col]
        label_levels = None
        if self.params.model_type == "classification":
            if self._label_is_binary():
                label_levels = artifacts.label_levels
            else:
                label_levels = observed_levels(self.params.df[self.params.predicted_col])

        self._metrics = calculate_performance(predictions, y_test, self.params.model_type, label_levels)
        print(self._metrics.summary())

        if self.params.print_results:
            print("Grouped Lasso coefficients:")
            print(pd.Series(artifacts.fitted_model.coef(artifacts.selected_index)))

        if self.params.var_imp:
            print("Variables with non-zero coefficients: ", " ".join(self.get_variable_importance()))

        return self._metrics

    @time_it
    def run(self) -> PerformanceMetrics:
        # Auxiliary GLM first; it never stops the run
        self.fit_generalized_linear_model()
        artifacts = self.build_model()
        self.save_model(artifacts)
        predictions = self.perform_prediction(artifacts)
        return self.generate_performance_metrics(predictions)

    # -------------------------
    # Query API
    # -------------------------

    def _require_artifacts(self) -> TrainingArtifacts:
        if self._artifacts is None:
            raise RuntimeError("build_model must run first")
        return self._artifacts

    def _require_metrics(self) -> PerformanceMetrics:
        if self._metrics is None:
            raise RuntimeError("generate_performance_metrics must run first")
        return self._metrics

    def _label_is_binary(self) -> bool:
        return is_binary(self.params.df[self.params.predicted_col])

    def get_artifacts(self) -> TrainingArtifacts:
        return self._require_artifacts()

    def get_fit(self) -> CVGroupLassoFit:
        return self._require_artifacts().fitted_model

    def get_auxiliary_model(self) -> Optional[AuxiliaryGLM]:
        return self._aux

    def get_predictions(self) -> Optional[np.ndarray]:
        return self._predictions

    def get_variable_importance(self) -> List[str]:
        artifacts = self._require_artifacts()
        return artifacts.fitted_model.variables_kept(artifacts.selected_index)

    def get_roc(self) -> Union[RocCurve, NotApplicable]:
        if not self._label_is_binary():
            msg = "ROC is not created because the column you're predicting is not binary"
            print(msg)
            return NotApplicable(msg)
        return self._require_metrics().roc

    def get_pr_curve(self) -> Union[PRCurve, NotApplicable]:
        if not self._label_is_binary():
            msg = "PR Curve is not created because the column you're predicting is not binary"
            print(msg)
            return NotApplicable(msg)
        return self._require_metrics().pr

    def get_auroc(self) -> Optional[float]:
        return self._require_metrics().auroc

    def get_aupr(self) -> Optional[float]:
        return self._require_metrics().aupr

    def get_rmse(self) -> Optional[float]:
        return self._require_metrics().rmse

    def get_mae(self) -> Optional[float]:
        return self._require_metrics().mae

    def get_cutoffs(self) -> None:
        warnings.warn("`get_cutoffs` is deprecated. Please use `get_auroc` instead.", DeprecationWarning, stacklevel=2)
