"""Encoding helpers: factor levels, reference levels, model matrix and groups."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from lassopkg.errors import DegenerateColumnError, GroupMismatchError, SchemaMismatchError


def is_categorical(series: pd.Series) -> bool:
    """True for columns that expand into dummies (categorical, object or string dtypes)."""
    if pd.api.types.is_bool_dtype(series):
        return False
    return (
        isinstance(series.dtype, pd.CategoricalDtype)
        or pd.api.types.is_object_dtype(series)
        or pd.api.types.is_string_dtype(series)
    )


def is_binary(series: pd.Series) -> bool:
    """True when the column holds exactly two distinct non-missing values."""
    return pd.Series(series).dropna().nunique() == 2


def observed_levels(series: pd.Series) -> Tuple:
    """Ordered levels of a categorical column.

    Categorical dtypes keep their declared categories (unused ones included);
    anything else is sorted alphabetically, the way character columns become
    factors.
    """
    if isinstance(series.dtype, pd.CategoricalDtype):
        return tuple(series.cat.categories.tolist())
    return tuple(sorted(series.dropna().unique().tolist(), key=str))


def identify_biggest_level(data, input_variables):
    """Most frequent value of each column in `input_variables`, as a dict."""
    temp_dict = {}

    for i in input_variables:
        # Ties resolve to the first level in value_counts order
        temp_dict[i] = data[i].value_counts().idxmax()

    return temp_dict


def choose_reference_levels(data, levels, method="First", ref_level_dict=None):
    """
    Pick the reference level dropped from the one-hot encoding of each
    categorical variable (it avoids collinearity with the intercept).

    Depending on the chosen method, the reference level is:
        - "First"   : the first level in level order (treatment contrasts).
        - "Biggest" : the most frequent value in the column.
        - "List"    : user-specified dictionary of reference levels.

    Parameters
    ----------
    data : pandas.DataFrame
        The training data.
    levels : dict
        Variable name -> ordered tuple of levels.
    method : str
        One of {"First", "Biggest", "List"}.
    ref_level_dict : dict, optional
        Only used if method == "List".

    Returns
    -------
    dict
        Variable name -> reference level.
    """
    if method == "First":
        return {var: lvls[0] for var, lvls in levels.items()}

    if method == "Biggest":
        return identify_biggest_level(data, list(levels))

    if method == "List":
        if ref_level_dict is None:
            raise ValueError("A dictionary of reference levels is needed with method='List'")
        missing = [var for var in levels if var not in ref_level_dict]
        if missing:
            raise ValueError(f"No reference level given for {missing}")
        for var, ref in ref_level_dict.items():
            if var in levels and ref not in levels[var]:
                raise SchemaMismatchError(
                    f"Reference level {ref!r} is not a level of {var!r} (levels: {list(levels[var])})"
                )
        return {var: ref_level_dict[var] for var in levels}

    raise ValueError(f"Wrong reference method {method!r} (expected First, Biggest or List)")


@dataclass(frozen=True)
class FactorLevels:
    """Schema captured on the training subset and reused for every other subset.

    ``predictors`` keeps the column order of the design. ``levels`` and
    ``reference`` are only filled for categorical predictors.
    """

    predictors: Tuple[str, ...]
    levels: Dict[str, Tuple] = field(default_factory=dict)
    reference: Dict[str, object] = field(default_factory=dict)

    def is_categorical(self, column: str) -> bool:
        return column in self.levels

    def dummy_levels(self, column: str) -> List:
        """Levels that get their own matrix column (all but the reference)."""
        ref = self.reference[column]
        return [lvl for lvl in self.levels[column] if lvl != ref]

    def width(self, column: str) -> int:
        """Number of model-matrix columns generated by `column`."""
        if self.is_categorical(column):
            return len(self.levels[column]) - 1
        return 1

    def column_names(self) -> List[str]:
        names: List[str] = []
        for var in self.predictors:
            if self.is_categorical(var):
                names.extend(f"{var}_{lvl}" for lvl in self.dummy_levels(var))
            else:
                names.append(var)
        return names


def capture_factor_levels(
    data: pd.DataFrame,
    predictors: Sequence[str],
    method: str = "First",
    ref_level_dict: Optional[Dict[str, object]] = None,
) -> FactorLevels:
    """Record predictor order, categorical levels and reference levels from `data`."""
    missing = [c for c in predictors if c not in data.columns]
    if missing:
        raise SchemaMismatchError(f"Predictor column(s) {missing} not found in data")

    levels: Dict[str, Tuple] = {}
    for var in predictors:
        if is_categorical(data[var]):
            lvls = observed_levels(data[var])
            if len(lvls) < 2:
                raise DegenerateColumnError(var, len(lvls))
            levels[var] = lvls

    reference = choose_reference_levels(data, levels, method, ref_level_dict)
    return FactorLevels(predictors=tuple(predictors), levels=levels, reference=reference)


def build_group_vector(levels: FactorLevels) -> np.ndarray:
    """1-based group id per model-matrix column, derived only from column shapes.

    A categorical predictor with L levels contributes L-1 entries sharing its
    id; a numeric predictor contributes one entry.
    """
    widths = [levels.width(var) for var in levels.predictors]
    return np.repeat(np.arange(1, len(widths) + 1), widths)


@dataclass(frozen=True)
class ModelMatrix:
    """Numeric design (no intercept column) with the group of every column."""

    values: np.ndarray
    columns: Tuple[str, ...]
    group: np.ndarray
    variables: Tuple[str, ...]

    @property
    def n_rows(self) -> int:
        return self.values.shape[0]

    @property
    def n_columns(self) -> int:
        return self.values.shape[1]

    def to_frame(self, index=None) -> pd.DataFrame:
        return pd.DataFrame(self.values, columns=list(self.columns), index=index)


def _categorical_block(series: pd.Series, var: str, levels: FactorLevels) -> np.ndarray:
    values = series.astype(object)
    if values.isna().any():
        raise SchemaMismatchError(
            f"Column {var!r} has {int(values.isna().sum())} missing value(s); impute or drop them first"
        )

    known = set(levels.levels[var])
    unseen = sorted({v for v in values.unique() if v not in known}, key=str)
    if unseen:
        raise SchemaMismatchError(
            f"Column {var!r} contains level(s) {unseen} absent from the "
            f"{len(known)} training level(s) {list(levels.levels[var])}"
        )

    dummies = [(values == lvl).to_numpy(dtype=float) for lvl in levels.dummy_levels(var)]
    return np.column_stack(dummies)


def _numeric_block(series: pd.Series, var: str) -> np.ndarray:
    try:
        col = pd.to_numeric(series).to_numpy(dtype=float)
    except (TypeError, ValueError) as exc:
        raise SchemaMismatchError(f"Column {var!r} was numeric on the training subset but is not here") from exc
    if np.isnan(col).any():
        raise SchemaMismatchError(
            f"Column {var!r} has {int(np.isnan(col).sum())} missing value(s); impute or drop them first"
        )
    return col.reshape(-1, 1)


def build_model_matrix(data: pd.DataFrame, levels: FactorLevels) -> ModelMatrix:
    """Expand the predictor columns of `data` with the levels captured on training data.

    Raises
    ------
    SchemaMismatchError
        A predictor is missing, has missing values, or holds a level that
        was not seen on the training subset.
    GroupMismatchError
        The expanded width disagrees with the group vector.
    """
    missing = [c for c in levels.predictors if c not in data.columns]
    if missing:
        raise SchemaMismatchError(f"Predictor column(s) {missing} not found in data")

    blocks = []
    for var in levels.predictors:
        if levels.is_categorical(var):
            blocks.append(_categorical_block(data[var], var, levels))
        else:
            blocks.append(_numeric_block(data[var], var))

    values = np.hstack(blocks) if blocks else np.empty((len(data), 0))
    group = build_group_vector(levels)

    if len(group) != values.shape[1]:
        raise GroupMismatchError(
            f"Group vector has {len(group)} entries but the model matrix has {values.shape[1]} columns"
        )

    return ModelMatrix(
        values=values,
        columns=tuple(levels.column_names()),
        group=group,
        variables=levels.predictors,
    )


def encode_label(series: pd.Series, label_levels: Optional[Tuple] = None) -> Tuple[np.ndarray, Tuple]:
    """Map a classification label to 0/1.

    The first level becomes 0 and every other level becomes 1. Numeric 0/1
    labels pass through unchanged. Pass the training `label_levels` when
    encoding a test subset so both subsets share the same mapping.
    """
    if label_levels is None:
        if pd.api.types.is_numeric_dtype(series) and not isinstance(series.dtype, pd.CategoricalDtype):
            if set(pd.unique(series.dropna())) <= {0, 1}:
                label_levels = (0, 1)
            else:
                label_levels = tuple(sorted(series.dropna().unique().tolist()))
        else:
            label_levels = observed_levels(series)

    values = series.astype(object)
    known = set(label_levels)
    unseen = sorted({v for v in values.dropna().unique() if v not in known}, key=str)
    if unseen:
        raise SchemaMismatchError(f"Label contains value(s) {unseen} absent from training levels {list(label_levels)}")

    return (values != label_levels[0]).to_numpy(dtype=float), tuple(label_levels)


def impute_columns(data: pd.DataFrame, columns: Sequence[str]) -> pd.DataFrame:
    """Mean replacement for numeric columns, most frequent value for the others."""
    data = data.copy()
    for col in columns:
        if not data[col].isna().any():
            continue
        if is_categorical(data[col]):
            if data[col].notna().sum() == 0:
                raise DegenerateColumnError(col, 0)
            data[col] = data[col].fillna(identify_biggest_level(data, [col])[col])
        else:
            data[col] = data[col].fillna(data[col].mean())
    return data


def to_categorical(data: pd.DataFrame, columns: Sequence[str]) -> pd.DataFrame:
    """Convert object/string predictors to pandas categoricals with sorted levels."""
    data = data.copy()
    for col in columns:
        if is_categorical(data[col]) and not isinstance(data[col].dtype, pd.CategoricalDtype):
            data[col] = pd.Categorical(data[col], categories=list(observed_levels(data[col])))
    return data
