"""Design matrices for mixture-weight covariates."""

from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

INTERCEPT = '(Intercept)'


def design_matrix(data: pd.DataFrame,
                  columns: Optional[Sequence[str]] = None) -> Tuple[np.ndarray, List[str]]:
    """
    Build a design matrix with an intercept column.

    Numeric columns are used as they are. Other columns (strings, booleans,
    categoricals) are dummy-coded with the first level dropped.

    Args:
        data: One row per subject
        columns: Columns to use (default: all)

    Returns:
        (X, names): (N, p) float matrix and its column names, the first one
        being '(Intercept)'

    Raises:
        ValueError: If a selected column has missing values
    """
    if columns is not None:
        missing_cols = [c for c in columns if c not in data.columns]
        if missing_cols:
            raise ValueError(f"Unknown covariate column(s): {', '.join(missing_cols)}")
        data = data[list(columns)]

    bad = data.isna().any(axis=1)
    if bad.any():
        raise ValueError(
            f"Missing cases are not allowed in covariates ({int(bad.sum())} row(s) affected)."
        )

    categorical = [c for c in data.columns
                   if not pd.api.types.is_numeric_dtype(data[c])
                   or pd.api.types.is_bool_dtype(data[c])]
    frame = data.copy()
    for c in categorical:
        frame[c] = frame[c].astype('category')
    frame = pd.get_dummies(frame, columns=categorical, drop_first=True, prefix_sep='')

    frame.insert(0, INTERCEPT, 1.0)
    return frame.to_numpy(dtype=float), [str(c) for c in frame.columns]


def read_covariates(filepath: str, columns: Optional[Sequence[str]] = None,
                    sep: Optional[str] = None) -> Tuple[np.ndarray, List[str]]:
    """Read a CSV/TSV table (one row per subject) and build its design matrix."""
    if sep is None:
        sep = '\t' if filepath.endswith(('.tsv', '.txt')) else ','
    data = pd.read_csv(filepath, sep=sep)
    return design_matrix(data, columns)
