"""Input compatibility layer for the response matrix.

The permutation core operates on dense float64 NumPy arrays.  Community
and trait tables, however, usually arrive as pandas DataFrames, and
sometimes as Polars frames.  This module converts any of those to a
2-D float64 array at the API boundary so that the backends never see
anything else.

Polars is **not** a required dependency.  If it is not installed, only
NumPy and pandas inputs are recognised.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeAlias

import numpy as np
import pandas as pd

if TYPE_CHECKING:
    import polars as pl

    MatrixLike: TypeAlias = (
        np.ndarray | pd.DataFrame | pd.Series | pl.DataFrame | pl.LazyFrame
    )
else:
    MatrixLike: TypeAlias = np.ndarray | pd.DataFrame | pd.Series

# Polars is optional; detect it at import time.
try:
    import polars as pl

    _HAS_POLARS = True
except ImportError:
    _HAS_POLARS = False


def _ensure_float_matrix(obj: MatrixLike, *, name: str = "input") -> np.ndarray:
    """Convert *obj* to a 2-D ``float64`` :class:`numpy.ndarray`.

    Accepted types:
        * ``numpy.ndarray`` — 1-D arrays become a single column.
        * ``pandas.DataFrame`` / ``pandas.Series`` — via ``.to_numpy()``.
        * ``polars.DataFrame`` — via ``.to_numpy()``.
        * ``polars.LazyFrame`` — collected first.

    The returned array may share memory with *obj*; callers that need
    to write must copy.

    Args:
        obj: Matrix-like input.
        name: Label used in error messages (e.g. ``"response"``).

    Returns:
        A 2-D ``float64`` array.

    Raises:
        TypeError: If *obj* is not a recognised matrix type.
        ValueError: If *obj* has more than two dimensions.
    """
    if isinstance(obj, (pd.DataFrame, pd.Series)):
        arr = obj.to_numpy(dtype=float)
    elif isinstance(obj, np.ndarray):
        arr = np.asarray(obj, dtype=float)
    elif _HAS_POLARS and isinstance(obj, pl.LazyFrame):
        arr = obj.collect().to_numpy().astype(float)
    elif _HAS_POLARS and isinstance(obj, pl.DataFrame):
        arr = obj.to_numpy().astype(float)
    else:
        raise TypeError(
            f"'{name}' must be a NumPy array or pandas DataFrame"
            + (" or Polars DataFrame/LazyFrame" if _HAS_POLARS else "")
            + f", got {type(obj).__name__}."
        )

    if arr.ndim == 1:
        arr = arr[:, np.newaxis]
    if arr.ndim != 2:
        raise ValueError(f"'{name}' must be 2-D, got {arr.ndim} dimensions.")
    return arr
