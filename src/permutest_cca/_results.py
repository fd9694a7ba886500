"""Typed result object for a permutation-F batch.

A frozen dataclass that provides:

* **Attribute access** — ``result.explained``, ``result.residual_state``.
* **Dict-like access** — ``result["explained"]``, ``result.get("key")``,
  ``"key" in result``.
* **Serialisation** — ``.to_dict()`` returns a plain ``dict[str, Any]``
  with all NumPy and enum values converted to native Python.
* **Tabular views** — ``.table`` (``nperm × 2`` ndarray) and
  ``.to_frame()`` (pandas DataFrame).

The residual column
-------------------
When the model has no partial (conditioning) term and the full sum of
eigenvalues is the statistic, ``explained + residual`` is the total
inertia of the response, which permuting rows cannot change.  The
permutation core therefore skips the residual computation and marks
the column :attr:`ResidualState.CALLER_MUST_SUPPLY`; the residual
values are NaN until the caller provides them with
:meth:`PermutationFResult.with_residual`.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, fields, replace
from typing import Any, ClassVar

import numpy as np
import pandas as pd

# ------------------------------------------------------------------ #
# Serialisation helper
# ------------------------------------------------------------------ #


def _numpy_to_python(obj: Any) -> Any:
    """Recursively convert NumPy values and enums to Python-native types."""
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, (np.integer, np.bool_)):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, enum.Enum):
        return obj.value
    if isinstance(obj, dict):
        return {k: _numpy_to_python(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return type(obj)(_numpy_to_python(item) for item in obj)
    return obj


class ResidualState(enum.Enum):
    """Whether the residual column of a result holds computed values."""

    FILLED = "filled"
    CALLER_MUST_SUPPLY = "caller_must_supply"


@dataclass(frozen=True)
class PermutationFResult:
    """Per-permutation explained and residual variance.

    Attributes:
        explained: Explained-variance statistic per permutation
            ``(nperm,)``: the sum of constrained eigenvalues, or the
            first constrained eigenvalue when ``first`` is set.
        residual: Residual variance per permutation ``(nperm,)``.  All
            NaN while ``residual_state`` is
            :attr:`ResidualState.CALLER_MUST_SUPPLY`.
        residual_state: See :class:`ResidualState`.
        first: Whether ``explained`` holds the first eigenvalue only.
        partial: Whether a partial (conditioning) model was removed.
        backend: Backend that produced the values.
    """

    explained: np.ndarray
    residual: np.ndarray
    residual_state: ResidualState
    first: bool = False
    partial: bool = False
    backend: str = "numpy"

    COLUMNS: ClassVar[tuple[str, str]] = ("explained", "residual")

    # ---- Dict-like access ------------------------------------------

    def __getitem__(self, key: str) -> Any:
        """Attribute lookup via bracket syntax."""
        try:
            return getattr(self, key)
        except AttributeError:
            raise KeyError(key) from None

    def get(self, key: str, default: Any = None) -> Any:
        """Attribute lookup with a fallback default."""
        return getattr(self, key, default)

    def __contains__(self, key: object) -> bool:
        """Membership test: ``"key" in result``."""
        if not isinstance(key, str):
            return False
        return hasattr(self, key)

    def __len__(self) -> int:
        return int(self.explained.shape[0])

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serialisable plain dictionary."""
        return {
            f.name: _numpy_to_python(getattr(self, f.name))
            for f in fields(self)
        }

    # ---- Tabular views ---------------------------------------------

    @property
    def table(self) -> np.ndarray:
        """The ``nperm × 2`` table ``[explained, residual]``."""
        return np.column_stack([self.explained, self.residual])

    def to_frame(self) -> pd.DataFrame:
        """The result table as a :class:`pandas.DataFrame`."""
        return pd.DataFrame(
            self.table,
            columns=list(self.COLUMNS),
            index=pd.RangeIndex(len(self), name="permutation"),
        )

    # ---- Caller-supplied residuals ---------------------------------

    def with_residual(self, values: float | np.ndarray) -> PermutationFResult:
        """Return a copy whose residual column is supplied by the caller.

        Args:
            values: Either a scalar *total inertia*, in which case the
                residual for each permutation is ``total - explained``,
                or an array of ``nperm`` residual values.

        Returns:
            A new result with :attr:`ResidualState.FILLED`.

        Raises:
            ValueError: If the residual column is already filled, or
                *values* has the wrong length.
        """
        if self.residual_state is ResidualState.FILLED:
            raise ValueError("The residual column is already filled.")

        arr = np.asarray(values, dtype=float)
        if arr.ndim == 0:
            residual = float(arr) - self.explained
        else:
            if arr.shape != self.explained.shape:
                raise ValueError(
                    f"Expected {len(self)} residual values, got shape {arr.shape}."
                )
            residual = arr.copy()
        return replace(self, residual=residual, residual_state=ResidualState.FILLED)

    def pseudo_f(self, df_model: float, df_residual: float) -> np.ndarray:
        """Pseudo-F statistic ``(explained / df_model) / (residual / df_residual)``.

        Args:
            df_model: Model degrees of freedom (rank of the constrained
                design; 1 when ``first`` is set).
            df_residual: Residual degrees of freedom.

        Raises:
            ValueError: If the residual column has not been filled.
        """
        if self.residual_state is not ResidualState.FILLED:
            raise ValueError(
                "The residual column must be supplied with with_residual() "
                "before the pseudo-F statistic can be computed."
            )
        return (self.explained / df_model) / (self.residual / df_residual)


__all__ = ["PermutationFResult", "ResidualState"]
