"""Exception types raised by the permutation-F core.

Every numerical failure inside a permutation batch is fatal.  The
empirical p-value computed downstream is a rank statistic over *all*
permutation rows, so a single corrupted row invalidates the whole
test.  Nothing here is retried or downgraded to a warning.

The two numerical errors subclass :class:`numpy.linalg.LinAlgError`
so that callers already guarding linear-algebra failures with
``except np.linalg.LinAlgError`` keep working.
"""

from __future__ import annotations

import numpy as np


class SVDConvergenceError(np.linalg.LinAlgError):
    """The singular value decomposition failed.

    Raised when LAPACK ``gesdd`` reports a non-zero status, or when the
    input (or output) contains non-finite values.

    Attributes:
        info: LAPACK status code, or ``None`` when the failure was
            detected before or after the LAPACK call (non-finite
            values).
    """

    def __init__(self, message: str, info: int | None = None) -> None:
        super().__init__(message)
        self.info = info


class QRProjectionError(np.linalg.LinAlgError):
    """Applying a QR factorization to a right-hand side failed.

    Attributes:
        info: LAPACK status code from ``ormqr``.
    """

    def __init__(self, message: str, info: int | None = None) -> None:
        super().__init__(message)
        self.info = info


class PermutationCancelled(RuntimeError):
    """The batch was cancelled between two permutations.

    Attributes:
        completed: Number of permutations evaluated before the
            cancellation request was observed.  Partial results are
            discarded.
    """

    def __init__(self, completed: int) -> None:
        super().__init__(
            f"Permutation batch cancelled after {completed} permutation(s)."
        )
        self.completed = completed


__all__ = ["PermutationCancelled", "QRProjectionError", "SVDConvergenceError"]
