"""Eigenvalue summaries of fitted matrices.

In a constrained ordination the eigenvalues of the constrained axes are
the squared singular values of the fitted response matrix ``F``.  Two
summaries of that spectrum are needed per permutation:

* **Sum of all eigenvalues** — ``Σ σ_i² = ‖F‖_F²``.  This needs no
  decomposition at all: the Frobenius norm squared is the sum of
  squares of the entries.

* **First eigenvalue** — ``σ_1²``.  This needs the singular values, but
  not the singular vectors.  LAPACK ``gesdd`` with ``compute_uv=0``
  computes singular values only in ``O(min(r, c)² · max(r, c))``, which
  is far cheaper than a full decomposition for the tall-and-narrow
  matrices typical of ordination (many sites, few constrained axes).

The distance-based (db-RDA) layout stores the eigen-structure on the
diagonal of a square matrix; :func:`sum_of_squares` with
``diagonal_only=True`` sums the squared diagonal for that layout.
"""

from __future__ import annotations

import numpy as np
from scipy.linalg import get_lapack_funcs

from ._errors import SVDConvergenceError


def sum_of_squares(x: np.ndarray, diagonal_only: bool = False) -> float:
    """Sum of squared entries of *x*.

    Args:
        x: Matrix ``(rows, cols)``.
        diagonal_only: When ``True``, sum only ``x[i, i]²`` for
            ``i < rows`` (the leading ``rows × rows`` block is taken
            as a symmetric eigen-structure).  Requires
            ``cols >= rows``.

    Returns:
        The sum as a Python float.
    """
    x = np.asarray(x, dtype=float)
    if diagonal_only:
        rows = x.shape[0]
        d = np.diagonal(x[:, :rows])
        return float(np.dot(d, d))
    flat = x.ravel(order="K")
    return float(np.dot(flat, flat))


def first_singular_value(x: np.ndarray) -> float:
    """Largest singular value of *x*, computed without singular vectors.

    ``gesdd`` destroys its input, so the decomposition runs on a
    private Fortran-ordered copy; *x* is left bit-identical.

    Args:
        x: Matrix ``(rows, cols)``.

    Returns:
        ``σ_1`` as a Python float (``0.0`` for an empty matrix).

    Raises:
        SVDConvergenceError: If *x* contains NaN or infinite values, or
            if LAPACK reports a non-zero status.  A wrong value here
            would silently corrupt every permutation p-value, so the
            failure is always raised.
    """
    work = np.array(x, dtype=float, order="F", copy=True)
    if work.ndim != 2:
        raise ValueError(f"Expected a 2-D matrix, got {work.ndim} dimensions.")
    if min(work.shape) == 0:
        return 0.0
    if not np.isfinite(work).all():
        raise SVDConvergenceError(
            "SVD input contains non-finite values; the singular values are undefined."
        )

    gesdd, gesdd_lwork = get_lapack_funcs(("gesdd", "gesdd_lwork"), (work,))
    m, n = work.shape
    lwork, info = gesdd_lwork(m, n, compute_uv=0, full_matrices=0)
    if info != 0:
        raise SVDConvergenceError(f"error {info} from LAPACK gesdd workspace query", info)

    _, sigma, _, info = gesdd(
        work, compute_uv=0, full_matrices=0, lwork=int(lwork), overwrite_a=1
    )
    if info != 0:
        raise SVDConvergenceError(f"error {info} from LAPACK gesdd", info)
    if not np.isfinite(sigma[0]):
        raise SVDConvergenceError("LAPACK gesdd returned a non-finite singular value.")
    return float(sigma[0])


__all__ = ["first_singular_value", "sum_of_squares"]
