"""Permutation-F engine — resolution, shape checks, and dispatch.

The :class:`PermutationFEngine` centralises everything that happens
*before* a backend evaluates the permutations:

1. **Response conversion** — any supported matrix type to a read-only
   ``float64`` array.
2. **Shape checks** — the response and both factorizations must agree
   on the number of rows ``n``.
3. **Backend resolution** — NumPy or JAX, per :mod:`._config`.

It then evaluates any number of permutation tables against the same
fixed model with :meth:`PermutationFEngine.run`.  :func:`compute_f`
is the one-shot functional form.

Caller contract
---------------
Each row of the permutation table must be a permutation of
``1..n`` (or ``0..n-1`` with ``one_based=False``).  The table's shape
and index range are checked here, so a 0-based table passed as 1-based
raises ``ValueError``; duplicate indices are not detected and silently
produce a statistic for a non-permutation.  Generating valid
permutations is the caller's responsibility.
"""

from __future__ import annotations

import logging
import threading

import numpy as np

from ._backends import resolve_backend
from ._compat import MatrixLike, _ensure_float_matrix
from ._results import PermutationFResult, ResidualState
from .qr import QRFactorization

logger = logging.getLogger(__name__)


class PermutationFEngine:
    """Fixed model against which permuted responses are evaluated.

    The engine is immutable after construction: the response is
    stored as a read-only array and the factorizations are immutable
    themselves, so one engine can evaluate many permutation tables.

    Attributes:
        response: Read-only response matrix ``(n, p)``.
        design: Constrained-model factorization.
        partial: Conditioning-model factorization, or ``None``.
        first: Whether the explained statistic is the first
            eigenvalue (``True``) or the sum of all constrained
            eigenvalues (``False``).
        backend_name: Active backend identifier.
    """

    def __init__(
        self,
        response: MatrixLike,
        design: QRFactorization,
        partial: QRFactorization | None = None,
        *,
        first: bool = False,
        backend: str | None = None,
    ) -> None:
        E = _ensure_float_matrix(response, name="response").view()
        E.flags.writeable = False
        n = E.shape[0]

        if design.n != n:
            raise ValueError(
                f"The design factorization has {design.n} rows but the "
                f"response has {n}."
            )
        if partial is not None and partial.n != n:
            raise ValueError(
                f"The partial factorization has {partial.n} rows but the "
                f"response has {n}."
            )

        self.response: np.ndarray = E
        self.design = design
        self.partial = partial
        self.first = bool(first)

        self._backend = resolve_backend(backend)
        self.backend_name: str = self._backend.name

    @property
    def n(self) -> int:
        """Number of observations (rows of the response)."""
        return int(self.response.shape[0])

    @property
    def fills_residual(self) -> bool:
        """Whether :meth:`run` computes the residual column itself."""
        return self.partial is not None or self.first

    def run(
        self,
        permutations: np.ndarray,
        *,
        one_based: bool = True,
        cancel: threading.Event | None = None,
    ) -> PermutationFResult:
        """Evaluate every row of a permutation table.

        Args:
            permutations: Integer table ``(nperm, n)``; row ``k`` gives,
                for each position ``i``, the response row placed there.
                Never modified.
            one_based: Indices are 1-based (as produced by a statistics
                environment such as R).  Set ``False`` for 0-based
                tables.
            cancel: Optional event checked between permutations.

        Returns:
            A :class:`PermutationFResult`.  Its residual column is
            flagged :attr:`ResidualState.CALLER_MUST_SUPPLY` when there
            is no partial model and ``first`` is not set.

        Raises:
            TypeError: If *permutations* is not an integer array.
            ValueError: If *permutations* has the wrong shape or an
                index out of range.
            QRProjectionError: If a projection fails.
            SVDConvergenceError: If the SVD fails.
            PermutationCancelled: If *cancel* is set mid-batch.
        """
        perms = np.asarray(permutations)
        if perms.ndim != 2:
            raise ValueError(
                f"permutations must be 2-D (nperm, n), got {perms.ndim} dimensions."
            )
        if perms.shape[1] != self.n:
            raise ValueError(
                f"permutations have {perms.shape[1]} columns but the response "
                f"has {self.n} rows."
            )
        if not np.issubdtype(perms.dtype, np.integer):
            raise TypeError(
                f"permutations must hold integer indices, got dtype {perms.dtype}."
            )

        # Private copy: the caller's table is never touched.
        perm_indices = perms.astype(np.intp, copy=True)
        if one_based:
            perm_indices -= 1
        if perm_indices.size and (
            perm_indices.min() < 0 or perm_indices.max() >= self.n
        ):
            lo, hi = (1, self.n) if one_based else (0, self.n - 1)
            raise ValueError(
                f"permutation indices must lie in {lo}..{hi} "
                f"(one_based={one_based})."
            )

        logger.debug(
            "Evaluating %d permutations (n=%d, p=%d, partial=%s, first=%s) on %s",
            perm_indices.shape[0], self.n, self.response.shape[1],
            self.partial is not None, self.first, self.backend_name,
        )
        explained, residual = self._backend.permutation_f(
            perm_indices,
            self.response,
            self.design,
            self.partial,
            self.first,
            cancel,
        )

        state = (
            ResidualState.FILLED
            if self.fills_residual
            else ResidualState.CALLER_MUST_SUPPLY
        )
        return PermutationFResult(
            explained=explained,
            residual=residual,
            residual_state=state,
            first=self.first,
            partial=self.partial is not None,
            backend=self.backend_name,
        )


def compute_f(
    permutations: np.ndarray,
    response: MatrixLike,
    design: QRFactorization,
    partial: QRFactorization | None = None,
    *,
    first: bool = False,
    one_based: bool = True,
    backend: str | None = None,
    cancel: threading.Event | None = None,
) -> PermutationFResult:
    """Explained and residual variance of a constrained ordination under permutation.

    For each permutation row ``k`` the response rows are permuted, the
    partial model (if any) is removed, the result is projected onto the
    constrained design, and the explained variance (sum of constrained
    eigenvalues, or the first eigenvalue when *first* is set) and the
    residual variance are recorded.

    Args:
        permutations: Integer permutation table ``(nperm, n)``.
        response: Response matrix ``(n, p)`` (NumPy, pandas or Polars).
        design: Constrained-model factorization, e.g. from
            :meth:`QRFactorization.from_design`.
        partial: Conditioning-model factorization, or ``None``.
        first: Use the first eigenvalue as the explained statistic.
        one_based: Whether *permutations* holds 1-based indices.
        backend: ``"numpy"``, ``"jax"``, or ``None`` for the configured
            default.
        cancel: Optional event for cooperative cancellation.

    Returns:
        A :class:`PermutationFResult` with ``nperm`` rows.
    """
    engine = PermutationFEngine(
        response, design, partial, first=first, backend=backend
    )
    return engine.run(permutations, one_based=one_based, cancel=cancel)


__all__ = ["PermutationFEngine", "compute_f"]
