"""Precomputed QR factorizations and the column projection primitive.

A constrained ordination fits every permuted response against the
*same* design matrix, so the design is factored once and each
permutation only applies the stored Householder reflections:

    X P = Q R,        Q = H_1 H_2 ··· H_k

For a single response column ``y`` (length ``n``) and a design of
effective rank ``k``:

    qty    = Qᵀ y
    fitted = Q [qty[:k], 0]ᵀ      (projection onto span(X))
    resid  = Q [0, qty[k:]]ᵀ      (projection onto the complement)

so ``fitted + resid == y`` and ``fitted ⟂ resid``.  Both projections
cost two applications of the reflectors (LAPACK ``ormqr``), ``O(n k)``
each, with no matrix inversion and no explicit ``Q``.

The factorization is stored in LAPACK's compact representation
(``geqp3`` output): the upper triangle holds ``R``, the strict lower
triangle holds the Householder vectors, and ``tau`` holds their scalar
factors.  This is the same information as LINPACK's ``qr`` / ``qraux``
pair, in LAPACK's convention.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, NamedTuple

import numpy as np
import scipy.linalg
from scipy.linalg import get_lapack_funcs

from ._compat import MatrixLike, _ensure_float_matrix
from ._errors import QRProjectionError

logger = logging.getLogger(__name__)

DEFAULT_TOL: float = 1e-7
"""Relative tolerance for rank detection (``|R[i, i]| > tol · |R[0, 0]|``)."""


class QRJob(enum.Flag):
    """Outputs requested from :meth:`QRFactorization.project`."""

    FIT = enum.auto()
    RESID = enum.auto()
    QTY = enum.auto()


class QRProjection(NamedTuple):
    """Outputs of one column projection; unrequested entries are ``None``."""

    fitted: np.ndarray | None
    resid: np.ndarray | None
    qty: np.ndarray | None


@dataclass(frozen=True, eq=False)
class QRFactorization:
    """Immutable QR factorization of an ``n``-row design matrix.

    Instances are shared read-only by every permutation of a batch.
    The constructor copies its arrays and marks the copies read-only,
    so neither the caller nor the projection routines can modify the
    factorization afterwards.

    Attributes:
        qr: Compact factorization ``(n, m)`` as returned by LAPACK
            ``geqp3`` (``scipy.linalg.qr(..., mode="raw")``).
        tau: Householder scalar factors, length ``min(n, m)``.
        rank: Effective rank ``k``; only the first ``k`` reflectors
            are applied.
        pivot: Column permutation (0-based) applied to the design, or
            ``None`` when the factorization was computed unpivoted.
        tol: Tolerance used for rank detection (informational).
    """

    qr: np.ndarray
    tau: np.ndarray
    rank: int
    pivot: np.ndarray | None = None
    tol: float = DEFAULT_TOL
    _lwork: int = field(init=False, repr=False, default=1)
    _ormqr: Any = field(init=False, repr=False, default=None)

    def __post_init__(self) -> None:
        qr = np.array(self.qr, dtype=float, order="F", copy=True)
        tau = np.array(self.tau, dtype=float, copy=True).ravel()
        if qr.ndim != 2:
            raise ValueError(f"qr must be 2-D, got {qr.ndim} dimensions.")
        rank = int(self.rank)
        if not 0 <= rank <= min(qr.shape[0], tau.shape[0]):
            raise ValueError(
                f"rank={rank} is incompatible with a factorization of shape "
                f"{qr.shape} and {tau.shape[0]} Householder factors."
            )
        qr.flags.writeable = False
        tau.flags.writeable = False
        object.__setattr__(self, "qr", qr)
        object.__setattr__(self, "tau", tau)
        object.__setattr__(self, "rank", rank)

        if self.pivot is not None:
            pivot = np.array(self.pivot, dtype=np.intp, copy=True)
            pivot.flags.writeable = False
            object.__setattr__(self, "pivot", pivot)

        (ormqr,) = get_lapack_funcs(("ormqr",), (qr,))
        object.__setattr__(self, "_ormqr", ormqr)

        if rank > 0:
            # Workspace query (lwork=-1) once; reused by every projection.
            _, work, info = self._ormqr(
                "L", "T", self._reflectors, self._tau_k,
                np.zeros((self.n, 1), order="F"), -1,
            )
            if info != 0:
                raise QRProjectionError(
                    f"Workspace query failed: LAPACK ormqr info={info}", info
                )
            object.__setattr__(self, "_lwork", max(1, int(np.real(work[0]))))

    # ---- Construction ---------------------------------------------

    @classmethod
    def from_design(cls, X: MatrixLike, tol: float = DEFAULT_TOL) -> QRFactorization:
        """Factor a design matrix with column pivoting.

        The effective rank is the number of diagonal entries of ``R``
        with ``|R[i, i]| > tol · |R[0, 0]|``.  Column pivoting orders
        the diagonal by decreasing magnitude, so aliased (collinear)
        columns fall at the end and are excluded from the projection.

        Args:
            X: Design matrix ``(n, m)``; an intercept column, if wanted,
                must already be present.
            tol: Relative rank-detection tolerance.

        Returns:
            A :class:`QRFactorization` ready to be shared across
            permutations.
        """
        X_arr = _ensure_float_matrix(X, name="X")
        n, m = X_arr.shape
        if m == 0 or n == 0:
            return cls(
                qr=np.zeros((n, m)), tau=np.zeros(min(n, m)), rank=0,
                pivot=np.arange(m), tol=tol,
            )

        (qr, tau), r, pivot = scipy.linalg.qr(X_arr, mode="raw", pivoting=True)
        diag = np.abs(np.diag(r))
        if diag[0] == 0.0:
            rank = 0
        else:
            rank = int(np.count_nonzero(diag > tol * diag[0]))
        logger.debug("Factored %d x %d design: rank %d (tol=%g)", n, m, rank, tol)
        return cls(qr=qr, tau=tau, rank=rank, pivot=pivot, tol=tol)

    # ---- Shape -----------------------------------------------------

    @property
    def n(self) -> int:
        """Number of rows of the factored design."""
        return int(self.qr.shape[0])

    @property
    def _reflectors(self) -> np.ndarray:
        return self.qr[:, : self.rank]

    @property
    def _tau_k(self) -> np.ndarray:
        return self.tau[: self.rank]

    # ---- Projection primitive --------------------------------------

    def _apply(self, trans: str, column: np.ndarray) -> None:
        """Apply ``Q`` (``trans="N"``) or ``Qᵀ`` (``"T"``) to *column* in place."""
        c = column.reshape(self.n, 1)
        cq, _, info = self._ormqr(
            "L", trans, self._reflectors, self._tau_k, c, self._lwork,
            overwrite_c=1,
        )
        if info != 0:
            raise QRProjectionError(
                f"Applying the QR factorization failed: LAPACK ormqr info={info}",
                info,
            )
        if cq is not c:
            column[:] = cq[:, 0]

    def project(
        self,
        y: np.ndarray,
        job: QRJob,
        *,
        fitted: np.ndarray | None = None,
        resid: np.ndarray | None = None,
        qty: np.ndarray | None = None,
    ) -> QRProjection:
        """Project one response column onto the factored column space.

        Output buffers are optional; when given they are overwritten
        (their previous contents are irrelevant) and returned, which
        lets a caller reuse the same storage across many calls.  *y*
        is never modified unless it is itself passed as an output
        buffer, which is allowed.

        Args:
            y: Right-hand side of length ``n``.
            job: Combination of :class:`QRJob` flags.
            fitted: Optional output buffer for the fitted values.
            resid: Optional output buffer for the residuals.
            qty: Optional output buffer for ``Qᵀ y``; also used as the
                scratch vector when ``QTY`` is not requested.

        Returns:
            A :class:`QRProjection` with the requested outputs.

        Raises:
            QRProjectionError: If LAPACK reports a non-zero status.
        """
        n, k = self.n, self.rank
        if qty is None:
            qty = np.empty(n)
        qty[:] = y

        if k > 0:
            self._apply("T", qty)

        fit_out = res_out = None
        if QRJob.FIT in job:
            fit_out = fitted if fitted is not None else np.empty(n)
            fit_out[:k] = qty[:k]
            fit_out[k:] = 0.0
            if k > 0:
                self._apply("N", fit_out)
        if QRJob.RESID in job:
            res_out = resid if resid is not None else np.empty(n)
            res_out[:k] = 0.0
            res_out[k:] = qty[k:]
            if k > 0:
                self._apply("N", res_out)

        return QRProjection(fit_out, res_out, qty if QRJob.QTY in job else None)

    # ---- Whole-matrix conveniences ---------------------------------

    def fitted(self, Y: MatrixLike) -> np.ndarray:
        """Fitted values of every column of *Y* (``qr.fitted`` analogue)."""
        Y_arr = _ensure_float_matrix(Y, name="Y")
        out = np.empty_like(Y_arr, order="F")
        scratch = np.empty(self.n)
        for j in range(Y_arr.shape[1]):
            self.project(Y_arr[:, j], QRJob.FIT, fitted=out[:, j], qty=scratch)
        return out

    def residuals(self, Y: MatrixLike) -> np.ndarray:
        """Residuals of every column of *Y* (``qr.resid`` analogue)."""
        Y_arr = _ensure_float_matrix(Y, name="Y")
        out = np.empty_like(Y_arr, order="F")
        scratch = np.empty(self.n)
        for j in range(Y_arr.shape[1]):
            self.project(Y_arr[:, j], QRJob.RESID, resid=out[:, j], qty=scratch)
        return out

    def basis(self) -> np.ndarray:
        """Explicit orthonormal basis ``Q[:, :rank]`` of shape ``(n, rank)``.

        Used by the vectorised backend, which works with dense
        projections instead of reflector applications.
        """
        Q = np.zeros((self.n, self.rank), order="F")
        for j in range(self.rank):
            Q[j, j] = 1.0
            self._apply("N", Q[:, j])
        return Q


__all__ = ["DEFAULT_TOL", "QRFactorization", "QRJob", "QRProjection"]
