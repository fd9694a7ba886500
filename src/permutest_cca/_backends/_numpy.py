"""NumPy / SciPy LAPACK backend (always available).

This is the reference implementation of the permutation-F statistic.
For every permutation it:

1. Builds the permuted response ``Y[i, :] = E[perm[i], :]``.
2. If a partial model is present, replaces every column of ``Y`` by
   its residuals from the conditioning factorization (in place).
3. Projects every column of ``Y`` onto the constrained-model
   factorization, producing fitted values (and residuals when they are
   needed).
4. Summarises the fitted matrix: the sum of all constrained
   eigenvalues ``‖F‖_F²``, or the first eigenvalue ``σ_1(F)²``.
5. Summarises the residual matrix ``‖R‖_F²`` when partial or first.

Buffers
~~~~~~~
The permuted-response, fitted and residual buffers (``n × p``,
Fortran order so that every column is contiguous for LAPACK) and the
length-``n`` projection scratch vector are allocated once per batch
and overwritten on every permutation.  Nothing is assumed about their
contents at the start of an iteration.

Why residuals are skipped
~~~~~~~~~~~~~~~~~~~~~~~~~
Without a partial model, ``‖F‖² + ‖R‖² = ‖Y‖² = ‖E‖²`` for every
permutation, because a row permutation preserves the total sum of
squares.  The residual variance is then a known constant minus the
explained variance, and projecting the residuals would double the
LAPACK work for no information.  With a partial model the
residualised ``Y`` changes with the permutation, and with ``first``
the explained statistic no longer sums to the total, so the residuals
must be computed.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

import numpy as np

from .._errors import PermutationCancelled
from ..eigen import first_singular_value, sum_of_squares
from ..qr import QRFactorization, QRJob

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NumpyBackend:
    """NumPy / SciPy compute backend.

    The class is a frozen dataclass with no instance state — it
    exists solely to namespace the batch method behind the
    :class:`BackendProtocol` interface, and is safe to cache in the
    module-level ``_BACKEND_CACHE`` singleton.
    """

    @property
    def name(self) -> str:
        return "numpy"

    @property
    def is_available(self) -> bool:  # noqa: PLR6301
        return True

    def permutation_f(
        self,
        perm_indices: np.ndarray,
        response: np.ndarray,
        design: QRFactorization,
        partial: QRFactorization | None = None,
        first: bool = False,
        cancel: threading.Event | None = None,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Evaluate the statistic permutation by permutation.

        See :meth:`BackendProtocol.permutation_f` for the contract.

        Raises:
            QRProjectionError: If a projection fails.
            SVDConvergenceError: If ``first`` is set and the SVD fails.
            PermutationCancelled: If *cancel* is set between two
                permutations.
        """
        nperm = perm_indices.shape[0]
        n, p = response.shape
        fill_residual = partial is not None or first
        job = QRJob.FIT | QRJob.RESID if fill_residual else QRJob.FIT

        explained = np.empty(nperm)
        residual = np.full(nperm, np.nan)

        Y = np.empty((n, p), order="F")
        fitted = np.empty((n, p), order="F")
        resid = np.empty((n, p), order="F")
        qty = np.empty(n)

        for k in range(nperm):
            if cancel is not None and cancel.is_set():
                logger.debug("Batch cancelled after %d of %d permutations", k, nperm)
                raise PermutationCancelled(k)

            Y[:] = response[perm_indices[k]]

            if partial is not None:
                for j in range(p):
                    partial.project(Y[:, j], QRJob.RESID, resid=Y[:, j], qty=qty)

            for j in range(p):
                design.project(
                    Y[:, j], job, fitted=fitted[:, j], resid=resid[:, j], qty=qty
                )

            if first:
                ev1 = first_singular_value(fitted)
                explained[k] = ev1 * ev1
            else:
                explained[k] = sum_of_squares(fitted)

            if fill_residual:
                residual[k] = sum_of_squares(resid)

        logger.debug("Batch of %d permutations finished", nperm)
        return explained, residual
