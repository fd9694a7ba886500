"""JAX-accelerated backend for the permutation-F batch.

The NumPy backend applies Householder reflectors one column at a time,
which is optimal for memory but leaves the permutation loop in Python.
This backend trades that for vectorisation: the factorizations are
expanded once into explicit orthonormal bases

    Q_X = Q[:, :rank_X]   (n, k_X),     Q_Z = Q[:, :rank_Z]   (n, k_Z)

after which every permutation is a handful of dense products

    Y = E[perm]
    Y ← Y − Q_Z (Q_Zᵀ Y)          (partial model; k_Z = 0 is a no-op)
    F = Q_X (Q_Xᵀ Y),   R = Y − F

and ``jax.vmap`` evaluates a whole chunk of permutations in one
XLA-compiled call.

NumPy ↔ JAX boundary convention
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
All inputs are NumPy arrays and both outputs are NumPy arrays.  JAX
arrays exist only inside :meth:`JaxBackend.permutation_f`.

Float64 rationale
~~~~~~~~~~~~~~~~~
Permutation statistics are compared against the observed statistic
with ``>=``; float32 rounding would flip ties and bias the p-value.
``jax_enable_x64`` is switched on at import time.

Failure detection
~~~~~~~~~~~~~~~~~
``jnp.linalg.svd`` does not raise on non-convergence; it returns NaN.
Non-finite first eigenvalues are therefore checked on the host after
every chunk and reported as :class:`~permutest_cca.SVDConvergenceError`.

Graceful degradation
~~~~~~~~~~~~~~~~~~~~
If JAX is not installed, :class:`JaxBackend` can still be instantiated
(for introspection) but ``is_available`` returns ``False`` and
:func:`resolve_backend` raises ``ImportError`` when this backend is
explicitly requested.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from functools import partial as _partial
from typing import Any

import numpy as np

from .._config import get_chunk_size
from .._errors import PermutationCancelled, SVDConvergenceError
from ..qr import QRFactorization

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------ #
# Optional JAX import
# ------------------------------------------------------------------ #

try:
    import jax

    # Enable 64-bit floating point before any array creation.
    jax.config.update("jax_enable_x64", True)

    import jax.numpy as jnp
    from jax import jit, vmap

    _CAN_IMPORT_JAX = True
except ImportError:
    _CAN_IMPORT_JAX = False


if _CAN_IMPORT_JAX:

    @_partial(jit, static_argnames=("first",))
    def _chunk_statistics(
        idx: Any, E: Any, Q: Any, Z: Any, first: bool
    ) -> tuple[Any, Any]:
        """Explained and residual variance for a chunk of permutations.

        Args:
            idx: Permutation indices ``(chunk, n)``.
            E: Response ``(n, p)``.
            Q: Constrained-model basis ``(n, k_X)``.
            Z: Conditioning-model basis ``(n, k_Z)``; ``k_Z`` may be 0.
            first: Use the first eigenvalue instead of the sum.
        """

        def _one(perm: Any) -> tuple[Any, Any]:
            Y = E[perm]
            Y = Y - Z @ (Z.T @ Y)
            F = Q @ (Q.T @ Y)
            R = Y - F
            if first and min(F.shape) == 0:
                ev = jnp.zeros((), dtype=F.dtype)
            elif first:
                ev = jnp.linalg.svd(F, compute_uv=False)[0] ** 2
            else:
                ev = jnp.sum(F * F)
            return ev, jnp.sum(R * R)

        return vmap(_one)(idx)


@dataclass(frozen=True)
class JaxBackend:
    """JAX compute backend (``jit`` + ``vmap`` over permutation chunks)."""

    @property
    def name(self) -> str:
        return "jax"

    @property
    def is_available(self) -> bool:  # noqa: PLR6301
        return _CAN_IMPORT_JAX

    def permutation_f(
        self,
        perm_indices: np.ndarray,
        response: np.ndarray,
        design: QRFactorization,
        partial: QRFactorization | None = None,
        first: bool = False,
        cancel: threading.Event | None = None,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Evaluate the statistic in vectorised chunks.

        See :meth:`BackendProtocol.permutation_f` for the contract.
        Cancellation is checked between chunks; the chunk size comes
        from :func:`~permutest_cca._config.get_chunk_size`.

        Raises:
            SVDConvergenceError: If ``first`` is set and a first
                eigenvalue is not finite.
            PermutationCancelled: If *cancel* is set between chunks.
        """
        nperm = perm_indices.shape[0]
        n = response.shape[0]
        fill_residual = partial is not None or first
        chunk = get_chunk_size()

        E = jnp.asarray(response, dtype=jnp.float64)
        Q = jnp.asarray(design.basis(), dtype=jnp.float64)
        if partial is not None:
            Z = jnp.asarray(partial.basis(), dtype=jnp.float64)
        else:
            Z = jnp.zeros((n, 0), dtype=jnp.float64)

        explained = np.empty(nperm)
        residual = np.empty(nperm)

        for start in range(0, nperm, chunk):
            if cancel is not None and cancel.is_set():
                logger.debug("JAX batch cancelled after %d of %d permutations", start, nperm)
                raise PermutationCancelled(start)
            stop = min(start + chunk, nperm)
            idx = jnp.asarray(perm_indices[start:stop])
            ev, rv = _chunk_statistics(idx, E, Q, Z, first)
            explained[start:stop] = np.asarray(ev)
            residual[start:stop] = np.asarray(rv)
            logger.debug("JAX chunk %d:%d of %d done", start, stop, nperm)

        if first and not np.isfinite(explained).all():
            bad = int(np.flatnonzero(~np.isfinite(explained))[0])
            raise SVDConvergenceError(
                f"SVD of the fitted matrix for permutation {bad} did not "
                f"produce a finite first singular value."
            )

        logger.debug("JAX batch of %d permutations finished", nperm)
        if not fill_residual:
            residual[:] = np.nan
        return explained, residual
