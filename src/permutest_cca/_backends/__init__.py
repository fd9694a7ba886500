"""Backend abstraction layer for the permutation-F batch.

Each backend implements the :class:`BackendProtocol` interface: given
the permutation table, the response and the fixed factorizations, it
returns the explained and residual variance for every permutation.
:func:`~permutest_cca.engine.compute_f` dispatches to the active
backend via :func:`resolve_backend` rather than branching on the
backend name itself.

Resolution follows the policy set by :mod:`.._config`:

1. Programmatic override via :func:`~permutest_cca.set_backend`.
2. ``PERMUTEST_CCA_BACKEND`` environment variable.
3. Auto-detection: ``"jax"`` if importable, else ``"numpy"``.

When ``"jax"`` is explicitly requested but JAX is not installed, an
:class:`ImportError` is raised; explicit requests are never silently
degraded.  The ``"auto"`` policy is the only mode that falls back from
JAX to NumPy.
"""

from __future__ import annotations

import logging
import threading
from typing import Protocol, runtime_checkable

import numpy as np

from .._config import get_backend
from ..qr import QRFactorization

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------ #
# BackendProtocol
# ------------------------------------------------------------------ #


@runtime_checkable
class BackendProtocol(Protocol):
    """Interface that every compute backend must implement.

    Attributes:
        name: Short identifier (e.g. ``"numpy"``, ``"jax"``).
    """

    @property
    def name(self) -> str: ...

    @property
    def is_available(self) -> bool:
        """Whether the backend's dependencies are importable."""
        ...

    def permutation_f(
        self,
        perm_indices: np.ndarray,
        response: np.ndarray,
        design: QRFactorization,
        partial: QRFactorization | None = None,
        first: bool = False,
        cancel: threading.Event | None = None,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Explained and residual variance for every permutation.

        Args:
            perm_indices: 0-based permutation table ``(nperm, n)``.
            response: Response matrix ``(n, p)``; never modified.
            design: Constrained-model factorization.
            partial: Conditioning-model factorization, or ``None``.
            first: Use the first eigenvalue instead of the sum.
            cancel: Checked between units of work; when set, the
                batch stops with
                :class:`~permutest_cca.PermutationCancelled`.

        Returns:
            ``(explained, residual)``, each of shape ``(nperm,)``.
            ``residual`` is all NaN unless ``partial`` is given or
            ``first`` is set.
        """
        ...


# ------------------------------------------------------------------ #
# Backend resolution
# ------------------------------------------------------------------ #

# Singleton cache, one instance per backend name.
_BACKEND_CACHE: dict[str, BackendProtocol] = {}


def resolve_backend(name: str | None = None) -> BackendProtocol:
    """Return a :class:`BackendProtocol` instance for *name*.

    When *name* is ``None`` (the default), the policy from
    :func:`~permutest_cca._config.get_backend` is used.

    Args:
        name: ``"numpy"``, ``"jax"``, or ``None`` for policy default.

    Returns:
        A backend instance.

    Raises:
        ImportError: If ``"jax"`` is explicitly requested but JAX
            is not installed.
        ValueError: If *name* is not a recognised backend.
    """
    if name is None:
        name = get_backend()
    name = name.strip().lower()

    if name in _BACKEND_CACHE:
        return _BACKEND_CACHE[name]

    if name == "numpy":
        from ._numpy import NumpyBackend

        backend: BackendProtocol = NumpyBackend()

    elif name == "jax":
        from ._jax import JaxBackend

        jax_backend = JaxBackend()
        if not jax_backend.is_available:
            msg = (
                "Backend 'jax' was explicitly requested but JAX is "
                "not installed.  Install JAX (`pip install jax`) or "
                "use set_backend('numpy')."
            )
            raise ImportError(msg)
        backend = jax_backend

    else:
        msg = f"Unknown backend {name!r}.  Choose 'numpy' or 'jax'."
        raise ValueError(msg)

    logger.debug("Resolved backend %r", name)
    _BACKEND_CACHE[name] = backend
    return backend
