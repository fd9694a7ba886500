"""Runtime configuration for the permutest_cca package.

Two settings are configurable:

**Backend** — whether the JAX-vectorised permutation path is used or
the package falls back to the NumPy / SciPy LAPACK implementation.

Resolution order (first match wins):
    1. Programmatic override via :func:`set_backend`.
    2. The ``PERMUTEST_CCA_BACKEND`` environment variable.
    3. Auto-detection: ``"jax"`` if JAX is importable, else ``"numpy"``.

**Chunk size** — how many permutations the JAX backend evaluates per
vectorised call.  Cancellation requests are honoured between chunks,
so smaller chunks react faster at the cost of more dispatch overhead.

Resolution order:
    1. Programmatic override via :func:`set_chunk_size`.
    2. The ``PERMUTEST_CCA_CHUNK_SIZE`` environment variable.
    3. :data:`DEFAULT_CHUNK_SIZE`.

Examples:
    Force the reference implementation from the shell::

        export PERMUTEST_CCA_BACKEND=numpy

    Force it programmatically, then restore auto-detection::

        import permutest_cca
        permutest_cca.set_backend("numpy")
        permutest_cca.set_backend("auto")
"""

from __future__ import annotations

import logging
import os

logger = logging.getLogger(__name__)

_BACKEND_ENV_VAR = "PERMUTEST_CCA_BACKEND"
_CHUNK_ENV_VAR = "PERMUTEST_CCA_CHUNK_SIZE"

_VALID_BACKENDS = {"jax", "numpy", "auto"}

DEFAULT_CHUNK_SIZE = 1_024
"""Permutations per vectorised JAX call when nothing else is configured."""

# Sentinels indicating "no programmatic override has been set".
_backend_override: str | None = None
_chunk_size_override: int | None = None


def _jax_is_available() -> bool:
    """Return ``True`` if JAX can be imported."""
    try:
        # Side-effect import to test availability; value unused.
        import jax  # noqa: F401

        return True
    except ImportError:
        return False


# ------------------------------------------------------------------ #
# Backend
# ------------------------------------------------------------------ #


def get_backend() -> str:
    """Return the active backend name (``"jax"`` or ``"numpy"``).

    Returns:
        ``"jax"`` or ``"numpy"``.
    """
    if _backend_override is not None and _backend_override != "auto":
        return _backend_override

    env = os.environ.get(_BACKEND_ENV_VAR, "").strip().lower()
    if env in ("jax", "numpy"):
        return env

    return "jax" if _jax_is_available() else "numpy"


def set_backend(name: str) -> None:
    """Override the backend selection.

    Args:
        name: One of ``"jax"``, ``"numpy"``, or ``"auto"``
            (case-insensitive).  ``"auto"`` restores the default
            resolution order.

    Raises:
        ValueError: If *name* is not a recognised backend.
    """
    global _backend_override
    normalised = name.strip().lower()
    if normalised not in _VALID_BACKENDS:
        raise ValueError(
            f"Unknown backend '{name}'. Choose from: {sorted(_VALID_BACKENDS)}"
        )
    _backend_override = normalised


# ------------------------------------------------------------------ #
# Chunk size
# ------------------------------------------------------------------ #


def get_chunk_size() -> int:
    """Return the number of permutations per vectorised JAX call.

    A malformed ``PERMUTEST_CCA_CHUNK_SIZE`` value is ignored (with a
    debug log record) rather than failing a long-running test at
    start-up.
    """
    if _chunk_size_override is not None:
        return _chunk_size_override

    env = os.environ.get(_CHUNK_ENV_VAR, "").strip()
    if env:
        try:
            value = int(env)
        except ValueError:
            value = 0
        if value > 0:
            return value
        logger.debug("Ignoring invalid %s=%r", _CHUNK_ENV_VAR, env)

    return DEFAULT_CHUNK_SIZE


def set_chunk_size(size: int | None) -> None:
    """Override the JAX chunk size.

    Args:
        size: Positive number of permutations per chunk, or ``None``
            to restore the default resolution order.

    Raises:
        ValueError: If *size* is not a positive integer.
    """
    global _chunk_size_override
    if size is None:
        _chunk_size_override = None
        return
    if isinstance(size, bool) or not isinstance(size, int) or size < 1:
        raise ValueError(f"chunk size must be a positive integer, got {size!r}.")
    _chunk_size_override = size
