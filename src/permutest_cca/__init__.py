"""permutest_cca — Permutation F statistics for constrained ordination.

Evaluates the per-permutation explained and residual variance of a
redundancy analysis (RDA) or canonical correspondence analysis (CCA)
style model: the rows of the response are permuted, an optional
partial (conditioning) model is removed, and the result is projected
onto a fixed, precomputed QR factorization of the constraints.  Either
the sum of all constrained eigenvalues or only the first eigenvalue
can serve as the explained statistic.

Public API:
    .. autosummary::
        compute_f
        PermutationFEngine
        PermutationFResult
        ResidualState
        QRFactorization
        QRJob
        QRProjection
        sum_of_squares
        first_singular_value
        SVDConvergenceError
        QRProjectionError
        PermutationCancelled
        get_backend
        set_backend
        get_chunk_size
        set_chunk_size
"""

from ._config import get_backend, get_chunk_size, set_backend, set_chunk_size
from ._errors import PermutationCancelled, QRProjectionError, SVDConvergenceError
from ._results import PermutationFResult, ResidualState
from .eigen import first_singular_value, sum_of_squares
from .engine import PermutationFEngine, compute_f
from .qr import QRFactorization, QRJob, QRProjection

__all__ = [
    "compute_f",
    "PermutationFEngine",
    "PermutationFResult",
    "ResidualState",
    "QRFactorization",
    "QRJob",
    "QRProjection",
    "sum_of_squares",
    "first_singular_value",
    "SVDConvergenceError",
    "QRProjectionError",
    "PermutationCancelled",
    "get_backend",
    "set_backend",
    "get_chunk_size",
    "set_chunk_size",
]

__version__ = "0.1.0"
