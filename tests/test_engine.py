"""Tests for compute_f and PermutationFEngine (NumPy backend).

The expected statistics are recomputed independently from dense
least-squares projections, so these tests pin the algorithm rather
than the implementation.
"""

from __future__ import annotations

import logging
import threading

import numpy as np
import pandas as pd
import pytest

from permutest_cca import (
    PermutationCancelled,
    PermutationFEngine,
    QRFactorization,
    QRProjectionError,
    ResidualState,
    SVDConvergenceError,
    compute_f,
)

# ------------------------------------------------------------------ #
# Shared fixtures
# ------------------------------------------------------------------ #

_SEED = 42
_N = 30
_N_PERMS = 25


def _project(X: np.ndarray, Y: np.ndarray) -> np.ndarray:
    coef, *_ = np.linalg.lstsq(X, Y, rcond=None)
    return X @ coef


@pytest.fixture()
def rng():
    return np.random.default_rng(_SEED)


@pytest.fixture()
def model(rng):
    """Response (n, 5), constraints (n, 3) and conditioning terms (n, 2)."""
    X = np.column_stack([np.ones(_N), rng.standard_normal((_N, 2))])
    Z = np.column_stack([np.ones(_N), rng.standard_normal(_N)])
    E = rng.standard_normal((_N, 5)) + X[:, [1]] * np.array([2.0, 0.0, 1.0, 0.0, -1.0])
    return E, X, Z


@pytest.fixture()
def perms(rng):
    """1-based permutation table (nperm, n)."""
    return np.vstack([rng.permutation(_N) + 1 for _ in range(_N_PERMS)])


def _expected(E, X, perm0, Z=None, first=False):
    """Dense reference computation for one 0-based permutation."""
    Y = E[perm0]
    if Z is not None:
        Y = Y - _project(Z, Y)
    F = _project(X, Y)
    R = Y - F
    if first:
        ev = np.linalg.svd(F, compute_uv=False)[0] ** 2
    else:
        ev = np.sum(F**2)
    return ev, np.sum(R**2)


# ------------------------------------------------------------------ #
# Identity permutation
# ------------------------------------------------------------------ #


class TestIdentityPermutation:
    def test_reproduces_direct_fit(self, model):
        E, X, _ = model
        design = QRFactorization.from_design(X)
        identity = np.arange(1, _N + 1)[np.newaxis, :]
        result = compute_f(identity, E, design, backend="numpy")
        direct = np.sum(_project(X, E) ** 2)
        assert result.explained[0] == pytest.approx(direct, rel=1e-10)

    def test_matches_fitted_helper(self, model):
        E, X, _ = model
        design = QRFactorization.from_design(X)
        identity = np.arange(1, _N + 1)[np.newaxis, :]
        result = compute_f(identity, E, design, backend="numpy")
        assert result.explained[0] == pytest.approx(np.sum(design.fitted(E) ** 2))


# ------------------------------------------------------------------ #
# The four branches
# ------------------------------------------------------------------ #


class TestSumOfEigenvalues:
    """No partial model, sum of all eigenvalues."""

    def test_explained_matches_reference(self, model, perms):
        E, X, _ = model
        result = compute_f(perms, E, QRFactorization.from_design(X), backend="numpy")
        for k in range(_N_PERMS):
            ev, _ = _expected(E, X, perms[k] - 1)
            assert result.explained[k] == pytest.approx(ev, rel=1e-10)

    def test_residual_column_left_for_caller(self, model, perms):
        E, X, _ = model
        result = compute_f(perms, E, QRFactorization.from_design(X), backend="numpy")
        assert result.residual_state is ResidualState.CALLER_MUST_SUPPLY
        assert np.isnan(result.residual).all()
        assert np.isnan(result.table[:, 1]).all()

    def test_caller_supplied_total_gives_reference_residual(self, model, perms):
        E, X, _ = model
        result = compute_f(perms, E, QRFactorization.from_design(X), backend="numpy")
        filled = result.with_residual(np.sum(E**2))
        for k in range(_N_PERMS):
            _, rv = _expected(E, X, perms[k] - 1)
            assert filled.residual[k] == pytest.approx(rv, rel=1e-9)


class TestFirstEigenvalue:
    """No partial model, first eigenvalue only."""

    def test_matches_reference(self, model, perms):
        E, X, _ = model
        result = compute_f(
            perms, E, QRFactorization.from_design(X), first=True, backend="numpy"
        )
        assert result.residual_state is ResidualState.FILLED
        for k in range(_N_PERMS):
            ev, rv = _expected(E, X, perms[k] - 1, first=True)
            assert result.explained[k] == pytest.approx(ev, rel=1e-10)
            assert result.residual[k] == pytest.approx(rv, rel=1e-10)

    def test_first_not_larger_than_sum(self, model, perms):
        E, X, _ = model
        design = QRFactorization.from_design(X)
        first = compute_f(perms, E, design, first=True, backend="numpy")
        total = compute_f(perms, E, design, backend="numpy")
        assert np.all(first.explained <= total.explained * (1 + 1e-12))

    def test_total_inertia_invariant(self, model, perms):
        """Sum of eigenvalues + residual is the same for every permutation."""
        E, X, _ = model
        design = QRFactorization.from_design(X)
        first = compute_f(perms, E, design, first=True, backend="numpy")
        total = compute_f(perms, E, design, backend="numpy")
        np.testing.assert_allclose(
            total.explained + first.residual, np.sum(E**2), rtol=1e-10
        )

    def test_single_column_response_first_equals_sum(self, model, perms):
        E, X, _ = model
        design = QRFactorization.from_design(X)
        first = compute_f(perms, E[:, :1], design, first=True, backend="numpy")
        total = compute_f(perms, E[:, :1], design, backend="numpy")
        np.testing.assert_allclose(first.explained, total.explained, rtol=1e-10)


class TestPartialModel:
    """Conditioning terms removed before the constrained fit."""

    @pytest.mark.parametrize("first", [False, True])
    def test_matches_reference(self, model, perms, first):
        E, X, Z = model
        result = compute_f(
            perms,
            E,
            QRFactorization.from_design(X),
            QRFactorization.from_design(Z),
            first=first,
            backend="numpy",
        )
        assert result.partial is True
        assert result.residual_state is ResidualState.FILLED
        for k in range(_N_PERMS):
            ev, rv = _expected(E, X, perms[k] - 1, Z=Z, first=first)
            assert result.explained[k] == pytest.approx(ev, rel=1e-9)
            assert result.residual[k] == pytest.approx(rv, rel=1e-9)

    def test_partial_reduces_total(self, model, perms):
        E, X, Z = model
        result = compute_f(
            perms,
            E,
            QRFactorization.from_design(X),
            QRFactorization.from_design(Z),
            backend="numpy",
        )
        assert np.all(result.explained + result.residual <= np.sum(E**2) + 1e-9)


# ------------------------------------------------------------------ #
# Shapes and inputs
# ------------------------------------------------------------------ #


class TestShapes:
    def test_three_by_two(self):
        rng = np.random.default_rng(0)
        n = 4
        E = rng.standard_normal((n, 2))
        X = np.column_stack([np.ones(n), rng.standard_normal(n)])
        perms = np.array([[1, 2, 3, 4], [4, 3, 2, 1], [2, 1, 4, 3]])
        result = compute_f(perms, E, QRFactorization.from_design(X), backend="numpy")
        assert result.table.shape == (3, 2)
        assert len(result) == 3
        assert np.isnan(result.table[:, 1]).all()

    def test_zero_permutations(self, model):
        E, X, _ = model
        perms = np.empty((0, _N), dtype=int)
        result = compute_f(perms, E, QRFactorization.from_design(X), backend="numpy")
        assert result.table.shape == (0, 2)

    def test_zero_based_equals_one_based(self, model, perms):
        E, X, _ = model
        design = QRFactorization.from_design(X)
        a = compute_f(perms, E, design, backend="numpy")
        b = compute_f(perms - 1, E, design, one_based=False, backend="numpy")
        np.testing.assert_array_equal(a.explained, b.explained)

    def test_dataframe_response(self, model, perms):
        E, X, _ = model
        design = QRFactorization.from_design(X)
        df = pd.DataFrame(E, columns=[f"sp{j}" for j in range(E.shape[1])])
        a = compute_f(perms, df, design, backend="numpy")
        b = compute_f(perms, E, design, backend="numpy")
        np.testing.assert_array_equal(a.explained, b.explained)


class TestNoMutation:
    def test_inputs_unchanged(self, model, perms):
        E, X, Z = model
        design = QRFactorization.from_design(X)
        partial = QRFactorization.from_design(Z)
        E_before, perms_before = E.copy(), perms.copy()
        qr_before = design.qr.copy()
        compute_f(perms, E, design, partial, first=True, backend="numpy")
        np.testing.assert_array_equal(E, E_before)
        np.testing.assert_array_equal(perms, perms_before)
        np.testing.assert_array_equal(design.qr, qr_before)

    def test_engine_response_is_read_only(self, model):
        E, X, _ = model
        engine = PermutationFEngine(E, QRFactorization.from_design(X), backend="numpy")
        assert not engine.response.flags.writeable
        # The caller's own array stays writeable.
        assert E.flags.writeable


# ------------------------------------------------------------------ #
# Engine reuse
# ------------------------------------------------------------------ #


class TestPermutationFEngine:
    def test_attributes(self, model):
        E, X, Z = model
        engine = PermutationFEngine(
            E,
            QRFactorization.from_design(X),
            QRFactorization.from_design(Z),
            first=True,
            backend="numpy",
        )
        assert engine.n == _N
        assert engine.backend_name == "numpy"
        assert engine.fills_residual

    def test_run_twice_is_deterministic(self, model, perms):
        E, X, _ = model
        engine = PermutationFEngine(E, QRFactorization.from_design(X), backend="numpy")
        a = engine.run(perms)
        b = engine.run(perms)
        np.testing.assert_array_equal(a.explained, b.explained)

    def test_split_tables_concatenate(self, model, perms):
        E, X, _ = model
        engine = PermutationFEngine(E, QRFactorization.from_design(X), backend="numpy")
        whole = engine.run(perms)
        parts = np.concatenate(
            [engine.run(perms[:10]).explained, engine.run(perms[10:]).explained]
        )
        np.testing.assert_array_equal(whole.explained, parts)


# ------------------------------------------------------------------ #
# Failures and cancellation
# ------------------------------------------------------------------ #


class _CancelAfter:
    """Event stand-in that reports "set" after *k* checks."""

    def __init__(self, k: int) -> None:
        self.k = k
        self.calls = 0

    def is_set(self) -> bool:
        self.calls += 1
        return self.calls > self.k


class TestFailures:
    def test_nan_response_with_first_raises(self, model, perms):
        E, X, _ = model
        E = E.copy()
        E[3, 2] = np.nan
        with pytest.raises(SVDConvergenceError):
            compute_f(perms, E, QRFactorization.from_design(X), first=True, backend="numpy")

    def test_qr_failure_aborts_batch(self, model, perms):
        E, X, _ = model
        design = QRFactorization.from_design(X)

        def _failing_ormqr(side, trans, a, tau, c, lwork, overwrite_c=0):
            return c, np.zeros(1), -2

        object.__setattr__(design, "_ormqr", _failing_ormqr)
        with pytest.raises(QRProjectionError):
            compute_f(perms, E, design, backend="numpy")


class TestCancellation:
    def test_cancel_before_start(self, model, perms):
        E, X, _ = model
        event = threading.Event()
        event.set()
        with pytest.raises(PermutationCancelled) as excinfo:
            compute_f(perms, E, QRFactorization.from_design(X), backend="numpy", cancel=event)
        assert excinfo.value.completed == 0

    def test_cancel_mid_batch(self, model, perms):
        E, X, _ = model
        with pytest.raises(PermutationCancelled) as excinfo:
            compute_f(
                perms,
                E,
                QRFactorization.from_design(X),
                backend="numpy",
                cancel=_CancelAfter(7),
            )
        assert excinfo.value.completed == 7

    def test_unset_event_runs_to_completion(self, model, perms):
        E, X, _ = model
        result = compute_f(
            perms, E, QRFactorization.from_design(X), backend="numpy",
            cancel=threading.Event(),
        )
        assert len(result) == _N_PERMS


class TestBatchLogging:
    def test_finish_logged(self, model, perms, caplog):
        E, X, _ = model
        caplog.set_level(logging.DEBUG, logger="permutest_cca")
        compute_f(perms, E, QRFactorization.from_design(X), backend="numpy")
        assert f"Batch of {_N_PERMS} permutations finished" in caplog.text

    def test_cancellation_logged(self, model, perms, caplog):
        E, X, _ = model
        caplog.set_level(logging.DEBUG, logger="permutest_cca")
        with pytest.raises(PermutationCancelled):
            compute_f(
                perms, E, QRFactorization.from_design(X), backend="numpy",
                cancel=_CancelAfter(3),
            )
        assert f"Batch cancelled after 3 of {_N_PERMS} permutations" in caplog.text
