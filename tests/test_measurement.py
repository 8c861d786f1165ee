"""
Tests for the measurement engine.
"""

import pytest
import numpy as np
from numpy.testing import assert_allclose


def _converged_state(Lx=2, Ly=2, skew=0, uniform=False, seed=3, chi=6):
    """Weakly entangled state with a converged environment."""
    from ctmpeps.algorithms.ctm import CTMEnvironment, CTMConfig
    from ctmpeps.core.peps_state import PEPSState
    from ctmpeps.lattice.unit_cell import SquareLattice, Site

    sites = [
        Site(i, physical_dim=2, virtual_dims=(2, 2, 2, 2), initial_dir=[1.0, 0.4], noise=0.2)
        for i in range(Lx * Ly)
    ]
    lattice = SquareLattice(Lx, Ly, sites=sites, skew=skew)
    state = PEPSState(lattice, chi=chi)
    state.initialize_random(seed)
    if uniform:
        state.tensors = [state.tensors[0].copy() for _ in range(lattice.N_UNIT)]

    ctm = CTMEnvironment(lattice, CTMConfig(chi=chi, tol=1e-11, max_iter=500, verbosity=0))
    ctm.update(state)
    return lattice, state, ctm


def _spin_ops():
    from ctmpeps.models.operators import SpinOperators
    return SpinOperators(0.5)


def _product(a, b):
    return np.einsum('ac,bd->abcd', a, b)


class TestOnesite:
    """Tests for onesite observables."""

    def test_identity_is_one(self):
        """Test that the identity is normalized at every site."""
        from ctmpeps.algorithms.measurement import Measurement
        from ctmpeps.models.operators import OnesiteOperator

        lattice, state, _ = _converged_state()
        ops = [OnesiteOperator(0, i, np.eye(2)) for i in range(lattice.N_UNIT)]
        values = Measurement(lattice, ops, verbosity=0).measure_onesite(state)

        assert values.shape == (1, 4)
        assert np.all(values.real == 1.0)
        assert_allclose(values.imag, 0.0, atol=1e-12)

    def test_identity_is_exactly_one_for_real_tensors(self):
        """Test that a real run gives 1 + 0i without rounding."""
        from ctmpeps.algorithms.ctm import CTMEnvironment, CTMConfig
        from ctmpeps.algorithms.measurement import Measurement
        from ctmpeps.core.peps_state import PEPSState
        from ctmpeps.lattice.unit_cell import SquareLattice
        from ctmpeps.models.operators import OnesiteOperator

        lattice = SquareLattice(1, 1, bond_dim=2, noise=0.3)
        state = PEPSState(lattice, chi=4, is_real=True)
        state.initialize_random(7)
        CTMEnvironment(lattice, CTMConfig(chi=4, verbosity=0)).update(state)

        values = Measurement(
            lattice, [OnesiteOperator(0, 0, np.eye(2))], verbosity=0
        ).measure_onesite(state)

        assert values[0, 0].real == 1.0
        assert values[0, 0].imag == 0.0

    def test_undefined_is_nan(self):
        """Test the sentinel for sites without an operator."""
        from ctmpeps.algorithms.measurement import Measurement
        from ctmpeps.models.operators import OnesiteOperator

        lattice, state, _ = _converged_state()
        sz = _spin_ops().Sz
        ops = [OnesiteOperator(0, i, sz) for i in range(4)] + [OnesiteOperator(1, 2, sz)]
        values = Measurement(lattice, ops, verbosity=0).measure_onesite(state)

        assert values.shape == (2, 4)
        assert not np.any(np.isnan(values[0]))
        assert np.isnan(values[1, 0].real)
        assert_allclose(values[1, 2], values[0, 2])

    def test_hermitian_expectation_is_real(self):
        """Test real expectation values of Hermitian operators."""
        from ctmpeps.algorithms.measurement import Measurement
        from ctmpeps.models.operators import OnesiteOperator

        lattice, state, _ = _converged_state()
        sx = _spin_ops().Sx
        values = Measurement(
            lattice, [OnesiteOperator(0, i, sx) for i in range(4)], verbosity=0
        ).measure_onesite(state)

        assert_allclose(values.imag, 0.0, atol=1e-6)
        assert np.all(np.abs(values.real) <= 0.5 + 1e-6)


class TestTwosite:
    """Tests for twosite observables."""

    def test_identity_is_one(self):
        """Test normalization for every footprint kind."""
        from ctmpeps.algorithms.measurement import Measurement
        from ctmpeps.models.operators import TwositeOperator

        lattice, state, _ = _converged_state()
        identity = np.eye(4).reshape(2, 2, 2, 2)
        offsets = [(1, 0), (0, 1), (-1, 0), (0, -1), (2, 0), (1, 1), (-2, 1), (3, 0)]
        ops = [TwositeOperator(0, 0, dx, dy, op=identity) for dx, dy in offsets]

        results = Measurement(lattice, twosite_operators=ops, verbosity=0).measure_twosite(state)

        assert len(results[0]) == len(offsets)
        for value in results[0].values():
            assert_allclose(value, 1.0, atol=1e-10)

    def test_dense_matches_product(self):
        """Test dense tensors against pairs of onesite operators."""
        from ctmpeps.algorithms.measurement import Measurement
        from ctmpeps.lattice.unit_cell import Bond
        from ctmpeps.models.operators import OnesiteOperator, TwositeOperator

        lattice, state, _ = _converged_state()
        spins = _spin_ops()
        onesite = [OnesiteOperator(0, i, spins.Sz) for i in range(4)]
        onesite += [OnesiteOperator(1, i, spins.Sx) for i in range(4)]
        dense = _product(spins.Sz, spins.Sx)

        offsets = [(1, 0), (0, 1), (0, -1), (2, 0), (1, 1), (-1, 2)]
        twosite = []
        for dx, dy in offsets:
            twosite.append(TwositeOperator(0, 1, dx, dy, op=dense))
            twosite.append(TwositeOperator(1, 1, dx, dy, ops_indices=(0, 1)))

        results = Measurement(lattice, onesite, twosite, verbosity=0).measure_twosite(state)

        for dx, dy in offsets:
            bond = Bond(1, dx, dy)
            assert_allclose(results[0][bond], results[1][bond], atol=1e-10)

    def test_orientation(self):
        """Test that a reversed bond with a transposed operator is the same pair."""
        from ctmpeps.algorithms.measurement import Measurement
        from ctmpeps.lattice.unit_cell import Bond
        from ctmpeps.models.operators import TwositeOperator

        lattice, state, _ = _converged_state()
        spins = _spin_ops()
        op = _product(spins.Sz, spins.Sx)
        swapped = op.transpose(1, 0, 3, 2)

        ops = [
            TwositeOperator(0, 0, 1, 0, op=op),
            TwositeOperator(0, 1, -1, 0, op=swapped),
            TwositeOperator(0, 0, 0, 1, op=op),
            TwositeOperator(0, 2, 0, -1, op=swapped),
        ]
        r = Measurement(lattice, twosite_operators=ops, verbosity=0).measure_twosite(state)[0]

        assert_allclose(r[Bond(1, -1, 0)], r[Bond(0, 1, 0)], atol=1e-12)
        assert_allclose(r[Bond(2, 0, -1)], r[Bond(0, 0, 1)], atol=1e-12)

    def test_translation_symmetry(self):
        """Test equal values on equivalent bonds of a uniform state."""
        from ctmpeps.algorithms.measurement import Measurement
        from ctmpeps.lattice.unit_cell import Bond
        from ctmpeps.models.operators import TwositeOperator

        lattice, state, _ = _converged_state(uniform=True)
        H = _spin_ops().heisenberg_bond()
        ops = [TwositeOperator(0, i, 1, 0, op=H) for i in range(4)]
        ops += [TwositeOperator(1, i, 0, 1, op=H) for i in range(4)]

        results = Measurement(lattice, twosite_operators=ops, verbosity=0).measure_twosite(state)

        for group in (0, 1):
            values = list(results[group].values())
            for v in values[1:]:
                assert_allclose(v, values[0], atol=1e-7)

    def test_oversized_is_skipped(self):
        """Test the diagnostic and missing entry for a too-long operator."""
        from ctmpeps.algorithms.measurement import Measurement, NMAX
        from ctmpeps.lattice.unit_cell import Bond
        from ctmpeps.models.operators import TwositeOperator

        lattice, state, _ = _converged_state()
        identity = np.eye(4).reshape(2, 2, 2, 2)
        ops = [
            TwositeOperator(0, 0, NMAX, 0, op=identity),
            TwositeOperator(0, 0, 1, 0, op=identity),
        ]

        with pytest.warns(UserWarning, match="dx, dy"):
            results = Measurement(lattice, twosite_operators=ops, verbosity=0).measure_twosite(state)

        assert Bond(0, NMAX, 0) not in results[0]
        assert Bond(0, 1, 0) in results[0]

    def test_norm_cache(self):
        """Test that footprints sharing a top-left site reuse the norm."""
        from ctmpeps.algorithms.measurement import Footprint

        lattice, _, _ = _converged_state()
        a, _, _ = Footprint.around(lattice, 0, 1, 0)
        b, _, _ = Footprint.around(lattice, 1, -1, 0)

        assert a.key == b.key
        assert a.sites == [[0, 1]]


class TestCorrelation:
    """Tests for long-range correlations."""

    def test_zero_range(self):
        """Test that r_max = 0 gives no records."""
        from ctmpeps.algorithms.measurement import Measurement
        from ctmpeps.models.operators import CorrelationParameter, OnesiteOperator

        lattice, state, _ = _converged_state()
        ops = [OnesiteOperator(0, i, _spin_ops().Sz) for i in range(4)]
        correlation = CorrelationParameter(r_max=0, operators=[(0, 0)])

        assert Measurement(lattice, ops, correlation=correlation, verbosity=0).measure_correlation(state) == []

    def test_matches_twosite(self):
        """Test swept correlations against rectangular footprints."""
        from ctmpeps.algorithms.measurement import Measurement
        from ctmpeps.lattice.unit_cell import Bond
        from ctmpeps.models.operators import CorrelationParameter, OnesiteOperator, TwositeOperator

        lattice, state, _ = _converged_state()
        spins = _spin_ops()
        onesite = [OnesiteOperator(0, i, spins.Sz) for i in range(4)]
        onesite += [OnesiteOperator(1, i, spins.Sx) for i in range(4)]
        twosite = [
            TwositeOperator(0, 0, dx, dy, ops_indices=(0, 1))
            for dx, dy in [(1, 0), (2, 0), (3, 0), (0, 1), (0, 2), (0, 3)]
        ]
        correlation = CorrelationParameter(r_max=3, operators=[(0, 1), (0, 0)])

        measurement = Measurement(lattice, onesite, twosite, correlation, verbosity=0)
        records = measurement.measure_correlation(state)
        pairs = measurement.measure_twosite(state)[0]

        assert len(records) == lattice.N_UNIT * 2 * 3 * 2

        found = {
            (c.left_index, c.right_index, c.offset_x, c.offset_y, c.left_op, c.right_op):
            complex(c.real, c.imag)
            for c in records
        }
        expected = {
            (0, 1, 0, 0): Bond(0, 1, 0),
            (0, 0, 1, 0): Bond(0, 2, 0),
            (0, 1, 1, 0): Bond(0, 3, 0),
            (0, 2, 0, 0): Bond(0, 0, 1),
            (0, 0, 0, 1): Bond(0, 0, 2),
            (0, 2, 0, 1): Bond(0, 0, 3),
        }
        for key, bond in expected.items():
            assert_allclose(found[key + (0, 1)], pairs[bond], atol=1e-10)

    def test_skewed_vertical_winding(self):
        """Test that the vertical sweep follows the skewed boundary."""
        from ctmpeps.algorithms.measurement import Measurement
        from ctmpeps.lattice.unit_cell import Bond
        from ctmpeps.models.operators import CorrelationParameter, OnesiteOperator, TwositeOperator

        lattice, state, _ = _converged_state(skew=1)
        sz = _spin_ops().Sz
        onesite = [OnesiteOperator(0, i, sz) for i in range(4)]
        twosite = [TwositeOperator(0, 0, 0, 2, ops_indices=(0, 0))]
        correlation = CorrelationParameter(r_max=2, operators=[(0, 0)])

        measurement = Measurement(lattice, onesite, twosite, correlation, verbosity=0)
        records = measurement.measure_correlation(state)
        pair = measurement.measure_twosite(state)[0][Bond(0, 0, 2)]

        vertical = [
            c for c in records
            if c.left_index == 0 and c.offset_y == 1
        ]
        assert len(vertical) == 1
        assert vertical[0].right_index == 1
        assert vertical[0].offset_x == 0
        assert_allclose(complex(vertical[0].real, vertical[0].imag), pair, atol=1e-10)


class TestMeasure:
    """Tests for the combined measurement."""

    def test_single_environment_refresh(self):
        """Test one CTM update and the observable accumulator."""
        from ctmpeps.algorithms.ctm import CTMEnvironment, CTMConfig
        from ctmpeps.algorithms.measurement import Measurement
        from ctmpeps.hpc.profiling import RunStatistics
        from ctmpeps.models.operators import OnesiteOperator, CorrelationParameter

        lattice, state, _ = _converged_state()
        stats = RunStatistics()
        ctm = CTMEnvironment(lattice, CTMConfig(chi=6, verbosity=0), stats=stats)
        measurement = Measurement(
            lattice,
            [OnesiteOperator(0, i, np.eye(2)) for i in range(4)],
            correlation=CorrelationParameter(r_max=1, operators=[(0, 0)]),
            stats=stats,
            verbosity=0,
        )

        result = measurement.measure(state, ctm)

        assert stats.environment.call_count == 1
        assert stats.observable.call_count == 1
        assert result.onesite.shape == (1, 4)
        assert result.twosite == []
        assert len(result.correlations) == 8
        for c in result.correlations:
            assert_allclose(c.real, 1.0, atol=1e-10)

    def test_environment_time_not_observable(self):
        """Test that the environment refresh is kept out of the observable time."""
        import time
        from ctmpeps.algorithms.measurement import Measurement
        from ctmpeps.hpc.profiling import RunStatistics
        from ctmpeps.models.operators import OnesiteOperator

        lattice, state, _ = _converged_state()
        stats = RunStatistics()

        class SlowEnvironment:
            def update(self, state):
                with stats.region("environment"):
                    time.sleep(0.3)

        measurement = Measurement(
            lattice, [OnesiteOperator(0, 0, np.eye(2))], stats=stats, verbosity=0
        )
        measurement.measure(state, SlowEnvironment())

        assert stats.environment.total_time >= 0.3
        assert stats.observable.total_time < 0.3


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
