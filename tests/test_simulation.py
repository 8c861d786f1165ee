"""
End-to-end tests of the simulation driver.
"""

import pytest
import numpy as np
from numpy.testing import assert_allclose, assert_array_equal


def _params(tmp_path, **kwargs):
    from ctmpeps.config import PEPSParameters
    from ctmpeps.algorithms.ctm import CTMConfig

    kwargs.setdefault('ctm', CTMConfig(chi=4, max_iter=50, tol=1e-10))
    return PEPSParameters(outdir=str(tmp_path / "output"), verbosity=0, **kwargs)


def _rows(path):
    return [l.split() for l in path.read_text().splitlines() if l and not l.startswith("#")]


class TestPEPSParameters:
    """Tests for run parameters."""

    def test_defaults(self):
        from ctmpeps.config import PEPSParameters

        params = PEPSParameters()

        assert params.chi == 4
        assert params.seed == 11
        assert not params.is_real

    def test_verbosity_propagates(self):
        """Test that every engine gets the run verbosity."""
        from ctmpeps.config import PEPSParameters

        params = PEPSParameters(verbosity=2)

        assert params.ctm.verbosity == 2
        assert params.simple_update.verbosity == 2
        assert params.full_update.verbosity == 2

    def test_validation(self):
        from ctmpeps.config import PEPSParameters

        with pytest.raises(ValueError):
            PEPSParameters(verbosity=-1)

    def test_to_dict(self):
        from ctmpeps.config import PEPSParameters

        d = PEPSParameters(seed=5).to_dict()

        assert d['seed'] == 5
        assert d['ctm']['chi'] == 4
        assert 'fast_full_update' in d['full_update']


class TestPEPSSimulation:
    """Tests for PEPSSimulation."""

    def test_identity_gate_single_site(self, tmp_path):
        """Test that zero steps leave the tensors unchanged."""
        from ctmpeps.simulation import PEPSSimulation
        from ctmpeps.lattice.unit_cell import SquareLattice, RIGHT
        from ctmpeps.models.operators import EvolutionOperator, OnesiteOperator

        lattice = SquareLattice(1, 1, bond_dim=2, noise=0.1)
        gate = np.eye(4).reshape(2, 2, 2, 2)
        sim = PEPSSimulation(
            lattice,
            _params(tmp_path),
            simple_updates=[EvolutionOperator(0, RIGHT, gate)],
            onesite_operators=[OnesiteOperator(0, 0, np.eye(2))],
        )
        sim.initialize_tensors()
        before = sim.state.tensors[0].copy()

        sim.optimize()
        result = sim.measure()

        assert_array_equal(sim.state.tensors[0], before)
        assert result.onesite[0, 0].real == 1.0
        assert_allclose(result.onesite[0, 0].imag, 0.0, atol=1e-12)

    def test_parameters_written(self, tmp_path):
        from ctmpeps.simulation import PEPSSimulation
        from ctmpeps.lattice.unit_cell import SquareLattice

        sim = PEPSSimulation(SquareLattice(1, 1), _params(tmp_path))

        text = (sim.outdir / "parameters.dat").read_text()
        assert "ctm.chi = 4" in text
        assert "verbosity = 0" in text

    def test_real_run_converts_operators(self, tmp_path):
        """Test that a real run stores real tensors and operators."""
        from ctmpeps.simulation import PEPSSimulation
        from ctmpeps.lattice.unit_cell import SquareLattice
        from ctmpeps.models.operators import OnesiteOperator

        sim = PEPSSimulation(
            SquareLattice(1, 1),
            _params(tmp_path, is_real=True),
            onesite_operators=[OnesiteOperator(0, 0, np.eye(2, dtype=complex))],
        )
        sim.initialize_tensors()

        assert sim.state.tensors[0].dtype == np.float64
        assert sim.onesite_operators[0].op.dtype == np.float64

    def test_checkpoint_restart(self, tmp_path):
        """Test that a saved state is restored by a new simulation."""
        from ctmpeps.simulation import PEPSSimulation
        from ctmpeps.lattice.unit_cell import SquareLattice

        lattice = SquareLattice(2, 1, bond_dim=2, noise=0.2)
        first = PEPSSimulation(lattice, _params(tmp_path))
        first.initialize_tensors()
        first.update_ctm()
        first.save_tensors(tmp_path / "tensors")

        second = PEPSSimulation(lattice, _params(tmp_path))
        second.load_tensors(tmp_path / "tensors")

        for i in range(2):
            assert_array_equal(second.state.tensors[i], first.state.tensors[i])
            assert_array_equal(second.state.corners[2][i], first.state.corners[2][i])
        assert second.state.has_environment


class TestRun:
    """Tests for the complete run."""

    def test_report_files(self, tmp_path):
        """Test the files produced without correlations."""
        from ctmpeps.simulation import run
        from ctmpeps.lattice.unit_cell import SquareLattice
        from ctmpeps.models.operators import (
            OnesiteOperator, TwositeOperator, SpinOperators,
        )

        spins = SpinOperators(0.5)
        lattice = SquareLattice(2, 1, bond_dim=2, noise=0.1)
        params = _params(tmp_path)

        summary = run(
            lattice, params,
            onesite_operators=[OnesiteOperator(0, i, spins.get('Sz')) for i in range(2)],
            twosite_operators=[
                TwositeOperator(0, 0, 1, 0, op=spins.heisenberg_bond()),
                TwositeOperator(0, 0, 5, 0, op=spins.heisenberg_bond()),
            ],
        )

        outdir = tmp_path / "output"
        for name in ("onesite_obs.dat", "twosite_obs.dat", "energy.dat",
                     "time.dat", "parameters.dat"):
            assert (outdir / name).exists()
        assert not (outdir / "correlation.dat").exists()

        assert len(_rows(outdir / "onesite_obs.dat")) == 2
        twosite = _rows(outdir / "twosite_obs.dat")
        assert len(twosite) == 1
        assert twosite[0][:4] == ["0", "0", "1", "0"]

        assert set(summary) == {'energy', 'onesite', 'times'}
        assert_allclose(summary['energy'], float(twosite[0][4]) / 2, rtol=1e-12)

    def test_correlation_file(self, tmp_path):
        """Test that r_max > 0 writes correlation.dat."""
        from ctmpeps.simulation import run
        from ctmpeps.lattice.unit_cell import SquareLattice
        from ctmpeps.models.operators import (
            OnesiteOperator, CorrelationParameter, SpinOperators,
        )

        sz = SpinOperators(0.5).get('Sz')
        lattice = SquareLattice(1, 1, bond_dim=2, noise=0.1)

        run(
            lattice, _params(tmp_path),
            onesite_operators=[OnesiteOperator(0, 0, sz)],
            correlation=CorrelationParameter(r_max=3, operators=[(0, 0)]),
        )

        rows = _rows(tmp_path / "output" / "correlation.dat")
        assert len(rows) == 6
        assert {(int(r[4]), int(r[5])) for r in rows} == {
            (1, 0), (2, 0), (3, 0), (0, 1), (0, 2), (0, 3),
        }

    def test_heisenberg_energy(self, tmp_path):
        """Test the simple-update energy of the square-lattice Heisenberg model."""
        from ctmpeps.simulation import run
        from ctmpeps.lattice.unit_cell import SquareLattice
        from ctmpeps.algorithms.ctm import CTMConfig
        from ctmpeps.algorithms.simple_update import SimpleUpdateConfig
        from ctmpeps.models.operators import (
            SpinOperators, nearest_neighbor_gates, nearest_neighbor_observables,
        )

        lattice = SquareLattice(2, 2, bond_dim=2, noise=0.1)
        H = SpinOperators(0.5).heisenberg_bond()
        params = _params(
            tmp_path,
            ctm=CTMConfig(chi=8, max_iter=100, tol=1e-9),
            simple_update=SimpleUpdateConfig(num_step=200),
        )

        summary = run(
            lattice, params,
            simple_updates=nearest_neighbor_gates(lattice, H, tau=0.05),
            twosite_operators=nearest_neighbor_observables(lattice, H),
        )

        assert -0.70 < summary['energy'] < -0.55
        assert summary['times']['simple_update'] > 0

    def test_save_and_load_dirs(self, tmp_path):
        """Test tensor_save_dir followed by tensor_load_dir."""
        from ctmpeps.simulation import run
        from ctmpeps.lattice.unit_cell import SquareLattice
        from ctmpeps.models.operators import OnesiteOperator, SpinOperators

        sz = SpinOperators(0.5).get('Sz')
        lattice = SquareLattice(1, 1, bond_dim=2, noise=0.1)
        ops = [OnesiteOperator(0, 0, sz)]
        save_dir = str(tmp_path / "tensors")

        first = run(lattice, _params(tmp_path, tensor_save_dir=save_dir),
                    onesite_operators=ops)
        second = run(lattice, _params(tmp_path, tensor_load_dir=save_dir),
                     onesite_operators=ops)

        assert (tmp_path / "tensors" / "T_0.dat").exists()
        assert_allclose(second['onesite'][0], first['onesite'][0], atol=1e-8)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
