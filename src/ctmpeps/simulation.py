"""
Simulation driver.

`PEPSSimulation` wires the engines to one State Store: random or
checkpointed initialization, simple update, full update and
measurement with report files. `run` performs the whole sequence.

Example
-------
>>> lattice = SquareLattice(2, 2, bond_dim=2)
>>> spins = SpinOperators(0.5)
>>> H = spins.heisenberg_bond()
>>> params = PEPSParameters(simple_update=SimpleUpdateConfig(num_step=100))
>>> summary = run(
...     lattice, params,
...     simple_updates=nearest_neighbor_gates(lattice, H, tau=0.01),
...     twosite_operators=nearest_neighbor_observables(lattice, H),
... )
>>> summary['energy']
"""

from __future__ import annotations

import dataclasses
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from ctmpeps.algorithms.ctm import CTMEnvironment
from ctmpeps.algorithms.full_update import FullUpdate
from ctmpeps.algorithms.measurement import Measurement, MeasurementResult
from ctmpeps.algorithms.simple_update import SimpleUpdate
from ctmpeps.config import PEPSParameters
from ctmpeps.core.peps_state import PEPSState
from ctmpeps.core.tensor import as_dtype
from ctmpeps.hpc.checkpointing import CheckpointManager
from ctmpeps.hpc.mpi import MPIManager
from ctmpeps.hpc.profiling import RunStatistics
from ctmpeps.models.operators import CorrelationParameter
from ctmpeps import reports


def _convert(operators, dtype, kind: str) -> List[Any]:
    converted = []
    for op in operators:
        if getattr(op, 'op', None) is None:
            converted.append(op)
        else:
            converted.append(dataclasses.replace(op, op=as_dtype(op.op, dtype, kind)))
    return converted


class PEPSSimulation:
    """
    One PEPS ground-state calculation.

    Parameters
    ----------
    lattice : SquareLattice
        Unit cell geometry
    parameters : PEPSParameters
        Run parameters
    simple_updates, full_updates : list of EvolutionOperator
        Gates of one Trotter step for each update method
    onesite_operators : list of OnesiteOperator
    twosite_operators : list of TwositeOperator
    correlation : CorrelationParameter, optional
    mpi : MPIManager, optional
        Worker group; parameters and lattice are taken from its root
    """

    def __init__(
        self,
        lattice: Any,
        parameters: Optional[PEPSParameters] = None,
        simple_updates: Sequence[Any] = (),
        full_updates: Sequence[Any] = (),
        onesite_operators: Sequence[Any] = (),
        twosite_operators: Sequence[Any] = (),
        correlation: Optional[CorrelationParameter] = None,
        mpi: Optional[MPIManager] = None,
    ):
        self.mpi = mpi or MPIManager()
        parameters = parameters or PEPSParameters()
        self.parameters, self.lattice = self.mpi.broadcast((parameters, lattice))
        self.stats = RunStatistics()

        params = self.parameters
        self.state = PEPSState(self.lattice, params.chi, is_real=params.is_real)
        dtype = self.state.dtype

        self.simple_updates = _convert(simple_updates, dtype, "simple update gate")
        self.full_updates = _convert(full_updates, dtype, "full update gate")
        self.onesite_operators = _convert(onesite_operators, dtype, "onesite operator")
        self.twosite_operators = _convert(twosite_operators, dtype, "twosite operator")
        self.correlation = correlation or CorrelationParameter()

        self.ctm = CTMEnvironment(
            self.lattice, params.ctm, mpi=self.mpi, stats=self.stats, seed=params.seed
        )
        self.measurement = Measurement(
            self.lattice,
            self.onesite_operators,
            self.twosite_operators,
            self.correlation,
            mpi=self.mpi,
            stats=self.stats,
            verbosity=params.verbosity,
        )

        self.outdir = Path(params.outdir)
        if self.mpi.is_root:
            self.outdir.mkdir(parents=True, exist_ok=True)
            reports.write_parameters(self.outdir / "parameters.dat", params.to_dict())

    def initialize_tensors(self) -> None:
        """Random initial tensors from the lattice's directions and noise."""
        self.state.initialize_random(self.parameters.seed)

    def load_tensors(self, directory) -> None:
        if self.parameters.verbosity >= 1:
            self.mpi.log(f"Load tensors from {directory}")
        CheckpointManager(directory, self.mpi).load(self.state)

    def save_tensors(self, directory) -> None:
        if self.parameters.verbosity >= 1:
            self.mpi.log(f"Save tensors to {directory}")
        CheckpointManager(directory, self.mpi).save(self.state)

    def update_ctm(self) -> None:
        self.ctm.update(self.state)

    def simple_update(self) -> None:
        engine = SimpleUpdate(
            self.lattice, self.simple_updates, self.parameters.simple_update,
            mpi=self.mpi, stats=self.stats,
        )
        engine.run(self.state)

    def full_update(self) -> None:
        engine = FullUpdate(
            self.lattice, self.full_updates, self.ctm, self.parameters.full_update,
            mpi=self.mpi, stats=self.stats,
        )
        engine.run(self.state)

    def optimize(self) -> None:
        """Simple update followed by full update."""
        self.simple_update()
        self.full_update()

    def measure(self) -> MeasurementResult:
        """Measure every observable and write the report files."""
        params = self.parameters
        result = self.measurement.measure(self.state, self.ctm)

        n_unit = self.lattice.N_UNIT
        reports.write_onesite(self.outdir / "onesite_obs.dat", result.onesite, self.mpi)
        reports.write_twosite(self.outdir / "twosite_obs.dat", result.twosite, self.mpi)
        if self.correlation.r_max > 0:
            reports.write_correlation(
                self.outdir / "correlation.dat", result.correlations, self.mpi
            )
        reports.write_energy(
            self.outdir / "energy.dat", result.onesite, result.twosite, n_unit,
            is_real=params.is_real, mpi=self.mpi,
        )

        if params.verbosity >= 1:
            self.mpi.log(
                f"Energy density = {reports.energy_density(result.twosite, n_unit)}"
            )
            for group, v in enumerate(reports.onesite_densities(result.onesite, n_unit)):
                self.mpi.log(f"Onesite operator[{group}] density = {v}")
        return result

    def summary(self, result: MeasurementResult) -> Dict[str, Any]:
        n_unit = self.lattice.N_UNIT
        return {
            'energy': reports.energy_density(result.twosite, n_unit),
            'onesite': reports.onesite_densities(result.onesite, n_unit),
            'times': self.stats.totals(self.mpi),
        }


def run(
    lattice: Any,
    parameters: Optional[PEPSParameters] = None,
    simple_updates: Sequence[Any] = (),
    full_updates: Sequence[Any] = (),
    onesite_operators: Sequence[Any] = (),
    twosite_operators: Sequence[Any] = (),
    correlation: Optional[CorrelationParameter] = None,
    mpi: Optional[MPIManager] = None,
) -> Dict[str, Any]:
    """
    Optimize and measure a PEPS.

    Returns
    -------
    dict
        ``energy`` (float), ``onesite`` (list of per-group densities)
        and ``times`` (seconds per accumulator)
    """
    sim = PEPSSimulation(
        lattice, parameters, simple_updates, full_updates,
        onesite_operators, twosite_operators, correlation, mpi,
    )
    params = sim.parameters

    if params.tensor_load_dir:
        sim.load_tensors(params.tensor_load_dir)
    else:
        sim.initialize_tensors()

    sim.optimize()

    if params.tensor_save_dir:
        sim.save_tensors(params.tensor_save_dir)

    result = sim.measure()
    reports.write_time(sim.outdir / "time.dat", sim.stats, sim.mpi)

    if params.verbosity >= 1:
        sim.mpi.log(sim.stats.report())
    return sim.summary(result)
