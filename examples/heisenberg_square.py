#!/usr/bin/env python
"""
Spin-1/2 Heisenberg antiferromagnet on the square lattice.

Simple update followed by full update on a 2x2 unit cell, then
magnetization, bond energies and spin-spin correlations.

Run with:
    python heisenberg_square.py [--D BOND_DIM] [--chi ENV_DIM]

or in parallel:
    mpirun -np 4 python heisenberg_square.py
"""

import argparse

import numpy as np

from ctmpeps import (
    SquareLattice,
    SpinOperators,
    PEPSParameters,
    CTMConfig,
    SimpleUpdateConfig,
    FullUpdateConfig,
    run,
)
from ctmpeps.hpc.mpi import MPIManager
from ctmpeps.models.operators import (
    OnesiteOperator,
    CorrelationParameter,
    nearest_neighbor_gates,
    nearest_neighbor_observables,
)


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Square-lattice Heisenberg model with PEPS"
    )

    parser.add_argument("--D", type=int, default=2, help="Bond dimension")
    parser.add_argument("--chi", type=int, default=10, help="Environment dimension")
    parser.add_argument("--su-steps", type=int, default=500, help="Simple update steps")
    parser.add_argument("--fu-steps", type=int, default=10, help="Full update steps")
    parser.add_argument("--tau", type=float, default=0.01, help="Imaginary time step")
    parser.add_argument("--rmax", type=int, default=5, help="Correlation length")
    parser.add_argument("--outdir", type=str, default="output", help="Report directory")

    return parser.parse_args()


def main():
    args = parse_args()
    mpi = MPIManager()

    lattice = SquareLattice(2, 2, bond_dim=args.D, noise=0.01)
    spins = SpinOperators(0.5)
    H = spins.heisenberg_bond()
    gates = nearest_neighbor_gates(lattice, H, args.tau)

    # Staggered initial directions
    for site in lattice:
        even = (lattice.x(site.index) + lattice.y(site.index)) % 2 == 0
        site.initial_dir = np.array([1.0, 0.0] if even else [0.0, 1.0])

    params = PEPSParameters(
        ctm=CTMConfig(chi=args.chi),
        simple_update=SimpleUpdateConfig(num_step=args.su_steps),
        full_update=FullUpdateConfig(num_step=args.fu_steps),
        outdir=args.outdir,
    )

    onesite = []
    for group, name in enumerate(("Sz", "Sx", "Sy")):
        onesite += [OnesiteOperator(group, i, spins.get(name)) for i in range(lattice.N_UNIT)]

    summary = run(
        lattice,
        params,
        simple_updates=gates,
        full_updates=gates,
        onesite_operators=onesite,
        twosite_operators=nearest_neighbor_observables(lattice, H),
        correlation=CorrelationParameter(r_max=args.rmax, operators=[(0, 0), (1, 1), (2, 2)]),
        mpi=mpi,
    )

    if mpi.is_root:
        print(f"Energy per site: {summary['energy']:.10f}")


if __name__ == "__main__":
    main()
