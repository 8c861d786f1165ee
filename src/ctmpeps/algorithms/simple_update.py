"""
Simple Update algorithm for PEPS.

The Simple Update is an efficient approximate method for optimizing
PEPS tensors using imaginary time evolution. The environment of a bond
is replaced by the bond weights (lambdas) on the surrounding legs, so no
CTM environment is needed.

Site tensors are stored without their bond weights; a bond update
absorbs the weights of the six outer legs, applies the gate to the
QR-reduced pair, truncates back to the original bond dimension and
divides the outer weights out again.

References:
    - Jiang et al., Phys. Rev. Lett. 101, 090603 (2008)
    - Corboz et al., Phys. Rev. B 82, 024407 (2010)
"""

from __future__ import annotations

import numpy as np
from typing import Any, List, Optional, Sequence
from dataclasses import dataclass
from tqdm import tqdm

from ctmpeps.core.contractions import contract
from ctmpeps.core.decompositions import inverse_weights, tensor_qr, truncated_svd
from ctmpeps.core.tensor import normalize_max_abs, pad_to
from ctmpeps.hpc.mpi import MPIManager
from ctmpeps.hpc.profiling import RunStatistics
from ctmpeps.lattice.unit_cell import mirror_leg


@dataclass
class SimpleUpdateConfig:
    """Configuration for Simple Update."""
    num_step: int = 0  # Number of Trotter steps
    inverse_lambda_cut: float = 1e-12  # Bond weights below this are not inverted
    verbosity: int = 1  # 0=silent, 1=progress, 2=debug

    def __post_init__(self):
        if self.num_step < 0:
            raise ValueError(f"num_step must be non-negative, got {self.num_step}")


def absorb_weights(
    tensor: np.ndarray,
    weights: Sequence[np.ndarray],
    legs: Sequence[int],
) -> np.ndarray:
    """Multiply the virtual legs ``legs`` of a site tensor by their weights."""
    for leg in legs:
        shape = [1] * tensor.ndim
        shape[leg] = -1
        tensor = tensor * np.reshape(weights[leg], shape)
    return tensor


class SimpleUpdate:
    """
    Simple Update algorithm for PEPS optimization.

    Parameters
    ----------
    lattice : SquareLattice
        Unit cell geometry
    gates : list of EvolutionOperator
        Gates of one Trotter step, applied in the given order
    config : SimpleUpdateConfig, optional
        Algorithm configuration
    mpi : MPIManager, optional
        Worker group
    stats : RunStatistics, optional
        Elapsed-time accumulators

    Examples
    --------
    >>> su = SimpleUpdate(lattice, gates, SimpleUpdateConfig(num_step=500))
    >>> su.run(state)
    """

    def __init__(
        self,
        lattice: Any,
        gates: List[Any],
        config: Optional[SimpleUpdateConfig] = None,
        mpi: Optional[MPIManager] = None,
        stats: Optional[RunStatistics] = None,
    ):
        self.lattice = lattice
        self.gates = list(gates)
        self.config = config or SimpleUpdateConfig()
        self.mpi = mpi or MPIManager()
        self.stats = stats or RunStatistics()

        self.truncation_errors: List[float] = []

    def run(self, state) -> None:
        """Apply ``num_step`` Trotter steps to ``state`` in place."""
        n_steps = self.config.num_step
        if n_steps == 0 or not self.gates:
            return

        with self.stats.region("simple_update"):
            iterator = range(n_steps)
            if self.config.verbosity >= 2:
                iterator = tqdm(iterator, desc="Simple Update", disable=not self.mpi.is_root)
            elif self.config.verbosity >= 1:
                self.mpi.log("Start simple update")

            reported = 0
            for step in iterator:
                for gate in self.gates:
                    self.update_bond(state, gate)

                progress = 10 * (step + 1) // n_steps
                if self.config.verbosity == 1 and progress > reported:
                    reported = progress
                    self.mpi.log(f"  {10 * progress}% [{step + 1}/{n_steps}] done")

        if self.config.verbosity >= 2:
            self.mpi.log(f"  max truncation error {max(self.truncation_errors):.3e}")

        # the environment no longer matches the tensors
        state.has_environment = False

    def update_bond(self, state, gate) -> float:
        """
        Apply one evolution gate to its bond.

        Both endpoint tensors and the shared bond weight are replaced; the
        weight is written to the two endpoints together.

        Returns
        -------
        float
            Relative weight of the discarded singular values
        """
        s = gate.source_site
        leg = gate.source_leg
        t = self.lattice.neighbor(s, leg)
        mleg = mirror_leg(leg)
        bond_dim = self.lattice.virtual_dim(s, leg)

        outer_s = [l for l in range(4) if l != leg]
        outer_t = [l for l in range(4) if l != mleg]

        T1 = absorb_weights(state.tensors[s], state.lambdas[s], outer_s)
        T2 = absorb_weights(state.tensors[t], state.lambdas[t], outer_t)

        qr1 = tensor_qr(T1, outer_s, [leg, 4])
        qr2 = tensor_qr(T2, outer_t, [mleg, 4])
        R1, R2 = qr1.R, qr2.R

        theta = contract(
            'acp,c,bcq,PQpq->aPbQ',
            R1, state.lambdas[s][leg], R2, gate.op,
        )
        k1, d1, k2, d2 = theta.shape
        svd = truncated_svd(theta.reshape(k1 * d1, k2 * d2), max_rank=bond_dim)

        weight = pad_to(svd.S, (bond_dim,))
        weight = weight / np.linalg.norm(weight)
        U = pad_to(svd.U, (k1 * d1, bond_dim)).reshape(k1, d1, bond_dim)
        V = pad_to(svd.Vh, (bond_dim, k2 * d2)).reshape(bond_dim, k2, d2)

        new1 = contract('xyzk,kpc->xyzcp', qr1.Q, U)
        new2 = contract('xyzk,ckp->xyzcp', qr2.Q, V)
        new1 = self._restore_legs(new1, outer_s, leg)
        new2 = self._restore_legs(new2, outer_t, mleg)

        cut = self.config.inverse_lambda_cut
        new1 = absorb_weights(new1, [inverse_weights(w, cut) for w in state.lambdas[s]], outer_s)
        new2 = absorb_weights(new2, [inverse_weights(w, cut) for w in state.lambdas[t]], outer_t)

        state.tensors[s] = normalize_max_abs(new1)
        state.tensors[t] = normalize_max_abs(new2)
        state.set_bond_weight(s, leg, weight)

        self.truncation_errors.append(svd.truncation_error)
        return svd.truncation_error

    @staticmethod
    def _restore_legs(tensor: np.ndarray, outer: List[int], leg: int) -> np.ndarray:
        # tensor legs are (outer..., leg, phys)
        order = list(outer) + [leg, 4]
        return np.ascontiguousarray(tensor.transpose(np.argsort(order)))
