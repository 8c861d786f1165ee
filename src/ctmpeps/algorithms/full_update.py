"""
Full Update algorithm for PEPS.

The Full Update evolves each bond using the full CTM environment of the
two endpoint sites instead of the bond weights. It is more expensive
than the Simple Update but accounts for the correlations of the rest of
the network.

Every bond is first brought into a frame where it is horizontal with the
source site on the left (`ctmpeps.core.frames.bond_direction`), so the
update itself is written for a single orientation.

Per bond:
1. QR-reduce the two site tensors to the legs touching the bond.
2. Contract the environment of the reduced pair (norm tensor N).
3. Hermitize N, project it onto positive matrices and optionally fix
   the gauge of the reduced tensors.
4. Fit the gated pair by alternating least squares in the metric N.
5. Balance the bond and write the tensors back.

After each bond the environment is refreshed, either with moves along
the bond's columns or rows (fast full update) or by a full CTM run.

References:
    - Jordan et al., Phys. Rev. Lett. 101, 250602 (2008)
    - Corboz et al., Phys. Rev. B 84, 041108(R) (2011)
    - Phien et al., Phys. Rev. B 92, 035142 (2015)
"""

from __future__ import annotations

import numpy as np
from typing import Any, List, Optional, Tuple
from dataclasses import dataclass
from tqdm import tqdm

from ctmpeps.algorithms.ctm import CTMEnvironment
from ctmpeps.core.contractions import contract
from ctmpeps.core.decompositions import (
    positive_approximant,
    positive_solve,
    pseudo_inverse,
    truncated_svd,
    tensor_qr,
)
from ctmpeps.core.frames import (
    C1, C2, C3, C4, ET, ER, EB, EL, TOP, RIGHT,
    RotatedView, bond_direction,
)
from ctmpeps.core.tensor import normalize_max_abs, pad_to
from ctmpeps.hpc.mpi import MPIManager
from ctmpeps.hpc.profiling import RunStatistics


@dataclass
class FullUpdateConfig:
    """Configuration for Full Update."""
    num_step: int = 0  # Number of Trotter steps
    inverse_precision: float = 1e-12  # Pseudo-inverse cutoff in the least-squares fit
    convergence_epsilon: float = 1e-12  # Relative change of the fit cost
    max_iteration: int = 100  # Maximum alternating least-squares sweeps
    gauge_fix: bool = True  # Fix the gauge of the reduced tensors
    fast_full_update: bool = True  # Refresh only the bond's rows/columns
    inverse_env_cut: float = 1e-12  # Pseudo-inverse cutoff of the gauge transformation
    verbosity: int = 1  # 0=silent, 1=progress, 2=debug

    def __post_init__(self):
        if self.num_step < 0:
            raise ValueError(f"num_step must be non-negative, got {self.num_step}")
        if self.max_iteration < 1:
            raise ValueError("max_iteration must be positive")


class FullUpdate:
    """
    Full Update algorithm for PEPS optimization.

    Parameters
    ----------
    lattice : SquareLattice
        Unit cell geometry
    gates : list of EvolutionOperator
        Gates of one Trotter step, applied in the given order
    ctm : CTMEnvironment
        Engine used to refresh the environment
    config : FullUpdateConfig, optional
        Algorithm configuration
    mpi : MPIManager, optional
        Worker group
    stats : RunStatistics, optional
        Elapsed-time accumulators

    Examples
    --------
    >>> fu = FullUpdate(lattice, gates, ctm, FullUpdateConfig(num_step=10))
    >>> fu.run(state)
    """

    def __init__(
        self,
        lattice: Any,
        gates: List[Any],
        ctm: CTMEnvironment,
        config: Optional[FullUpdateConfig] = None,
        mpi: Optional[MPIManager] = None,
        stats: Optional[RunStatistics] = None,
    ):
        self.lattice = lattice
        self.gates = list(gates)
        self.ctm = ctm
        self.config = config or FullUpdateConfig()
        self.mpi = mpi or MPIManager()
        self.stats = stats or RunStatistics()

        self.fit_errors: List[float] = []

    def run(self, state) -> None:
        """Apply ``num_step`` Trotter steps to ``state`` in place."""
        n_steps = self.config.num_step
        if n_steps == 0 or not self.gates:
            return

        with self.stats.region("full_update"):
            self.ctm.update(state)

            iterator = range(n_steps)
            if self.config.verbosity >= 2:
                iterator = tqdm(iterator, desc="Full Update", disable=not self.mpi.is_root)
            elif self.config.verbosity >= 1:
                self.mpi.log("Start full update")

            reported = 0
            for step in iterator:
                for gate in self.gates:
                    self.update_bond(state, gate)
                    self.refresh_environment(state, gate)

                progress = 10 * (step + 1) // n_steps
                if self.config.verbosity == 1 and progress > reported:
                    reported = progress
                    self.mpi.log(f"  {10 * progress}% [{step + 1}/{n_steps}] done")

    def refresh_environment(self, state, gate) -> None:
        """Bring the environment up to date after ``gate`` was applied."""
        if not self.config.fast_full_update:
            self.ctm.update(state)
            return

        lattice = self.lattice
        s = gate.source_site
        t = lattice.neighbor(s, gate.source_leg)
        with self.stats.region("environment"):
            if gate.is_horizontal():
                left, right = (s, t) if gate.source_leg == RIGHT else (t, s)
                self.ctm.left_move(state, lattice.x(left))
                self.ctm.right_move(state, lattice.x(right))
            else:
                upper, lower = (t, s) if gate.source_leg == TOP else (s, t)
                self.ctm.top_move(state, lattice.y(upper))
                self.ctm.bottom_move(state, lattice.y(lower))
        self.mpi.broadcast_state(state)

    def update_bond(self, state, gate) -> float:
        """
        Evolve the bond of ``gate`` in its full environment.

        Returns
        -------
        float
            Relative fit error of the truncated pair
        """
        view = RotatedView(state, bond_direction(gate.source_leg))
        a = gate.source_site
        b = view.neighbor(a, RIGHT)
        bond_dim = view.tensor(a).shape[RIGHT]

        qa = tensor_qr(view.tensor(a), [0, 1, 3], [2, 4])
        qb = tensor_qr(view.tensor(b), [1, 2, 3], [0, 4])

        N = self._bond_environment(view, a, b, qa.Q, qb.Q)
        R1, R2 = qa.R, qb.R

        k1, k2 = N.shape[0], N.shape[1]
        Nmat, Z = positive_approximant(N.reshape(k1 * k2, k1 * k2))
        N = Nmat.reshape(k1, k2, k1, k2)

        gauge = None
        if self.config.gauge_fix:
            gauge = self._gauge(Z.reshape(k1, k2, -1))
            RL, RR, RLinv, RRinv = gauge
            R1 = contract('ak,kcp->acp', RL, R1)
            R2 = contract('bk,kcp->bcp', RR, R2)
            N = contract('kKlL,ka,Kb,lA,LB->abAB', N, RLinv, RRinv, RLinv.conj(), RRinv.conj())

        theta = contract('acp,bcq,PQpq->aPbQ', R1, R2, gate.op)
        R1, R2, error = self._fit(N, theta, bond_dim)

        if gauge is not None:
            R1 = contract('ka,acp->kcp', RLinv, R1)
            R2 = contract('kb,bcp->kcp', RRinv, R2)

        R1, R2 = self._balance(R1, R2, bond_dim)

        view.set_tensor(a, normalize_max_abs(contract('ltbk,kcp->ltcbp', qa.Q, R1)))
        view.set_tensor(b, normalize_max_abs(contract('trbk,kcp->ctrbp', qb.Q, R2)))

        self.fit_errors.append(error)
        return error

    def _bond_environment(
        self,
        view: RotatedView,
        a: int,
        b: int,
        Qa: np.ndarray,
        Qb: np.ndarray,
    ) -> np.ndarray:
        """
        Norm tensor ``N[k1, k2, K1, K2]`` of the reduced pair.

        Unprimed legs attach to the ket, primed ones to the bra. The left
        half uses C1, Et, El, C4, Eb of the source site; the right half
        uses Et, C2, Er, C3, Eb of the target site.
        """
        left = contract(
            'xy,yztu,wxlm,sw,vsbc,ltbk,mucK->zvkK',
            view.corner(C1, a), view.edge(ET, a), view.edge(EL, a),
            view.corner(C4, a), view.edge(EB, a), Qa, Qa.conj(),
        )
        right = contract(
            'zytu,yw,wxrR,xX,Xvbc,trbk,uRcK->zvkK',
            view.edge(ET, b), view.corner(C2, b), view.edge(ER, b),
            view.corner(C3, b), view.edge(EB, b), Qb, Qb.conj(),
        )
        N = contract('zvaA,zvbB->abAB', left, right)
        return normalize_max_abs(N)

    def _gauge(self, Z: np.ndarray) -> Tuple[np.ndarray, ...]:
        """
        Gauge transformations from ``N = Z Z^dagger``.

        Returns ``(RL, RR, RL^-1, RR^-1)`` acting on the reduced legs of
        the source and target tensors.
        """
        k1, k2, m = Z.shape
        _, RL = np.linalg.qr(Z.transpose(1, 2, 0).reshape(k2 * m, k1))
        _, RR = np.linalg.qr(Z.transpose(0, 2, 1).reshape(k1 * m, k2))
        cut = self.config.inverse_env_cut
        return RL, RR, pseudo_inverse(RL, cut), pseudo_inverse(RR, cut)

    def _fit(
        self,
        N: np.ndarray,
        theta: np.ndarray,
        bond_dim: int,
    ) -> Tuple[np.ndarray, np.ndarray, float]:
        """
        Alternating least squares for ``R1 R2 ~ theta`` in the metric ``N``.

        Returns the two reduced tensors ``(k1, bond, phys)`` and
        ``(k2, bond, phys)`` together with the relative final distance.
        """
        config = self.config
        k1, d1, k2, d2 = theta.shape

        R1, R2 = self._split(theta, bond_dim)

        norm_theta = abs(contract('abAB,apbq,ApBq->', N, theta, theta.conj()))
        if norm_theta < 1e-300:
            return R1, R2, 0.0

        cost = self._cost(N, theta, R1, R2, norm_theta)
        for _ in range(config.max_iteration):
            A = contract('abAB,bCq,Bcq->AcaC', N, R2, R2.conj())
            B = contract('abAB,apbq,Bcq->Acp', N, theta, R2.conj())
            R1 = positive_solve(
                A.reshape(k1 * bond_dim, k1 * bond_dim),
                B.reshape(k1 * bond_dim, d1),
                config.inverse_precision,
            ).reshape(k1, bond_dim, d1)

            A = contract('abAB,aCp,Acp->BcbC', N, R1, R1.conj())
            B = contract('abAB,apbq,Acp->Bcq', N, theta, R1.conj())
            R2 = positive_solve(
                A.reshape(k2 * bond_dim, k2 * bond_dim),
                B.reshape(k2 * bond_dim, d2),
                config.inverse_precision,
            ).reshape(k2, bond_dim, d2)

            new_cost = self._cost(N, theta, R1, R2, norm_theta)
            converged = abs(new_cost - cost) < config.convergence_epsilon
            cost = new_cost
            if converged:
                break

        return R1, R2, float(np.sqrt(max(cost, 0.0)))

    @staticmethod
    def _cost(N, theta, R1, R2, norm_theta: float) -> float:
        # |psi - theta|^2 / |theta|^2 in the metric N
        psi = contract('acp,bcq->apbq', R1, R2)
        psi_psi = contract('abAB,apbq,ApBq->', N, psi, psi.conj())
        psi_theta = contract('abAB,apbq,ApBq->', N, theta, psi.conj())
        return float((psi_psi.real + norm_theta - 2 * psi_theta.real) / norm_theta)

    @staticmethod
    def _split(theta: np.ndarray, bond_dim: int) -> Tuple[np.ndarray, np.ndarray]:
        """Truncated SVD of ``theta[k1, p, k2, q]`` into two reduced tensors."""
        k1, d1, k2, d2 = theta.shape
        svd = truncated_svd(theta.reshape(k1 * d1, k2 * d2), max_rank=bond_dim)
        sqrt_s = np.sqrt(pad_to(svd.S, (bond_dim,)))
        U = pad_to(svd.U, (k1 * d1, bond_dim)) * sqrt_s
        V = sqrt_s[:, None] * pad_to(svd.Vh, (bond_dim, k2 * d2))
        R1 = U.reshape(k1, d1, bond_dim).transpose(0, 2, 1)
        R2 = V.reshape(bond_dim, k2, d2).transpose(1, 0, 2)
        return R1, R2

    def _balance(self, R1: np.ndarray, R2: np.ndarray, bond_dim: int) -> Tuple[np.ndarray, np.ndarray]:
        """Distribute the bond's singular values evenly between the pair."""
        return self._split(contract('acp,bcq->apbq', R1, R2), bond_dim)
