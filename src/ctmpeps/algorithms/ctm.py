"""
Corner Transfer Matrix Renormalization Group (CTMRG) for PEPS.

This module computes the environment of a PEPS unit cell: four corner
tensors and four edge tensors per site approximating the infinite
network around it, truncated to bond dimension chi.

A move absorbs one column (or row) of site tensors into the environment
on its left (top, right, bottom) side. Only the left move is written out;
the other three act on a rotated view of the State Store (see
`ctmpeps.core.frames`). Renormalization uses the projectors of Corboz et
al., built either from the four quadrants of a 2x2 block or, when
``projector_corner`` is set, from its two left quadrants only.

References:
    - Nishino & Okunishi, J. Phys. Soc. Jpn. 65, 891 (1996)
    - Orus & Vidal, Phys. Rev. B 80, 094403 (2009)
    - Corboz et al., Phys. Rev. B 84, 041108(R) (2011)
"""

from __future__ import annotations

import numpy as np
from typing import Any, List, Optional, Tuple
from dataclasses import dataclass
import warnings

from ctmpeps.core.contractions import contract
from ctmpeps.core.decompositions import randomized_svd, truncated_svd
from ctmpeps.core.frames import (
    C1, C2, C3, C4, ET, ER, EB, EL, TOP, RIGHT, BOTTOM,
    Direction, RotatedView,
)
from ctmpeps.core.tensor import normalize_max_abs
from ctmpeps.hpc.mpi import MPIManager
from ctmpeps.hpc.profiling import RunStatistics


@dataclass
class CTMConfig:
    """Configuration for CTMRG algorithm."""
    chi: int = 4  # Environment bond dimension
    max_iter: int = 100  # Maximum number of full sweeps
    tol: float = 1e-6  # Convergence of the corner spectra
    projector_corner: bool = False  # Projectors from two quadrants instead of four
    inverse_projector_cut: float = 1e-12  # Relative singular value cutoff in projectors
    use_rsvd: bool = False  # Randomized SVD for projectors
    rsvd_oversampling: float = 2.0  # Sketch size / chi for randomized SVD
    verbosity: int = 1  # 0=silent, 1=progress, 2=debug

    def __post_init__(self):
        if self.chi < 1:
            raise ValueError(f"chi must be positive, got {self.chi}")
        if self.max_iter < 0:
            raise ValueError(f"max_iter must be non-negative, got {self.max_iter}")
        if self.rsvd_oversampling < 1.0:
            raise ValueError("rsvd_oversampling must be at least 1")


class CTMEnvironment:
    """
    CTMRG engine acting on a `PEPSState`.

    Parameters
    ----------
    lattice : SquareLattice
        Unit cell geometry
    config : CTMConfig, optional
        Algorithm configuration
    mpi : MPIManager, optional
        Worker group
    stats : RunStatistics, optional
        Elapsed-time accumulators
    seed : int
        Base seed of the randomized SVD (offset by the worker rank)

    Examples
    --------
    >>> ctm = CTMEnvironment(lattice, CTMConfig(chi=16))
    >>> ctm.update(state)
    >>> ctm.converged
    True
    """

    def __init__(
        self,
        lattice: Any,
        config: Optional[CTMConfig] = None,
        mpi: Optional[MPIManager] = None,
        stats: Optional[RunStatistics] = None,
        seed: int = 11,
    ):
        self.lattice = lattice
        self.config = config or CTMConfig()
        self.mpi = mpi or MPIManager()
        self.stats = stats or RunStatistics()
        self.rng = np.random.default_rng(self.mpi.seed(seed))

        self.converged: bool = False
        self.iteration: int = 0
        self.delta: float = float('inf')

    @property
    def chi(self) -> int:
        return self.config.chi

    def initialize(self, state) -> None:
        """Reset the environment of ``state`` to the trivial boundary."""
        state.reset_environment()

    def update(self, state) -> None:
        """
        Iterate full sweeps until the environment converges.

        A sweep is a left, right, top and bottom move over every column
        and row. Iteration stops when the corner singular-value spectra
        change by less than ``tol`` or after ``max_iter`` sweeps; the
        result is used either way.
        """
        config = self.config
        with self.stats.region("environment"):
            if not state.has_environment:
                self.initialize(state)

            self.converged = False
            self.delta = float('inf')
            previous = self.corner_spectra(state)

            for iteration in range(1, config.max_iter + 1):
                self.sweep(state)
                spectra = self.corner_spectra(state)
                self.delta = max(
                    float(np.max(np.abs(s - p))) for s, p in zip(spectra, previous)
                )
                previous = spectra
                self.iteration = iteration

                if config.verbosity >= 2:
                    self.mpi.log(f"  CTM iteration {iteration}: delta = {self.delta:.3e}")

                if self.delta < config.tol:
                    self.converged = True
                    break

            state.has_environment = True
            self.mpi.broadcast_state(state, tensors=False)

        if config.verbosity >= 1 and config.max_iter > 0:
            if self.converged:
                self.mpi.log(f"CTM converged after {self.iteration} iterations")
            else:
                warnings.warn(
                    f"CTM did not converge within {config.max_iter} iterations "
                    f"(delta = {self.delta:.3e})"
                )

    def sweep(self, state) -> None:
        """One left, right, top and bottom move over the whole unit cell."""
        Lx, Ly = self.lattice.Lx, self.lattice.Ly
        for x in range(Lx):
            self.left_move(state, x)
        for x in reversed(range(Lx)):
            self.right_move(state, x)
        for y in reversed(range(Ly)):
            self.top_move(state, y)
        for y in range(Ly):
            self.bottom_move(state, y)

    def left_move(self, state, x: int) -> None:
        """Absorb column ``x`` into the left environment of column ``x+1``."""
        self._move(state, Direction.LEFT, self.lattice.column(x))

    def right_move(self, state, x: int) -> None:
        """Absorb column ``x`` into the right environment of column ``x-1``."""
        self._move(state, Direction.RIGHT, self.lattice.column(x))

    def top_move(self, state, y: int) -> None:
        """Absorb row ``y`` into the top environment of row ``y-1``."""
        self._move(state, Direction.UP, self.lattice.row(y))

    def bottom_move(self, state, y: int) -> None:
        """Absorb row ``y`` into the bottom environment of row ``y+1``."""
        self._move(state, Direction.DOWN, self.lattice.row(y))

    def corner_spectra(self, state) -> List[np.ndarray]:
        """Normalized singular values of every corner tensor."""
        spectra = []
        for corners in state.corners:
            for C in corners:
                s = np.linalg.svd(C, compute_uv=False)
                spectra.append(s / s[0] if s[0] > 0 else s)
        return spectra

    def _move(self, state, direction: Direction, sites: List[int]) -> None:
        """
        Left move in the frame of ``direction`` for the given line of sites.

        Each site ``a`` of the line is absorbed into the left environment of
        its right neighbor ``b``::

            C1[b] = C1[a] Et[a] P[top(a)]
            El[b] = Pt[top(a)] El[a] T[a] T*[a] P[a]
            C4[b] = Pt[a] Eb[a] C4[a]

        where ``(P[s], Pt[s])`` renormalize the cut below site ``s``.
        """
        view = RotatedView(state, direction)

        cuts = set(sites)
        cuts.update(view.neighbor(a, TOP) for a in sites)
        projectors = {s: self._projectors(view, s) for s in cuts}

        new = []
        for a in sites:
            b = view.neighbor(a, RIGHT)
            p = view.neighbor(a, TOP)
            P_above, Pt_above = projectors[p]
            P_below, Pt_below = projectors[a]
            T = view.tensor(a)

            C1_new = contract('xy,yztu,xtuk->kz', view.corner(C1, a), view.edge(ET, a), P_above)
            El_new = contract(
                'kxtu,wxlm,ltrbp,muRcp,wbcK->KkrR',
                Pt_above, view.edge(EL, a), T, T.conj(), P_below,
            )
            C4_new = contract('vsbc,sw,kwbc->vk', view.edge(EB, a), view.corner(C4, a), Pt_below)

            new.append((
                b,
                normalize_max_abs(C1_new),
                normalize_max_abs(El_new),
                normalize_max_abs(C4_new),
            ))

        for b, C1_new, El_new, C4_new in new:
            view.set_corner(C1, b, C1_new)
            view.set_edge(EL, b, El_new)
            view.set_corner(C4, b, C4_new)

    def _projectors(self, view: RotatedView, s: int) -> Tuple[np.ndarray, np.ndarray]:
        """
        Projectors renormalizing the cut below site ``s`` on the left side.

        The cut carries the down leg of El[s] and the bottom legs of T[s]
        (ket and bra). Returns ``P`` with legs ``(chi, ket, bra, k)``,
        applied from above the cut, and ``Pt`` with legs
        ``(k, chi, ket, bra)``, applied from below; ``Pt P`` is the
        identity on the kept subspace.
        """
        a = s
        b = view.neighbor(a, RIGHT)
        c = view.neighbor(a, BOTTOM)
        d = view.neighbor(c, RIGHT)

        Ta, Tc = view.tensor(a), view.tensor(c)
        cut_shape = view.edge(EL, a).shape[:1] + Ta.shape[3:4] * 2

        Q1 = contract(
            'xy,yztu,wxlm,ltrbp,muRcp->zrRwbc',
            view.corner(C1, a), view.edge(ET, a), view.edge(EL, a), Ta, Ta.conj(),
        )
        Q4 = contract(
            'Wwlm,sW,vsbc,ltrbp,muRcp->wtuvrR',
            view.edge(EL, c), view.corner(C4, c), view.edge(EB, c), Tc, Tc.conj(),
        )
        n_cut = int(np.prod(cut_shape))

        if self.config.projector_corner:
            upper = Q1.reshape(-1, n_cut)
            lower = Q4.reshape(n_cut, -1)
        else:
            Tb, Td = view.tensor(b), view.tensor(d)
            Q2 = contract(
                'zytu,yw,wxrR,ltrbp,muRcp->zlmxbc',
                view.edge(ET, b), view.corner(C2, b), view.edge(ER, b), Tb, Tb.conj(),
            )
            Q3 = contract(
                'xXrR,Xy,yvbc,ltrbp,muRcp->xtuvlm',
                view.edge(ER, d), view.corner(C3, d), view.edge(EB, d), Td, Td.conj(),
            )
            upper_half = contract('zrRwbc,zrRxBC->xBCwbc', Q1, Q2)
            lower_half = contract('wtuvrR,xTUvrR->wtuxTU', Q4, Q3)
            upper = upper_half.reshape(-1, n_cut)
            lower = lower_half.reshape(n_cut, -1)

        P, Pt = self._build_projectors(upper, lower)
        return P.reshape(cut_shape + (self.chi,)), Pt.reshape((self.chi,) + cut_shape)

    def _build_projectors(
        self,
        upper: np.ndarray,
        lower: np.ndarray,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        ``P = lower V S^-1/2`` and ``Pt = S^-1/2 U^dagger upper`` from the
        SVD ``upper @ lower = U S V``, truncated to chi and zero-padded.
        """
        chi = self.chi
        X = upper @ lower
        if self.config.use_rsvd:
            result = randomized_svd(X, chi, self.rng, self.config.rsvd_oversampling)
        else:
            result = truncated_svd(X, max_rank=chi)

        S = result.S
        rank = 0
        if S.size and S[0] > 0:
            rank = int(np.sum(S > self.config.inverse_projector_cut * S[0]))
        inv_sqrt = 1.0 / np.sqrt(S[:rank])

        n_cut = upper.shape[1]
        P = np.zeros((n_cut, chi), dtype=np.result_type(upper, lower))
        Pt = np.zeros((chi, n_cut), dtype=P.dtype)
        P[:, :rank] = (lower @ result.Vh[:rank].conj().T) * inv_sqrt
        Pt[:rank, :] = inv_sqrt[:, None] * (result.U[:, :rank].conj().T @ upper)
        return P, Pt
