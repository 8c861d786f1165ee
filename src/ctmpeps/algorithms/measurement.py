"""
Expectation values from a converged CTM environment.

Three kinds of observables are computed, each divided by the norm of
the same network without operators:

- onesite: every configured one-site operator on its site
- twosite: operators on a source site and a partner at offset (dx, dy),
  contracted on the rectangular block spanning both sites
- correlation: products of one-site operators at separations 1..r_max
  along rows and columns, obtained by sweeping a boundary tensor

Blocks are described by site indices into the State Store (`Footprint`);
tensors are looked up only when the block is contracted.
"""

from __future__ import annotations

import numpy as np
from typing import Any, Dict, List, Optional, Sequence, Tuple
from dataclasses import dataclass, field
import warnings

from ctmpeps.core.contractions import (
    contract_rectangle,
    finish_correlation,
    start_correlation,
    transfer_correlation,
)
from ctmpeps.core.frames import C1, C2, C3, C4, ET, ER, EB, EL, Direction, RotatedView
from ctmpeps.core.tensor import max_abs
from ctmpeps.hpc.mpi import MPIManager
from ctmpeps.hpc.profiling import RunStatistics
from ctmpeps.lattice.unit_cell import Bond


NMAX = 4  # largest footprint extent (in sites) along each axis

UNDEFINED = complex(np.nan, np.nan)


@dataclass
class Correlation:
    """One two-point function value."""
    left_index: int
    right_index: int
    offset_x: int
    offset_y: int
    left_op: int
    right_op: int
    real: float
    imag: float


@dataclass
class MeasurementResult:
    """
    All observables of one measurement.

    Attributes
    ----------
    onesite : ndarray
        ``onesite[group, site]``; NaN where no operator is defined
    twosite : list of dict
        ``twosite[group][Bond(source, dx, dy)]``
    correlations : list of Correlation
    """
    onesite: np.ndarray
    twosite: List[Dict[Bond, complex]]
    correlations: List[Correlation] = field(default_factory=list)


@dataclass
class Footprint:
    """
    Rectangular block of sites, row 0 on top.

    ``sites[row][col]`` are indices into the State Store.
    """
    sites: List[List[int]]

    @property
    def nrow(self) -> int:
        return len(self.sites)

    @property
    def ncol(self) -> int:
        return len(self.sites[0])

    @property
    def key(self) -> Tuple[int, int, int]:
        return (self.sites[0][0], self.nrow, self.ncol)

    @classmethod
    def around(cls, lattice, source: int, dx: int, dy: int) -> Tuple["Footprint", Tuple[int, int], Tuple[int, int]]:
        """
        Block spanning ``source`` and its partner at (dx, dy).

        Returns the footprint and the (row, col) cells of the source and
        the partner.
        """
        ncol = abs(dx) + 1
        nrow = abs(dy) + 1
        source_col = 0 if dx >= 0 else ncol - 1
        source_row = nrow - 1 if dy >= 0 else 0
        sites = [
            [lattice.other(source, col - source_col, source_row - row) for col in range(ncol)]
            for row in range(nrow)
        ]
        return cls(sites), (source_row, source_col), (source_row - dy, source_col + dx)

    def contract(self, state, ops=None, twosite=None):
        """Contract the block with its environment (see `contract_rectangle`)."""
        s = self.sites
        nrow, ncol = self.nrow, self.ncol
        corners = (
            state.corners[C1][s[0][0]],
            state.corners[C2][s[0][ncol - 1]],
            state.corners[C3][s[nrow - 1][ncol - 1]],
            state.corners[C4][s[nrow - 1][0]],
        )
        return contract_rectangle(
            corners,
            [state.edges[ET][s[0][c]] for c in range(ncol)],
            [state.edges[ER][s[r][ncol - 1]] for r in range(nrow)],
            [state.edges[EB][s[nrow - 1][c]] for c in range(ncol)],
            [state.edges[EL][s[r][0]] for r in range(nrow)],
            [[state.tensors[i] for i in row] for row in s],
            ops=ops,
            twosite=twosite,
        )


def split_twosite(op: np.ndarray, cutoff: float = 1e-15) -> List[Tuple[float, np.ndarray, np.ndarray]]:
    """
    Decompose ``op[a, b, a', b']`` into ``sum_k s_k A_k (x) B_k``.

    Returns
    -------
    list of (float, ndarray, ndarray)
        Weight, source matrix and target matrix of every term whose
        weight exceeds ``cutoff`` times the largest one
    """
    da, db = op.shape[0], op.shape[1]
    matrix = op.transpose(0, 2, 1, 3).reshape(da * da, db * db)
    U, S, Vh = np.linalg.svd(matrix, full_matrices=False)
    terms = []
    for k, s in enumerate(S):
        if S[0] == 0 or s <= cutoff * S[0]:
            break
        terms.append((s, U[:, k].reshape(da, da), Vh[k].reshape(db, db)))
    return terms


class Measurement:
    """
    Measurement engine.

    Parameters
    ----------
    lattice : SquareLattice
        Unit cell geometry
    onesite_operators : list of OnesiteOperator
    twosite_operators : list of TwositeOperator
    correlation : CorrelationParameter, optional
    mpi : MPIManager, optional
        Worker group
    stats : RunStatistics, optional
        Elapsed-time accumulators
    verbosity : int
        0=silent, 1=progress, 2=debug
    """

    def __init__(
        self,
        lattice: Any,
        onesite_operators: Sequence[Any] = (),
        twosite_operators: Sequence[Any] = (),
        correlation: Optional[Any] = None,
        mpi: Optional[MPIManager] = None,
        stats: Optional[RunStatistics] = None,
        verbosity: int = 1,
    ):
        self.lattice = lattice
        self.onesite_operators = list(onesite_operators)
        self.twosite_operators = list(twosite_operators)
        self.correlation = correlation
        self.mpi = mpi or MPIManager()
        self.stats = stats or RunStatistics()
        self.verbosity = verbosity

        self.num_onesite_groups = 1 + max((op.group for op in self.onesite_operators), default=-1)
        self.num_twosite_groups = 1 + max((op.group for op in self.twosite_operators), default=-1)

        # site_ops_indices[site][group] -> position in onesite_operators, -1 if none
        self.site_ops_indices = np.full(
            (lattice.N_UNIT, self.num_onesite_groups), -1, dtype=int
        )
        for k, op in enumerate(self.onesite_operators):
            self.site_ops_indices[op.source_site, op.group] = k

    def onesite_op(self, site: int, group: int) -> Optional[np.ndarray]:
        """One-site operator of ``group`` at ``site``, or None."""
        if group >= self.num_onesite_groups:
            return None
        k = self.site_ops_indices[site, group]
        return None if k < 0 else self.onesite_operators[k].op

    def measure(self, state, ctm) -> MeasurementResult:
        """
        Refresh the environment once and compute every observable.

        The State Store is not modified after the refresh.
        """
        ctm.update(state)
        with self.stats.region("observable"):
            result = MeasurementResult(
                onesite=self.measure_onesite(state),
                twosite=self.measure_twosite(state),
                correlations=self.measure_correlation(state),
            )
        return result

    def measure_onesite(self, state) -> np.ndarray:
        """
        ``<O>`` for every configured one-site operator.

        Returns
        -------
        ndarray
            Shape ``(n_groups, N_UNIT)``, NaN where undefined
        """
        if self.verbosity >= 1:
            self.mpi.log("Start calculating onesite operators")

        values = np.full(
            (self.num_onesite_groups, self.lattice.N_UNIT), UNDEFINED, dtype=complex
        )
        for site in range(self.lattice.N_UNIT):
            footprint = Footprint([[site]])
            identity = np.eye(self.lattice.physical_dim(site), dtype=state.dtype)
            norm = footprint.contract(state, ops=[[identity]]).real
            for group in range(self.num_onesite_groups):
                op = self.onesite_op(site, group)
                if op is None:
                    continue
                values[group, site] = footprint.contract(state, ops=[[op]]) / norm
        return values

    def measure_twosite(self, state) -> List[Dict[Bond, complex]]:
        """
        ``<O>`` for every configured two-site operator.

        Operators whose offset exceeds the supported span are skipped
        with a warning.
        """
        if self.verbosity >= 1:
            self.mpi.log("Start calculating twosite operators")

        results: List[Dict[Bond, complex]] = [dict() for _ in range(self.num_twosite_groups)]
        norms: Dict[Tuple[int, int, int], Any] = {}

        for op in self.twosite_operators:
            if abs(op.dx) >= NMAX or abs(op.dy) >= NMAX or (op.dx == 0 and op.dy == 0):
                warnings.warn(
                    f"Twosite operator of group {op.group} at site {op.source_site} "
                    f"with offset (dx, dy) = ({op.dx}, {op.dy}) is skipped: "
                    f"each offset must satisfy 0 <= |d| < {NMAX} and they may not both vanish"
                )
                continue

            footprint, source, target = Footprint.around(
                self.lattice, op.source_site, op.dx, op.dy
            )
            if footprint.key not in norms:
                norms[footprint.key] = footprint.contract(state).real
            norm = norms[footprint.key]

            value = self._twosite_value(state, op, footprint, source, target)
            if value is None:
                continue
            results[op.group][Bond(op.source_site, op.dx, op.dy)] = complex(value / norm)

        return results

    def _twosite_value(self, state, op, footprint, source, target):
        if not op.is_dense:
            source_group, target_group = op.ops_indices
            target_site = footprint.sites[target[0]][target[1]]
            A = self.onesite_op(op.source_site, source_group)
            B = self.onesite_op(target_site, target_group)
            if A is None or B is None:
                warnings.warn(
                    f"Twosite operator of group {op.group} at site {op.source_site} "
                    f"refers to an undefined onesite operator and is skipped"
                )
                return None
            return footprint.contract(state, ops=self._cell_ops(footprint, {source: A, target: B}))

        if footprint.nrow * footprint.ncol == 2:
            return self._contract_pair(state, footprint, op.op, source)

        value = 0.0
        for weight, A, B in split_twosite(op.op):
            ops = self._cell_ops(footprint, {source: A, target: B})
            value += weight * footprint.contract(state, ops=ops)
        return value

    @staticmethod
    def _cell_ops(footprint, placed):
        return [
            [placed.get((r, c)) for c in range(footprint.ncol)]
            for r in range(footprint.nrow)
        ]

    @staticmethod
    def _contract_pair(state, footprint, op, source):
        """Nearest-neighbor pair: the operator's first site is the top (vertical) or left (horizontal) cell."""
        second = (1, 0) if footprint.nrow == 2 else (0, 1)
        if source != (0, 0):
            op = op.transpose(1, 0, 3, 2)
        return footprint.contract(state, twosite=(op, (0, 0), second))

    def measure_correlation(self, state) -> List[Correlation]:
        """
        Two-point functions ``<A_i B_j>`` along rows and columns.

        For every left site, the rows to its right and the columns above
        it are swept up to ``r_max`` sites; crossing the unit cell
        boundary increments ``offset_x`` or ``offset_y``.
        """
        correlation = self.correlation
        if correlation is None or correlation.r_max == 0 or not correlation.operators:
            return []

        if self.verbosity >= 1:
            self.mpi.log("Start calculating long range correlation")

        left_groups = sorted({left for left, _ in correlation.operators})
        records: List[Correlation] = []

        for left_site in range(self.lattice.N_UNIT):
            for direction, axis in ((Direction.LEFT, (1, 0)), (Direction.DOWN, (0, 1))):
                records.extend(
                    self._sweep(state, RotatedView(state, direction), left_site, axis, left_groups)
                )
        return records

    def _sweep(self, state, view, left_site, axis, left_groups) -> List[Correlation]:
        correlation = self.correlation
        a = left_site

        def start(op):
            return start_correlation(
                view.corner(C1, a), view.corner(C4, a),
                view.edge(ET, a), view.edge(EL, a), view.edge(EB, a),
                view.tensor(a), op,
            )

        boundaries = {}
        for group in left_groups:
            op = self.onesite_op(left_site, group)
            if op is not None:
                boundaries[group] = start(op)
        if not boundaries:
            return []
        norm_boundary = start(None)

        records = []
        for r in range(correlation.r_max):
            j, offset_x, offset_y = self.lattice.winding(
                left_site, axis[0] * (r + 1), axis[1] * (r + 1)
            )

            def finish(L, op):
                return finish_correlation(
                    L, view.corner(C2, j), view.corner(C3, j),
                    view.edge(ET, j), view.edge(ER, j), view.edge(EB, j),
                    view.tensor(j), op,
                )

            norm = finish(norm_boundary, None)
            for left_group, right_group in correlation.operators:
                if left_group not in boundaries:
                    continue
                op = self.onesite_op(j, right_group)
                if op is None:
                    continue
                value = complex(finish(boundaries[left_group], op) / norm)
                records.append(Correlation(
                    left_index=left_site,
                    right_index=j,
                    offset_x=offset_x,
                    offset_y=offset_y,
                    left_op=left_group,
                    right_op=right_group,
                    real=value.real,
                    imag=value.imag,
                ))

            norm_boundary = transfer_correlation(
                norm_boundary, view.edge(ET, j), view.edge(EB, j), view.tensor(j)
            )
            boundaries = {
                group: transfer_correlation(L, view.edge(ET, j), view.edge(EB, j), view.tensor(j))
                for group, L in boundaries.items()
            }
            # common rescaling keeps the ratios and avoids overflow
            scale = max_abs(norm_boundary)
            if scale > 0:
                norm_boundary = norm_boundary / scale
                boundaries = {g: L / scale for g, L in boundaries.items()}

        return records
