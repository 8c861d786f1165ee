"""
Operator records and standard spin operators.

The simulation consumes three kinds of operator records:

- `OnesiteOperator`: observable acting on one site
- `TwositeOperator`: observable acting on a source site and a partner at
  relative offset (dx, dy), either as a dense rank-4 tensor or as a pair
  of onesite operator groups
- `EvolutionOperator`: imaginary-time gate on a nearest-neighbor bond

Two-site tensors are indexed ``op[a, b, a', b'] = <a b| O |a' b'>`` with
``a`` the source site and ``b`` the target. One-site matrices are
``op[a, a'] = <a| O |a'>``.
"""

from __future__ import annotations

import numpy as np
from typing import List, Optional, Sequence, Tuple
from dataclasses import dataclass, field

from ctmpeps.core.decompositions import expm
from ctmpeps.lattice.unit_cell import LEFT, TOP, RIGHT


@dataclass
class OnesiteOperator:
    """One-site observable of group ``group`` at ``source_site``."""
    group: int
    source_site: int
    op: np.ndarray

    def __post_init__(self):
        self.op = np.asarray(self.op)
        if self.op.ndim != 2 or self.op.shape[0] != self.op.shape[1]:
            raise ValueError(
                f"Onesite operator (group {self.group}) must be a square matrix"
            )


@dataclass
class TwositeOperator:
    """
    Two-site observable.

    Exactly one of ``op`` (dense rank-4 tensor) and ``ops_indices``
    (groups of the onesite operators on the source and target sites)
    must be given.
    """
    group: int
    source_site: int
    dx: int
    dy: int
    op: Optional[np.ndarray] = None
    ops_indices: Optional[Tuple[int, int]] = None

    def __post_init__(self):
        if (self.op is None) == (self.ops_indices is None):
            raise ValueError(
                f"Twosite operator (group {self.group}) needs either a dense "
                "tensor or a pair of onesite groups"
            )
        if self.op is not None:
            self.op = np.asarray(self.op)
            if self.op.ndim != 4:
                raise ValueError(
                    f"Twosite operator (group {self.group}) must have rank 4"
                )
        else:
            self.ops_indices = tuple(int(g) for g in self.ops_indices)

    @property
    def is_dense(self) -> bool:
        return self.op is not None


@dataclass
class EvolutionOperator:
    """
    Imaginary-time evolution gate on the bond leaving ``source_leg``.

    The target site is the lattice neighbor of ``source_site`` across
    ``source_leg``.
    """
    source_site: int
    source_leg: int
    op: np.ndarray

    def __post_init__(self):
        self.op = np.asarray(self.op)
        if self.op.ndim != 4:
            raise ValueError("Evolution operator must have rank 4")
        if self.source_leg not in range(4):
            raise ValueError(f"Invalid source leg {self.source_leg}")

    def is_horizontal(self) -> bool:
        return self.source_leg in (LEFT, RIGHT)

    def target_site(self, lattice) -> int:
        return lattice.neighbor(self.source_site, self.source_leg)


@dataclass
class CorrelationParameter:
    """
    Long-range correlation request.

    Attributes
    ----------
    r_max : int
        Largest separation (in sites) along each axis
    operators : list of (int, int)
        (left group, right group) pairs to correlate
    """
    r_max: int = 0
    operators: List[Tuple[int, int]] = field(default_factory=list)

    def __post_init__(self):
        if self.r_max < 0:
            raise ValueError(f"r_max must be non-negative, got {self.r_max}")
        self.operators = [(int(a), int(b)) for a, b in self.operators]


@dataclass
class SpinOperators:
    """
    Collection of spin operators for a given spin value.

    Parameters
    ----------
    S : float
        Spin quantum number (1/2, 1, 3/2, ...)

    Attributes
    ----------
    dim : int
        Hilbert space dimension (2S + 1)
    Sx, Sy, Sz : ndarray
        Spin component operators
    Sp, Sm : ndarray
        Raising and lowering operators
    identity : ndarray
        Identity operator
    """
    S: float

    def __post_init__(self):
        self.dim = int(round(2 * self.S + 1))
        self._build_operators()

    def _build_operators(self) -> None:
        """Build spin operators."""
        dim = self.dim
        S = self.S

        # m values: S, S-1, ..., -S
        m_vals = np.arange(S, -S - 1, -1)

        Sp = np.zeros((dim, dim), dtype=np.complex128)
        for i in range(dim - 1):
            m = m_vals[i + 1]
            Sp[i, i + 1] = np.sqrt(S * (S + 1) - m * (m + 1))
        Sm = Sp.T.conj()

        self.Sp = Sp
        self.Sm = Sm
        self.Sx = (Sp + Sm) / 2
        self.Sy = (Sp - Sm) / (2j)
        self.Sz = np.diag(m_vals.astype(np.complex128))
        self.identity = np.eye(dim, dtype=np.complex128)

    def get(self, name: str) -> np.ndarray:
        """Get operator by name."""
        operators = {
            'Sx': self.Sx,
            'Sy': self.Sy,
            'Sz': self.Sz,
            'S+': self.Sp,
            'Sp': self.Sp,
            'S-': self.Sm,
            'Sm': self.Sm,
            'I': self.identity,
            'id': self.identity,
        }
        if name not in operators:
            raise ValueError(f"Unknown spin operator: {name}")
        return operators[name]

    def heisenberg_bond(self, J: float = 1.0, h: float = 0.0, z: int = 4) -> np.ndarray:
        """
        Heisenberg bond Hamiltonian as a rank-4 tensor.

        ``J * S_a . S_b - (h / z) * (Sz_a + Sz_b)``; the Zeeman term is
        shared among the ``z`` bonds of each site.
        """
        H = J * (
            np.kron(self.Sx, self.Sx)
            + np.kron(self.Sy, self.Sy)
            + np.kron(self.Sz, self.Sz)
        )
        if h != 0.0:
            H = H - (h / z) * (
                np.kron(self.Sz, self.identity) + np.kron(self.identity, self.Sz)
            )
        return bond_tensor(H, self.dim, self.dim)


def bond_tensor(matrix: np.ndarray, d1: int, d2: int) -> np.ndarray:
    """Reshape a (d1 d2, d1 d2) matrix into ``op[a, b, a', b']``."""
    return np.asarray(matrix).reshape(d1, d2, d1, d2)


def bond_matrix(op: np.ndarray) -> np.ndarray:
    """Inverse of :func:`bond_tensor`."""
    d1, d2 = op.shape[0], op.shape[1]
    return op.reshape(d1 * d2, d1 * d2)


def evolution_gate(hamiltonian: np.ndarray, tau: float) -> np.ndarray:
    """
    ``exp(-tau * H)`` for a rank-4 bond Hamiltonian.

    Returns
    -------
    ndarray
        Gate with the same index layout as ``hamiltonian``
    """
    d1, d2 = hamiltonian.shape[0], hamiltonian.shape[1]
    return bond_tensor(expm(-tau * bond_matrix(hamiltonian)), d1, d2)


def nearest_neighbor_gates(
    lattice,
    hamiltonian: np.ndarray,
    tau: float,
) -> List[EvolutionOperator]:
    """
    One evolution gate on every right and top bond of the unit cell.

    Bonds are ordered site by site, horizontal first.
    """
    gate = evolution_gate(hamiltonian, tau)
    gates = []
    for site in range(lattice.N_UNIT):
        gates.append(EvolutionOperator(site, RIGHT, gate))
        gates.append(EvolutionOperator(site, TOP, gate))
    return gates


def nearest_neighbor_observables(
    lattice,
    hamiltonian: np.ndarray,
    group: int = 0,
) -> List[TwositeOperator]:
    """Bond energy observables on every right and top bond."""
    ops = []
    for site in range(lattice.N_UNIT):
        ops.append(TwositeOperator(group, site, 1, 0, op=hamiltonian))
        ops.append(TwositeOperator(group, site, 0, 1, op=hamiltonian))
    return ops
