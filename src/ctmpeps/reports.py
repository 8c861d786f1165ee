"""
Plain-text report files.

Every file starts with ``# $k: column`` header lines followed by a blank
line, and holds space-separated columns with floating point values in
full precision. Writers are no-ops on non-root workers.
"""

from __future__ import annotations

import numpy as np
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from ctmpeps.hpc.mpi import MPIManager
from ctmpeps.hpc.profiling import RunStatistics


PathLike = Union[str, Path]


def _is_root(mpi: Optional[MPIManager]) -> bool:
    return mpi is None or mpi.is_root


def _fmt(value: float) -> str:
    return f"{value:.17e}"


def _header(columns: Sequence[str]) -> str:
    lines = [f"# ${k}: {name}" for k, name in enumerate(columns, start=1)]
    return "\n".join(lines) + "\n\n"


def onesite_densities(onesite: np.ndarray, n_unit: int) -> List[complex]:
    """Per-group sum of the defined onesite values divided by ``n_unit``."""
    densities = []
    for row in onesite:
        defined = row[~np.isnan(row.real)]
        densities.append(complex(defined.sum()) / n_unit)
    return densities


def energy_density(twosite: List[Dict[Any, complex]], n_unit: int) -> float:
    """Real part of the group-0 twosite sum divided by ``n_unit``."""
    if not twosite:
        return 0.0
    return sum(v.real for v in twosite[0].values()) / n_unit


def write_onesite(path: PathLike, onesite: np.ndarray, mpi: Optional[MPIManager] = None) -> None:
    """One row per (group, site) with a defined value."""
    if not _is_root(mpi):
        return
    with open(path, 'w') as f:
        f.write(_header(['op_group', 'site_index', 'real', 'imag']))
        for group, row in enumerate(onesite):
            for site, v in enumerate(row):
                if np.isnan(v.real):
                    continue
                f.write(f"{group} {site} {_fmt(v.real)} {_fmt(v.imag)}\n")


def write_twosite(path: PathLike, twosite: List[Dict[Any, complex]], mpi: Optional[MPIManager] = None) -> None:
    """One row per measured (group, bond)."""
    if not _is_root(mpi):
        return
    with open(path, 'w') as f:
        f.write(_header(['op_group', 'source_site', 'dx', 'dy', 'real', 'imag']))
        for group, values in enumerate(twosite):
            for bond, v in values.items():
                f.write(
                    f"{group} {bond.source_site} {bond.dx} {bond.dy} "
                    f"{_fmt(v.real)} {_fmt(v.imag)}\n"
                )


def write_correlation(path: PathLike, records: Sequence[Any], mpi: Optional[MPIManager] = None) -> None:
    if not _is_root(mpi):
        return
    with open(path, 'w') as f:
        f.write(_header([
            'left_op', 'left_site', 'right_op', 'right_site',
            'offset_x', 'offset_y', 'real', 'imag',
        ]))
        for c in records:
            f.write(
                f"{c.left_op} {c.left_index} {c.right_op} {c.right_index} "
                f"{c.offset_x} {c.offset_y} {_fmt(c.real)} {_fmt(c.imag)}\n"
            )


def write_energy(
    path: PathLike,
    onesite: np.ndarray,
    twosite: List[Dict[Any, complex]],
    n_unit: int,
    is_real: bool = False,
    mpi: Optional[MPIManager] = None,
) -> None:
    """Energy density and onesite densities, one ``name = value`` line each."""
    if not _is_root(mpi):
        return
    with open(path, 'w') as f:
        f.write(f"energy = {_fmt(energy_density(twosite, n_unit))}\n")
        for group, v in enumerate(onesite_densities(onesite, n_unit)):
            if is_real:
                f.write(f"onesite_obs[{group}] = {_fmt(v.real)}\n")
            else:
                f.write(f"onesite_obs[{group}] = {_fmt(v.real)} +i {_fmt(v.imag)}\n")


def write_time(path: PathLike, stats: RunStatistics, mpi: Optional[MPIManager] = None) -> None:
    """Collective over the worker group; only the root worker writes."""
    totals = stats.totals(mpi)
    if not _is_root(mpi):
        return
    with open(path, 'w') as f:
        f.write(f"time simple update = {totals['simple_update']:.6e}\n")
        f.write(f"time full update   = {totals['full_update']:.6e}\n")
        f.write(f"time environment   = {totals['environment']:.6e}\n")
        f.write(f"time observable    = {totals['observable']:.6e}\n")


def write_parameters(path: PathLike, parameters: Dict[str, Any], mpi: Optional[MPIManager] = None) -> None:
    """Dump flattened run parameters as ``key = value`` lines."""
    if not _is_root(mpi):
        return

    def flatten(prefix, mapping):
        for key, value in mapping.items():
            name = f"{prefix}.{key}" if prefix else key
            if isinstance(value, dict):
                yield from flatten(name, value)
            else:
                yield name, value

    with open(path, 'w') as f:
        for name, value in flatten('', parameters):
            f.write(f"{name} = {value}\n")
