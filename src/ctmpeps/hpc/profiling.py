"""
Elapsed-time accounting for PEPS runs.

`RunStatistics` is created by the driver and passed to every engine,
which adds its wall time to one of four fixed accumulators. Nested
regions each accumulate (the environment time spent inside a full
update is counted in both).
"""

from __future__ import annotations

import time
import numpy as np
from typing import Any, Dict, Iterator, Optional
from dataclasses import dataclass, field
from contextlib import contextmanager


@dataclass
class TimingStats:
    """Statistics for a timed region."""
    name: str
    total_time: float = 0.0
    call_count: int = 0
    min_time: float = float('inf')
    max_time: float = 0.0

    @property
    def avg_time(self) -> float:
        """Average time per call."""
        if self.call_count == 0:
            return 0.0
        return self.total_time / self.call_count

    def add_sample(self, dt: float) -> None:
        """Add a timing sample."""
        self.total_time += dt
        self.call_count += 1
        self.min_time = min(self.min_time, dt)
        self.max_time = max(self.max_time, dt)


ACCUMULATORS = ('simple_update', 'full_update', 'environment', 'observable')


@dataclass
class RunStatistics:
    """
    Elapsed-time accumulators of one run.

    Examples
    --------
    >>> stats = RunStatistics()
    >>> with stats.region("environment"):
    ...     pass
    >>> stats.environment.call_count
    1
    """
    simple_update: TimingStats = field(default_factory=lambda: TimingStats('simple_update'))
    full_update: TimingStats = field(default_factory=lambda: TimingStats('full_update'))
    environment: TimingStats = field(default_factory=lambda: TimingStats('environment'))
    observable: TimingStats = field(default_factory=lambda: TimingStats('observable'))

    @contextmanager
    def region(self, name: str) -> Iterator[None]:
        """
        Time a code region into the accumulator ``name``.

        Parameters
        ----------
        name : str
            One of ``simple_update``, ``full_update``, ``environment``,
            ``observable``
        """
        if name not in ACCUMULATORS:
            raise ValueError(f"Unknown timing accumulator: {name}")

        start = time.perf_counter()
        try:
            yield
        finally:
            getattr(self, name).add_sample(time.perf_counter() - start)

    def totals(self, mpi: Optional[Any] = None) -> Dict[str, float]:
        """
        Total seconds per accumulator.

        With a worker group, each total is the maximum over the workers.
        """
        values = np.array([getattr(self, name).total_time for name in ACCUMULATORS])
        if mpi is not None:
            values = mpi.allreduce(values, op='max')
        return dict(zip(ACCUMULATORS, values.tolist()))

    def report(self) -> str:
        """
        Generate timing report.

        Returns
        -------
        str
            Formatted report
        """
        lines = [
            "=" * 60,
            "TIMING REPORT",
            "=" * 60,
            f"{'Region':<20} {'Total (s)':>10} {'Avg (ms)':>10} {'Calls':>8}",
            "-" * 60,
        ]
        for name in ACCUMULATORS:
            s = getattr(self, name)
            lines.append(
                f"{s.name:<20} {s.total_time:>10.3f} {s.avg_time*1000:>10.2f} {s.call_count:>8}"
            )
        lines.append("=" * 60)
        return "\n".join(lines)
