"""
Wall-time accounting of the solver phases.

:class:`Timer` records nested regions under slash-joined paths; the phase
totals written to ``time.dat`` (simple update, full update, environment,
observable) are sums over every path ending in the phase name, so CTM runs
nested inside the full update still count as ``environment`` time.

:func:`progress` drives the long update loops and reports every tenth of
the run on the root process.
"""

from __future__ import annotations

import time
from typing import Dict, List, Optional, Iterator, Any
from dataclasses import dataclass
from contextlib import contextmanager

from tqdm import tqdm


@dataclass
class TimingStats:
    """Accumulated wall time of one region path."""
    path: str
    elapsed: float = 0.0
    calls: int = 0
    longest: float = 0.0

    @property
    def name(self) -> str:
        """Last component of the path."""
        return self.path.rsplit('/', 1)[-1]

    def add(self, dt: float) -> None:
        self.elapsed += dt
        self.calls += 1
        self.longest = max(self.longest, dt)


class Timer:
    """
    Nested wall-time regions.

    Examples
    --------
    >>> timer = Timer()
    >>> with timer.region("full_update"):
    ...     with timer.region("environment"):
    ...         pass
    >>> sorted(timer.stats)
    ['full_update', 'full_update/environment']
    """

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self.stats: Dict[str, TimingStats] = {}
        self._open: List[str] = []

    @contextmanager
    def region(self, name: str):
        """Time the enclosed block as ``name`` below the innermost open region."""
        if not self.enabled:
            yield
            return

        path = f"{self._open[-1]}/{name}" if self._open else name
        stats = self.stats.setdefault(path, TimingStats(path))
        self._open.append(path)
        start = time.perf_counter()
        try:
            yield
        finally:
            stats.add(time.perf_counter() - start)
            self._open.pop()

    def total(self, name: str) -> float:
        """
        Time spent in regions called ``name``, wherever they were nested.

        A ``name`` region opened inside another ``name`` region is already
        part of the outer one and is not added again.
        """
        total = 0.0
        for path, s in self.stats.items():
            parts = path.split('/')
            if parts[-1] == name and name not in parts[:-1]:
                total += s.elapsed
        return total

    def report(self) -> str:
        """Table of every region path, longest total first."""
        if not self.stats:
            return "No timing data collected."

        rows = sorted(self.stats.values(), key=lambda s: s.elapsed, reverse=True)
        width = max(len(s.path) for s in rows) + 2
        lines = [f"{'region':<{width}}{'total [s]':>12}{'calls':>8}{'longest [s]':>14}"]
        for s in rows:
            lines.append(f"{s.path:<{width}}{s.elapsed:>12.3f}{s.calls:>8d}{s.longest:>14.3f}")
        return "\n".join(lines)


def progress(nsteps: int, desc: str, mpi: Optional[Any] = None, verbosity: int = 1) -> Iterator[int]:
    """
    ``range(nsteps)`` with progress reporting on the root process.

    The ``tqdm`` bar refreshes once per tenth of the run, and a
    ``"NN% done"`` line is written whenever a 10% boundary is crossed.

    Parameters
    ----------
    nsteps : int
        Number of steps
    desc : str
        Label of the progress bar
    mpi : MPIManager, optional
        Only the root process reports
    verbosity : int
        Reporting is disabled below 1
    """
    enabled = verbosity >= 1 and (mpi is None or mpi.is_root) and nsteps > 0
    tenth = max(nsteps // 10, 1)

    bar = tqdm(range(nsteps), desc=desc, miniters=tenth, disable=not enabled)
    try:
        for step in bar:
            yield step
            decile = 10 * (step + 1) // nsteps
            if enabled and decile > 10 * step // nsteps:
                tqdm.write(f"{10 * decile}% done")
    finally:
        bar.close()
