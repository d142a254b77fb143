"""
Text output of a run.

Data files start with ``# $n: name`` lines describing their columns,
followed by a blank line and whitespace-separated rows.
"""

from __future__ import annotations

import numpy as np
from typing import Dict, List, Sequence, Tuple, Any
from pathlib import Path


def _header(f, columns: Sequence[str]) -> None:
    for n, name in enumerate(columns, start=1):
        f.write(f"# ${n}: {name}\n")
    f.write("\n")


def format_complex(value: complex) -> str:
    return f"{np.real(value):.15e} +i {np.imag(value):.15e}"


def write_onesite(path: Path, values: np.ndarray) -> None:
    """``values[group, site]``; NaN entries (no operator) are not written."""
    with open(path, 'w') as f:
        _header(f, ["op_group", "site_index", "real", "imag"])
        n_groups, n_sites = values.shape
        for group in range(n_groups):
            for site in range(n_sites):
                v = values[group, site]
                if np.isnan(v):
                    continue
                f.write(f"{group} {site} {np.real(v):.15e} {np.imag(v):.15e}\n")


def write_twosite(path: Path, values: List[Dict[Tuple[int, int, int], complex]]) -> None:
    with open(path, 'w') as f:
        _header(f, ["op_group", "source_site", "dx", "dy", "real", "imag"])
        for group, entries in enumerate(values):
            for (source, dx, dy), v in sorted(entries.items()):
                f.write(f"{group} {source} {dx} {dy} {np.real(v):.15e} {np.imag(v):.15e}\n")


def write_correlation(path: Path, records: Sequence[Any]) -> None:
    with open(path, 'w') as f:
        _header(f, ["left_op", "left_site", "right_op", "right_site",
                    "offset_x", "offset_y", "real", "imag"])
        for c in records:
            f.write(
                f"{c.left_op} {c.left_index} {c.right_op} {c.right_index} "
                f"{c.offset_x} {c.offset_y} {c.real:.15e} {c.imag:.15e}\n"
            )


def write_densities(
    path: Path,
    energy: float,
    onesite: np.ndarray,
    twosite: np.ndarray,
) -> None:
    """Energy and per-site averages (``energy.dat``)."""
    with open(path, 'w') as f:
        f.write(f"energy = {energy:.15e}\n")
        for group, v in enumerate(onesite):
            f.write(f"onesite_obs[{group}] = {format_complex(v)}\n")
        for group, v in enumerate(twosite):
            f.write(f"twosite_obs[{group}] = {format_complex(v)}\n")


def write_time(path: Path, times: Dict[str, float]) -> None:
    with open(path, 'w') as f:
        for name, t in times.items():
            f.write(f"{name} = {t:.6e}\n")
