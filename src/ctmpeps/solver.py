"""
Driver of a complete run.

    initialize (or load) -> simple update -> full update
    -> save checkpoint -> measure -> output files

Every process runs the same sequence; only the root writes files.
"""

from __future__ import annotations

import numpy as np
from typing import List, Dict, Tuple, Optional, Sequence
from dataclasses import dataclass, field
from pathlib import Path
import time

from ctmpeps.core.tensor import set_default_dtype
from ctmpeps.core.tensor_store import TensorStore
from ctmpeps.lattice.unit_cell import UnitCell
from ctmpeps.models.operators import Operator, EvolutionOperator
from ctmpeps.algorithms.ctmrg import CTMRG, CTMRGResult
from ctmpeps.algorithms.simple_update import SimpleUpdate
from ctmpeps.algorithms.full_update import FullUpdate
from ctmpeps.algorithms.observables import ObservableEngine, CorrelationConfig, Correlation
from ctmpeps.hpc.mpi import MPIManager
from ctmpeps.hpc.profiling import Timer
from ctmpeps.parameters import PEPSParameters
from ctmpeps import output


TIMED_PHASES = ('simple_update', 'full_update', 'environment', 'observable')


@dataclass
class MeasurementResult:
    """Everything measured at the end of a run."""
    onesite: np.ndarray  # (n_groups, N), NaN where no operator
    twosite: List[Dict[Tuple[int, int, int], complex]]
    correlations: List[Correlation] = field(default_factory=list)
    energy: float = 0.0
    onesite_densities: Optional[np.ndarray] = None
    twosite_densities: Optional[np.ndarray] = None
    ctm: Optional[CTMRGResult] = None


class Solver:
    """
    iPEPS ground-state solver.

    Parameters
    ----------
    parameters : PEPSParameters
        Run options (the root's copy is broadcast)
    unit_cell : UnitCell
        Lattice (the root's copy is broadcast)
    simple_updates, full_updates : list of EvolutionOperator
        Trotter gates of the two optimizers
    onesite_ops, twosite_ops : list of Operator
        Observables
    correlation : CorrelationConfig, optional
        Long-range correlations to measure; ``None`` skips them
    mpi : MPIManager, optional
        Communicator wrapper (serial by default)

    Examples
    --------
    >>> model = HeisenbergModel(uc, HeisenbergParams(tau=0.01))
    >>> solver = Solver(PEPSParameters(chi=8, num_simple_step=200), uc,
    ...                 model.evolutions(), model.evolutions(),
    ...                 model.onesite_operators(), model.twosite_operators())
    >>> result = solver.run()
    >>> result.energy
    """

    def __init__(
        self,
        parameters: PEPSParameters,
        unit_cell: UnitCell,
        simple_updates: Sequence[EvolutionOperator],
        full_updates: Sequence[EvolutionOperator],
        onesite_ops: Sequence[Operator],
        twosite_ops: Sequence[Operator],
        correlation: Optional[CorrelationConfig] = None,
        mpi: Optional[MPIManager] = None,
    ):
        self.mpi = mpi or MPIManager()
        self.timer = Timer()
        self._start = time.perf_counter()

        self.parameters = PEPSParameters.from_dict(self.mpi.broadcast(parameters.to_dict()))
        self.unit_cell = UnitCell.from_dict(self.mpi.broadcast(unit_cell.to_dict()))
        self.parameters.validate()

        dtype = self.parameters.dtype
        set_default_dtype(dtype)

        self.simple_updates = [ev.astype(dtype) for ev in simple_updates]
        self.full_updates = [ev.astype(dtype) for ev in full_updates]
        self.onesite_ops = [op.astype(dtype) for op in onesite_ops]
        self.twosite_ops = [op.astype(dtype) for op in twosite_ops]
        for op in self.simple_updates + self.full_updates:
            op.validate(self.unit_cell)
        for op in self.onesite_ops:
            if not op.is_onesite:
                raise ValueError(f"Operator of group {op.group} in the one-site list acts on two sites")
            op.validate(self.unit_cell)
        for op in self.twosite_ops:
            if op.is_onesite:
                raise ValueError(f"Operator of group {op.group} in the two-site list acts on one site")
            op.validate(self.unit_cell)
        self.correlation = correlation

        self.store = TensorStore(self.unit_cell, self.parameters.chi, dtype)
        if self.parameters.tensor_load_dir:
            self.store.load(self.parameters.tensor_load_dir, self.mpi)
        else:
            self.store.initialize(self.parameters.seed)

        self.ctm = CTMRG(self.store, self.parameters.ctmrg_config(), self.mpi, self.timer)

    def log(self, message: str, level: int = 1) -> None:
        if self.parameters.verbosity >= level:
            self.mpi.log(message)

    # ==================== Phases ====================

    def optimize(self) -> None:
        """Simple update, then full update."""
        params = self.parameters
        if params.num_simple_step > 0:
            self.log(f"Start simple update ({params.num_simple_step} steps)")
            SimpleUpdate(self.simple_updates, params.simple_update_config()).run(
                self.store, self.mpi, self.timer
            )
        if params.num_full_step > 0:
            self.log(f"Start full update ({params.num_full_step} steps)")
            FullUpdate(self.full_updates, params.full_update_config(), self.ctm).run(
                self.store, self.mpi, self.timer
            )

    def save_tensors(self) -> None:
        if self.parameters.tensor_save_dir:
            self.log(f"Save tensors to {self.parameters.tensor_save_dir}")
            self.store.save(self.parameters.tensor_save_dir, self.mpi)

    def measure(self) -> MeasurementResult:
        """Converge the environment, measure, and write the output files."""
        self.log("Start calculating observables")
        ctm_result = self.ctm.run()

        with self.timer.region('observable'):
            engine = ObservableEngine(
                self.store,
                self.onesite_ops,
                self.twosite_ops,
                self.parameters.observable_config(),
                self.mpi,
            )
            onesite = engine.measure_onesite()
            twosite = engine.measure_twosite()
            correlations = (
                engine.measure_correlation(self.correlation) if self.correlation is not None else []
            )

        result = MeasurementResult(
            onesite=onesite,
            twosite=twosite,
            correlations=correlations,
            energy=engine.energy(twosite),
            onesite_densities=engine.onesite_densities(onesite),
            twosite_densities=engine.twosite_densities(twosite),
            ctm=ctm_result,
        )
        self.log(f"Energy = {result.energy:.12f}")
        self.write(result)
        return result

    def timings(self) -> Dict[str, float]:
        times = {name: self.timer.total(name) for name in TIMED_PHASES}
        times['all'] = time.perf_counter() - self._start
        return times

    def write(self, result: MeasurementResult) -> None:
        """Write the output files into ``outdir`` (root only)."""
        if self.mpi.is_root:
            outdir = Path(self.parameters.outdir)
            outdir.mkdir(parents=True, exist_ok=True)
            output.write_onesite(outdir / "onesite_obs.dat", result.onesite)
            output.write_twosite(outdir / "twosite_obs.dat", result.twosite)
            if self.correlation is not None:
                output.write_correlation(outdir / "correlation.dat", result.correlations)
            output.write_densities(
                outdir / "energy.dat",
                result.energy,
                result.onesite_densities,
                result.twosite_densities,
            )
            output.write_time(outdir / "time.dat", self.timings())
            self.parameters.save(outdir / "parameters.dat")
        self.mpi.barrier()

    def run(self) -> MeasurementResult:
        """Optimize, checkpoint and measure."""
        self.optimize()
        self.save_tensors()
        result = self.measure()
        if self.parameters.verbosity >= 2:
            self.mpi.log(self.timer.report())
        return result


def run(
    parameters: PEPSParameters,
    unit_cell: UnitCell,
    simple_updates: Sequence[EvolutionOperator],
    full_updates: Sequence[EvolutionOperator],
    onesite_ops: Sequence[Operator],
    twosite_ops: Sequence[Operator],
    correlation: Optional[CorrelationConfig] = None,
    mpi: Optional[MPIManager] = None,
) -> MeasurementResult:
    """Build a :class:`Solver` and run it."""
    return Solver(
        parameters,
        unit_cell,
        simple_updates,
        full_updates,
        onesite_ops,
        twosite_ops,
        correlation,
        mpi,
    ).run()
