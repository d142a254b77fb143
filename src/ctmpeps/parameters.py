"""
Run parameters.

:class:`PEPSParameters` gathers every option of a run and builds the
per-engine configuration objects from them.
"""

from __future__ import annotations

import numpy as np
from typing import Dict, Any
from dataclasses import dataclass, asdict, fields
from pathlib import Path

from ctmpeps.algorithms.ctmrg import CTMRGConfig
from ctmpeps.algorithms.simple_update import SimpleUpdateConfig
from ctmpeps.algorithms.full_update import FullUpdateConfig
from ctmpeps.algorithms.observables import ObservableConfig


@dataclass
class PEPSParameters:
    """
    Options of one run.

    Parameters
    ----------
    chi : int
        Bond dimension of the CTM environment
    num_simple_step, num_full_step : int
        Trotter steps of the simple and full update
    inverse_lambda_cut : float
        Threshold of the bond-spectrum pseudo-inverse (simple update)
    inverse_projector_cut : float
        Relative cutoff of the CTM projector spectra
    full_inverse_precision : float
        Relative cutoff of the full-update ALS pseudo-inverse
    full_convergence_epsilon : float
        Relative cost change that stops the ALS refit
    full_max_iteration : int
        ALS iterations per bond
    full_use_fast_full_update : bool
        Refresh only the environment lines touching the updated bond
    max_ctm_iteration : int
        CTM sweeps per environment calculation
    ctm_convergence_epsilon : float
        Tolerance on the change of the corner spectra
    ctm_projector_corner : bool
        Projectors from one enlarged corner per half system
    use_rsvd : bool
        Randomized SVD for the projectors
    rsvd_oversampling_factor : int
        Oversampling of the randomized SVD
    max_block_size : int
        Largest patch side used for two-site observables
    seed : int
        Seed of the initial state and the randomized SVD
    is_real : bool
        Use real (``float64``) instead of complex tensors
    verbosity : int
        0 silent, 1 info, 2 debug
    tensor_load_dir, tensor_save_dir : str
        Checkpoint directories; empty disables loading or saving
    outdir : str
        Directory of the output files
    """
    chi: int = 4
    num_simple_step: int = 0
    num_full_step: int = 0

    inverse_lambda_cut: float = 1e-12
    inverse_projector_cut: float = 1e-12
    full_inverse_precision: float = 1e-12
    full_convergence_epsilon: float = 1e-12

    full_max_iteration: int = 100
    full_use_fast_full_update: bool = True
    max_ctm_iteration: int = 100
    ctm_convergence_epsilon: float = 1e-6
    ctm_projector_corner: bool = True
    use_rsvd: bool = False
    rsvd_oversampling_factor: int = 2

    max_block_size: int = 4

    seed: int = 11
    is_real: bool = False
    verbosity: int = 1

    tensor_load_dir: str = ""
    tensor_save_dir: str = ""
    outdir: str = "output"

    def validate(self) -> None:
        """
        Check the option values.

        Raises
        ------
        ValueError
            For non-positive sizes or negative counts and thresholds
        """
        positive = ('chi', 'full_max_iteration', 'max_ctm_iteration',
                    'rsvd_oversampling_factor', 'max_block_size')
        for name in positive:
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")

        non_negative = ('num_simple_step', 'num_full_step', 'inverse_lambda_cut',
                        'inverse_projector_cut', 'full_inverse_precision',
                        'full_convergence_epsilon', 'ctm_convergence_epsilon')
        for name in non_negative:
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative, got {getattr(self, name)}")

    @property
    def dtype(self) -> np.dtype:
        """Scalar type of every tensor of the run."""
        return np.dtype(np.float64) if self.is_real else np.dtype(np.complex128)

    # ==================== Serialization ====================

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PEPSParameters':
        """Build from a dict, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown parameters: {sorted(unknown)}")
        return cls(**data)

    def save(self, path: Path) -> None:
        """Write a ``name = value`` listing (``parameters.dat``)."""
        with open(path, 'w') as f:
            for key, value in self.to_dict().items():
                if isinstance(value, str):
                    value = f'"{value}"'
                elif isinstance(value, bool):
                    value = str(value).lower()
                f.write(f"{key} = {value}\n")

    # ==================== Engine configurations ====================

    def ctmrg_config(self) -> CTMRGConfig:
        return CTMRGConfig(
            chi=self.chi,
            max_iter=self.max_ctm_iteration,
            tol=self.ctm_convergence_epsilon,
            projector_corner=self.ctm_projector_corner,
            inverse_projector_cut=self.inverse_projector_cut,
            use_rsvd=self.use_rsvd,
            rsvd_oversampling_factor=self.rsvd_oversampling_factor,
            seed=self.seed,
            verbosity=self.verbosity,
        )

    def simple_update_config(self) -> SimpleUpdateConfig:
        return SimpleUpdateConfig(
            num_steps=self.num_simple_step,
            inverse_lambda_cut=self.inverse_lambda_cut,
            verbosity=self.verbosity,
        )

    def full_update_config(self) -> FullUpdateConfig:
        return FullUpdateConfig(
            num_steps=self.num_full_step,
            inverse_precision=self.full_inverse_precision,
            convergence_epsilon=self.full_convergence_epsilon,
            max_iteration=self.full_max_iteration,
            fast_update=self.full_use_fast_full_update,
            verbosity=self.verbosity,
        )

    def observable_config(self) -> ObservableConfig:
        return ObservableConfig(max_block_size=self.max_block_size, verbosity=self.verbosity)
