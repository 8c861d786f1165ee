"""Run-level parameters."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

from ctmpeps.algorithms.ctm import CTMConfig
from ctmpeps.algorithms.full_update import FullUpdateConfig
from ctmpeps.algorithms.simple_update import SimpleUpdateConfig


@dataclass
class PEPSParameters:
    """
    Parameters of one simulation run.

    Attributes
    ----------
    ctm : CTMConfig
        Environment bond dimension and convergence settings
    simple_update : SimpleUpdateConfig
    full_update : FullUpdateConfig
    seed : int
        Seed of the random initial tensors and randomized SVD
    is_real : bool
        Use real tensors throughout
    verbosity : int
        0=silent, 1=progress, 2=debug; propagated to every engine
    outdir : str
        Directory of the report files
    tensor_save_dir, tensor_load_dir : str, optional
        Checkpoint directories; empty or None disables saving / loading
    """
    ctm: CTMConfig = field(default_factory=CTMConfig)
    simple_update: SimpleUpdateConfig = field(default_factory=SimpleUpdateConfig)
    full_update: FullUpdateConfig = field(default_factory=FullUpdateConfig)
    seed: int = 11
    is_real: bool = False
    verbosity: int = 1
    outdir: str = "output"
    tensor_save_dir: Optional[str] = None
    tensor_load_dir: Optional[str] = None

    def __post_init__(self):
        if self.simple_update.num_step < 0 or self.full_update.num_step < 0:
            raise ValueError("Number of Trotter steps must be non-negative")
        if self.verbosity < 0:
            raise ValueError(f"verbosity must be non-negative, got {self.verbosity}")
        self.ctm.verbosity = self.verbosity
        self.simple_update.verbosity = self.verbosity
        self.full_update.verbosity = self.verbosity

    @property
    def chi(self) -> int:
        return self.ctm.chi

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
