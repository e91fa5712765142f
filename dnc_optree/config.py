# dnc_optree/config.py
"""
Solver and diagnostic configuration.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from .kernel.solve import known_algorithms


@dataclass(frozen=True)
class SolverConfig:
    """Immutable settings for one analysis run."""

    # NLP solver
    algorithm: str = "SLSQP"
    max_evaluations: int = 0           # <= 0 means unlimited
    xtol_rel: float = 1e-4
    forward_constraints: bool = False  # pass derived constraints to SLSQP/COBYLA

    # Convexity diagnostic
    convexity_samples: int = 100
    convexity_directions: int = 100
    convexity_max_value: float = 10.0
    convexity_vector_range: Tuple[float, float] = (-10.0, 10.0)

    # Random seed for the convexity diagnostic (None = fresh entropy)
    seed: Optional[int] = None

    def __post_init__(self):
        if self.algorithm not in known_algorithms():
            raise ValueError(
                f"Unknown solver algorithm '{self.algorithm}'. Choose from {known_algorithms()}"
            )
        if not self.xtol_rel > 0:
            raise ValueError(f"xtol_rel must be > 0, got {self.xtol_rel}")
        if self.convexity_samples < 1 or self.convexity_directions < 1:
            raise ValueError("convexity_samples and convexity_directions must be >= 1")
        if self.convexity_max_value <= 0:
            raise ValueError(f"convexity_max_value must be > 0, got {self.convexity_max_value}")
        lo, hi = self.convexity_vector_range
        if lo >= hi:
            raise ValueError(f"convexity_vector_range must satisfy lo < hi, got {self.convexity_vector_range}")


# Default config instance
DEFAULT_SOLVER_CONFIG = SolverConfig()
