"""Configuration for the Barnes-Hut gravity engine."""

import math
import numbers
from dataclasses import asdict, dataclass, fields, replace
from typing import Optional

from .errors import ConfigurationError

# =============================================================================
# DEFAULTS
# =============================================================================

INTEGRATORS = ("symplectic_euler", "leapfrog")
METHODS = ("barnes_hut", "direct")

UNIVERSE = {
    "G": 1.0,                      # Gravitational constant (caller's units)
    "theta": 0.5,                  # Opening angle (lower = more accurate, slower)
    "dt": 0.01,                    # Time step per call to step()
    "softening": 0.01,             # Softening length, keeps close encounters finite

    "integrator": "symplectic_euler",
    "method": "barnes_hut",        # "direct" evaluates every pair (reference, O(n^2))

    # Octree subdivision stops at this depth; bodies that still share a leaf
    # there are merged into it. 32 halvings of the root cube is ~2e-10 of
    # its width.
    "max_depth": 32,

    # None leaves the numba thread count untouched
    "num_threads": None,
}

# Root cube is enlarged by this fraction so bodies on the boundary stay inside
BOUNDS_MARGIN = 1e-3

# Chunks per worker thread when splitting bodies into index ranges
CHUNKS_PER_THREAD = 4


@dataclass
class UniverseConfig:
    """Simulation parameters, validated on construction."""
    G: float = UNIVERSE["G"]
    theta: float = UNIVERSE["theta"]
    dt: float = UNIVERSE["dt"]
    softening: float = UNIVERSE["softening"]
    integrator: str = UNIVERSE["integrator"]
    method: str = UNIVERSE["method"]
    max_depth: int = UNIVERSE["max_depth"]
    num_threads: Optional[int] = UNIVERSE["num_threads"]

    def __post_init__(self):
        self.validate()

    @classmethod
    def from_dict(cls, options: dict) -> "UniverseConfig":
        """Build a config from a dict, rejecting unrecognized keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(options) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration option(s): {', '.join(unknown)}")
        return cls(**options)

    def replace(self, **changes) -> "UniverseConfig":
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return asdict(self)

    def validate(self):
        """Raise ConfigurationError for any out-of-range parameter. Never clamps."""
        if not _is_real(self.G) or not math.isfinite(self.G):
            raise ConfigurationError(f"G must be a finite number, got {self.G!r}")
        if not _is_real(self.theta) or not self.theta > 0 or not math.isfinite(self.theta):
            raise ConfigurationError(f"theta must be a positive number, got {self.theta!r}")
        if not _is_real(self.dt) or not self.dt > 0 or not math.isfinite(self.dt):
            raise ConfigurationError(f"dt must be a positive number, got {self.dt!r}")
        if not _is_real(self.softening) or not self.softening >= 0 or not math.isfinite(self.softening):
            raise ConfigurationError(f"softening must be a non-negative number, got {self.softening!r}")
        if self.integrator not in INTEGRATORS:
            raise ConfigurationError(
                f"integrator must be one of {INTEGRATORS}, got {self.integrator!r}")
        if self.method not in METHODS:
            raise ConfigurationError(f"method must be one of {METHODS}, got {self.method!r}")
        if not _is_int(self.max_depth) or self.max_depth < 1:
            raise ConfigurationError(f"max_depth must be a positive integer, got {self.max_depth!r}")
        if self.num_threads is not None and (not _is_int(self.num_threads) or self.num_threads < 1):
            raise ConfigurationError(
                f"num_threads must be None or a positive integer, got {self.num_threads!r}")


def _is_real(value) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def _is_int(value) -> bool:
    return isinstance(value, numbers.Integral) and not isinstance(value, bool)
