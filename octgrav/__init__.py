"""
octgrav
=======

Barnes-Hut N-body gravity on a flattened-array octree, with Numba-parallel
force evaluation.

    >>> from octgrav import Body, Universe
    >>> sun = Body((0, 0, 0), mass=1000.0)
    >>> planet = Body((10, 0, 0), velocity=(0, 10, 0), mass=1.0)
    >>> universe = Universe([sun, planet], theta=0.5, dt=0.001, softening=0.01)
    >>> universe.run(100)
"""

from .body import Body, BodyLike
from .config import UNIVERSE, UniverseConfig
from .diagnostics import tree_stats
from .errors import ConfigurationError, InvalidBodyError, OctgravError
from .forces import acceleration, direct_accelerations
from .integrator import leapfrog, symplectic_euler
from .octree import Octree, OctreeNode
from .octree import build as build_octree
from .scheduler import compute_accelerations, partition, warmup
from .universe import Universe

__version__ = "0.1.0"

__all__ = [
    "Body",
    "BodyLike",
    "UNIVERSE",
    "UniverseConfig",
    "ConfigurationError",
    "InvalidBodyError",
    "OctgravError",
    "Octree",
    "OctreeNode",
    "build_octree",
    "acceleration",
    "direct_accelerations",
    "compute_accelerations",
    "partition",
    "warmup",
    "symplectic_euler",
    "leapfrog",
    "tree_stats",
    "Universe",
]
