"""
Bodies and the body capability.

The engine never depends on a concrete body class. Anything that exposes
``position``, ``velocity`` and ``mass`` (see :class:`BodyLike`) can be
simulated; :class:`Body` is the ready-made implementation.

Each step the Universe gathers positions, velocities and masses into
contiguous ``(n, 3)`` / ``(n,)`` float64 arrays, runs the numba kernels on
them and scatters the updated positions and velocities back.
"""

import itertools
import math
from typing import Optional, Protocol, Sequence, Tuple, runtime_checkable

import numpy as np

from .errors import InvalidBodyError

_uids = itertools.count()


@runtime_checkable
class BodyLike(Protocol):
    """Capability required of every simulated body.

    ``position`` and ``mass`` are read every step. ``velocity`` is read and
    written by the integrator, and so is ``position`` once the step is
    complete.
    """
    position: Sequence[float]
    velocity: Sequence[float]
    mass: float


class Body:
    """A point mass with position, velocity and mass."""

    __slots__ = ("_position", "_velocity", "mass", "radius", "name", "uid")

    def __init__(self, position, velocity=(0.0, 0.0, 0.0), mass: float = 1.0,
                 radius: float = 0.0, name: Optional[str] = None):
        self._position = _as_vector(position, "position")
        self._velocity = _as_vector(velocity, "velocity")
        self.mass = float(mass)
        self.radius = float(radius)
        self.name = name
        self.uid = next(_uids)

    @property
    def position(self) -> np.ndarray:
        return self._position

    @position.setter
    def position(self, value):
        self._position = _as_vector(value, "position")

    @property
    def velocity(self) -> np.ndarray:
        return self._velocity

    @velocity.setter
    def velocity(self, value):
        self._velocity = _as_vector(value, "velocity")

    @property
    def momentum(self) -> np.ndarray:
        return self.mass * self._velocity

    def copy(self) -> "Body":
        return Body(self._position.copy(), self._velocity.copy(), self.mass, self.radius, self.name)

    def __repr__(self) -> str:
        px, py, pz = self._position
        vx, vy, vz = self._velocity
        label = f"{self.name!r}, " if self.name is not None else ""
        return (f"Body({label}mass={self.mass}, position=({px}, {py}, {pz}), "
                f"velocity=({vx}, {vy}, {vz}))")


def _as_vector(value, what: str) -> np.ndarray:
    vec = np.array(value, dtype=np.float64).reshape(-1)
    if vec.shape != (3,):
        raise InvalidBodyError(f"{what} must have exactly 3 components, got {np.shape(value)}")
    return vec


def check_body(body, index: int = -1):
    """Raise InvalidBodyError unless ``body`` satisfies :class:`BodyLike`."""
    where = f"body {index}" if index >= 0 else "body"
    if not isinstance(body, BodyLike):
        raise InvalidBodyError(
            f"{where} ({type(body).__name__}) lacks position, velocity or mass")
    for attr in ("position", "velocity"):
        value = getattr(body, attr)
        if np.shape(value) != (3,):
            raise InvalidBodyError(f"{where}: {attr} must have exactly 3 components")
        # The integrator writes both back every step
        try:
            setattr(body, attr, value)
        except (AttributeError, TypeError) as exc:
            raise InvalidBodyError(f"{where}: {attr} cannot be assigned ({exc})") from exc
    mass = body.mass
    try:
        mass = float(mass)
    except (TypeError, ValueError):
        raise InvalidBodyError(f"{where}: mass must be a number, got {mass!r}") from None
    if not (math.isfinite(mass) and mass > 0):
        raise InvalidBodyError(f"{where}: mass must be positive and finite, got {mass!r}")


def gather(bodies: Sequence[BodyLike]) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Copy body state into (positions, velocities, masses) arrays."""
    n = len(bodies)
    positions = np.empty((n, 3), dtype=np.float64)
    velocities = np.empty((n, 3), dtype=np.float64)
    masses = np.empty(n, dtype=np.float64)
    for i, body in enumerate(bodies):
        positions[i] = body.position
        velocities[i] = body.velocity
        masses[i] = body.mass
    return positions, velocities, masses


def scatter(bodies: Sequence[BodyLike], positions: np.ndarray, velocities: np.ndarray):
    """Write integrated positions and velocities back through the capability.

    All or nothing: if any assignment fails, every value already written is
    put back and InvalidBodyError is raised.
    """
    written = []
    try:
        for i, body in enumerate(bodies):
            for attr, rows in (("velocity", velocities), ("position", positions)):
                previous = getattr(body, attr)
                setattr(body, attr, rows[i].copy())
                written.append((body, attr, previous))
    except (AttributeError, TypeError, ValueError) as exc:
        for body, attr, previous in reversed(written):
            setattr(body, attr, previous)
        raise InvalidBodyError(f"body {i}: cannot write back {attr} ({exc})") from exc
