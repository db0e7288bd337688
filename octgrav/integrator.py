"""
Time integration of positions and velocities from accelerations.

Two schemes, chosen once per Universe:

``symplectic_euler``
    v += a(p) * dt, then p += v * dt. One force evaluation per step.

``leapfrog``
    Kick-drift-kick: v += a(p) * dt / 2, p += v * dt, then
    v += a(p') * dt / 2 with accelerations re-evaluated at the new positions.
    Velocities come out synchronized with positions. Two force evaluations per
    step; nothing is carried over between steps.

Per-body updates are independent, so the kernels run under ``prange``.
"""

from typing import Callable, Optional

import numpy as np
from numba import njit, prange

Evaluator = Callable[[np.ndarray], np.ndarray]


@njit(parallel=True, fastmath=True, cache=True)
def kick(velocities: np.ndarray, accelerations: np.ndarray, dt: float, num_bodies: int):
    """v += a * dt"""
    for i in prange(num_bodies):
        velocities[i, 0] += accelerations[i, 0] * dt
        velocities[i, 1] += accelerations[i, 1] * dt
        velocities[i, 2] += accelerations[i, 2] * dt


@njit(parallel=True, fastmath=True, cache=True)
def drift(positions: np.ndarray, velocities: np.ndarray, dt: float, num_bodies: int):
    """p += v * dt"""
    for i in prange(num_bodies):
        positions[i, 0] += velocities[i, 0] * dt
        positions[i, 1] += velocities[i, 1] * dt
        positions[i, 2] += velocities[i, 2] * dt


@njit(parallel=True, fastmath=True, cache=True)
def update_positions_velocities(
    positions: np.ndarray,
    velocities: np.ndarray,
    accelerations: np.ndarray,
    dt: float,
    num_bodies: int
):
    """Symplectic Euler in one pass: kick with a(p), then drift with the new v."""
    for i in prange(num_bodies):
        # Update velocity
        velocities[i, 0] += accelerations[i, 0] * dt
        velocities[i, 1] += accelerations[i, 1] * dt
        velocities[i, 2] += accelerations[i, 2] * dt

        # Update position with the new velocity
        positions[i, 0] += velocities[i, 0] * dt
        positions[i, 1] += velocities[i, 1] * dt
        positions[i, 2] += velocities[i, 2] * dt


def symplectic_euler(positions: np.ndarray, velocities: np.ndarray, accelerations: np.ndarray,
                     dt: float, evaluate: Optional[Evaluator] = None):
    """Advance in place by one step. ``evaluate`` is unused."""
    update_positions_velocities(positions, velocities, accelerations, dt, positions.shape[0])


def leapfrog(positions: np.ndarray, velocities: np.ndarray, accelerations: np.ndarray,
             dt: float, evaluate: Evaluator):
    """Advance in place by one kick-drift-kick step.

    ``accelerations`` must be evaluated at the current positions; ``evaluate``
    maps new positions to their accelerations for the closing half kick.
    """
    n = positions.shape[0]
    half_dt = 0.5 * dt
    kick(velocities, accelerations, half_dt, n)
    drift(positions, velocities, dt, n)
    kick(velocities, evaluate(positions), half_dt, n)


SCHEMES = {
    "symplectic_euler": symplectic_euler,
    "leapfrog": leapfrog,
}


def get_scheme(name: str):
    try:
        return SCHEMES[name]
    except KeyError:
        raise ValueError(f"Unknown integrator: {name}") from None
