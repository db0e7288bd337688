"""Conserved quantities and tree statistics for monitoring a run."""

import math

import numpy as np
from numba import njit, prange

from .octree import Octree


def total_mass(masses: np.ndarray) -> float:
    return float(np.sum(masses))


def center_of_mass(positions: np.ndarray, masses: np.ndarray) -> np.ndarray:
    m = np.sum(masses)
    if m <= 0:
        return np.zeros(3, dtype=np.float64)
    return (masses[:, None] * positions).sum(axis=0) / m


def total_momentum(velocities: np.ndarray, masses: np.ndarray) -> np.ndarray:
    """Sum of mass * velocity."""
    return (masses[:, None] * velocities).sum(axis=0)


def angular_momentum(positions: np.ndarray, velocities: np.ndarray, masses: np.ndarray) -> np.ndarray:
    """Sum of r x (m v) about the origin."""
    return np.cross(positions, masses[:, None] * velocities).sum(axis=0)


def kinetic_energy(velocities: np.ndarray, masses: np.ndarray) -> float:
    return float(0.5 * np.sum(masses * np.einsum("ij,ij->i", velocities, velocities)))


@njit(parallel=True, fastmath=True, cache=True)
def _pair_potential(positions: np.ndarray, masses: np.ndarray, G: float, softening: float,
                    per_body: np.ndarray):
    softening_sq = softening * softening
    n = positions.shape[0]
    for i in prange(n):
        acc = 0.0
        for j in range(i + 1, n):
            dx = positions[j, 0] - positions[i, 0]
            dy = positions[j, 1] - positions[i, 1]
            dz = positions[j, 2] - positions[i, 2]
            r_sq = dx * dx + dy * dy + dz * dz + softening_sq
            if r_sq > 0.0:
                acc -= G * masses[i] * masses[j] / math.sqrt(r_sq)
        per_body[i] = acc


def potential_energy(positions: np.ndarray, masses: np.ndarray, G: float, softening: float) -> float:
    """Softened pairwise potential energy, exact O(n^2)."""
    positions = np.ascontiguousarray(positions, dtype=np.float64)
    masses = np.ascontiguousarray(masses, dtype=np.float64)
    per_body = np.zeros(positions.shape[0], dtype=np.float64)
    if positions.shape[0] > 1:
        _pair_potential(positions, masses, float(G), float(softening), per_body)
    return float(per_body.sum())


def tree_stats(tree: Octree) -> dict:
    return {
        "bodies": tree.num_bodies,
        "nodes": tree.num_nodes,
        "leaves": tree.leaf_count(),
        "merged_leaves": tree.merged_leaf_count(),
        "depth": tree.depth(),
        "root_half_size": tree.root_half_size,
        "root_mass": tree.root_mass,
    }
