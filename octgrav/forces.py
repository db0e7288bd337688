"""
Gravitational acceleration: Barnes-Hut traversal and direct summation.

Every contribution uses the Plummer-softened point-mass law

    a += G * m * d / (|d|^2 + eps^2)^(3/2),    d = source - target

and contributions at exactly zero separation are dropped, so coincident
bodies never produce NaN even with zero softening.
"""

import math

import numpy as np
from numba import njit, prange

from .config import UNIVERSE
from .octree import Octree


@njit(fastmath=True, cache=True)
def point_mass_pull(px: float, py: float, pz: float,
                    qx: float, qy: float, qz: float,
                    mass: float, G: float, softening_sq: float) -> tuple:
    """Acceleration at p from a point mass at q."""
    dx = qx - px
    dy = qy - py
    dz = qz - pz
    r_sq = dx * dx + dy * dy + dz * dz
    if r_sq <= 0.0:
        return 0.0, 0.0, 0.0
    soft_sq = r_sq + softening_sq
    # a = G * m / r^2 along d/|d|, softened
    force_mag = G * mass / (soft_sq * math.sqrt(soft_sq))
    return dx * force_mag, dy * force_mag, dz * force_mag


@njit(fastmath=True, cache=True)
def accumulate_acceleration(
    target: int,
    px: float,
    py: float,
    pz: float,
    positions: np.ndarray,
    masses: np.ndarray,
    body_next: np.ndarray,
    node_centers: np.ndarray,
    node_half_sizes: np.ndarray,
    node_masses: np.ndarray,
    node_com: np.ndarray,
    node_children: np.ndarray,
    node_body_idx: np.ndarray,
    node_is_leaf: np.ndarray,
    theta: float,
    G: float,
    softening_sq: float,
    stack: np.ndarray,
) -> tuple:
    """
    Acceleration at (px, py, pz) using Barnes-Hut tree traversal.

    ``target`` is the index of the body being evaluated (excluded from its
    own field) or -1 for a free point. Stack-based traversal (Numba-friendly);
    ``stack`` must hold 8 * (tree depth + 2) entries.
    """
    ax, ay, az = 0.0, 0.0, 0.0
    theta_sq = theta * theta

    stack[0] = 0  # Start at root
    stack_ptr = 1

    while stack_ptr > 0:
        stack_ptr -= 1
        node = stack[stack_ptr]

        node_mass = node_masses[node]
        if node_mass <= 0.0:
            continue

        if node_is_leaf[node]:
            first = node_body_idx[node]
            if body_next[first] == -1:
                # Skip if this leaf contains only the target
                if first == target:
                    continue
                fx, fy, fz = point_mass_pull(px, py, pz, positions[first, 0], positions[first, 1],
                                             positions[first, 2], masses[first], G, softening_sq)
                ax += fx
                ay += fy
                az += fz
                continue

            # Merged leaf: exclude the target by summing the others one by one
            holds_target = False
            j = first
            while j != -1:
                if j == target:
                    holds_target = True
                    break
                j = body_next[j]

            if holds_target:
                j = first
                while j != -1:
                    if j != target:
                        fx, fy, fz = point_mass_pull(px, py, pz, positions[j, 0], positions[j, 1],
                                                     positions[j, 2], masses[j], G, softening_sq)
                        ax += fx
                        ay += fy
                        az += fz
                    j = body_next[j]
            else:
                fx, fy, fz = point_mass_pull(px, py, pz, node_com[node, 0], node_com[node, 1],
                                             node_com[node, 2], node_mass, G, softening_sq)
                ax += fx
                ay += fy
                az += fz
            continue

        # Distance to node's center of mass
        dx = node_com[node, 0] - px
        dy = node_com[node, 1] - py
        dz = node_com[node, 2] - pz
        dist_sq = dx * dx + dy * dy + dz * dz

        half = node_half_sizes[node]
        inside = (abs(px - node_centers[node, 0]) <= half
                  and abs(py - node_centers[node, 1]) <= half
                  and abs(pz - node_centers[node, 2]) <= half)

        # Barnes-Hut criterion: s/d < theta. A cube containing the
        # evaluation point is always opened.
        node_size = half * 2.0
        if not inside and node_size * node_size < theta_sq * dist_sq:
            fx, fy, fz = point_mass_pull(px, py, pz, node_com[node, 0], node_com[node, 1],
                                         node_com[node, 2], node_mass, G, softening_sq)
            ax += fx
            ay += fy
            az += fz
        else:
            # Node too close, need to examine children
            for c in range(8):
                child = node_children[node, c]
                if child >= 0:
                    stack[stack_ptr] = child
                    stack_ptr += 1

    return ax, ay, az


def acceleration(tree: Octree, target, theta: float = UNIVERSE["theta"],
                 softening: float = UNIVERSE["softening"], G: float = UNIVERSE["G"]) -> np.ndarray:
    """Acceleration on one target from the bodies in ``tree``.

    ``target`` is either the index of a body the tree was built from (its own
    mass is excluded) or an arbitrary 3-vector point.
    """
    positions = tree.positions
    masses = tree.masses
    if isinstance(target, (int, np.integer)):
        index = int(target)
        if not 0 <= index < tree.num_bodies:
            raise IndexError(f"body index {index} out of range for {tree.num_bodies} bodies")
        px, py, pz = positions[index]
    else:
        index = -1
        px, py, pz = np.asarray(target, dtype=np.float64).reshape(3)

    stack = np.empty(tree.stack_size(), dtype=np.int64)
    ax, ay, az = accumulate_acceleration(
        index, float(px), float(py), float(pz), positions, masses, tree.body_next,
        tree.node_centers, tree.node_half_sizes, tree.node_masses, tree.node_com,
        tree.node_children, tree.node_body_idx, tree.node_is_leaf,
        float(theta), float(G), float(softening) ** 2, stack,
    )
    return np.array([ax, ay, az], dtype=np.float64)


@njit(parallel=True, fastmath=True, cache=True)
def compute_forces_direct(
    positions: np.ndarray,
    masses: np.ndarray,
    accelerations: np.ndarray,
    num_bodies: int,
    G: float,
    softening: float,
):
    """Exact O(n^2) pairwise sum, one independent row per body."""
    softening_sq = softening * softening
    for i in prange(num_bodies):
        px = positions[i, 0]
        py = positions[i, 1]
        pz = positions[i, 2]
        ax, ay, az = 0.0, 0.0, 0.0
        for j in range(num_bodies):
            if j == i:
                continue
            fx, fy, fz = point_mass_pull(px, py, pz, positions[j, 0], positions[j, 1],
                                         positions[j, 2], masses[j], G, softening_sq)
            ax += fx
            ay += fy
            az += fz
        accelerations[i, 0] = ax
        accelerations[i, 1] = ay
        accelerations[i, 2] = az


def direct_accelerations(positions, masses, G: float = UNIVERSE["G"],
                         softening: float = UNIVERSE["softening"]) -> np.ndarray:
    """Accelerations of every body by direct summation over all pairs."""
    positions = np.ascontiguousarray(positions, dtype=np.float64).reshape(-1, 3)
    masses = np.ascontiguousarray(masses, dtype=np.float64).reshape(-1)
    num_bodies = positions.shape[0]
    accelerations = np.zeros((num_bodies, 3), dtype=np.float64)
    if num_bodies:
        compute_forces_direct(positions, masses, accelerations, num_bodies, float(G), float(softening))
    return accelerations
