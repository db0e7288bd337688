"""
Parallel force evaluation over a shared, read-only octree.

Bodies are split into contiguous index ranges and a Numba ``prange`` runs the
ranges on the worker pool. Each range writes only its own rows of the output
acceleration buffer, so no two workers ever touch the same slot and no locking
is needed. The parallel region ends with an implicit join: control returns to
the caller only once every range has finished, so partial accelerations are
never observable. That join is the barrier before integration.
"""

import logging
from contextlib import contextmanager
from typing import Optional

import numba
import numpy as np
from numba import njit, prange

from .config import CHUNKS_PER_THREAD, UNIVERSE
from .errors import ConfigurationError
from .forces import accumulate_acceleration, compute_forces_direct
from .octree import Octree, build

logger = logging.getLogger(__name__)


def partition(num_bodies: int, num_chunks: int) -> np.ndarray:
    """Boundaries of ``num_chunks`` contiguous, near-equal index ranges.

    Range ``c`` is ``bounds[c]:bounds[c + 1]``. Never yields more ranges than
    bodies; empty input gives a single boundary ``[0]``.
    """
    if num_bodies < 0 or num_chunks < 1:
        raise ValueError(f"cannot split {num_bodies} bodies into {num_chunks} chunks")
    if num_bodies == 0:
        return np.zeros(1, dtype=np.int64)
    num_chunks = min(num_chunks, num_bodies)
    return (np.arange(num_chunks + 1, dtype=np.int64) * num_bodies) // num_chunks


@njit(parallel=True, fastmath=True, cache=True)
def compute_forces_barnes_hut(
    bounds: np.ndarray,
    positions: np.ndarray,
    masses: np.ndarray,
    accelerations: np.ndarray,
    body_next: np.ndarray,
    node_centers: np.ndarray,
    node_half_sizes: np.ndarray,
    node_masses: np.ndarray,
    node_com: np.ndarray,
    node_children: np.ndarray,
    node_body_idx: np.ndarray,
    node_is_leaf: np.ndarray,
    stack_size: int,
    theta: float,
    G: float,
    softening: float,
):
    """
    Compute gravitational accelerations for every body, one index range per task.
    The tree arrays are only read.
    """
    softening_sq = softening * softening

    for c in prange(bounds.shape[0] - 1):
        # One traversal stack per range, reused for each body in it
        stack = np.empty(stack_size, dtype=np.int64)

        for i in range(bounds[c], bounds[c + 1]):
            ax, ay, az = accumulate_acceleration(
                i, positions[i, 0], positions[i, 1], positions[i, 2],
                positions, masses, body_next,
                node_centers, node_half_sizes, node_masses, node_com,
                node_children, node_body_idx, node_is_leaf,
                theta, G, softening_sq, stack,
            )
            accelerations[i, 0] = ax
            accelerations[i, 1] = ay
            accelerations[i, 2] = az


def check_threads(num_threads: Optional[int]):
    """Raise ConfigurationError if Numba cannot run ``num_threads`` workers."""
    if num_threads is not None and num_threads > numba.config.NUMBA_NUM_THREADS:
        raise ConfigurationError(
            f"num_threads={num_threads} exceeds the {numba.config.NUMBA_NUM_THREADS} "
            f"threads Numba was started with")


@contextmanager
def thread_count(num_threads: Optional[int]):
    """Run the enclosed block with ``num_threads`` Numba workers, then restore."""
    if num_threads is None:
        yield numba.get_num_threads()
        return
    check_threads(num_threads)
    previous = numba.get_num_threads()
    numba.set_num_threads(num_threads)
    try:
        yield num_threads
    finally:
        numba.set_num_threads(previous)


def compute_accelerations(
    tree: Octree,
    out: Optional[np.ndarray] = None,
    theta: float = UNIVERSE["theta"],
    softening: float = UNIVERSE["softening"],
    G: float = UNIVERSE["G"],
    num_threads: Optional[int] = None,
) -> np.ndarray:
    """Barnes-Hut acceleration of every body in ``tree``, evaluated in parallel.

    Results land in ``out`` (allocated if not given), row ``i`` for body ``i``.
    Returns only after all workers are done.
    """
    n = tree.num_bodies
    if out is None:
        out = np.zeros((n, 3), dtype=np.float64)
    elif out.shape != (n, 3):
        raise ValueError(f"output buffer has shape {out.shape}, expected {(n, 3)}")
    if n == 0:
        return out

    with thread_count(num_threads) as workers:
        bounds = partition(n, workers * CHUNKS_PER_THREAD)
        compute_forces_barnes_hut(
            bounds, tree.positions, tree.masses, out, tree.body_next,
            tree.node_centers, tree.node_half_sizes, tree.node_masses, tree.node_com,
            tree.node_children, tree.node_body_idx, tree.node_is_leaf,
            tree.stack_size(), float(theta), float(G), float(softening),
        )
    return out


def compute_accelerations_direct(
    positions: np.ndarray,
    masses: np.ndarray,
    out: Optional[np.ndarray] = None,
    softening: float = UNIVERSE["softening"],
    G: float = UNIVERSE["G"],
    num_threads: Optional[int] = None,
) -> np.ndarray:
    """Exact pairwise accelerations on the same worker pool."""
    n = positions.shape[0]
    if out is None:
        out = np.zeros((n, 3), dtype=np.float64)
    if n == 0:
        return out
    with thread_count(num_threads):
        compute_forces_direct(positions, masses, out, n, float(G), float(softening))
    return out


def warmup():
    """Pre-compile Numba functions with small arrays."""
    rng = np.random.default_rng(0)
    n = 100
    pos = rng.random((n, 3)) * 10
    mass = np.ones(n, dtype=np.float64)

    tree = build(pos, mass)
    compute_accelerations(tree, theta=0.5, softening=0.1, G=1.0)
    compute_accelerations_direct(pos, mass, softening=0.1, G=1.0)
    logger.debug("Numba kernels compiled (%d-node warmup tree)", tree.num_nodes)
