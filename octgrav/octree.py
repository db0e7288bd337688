"""
Barnes-Hut octree - flattened array implementation.

Nodes live in parallel numpy arrays indexed by node number (no Python objects
per node), so the tree can be built and traversed inside Numba kernels:

- center (3), half_size: the node's axis-aligned cube
- mass, com (3): aggregate mass and center of mass of everything below
- children (8): child node indices, -1 where the octant is empty
- body_idx: first body of a leaf, -1 for internal nodes
- is_leaf, depth

Children are always created after their parent, so a child's index is larger
than its parent's. That ordering is what lets aggregates be computed bottom-up
in a single reverse sweep without parent pointers.

A leaf normally holds one body. Subdivision stops at ``max_depth``; any
further body reaching a leaf at that depth is chained onto it through the
per-body ``body_next`` array and the leaf is treated as one merged mass.
"""

import logging
from collections import namedtuple
from typing import Iterator, List, Tuple

import numpy as np
from numba import njit

from .config import BOUNDS_MARGIN, UNIVERSE

logger = logging.getLogger(__name__)


OctreeNode = namedtuple(
    "OctreeNode",
    ["index", "center", "half_size", "mass", "center_of_mass", "children", "bodies", "is_leaf", "depth"],
)


@njit(cache=True)
def get_octant(px: float, py: float, pz: float,
               cx: float, cy: float, cz: float) -> int:
    """Determine which octant a point falls into relative to center."""
    octant = 0
    if px >= cx:
        octant |= 1
    if py >= cy:
        octant |= 2
    if pz >= cz:
        octant |= 4
    return octant


@njit(cache=True)
def get_octant_center(octant: int, cx: float, cy: float, cz: float,
                      half_size: float) -> tuple:
    """Get the center of a child octant."""
    quarter = half_size * 0.5
    new_cx = cx + quarter if (octant & 1) else cx - quarter
    new_cy = cy + quarter if (octant & 2) else cy - quarter
    new_cz = cz + quarter if (octant & 4) else cz - quarter
    return new_cx, new_cy, new_cz


@njit(cache=True)
def compute_bounds(positions: np.ndarray, num_bodies: int, margin: float) -> tuple:
    """Smallest cube around all bodies, enlarged by ``margin`` (relative).

    Returns (cx, cy, cz, half_size). A zero extent gets half size 1.0.
    """
    if num_bodies == 0:
        return 0.0, 0.0, 0.0, 1.0

    lo_x = positions[0, 0]
    hi_x = lo_x
    lo_y = positions[0, 1]
    hi_y = lo_y
    lo_z = positions[0, 2]
    hi_z = lo_z
    for i in range(1, num_bodies):
        x = positions[i, 0]
        y = positions[i, 1]
        z = positions[i, 2]
        if x < lo_x:
            lo_x = x
        elif x > hi_x:
            hi_x = x
        if y < lo_y:
            lo_y = y
        elif y > hi_y:
            hi_y = y
        if z < lo_z:
            lo_z = z
        elif z > hi_z:
            hi_z = z

    extent = max(hi_x - lo_x, hi_y - lo_y, hi_z - lo_z)
    half = 0.5 * extent
    if half <= 0.0:
        half = 1.0
    return 0.5 * (lo_x + hi_x), 0.5 * (lo_y + hi_y), 0.5 * (lo_z + hi_z), half * (1.0 + margin)


@njit(cache=True)
def _new_node(
    cx: float, cy: float, cz: float, half_size: float, depth: int, num_nodes: int,
    node_centers, node_half_sizes, node_children, node_body_idx, node_is_leaf, node_depth,
) -> int:
    idx = num_nodes
    node_centers[idx, 0] = cx
    node_centers[idx, 1] = cy
    node_centers[idx, 2] = cz
    node_half_sizes[idx] = half_size
    node_body_idx[idx] = -1
    node_is_leaf[idx] = True
    node_depth[idx] = depth
    for c in range(8):
        node_children[idx, c] = -1
    return idx


@njit(cache=True)
def build_octree(
    positions: np.ndarray,
    num_bodies: int,
    cx: float,
    cy: float,
    cz: float,
    half_size: float,
    max_depth: int,
    # Output arrays (pre-allocated)
    node_centers: np.ndarray,      # (max_nodes, 3)
    node_half_sizes: np.ndarray,   # (max_nodes,)
    node_children: np.ndarray,     # (max_nodes, 8)
    node_body_idx: np.ndarray,     # (max_nodes,)
    node_is_leaf: np.ndarray,      # (max_nodes,)
    node_depth: np.ndarray,        # (max_nodes,)
    body_next: np.ndarray,         # (num_bodies,)
) -> int:
    """
    Insert bodies one at a time, in order.
    Returns number of nodes created, or -1 if the node arrays are too small.
    """
    max_nodes = node_centers.shape[0]
    num_nodes = _new_node(cx, cy, cz, half_size, 0, 0, node_centers, node_half_sizes,
                          node_children, node_body_idx, node_is_leaf, node_depth) + 1

    for i in range(num_bodies):
        px = positions[i, 0]
        py = positions[i, 1]
        pz = positions[i, 2]
        body_next[i] = -1

        current = 0
        while True:
            ncx = node_centers[current, 0]
            ncy = node_centers[current, 1]
            ncz = node_centers[current, 2]
            hs = node_half_sizes[current]

            if node_is_leaf[current]:
                occupant = node_body_idx[current]
                if occupant == -1:
                    # Empty leaf - insert body here
                    node_body_idx[current] = i
                    break

                if node_depth[current] >= max_depth:
                    # Depth bound reached - merge into this leaf's chain
                    last = occupant
                    while body_next[last] != -1:
                        last = body_next[last]
                    body_next[last] = i
                    break

                # Occupied leaf - subdivide and push the occupant down
                if num_nodes >= max_nodes:
                    return -1
                octant = get_octant(positions[occupant, 0], positions[occupant, 1],
                                    positions[occupant, 2], ncx, ncy, ncz)
                ccx, ccy, ccz = get_octant_center(octant, ncx, ncy, ncz, hs)
                child = _new_node(ccx, ccy, ccz, hs * 0.5, node_depth[current] + 1, num_nodes,
                                  node_centers, node_half_sizes, node_children,
                                  node_body_idx, node_is_leaf, node_depth)
                num_nodes += 1
                node_body_idx[child] = occupant
                node_children[current, octant] = child
                node_is_leaf[current] = False
                node_body_idx[current] = -1
                # Loop again: current is now internal
            else:
                octant = get_octant(px, py, pz, ncx, ncy, ncz)
                child = node_children[current, octant]
                if child == -1:
                    if num_nodes >= max_nodes:
                        return -1
                    ccx, ccy, ccz = get_octant_center(octant, ncx, ncy, ncz, hs)
                    child = _new_node(ccx, ccy, ccz, hs * 0.5, node_depth[current] + 1, num_nodes,
                                      node_centers, node_half_sizes, node_children,
                                      node_body_idx, node_is_leaf, node_depth)
                    num_nodes += 1
                    node_body_idx[child] = i
                    node_children[current, octant] = child
                    break
                current = child

    return num_nodes


@njit(cache=True)
def accumulate_mass(
    positions: np.ndarray,
    masses: np.ndarray,
    num_nodes: int,
    node_centers: np.ndarray,
    node_masses: np.ndarray,
    node_com: np.ndarray,
    node_children: np.ndarray,
    node_body_idx: np.ndarray,
    node_is_leaf: np.ndarray,
    body_next: np.ndarray,
):
    """Fill aggregate mass and center of mass, children before parents."""
    for node in range(num_nodes - 1, -1, -1):
        m = 0.0
        sx, sy, sz = 0.0, 0.0, 0.0

        if node_is_leaf[node]:
            j = node_body_idx[node]
            if j != -1 and body_next[j] == -1:
                # Single body: aggregates are exactly the body's own values
                node_masses[node] = masses[j]
                node_com[node, 0] = positions[j, 0]
                node_com[node, 1] = positions[j, 1]
                node_com[node, 2] = positions[j, 2]
                continue
            while j != -1:
                m += masses[j]
                sx += masses[j] * positions[j, 0]
                sy += masses[j] * positions[j, 1]
                sz += masses[j] * positions[j, 2]
                j = body_next[j]
        else:
            for c in range(8):
                child = node_children[node, c]
                if child >= 0:
                    cm = node_masses[child]
                    m += cm
                    sx += cm * node_com[child, 0]
                    sy += cm * node_com[child, 1]
                    sz += cm * node_com[child, 2]

        node_masses[node] = m
        if m > 0:
            node_com[node, 0] = sx / m
            node_com[node, 1] = sy / m
            node_com[node, 2] = sz / m
        else:
            node_com[node, 0] = node_centers[node, 0]
            node_com[node, 1] = node_centers[node, 1]
            node_com[node, 2] = node_centers[node, 2]


class Octree:
    """A built octree over a fixed snapshot of body positions.

    The tree keeps the position and mass snapshot it was built from and is
    read-only once built; rebuild it whenever positions change.
    """

    def __init__(self, positions, masses, num_nodes: int, max_depth: int,
                 node_centers, node_half_sizes, node_masses, node_com,
                 node_children, node_body_idx, node_is_leaf, node_depth, body_next):
        self.positions = positions
        self.masses = masses
        self.num_bodies = positions.shape[0]
        self.num_nodes = num_nodes
        self.max_depth = max_depth
        self.node_centers = node_centers
        self.node_half_sizes = node_half_sizes
        self.node_masses = node_masses
        self.node_com = node_com
        self.node_children = node_children
        self.node_body_idx = node_body_idx
        self.node_is_leaf = node_is_leaf
        self.node_depth = node_depth
        self.body_next = body_next

    @property
    def root_mass(self) -> float:
        return float(self.node_masses[0])

    @property
    def root_center_of_mass(self) -> np.ndarray:
        return self.node_com[0].copy()

    @property
    def root_center(self) -> np.ndarray:
        return self.node_centers[0].copy()

    @property
    def root_half_size(self) -> float:
        return float(self.node_half_sizes[0])

    def depth(self) -> int:
        """Depth of the deepest node (root is 0)."""
        return int(self.node_depth[:self.num_nodes].max())

    def stack_size(self) -> int:
        """Traversal stack large enough for this tree."""
        return 8 * (self.depth() + 2)

    def leaf_count(self) -> int:
        leaves = self.node_is_leaf[:self.num_nodes] & (self.node_body_idx[:self.num_nodes] >= 0)
        return int(np.count_nonzero(leaves))

    def merged_leaf_count(self) -> int:
        """Leaves holding more than one body (depth bound reached)."""
        count = 0
        for node in range(self.num_nodes):
            first = self.node_body_idx[node]
            if self.node_is_leaf[node] and first >= 0 and self.body_next[first] >= 0:
                count += 1
        return count

    def bodies_in(self, node: int) -> List[int]:
        """Body indices held by a leaf, in insertion order (empty for internal nodes)."""
        bodies = []
        j = int(self.node_body_idx[node])
        while j != -1:
            bodies.append(j)
            j = int(self.body_next[j])
        return bodies

    def children_of(self, node: int) -> List[int]:
        return [int(c) for c in self.node_children[node] if c >= 0]

    def node(self, index: int) -> OctreeNode:
        return OctreeNode(
            index=index,
            center=self.node_centers[index].copy(),
            half_size=float(self.node_half_sizes[index]),
            mass=float(self.node_masses[index]),
            center_of_mass=self.node_com[index].copy(),
            children=tuple(int(c) for c in self.node_children[index]),
            bodies=tuple(self.bodies_in(index)),
            is_leaf=bool(self.node_is_leaf[index]),
            depth=int(self.node_depth[index]),
        )

    def iter_nodes(self) -> Iterator[OctreeNode]:
        for index in range(self.num_nodes):
            yield self.node(index)

    def iter_bodies(self) -> Iterator[int]:
        """Every body index exactly once, depth-first by octant."""
        stack = [0]
        while stack:
            node = stack.pop()
            if self.node_is_leaf[node]:
                yield from self.bodies_in(node)
            else:
                stack.extend(reversed(self.children_of(node)))

    def contains(self, point) -> bool:
        """True if ``point`` lies inside the root cube."""
        offset = np.abs(np.asarray(point, dtype=np.float64) - self.node_centers[0])
        return bool(np.all(offset <= self.node_half_sizes[0]))

    def signature(self) -> Tuple:
        """Hashable description of structure and aggregates, for comparing trees."""
        return tuple(
            (
                tuple(int(c) for c in self.node_children[node]),
                bool(self.node_is_leaf[node]),
                tuple(self.bodies_in(node)),
                float(self.node_masses[node]),
                tuple(float(v) for v in self.node_com[node]),
            )
            for node in range(self.num_nodes)
        )

    def __len__(self) -> int:
        return self.num_nodes

    def __repr__(self) -> str:
        return (f"Octree(bodies={self.num_bodies}, nodes={self.num_nodes}, "
                f"depth={self.depth()}, mass={self.root_mass:g})")


def _allocate(max_nodes: int, num_bodies: int) -> tuple:
    return (
        np.zeros((max_nodes, 3), dtype=np.float64),   # centers
        np.zeros(max_nodes, dtype=np.float64),        # half sizes
        np.zeros(max_nodes, dtype=np.float64),        # masses
        np.zeros((max_nodes, 3), dtype=np.float64),   # com
        np.full((max_nodes, 8), -1, dtype=np.int64),  # children
        np.full(max_nodes, -1, dtype=np.int64),       # body index
        np.ones(max_nodes, dtype=np.bool_),           # is leaf
        np.zeros(max_nodes, dtype=np.int64),          # depth
        np.full(num_bodies, -1, dtype=np.int64),      # body chain
    )


def build(positions, masses, max_depth: int = UNIVERSE["max_depth"]) -> Octree:
    """Build an octree over ``positions`` (n, 3) weighted by ``masses`` (n,)."""
    # Private copies: the integrator updates the caller's arrays in place
    positions = np.array(positions, dtype=np.float64).reshape(-1, 3)
    masses = np.array(masses, dtype=np.float64).reshape(-1)
    num_bodies = positions.shape[0]
    if masses.shape[0] != num_bodies:
        raise ValueError(f"got {num_bodies} positions but {masses.shape[0]} masses")

    cx, cy, cz, half = compute_bounds(positions, num_bodies, BOUNDS_MARGIN)

    # Each insertion creates at most max_depth + 1 nodes, so this always ends
    limit = 1 + num_bodies * (max_depth + 1)
    max_nodes = min(limit, max(16, 4 * num_bodies))
    while True:
        arrays = _allocate(max_nodes, num_bodies)
        centers, half_sizes, node_masses, com, children, body_idx, is_leaf, depth, body_next = arrays
        num_nodes = build_octree(positions, num_bodies, cx, cy, cz, half, max_depth,
                                 centers, half_sizes, children, body_idx, is_leaf, depth, body_next)
        if num_nodes >= 0:
            break
        logger.warning("Octree node buffer of %d exhausted for %d bodies, growing",
                       max_nodes, num_bodies)
        max_nodes = min(limit, max_nodes * 2)

    accumulate_mass(positions, masses, num_nodes, centers, node_masses, com,
                    children, body_idx, is_leaf, body_next)

    return Octree(positions, masses, num_nodes, max_depth, centers, half_sizes, node_masses, com,
                  children, body_idx, is_leaf, depth, body_next)
