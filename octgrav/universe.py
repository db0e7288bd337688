"""
Universe driver: owns the bodies and parameters and advances them in time.

Per step:
    1. gather positions/velocities/masses from the bodies
    2. rebuild the octree from current positions (the previous tree is stale)
    3. evaluate every body's acceleration in parallel (join before continuing)
    4. integrate velocities and positions
    5. write state back to the bodies and advance elapsed time

Only body positions, velocities and the clock persist between steps.
"""

import logging
import numbers
from typing import Iterable, Optional, Tuple, Union

import numpy as np

from . import diagnostics, octree, scheduler
from .body import BodyLike, check_body, gather, scatter
from .config import UniverseConfig
from .errors import ConfigurationError
from .integrator import get_scheme

logger = logging.getLogger(__name__)


class Universe:
    """
    A set of bodies evolving under mutual gravity.

    Bodies can be any objects satisfying :class:`~octgrav.body.BodyLike`.
    They are updated in place after every step.
    """

    def __init__(self, bodies: Iterable[BodyLike] = (),
                 config: Optional[Union[UniverseConfig, dict]] = None, **options):
        if config is None:
            config = UniverseConfig.from_dict(options)
        elif isinstance(config, dict):
            config = UniverseConfig.from_dict({**config, **options})
        elif options:
            config = UniverseConfig.from_dict({**config.to_dict(), **options})
        else:
            config.validate()
        scheduler.check_threads(config.num_threads)
        self.config = config

        self._bodies = list(bodies)
        for i, body in enumerate(self._bodies):
            check_body(body, i)

        self._integrate = get_scheme(config.integrator)
        self._steps = 0
        self.last_tree_stats = None

        logger.info("Universe initialized with %d bodies (theta=%g, dt=%g, softening=%g, %s, %s)",
                    len(self._bodies), config.theta, config.dt, config.softening,
                    config.method, config.integrator)

    # ------------------------------------------------------------------
    # Stepping
    # ------------------------------------------------------------------

    def step(self):
        """Advance every body by one time step. No-op without bodies."""
        if not self._bodies:
            return

        cfg = self.config
        positions, velocities, masses = gather(self._bodies)

        with scheduler.thread_count(cfg.num_threads):
            accelerations = self._evaluate(positions, masses)
            self._integrate(positions, velocities, accelerations, cfg.dt,
                            lambda moved: self._evaluate(moved, masses))

        scatter(self._bodies, positions, velocities)
        self._steps += 1

        if self.last_tree_stats is not None:
            logger.debug("step %d: %d nodes, depth %d", self._steps,
                         self.last_tree_stats["nodes"], self.last_tree_stats["depth"])

    def run(self, steps: int):
        """Call :meth:`step` ``steps`` times."""
        if not isinstance(steps, numbers.Integral) or isinstance(steps, bool) or steps < 0:
            raise ConfigurationError(f"steps must be a non-negative integer, got {steps!r}")
        for _ in range(steps):
            self.step()

    def _evaluate(self, positions: np.ndarray, masses: np.ndarray, record: bool = True) -> np.ndarray:
        cfg = self.config
        out = np.zeros_like(positions)
        if cfg.method == "direct":
            return scheduler.compute_accelerations_direct(
                positions, masses, out, softening=cfg.softening, G=cfg.G)

        tree = octree.build(positions, masses, cfg.max_depth)
        if record:
            self.last_tree_stats = diagnostics.tree_stats(tree)
        return scheduler.compute_accelerations(
            tree, out, theta=cfg.theta, softening=cfg.softening, G=cfg.G)

    # ------------------------------------------------------------------
    # Bodies
    # ------------------------------------------------------------------

    @property
    def bodies(self) -> Tuple[BodyLike, ...]:
        return tuple(self._bodies)

    def add_body(self, body: BodyLike):
        """Append a body; takes part from the next step on."""
        check_body(body, len(self._bodies))
        self._bodies.append(body)

    def __len__(self) -> int:
        return len(self._bodies)

    def __iter__(self):
        return iter(tuple(self._bodies))

    # ------------------------------------------------------------------
    # Read-only queries
    # ------------------------------------------------------------------

    @property
    def elapsed(self) -> float:
        """Simulated time since construction."""
        return self._steps * self.config.dt

    @property
    def steps_taken(self) -> int:
        return self._steps

    def positions(self) -> np.ndarray:
        return gather(self._bodies)[0]

    def velocities(self) -> np.ndarray:
        return gather(self._bodies)[1]

    def masses(self) -> np.ndarray:
        return gather(self._bodies)[2]

    def accelerations(self) -> np.ndarray:
        """Accelerations at the current positions. Does not change any state."""
        positions, _, masses = gather(self._bodies)
        if not self._bodies:
            return positions
        with scheduler.thread_count(self.config.num_threads):
            return self._evaluate(positions, masses, record=False)

    def tree(self) -> octree.Octree:
        """A freshly built octree over the current positions, for inspection."""
        positions, _, masses = gather(self._bodies)
        return octree.build(positions, masses, self.config.max_depth)

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def total_momentum(self) -> np.ndarray:
        _, velocities, masses = gather(self._bodies)
        return diagnostics.total_momentum(velocities, masses)

    def angular_momentum(self) -> np.ndarray:
        return diagnostics.angular_momentum(*gather(self._bodies))

    def center_of_mass(self) -> np.ndarray:
        positions, _, masses = gather(self._bodies)
        return diagnostics.center_of_mass(positions, masses)

    def kinetic_energy(self) -> float:
        _, velocities, masses = gather(self._bodies)
        return diagnostics.kinetic_energy(velocities, masses)

    def potential_energy(self) -> float:
        positions, _, masses = gather(self._bodies)
        return diagnostics.potential_energy(positions, masses, self.config.G, self.config.softening)

    def total_energy(self) -> float:
        return self.kinetic_energy() + self.potential_energy()

    def __repr__(self) -> str:
        return (f"Universe(bodies={len(self._bodies)}, elapsed={self.elapsed:g}, "
                f"theta={self.config.theta}, dt={self.config.dt})")
