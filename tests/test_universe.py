"""
Universe driver: configuration, stepping and conservation.
"""

from dataclasses import dataclass
from typing import Tuple

import numpy as np
import pytest

from octgrav import Body, ConfigurationError, InvalidBodyError, Universe, UniverseConfig


def symmetric_pair(mass=1.0, separation=2.0, speed=0.5):
    return [
        Body((-separation / 2, 0.0, 0.0), (0.0, -speed, 0.0), mass),
        Body((separation / 2, 0.0, 0.0), (0.0, speed, 0.0), mass),
    ]


@dataclass
class Particle:
    """A user-defined body type that never heard of octgrav."""
    position: Tuple[float, float, float]
    velocity: Tuple[float, float, float]
    mass: float


class FixedPosition:
    """Position can be read but never assigned."""

    def __init__(self, position, velocity, mass):
        self._position = np.asarray(position, dtype=np.float64)
        self.velocity = velocity
        self.mass = mass

    @property
    def position(self):
        return self._position


class LockablePosition:
    """Accepts position writes until locked."""

    def __init__(self, position, velocity, mass):
        self.locked = False
        self.position = position
        self.velocity = velocity
        self.mass = mass

    def __setattr__(self, name, value):
        if name == "position" and getattr(self, "locked", False):
            raise AttributeError("position is locked")
        super().__setattr__(name, value)


class TestConfiguration:
    """Bad parameters fail at construction, never clamped."""

    @pytest.mark.parametrize("options", [
        {"theta": 0.0},
        {"theta": -0.5},
        {"dt": 0.0},
        {"dt": -0.01},
        {"softening": -1.0},
        {"G": float("nan")},
        {"integrator": "rk4"},
        {"method": "fmm"},
        {"max_depth": 0},
        {"num_threads": 0},
    ])
    def test_rejected(self, options):
        with pytest.raises(ConfigurationError):
            Universe(symmetric_pair(), **options)

    def test_unknown_option(self):
        with pytest.raises(ConfigurationError, match="thetta"):
            Universe(symmetric_pair(), thetta=0.5)

    def test_config_object_and_overrides(self):
        config = UniverseConfig(theta=0.3, dt=0.002)
        universe = Universe(symmetric_pair(), config, softening=0.5)

        assert universe.config.theta == 0.3
        assert universe.config.dt == 0.002
        assert universe.config.softening == 0.5
        assert config.softening != 0.5

    def test_config_dict(self):
        universe = Universe(symmetric_pair(), {"theta": 0.9, "integrator": "leapfrog"})

        assert universe.config.theta == 0.9
        assert universe.config.integrator == "leapfrog"

    def test_mutated_config_is_revalidated(self):
        config = UniverseConfig()
        config.dt = -1.0

        with pytest.raises(ConfigurationError):
            Universe(symmetric_pair(), config)


class TestBodies:

    def test_user_defined_body_type(self):
        particles = [
            Particle((0.0, 0.0, 0.0), (0.0, 0.0, 0.0), 100.0),
            Particle((5.0, 0.0, 0.0), (0.0, 1.0, 0.0), 1.0),
        ]
        universe = Universe(particles, dt=0.01, softening=0.0)
        universe.step()

        assert particles[1].velocity[0] < 0.0
        assert particles[1].position[1] > 0.0

    def test_missing_capability(self):
        with pytest.raises(InvalidBodyError):
            Universe([object()])

    @pytest.mark.parametrize("mass", [0.0, -1.0, float("inf")])
    def test_bad_mass(self, mass):
        with pytest.raises(InvalidBodyError):
            Universe([Particle((0, 0, 0), (0, 0, 0), mass)])

    def test_wrong_dimension(self):
        with pytest.raises(InvalidBodyError):
            Universe([Particle((0, 0), (0, 0, 0), 1.0)])

    def test_read_only_position_rejected_at_construction(self):
        bodies = [
            Body((0.0, 0.0, 0.0), mass=1.0),
            FixedPosition((1.0, 0.0, 0.0), (0.0, 0.0, 0.0), 1.0),
        ]

        with pytest.raises(InvalidBodyError, match="position"):
            Universe(bodies)

    def test_failed_write_back_leaves_every_body_untouched(self):
        locked = LockablePosition((1.0, 0.0, 0.0), (0.0, 0.5, 0.0), 1.0)
        bodies = [Body((-1.0, 0.0, 0.0), (0.0, -0.5, 0.0), 1.0), locked,
                  Body((0.0, 3.0, 0.0), mass=2.0)]
        universe = Universe(bodies)
        positions = universe.positions()
        velocities = universe.velocities()

        locked.locked = True
        with pytest.raises(InvalidBodyError):
            universe.step()

        np.testing.assert_array_equal(universe.positions(), positions)
        np.testing.assert_array_equal(universe.velocities(), velocities)
        assert universe.steps_taken == 0

    def test_add_body(self):
        universe = Universe(symmetric_pair())
        universe.add_body(Body((0.0, 5.0, 0.0), mass=3.0))

        assert len(universe) == 3
        with pytest.raises(InvalidBodyError):
            universe.add_body(Particle((0, 0, 0), (0, 0, 0), -2.0))


class TestStepping:

    def test_empty_universe_is_a_no_op(self):
        universe = Universe([])
        universe.step()
        universe.run(3)

        assert universe.elapsed == 0.0
        assert universe.steps_taken == 0
        assert universe.last_tree_stats is None
        assert universe.positions().shape == (0, 3)

    def test_zero_steps_changes_nothing(self, cloud_bodies):
        universe = Universe(cloud_bodies)
        positions = universe.positions()
        velocities = universe.velocities()

        universe.run(0)

        np.testing.assert_array_equal(universe.positions(), positions)
        np.testing.assert_array_equal(universe.velocities(), velocities)
        assert universe.elapsed == 0.0

    def test_negative_steps(self):
        with pytest.raises(ConfigurationError):
            Universe(symmetric_pair()).run(-1)

    def test_elapsed_time(self):
        universe = Universe(symmetric_pair(), dt=0.25)
        universe.run(8)

        assert universe.steps_taken == 8
        assert universe.elapsed == pytest.approx(2.0)

    def test_bodies_are_updated_in_place(self):
        bodies = symmetric_pair()
        start = bodies[0].position.copy()
        Universe(bodies).step()

        assert not np.array_equal(bodies[0].position, start)

    def test_queries_return_copies(self, cloud_bodies):
        universe = Universe(cloud_bodies)
        positions = universe.positions()
        positions[:] = 0.0

        assert not np.array_equal(universe.positions(), positions)

    def test_accelerations_do_not_advance(self, cloud_bodies):
        universe = Universe(cloud_bodies)
        before = universe.positions()
        accel = universe.accelerations()

        assert accel.shape == before.shape
        assert universe.last_tree_stats is None
        np.testing.assert_array_equal(universe.positions(), before)
        assert universe.steps_taken == 0

    def test_tree_stats_after_step(self, cloud_bodies):
        universe = Universe(cloud_bodies)
        universe.step()

        stats = universe.last_tree_stats
        assert stats["bodies"] == len(cloud_bodies)
        assert stats["leaves"] == len(cloud_bodies)
        assert stats["root_mass"] == pytest.approx(universe.masses().sum())

    def test_tree_query(self, cloud_bodies):
        universe = Universe(cloud_bodies)
        tree = universe.tree()

        assert tree.num_bodies == len(cloud_bodies)
        assert sorted(tree.iter_bodies()) == list(range(len(cloud_bodies)))


class TestConservation:

    @pytest.mark.parametrize("integrator", ["symplectic_euler", "leapfrog"])
    def test_symmetric_pair_keeps_zero_momentum(self, integrator):
        universe = Universe(symmetric_pair(), theta=0.5, dt=0.001, softening=0.01,
                            integrator=integrator)
        universe.run(500)

        np.testing.assert_allclose(universe.total_momentum(), [0.0, 0.0, 0.0], atol=1e-12)
        np.testing.assert_allclose(universe.center_of_mass(), [0.0, 0.0, 0.0], atol=1e-12)

    def test_cloud_momentum_drift_is_small(self, cloud_bodies):
        universe = Universe(cloud_bodies, theta=0.3, dt=0.001, softening=0.05)
        start = universe.total_momentum()
        scale = np.abs(universe.masses()[:, None] * universe.velocities()).sum()

        universe.run(20)

        assert np.abs(universe.total_momentum() - start).max() < 1e-2 * scale

    def test_circular_orbit_with_leapfrog(self):
        sun = Body((0.0, 0.0, 0.0), mass=1000.0)
        planet = Body((10.0, 0.0, 0.0), (0.0, 10.0, 0.0), 1e-6)
        universe = Universe([sun, planet], G=1.0, dt=0.001, softening=0.0, integrator="leapfrog")
        energy = universe.total_energy()

        universe.run(1000)

        radius = np.linalg.norm(planet.position - sun.position)
        assert radius == pytest.approx(10.0, rel=1e-3)
        assert universe.total_energy() == pytest.approx(energy, rel=1e-4)
        assert universe.elapsed == pytest.approx(1.0)

    def test_direct_and_tree_methods_agree(self, cloud):
        positions, masses = cloud

        def make(method):
            bodies = [Body(p, (0.0, 0.0, 0.0), m) for p, m in zip(positions, masses)]
            return Universe(bodies, method=method, theta=1e-6, dt=0.001, softening=0.05)

        tree, direct = make("barnes_hut"), make("direct")
        tree.run(5)
        direct.run(5)

        np.testing.assert_allclose(tree.positions(), direct.positions(), rtol=1e-9, atol=1e-12)
        assert direct.last_tree_stats is None
