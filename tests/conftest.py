import numpy as np
import pytest

from octgrav import Body


@pytest.fixture
def rng():
    return np.random.default_rng(12345)


@pytest.fixture
def cloud(rng):
    """200 bodies scattered in a unit-ish cube with varied masses."""
    n = 200
    positions = rng.uniform(-5.0, 5.0, (n, 3))
    masses = rng.uniform(0.5, 2.0, n)
    return positions, masses


@pytest.fixture
def cloud_bodies(cloud, rng):
    positions, masses = cloud
    velocities = rng.normal(0.0, 0.1, positions.shape)
    return [Body(p, v, m) for p, v, m in zip(positions, velocities, masses)]
