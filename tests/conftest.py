"""Pytest configuration and fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pytest

# Ensure project root is on path when running tests
_project_root = Path(__file__).resolve().parents[1]
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

from herd_sim import HerdConfig, HerdSimulator


@pytest.fixture
def rng():
    """Seeded random generator."""
    return np.random.default_rng(17001)


@pytest.fixture
def default_config():
    """Herd parameters of the reference scenario."""
    return HerdConfig.from_options({
        "ageFirstCalving": 24,
        "femaleCalfRate": 0.47,
        "stillBirthRate": 0.07,
        "youngStockCullRate": 0.155,
        "replacementRate": 0.30,
        "calvingInterval": 12,
        "herdSize": 100,
        "gestationPeriod": 9,
        "dryPeriode": 2,
    })


@pytest.fixture(scope="module")
def default_herd():
    """Converged herd for the default parameters."""
    return HerdSimulator(HerdConfig(), rng=np.random.default_rng(1)).run()


@pytest.fixture
def blobs(rng):
    """100 points in five well separated clusters."""
    centers = np.array([[0.0, 0.0], [10.0, 0.0], [0.0, 10.0], [10.0, 10.0], [5.0, 5.0]])
    return np.vstack([c + rng.normal(0.0, 0.5, size=(20, 2)) for c in centers])
