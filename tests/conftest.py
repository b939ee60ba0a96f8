"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for octavia_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from octavia_mock import FakeClock, MockOctavia  # noqa: E402

from lbpool.reconciler import PoolReconciler  # noqa: E402


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def octavia() -> MockOctavia:
    return MockOctavia()


@pytest.fixture
def reconciler(octavia: MockOctavia, clock: FakeClock) -> PoolReconciler:
    """Reconciler wired to the mock control plane and virtual clock."""
    return PoolReconciler(octavia, clock=clock)
