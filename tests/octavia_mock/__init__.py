"""In-memory load-balancer control plane for tests.

Provides a PoolClient implementation whose resources move through scripted
status sequences, with error injection per operation, plus a FakeClock
that advances virtual time instead of sleeping. For OctaviaClient tests,
`install` routes HTTP requests to canned FakeResponses.

Usage:
    from octavia_mock import FakeClock, MockOctavia

    octavia = MockOctavia()
    octavia.add_listener("L1", ["ACTIVE"])
    reconciler = PoolReconciler(octavia, clock=FakeClock())
    snapshot = await reconciler.create(spec)

    assert octavia.call_count("get_listener") == 1
"""

from .clock import FakeClock
from .http import FakeResponse, Recorder, install
from .resources import GONE, MockOctavia, MockPool

__all__ = [
    "GONE",
    "FakeClock",
    "FakeResponse",
    "MockOctavia",
    "MockPool",
    "Recorder",
    "install",
]
