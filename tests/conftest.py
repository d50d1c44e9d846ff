"""
Shared fixtures for the orchestrator tests
"""

import logging

import pytest

from orchestrator.docker_utils import SimulatedDriver
from orchestrator.health import HealthMonitor
from orchestrator.placement import PlacementPolicy
from orchestrator.scheduler import Scheduler
from orchestrator.state import ClusterState

logging.getLogger("socketio").setLevel(logging.WARNING)
logging.getLogger("engineio").setLevel(logging.WARNING)

START = 1_000_000.0


class FakeClock:
    def __init__(self, now=START):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def state():
    return ClusterState()


@pytest.fixture
def driver():
    return SimulatedDriver()


@pytest.fixture
def scheduler(state, driver, clock):
    return Scheduler(state, driver, PlacementPolicy(), clock=clock)


@pytest.fixture
def monitor(scheduler):
    return HealthMonitor(scheduler, timeout=10, interval=0.01)


@pytest.fixture
def two_nodes(scheduler):
    """Nodes of capacity 4 and 8, added in that order."""
    scheduler.add_node("node-a", 4)
    scheduler.add_node("node-b", 8)
    return scheduler


def snapshot(state):
    """Comparable view of everything a reader can observe."""
    return (
        [n.to_dict() for n in state.list_nodes()],
        [p.to_dict() for p in state.list_workloads()],
    )


def assert_consistent(state):
    assert state.audit() == []
