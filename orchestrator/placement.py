import threading
from typing import Dict, Iterable, Optional

from orchestrator.errors import ValidationError
from orchestrator.models import HEALTHY, Node


FIRST_FIT = "first-fit"
BEST_FIT = "best-fit"
WORST_FIT = "worst-fit"

SCHEDULING_ALGORITHMS = [FIRST_FIT, BEST_FIT, WORST_FIT]


def select_node(
    nodes: Iterable[Node],
    cpu_requirement: int,
    algorithm: str,
    free: Optional[Dict[str, int]] = None,
) -> Optional[str]:
    """Pick a node for a pod, or None when no healthy node can fit it.

    ``nodes`` must be in insertion order. ``free`` overrides a node's
    available capacity (reservations, or capacity the pod itself would give
    back when it is moved).
    """
    free = free or {}

    def capacity(node):
        return free.get(node.id, node.available_capacity)

    eligible = [n for n in nodes if n.status == HEALTHY and capacity(n) >= cpu_requirement]
    if not eligible:
        return None

    # min/max keep the first of equal keys, so ties go to the earliest node
    if algorithm == BEST_FIT:
        return min(eligible, key=capacity).id
    if algorithm == WORST_FIT:
        return max(eligible, key=capacity).id
    return eligible[0].id


class PlacementPolicy:
    """Holds the process-wide active algorithm."""

    def __init__(self, algorithm: str = FIRST_FIT):
        self._lock = threading.Lock()
        self._algorithm = validate_algorithm(algorithm)

    @property
    def algorithm(self) -> str:
        with self._lock:
            return self._algorithm

    @algorithm.setter
    def algorithm(self, value: str):
        value = validate_algorithm(value)
        with self._lock:
            self._algorithm = value

    def select(self, nodes, cpu_requirement, free=None, algorithm=None):
        return select_node(nodes, cpu_requirement, algorithm or self.algorithm, free)


def validate_algorithm(algorithm: str) -> str:
    if algorithm not in SCHEDULING_ALGORITHMS:
        raise ValidationError(
            f"Invalid scheduling algorithm {algorithm!r}. Choose one of: {', '.join(SCHEDULING_ALGORITHMS)}"
        )
    return algorithm
