"""Pod placement and relocation.

The scheduler is the only writer of :class:`ClusterState` and the only caller
of the runtime driver. Every operation that talks to the driver follows the
same shape: decide and reserve under the store lock, call the driver with the
lock released, then re-acquire it to commit or to undo the reservation. A
second operation can therefore provision concurrently without being able to
spend capacity that is already promised.

Operations on one pod are serialized by a per-pod lock held for the whole
operation.
"""
import logging
import threading
import time
import uuid
from collections import defaultdict
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional

from orchestrator.docker_utils import RuntimeDriver
from orchestrator.errors import (
    ClusterError,
    ConflictError,
    InsufficientCapacityError,
    NoCapacityError,
    NotFoundError,
    ProvisionError,
    RuntimeDriverError,
    ValidationError,
)
from orchestrator.logging_config import heartbeat_logger
from orchestrator.models import (
    ERROR,
    HEALTHY,
    PENDING,
    RUNNING,
    UNHEALTHY,
    BestEffort,
    Node,
    Pod,
    Relocation,
    Removal,
)
from orchestrator.placement import PlacementPolicy
from orchestrator.state import ClusterState

logger = logging.getLogger(__name__)


def new_pod_id() -> str:
    return f"pod-{uuid.uuid4().hex[:12]}"


def positive_int(value: Any, what: str) -> int:
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise ValidationError(f"{what} must be a positive integer")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{what} must be a positive integer") from None
    if number <= 0:
        raise ValidationError(f"{what} must be a positive integer")
    return number


class Scheduler:
    def __init__(
        self,
        state: ClusterState,
        driver: RuntimeDriver,
        policy: Optional[PlacementPolicy] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.state = state
        self.driver = driver
        self.policy = policy or PlacementPolicy()
        self.clock = clock
        self._pod_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._pod_locks_guard = threading.Lock()
        self._adding_nodes = set()

    # Read side

    def get_node(self, node_id: str) -> Node:
        node = self.state.get_node(node_id)
        if node is None:
            raise NotFoundError(f"Node {node_id} not found")
        return node

    def get_workload(self, pod_id: str) -> Pod:
        pod = self.state.get_workload(pod_id)
        if pod is None:
            raise NotFoundError(f"Pod {pod_id} not found")
        return pod

    def list_nodes(self) -> List[Node]:
        return self.state.list_nodes()

    def list_workloads(self) -> List[Pod]:
        return self.state.list_workloads()

    def get_algorithm(self) -> str:
        return self.policy.algorithm

    def set_algorithm(self, algorithm: str) -> str:
        self.policy.algorithm = algorithm
        logger.info(f"Scheduling algorithm set to {algorithm}")
        return algorithm

    def cluster_stats(self) -> Dict[str, Any]:
        with self.state.lock:
            nodes = self.state.list_nodes()
            pods = self.state.list_workloads()
        return {
            "total_nodes": len(nodes),
            "healthy_nodes": sum(1 for n in nodes if n.status == HEALTHY),
            "total_cpu": sum(n.total_capacity for n in nodes),
            "available_cpu": sum(n.available_capacity for n in nodes),
            "total_pods": len(pods),
            "running_pods": sum(1 for p in pods if p.status == RUNNING),
            "pending_pods": sum(1 for p in pods if p.status == PENDING),
            "error_pods": sum(1 for p in pods if p.status == ERROR),
            "algorithm": self.policy.algorithm,
        }

    # Nodes

    def add_node(self, node_id: str, cpu_cores: Any) -> Node:
        if not node_id or not isinstance(node_id, str):
            raise ValidationError("Node ID is required")
        cpu_cores = positive_int(cpu_cores, "CPU cores")

        with self.state.lock:
            if self.state.has_node(node_id) or node_id in self._adding_nodes:
                raise ConflictError(f"Node {node_id} already exists")
            self._adding_nodes.add(node_id)
        try:
            labels = {"type": "cluster-node", "node": node_id, "cpu": str(cpu_cores)}
            unit_id = self._call_driver(
                ProvisionError, f"launch container for node {node_id}", self.driver.provision_node_unit, labels
            )
            node = Node(
                id=node_id,
                total_capacity=cpu_cores,
                available_capacity=cpu_cores,
                runtime_unit_id=unit_id,
                last_heartbeat=self.clock(),
            )
            with self.state.lock:
                node = self.state.insert_node(node)
        finally:
            with self.state.lock:
                self._adding_nodes.discard(node_id)

        logger.info(f"Node added: {node_id} with {cpu_cores} CPU cores (container {unit_id})")
        return node

    def update_node(self, node_id: str, cpu_cores: Any) -> Node:
        cpu_cores = positive_int(cpu_cores, "CPU cores")
        with self.state.lock:
            node = self.get_node(node_id)
            used = node.total_capacity - node.available_capacity
            required = used + self.state.reserved_on(node_id)
            if cpu_cores < required:
                raise InsufficientCapacityError(
                    f"Cannot reduce CPU cores to {cpu_cores}. Current pods require {required} cores."
                )
            node = self.state.update_node(node_id, total_capacity=cpu_cores, available_capacity=cpu_cores - used)
        logger.info(f"Node {node_id} resized to {cpu_cores} CPU cores")
        return node

    def remove_node(self, node_id: str) -> Removal:
        with self.state.lock:
            node = self.state.remove_node(node_id)
        logger.info(f"Node removed: {node_id}")
        cleanup = self._destroy_best_effort(node.runtime_unit_id, f"remove container for node {node_id}")
        return Removal(node, cleanup)

    def record_heartbeat(self, node_id: str) -> Node:
        with self.state.lock:
            previous = self.get_node(node_id).status
            node = self.state.update_node(node_id, last_heartbeat=self.clock(), status=HEALTHY)
        heartbeat_logger.info(f"Heartbeat from node {node_id}")
        if previous != HEALTHY:
            logger.info(f"Node {node_id} recovered via heartbeat")
        return node

    def mark_unhealthy(self, node_id: str, now: Optional[float] = None, timeout: Optional[float] = None) -> bool:
        """Flag a node unhealthy. Returns True when its status changed.

        With ``now`` and ``timeout`` the heartbeat is checked again under the
        store lock, so a heartbeat that landed after the caller looked wins.
        """
        with self.state.lock:
            node = self.state.get_node(node_id)
            if node is None or node.status == UNHEALTHY:
                return False
            if timeout is not None and now is not None and now - node.last_heartbeat <= timeout:
                return False
            self.state.update_node(node_id, status=UNHEALTHY)
        return True

    # Pods

    def create_workload(self, cpu_requirement: Any) -> Pod:
        cpu_requirement = positive_int(cpu_requirement, "CPU requirement")
        pod_id = new_pod_id()

        with self.state.lock:
            algorithm = self.policy.algorithm
            node_id = self._place(cpu_requirement, algorithm=algorithm)
            if node_id is None:
                raise NoCapacityError("No suitable node found for pod scheduling")
            self.state.reserve(pod_id, node_id, cpu_requirement)

        unit_id = self._provision_pod_unit(pod_id, node_id)

        with self.state.lock:
            self.state.release_reservation(pod_id)
            pod = self.state.insert_workload(
                Pod(
                    id=pod_id,
                    cpu_requirement=cpu_requirement,
                    node_id=node_id,
                    runtime_unit_id=unit_id,
                    status=RUNNING,
                    created_at=self.clock(),
                )
            )
        logger.info(f"Pod {pod_id} (CPU: {cpu_requirement}) scheduled on node {node_id} via {algorithm}")
        return pod

    def update_workload(self, pod_id: str, cpu_requirement: Any) -> Pod:
        cpu_requirement = positive_int(cpu_requirement, "CPU requirement")
        with self._pod_lock(pod_id):
            with self.state.lock:
                pod = self.get_workload(pod_id)
                if pod.node_id is not None:
                    delta = cpu_requirement - pod.cpu_requirement
                    if self.state.free_capacity(pod.node_id) < delta:
                        raise InsufficientCapacityError(
                            f"Node {pod.node_id} does not have enough resources for the updated CPU requirement"
                        )
                pod = self.state.update_workload(pod_id, cpu_requirement=cpu_requirement)
        logger.info(f"Pod {pod_id} CPU requirement set to {cpu_requirement}")
        return pod

    def remove_workload(self, pod_id: str) -> Removal:
        with self._pod_lock(pod_id):
            with self.state.lock:
                pod = self.state.remove_workload(pod_id)
            logger.info(f"Pod {pod_id} removed from node {pod.node_id}")
            cleanup = self._destroy_best_effort(pod.runtime_unit_id, f"remove container for pod {pod_id}")
        return Removal(pod, cleanup)

    def reschedule_pod(self, pod_id: str) -> Relocation:
        """Move a pod to a node chosen by the active policy.

        Unlike a destroy-then-provision move, the replacement unit is started
        before the old one is destroyed, and the pod stays committed to its old
        node until the new unit exists. If
        provisioning fails the pod is left where it was; a pod that had no
        node to begin with (``pending`` or ``error``) ends up in ``error``.
        If no node fits, the pod is detached, its old unit destroyed, and it
        is parked as ``pending``.

        Pods in ``pending`` and ``error`` are accepted, so this is also how an
        operator brings such a pod back.
        """
        with self._pod_lock(pod_id):
            with self.state.lock:
                pod = self.get_workload(pod_id)
                old_node_id, old_unit_id = pod.node_id, pod.runtime_unit_id
                credit = {old_node_id: pod.cpu_requirement} if old_node_id else None
                target = self._place(pod.cpu_requirement, credit=credit)
                if target is None:
                    self.state.detach(pod_id)
                    self.state.update_workload(pod_id, status=PENDING, runtime_unit_id=None)
                else:
                    self.state.reserve(pod_id, target, pod.cpu_requirement)

            if target is None:
                logger.warning(f"Pod {pod_id} could not be rescheduled: no suitable node. Status: pending")
                self._destroy_best_effort(old_unit_id, f"remove container for pending pod {pod_id}")
                raise NoCapacityError("No suitable node found for pod rescheduling")

            def revert():
                if old_node_id is None:
                    self.state.update_workload(pod_id, status=ERROR)
                    logger.error(f"Pod {pod_id} has no node to fall back to. Status: error")

            new_unit_id = self._provision_pod_unit(pod_id, target, revert)

            with self.state.lock:
                self.state.release_reservation(pod_id)
                self.state.detach(pod_id)
                self.state.attach(pod_id, target)
                pod = self.state.update_workload(pod_id, runtime_unit_id=new_unit_id, status=RUNNING)
            logger.info(f"Pod {pod_id} rescheduled from node {old_node_id} to node {target}")

            cleanup = self._destroy_best_effort(old_unit_id, f"remove old container for pod {pod_id}")
        return Relocation(pod, old_node_id, target, cleanup)

    def reschedule_pending(self) -> Dict[str, List[Dict[str, Any]]]:
        results = {"success": [], "failed": []}
        for pod in self.state.list_workloads():
            if pod.status != PENDING:
                continue
            try:
                relocation = self.reschedule_pod(pod.id)
            except ClusterError as e:
                results["failed"].append({"pod_id": pod.id, "reason": str(e)})
            else:
                results["success"].append({"pod_id": pod.id, "new_node_id": relocation.to_node})
        return results

    # Internals

    @contextmanager
    def _pod_lock(self, pod_id: str):
        with self._pod_locks_guard:
            lock = self._pod_locks[pod_id]
        try:
            with lock:
                yield
        finally:
            # Unknown or removed pods do not keep a lock around.
            if self.state.get_workload(pod_id) is None:
                with self._pod_locks_guard:
                    self._pod_locks.pop(pod_id, None)

    def _place(self, cpu_requirement: int, credit=None, algorithm=None) -> Optional[str]:
        """Choose a node. Caller must hold the store lock."""
        nodes = self.state.list_nodes()
        free = {n.id: n.available_capacity - self.state.reserved_on(n.id) for n in nodes}
        for node_id, cpu in (credit or {}).items():
            if node_id in free:
                free[node_id] += cpu
        return self.policy.select(nodes, cpu_requirement, free=free, algorithm=algorithm)

    def _call_driver(self, error_cls, description, fn, *args):
        try:
            return fn(*args)
        except RuntimeDriverError:
            logger.error(f"Runtime driver failed to {description}")
            raise
        except Exception as e:
            logger.exception(f"Unexpected runtime driver error while trying to {description}")
            raise error_cls(f"Failed to {description}: {e}") from e

    def _provision_pod_unit(self, pod_id: str, node_id: str, compensate: Optional[Callable[[], None]] = None) -> str:
        try:
            return self._call_driver(
                ProvisionError,
                f"launch container for pod {pod_id} on node {node_id}",
                self.driver.provision_workload_unit,
                node_id,
                {"pod": pod_id},
            )
        except RuntimeDriverError as e:
            with self.state.lock:
                self.state.release_reservation(pod_id)
                if compensate:
                    compensate()
            if isinstance(e, ProvisionError):
                raise
            raise ProvisionError(str(e)) from e

    def _destroy_best_effort(self, unit_id: Optional[str], action: str) -> BestEffort:
        if unit_id is None:
            return BestEffort(action)
        try:
            self.driver.destroy_unit(unit_id)
        except Exception as e:
            # The unit leaks; bookkeeping stays correct regardless.
            logger.error(f"Failed to {action} ({unit_id}): {e}")
            return BestEffort(action, unit_id, e)
        logger.info(f"Container {unit_id} removed ({action})")
        return BestEffort(action, unit_id)
