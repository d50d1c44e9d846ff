import threading
from typing import Dict, List, Optional, Tuple

from orchestrator.errors import ConflictError, NodeBusyError, NotFoundError
from orchestrator.models import Node, Pod


class ClusterState:
    """Authoritative in-memory store of nodes and pods.

    Both maps preserve insertion order, which placement relies on. Readers get
    copies; every write keeps the node's pod list and the pod's ``node_id`` in
    step. ``lock`` is re-entrant so the scheduler can hold it across a
    read-decide-reserve sequence that calls back into the store.

    Reservations are kept in a ledger apart from the committed fields, so a
    listing taken while a driver call is in flight shows the state from before
    that operation.
    """

    def __init__(self):
        self.lock = threading.RLock()
        self._nodes: Dict[str, Node] = {}
        self._pods: Dict[str, Pod] = {}
        self._reservations: Dict[str, Tuple[str, int]] = {}

    # Lookups

    def get_node(self, node_id: str) -> Optional[Node]:
        with self.lock:
            node = self._nodes.get(node_id)
            return node.copy() if node else None

    def get_workload(self, pod_id: str) -> Optional[Pod]:
        with self.lock:
            pod = self._pods.get(pod_id)
            return pod.copy() if pod else None

    def list_nodes(self) -> List[Node]:
        with self.lock:
            return [n.copy() for n in self._nodes.values()]

    def list_workloads(self) -> List[Pod]:
        with self.lock:
            return [p.copy() for p in self._pods.values()]

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    # Nodes

    def insert_node(self, node: Node) -> Node:
        with self.lock:
            if node.id in self._nodes:
                raise ConflictError(f"Node {node.id} already exists")
            self._nodes[node.id] = node.copy()
            return node.copy()

    def remove_node(self, node_id: str) -> Node:
        with self.lock:
            node = self._require_node(node_id)
            if node.workload_ids:
                raise NodeBusyError(
                    f"Cannot remove node {node_id}. It still has {len(node.workload_ids)} pods. "
                    "Reschedule or delete pods first."
                )
            if self.reserved_on(node_id):
                raise NodeBusyError(f"Cannot remove node {node_id}. A pod is being placed on it.")
            return self._nodes.pop(node_id)

    def update_node(self, node_id: str, **fields) -> Node:
        with self.lock:
            node = self._require_node(node_id)
            for name, value in fields.items():
                setattr(node, name, value)
            return node.copy()

    # Pods

    def insert_workload(self, pod: Pod) -> Pod:
        with self.lock:
            if pod.id in self._pods:
                raise ConflictError(f"Pod {pod.id} already exists")
            stored = pod.copy()
            node_id, stored.node_id = stored.node_id, None
            self._pods[stored.id] = stored
            if node_id is not None:
                self.attach(stored.id, node_id)
            return stored.copy()

    def remove_workload(self, pod_id: str) -> Pod:
        with self.lock:
            self._require_pod(pod_id)
            self.detach(pod_id)
            self._reservations.pop(pod_id, None)
            return self._pods.pop(pod_id)

    def update_workload(self, pod_id: str, **fields) -> Pod:
        with self.lock:
            pod = self._require_pod(pod_id)
            if "node_id" in fields:
                raise ValueError("use attach/detach to move a pod")
            if "cpu_requirement" in fields and pod.node_id is not None:
                delta = fields["cpu_requirement"] - pod.cpu_requirement
                self._nodes[pod.node_id].available_capacity -= delta
            for name, value in fields.items():
                setattr(pod, name, value)
            return pod.copy()

    # Node <-> pod relation

    def attach(self, pod_id: str, node_id: str):
        with self.lock:
            pod = self._require_pod(pod_id)
            node = self._require_node(node_id)
            if pod.node_id is not None:
                raise ConflictError(f"Pod {pod_id} is already on node {pod.node_id}")
            node.workload_ids.append(pod_id)
            node.available_capacity -= pod.cpu_requirement
            pod.node_id = node_id

    def detach(self, pod_id: str) -> Optional[str]:
        """Release the pod from its node. Returns the node it was on."""
        with self.lock:
            pod = self._require_pod(pod_id)
            node_id = pod.node_id
            if node_id is None:
                return None
            node = self._nodes.get(node_id)
            if node is not None and pod_id in node.workload_ids:
                node.workload_ids.remove(pod_id)
                node.available_capacity += pod.cpu_requirement
            pod.node_id = None
            return node_id

    # Reservations

    def reserve(self, pod_id: str, node_id: str, cpu: int):
        with self.lock:
            self._require_node(node_id)
            if pod_id in self._reservations:
                raise ConflictError(f"Pod {pod_id} already holds a reservation")
            self._reservations[pod_id] = (node_id, cpu)

    def release_reservation(self, pod_id: str) -> Optional[Tuple[str, int]]:
        with self.lock:
            return self._reservations.pop(pod_id, None)

    def reserved_on(self, node_id: str) -> int:
        with self.lock:
            return sum(cpu for nid, cpu in self._reservations.values() if nid == node_id)

    def free_capacity(self, node_id: str) -> int:
        """Committed free capacity minus in-flight reservations."""
        with self.lock:
            return self._require_node(node_id).available_capacity - self.reserved_on(node_id)

    # Consistency

    def audit(self) -> List[str]:
        """Return a description of every broken accounting invariant."""
        problems = []
        with self.lock:
            for node in self._nodes.values():
                used = 0
                for pod_id in node.workload_ids:
                    pod = self._pods.get(pod_id)
                    if pod is None:
                        problems.append(f"node {node.id} lists unknown pod {pod_id}")
                        continue
                    if pod.node_id != node.id:
                        problems.append(f"node {node.id} lists pod {pod_id} hosted by {pod.node_id}")
                    used += pod.cpu_requirement
                if node.available_capacity + used != node.total_capacity:
                    problems.append(
                        f"node {node.id}: available {node.available_capacity} + used {used} "
                        f"!= total {node.total_capacity}"
                    )
                if not 0 <= node.available_capacity <= node.total_capacity:
                    problems.append(f"node {node.id}: available capacity {node.available_capacity} out of range")
            for pod in self._pods.values():
                if pod.node_id is None:
                    continue
                node = self._nodes.get(pod.node_id)
                if node is None:
                    problems.append(f"pod {pod.id} refs missing node {pod.node_id}")
                elif pod.id not in node.workload_ids:
                    problems.append(f"pod {pod.id} not listed by node {pod.node_id}")
        return problems

    def _require_node(self, node_id: str) -> Node:
        node = self._nodes.get(node_id)
        if node is None:
            raise NotFoundError(f"Node {node_id} not found")
        return node

    def _require_pod(self, pod_id: str) -> Pod:
        pod = self._pods.get(pod_id)
        if pod is None:
            raise NotFoundError(f"Pod {pod_id} not found")
        return pod
