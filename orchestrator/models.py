import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional


# Node status
HEALTHY = "healthy"
UNHEALTHY = "unhealthy"

# Pod status
RUNNING = "running"
PENDING = "pending"
ERROR = "error"


@dataclass
class Node:
    id: str
    total_capacity: int
    available_capacity: int
    runtime_unit_id: Optional[str] = None
    workload_ids: List[str] = field(default_factory=list)
    status: str = HEALTHY
    last_heartbeat: float = field(default_factory=time.time)

    def copy(self) -> "Node":
        return replace(self, workload_ids=list(self.workload_ids))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.id,
            "cpu_cores": self.total_capacity,
            "available_cpu_cores": self.available_capacity,
            "pods": list(self.workload_ids),
            "status": self.status,
            "last_heartbeat": self.last_heartbeat,
            "container_id": self.runtime_unit_id,
        }


@dataclass
class Pod:
    id: str
    cpu_requirement: int
    node_id: Optional[str] = None
    runtime_unit_id: Optional[str] = None
    status: str = RUNNING
    created_at: float = field(default_factory=time.time)

    @property
    def attached(self) -> bool:
        return self.node_id is not None

    def copy(self) -> "Pod":
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pod_id": self.id,
            "cpu_requirement": self.cpu_requirement,
            "node_id": self.node_id,
            "container_id": self.runtime_unit_id,
            "status": self.status,
            "created_at": self.created_at,
        }


@dataclass
class BestEffort:
    """Outcome of a cleanup step whose failure is tolerated.

    A failed best-effort step never turns the surrounding operation into a
    failure; the error is kept here so callers can report or assert on it.
    """

    action: str
    unit_id: Optional[str] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "container_id": self.unit_id,
            "ok": self.ok,
            "message": str(self.error) if self.error else None,
        }


@dataclass
class Removal:
    """A node or pod removed from the cluster plus its backing-unit cleanup."""

    entity: Any
    cleanup: BestEffort

    def to_dict(self) -> Dict[str, Any]:
        return {"removed": self.entity.to_dict(), "cleanup": self.cleanup.to_dict()}


@dataclass
class Relocation:
    pod: Pod
    from_node: Optional[str]
    to_node: str
    cleanup: BestEffort

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pod": self.pod.to_dict(),
            "from_node": self.from_node,
            "to_node": self.to_node,
            "cleanup": self.cleanup.to_dict(),
        }
