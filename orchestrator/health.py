import logging
import threading
from typing import Any, Callable, Dict, Optional

from orchestrator.config import HEALTH_CHECK_INTERVAL, HEARTBEAT_TIMEOUT
from orchestrator.errors import ClusterError
from orchestrator.models import HEALTHY
from orchestrator.scheduler import Scheduler

logger = logging.getLogger(__name__)


class HealthMonitor:
    """Marks nodes that stopped sending heartbeats and moves their pods away.

    ``check_node_health`` does one pass and can be called directly; ``start``
    runs it every ``interval`` seconds on a daemon thread until ``stop``.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        timeout: float = HEARTBEAT_TIMEOUT,
        interval: float = HEALTH_CHECK_INTERVAL,
        retry_pending: bool = False,
        on_check: Optional[Callable[[Dict[str, Any]], None]] = None,
    ):
        self.scheduler = scheduler
        self.timeout = timeout
        self.interval = interval
        self.retry_pending = retry_pending
        self.on_check = on_check
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def record_heartbeat(self, node_id: str):
        return self.scheduler.record_heartbeat(node_id)

    def check_node_health(self, now: Optional[float] = None) -> Dict[str, Any]:
        now = self.scheduler.clock() if now is None else now
        report = {"failed_nodes": [], "rescheduled": [], "failed": []}

        for node in self.scheduler.list_nodes():
            if now - node.last_heartbeat <= self.timeout:
                continue
            if self.scheduler.mark_unhealthy(node.id, now=now, timeout=self.timeout):
                logger.warning(f"Node {node.id} missed heartbeat! Last: {now - node.last_heartbeat:.2f}s ago.")
                report["failed_nodes"].append(node.id)
            if node.workload_ids:
                results = self.handle_node_failure(node.id)
                report["rescheduled"].extend(results["success"])
                report["failed"].extend(results["failed"])

        if self.retry_pending:
            results = self.scheduler.reschedule_pending()
            report["rescheduled"].extend(results["success"])
            report["failed"].extend(results["failed"])

        if self.on_check:
            self.on_check(report)
        return report

    def handle_node_failure(self, node_id: str) -> Dict[str, list]:
        results = {"success": [], "failed": []}
        node = self.scheduler.state.get_node(node_id)
        if node is None or node.status == HEALTHY:
            return results

        logger.info(f"Node {node_id} has failed. Rescheduling {len(node.workload_ids)} pods...")
        for pod_id in node.workload_ids:
            try:
                relocation = self.scheduler.reschedule_pod(pod_id)
            except ClusterError as e:
                logger.warning(f"Rescheduling pod {pod_id}: Failed ({e})")
                results["failed"].append({"pod_id": pod_id, "reason": str(e)})
            else:
                logger.info(f"Rescheduling pod {pod_id}: Success ({relocation.to_node})")
                results["success"].append({"pod_id": pod_id, "new_node_id": relocation.to_node})
        return results

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="HealthMonitor", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self):
        logger.info("Health monitor thread started.")
        while not self._stop.wait(self.interval):
            try:
                self.check_node_health()
            except Exception:
                logger.exception("Error in health monitor loop")
        logger.info("Health monitor thread stopped.")
