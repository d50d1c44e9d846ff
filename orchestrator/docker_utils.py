import concurrent.futures
import itertools
import logging
import threading
import time
from typing import Dict, Optional

import docker
from docker.errors import DockerException, NotFound

from orchestrator.errors import DestroyError, ProvisionError, UnitNotFoundError

logger = logging.getLogger(__name__)

NODE_IMAGE = "alpine"
CPU_PERIOD = 100000
KEEPALIVE_COMMAND = "tail -f /dev/null"


def unique_name(base_name: str) -> str:
    return f"{base_name}-{int(time.time() * 1000)}"


class RuntimeDriver:
    """Creates and destroys the execution units backing nodes and pods.

    Implementations raise ProvisionError, DestroyError or UnitNotFoundError.
    Destroying a unit that is already gone must succeed.
    """

    def provision_node_unit(self, labels: Dict[str, str]) -> str:
        raise NotImplementedError

    def provision_workload_unit(self, node_id: str, labels: Dict[str, str]) -> str:
        raise NotImplementedError

    def destroy_unit(self, unit_id: str):
        raise NotImplementedError

    def inspect_unit(self, unit_id: str) -> str:
        raise NotImplementedError


class DockerDriver(RuntimeDriver):
    def __init__(self, client=None, image: str = NODE_IMAGE):
        self.client = client or docker.from_env()
        self.image = image

    def _run(self, name: str, labels: Dict[str, str], cpu_cores: Optional[int] = None) -> str:
        options = {}
        if cpu_cores:
            options["cpu_period"] = CPU_PERIOD
            options["cpu_quota"] = cpu_cores * CPU_PERIOD
        try:
            container = self.client.containers.run(
                self.image,
                command=KEEPALIVE_COMMAND,
                detach=True,
                name=unique_name(name),
                labels=labels,
                **options,
            )
        except DockerException as e:
            logger.error(f"Error launching container {name}: {e}")
            raise ProvisionError(f"Failed to launch container {name}: {e}") from e
        return container.id

    def provision_node_unit(self, labels):
        cpu = labels.get("cpu")
        return self._run(f"node-{labels.get('node', 'unnamed')}", labels, int(cpu) if cpu else None)

    def provision_workload_unit(self, node_id, labels):
        labels = dict(labels, node=node_id, type="pod")
        return self._run(f"pod-{labels.get('pod', 'unnamed')}", labels)

    def destroy_unit(self, unit_id):
        try:
            container = self.client.containers.get(unit_id)
            container.remove(force=True)
        except NotFound:
            logger.debug(f"Container {unit_id} already gone")
        except DockerException as e:
            raise DestroyError(f"Failed to remove container {unit_id}: {e}") from e

    def inspect_unit(self, unit_id):
        try:
            return self.client.containers.get(unit_id).id
        except NotFound as e:
            raise UnitNotFoundError(f"Container {unit_id} not found") from e
        except DockerException as e:
            raise UnitNotFoundError(f"Could not inspect container {unit_id}: {e}") from e


class SimulatedDriver(RuntimeDriver):
    """Keeps units in memory for clusters run without a Docker daemon."""

    def __init__(self):
        self.units: Dict[str, Dict[str, str]] = {}
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def _create(self, prefix, labels):
        with self._lock:
            unit_id = f"{prefix}_{next(self._counter)}"
            self.units[unit_id] = dict(labels)
        return unit_id

    def provision_node_unit(self, labels):
        return self._create("simulated_node", labels)

    def provision_workload_unit(self, node_id, labels):
        return self._create("simulated_pod", dict(labels, node=node_id, type="pod"))

    def destroy_unit(self, unit_id):
        with self._lock:
            self.units.pop(unit_id, None)

    def inspect_unit(self, unit_id):
        with self._lock:
            if unit_id not in self.units:
                raise UnitNotFoundError(f"Unit {unit_id} not found")
        return unit_id


class TimeoutDriver(RuntimeDriver):
    """Bounds every call into the wrapped driver.

    A call that outlives ``timeout`` is reported as failed; its worker thread
    is left to finish on its own. A provision that completes after its caller
    gave up has its unit destroyed, since nothing records it.
    """

    def __init__(self, driver: RuntimeDriver, timeout: float, max_workers: int = 8):
        self.driver = driver
        self.timeout = timeout
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="RuntimeDriver"
        )

    def _call(self, error_cls, description, fn, *args, on_late=None):
        future = self._executor.submit(fn, *args)
        try:
            return future.result(timeout=self.timeout)
        except concurrent.futures.TimeoutError as e:
            logger.error(f"Runtime driver timed out after {self.timeout}s: {description}")
            if on_late:
                future.add_done_callback(on_late)
            raise error_cls(f"Timed out after {self.timeout}s: {description}") from e

    def provision_node_unit(self, labels):
        return self._call(
            ProvisionError,
            "provision node unit",
            self.driver.provision_node_unit,
            labels,
            on_late=self._destroy_late,
        )

    def provision_workload_unit(self, node_id, labels):
        return self._call(
            ProvisionError,
            f"provision pod unit on {node_id}",
            self.driver.provision_workload_unit,
            node_id,
            labels,
            on_late=self._destroy_late,
        )

    def _destroy_late(self, future):
        if future.cancelled() or future.exception() is not None:
            return
        unit_id = future.result()
        logger.warning(f"Unit {unit_id} was provisioned after its call timed out; destroying it")
        try:
            self.driver.destroy_unit(unit_id)
        except Exception:
            logger.exception(f"Failed to destroy late unit {unit_id}")

    def destroy_unit(self, unit_id):
        return self._call(DestroyError, f"destroy {unit_id}", self.driver.destroy_unit, unit_id)

    def inspect_unit(self, unit_id):
        return self._call(UnitNotFoundError, f"inspect {unit_id}", self.driver.inspect_unit, unit_id)

    def shutdown(self):
        self._executor.shutdown(wait=False)


def build_driver(kind: str = "docker", image: str = NODE_IMAGE, timeout: Optional[float] = None) -> RuntimeDriver:
    """Docker when reachable, otherwise the simulated driver."""
    driver: RuntimeDriver
    if kind == "simulated":
        driver = SimulatedDriver()
    else:
        try:
            driver = DockerDriver(image=image)
        except DockerException as e:
            logger.warning(f"Docker not available - using simulated driver ({e})")
            driver = SimulatedDriver()
    if timeout:
        driver = TimeoutDriver(driver, timeout)
    return driver
