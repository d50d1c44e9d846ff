import logging

from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_socketio import SocketIO
from werkzeug.exceptions import HTTPException

from orchestrator.config import Settings
from orchestrator.docker_utils import build_driver
from orchestrator.errors import (
    ClusterError,
    ConflictError,
    InsufficientCapacityError,
    NoCapacityError,
    NotFoundError,
    RuntimeDriverError,
    ValidationError,
)
from orchestrator.health import HealthMonitor
from orchestrator.logging_config import configure_logging
from orchestrator.placement import PlacementPolicy
from orchestrator.scheduler import Scheduler
from orchestrator.state import ClusterState

logger = logging.getLogger(__name__)

socketio = SocketIO()

ERROR_STATUS = [
    (ValidationError, 400),
    (NotFoundError, 404),
    (ConflictError, 409),
    (InsufficientCapacityError, 409),
    (NoCapacityError, 503),
    (RuntimeDriverError, 502),
]


def status_for(error):
    for error_cls, status in ERROR_STATUS:
        if isinstance(error, error_cls):
            return status
    return 500


def create_app(settings=None, driver=None):
    """Build the API server around a fresh cluster state.

    The health monitor is created but not started; ``main`` starts it.
    """
    settings = settings or Settings.from_env()

    app = Flask(__name__)
    app.config["SETTINGS"] = settings
    CORS(app)
    socketio.init_app(app, cors_allowed_origins="*", async_mode="threading")

    state = ClusterState()
    if driver is None:
        driver = build_driver(settings.driver, settings.node_image, settings.driver_timeout)
    scheduler = Scheduler(state, driver, PlacementPolicy(settings.scheduling_algorithm))
    monitor = HealthMonitor(
        scheduler,
        timeout=settings.heartbeat_timeout,
        interval=settings.health_check_interval,
        retry_pending=settings.retry_pending,
        on_check=lambda report: socketio.emit("health_update", report),
    )
    app.extensions["scheduler"] = scheduler
    app.extensions["health_monitor"] = monitor

    def broadcast():
        socketio.emit(
            "cluster_update",
            {
                "nodes": [n.to_dict() for n in scheduler.list_nodes()],
                "pods": [p.to_dict() for p in scheduler.list_workloads()],
            },
        )

    def body():
        data = request.get_json(silent=True)
        return data if isinstance(data, dict) else {}

    @app.errorhandler(ClusterError)
    def handle_cluster_error(error):
        status = status_for(error)
        if status >= 500:
            logger.error(f"{request.method} {request.path} failed: {error}")
        return jsonify({"success": False, "message": str(error)}), status

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({"success": False, "message": error.description}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        logger.exception(f"Unhandled error on {request.method} {request.path}")
        return jsonify({"success": False, "message": "Internal server error"}), 500

    # Nodes

    @app.route("/api/nodes", methods=["POST"])
    def add_node():
        data = body()
        node = scheduler.add_node(data.get("node_id"), data.get("cpu_cores"))
        broadcast()
        return jsonify({"success": True, "node": node.to_dict()}), 201

    @app.route("/api/nodes", methods=["GET"])
    def list_nodes():
        return jsonify({"success": True, "nodes": [n.to_dict() for n in scheduler.list_nodes()]})

    @app.route("/api/nodes/<node_id>", methods=["GET"])
    def get_node(node_id):
        return jsonify({"success": True, "node": scheduler.get_node(node_id).to_dict()})

    @app.route("/api/nodes/<node_id>", methods=["PUT"])
    def update_node(node_id):
        node = scheduler.update_node(node_id, body().get("cpu_cores"))
        broadcast()
        return jsonify({"success": True, "node": node.to_dict()})

    @app.route("/api/nodes/<node_id>", methods=["DELETE"])
    def remove_node(node_id):
        removal = scheduler.remove_node(node_id)
        broadcast()
        return jsonify({"success": True, "message": f"Node {node_id} removed successfully", **removal.to_dict()})

    @app.route("/api/nodes/<node_id>/heartbeat", methods=["POST"])
    def heartbeat(node_id):
        monitor.record_heartbeat(node_id)
        return jsonify({"success": True, "message": f"Heartbeat recorded for node {node_id}"})

    # Pods

    @app.route("/api/pods", methods=["POST"])
    def create_pod():
        pod = scheduler.create_workload(body().get("cpu_requirement"))
        broadcast()
        return jsonify({"success": True, "pod": pod.to_dict()}), 201

    @app.route("/api/pods", methods=["GET"])
    def list_pods():
        return jsonify({"success": True, "pods": [p.to_dict() for p in scheduler.list_workloads()]})

    @app.route("/api/pods/<pod_id>", methods=["GET"])
    def get_pod(pod_id):
        return jsonify({"success": True, "pod": scheduler.get_workload(pod_id).to_dict()})

    @app.route("/api/pods/<pod_id>", methods=["PUT"])
    def update_pod(pod_id):
        pod = scheduler.update_workload(pod_id, body().get("cpu_requirement"))
        broadcast()
        return jsonify({"success": True, "pod": pod.to_dict()})

    @app.route("/api/pods/<pod_id>", methods=["DELETE"])
    def delete_pod(pod_id):
        removal = scheduler.remove_workload(pod_id)
        broadcast()
        return jsonify({"success": True, "message": f"Pod {pod_id} removed successfully", **removal.to_dict()})

    @app.route("/api/pods/<pod_id>/reschedule", methods=["POST"])
    def reschedule_pod(pod_id):
        try:
            relocation = scheduler.reschedule_pod(pod_id)
        finally:
            broadcast()
        return jsonify({"success": True, **relocation.to_dict()})

    # Scheduler

    @app.route("/api/scheduler/algorithm", methods=["GET"])
    def get_algorithm():
        return jsonify({"success": True, "algorithm": scheduler.get_algorithm()})

    @app.route("/api/scheduler/algorithm", methods=["POST"])
    def set_algorithm():
        algorithm = scheduler.set_algorithm(body().get("algorithm"))
        return jsonify({"success": True, "algorithm": algorithm})

    @app.route("/api/stats", methods=["GET"])
    def cluster_stats():
        return jsonify({"success": True, **scheduler.cluster_stats()})

    return app


def main():
    settings = Settings.from_env()
    configure_logging(settings)
    app = create_app(settings)
    monitor = app.extensions["health_monitor"]
    monitor.start()
    logger.info(f"Starting cluster orchestrator on http://localhost:{settings.port}")
    try:
        socketio.run(app, host="0.0.0.0", port=settings.port, allow_unsafe_werkzeug=True)
    finally:
        monitor.stop()


if __name__ == "__main__":
    main()
