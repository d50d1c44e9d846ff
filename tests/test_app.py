"""
Tests for the HTTP surface
"""

from unittest.mock import patch

import pytest

from app import create_app
from orchestrator.config import Settings
from orchestrator.docker_utils import SimulatedDriver
from orchestrator.errors import DestroyError


@pytest.fixture
def sim_driver():
    return SimulatedDriver()


@pytest.fixture
def app(sim_driver):
    app = create_app(Settings(driver="simulated"), driver=sim_driver)
    app.config["TESTING"] = True
    yield app
    app.extensions["health_monitor"].stop()


@pytest.fixture
def client(app):
    return app.test_client()


def add_node(client, node_id="n1", cpu_cores=4):
    return client.post("/api/nodes", json={"node_id": node_id, "cpu_cores": cpu_cores})


def launch(client, cpu):
    return client.post("/api/pods", json={"cpu_requirement": cpu})


class TestNodeRoutes:
    def test_add_and_list(self, client):
        response = add_node(client)
        assert response.status_code == 201
        assert response.get_json()["node"]["cpu_cores"] == 4

        nodes = client.get("/api/nodes").get_json()
        assert nodes["success"] is True
        assert [n["node_id"] for n in nodes["nodes"]] == ["n1"]

    def test_missing_fields(self, client):
        response = client.post("/api/nodes", json={"cpu_cores": 2})
        assert response.status_code == 400
        assert response.get_json() == {"success": False, "message": "Node ID is required"}

        response = client.post("/api/nodes", data="not json")
        assert response.status_code == 400

    def test_duplicate_node(self, client):
        add_node(client)
        response = add_node(client)
        assert response.status_code == 409
        assert response.get_json()["message"] == "Node n1 already exists"

    def test_get_unknown_node(self, client):
        response = client.get("/api/nodes/ghost")
        assert response.status_code == 404
        assert response.get_json()["success"] is False

    def test_update_node(self, client):
        add_node(client)
        response = client.put("/api/nodes/n1", json={"cpu_cores": 6})
        assert response.status_code == 200
        assert response.get_json()["node"]["available_cpu_cores"] == 6

    def test_remove_node(self, client):
        add_node(client)
        pod = launch(client, 1).get_json()["pod"]

        assert client.delete("/api/nodes/n1").status_code == 409
        client.delete(f"/api/pods/{pod['pod_id']}")
        response = client.delete("/api/nodes/n1")
        assert response.status_code == 200
        assert response.get_json()["cleanup"]["ok"] is True

    def test_remove_node_reports_cleanup_failure(self, client, sim_driver):
        add_node(client)
        with patch.object(sim_driver, "destroy_unit", side_effect=DestroyError("daemon gone")):
            response = client.delete("/api/nodes/n1")
        body = response.get_json()
        assert response.status_code == 200
        assert body["success"] is True
        assert body["cleanup"] == {
            "action": "remove container for node n1",
            "container_id": "simulated_node_1",
            "ok": False,
            "message": "daemon gone",
        }

    def test_heartbeat(self, client):
        add_node(client)
        assert client.post("/api/nodes/n1/heartbeat").get_json()["success"] is True
        assert client.post("/api/nodes/ghost/heartbeat").status_code == 404


class TestPodRoutes:
    def test_pod_lifecycle(self, client):
        add_node(client, "n1", 4)
        add_node(client, "n2", 8)

        response = launch(client, 2)
        assert response.status_code == 201
        pod = response.get_json()["pod"]
        assert pod["node_id"] == "n1"
        assert pod["status"] == "running"

        assert client.get(f"/api/pods/{pod['pod_id']}").get_json()["pod"]["cpu_requirement"] == 2
        assert client.put(f"/api/pods/{pod['pod_id']}", json={"cpu_requirement": 3}).status_code == 200
        assert client.put(f"/api/pods/{pod['pod_id']}", json={"cpu_requirement": 5}).status_code == 409

        assert client.delete(f"/api/pods/{pod['pod_id']}").status_code == 200
        assert client.get("/api/pods").get_json()["pods"] == []
        assert client.delete(f"/api/pods/{pod['pod_id']}").status_code == 404

    def test_no_capacity(self, client):
        add_node(client, "n1", 2)
        response = launch(client, 3)
        assert response.status_code == 503
        assert response.get_json() == {"success": False, "message": "No suitable node found for pod scheduling"}

    def test_invalid_requirement(self, client):
        add_node(client)
        assert launch(client, -1).status_code == 400
        assert client.post("/api/pods", json={}).status_code == 400

    def test_reschedule(self, app, client):
        add_node(client, "n1", 4)
        add_node(client, "n2", 4)
        pod = launch(client, 2).get_json()["pod"]
        app.extensions["scheduler"].mark_unhealthy("n1")

        response = client.post(f"/api/pods/{pod['pod_id']}/reschedule")
        body = response.get_json()
        assert response.status_code == 200
        assert (body["from_node"], body["to_node"]) == ("n1", "n2")

    def test_reschedule_without_capacity_parks_pod(self, app, client):
        add_node(client, "n1", 4)
        pod = launch(client, 2).get_json()["pod"]
        app.extensions["scheduler"].mark_unhealthy("n1")

        response = client.post(f"/api/pods/{pod['pod_id']}/reschedule")
        assert response.status_code == 503
        assert client.get(f"/api/pods/{pod['pod_id']}").get_json()["pod"]["status"] == "pending"


class TestSchedulerRoutes:
    def test_algorithm(self, client):
        assert client.get("/api/scheduler/algorithm").get_json() == {"success": True, "algorithm": "first-fit"}

        response = client.post("/api/scheduler/algorithm", json={"algorithm": "best-fit"})
        assert response.get_json() == {"success": True, "algorithm": "best-fit"}
        assert client.get("/api/scheduler/algorithm").get_json()["algorithm"] == "best-fit"

        assert client.post("/api/scheduler/algorithm", json={"algorithm": "fastest"}).status_code == 400

    def test_configured_algorithm(self, sim_driver):
        app = create_app(Settings(scheduling_algorithm="worst-fit"), driver=sim_driver)
        assert app.test_client().get("/api/scheduler/algorithm").get_json()["algorithm"] == "worst-fit"

    def test_stats(self, client):
        add_node(client, "n1", 4)
        launch(client, 1)
        stats = client.get("/api/stats").get_json()
        assert stats["success"] is True
        assert stats["total_nodes"] == 1
        assert stats["available_cpu"] == 3
        assert stats["running_pods"] == 1


class TestErrorResponses:
    def test_non_object_body_is_treated_as_empty(self, client):
        response = client.post("/api/nodes", json=[1, 2])
        assert response.status_code == 400
        assert response.get_json() == {"success": False, "message": "Node ID is required"}

    def test_unexpected_error_is_json(self, app, client):
        with patch.object(app.extensions["scheduler"], "cluster_stats", side_effect=RuntimeError("boom")):
            response = client.get("/api/stats")
        assert response.status_code == 500
        assert response.get_json() == {"success": False, "message": "Internal server error"}

    def test_unknown_route_is_json(self, client):
        response = client.get("/api/nowhere")
        assert response.status_code == 404
        assert response.get_json()["success"] is False
