"""Tests for the /projects API endpoints.

All tests use an in-memory SQLite database via the FastAPI TestClient.
No network or Ollama/OpenAI calls are made.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from roadmap.api.app import create_app
from roadmap.db.connection import get_connection
from roadmap.db.migrations import init_db


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def client(tmp_path, monkeypatch):
    """Return a TestClient backed by an isolated in-memory DB.

    The lifespan opens its own connection in a temporary workspace; it is
    replaced with the in-memory one as soon as the client has started.
    """
    monkeypatch.setattr("roadmap.config.settings.workspace_dir", tmp_path)
    conn = get_connection(db_path=":memory:")  # type: ignore[arg-type]
    init_db(conn)
    app = create_app()

    with TestClient(app, raise_server_exceptions=True) as c:
        c.app.state.db = conn
        yield c

    conn.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _create_project(client, title: str = "Thesis", **extra) -> dict:
    resp = client.post("/projects", json={"title": title, **extra})
    assert resp.status_code == 201
    return resp.json()


def _create_node(client, project_id: str, node_type: str, title: str, **extra) -> dict:
    resp = client.post(
        "/nodes",
        json={"project_id": project_id, "type": node_type, "title": title, **extra},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["node"]


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestProjectCrud:
    def test_empty_list(self, client):
        resp = client.get("/projects")
        assert resp.status_code == 200
        assert resp.json() == []

    def test_create_and_get(self, client):
        created = _create_project(client, "ML Thesis", jurusan="CS", timeline="6 months")
        assert created["jurusan"] == "CS"

        resp = client.get(f"/projects/{created['id']}")
        assert resp.status_code == 200
        assert resp.json()["title"] == "ML Thesis"

    def test_create_requires_title(self, client):
        resp = client.post("/projects", json={"jurusan": "CS"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid request"

    def test_get_missing(self, client):
        resp = client.get("/projects/missing")
        assert resp.status_code == 404
        assert "error" in resp.json()

    def test_delete(self, client):
        project = _create_project(client)
        _create_node(client, project["id"], "phase", "P")

        assert client.delete(f"/projects/{project['id']}").status_code == 204
        assert client.get(f"/projects/{project['id']}").status_code == 404

    def test_delete_missing(self, client):
        assert client.delete("/projects/missing").status_code == 404


class TestProjectNodesAndGraph:
    def test_nodes_in_order(self, client):
        project = _create_project(client)
        first = _create_node(client, project["id"], "phase", "First")
        second = _create_node(client, project["id"], "phase", "Second")

        resp = client.get(f"/projects/{project['id']}/nodes")
        assert resp.status_code == 200
        assert [n["id"] for n in resp.json()["nodes"]] == [first["id"], second["id"]]

    def test_graph(self, client):
        project = _create_project(client)
        phase = _create_node(client, project["id"], "phase", "P")
        step = _create_node(client, project["id"], "step", "S", parent_id=phase["id"])

        resp = client.get(f"/projects/{project['id']}/graph")
        assert resp.status_code == 200
        edges = resp.json()["edges"]
        assert edges[0]["id"] == f"e-{phase['id']}-{step['id']}"
        assert edges[0]["sourceHandle"] == "phase-steps"

    def test_graph_missing_project(self, client):
        assert client.get("/projects/missing/graph").status_code == 404


class TestRecalculate:
    def test_recalculate(self, client):
        project = _create_project(client)
        phase = _create_node(client, project["id"], "phase", "Intro")
        _create_node(
            client, project["id"], "step", "Done", parent_id=phase["id"], status="completed"
        )

        resp = client.post(f"/projects/{project['id']}/recalculate")
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["progress"]["progressPercentage"] == 100
        assert body["project"]["metadata"]["currentPhase"] == "Intro"

    def test_missing_project(self, client):
        assert client.post("/projects/missing/recalculate").status_code == 404


class TestCleanupAndFormat:
    def test_cleanup_listed_ids(self, client):
        project = _create_project(client)
        a = _create_node(client, project["id"], "phase", "A")
        _create_node(client, project["id"], "phase", "B")

        resp = client.post(f"/projects/{project['id']}/cleanup", json={"node_ids": [a["id"]]})
        assert resp.status_code == 200
        body = resp.json()
        assert body["deleted"] == 1
        assert [n["title"] for n in body["nodes"]] == ["B"]

    def test_cleanup_without_body(self, client):
        project = _create_project(client)
        _create_node(client, project["id"], "phase", "A")
        resp = client.post(f"/projects/{project['id']}/cleanup")
        assert resp.status_code == 200
        assert resp.json()["deleted"] == 0

    def test_auto_format(self, client):
        project = _create_project(client)
        phase = _create_node(client, project["id"], "phase", "P", position={"x": 900, "y": 900})

        resp = client.post(f"/projects/{project['id']}/auto-format")
        assert resp.status_code == 200
        body = resp.json()
        assert body["updated"] == 1
        assert body["nodes"][0]["id"] == phase["id"]
        assert body["nodes"][0]["position"] == {"x": 100, "y": 100}

    def test_auto_format_twice_is_a_no_op(self, client):
        project = _create_project(client)
        _create_node(client, project["id"], "phase", "P")
        client.post(f"/projects/{project['id']}/auto-format")
        resp = client.post(f"/projects/{project['id']}/auto-format")
        assert resp.json()["updated"] == 0
