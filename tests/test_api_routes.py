"""
API route integration tests using FastAPI TestClient.
Tests the full HTTP request/response cycle against a fake engine and in-memory storage.
Run: pytest tests/test_api_routes.py -v
"""
import json

import pytest
from fastapi.testclient import TestClient

from channel_studio.api.server import create_app
from channel_studio.persistence.storage import InMemoryFlowStorage
from channel_studio.workspace import FlowWorkspace


@pytest.fixture
def client(fake_engine, storage):
    """TestClient around a fresh app per test."""
    app = create_app(workspace=FlowWorkspace(), engine=fake_engine, storage=storage)
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


def _add(client, node_type):
    r = client.post("/flow/nodes", json={"type": node_type, "position": {"x": 0, "y": 0}})
    assert r.status_code == 200
    return r.json()


def _build_flow(client):
    src = _add(client, "httpListener")
    mid = _add(client, "mapper")
    dst = _add(client, "fileWriter")
    for a, b in ((src, mid), (mid, dst)):
        r = client.post("/flow/edges", json={"source": a["id"], "target": b["id"]})
        assert r.status_code == 200
    return src, mid, dst


# ══════════════════════════════════════════════════════════════════
# SYSTEM / HEALTH
# ══════════════════════════════════════════════════════════════════


class TestSystemRoutes:

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "ok"

    def test_engine_health(self, client, fake_engine):
        assert client.get("/engine/health").json() == {"reachable": True}
        fake_engine.healthy = False
        assert client.get("/engine/health").json() == {"reachable": False}

    def test_engine_channels_and_logs(self, client, fake_engine):
        _build_flow(client)
        client.post("/deploy/toolbar")
        channels = client.get("/engine/channels").json()
        assert channels[0]["channel"]["source"]["type"] == "http_listener"
        assert "deployed" in client.get("/engine/logs").json()[0]["message"]
        fake_engine.fail.add("list")
        assert client.get("/engine/channels").status_code == 502

    def test_openapi_json(self, client):
        schema = client.get("/openapi.json").json()
        assert schema["info"]["title"] == "Channel Studio"
        assert "/flow/edges" in schema["paths"]

    def test_shutdown_closes_engine(self, fake_engine, storage):
        app = create_app(workspace=FlowWorkspace(), engine=fake_engine, storage=storage)
        with TestClient(app):
            assert fake_engine.closed is False
        assert fake_engine.closed is True

    def test_startup_restores_saved_flow(self, fake_engine):
        saved = {
            "nodes": [{"id": "n1", "type": "tcpListener", "position": {"x": 1, "y": 2}, "data": {}}],
            "edges": [],
            "channelName": "Restored",
            "channelId": "6f1d7c1e-2b3a-4c5d-8e9f-0a1b2c3d4e5f",
        }
        app = create_app(
            workspace=FlowWorkspace(), engine=fake_engine,
            storage=InMemoryFlowStorage(json.dumps(saved)),
        )
        with TestClient(app) as c:
            flow = c.get("/flow").json()
        assert flow["channelName"] == "Restored"
        assert [n["id"] for n in flow["nodes"]] == ["n1"]


# ══════════════════════════════════════════════════════════════════
# GRAPH EDITING
# ══════════════════════════════════════════════════════════════════


class TestNodeRoutes:

    def test_add_node(self, client):
        node = _add(client, "tcpListener")
        assert node["type"] == "tcpListener"
        assert node["data"]["port"] == 9090
        assert client.get("/flow").json()["nodes"][0]["id"] == node["id"]

    def test_update_node_field(self, client):
        node = _add(client, "tcpListener")
        r = client.patch(f"/flow/nodes/{node['id']}", json={"field": "port", "value": 2575})
        assert r.status_code == 200
        assert r.json()["data"]["port"] == 2575

    def test_update_invalid_value(self, client):
        node = _add(client, "tcpListener")
        r = client.patch(f"/flow/nodes/{node['id']}", json={"field": "port", "value": 0})
        assert r.status_code == 422

    def test_update_unknown_node(self, client):
        r = client.patch("/flow/nodes/missing", json={"field": "label", "value": "x"})
        assert r.status_code == 404

    def test_delete_node_with_reconnect(self, client):
        src, mid, dst = _build_flow(client)
        r = client.delete(f"/flow/nodes/{mid['id']}", params={"reconnect": "true"})
        assert r.status_code == 200
        bridges = r.json()["bridges"]
        assert len(bridges) == 1
        assert (bridges[0]["source"], bridges[0]["target"]) == (src["id"], dst["id"])

    def test_delete_node_without_reconnect(self, client):
        _, mid, _ = _build_flow(client)
        r = client.delete(f"/flow/nodes/{mid['id']}")
        assert r.json()["bridges"] == []
        assert client.get("/flow").json()["edges"] == []

    def test_delete_unknown_node(self, client):
        assert client.delete("/flow/nodes/missing").status_code == 404

    def test_duplicate_node(self, client):
        node = _add(client, "filter")
        r = client.post(f"/flow/nodes/{node['id']}/duplicate")
        assert r.status_code == 200
        assert r.json()["id"] != node["id"]
        assert r.json()["position"] == {"x": 50.0, "y": 50.0}
        assert client.post("/flow/nodes/missing/duplicate").status_code == 404


class TestEdgeRoutes:

    def test_rejected_connection(self, client):
        src = _add(client, "httpListener")
        dst = _add(client, "fileWriter")
        r = client.post("/flow/edges", json={"source": dst["id"], "target": src["id"]})
        assert r.status_code == 422
        assert r.json()["detail"]["kind"] == "wrong_role"
        assert r.json()["detail"]["reason"]

    def test_cycle_rejected(self, client):
        src, mid, dst = _build_flow(client)
        loop = _add(client, "filter")
        client.post("/flow/edges", json={"source": mid["id"], "target": loop["id"]})
        r = client.post("/flow/edges", json={"source": loop["id"], "target": mid["id"]})
        assert r.status_code == 422
        assert r.json()["detail"]["kind"] == "cycle"

    def test_configuration_rebind(self, client):
        listener = _add(client, "httpListener")
        port_a = _add(client, "portNode")
        port_b = _add(client, "portNode")
        first = client.post("/flow/edges", json={
            "source": port_a["id"], "target": listener["id"], "targetHandle": "config-port",
        }).json()
        second = client.post("/flow/edges", json={
            "source": port_b["id"], "target": listener["id"], "targetHandle": "config-port",
        }).json()
        assert second["replaced_edge_id"] == first["edge"]["id"]
        assert second["edge"]["targetHandle"] == "config-port"
        assert len(client.get("/flow").json()["edges"]) == 1

    def test_delete_edge(self, client):
        src = _add(client, "httpListener")
        dst = _add(client, "fileWriter")
        edge = client.post("/flow/edges", json={"source": src["id"], "target": dst["id"]}).json()["edge"]
        assert client.delete(f"/flow/edges/{edge['id']}").status_code == 200
        assert client.delete(f"/flow/edges/{edge['id']}").status_code == 404


class TestChannelRoutes:

    def test_update_channel(self, client):
        before = client.get("/flow").json()["channelId"]
        r = client.put("/flow/channel", json={"channelName": "ADT Feed", "maxRetries": 4})
        assert r.status_code == 200
        data = r.json()
        assert data["channelName"] == "ADT Feed"
        assert data["maxRetries"] == 4
        assert data["channelId"] == before

    def test_negative_retries_rejected(self, client):
        assert client.put("/flow/channel", json={"maxRetries": -1}).status_code == 422

    def test_compile_preview(self, client):
        src, mid, dst = _build_flow(client)
        r = client.post("/flow/compile")
        assert r.status_code == 200
        doc = r.json()
        assert doc["source"]["type"] == "http_listener"
        assert [p["id"] for p in doc["processors"]] == [mid["id"]]
        assert [d["id"] for d in doc["destinations"]] == [dst["id"]]

    def test_compile_failure(self, client):
        _add(client, "mapper")
        r = client.post("/flow/compile")
        assert r.status_code == 422
        assert "no source" in r.json()["detail"]["reason"]


# ══════════════════════════════════════════════════════════════════
# DEPLOY
# ══════════════════════════════════════════════════════════════════


class TestDeployRoutes:

    def test_deploy_success(self, client, fake_engine):
        _build_flow(client)
        r = client.post("/deploy/toolbar")
        assert r.status_code == 200
        data = r.json()
        assert data["target"] == "toolbar"
        assert data["status"] == "success"
        assert data["run_state"]["run_status"] == "online"
        assert data["run_state"]["is_running"] is True
        assert fake_engine.calls["deploy"] == 1

    def test_deploy_compile_failure(self, client, fake_engine):
        _add(client, "fileWriter")
        data = client.post("/deploy/toolbar").json()
        assert data["status"] == "error"
        assert data["error_message"].startswith("Compile failed")
        assert fake_engine.calls["deploy"] == 0

    def test_toggle(self, client):
        _build_flow(client)
        client.post("/deploy/toolbar")
        r = client.post("/deploy/toolbar/toggle", json={"status": "offline"})
        assert r.status_code == 200
        assert r.json()["status"] == "stopped"
        assert r.json()["run_state"]["is_running"] is False

    def test_toggle_invalid_status(self, client):
        assert client.post("/deploy/toolbar/toggle", json={"status": "paused"}).status_code == 422

    def test_stop_failure(self, client, fake_engine):
        fake_engine.fail.add("stop")
        r = client.post("/channel/stop")
        assert r.status_code == 502

    def test_stop(self, client):
        _build_flow(client)
        client.post("/deploy/toolbar")
        r = client.post("/channel/stop")
        assert r.status_code == 200
        assert r.json()["run_status"] == "offline"

    def test_send_test_message(self, client, fake_engine):
        r = client.post("/channel/test", json={"payload_type": "hl7", "payload": "MSH|^~\\&|"})
        assert r.status_code == 200
        assert r.json()["result"]["accepted"] is True
        fake_engine.fail.add("test")
        assert client.post("/channel/test", json={"payload": "x"}).status_code == 502


# ══════════════════════════════════════════════════════════════════
# PERSISTENCE
# ══════════════════════════════════════════════════════════════════


class TestPersistenceRoutes:

    def test_save_and_load(self, client, storage):
        _build_flow(client)
        r = client.post("/flow/save")
        assert r.status_code == 200
        assert "savedAt" in r.json()
        assert len(json.loads(storage.read())["nodes"]) == 3

        client.post("/flow/reset")
        r = client.post("/flow/load")
        assert r.status_code == 200
        assert len(r.json()["nodes"]) == 3

    def test_load_nothing_stored(self, client):
        assert client.post("/flow/load").status_code == 404

    def test_export(self, client):
        _build_flow(client)
        client.put("/flow/channel", json={"channelName": "Lab Results"})
        r = client.get("/flow/export")
        assert r.status_code == 200
        assert 'filename="lab_results.json"' in r.headers["content-disposition"]
        body = r.json()
        assert body["version"] == "1.0"
        assert body["name"] == "Lab Results"

    def test_import(self, client):
        doc = {
            "nodes": [{"id": "a", "type": "httpListener", "position": {"x": 0, "y": 0}, "data": {}}],
            "edges": [],
            "channelId": "not-a-uuid",
        }
        r = client.post("/flow/import", json=doc)
        assert r.status_code == 200
        data = r.json()
        assert data["channelName"] == "Imported Channel"
        assert data["channelId"] != "not-a-uuid"

    def test_import_invalid(self, client):
        assert client.post("/flow/import", json={"edges": []}).status_code == 422

    def test_reset(self, client):
        _build_flow(client)
        data = client.post("/flow/reset").json()
        assert data["nodes"] == []
        assert data["channelName"] == "New Channel"
        assert data["runState"]["targets"] == {}


# ══════════════════════════════════════════════════════════════════
# METRICS
# ══════════════════════════════════════════════════════════════════


class TestMetricsRoutes:

    def test_ingest_and_read(self, client):
        event = {"channel_id": "c1", "message_id": "m1", "status": "SENT", "timestamp": "2024-05-01T10:00:00Z"}
        assert client.post("/metrics/events", json=event).status_code == 200
        data = client.get("/metrics").json()
        assert data["stats"]["c1"]["sent"] == 1
        assert data["recent"][0]["message_id"] == "m1"

    def test_malformed_event(self, client):
        assert client.post("/metrics/events", json={"status": "SENT"}).status_code == 422
