"""
Channel Studio - FastAPI Server
REST control surface for the flow editor: graph editing, connection validation,
channel compilation preview, deploy/start/stop, persistence, and live status metrics.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional, Dict, Any

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from channel_studio import __version__
from channel_studio.config.settings import settings
from channel_studio.deploy.orchestrator import DeployOrchestrator
from channel_studio.deploy.state import RunStatus
from channel_studio.engine_client.client import EngineClient
from channel_studio.errors import EngineRequestError, FlowCompileError, FlowDocumentError, InvalidNodeData
from channel_studio.graph.schema import Connection, Position
from channel_studio.metrics.stream import MetricsAggregator
from channel_studio.persistence.gateway import PersistenceGateway
from channel_studio.persistence.storage import FlowStorage, JsonFileFlowStorage
from channel_studio.workspace import FlowWorkspace

logger = logging.getLogger(__name__)


# ── Request Models ────────────────────────────────────────────────────────────

class AddNodeRequest(BaseModel):
    type: str
    position: Optional[Position] = None


class UpdateNodeFieldRequest(BaseModel):
    field: str
    value: Any = None


class UpdateChannelRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    channel_name: Optional[str] = None
    error_destination_id: Optional[str] = None
    max_retries: Optional[int] = Field(default=None, ge=0)


class ToggleRequest(BaseModel):
    status: RunStatus


class TestMessageRequest(BaseModel):
    payload_type: str = "hl7"
    payload: str


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(
    workspace: Optional[FlowWorkspace] = None,
    engine: Optional[EngineClient] = None,
    storage: Optional[FlowStorage] = None,
) -> FastAPI:
    """Build the API around one workspace. Collaborators default to settings-driven instances."""
    configure_logging()

    workspace = workspace or FlowWorkspace()
    engine = engine or EngineClient()
    gateway = PersistenceGateway(storage or JsonFileFlowStorage(settings.flow_storage_path))
    orchestrator = DeployOrchestrator(workspace, engine, gateway=gateway)
    metrics = MetricsAggregator()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"[CHANNEL STUDIO] Starting (engine={settings.engine_url})")
        if gateway.load(workspace):
            logger.info(f"[CHANNEL STUDIO] Restored channel {workspace.channel.channel_id}")
        yield
        await engine.close()

    app = FastAPI(
        title="Channel Studio",
        description="Build integration channels as flow graphs and deploy them to the engine.",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.workspace = workspace
    app.state.orchestrator = orchestrator
    app.state.gateway = gateway
    app.state.metrics = metrics

    def flow_state() -> Dict[str, Any]:
        return {
            **workspace.snapshot().frontend_schema(),
            "runState": workspace.run_state.to_dict(),
        }

    # ── System ────────────────────────────────────────────────────

    @app.get("/health", tags=["System"])
    async def health():
        return {"status": "ok", "service": "channel-studio", "version": __version__}

    @app.get("/engine/health", tags=["System"])
    async def engine_health():
        return {"reachable": await engine.health_check()}

    @app.get("/engine/channels", tags=["System"])
    async def engine_channels():
        try:
            return await engine.list_channels()
        except EngineRequestError as e:
            raise HTTPException(502, str(e))

    @app.get("/engine/logs", tags=["System"])
    async def engine_logs():
        try:
            return await engine.get_logs()
        except EngineRequestError as e:
            raise HTTPException(502, str(e))

    # ── Graph ─────────────────────────────────────────────────────

    @app.get("/flow", tags=["Flow"])
    async def get_flow():
        return flow_state()

    @app.post("/flow/nodes", tags=["Flow"])
    async def add_node(req: AddNodeRequest):
        node = workspace.graph.add_node(req.type, req.position)
        return node.model_dump(mode="json")

    @app.patch("/flow/nodes/{node_id}", tags=["Flow"])
    async def update_node_field(node_id: str, req: UpdateNodeFieldRequest):
        if workspace.graph.get_node(node_id) is None:
            raise HTTPException(404, f"Node '{node_id}' not found")
        try:
            node = workspace.graph.update_node_field(node_id, req.field, req.value)
        except InvalidNodeData as e:
            raise HTTPException(422, str(e))
        return node.model_dump(mode="json")

    @app.delete("/flow/nodes/{node_id}", tags=["Flow"])
    async def delete_node(node_id: str, reconnect: bool = Query(default=False)):
        if workspace.graph.get_node(node_id) is None:
            raise HTTPException(404, f"Node '{node_id}' not found")
        bridges = []
        if reconnect:
            bridges = workspace.graph.delete_node_and_reconnect(node_id)
        else:
            workspace.graph.delete_node(node_id)
        return {
            "status": "deleted",
            "node_id": node_id,
            "bridges": [e.model_dump(mode="json", by_alias=True) for e in bridges],
        }

    @app.post("/flow/nodes/{node_id}/duplicate", tags=["Flow"])
    async def duplicate_node(node_id: str):
        clone = workspace.graph.duplicate_node(node_id)
        if clone is None:
            raise HTTPException(404, f"Node '{node_id}' not found")
        return clone.model_dump(mode="json")

    @app.post("/flow/edges", tags=["Flow"])
    async def connect(candidate: Connection):
        result = workspace.graph.connect(candidate)
        if not result.accepted:
            raise HTTPException(422, {"reason": result.reason, "kind": result.kind.value})
        return {
            "edge": result.edge.model_dump(mode="json", by_alias=True),
            "replaced_edge_id": result.replaced_edge_id,
        }

    @app.delete("/flow/edges/{edge_id}", tags=["Flow"])
    async def delete_edge(edge_id: str):
        if not workspace.graph.delete_edge(edge_id):
            raise HTTPException(404, f"Edge '{edge_id}' not found")
        return {"status": "deleted", "edge_id": edge_id}

    @app.put("/flow/channel", tags=["Flow"])
    async def update_channel(req: UpdateChannelRequest):
        channel = workspace.update_channel(**req.model_dump(exclude_unset=True))
        return channel.model_dump(mode="json", by_alias=True)

    @app.post("/flow/compile", tags=["Flow"])
    async def compile_flow():
        try:
            compiled = orchestrator.compile_current()
        except FlowCompileError as e:
            raise HTTPException(422, {"reason": str(e), "node_id": e.node_id})
        return compiled.to_document()

    # ── Deploy ────────────────────────────────────────────────────

    @app.post("/deploy/{target_key}", tags=["Deploy"])
    async def deploy(target_key: str):
        status = await orchestrator.execute_deploy(target_key)
        return {
            "target": target_key,
            **status.model_dump(mode="json"),
            "run_state": workspace.run_state.to_dict(),
        }

    @app.post("/deploy/{target_key}/toggle", tags=["Deploy"])
    async def toggle(target_key: str, req: ToggleRequest):
        status = await orchestrator.toggle_channel_status(target_key, req.status)
        return {
            "target": target_key,
            **status.model_dump(mode="json"),
            "run_state": workspace.run_state.to_dict(),
        }

    @app.post("/channel/stop", tags=["Deploy"])
    async def stop_channel():
        try:
            await orchestrator.stop_current_channel()
        except EngineRequestError as e:
            raise HTTPException(502, str(e))
        return workspace.run_state.to_dict()

    @app.post("/channel/test", tags=["Deploy"])
    async def test_channel(req: TestMessageRequest):
        try:
            result = await orchestrator.test_channel(req.payload_type, req.payload)
        except EngineRequestError as e:
            raise HTTPException(502, str(e))
        return {"status": "sent", "result": result}

    # ── Persistence ───────────────────────────────────────────────

    @app.post("/flow/save", tags=["Persistence"])
    async def save_flow():
        document = gateway.save(workspace)
        return {"status": "saved", "savedAt": document["savedAt"]}

    @app.post("/flow/load", tags=["Persistence"])
    async def load_flow(data: Optional[Dict[str, Any]] = None):
        if not gateway.load(workspace, data):
            raise HTTPException(404, "No stored flow to load")
        return flow_state()

    @app.get("/flow/export", tags=["Persistence"])
    async def export_flow():
        filename = gateway.export_filename(workspace)
        return JSONResponse(
            gateway.export(workspace),
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @app.post("/flow/import", tags=["Persistence"])
    async def import_flow(data: Dict[str, Any]):
        try:
            gateway.import_flow(workspace, data)
        except FlowDocumentError as e:
            raise HTTPException(422, str(e))
        return flow_state()

    @app.post("/flow/reset", tags=["Persistence"])
    async def reset_flow():
        gateway.reset(workspace)
        return flow_state()

    # ── Metrics ───────────────────────────────────────────────────

    @app.post("/metrics/events", tags=["Metrics"])
    async def ingest_event(event: Dict[str, Any]):
        update = metrics.ingest(event)
        if update is None:
            raise HTTPException(422, "Malformed status event")
        return {"status": "recorded"}

    @app.get("/metrics", tags=["Metrics"])
    async def get_metrics():
        return {
            "stats": {k: v.model_dump() for k, v in metrics.all_stats().items()},
            "recent": [u.model_dump(mode="json") for u in metrics.recent()],
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8080)
