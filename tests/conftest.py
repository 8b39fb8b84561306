"""
Shared fixtures for the Channel Studio test suite.
"""
import sys
import os
import asyncio
from typing import Any, Dict, List, Optional, Set, Tuple, Union

import pytest

# Ensure project root is on sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

# Set env vars before any imports that read them
os.environ["ENVIRONMENT"] = "dev"
os.environ.setdefault("ENGINE_URL", "http://engine.test/api")
os.environ.setdefault("ENGINE_API_KEY", "")

from channel_studio.errors import EngineRequestError  # noqa: E402


class FakeEngine:
    """
    In-memory stand-in for EngineClient. Counts calls per operation.

    `fail` holds operation names ("deploy", "start", "stop", "test") that always fail,
    or (operation, call_index) pairs that fail once. `gates` maps a deploy call index
    to an asyncio.Event the call waits on before finishing.
    """

    def __init__(self):
        self.calls: Dict[str, int] = {"deploy": 0, "start": 0, "stop": 0, "test": 0}
        self.deployed: List[Tuple[Any, Dict[str, Any]]] = []
        self.fail: Set[Union[str, Tuple[str, int]]] = set()
        self.gates: Dict[int, asyncio.Event] = {}
        self.healthy = True
        self.closed = False

    def _check(self, op: str, call: int) -> None:
        if op in self.fail or (op, call) in self.fail:
            raise EngineRequestError(f"{op} rejected by engine", status_code=500)

    def _count(self, op: str) -> int:
        call = self.calls[op]
        self.calls[op] += 1
        return call

    async def deploy_channel(self, channel, frontend_schema):
        call = self._count("deploy")
        self.deployed.append((channel, frontend_schema))
        gate = self.gates.get(call)
        if gate is not None:
            await gate.wait()
        self._check("deploy", call)
        return {"id": channel.id}

    async def start_channel(self, channel_id: str) -> None:
        self._check("start", self._count("start"))

    async def stop_channel(self, channel_id: str) -> None:
        self._check("stop", self._count("stop"))

    async def test_channel(self, channel_id: str, payload_type: str, payload: str):
        self._check("test", self._count("test"))
        return {"accepted": True, "payload_type": payload_type}

    async def list_channels(self):
        if "list" in self.fail:
            raise EngineRequestError("list rejected by engine", status_code=503)
        return [{"channel": channel.to_document(), "frontend_schema": schema} for channel, schema in self.deployed]

    async def get_logs(self):
        return [{"level": "info", "message": f"deployed {channel.id}"} for channel, _ in self.deployed]

    async def health_check(self) -> bool:
        return self.healthy

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def graph_store():
    """Fresh, empty GraphStore."""
    from channel_studio.graph.store import GraphStore
    return GraphStore()


@pytest.fixture
def workspace():
    """Fresh FlowWorkspace with an empty graph."""
    from channel_studio.workspace import FlowWorkspace
    return FlowWorkspace()


@pytest.fixture
def compiler():
    from channel_studio.compiler.compiler import FlowCompiler
    return FlowCompiler()


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def storage():
    """In-memory single-slot flow storage."""
    from channel_studio.persistence.storage import InMemoryFlowStorage
    return InMemoryFlowStorage()


@pytest.fixture
def gateway(storage):
    from channel_studio.persistence.gateway import PersistenceGateway
    return PersistenceGateway(storage)


@pytest.fixture
def orchestrator(workspace, fake_engine, gateway):
    """DeployOrchestrator wired to the fake engine and in-memory storage."""
    from channel_studio.deploy.orchestrator import DeployOrchestrator
    return DeployOrchestrator(workspace, fake_engine, gateway=gateway)


@pytest.fixture
def linear_flow(workspace):
    """HTTP listener -> mapper -> file writer, built through the store. Returns node ids."""
    graph = workspace.graph
    source = graph.add_node("httpListener", {"x": 0, "y": 0})
    mapper = graph.add_node("mapper", {"x": 200, "y": 0})
    writer = graph.add_node("fileWriter", {"x": 400, "y": 0})
    assert graph.connect({"source": source.id, "target": mapper.id}).accepted
    assert graph.connect({"source": mapper.id, "target": writer.id}).accepted
    return {"source": source.id, "mapper": mapper.id, "writer": writer.id}
