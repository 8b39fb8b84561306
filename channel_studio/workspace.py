"""
Flow Workspace - the owned state container for one channel being edited.

Holds the graph store, the channel metadata and the deploy run state. Consumers
(compiler, orchestrator, persistence gateway, API) receive the workspace explicitly.
"""

from typing import Optional, Dict, List, Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from channel_studio.config.settings import settings
from channel_studio.deploy.state import RunState
from channel_studio.graph.schema import Edge, Node
from channel_studio.graph.store import GraphStore
from channel_studio.utils.ids import new_id


class Channel(BaseModel):
    """Channel metadata. The id survives saves and exports."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )

    channel_id: str = Field(default_factory=new_id)
    channel_name: str = Field(default_factory=lambda: settings.default_channel_name)
    error_destination_id: Optional[str] = None
    max_retries: int = Field(default_factory=lambda: settings.default_max_retries, ge=0)


class FlowSnapshot(BaseModel):
    """Detached copy of the graph plus channel metadata at one point in time."""
    nodes: List[Node]
    edges: List[Edge]
    channel: Channel

    def frontend_schema(self) -> Dict[str, Any]:
        """The editor-side representation the engine stores for later reload."""
        return {
            "nodes": [n.model_dump(mode="json") for n in self.nodes],
            "edges": [e.model_dump(mode="json", by_alias=True) for e in self.edges],
            "channelName": self.channel.channel_name,
            "channelId": self.channel.channel_id,
            "errorDestinationId": self.channel.error_destination_id,
            "maxRetries": self.channel.max_retries,
        }


class FlowWorkspace:
    """Graph, channel metadata and run state for the channel being edited."""

    def __init__(self, graph: Optional[GraphStore] = None, channel: Optional[Channel] = None):
        self.graph = graph or GraphStore()
        self.channel = channel or Channel()
        self.run_state = RunState()

    def snapshot(self) -> FlowSnapshot:
        graph = self.graph.snapshot()
        return FlowSnapshot(nodes=graph.nodes, edges=graph.edges, channel=self.channel.model_copy())

    def update_channel(self, **fields: Any) -> Channel:
        """Validate and apply channel metadata changes (name, error destination, retries)."""
        merged = {**self.channel.model_dump(), **fields}
        merged["channel_id"] = self.channel.channel_id
        self.channel = Channel.model_validate(merged)
        return self.channel

    def reset(self) -> None:
        """Empty graph, fresh channel, no deploy history."""
        self.graph.clear()
        self.channel = Channel(channel_name="New Channel")
        self.run_state.reset()
