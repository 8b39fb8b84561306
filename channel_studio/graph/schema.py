"""
Flow Graph Schema - node catalogue, per-type attribute schemas, and graph elements.
Every node on the canvas and every edge between handles serializes to these models;
the same shapes travel to the engine inside the deploy request's frontend schema.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, List, Any, FrozenSet, Literal, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from channel_studio.utils.ids import new_id


class NodeRole(str, Enum):
    """Pipeline role of a node type."""
    SOURCE = "source"
    PROCESSOR = "processor"
    DESTINATION = "destination"
    UTILITY = "utility"


class NodeType(str, Enum):
    """All node types from the canvas palette."""
    # Sources
    HTTP_LISTENER = "httpListener"
    TCP_LISTENER = "tcpListener"
    FILE_READER = "fileReader"
    DATABASE_POLLER = "databasePoller"
    TEST_NODE = "testNode"
    # Processors
    LUA_SCRIPT = "luaScript"
    MAPPER = "mapper"
    FILTER = "filter"
    ROUTER = "router"
    HL7_PARSER = "hl7Parser"
    # Destinations
    FILE_WRITER = "fileWriter"
    HTTP_SENDER = "httpSender"
    DATABASE_WRITER = "databaseWriter"
    TCP_SENDER = "tcpSender"
    LUA_DESTINATION = "luaDestination"
    # Configuration providers
    IP_NODE = "ipNode"
    PORT_NODE = "portNode"
    TEXT_NODE = "textNode"
    VARIABLE_NODE = "variableNode"
    # Data-path utilities
    DELAY_NODE = "delayNode"
    LOGGER_NODE = "loggerNode"
    COUNTER_NODE = "counterNode"
    TIMESTAMP_NODE = "timestampNode"
    MERGE_NODE = "mergeNode"
    # Annotations and controls
    COMMENT_NODE = "commentNode"
    DEPLOY_NODE = "deployNode"


class SlotKind(str, Enum):
    """Value kind of a configuration slot or of a configuration provider."""
    NUMERIC = "numeric"
    STRING = "string"
    STRUCTURED = "structured"


CONFIG_HANDLE_PREFIX = "config-"

CONFIG_SLOTS: Dict[str, SlotKind] = {
    "config-port": SlotKind.NUMERIC,
    "config-path": SlotKind.STRING,
    "config-url": SlotKind.STRING,
    "config-host": SlotKind.STRING,
    "config-variables": SlotKind.STRUCTURED,
}

# slot kind -> provider kinds it accepts
SLOT_COMPATIBILITY: Dict[SlotKind, FrozenSet[SlotKind]] = {
    SlotKind.NUMERIC: frozenset({SlotKind.NUMERIC}),
    SlotKind.STRING: frozenset({SlotKind.STRING, SlotKind.NUMERIC}),
    SlotKind.STRUCTURED: frozenset({SlotKind.STRUCTURED}),
}

SECRET_FIELDS: FrozenSet[str] = frozenset({
    "password", "apiKey", "token", "secret", "connectionString", "credentials",
})


# ══════════════════════════════════════════════════════════════════════════════
# Node attribute schemas
# ══════════════════════════════════════════════════════════════════════════════

class NodeData(BaseModel):
    """Base attribute set. Unknown fields are kept as-is."""
    model_config = ConfigDict(
        extra="allow",
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )
    label: str = ""


class HTTPListenerData(NodeData):
    label: str = "HTTP Listener"
    port: int = Field(default=1234, ge=1, le=65535)
    path: str = "/"


class TCPListenerData(NodeData):
    label: str = "TCP Listener"
    port: int = Field(default=9090, ge=1, le=65535)


class FileReaderData(NodeData):
    label: str = "File Reader"
    path: str = "/data/input"
    pattern: str = "*.txt"


class DatabasePollerData(NodeData):
    label: str = "Database Poller"
    query: str = "SELECT * FROM messages"
    interval: int = Field(default=60, ge=1)


class TestNodeData(NodeData):
    label: str = "Test Node"
    payload_type: str = "hl7"
    payload: str = "MSH|^~\\&|..."
    send_mode: Optional[Literal["inject", "http", "tcp"]] = None


class LuaScriptData(NodeData):
    label: str = "Lua Script"
    code: str = "-- Your code here\nreturn msg.content"


class FieldMapping(BaseModel):
    source: str
    target: str


class MapperData(NodeData):
    label: str = "Field Mapper"
    mappings: List[FieldMapping] = Field(
        default_factory=lambda: [FieldMapping(source="field1", target="newField1")]
    )


class FilterData(NodeData):
    label: str = "Message Filter"
    condition: str = 'msg.type == "HL7"'


class Route(BaseModel):
    name: str
    condition: str = ""


class RouterData(NodeData):
    label: str = "Content Router"
    routes: List[Route] = Field(default_factory=lambda: [Route(name="Route A")])


class HL7ParserData(NodeData):
    label: str = "HL7 Parser"
    input_format: str = "hl7v2"
    output_format: str = "fhir"


class FileWriterData(NodeData):
    label: str = "File Writer"
    path: str = "./output"
    filename: Optional[str] = "${timestamp}.txt"
    append: Optional[bool] = None
    encoding: Optional[str] = None


class HTTPSenderData(NodeData):
    label: str = "HTTP Sender"
    url: str = "https://api.example.com"
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "POST"


class DatabaseWriterData(NodeData):
    label: str = "Database Writer"
    table: Optional[str] = "messages"
    mode: str = "insert"
    query: Optional[str] = None


class TCPSenderData(NodeData):
    label: str = "TCP Sender"
    host: str = "127.0.0.1"
    port: int = Field(default=9000, ge=1, le=65535)


class LuaDestinationData(NodeData):
    label: str = "Lua Destination"
    code: str = "-- Your code here\nreturn msg.content"


class IPNodeData(NodeData):
    label: str = "IP Address"
    ip: str = "127.0.0.1"
    subnet: Optional[str] = "255.255.255.0"


class PortNodeData(NodeData):
    label: str = "Port"
    port: int = Field(default=1234, ge=1, le=65535)
    protocol: Optional[str] = "TCP"


class TextNodeData(NodeData):
    label: str = "Text"
    text: str = ""
    value: Optional[str] = None  # resolved template value
    is_template: bool = False


class Variable(BaseModel):
    key: str
    value: str = ""


class VariableNodeData(NodeData):
    label: str = "Variables"
    variables: List[Variable] = Field(default_factory=list)


class CommentNodeData(NodeData):
    label: str = "Comment"
    text: str = "Add notes here..."
    color: str = "#fef3c7"


class DelayNodeData(NodeData):
    label: str = "Delay"
    delay: int = Field(default=1000, ge=0)
    unit: Literal["ms", "s", "m"] = "ms"


class LoggerNodeData(NodeData):
    label: str = "Logger"
    level: Literal["debug", "info", "warn", "error"] = "info"
    prefix: str = ""


class CounterNodeData(NodeData):
    label: str = "Counter"
    count: int = 0
    reset_interval: int = Field(default=0, ge=0)


class TimestampNodeData(NodeData):
    label: str = "Timestamp"
    field: str = "timestamp"
    format: str = "ISO"


class MergeNodeData(NodeData):
    label: str = "Merge"
    mode: str = "first"
    separator: str = ""


class DeployNodeData(NodeData):
    label: str = "Channel Terminal"


# ══════════════════════════════════════════════════════════════════════════════
# Node catalogue
# ══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class NodeSpec:
    """Static description of a node type: role, handles, and attribute schema."""
    node_type: str
    role: NodeRole
    data_model: Type[NodeData]
    data_input: bool
    data_output: bool
    config_slots: FrozenSet[str] = field(default_factory=frozenset)
    provides: Optional[SlotKind] = None

    @property
    def is_config_provider(self) -> bool:
        return self.provides is not None


def _spec(node_type: NodeType, role: NodeRole, model: Type[NodeData], inp: bool, out: bool,
          slots: Tuple[str, ...] = (), provides: Optional[SlotKind] = None) -> NodeSpec:
    return NodeSpec(
        node_type=node_type.value, role=role, data_model=model,
        data_input=inp, data_output=out,
        config_slots=frozenset(slots), provides=provides,
    )


_S, _P, _D, _U = NodeRole.SOURCE, NodeRole.PROCESSOR, NodeRole.DESTINATION, NodeRole.UTILITY

NODE_CATALOGUE: Dict[str, NodeSpec] = {s.node_type: s for s in [
    _spec(NodeType.HTTP_LISTENER, _S, HTTPListenerData, False, True, ("config-port", "config-path")),
    _spec(NodeType.TCP_LISTENER, _S, TCPListenerData, False, True, ("config-port",)),
    _spec(NodeType.FILE_READER, _S, FileReaderData, False, True, ("config-path",)),
    _spec(NodeType.DATABASE_POLLER, _S, DatabasePollerData, False, True),
    _spec(NodeType.TEST_NODE, _S, TestNodeData, False, True, ("config-url",)),

    _spec(NodeType.LUA_SCRIPT, _P, LuaScriptData, True, True, ("config-variables",)),
    _spec(NodeType.MAPPER, _P, MapperData, True, True),
    _spec(NodeType.FILTER, _P, FilterData, True, True),
    _spec(NodeType.ROUTER, _P, RouterData, True, True),
    _spec(NodeType.HL7_PARSER, _P, HL7ParserData, True, True),

    _spec(NodeType.FILE_WRITER, _D, FileWriterData, True, False, ("config-path",)),
    _spec(NodeType.HTTP_SENDER, _D, HTTPSenderData, True, False, ("config-url",)),
    _spec(NodeType.DATABASE_WRITER, _D, DatabaseWriterData, True, False),
    _spec(NodeType.TCP_SENDER, _D, TCPSenderData, True, False, ("config-host", "config-port")),
    _spec(NodeType.LUA_DESTINATION, _D, LuaDestinationData, True, False, ("config-variables",)),

    _spec(NodeType.IP_NODE, _U, IPNodeData, False, False, provides=SlotKind.STRING),
    _spec(NodeType.PORT_NODE, _U, PortNodeData, False, False, provides=SlotKind.NUMERIC),
    _spec(NodeType.TEXT_NODE, _U, TextNodeData, False, False, provides=SlotKind.STRING),
    _spec(NodeType.VARIABLE_NODE, _U, VariableNodeData, False, False, provides=SlotKind.STRUCTURED),

    _spec(NodeType.DELAY_NODE, _U, DelayNodeData, True, True),
    _spec(NodeType.LOGGER_NODE, _U, LoggerNodeData, True, True),
    _spec(NodeType.COUNTER_NODE, _U, CounterNodeData, True, True),
    _spec(NodeType.TIMESTAMP_NODE, _U, TimestampNodeData, True, True),
    _spec(NodeType.MERGE_NODE, _U, MergeNodeData, True, True),

    _spec(NodeType.COMMENT_NODE, _U, CommentNodeData, False, False),
    _spec(NodeType.DEPLOY_NODE, _U, DeployNodeData, False, False),
]}


def get_node_spec(node_type: str) -> NodeSpec:
    """Catalogue entry for a type. Unknown types behave as plain processors."""
    spec = NODE_CATALOGUE.get(node_type)
    if spec is not None:
        return spec
    return NodeSpec(
        node_type=node_type, role=NodeRole.PROCESSOR, data_model=NodeData,
        data_input=True, data_output=True,
    )


def default_node_data(node_type: str) -> Dict[str, Any]:
    spec = get_node_spec(node_type)
    if node_type not in NODE_CATALOGUE:
        return {"label": f"New {node_type}"}
    return spec.data_model().model_dump(by_alias=True, exclude_none=True)


def validate_node_data(node_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate known attributes of a node type and return the normalized mapping.
    Unknown attributes are passed through untouched. Raises pydantic.ValidationError.
    """
    model = get_node_spec(node_type).data_model.model_validate(data)
    return model.model_dump(by_alias=True, exclude_none=True)


def is_config_handle(handle: Optional[str]) -> bool:
    return bool(handle) and handle.startswith(CONFIG_HANDLE_PREFIX)


def slot_accepts(slot_kind: SlotKind, provider_kind: SlotKind) -> bool:
    return provider_kind in SLOT_COMPATIBILITY[slot_kind]


# ══════════════════════════════════════════════════════════════════════════════
# Graph elements
# ══════════════════════════════════════════════════════════════════════════════

class Position(BaseModel):
    """Canvas coordinates. Presentation only."""
    x: float = 0.0
    y: float = 0.0


class Node(BaseModel):
    """A single node in the flow graph."""
    id: str = Field(default_factory=new_id)
    type: str
    position: Position = Field(default_factory=Position)
    data: Dict[str, Any] = Field(default_factory=dict)

    @property
    def spec(self) -> NodeSpec:
        return get_node_spec(self.type)

    @property
    def role(self) -> NodeRole:
        return self.spec.role

    @property
    def label(self) -> str:
        return str(self.data.get("label") or "")


class Connection(BaseModel):
    """A proposed edge between two handles, before it has an identity."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    source: str
    source_handle: Optional[str] = None
    target: str
    target_handle: Optional[str] = None

    @property
    def is_config(self) -> bool:
        return is_config_handle(self.target_handle)

    def endpoint_key(self) -> Tuple[str, Optional[str], str, Optional[str]]:
        return (self.source, self.source_handle, self.target, self.target_handle)


class Edge(Connection):
    """A committed directed edge."""
    id: str = Field(default_factory=new_id)

    @classmethod
    def from_connection(cls, connection: Connection) -> "Edge":
        return cls(**connection.model_dump())
