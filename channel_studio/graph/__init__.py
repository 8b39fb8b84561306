"""Flow Graph Model - node catalogue, graph store, and connection validation"""
from .schema import (
    Node, Edge, Connection, Position, NodeRole, NodeType, NodeSpec, SlotKind,
    get_node_spec, default_node_data,
)
from .store import GraphStore, GraphSnapshot, ConnectResult
from .validation import ValidationResult, RejectionKind, validate_connection

__all__ = [
    "Node",
    "Edge",
    "Connection",
    "Position",
    "NodeRole",
    "NodeType",
    "NodeSpec",
    "SlotKind",
    "get_node_spec",
    "default_node_data",
    "GraphStore",
    "GraphSnapshot",
    "ConnectResult",
    "ValidationResult",
    "RejectionKind",
    "validate_connection",
]
