"""
Graph Store - authoritative set of nodes and edges for one flow.

Invariants held after every mutation:
- every edge's source and target reference existing nodes
- deleting a node removes every edge that touches it
- node ids and edge ids are unique
- a configuration slot on a node is bound by at most one edge
"""

import copy
import logging
import random
from typing import Optional, Dict, List, Any, Iterable, Union

from pydantic import BaseModel, ValidationError

from channel_studio.errors import InvalidNodeData
from channel_studio.graph.schema import (
    Connection, Edge, Node, Position, default_node_data, validate_node_data,
)
from channel_studio.graph.validation import RejectionKind, ValidationResult, validate_connection
from channel_studio.utils.ids import new_id

logger = logging.getLogger(__name__)

DUPLICATE_OFFSET = 50.0


class ConnectResult(BaseModel):
    """Outcome of a connect request. Rejections carry the validator's reason."""
    accepted: bool
    edge: Optional[Edge] = None
    reason: Optional[str] = None
    kind: Optional[RejectionKind] = None
    replaced_edge_id: Optional[str] = None


class GraphSnapshot(BaseModel):
    """Detached copy of the graph, safe to hand to the compiler or the engine."""
    nodes: List[Node]
    edges: List[Edge]


class GraphStore:
    """
    Owns the nodes and edges of a flow graph. Insertion order is preserved so that
    anything derived from the graph (compilation, serialization) is deterministic.
    """

    def __init__(self, nodes: Optional[Iterable[Any]] = None, edges: Optional[Iterable[Any]] = None):
        self._nodes: Dict[str, Node] = {}
        self._edges: Dict[str, Edge] = {}
        if nodes is not None or edges is not None:
            self.replace(nodes or [], edges or [])

    # ── Read ──────────────────────────────────────────────────────────

    @property
    def nodes(self) -> List[Node]:
        return list(self._nodes.values())

    @property
    def edges(self) -> List[Edge]:
        return list(self._edges.values())

    def get_node(self, node_id: str) -> Optional[Node]:
        return self._nodes.get(node_id)

    def get_edge(self, edge_id: str) -> Optional[Edge]:
        return self._edges.get(edge_id)

    def incoming_edges(self, node_id: str) -> List[Edge]:
        return [e for e in self._edges.values() if e.target == node_id]

    def outgoing_edges(self, node_id: str) -> List[Edge]:
        return [e for e in self._edges.values() if e.source == node_id]

    def find_edge(self, connection: Connection) -> Optional[Edge]:
        key = connection.endpoint_key()
        for e in self._edges.values():
            if e.endpoint_key() == key:
                return e
        return None

    def snapshot(self) -> GraphSnapshot:
        return GraphSnapshot(
            nodes=[n.model_copy(deep=True) for n in self._nodes.values()],
            edges=[e.model_copy(deep=True) for e in self._edges.values()],
        )

    # ── Nodes ─────────────────────────────────────────────────────────

    def add_node(self, node_type: str, position: Optional[Union[Position, Dict[str, float]]] = None) -> Node:
        """Create a node with the default attributes of its type."""
        if position is None:
            position = Position(x=300 + random.random() * 50, y=200 + random.random() * 50)
        elif isinstance(position, dict):
            position = Position(**position)
        node = Node(id=new_id(), type=node_type, position=position, data=default_node_data(node_type))
        self._nodes[node.id] = node
        logger.debug(f"[GRAPH] Added {node_type} node {node.id}")
        return node

    def update_node_field(self, node_id: str, field: str, value: Any) -> Optional[Node]:
        """
        Set one attribute on a node. Unknown node ids are ignored. The field may be
        given by its camelCase key or its snake_case attribute name.
        Raises InvalidNodeData if the value breaks the node type's schema.
        """
        node = self._nodes.get(node_id)
        if node is None:
            return None
        key = self._data_key(node, field)
        try:
            node.data = validate_node_data(node.type, {**node.data, key: value})
        except ValidationError as e:
            errors = e.errors()
            message = errors[0]["msg"] if errors else str(e)
            raise InvalidNodeData(node_id, field, message) from e
        return node

    def delete_node(self, node_id: str) -> bool:
        if node_id not in self._nodes:
            return False
        del self._nodes[node_id]
        self._drop_edges_touching(node_id)
        logger.debug(f"[GRAPH] Deleted node {node_id}")
        return True

    def delete_node_and_reconnect(self, node_id: str) -> List[Edge]:
        """
        Remove a node and bridge every incoming message edge to every outgoing edge.
        Bridges keep the upstream source/handle and the downstream target/handle.
        Configuration bindings into the removed node are dropped, not bridged, and
        a bridge that would loop a node back onto itself is skipped.
        """
        if node_id not in self._nodes:
            return []

        incoming = [e for e in self.incoming_edges(node_id) if not e.is_config]
        outgoing = self.outgoing_edges(node_id)

        del self._nodes[node_id]
        self._drop_edges_touching(node_id)

        bridges: List[Edge] = []
        for in_edge in incoming:
            for out_edge in outgoing:
                candidate = Connection(
                    source=in_edge.source,
                    source_handle=in_edge.source_handle,
                    target=out_edge.target,
                    target_handle=out_edge.target_handle,
                )
                if in_edge.source == out_edge.target or self.find_edge(candidate) is not None:
                    continue
                edge = Edge.from_connection(candidate)
                self._commit_edge(edge)
                bridges.append(edge)

        logger.debug(
            f"[GRAPH] Deleted node {node_id} and bridged "
            f"{len(incoming)}x{len(outgoing)} edges ({len(bridges)} created)"
        )
        return bridges

    def duplicate_node(self, node_id: str) -> Optional[Node]:
        """Clone a node's type and data with a fresh id. Edges are not copied."""
        original = self._nodes.get(node_id)
        if original is None:
            return None
        clone = Node(
            id=new_id(),
            type=original.type,
            position=Position(
                x=original.position.x + DUPLICATE_OFFSET,
                y=original.position.y + DUPLICATE_OFFSET,
            ),
            data=copy.deepcopy(original.data),
        )
        self._nodes[clone.id] = clone
        return clone

    # ── Edges ─────────────────────────────────────────────────────────

    def validate(self, candidate: Connection) -> ValidationResult:
        return validate_connection(candidate, self.nodes, self.edges)

    def connect(self, candidate: Union[Connection, Dict[str, Any]]) -> ConnectResult:
        """
        Gate a proposed edge through the connection validator and commit it on acceptance.
        An identical edge that already exists is returned unchanged. A configuration
        edge into an already-bound slot replaces the previous binding.
        """
        if isinstance(candidate, dict):
            candidate = Connection.model_validate(candidate)

        result = self.validate(candidate)
        if not result.valid:
            logger.info(f"[GRAPH] Connection {candidate.source} -> {candidate.target} rejected: {result.reason}")
            return ConnectResult(accepted=False, reason=result.reason, kind=result.kind)

        existing = self.find_edge(candidate)
        if existing is not None:
            return ConnectResult(accepted=True, edge=existing)

        replaced_id = None
        if candidate.is_config:
            bound = self._slot_binding(candidate.target, candidate.target_handle)
            if bound is not None:
                del self._edges[bound.id]
                replaced_id = bound.id
                logger.debug(f"[GRAPH] Rebinding slot {candidate.target_handle} on {candidate.target}")

        edge = Edge.from_connection(candidate)
        self._commit_edge(edge)
        return ConnectResult(accepted=True, edge=edge, replaced_edge_id=replaced_id)

    def delete_edge(self, edge_id: str) -> bool:
        return self._edges.pop(edge_id, None) is not None

    # ── Bulk ──────────────────────────────────────────────────────────

    def replace(self, nodes: Iterable[Any], edges: Iterable[Any]) -> None:
        """
        Replace the whole graph, e.g. from a loaded document. Input that would break
        an invariant is repaired: duplicate ids and dangling edges are dropped, and
        the last edge bound to a configuration slot wins. Node attributes that break
        their type's schema fall back to the type defaults.
        """
        new_nodes: Dict[str, Node] = {}
        for raw in nodes:
            node = raw if isinstance(raw, Node) else Node.model_validate(raw)
            if node.id in new_nodes:
                logger.warning(f"[GRAPH] Dropping node with duplicate id {node.id}")
                continue
            new_nodes[node.id] = node.model_copy(update={"data": self._repaired_data(node)})

        new_edges: Dict[str, Edge] = {}
        seen_endpoints = set()
        slot_bindings: Dict[tuple, str] = {}
        for raw in edges:
            edge = raw if isinstance(raw, Edge) else Edge.model_validate(raw)
            if edge.source not in new_nodes or edge.target not in new_nodes:
                logger.warning(f"[GRAPH] Dropping dangling edge {edge.id} ({edge.source} -> {edge.target})")
                continue
            if edge.id in new_edges or edge.endpoint_key() in seen_endpoints:
                logger.warning(f"[GRAPH] Dropping duplicate edge {edge.id}")
                continue
            if edge.is_config:
                slot = (edge.target, edge.target_handle)
                previous = slot_bindings.get(slot)
                if previous is not None:
                    seen_endpoints.discard(new_edges.pop(previous).endpoint_key())
                slot_bindings[slot] = edge.id
            new_edges[edge.id] = edge
            seen_endpoints.add(edge.endpoint_key())

        self._nodes = new_nodes
        self._edges = new_edges

    def clear(self) -> None:
        self._nodes = {}
        self._edges = {}

    # ── Internal ──────────────────────────────────────────────────────

    @staticmethod
    def _data_key(node: Node, field: str) -> str:
        """Stored (camelCase) key for an attribute name."""
        info = node.spec.data_model.model_fields.get(field)
        if info is not None and info.alias:
            return info.alias
        return field

    @staticmethod
    def _repaired_data(node: Node) -> Dict[str, Any]:
        try:
            return validate_node_data(node.type, node.data)
        except ValidationError as e:
            invalid = {err["loc"][0] for err in e.errors() if err["loc"]}
            for name, info in node.spec.data_model.model_fields.items():
                if name in invalid or info.alias in invalid:
                    invalid |= {name, info.alias}
            invalid.discard(None)
            logger.warning(
                f"[GRAPH] Node {node.id}: resetting invalid attributes "
                f"{sorted(str(k) for k in invalid)} to defaults"
            )
            kept = {k: v for k, v in node.data.items() if k not in invalid}
            return validate_node_data(node.type, kept)

    def _commit_edge(self, edge: Edge) -> None:
        while edge.id in self._edges:
            edge.id = new_id()
        self._edges[edge.id] = edge

    def _slot_binding(self, target: str, slot: Optional[str]) -> Optional[Edge]:
        for e in self._edges.values():
            if e.target == target and e.target_handle == slot:
                return e
        return None

    def _drop_edges_touching(self, node_id: str) -> None:
        self._edges = {
            eid: e for eid, e in self._edges.items()
            if e.source != node_id and e.target != node_id
        }
