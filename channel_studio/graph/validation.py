"""
Connection Validator - decides whether a proposed edge may join the flow graph.

Pure and deterministic: the same candidate against the same nodes and edges
always yields the same ValidationResult, and nothing is mutated.
Rules are evaluated in order and the first failing rule wins:

1. self-loops are rejected
2. both endpoints must exist
3. configuration edges (target handle ``config-*``) need a configuration
   provider as source and a slot on the target that accepts its value kind
4. data-flow edges need an output-capable source and an input-capable target
5. data-flow edges must not close a cycle of message edges
"""

from enum import Enum
from typing import Optional, Dict, Iterable, List, Sequence, Set

from pydantic import BaseModel

from channel_studio.graph.schema import (
    CONFIG_SLOTS, Connection, Edge, Node, NodeRole, slot_accepts,
)


class RejectionKind(str, Enum):
    SELF_LOOP = "self_loop"
    UNKNOWN_NODE = "unknown_node"
    WRONG_ROLE = "wrong_role"
    WRONG_SLOT = "wrong_slot"
    CYCLE = "cycle"


class ValidationResult(BaseModel):
    valid: bool
    reason: Optional[str] = None
    kind: Optional[RejectionKind] = None

    @classmethod
    def accept(cls) -> "ValidationResult":
        return cls(valid=True)

    @classmethod
    def reject(cls, kind: RejectionKind, reason: str) -> "ValidationResult":
        return cls(valid=False, kind=kind, reason=reason)


def _find(nodes: Iterable[Node], node_id: str) -> Optional[Node]:
    for n in nodes:
        if n.id == node_id:
            return n
    return None


def _describe(node: Node) -> str:
    return f"{node.label or node.type} ({node.role.value})"


def _validate_config_edge(candidate: Connection, source: Node, target: Node) -> ValidationResult:
    slot = candidate.target_handle
    provider = source.spec
    if not provider.is_config_provider:
        return ValidationResult.reject(
            RejectionKind.WRONG_ROLE,
            f"Only configuration nodes can feed configuration slots; "
            f"{_describe(source)} cannot connect to '{slot}'",
        )

    slot_kind = CONFIG_SLOTS.get(slot)
    if slot_kind is None:
        return ValidationResult.reject(
            RejectionKind.WRONG_SLOT, f"Unknown configuration slot '{slot}'",
        )
    if slot not in target.spec.config_slots:
        return ValidationResult.reject(
            RejectionKind.WRONG_SLOT,
            f"{_describe(target)} has no configuration slot '{slot}'",
        )
    if not slot_accepts(slot_kind, provider.provides):
        return ValidationResult.reject(
            RejectionKind.WRONG_SLOT,
            f"Slot '{slot}' expects a {slot_kind.value} value but "
            f"{_describe(source)} provides a {provider.provides.value} value",
        )
    return ValidationResult.accept()


def _validate_data_edge(source: Node, target: Node) -> ValidationResult:
    if source.role == NodeRole.DESTINATION:
        return ValidationResult.reject(
            RejectionKind.WRONG_ROLE,
            f"Destination {_describe(source)} cannot send messages onward",
        )
    if target.role == NodeRole.SOURCE:
        return ValidationResult.reject(
            RejectionKind.WRONG_ROLE,
            f"Source {_describe(target)} cannot receive messages",
        )
    if not source.spec.data_output:
        return ValidationResult.reject(
            RejectionKind.WRONG_ROLE,
            f"{_describe(source)} has no message output",
        )
    if not target.spec.data_input:
        return ValidationResult.reject(
            RejectionKind.WRONG_ROLE,
            f"{_describe(target)} has no message input",
        )
    return ValidationResult.accept()


def _would_create_cycle(candidate: Connection, edges: Iterable[Edge]) -> bool:
    """True if the candidate's target already reaches its source along message edges."""
    adjacency: Dict[str, List[str]] = {}
    for e in edges:
        if not e.is_config:
            adjacency.setdefault(e.source, []).append(e.target)

    seen: Set[str] = set()
    stack = [candidate.target]
    while stack:
        nid = stack.pop()
        if nid == candidate.source:
            return True
        if nid in seen:
            continue
        seen.add(nid)
        stack.extend(adjacency.get(nid, ()))
    return False


def validate_connection(
    candidate: Connection,
    nodes: Sequence[Node],
    edges: Sequence[Edge],
) -> ValidationResult:
    """Accept or reject a proposed edge against the current graph."""
    if candidate.source == candidate.target:
        return ValidationResult.reject(
            RejectionKind.SELF_LOOP, "A node cannot be connected to itself",
        )

    source = _find(nodes, candidate.source)
    target = _find(nodes, candidate.target)
    if source is None or target is None:
        missing = candidate.source if source is None else candidate.target
        return ValidationResult.reject(
            RejectionKind.UNKNOWN_NODE, f"Node '{missing}' does not exist",
        )

    if candidate.is_config:
        return _validate_config_edge(candidate, source, target)

    result = _validate_data_edge(source, target)
    if result.valid and _would_create_cycle(candidate, edges):
        return ValidationResult.reject(
            RejectionKind.CYCLE, "This connection would create a cycle",
        )
    return result
