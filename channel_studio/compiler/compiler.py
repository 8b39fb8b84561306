"""
Flow Compiler - translates a flow graph into an engine channel document.

Compilation Pipeline:
1. Structural checks (edge endpoints, at least one source)
2. Cycle detection from every source node
3. Primary source selection (real listeners win over the test node)
4. Stage ordering (topological order of the message path)
5. Configuration slot resolution (values bound by port/ip/text/variable nodes)
6. Document assembly

The compiler is pure: the same input always produces the same document.
"""

import heapq
import logging
from typing import Optional, Dict, Iterator, List, Any, Sequence, Set, Tuple

from channel_studio.compiler.channel import EngineChannel, PipelineStage, SourceStage
from channel_studio.errors import FlowCompileError
from channel_studio.graph.schema import Edge, Node, NodeRole, NodeType

logger = logging.getLogger(__name__)

_WHITE, _GREY, _BLACK = 0, 1, 2


def _as_int(value: Any, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number or default


def _as_str(value: Any, default: Optional[str]) -> Optional[str]:
    if value is None or value == "":
        return default
    return str(value)


class FlowCompiler:
    """
    Compiles the nodes and edges of a flow into an EngineChannel. Each node type
    maps to one engine stage; data-path utilities are traversed but not emitted.
    """

    def compile(
        self,
        nodes: Sequence[Node],
        edges: Sequence[Edge],
        channel_name: str,
        channel_id: str,
        error_destination_id: Optional[str] = None,
        max_retries: int = 3,
    ) -> EngineChannel:
        by_id = self._index(nodes)
        for e in edges:
            for endpoint in (e.source, e.target):
                if endpoint not in by_id:
                    raise FlowCompileError(
                        f"Edge '{e.id}' references missing node '{endpoint}'", node_id=endpoint,
                    )

        data_edges = [e for e in edges if not e.is_config]
        config_edges = [e for e in edges if e.is_config]
        adjacency: Dict[str, List[str]] = {n.id: [] for n in nodes}
        for e in data_edges:
            adjacency[e.source].append(e.target)

        sources = [n for n in nodes if n.role == NodeRole.SOURCE]
        if not sources:
            raise FlowCompileError("Flow has no source node")
        self._check_acyclic(sources, adjacency)

        primary = next((n for n in sources if n.type != NodeType.TEST_NODE.value), sources[0])
        order = self._stage_order(primary, nodes, adjacency)
        visited = set(order)

        resolver = _SlotResolver(by_id, config_edges)
        channel = EngineChannel(
            id=channel_id,
            name=channel_name,
            source=self._build_source(primary, resolver),
            max_retries=max_retries,
        )
        for node_id in order:
            node = by_id[node_id]
            if node.role == NodeRole.PROCESSOR:
                channel.processors.append(self._build_processor(node, resolver))
            elif node.role == NodeRole.DESTINATION:
                channel.destinations.append(self._build_destination(node, resolver))

        # Destinations fed from outside the primary path still receive messages
        fed = {e.target for e in data_edges}
        for node in nodes:
            if node.role == NodeRole.DESTINATION and node.id not in visited and node.id in fed:
                channel.destinations.append(self._build_destination(node, resolver))

        if error_destination_id:
            error_node = by_id.get(error_destination_id)
            if error_node is not None and error_node.role == NodeRole.DESTINATION:
                channel.error_destination = self._build_destination(error_node, resolver)

        logger.info(
            f"[COMPILER] Compiled channel '{channel_name}' ({channel_id}): "
            f"source={channel.source.type}, {len(channel.processors)} processors, "
            f"{len(channel.destinations)} destinations"
        )
        return channel

    # ── Graph analysis ────────────────────────────────────────────────

    @staticmethod
    def _index(nodes: Sequence[Node]) -> Dict[str, Node]:
        by_id: Dict[str, Node] = {}
        for n in nodes:
            if n.id in by_id:
                raise FlowCompileError(f"Duplicate node id '{n.id}'", node_id=n.id)
            by_id[n.id] = n
        return by_id

    @staticmethod
    def _check_acyclic(sources: Sequence[Node], adjacency: Dict[str, List[str]]) -> None:
        """Depth-first search from every source; a back-edge means a cycle."""
        color: Dict[str, int] = {nid: _WHITE for nid in adjacency}

        for source in sources:
            if color[source.id] != _WHITE:
                continue
            color[source.id] = _GREY
            stack: List[Tuple[str, Iterator[str]]] = [(source.id, iter(adjacency[source.id]))]
            while stack:
                nid, successors = stack[-1]
                for nxt in successors:
                    if color[nxt] == _GREY:
                        raise FlowCompileError(
                            f"Flow contains a cycle through node '{nxt}'", node_id=nxt,
                        )
                    if color[nxt] == _WHITE:
                        color[nxt] = _GREY
                        stack.append((nxt, iter(adjacency[nxt])))
                        break
                else:
                    color[nid] = _BLACK
                    stack.pop()

    @staticmethod
    def _stage_order(primary: Node, nodes: Sequence[Node], adjacency: Dict[str, List[str]]) -> List[str]:
        """Topological order of the nodes reachable from the primary source, ties by graph order."""
        reachable: Set[str] = set()
        stack = [primary.id]
        while stack:
            nid = stack.pop()
            if nid in reachable:
                continue
            reachable.add(nid)
            stack.extend(adjacency[nid])

        position = {n.id: i for i, n in enumerate(nodes)}
        in_degree = {nid: 0 for nid in reachable}
        for nid in reachable:
            for nxt in adjacency[nid]:
                in_degree[nxt] += 1

        heap = [(position[nid], nid) for nid, deg in in_degree.items() if deg == 0]
        heapq.heapify(heap)
        order: List[str] = []
        while heap:
            _, nid = heapq.heappop(heap)
            order.append(nid)
            for nxt in adjacency[nid]:
                in_degree[nxt] -= 1
                if in_degree[nxt] == 0:
                    heapq.heappush(heap, (position[nxt], nxt))
        return [nid for nid in order if nid != primary.id]

    # ── Stage builders ────────────────────────────────────────────────

    def _build_source(self, node: Node, resolver: "_SlotResolver") -> SourceStage:
        data = node.data
        if node.type == NodeType.HTTP_LISTENER.value:
            return SourceStage(type="http_listener", config={
                "port": _as_int(resolver.resolve(node, "port", "config-port"), 8080),
                "path": _as_str(resolver.resolve(node, "path", "config-path"), None),
            })
        if node.type == NodeType.TCP_LISTENER.value:
            return SourceStage(type="tcp_listener", config={
                "port": _as_int(resolver.resolve(node, "port", "config-port"), 9090),
            })
        if node.type == NodeType.FILE_READER.value:
            return SourceStage(type="file_reader", config={
                "path": _as_str(resolver.resolve(node, "path", "config-path"), "/data/input"),
                "pattern": data.get("pattern"),
            })
        if node.type == NodeType.DATABASE_POLLER.value:
            return SourceStage(type="database_poller", config={
                "query": data.get("query") or "",
                "interval": _as_int(data.get("interval"), 60),
            })
        if node.type == NodeType.TEST_NODE.value:
            return SourceStage(type="test_source", config={
                "payload_type": data.get("payloadType") or "hl7",
                "payload": data.get("payload") or "",
            })
        raise FlowCompileError(f"Unsupported source type '{node.type}'", node_id=node.id)

    def _build_processor(self, node: Node, resolver: "_SlotResolver") -> PipelineStage:
        data = node.data
        base = {"id": node.id, "name": data.get("label") or "Processor"}

        if node.type == NodeType.MAPPER.value:
            return PipelineStage(**base, type="mapper", config={"mappings": data.get("mappings") or []})
        if node.type == NodeType.FILTER.value:
            return PipelineStage(**base, type="filter", config={"condition": data.get("condition") or ""})
        if node.type == NodeType.ROUTER.value:
            return PipelineStage(**base, type="router", config={"routes": data.get("routes") or []})
        if node.type == NodeType.HL7_PARSER.value:
            return PipelineStage(**base, type="hl7_parser", config={
                "inputFormat": data.get("inputFormat") or "hl7v2",
                "outputFormat": data.get("outputFormat") or "fhir",
            })
        if node.type == NodeType.LUA_SCRIPT.value:
            return PipelineStage(**base, type="lua_script", config={
                "code": data.get("code") or "return msg",
                "variables": resolver.variables(node),
            })
        # Unknown processor types run as a pass-through script
        return PipelineStage(**base, type="lua_script", config={"code": "return msg"})

    def _build_destination(self, node: Node, resolver: "_SlotResolver") -> PipelineStage:
        data = node.data
        base = {"id": node.id, "name": data.get("label") or "Destination"}

        if node.type == NodeType.HTTP_SENDER.value:
            return PipelineStage(**base, type="http_sender", config={
                "url": _as_str(resolver.resolve(node, "url", "config-url"), ""),
                "method": data.get("method") or "POST",
            })
        if node.type == NodeType.DATABASE_WRITER.value:
            return PipelineStage(**base, type="database_writer", config={
                "table": data.get("table"),
                "mode": data.get("mode") or "insert",
                "query": data.get("query"),
            })
        if node.type == NodeType.TCP_SENDER.value:
            return PipelineStage(**base, type="tcp_sender", config={
                "host": _as_str(resolver.resolve(node, "host", "config-host"), "127.0.0.1"),
                "port": _as_int(resolver.resolve(node, "port", "config-port"), 9000),
            })
        if node.type == NodeType.LUA_DESTINATION.value:
            return PipelineStage(**base, type="lua_destination", config={
                "code": data.get("code") or "return msg",
                "variables": resolver.variables(node),
            })
        return PipelineStage(**base, type="file_writer", config={
            "path": _as_str(resolver.resolve(node, "path", "config-path"), "./output"),
            "filename": data.get("filename"),
        })


class _SlotResolver:
    """Looks up values bound to configuration slots by configuration nodes."""

    def __init__(self, by_id: Dict[str, Node], config_edges: Sequence[Edge]):
        self._by_id = by_id
        self._bindings: Dict[tuple, str] = {
            (e.target, e.target_handle): e.source for e in config_edges
        }

    def provider(self, node: Node, slot: str) -> Optional[Node]:
        source_id = self._bindings.get((node.id, slot))
        return self._by_id.get(source_id) if source_id else None

    def resolve(self, node: Node, field: str, slot: str) -> Any:
        literal = node.data.get(field)
        provider = self.provider(node, slot)
        if provider is None:
            return literal

        pdata = provider.data
        if provider.type == NodeType.PORT_NODE.value:
            return _as_int(pdata.get("port"), 0) or literal
        if provider.type == NodeType.IP_NODE.value:
            return pdata.get("ip")
        if provider.type == NodeType.TEXT_NODE.value:
            value = pdata.get("value")
            return value if value is not None else pdata.get("text")
        return literal

    def variables(self, node: Node) -> Optional[Dict[str, str]]:
        provider = self.provider(node, "config-variables")
        if provider is None or provider.type != NodeType.VARIABLE_NODE.value:
            return None
        return {v["key"]: v.get("value", "") for v in provider.data.get("variables") or [] if "key" in v}
