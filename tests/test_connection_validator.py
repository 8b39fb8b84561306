"""
Tests for the connection validator: role rules and configuration slots.
"""
import pytest

from channel_studio.graph.schema import (
    NODE_CATALOGUE, Connection, Edge, Node, NodeRole,
)
from channel_studio.graph.validation import RejectionKind, validate_connection


def _node(node_id, node_type):
    return Node(id=node_id, type=node_type)


SOURCE_TYPES = sorted(t for t, s in NODE_CATALOGUE.items() if s.role == NodeRole.SOURCE)
DESTINATION_TYPES = sorted(t for t, s in NODE_CATALOGUE.items() if s.role == NodeRole.DESTINATION)


@pytest.fixture
def nodes():
    return [
        _node("http", "httpListener"),
        _node("tcp", "tcpListener"),
        _node("map", "mapper"),
        _node("lua", "luaScript"),
        _node("file", "fileWriter"),
        _node("sender", "tcpSender"),
        _node("port", "portNode"),
        _node("ip", "ipNode"),
        _node("text", "textNode"),
        _node("vars", "variableNode"),
        _node("delay", "delayNode"),
        _node("note", "commentNode"),
    ]


class TestBasicRules:

    def test_data_edge_accepted(self, nodes):
        result = validate_connection(Connection(source="http", target="map"), nodes, [])
        assert result.valid
        assert result.reason is None

    def test_self_loop_rejected(self, nodes):
        result = validate_connection(Connection(source="map", target="map"), nodes, [])
        assert not result.valid
        assert result.kind == RejectionKind.SELF_LOOP

    def test_unknown_node_rejected(self, nodes):
        result = validate_connection(Connection(source="http", target="ghost"), nodes, [])
        assert result.kind == RejectionKind.UNKNOWN_NODE
        assert "ghost" in result.reason

    def test_utility_on_data_path(self, nodes):
        assert validate_connection(Connection(source="map", target="delay"), nodes, []).valid
        assert validate_connection(Connection(source="delay", target="file"), nodes, []).valid

    def test_provider_has_no_message_output(self, nodes):
        result = validate_connection(Connection(source="port", target="map"), nodes, [])
        assert result.kind == RejectionKind.WRONG_ROLE

    def test_comment_has_no_handles(self, nodes):
        result = validate_connection(Connection(source="map", target="note"), nodes, [])
        assert result.kind == RejectionKind.WRONG_ROLE


class TestRoleRules:

    @pytest.mark.parametrize("source_type", SOURCE_TYPES)
    def test_source_never_accepted_as_data_target(self, source_type):
        nodes = [_node("up", "mapper"), _node("src", source_type)]
        result = validate_connection(Connection(source="up", target="src"), nodes, [])
        assert not result.valid
        assert result.kind == RejectionKind.WRONG_ROLE

    @pytest.mark.parametrize("destination_type", DESTINATION_TYPES)
    def test_destination_never_accepted_as_data_source(self, destination_type):
        nodes = [_node("dst", destination_type), _node("down", "fileWriter")]
        result = validate_connection(Connection(source="dst", target="down"), nodes, [])
        assert not result.valid
        assert result.kind == RejectionKind.WRONG_ROLE

    def test_source_to_destination_directly(self, nodes):
        assert validate_connection(Connection(source="tcp", target="file"), nodes, []).valid


class TestConfigurationSlots:

    def test_port_provider_into_port_slot(self, nodes):
        candidate = Connection(source="port", target="http", target_handle="config-port")
        assert validate_connection(candidate, nodes, []).valid

    def test_ip_provider_into_host_slot(self, nodes):
        candidate = Connection(source="ip", target="sender", target_handle="config-host")
        assert validate_connection(candidate, nodes, []).valid

    def test_variables_into_script(self, nodes):
        candidate = Connection(source="vars", target="lua", target_handle="config-variables")
        assert validate_connection(candidate, nodes, []).valid

    def test_numeric_provider_accepted_by_string_slot(self, nodes):
        candidate = Connection(source="port", target="http", target_handle="config-path")
        assert validate_connection(candidate, nodes, []).valid

    def test_string_provider_rejected_by_numeric_slot(self, nodes):
        candidate = Connection(source="text", target="http", target_handle="config-port")
        result = validate_connection(candidate, nodes, [])
        assert result.kind == RejectionKind.WRONG_SLOT
        assert "config-port" in result.reason

    def test_non_provider_rejected(self, nodes):
        candidate = Connection(source="map", target="http", target_handle="config-port")
        result = validate_connection(candidate, nodes, [])
        assert result.kind == RejectionKind.WRONG_ROLE

    def test_slot_not_declared_on_target(self, nodes):
        candidate = Connection(source="port", target="map", target_handle="config-port")
        assert validate_connection(candidate, nodes, []).kind == RejectionKind.WRONG_SLOT

    def test_unknown_slot(self, nodes):
        candidate = Connection(source="port", target="http", target_handle="config-bogus")
        result = validate_connection(candidate, nodes, [])
        assert result.kind == RejectionKind.WRONG_SLOT
        assert "config-bogus" in result.reason

    def test_bound_slot_is_still_valid(self, nodes):
        edges = [Edge(id="e", source="port", target="http", target_handle="config-port")]
        candidate = Connection(source="port", target="http", target_handle="config-port")
        assert validate_connection(candidate, nodes, edges).valid


class TestCycleRule:

    def test_edge_closing_cycle_rejected(self, nodes):
        edges = [
            Edge(id="e1", source="http", target="map"),
            Edge(id="e2", source="map", target="lua"),
            Edge(id="e3", source="lua", target="delay"),
        ]
        result = validate_connection(Connection(source="delay", target="map"), nodes, edges)
        assert not result.valid
        assert result.kind == RejectionKind.CYCLE
        assert result.reason == "This connection would create a cycle"

    def test_role_rule_wins_over_cycle(self, nodes):
        edges = [Edge(id="e1", source="map", target="file")]
        result = validate_connection(Connection(source="file", target="map"), nodes, edges)
        assert result.kind == RejectionKind.WRONG_ROLE

    def test_converging_paths_are_not_a_cycle(self, nodes):
        edges = [
            Edge(id="e1", source="http", target="map"),
            Edge(id="e2", source="http", target="lua"),
            Edge(id="e3", source="map", target="delay"),
        ]
        assert validate_connection(Connection(source="lua", target="delay"), nodes, edges).valid

    def test_configuration_edges_are_not_followed(self, nodes):
        edges = [Edge(id="e1", source="lua", target="map", target_handle="config-variables")]
        assert validate_connection(Connection(source="map", target="lua"), nodes, edges).valid


class TestDeterminism:

    @pytest.mark.parametrize("candidate", [
        Connection(source="http", target="map"),
        Connection(source="file", target="map"),
        Connection(source="text", target="http", target_handle="config-port"),
        Connection(source="map", target="map"),
    ])
    def test_same_input_same_result(self, nodes, candidate):
        edges = [Edge(id="e1", source="http", target="map")]
        first = validate_connection(candidate, nodes, edges)
        second = validate_connection(candidate, nodes, edges)
        assert first == second

    def test_inputs_are_not_mutated(self, nodes):
        edges = [Edge(id="e1", source="http", target="map")]
        before_nodes = [n.model_dump() for n in nodes]
        before_edges = [e.model_dump() for e in edges]
        validate_connection(Connection(source="map", target="file"), nodes, edges)
        assert [n.model_dump() for n in nodes] == before_nodes
        assert [e.model_dump() for e in edges] == before_edges
