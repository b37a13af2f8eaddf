# implications_explorer/tests/test_state_graph.py
import pytest
from ..discovery import DiscoveryResult
from ..state_graph import build_graph_from_discovery, node_id_for, resolve_state, state_lookup
from ..theme import DEFAULT_THEME, GRAPH_COLOR_MAPS, normalize_hex_color
from .conftest import discovery_payload, implication, transition


def build(payload):
    return build_graph_from_discovery(DiscoveryResult.from_dict(payload))


def booking_pair(target="pending"):
    return discovery_payload(
        [
            {"className": "CreatedBookingImplications",
             "metadata": {"hasXStateConfig": True, "status": "created"}},
            {"className": "PendingBookingImplications",
             "metadata": {"hasXStateConfig": True, "status": "pending"}},
        ],
        [transition("CreatedBookingImplications", target, "REQUEST")],
    )


def test_two_states_one_transition():
    model = build(booking_pair())
    assert set(model.nodes) == {"created", "pending"}
    assert len(model.edges) == 1
    edge = model.edges[0]
    assert (edge.source, edge.target, edge.event) == ("created", "pending", "REQUEST")


def test_unknown_target_drops_edge():
    model = build(booking_pair(target="nonexistent"))
    assert set(model.nodes) == {"created", "pending"}
    assert model.edges == []


def test_stateless_implication_contributes_nothing():
    payload = booking_pair()
    payload["files"]["implications"].append(
        implication("HelperImplications", "helper", stateful=False))
    payload["transitions"].append(transition("HelperImplications", "pending", "HELP"))
    model = build(payload)
    assert "helper" not in model.nodes
    assert [e.event for e in model.edges] == ["REQUEST"]


def test_every_node_is_one_stateful_implication(booking_payload):
    discovery = DiscoveryResult.from_dict(booking_payload)
    model = build_graph_from_discovery(discovery)
    stateful_ids = [node_id_for(imp) for imp in discovery.stateful_implications]
    assert sorted(model.nodes) == sorted(stateful_ids)


def test_edges_reference_valid_nodes(booking_payload):
    """All edges should reference nodes that exist in the model."""
    model = build(booking_payload)
    for edge in model.edges:
        assert edge.source in model.nodes, f"Edge source '{edge.source}' not found"
        assert edge.target in model.nodes, f"Edge target '{edge.target}' not found"
    assert "ESCALATE" not in [e.event for e in model.edges]


def test_node_id_falls_back_to_class_name(booking_payload):
    model = build(booking_payload)
    assert "archived" in model.nodes
    assert model.nodes["archived"].status is None


def test_duplicate_ids_keep_the_first():
    payload = discovery_payload([
        implication("FirstImplications", "same", path="first.js"),
        implication("SecondImplications", "same", path="second.js"),
    ])
    model = build(payload)
    assert list(model.nodes) == ["same"]
    assert model.nodes["same"].class_name == "FirstImplications"


def test_node_styling_from_theme(booking_payload):
    model = build(booking_payload)
    pending = model.nodes["pending"]
    assert pending.color == DEFAULT_THEME.status_color("pending")
    assert pending.icon == DEFAULT_THEME.status_icon("pending")
    assert pending.label == "pending_booking"
    assert pending.implication_file == "/work/app/tests/implications/PendingBookingImplications.js"
    assert pending.test_file == "/work/app/tests/pending.spec.js"


def with_graph_colors(payload, **graph_colors):
    payload["config"] = {"graphColors": graph_colors}
    return build(payload)


def test_graph_colors_by_platform(booking_payload):
    model = with_graph_colors(booking_payload, colorNodesBy="platform",
                              platforms={"web": "#111111", "_default": "#222222"})
    assert model.nodes["initial"].color == "#111111"
    assert model.nodes["accepted"].color == "#222222"


def test_graph_colors_by_status(booking_payload):
    model = with_graph_colors(booking_payload, colorNodesBy="status",
                              statuses={"pending": "#abcdef80", "_default": "#000000"})
    assert model.nodes["pending"].color == "#abcdef"
    assert model.nodes["accepted"].color == "#000000"
    assert model.nodes["archived"].color == "#000000"


def test_graph_colors_by_pattern_uses_default_maps(booking_payload):
    booking_payload["files"]["implications"][1]["metadata"]["pattern"] = "CMS"
    model = with_graph_colors(booking_payload, colorNodesBy="pattern")
    assert model.nodes["pending"].color == GRAPH_COLOR_MAPS["patterns"]["cms"]
    assert model.nodes["initial"].color == GRAPH_COLOR_MAPS["patterns"]["_default"]


def test_unknown_color_mode_means_platform(booking_payload):
    model = with_graph_colors(booking_payload, colorNodesBy="mood")
    assert model.nodes["accepted"].color == GRAPH_COLOR_MAPS["platforms"]["mobile-dancer"]


def test_without_graph_colors_nodes_use_status_colors(booking_payload):
    booking_payload["config"] = {"graphColors": "purple"}
    model = build(booking_payload)
    assert model.nodes["accepted"].color == DEFAULT_THEME.status_color("accepted")


def test_normalize_hex_color():
    assert normalize_hex_color("#c746abff") == "#c746ab"
    assert normalize_hex_color("#c746ab") == "#c746ab"
    assert normalize_hex_color(None) == GRAPH_COLOR_MAPS["statuses"]["_default"]


def test_multi_platform_node(booking_payload):
    model = build(booking_payload)
    assert model.nodes["accepted"].is_multi_platform
    assert model.nodes["accepted"].border_style == "multi"
    assert model.nodes["pending"].border_style == "solid"


def test_edge_color_and_dash(booking_payload):
    model = build(booking_payload)
    by_event = {e.event: e for e in model.edges}
    assert by_event["ACCEPT"].color == DEFAULT_THEME.platform_style("mobile-dancer").color
    assert by_event["REQUEST"].color == model.nodes["initial"].platform_color
    assert by_event["FAST_TRACK"].dashed
    assert not by_event["REQUEST"].dashed


def test_discovered_tags_are_sorted_and_unique(booking_payload):
    model = build(booking_payload)
    assert model.discovered_tags["flow"] == ["booking", "payment"]


def test_state_lookup_and_resolve(booking_payload):
    discovery = DiscoveryResult.from_dict(booking_payload)
    lookup = state_lookup(discovery.stateful_implications)
    assert resolve_state(lookup, "PendingBookingImplications") == "pending"
    assert resolve_state(lookup, "pending_booking") == "pending"
    assert resolve_state(lookup, "PENDING") == "pending"
    assert resolve_state(lookup, "ArchivedImplications") == "archived"
    assert resolve_state(lookup, "missing") is None


def test_to_dict_is_json_friendly(booking_payload):
    import json
    snapshot = build(booking_payload).to_dict()
    assert json.loads(json.dumps(snapshot)) == snapshot
    assert {n["id"] for n in snapshot["nodes"]} == {"initial", "pending", "accepted", "archived"}


@pytest.mark.parametrize("empty", [{}, {"files": {}}, {"files": {"implications": []}}])
def test_empty_discovery_gives_empty_graph(empty):
    model = build(empty)
    assert model.is_empty
    assert model.edges == []
