# implications_explorer/tests/test_graph_analysis.py
import networkx as nx
import pytest
from ..discovery import DiscoveryResult
from ..graph_analysis import (
    Rect, assign_layers, bounding_box, compute_tag_groups, filter_by_tags, find_initial_node,
    find_target_node, group_members, hierarchical_layout, path_to_status, search_graph,
    shortest_path, to_digraph,
)
from ..state_graph import build_graph_from_discovery
from .conftest import discovery_payload, implication, transition


@pytest.fixture
def model(booking_payload):
    return build_graph_from_discovery(DiscoveryResult.from_dict(booking_payload))


def chain_model(statuses, edges):
    payload = discovery_payload(
        [implication(f"{s.title()}Implications", s) for s in statuses],
        [transition(a, b, e) for a, b, e in edges],
    )
    return build_graph_from_discovery(DiscoveryResult.from_dict(payload))


def test_find_target_exact_beats_prefix():
    model = chain_model(["initial", "pending_review", "pending"], [])
    assert find_target_node(model, "pending") == "pending"
    assert find_target_node(model, "PENDING") == "pending"


def test_find_target_prefix_then_substring():
    model = chain_model(["initial", "pending_review", "pending_payment_long"], [])
    assert find_target_node(model, "pend") == "pending_review"
    assert find_target_node(model, "review") == "pending_review"
    assert find_target_node(model, "zzz") is None
    assert find_target_node(model, "  ") is None


def test_find_initial_node(model):
    assert find_initial_node(model) == "initial"


def test_find_initial_falls_back_to_first_root():
    model = chain_model(["created", "pending"], [("created", "pending", "GO")])
    assert find_initial_node(model) == "created"


def test_path_length_equals_shortest_distance():
    model = chain_model(
        ["initial", "a", "b", "c", "done"],
        [("initial", "a", "A"), ("a", "b", "B"), ("b", "c", "C"), ("c", "done", "D"),
         ("initial", "c", "SKIP")],
    )
    result = path_to_status(model, "done")
    expected = nx.shortest_path_length(to_digraph(model), "initial", "done")
    assert result.length == expected == 2
    assert result.nodes == ["initial", "c", "done"]
    assert [e.event for e in result.edges] == ["SKIP", "D"]


def test_path_to_unreachable_is_none():
    model = chain_model(["initial", "island"], [])
    assert path_to_status(model, "island") is None
    assert path_to_status(model, "missing") is None


def test_path_to_initial_itself_is_empty(model):
    result = path_to_status(model, "initial")
    assert result.nodes == ["initial"]
    assert result.length == 0


def test_shortest_path_unknown_node(model):
    assert shortest_path(model, "initial", "nope") is None


def test_filter_without_tags_shows_everything(model):
    visible, edges = filter_by_tags(model, [])
    assert visible == set(model.nodes)
    assert len(edges) == len(model.edges)


def test_filter_keeps_nodes_with_any_tag(model):
    visible, edges = filter_by_tags(model, ["flow:payment"])
    assert visible == {"accepted"}
    assert edges == []

    visible, edges = filter_by_tags(model, ["flow:booking"])
    assert visible == {"pending", "accepted"}
    assert {e.event for e in edges} == {"ACCEPT", "FAST_TRACK"}


def test_bounding_box_uses_top_left_positions():
    rect = bounding_box({"a": (0, 0), "b": (100, 50)}, ["a", "b", "ghost"], (120, 50))
    assert (rect.x, rect.y, rect.width, rect.height) == (0, 0, 220, 100)
    assert bounding_box({}, ["a"], (10, 10)) is None


def test_group_members(model):
    groups = group_members(model, ["flow"])
    assert groups == {"flow:booking": ["pending", "accepted"], "flow:payment": ["accepted"]}
    assert group_members(model, ["flow"], visible={"pending"}) == {"flow:booking": ["pending"]}


def test_larger_groups_get_more_padding_and_sit_behind():
    positions = {"a": (0, 0), "b": (400, 300), "c": (0, 0)}
    groups = compute_tag_groups({"big": ["a", "b"], "small": ["c"]}, positions, (100, 40),
                                base_padding=16, padding_step=12)
    big, small = groups
    assert big.tag == "big" and small.tag == "small"
    assert big.padding > small.padding
    assert big.z_order < small.z_order
    assert big.rect.contains(small.rect)


def test_rect_contains():
    outer = Rect(0, 0, 100, 100)
    assert outer.contains(Rect(10, 10, 20, 20))
    assert not outer.contains(Rect(90, 90, 20, 20))


def test_assign_layers_follows_bfs_depth(model):
    layers = assign_layers(model)
    assert layers["initial"] == 0
    assert layers["pending"] == 1
    assert layers["accepted"] == 2
    assert "archived" in layers


def test_assign_layers_handles_cycles():
    model = chain_model(["initial", "a", "b"], [("initial", "a", "GO"), ("a", "b", "NEXT"),
                                                ("b", "a", "BACK")])
    layers = assign_layers(model)
    assert layers == {"initial": 0, "a": 1, "b": 2}


def test_hierarchical_layout_places_every_node(model):
    positions = hierarchical_layout(model, (120, 50), rank_sep=150)
    assert set(positions) == set(model.nodes)
    assert positions["initial"][0] < positions["pending"][0] < positions["accepted"][0]


def test_hierarchical_layout_empty_model():
    assert hierarchical_layout(chain_model([], [])) == {}


def test_search_matches_states_then_events(model):
    hits = search_graph(model, "accept")
    assert hits[0].node_id == "accepted" and hits[0].kind == "state"
    transition_hits = [h for h in hits if h.kind == "transition"]
    assert [h.node_id for h in transition_hits] == ["pending"]
    assert search_graph(model, "") == []


def test_search_respects_limit(model):
    assert len(search_graph(model, "e", limit=2)) == 2
