# implications_explorer/tests/test_interactive_diagram.py
"""Tests for the interactive state diagram with draggable nodes."""
import logging

import pytest
from PySide6.QtWidgets import QGraphicsItem, QGraphicsScene
from PySide6.QtCore import Qt
from PySide6.QtTest import QTest
from ..discovery import DiscoveryResult
from ..interactive_diagram import (
    GROUP_DEBOUNCE_MS, GROUP_Z_BASE, DraggableNode, EdgePath, InteractiveStateDiagram,
    TransitionPicker,
)
from ..layout_store import LayoutStore, LocalCache
from ..state_graph import build_graph_from_discovery
from .conftest import discovery_payload, implication, transition


@pytest.fixture
def model(booking_payload):
    return build_graph_from_discovery(DiscoveryResult.from_dict(booking_payload))


@pytest.fixture
def store(tmp_path):
    return LayoutStore(LocalCache(tmp_path / "cache.json"))


@pytest.fixture
def diagram(app, model, store):
    view = InteractiveStateDiagram(layout_store=store)
    view.set_model(model, "/work/app")
    yield view
    view.teardown()


def test_draggable_node_is_movable(app, model):
    """DraggableNode should be positioned correctly and have movable flag."""
    scene = QGraphicsScene()
    node = DraggableNode(model.nodes["pending"], 100, 50)
    scene.addItem(node)

    assert node.top_left == (100, 50)
    assert node.flags() & QGraphicsItem.ItemIsMovable
    assert node.brush().color().name() == model.nodes["pending"].color.lower()


def test_multi_platform_node_has_dashed_border(app, model):
    node = DraggableNode(model.nodes["accepted"], 0, 0)
    assert node.pen().style() == Qt.DashLine
    assert DraggableNode(model.nodes["pending"], 0, 0).pen().style() == Qt.SolidLine


def test_edge_updates_when_node_moves(app, model):
    """EdgePath should register with both nodes and follow them."""
    scene = QGraphicsScene()
    source = DraggableNode(model.nodes["initial"], 0, 0)
    target = DraggableNode(model.nodes["pending"], 300, 0)
    scene.addItem(source)
    scene.addItem(target)
    edge = EdgePath(source, target, model.edges[0])
    scene.addItem(edge)

    assert edge in source.edges and edge in target.edges
    before = edge.path().boundingRect()
    target.setPos(300, 200)
    assert edge.path().boundingRect() != before


def test_self_loop_registers_once(app, model):
    node = DraggableNode(model.nodes["pending"], 0, 0)
    loop = EdgePath(node, node, model.edges[0])
    assert node.edges == [loop]
    assert not loop.path().isEmpty()


def test_scene_holds_visible_nodes_and_edges(diagram, model):
    assert {n for n in model.nodes if diagram.node_item(n)} == set(model.nodes)
    assert len(diagram.edge_items) == len(model.edges)


def test_parallel_edges_fan_out(diagram):
    bends = sorted(item.bend for item in diagram.edge_items
                   if {item.edge.source, item.edge.target} == {"pending", "accepted"})
    assert len(bends) == 2
    assert bends[0] != bends[1]


def test_tag_filter_rebuilds_scene(diagram):
    diagram.set_tag_filters(["flow:booking"])
    assert diagram.node_item("initial") is None
    assert diagram.node_item("pending") is not None
    assert {i.edge.event for i in diagram.edge_items} == {"ACCEPT", "FAST_TRACK"}

    diagram.set_tag_filters([])
    assert diagram.node_item("initial") is not None


def test_tag_groups_sit_behind_nodes(diagram):
    diagram.set_group_categories(["flow"])
    groups = diagram.group_items
    assert {g.group.tag for g in groups} == {"flow:booking", "flow:payment"}
    assert all(g.zValue() < 0 for g in groups)
    assert min(g.zValue() for g in groups) == GROUP_Z_BASE


def test_group_refresh_is_debounced_while_dragging(diagram):
    diagram.set_group_categories(["flow"])
    before = diagram.group_items[0].rect()

    diagram.node_item("pending").setPos(900, 900)
    assert diagram._group_timer.isActive()
    QTest.qWait(GROUP_DEBOUNCE_MS * 4)

    assert not diagram._group_timer.isActive()
    assert diagram.group_items[0].rect() != before


def test_saved_layout_is_applied_on_rebuild(diagram, model, store):
    store.save("/work/app", {"pending": (777.0, 333.0)})
    diagram.set_model(model, "/work/app")
    assert diagram.node_item("pending").top_left == (777.0, 333.0)


def test_partial_saved_layout_is_logged(diagram, model, store, caplog):
    store.save("/work/app", {"pending": (10.0, 10.0)})
    with caplog.at_level(logging.DEBUG, logger="implications_explorer.interactive_diagram"):
        diagram.set_model(model, "/work/app")
    assert "covers 1 of 4 nodes" in caplog.text


def test_drag_end_persists_layout(diagram, store):
    node = diagram.node_item("accepted")
    node.setPos(42, 24)
    diagram.node_released(node, moved=True)
    assert store.load("/work/app")["accepted"] == (42.0, 24.0)


def test_drag_under_filter_keeps_hidden_positions(diagram, store):
    seeded = {"initial": (1.0, 1.0), "pending": (2.0, 2.0), "accepted": (3.0, 3.0), "archived": (4.0, 4.0)}
    store.save("/work/app", seeded)
    diagram.set_tag_filters(["flow:payment"])
    assert diagram.node_item("initial") is None

    node = diagram.node_item("accepted")
    node.setPos(50, 60)
    diagram.node_released(node, moved=True)

    saved = store.load("/work/app")
    assert saved["accepted"] == (50.0, 60.0)
    assert saved["initial"] == (1.0, 1.0)
    assert saved["archived"] == (4.0, 4.0)


def test_click_emits_node_clicked(diagram):
    clicked = []
    diagram.nodeClicked.connect(clicked.append)
    diagram.node_released(diagram.node_item("pending"), moved=False)
    assert clicked == ["pending"]


def test_reset_layout_forgets_saved_positions(diagram, store):
    diagram.node_item("pending").setPos(5, 5)
    diagram.save_layout(remote=False)
    diagram.reset_layout(remote=False)
    assert store.load("/work/app") is None
    assert diagram.node_item("pending").top_left != (5.0, 5.0)


def test_highlight_dims_everything_off_path(diagram):
    result = diagram.controller.highlight_path_to("accepted")
    assert result.nodes == ["initial", "pending", "accepted"]
    assert not diagram.is_dimmed("pending")
    assert diagram.is_dimmed("archived")

    diagram.controller.clear_path_highlight()
    assert not diagram.is_dimmed("archived")


def test_highlight_without_path_leaves_view_unchanged(diagram):
    diagram.highlight_path_to("pending")
    before = {n: diagram.is_dimmed(n) for n in ("initial", "pending", "accepted", "archived")}

    assert diagram.highlight_path_to("archived") is None
    assert diagram.highlight_path_to("nothing_like_this") is None
    after = {n: diagram.is_dimmed(n) for n in before}
    assert after == before


def test_transition_picker_two_clicks(app):
    picker = TransitionPicker()
    picked = []
    picker.picked.connect(picked.append)

    assert picker.click("a") is None  # inactive
    picker.set_active(True)
    picker.click("a", "/a.js")
    assert picker.state == TransitionPicker.SOURCE_SELECTED
    payload = picker.click("b", "/b.js")

    assert payload == {"source": {"id": "a", "file": "/a.js"}, "target": {"id": "b", "file": "/b.js"}}
    assert picked == [payload]
    assert picker.state == TransitionPicker.IDLE


def test_clicking_source_again_cancels(app):
    picker = TransitionPicker()
    picker.set_active(True)
    picker.click("a")
    assert picker.click("a") is None
    assert picker.state == TransitionPicker.IDLE


def test_transition_mode_routes_clicks_to_picker(diagram):
    requested, clicked = [], []
    diagram.transitionRequested.connect(requested.append)
    diagram.nodeClicked.connect(clicked.append)
    diagram.set_transition_mode(True)

    diagram.node_released(diagram.node_item("pending"), moved=False)
    diagram.node_released(diagram.node_item("archived"), moved=False)

    assert clicked == []
    assert requested[0]["source"]["id"] == "pending"
    assert requested[0]["target"]["id"] == "archived"
    assert requested[0]["source"]["file"].endswith("PendingBookingImplications.js")


def test_focus_node(diagram):
    assert diagram.focus_node("accepted")
    assert diagram.node_item("accepted").isSelected()
    assert not diagram.focus_node("ghost")


def test_controller_is_inert_after_teardown(app, model):
    view = InteractiveStateDiagram()
    view.set_model(model)
    controller = view.controller
    view.teardown()

    assert not controller.valid
    assert controller.highlight_path_to("accepted") is None
    controller.fit()
    controller.relayout()
    assert view.node_item("pending") is None


def test_empty_model_builds_empty_scene(app):
    view = InteractiveStateDiagram()
    view.set_model(build_graph_from_discovery(DiscoveryResult.from_dict(discovery_payload([]))))
    assert view.edge_items == []
    view.teardown()


def test_self_transition_in_model(app):
    payload = discovery_payload([implication("AImplications", "initial")],
                                [transition("initial", "initial", "RETRY")])
    view = InteractiveStateDiagram()
    view.set_model(build_graph_from_discovery(DiscoveryResult.from_dict(payload)))
    assert len(view.edge_items) == 1
    view.teardown()
