"""Interactive state diagram: draggable states, transition edges and tag groups."""
import logging
import math
from typing import Dict, Iterable, List, Optional, Set, Tuple

from PySide6.QtWidgets import (
    QGraphicsRectItem, QGraphicsTextItem, QGraphicsItem, QGraphicsPathItem,
    QGraphicsView, QGraphicsScene, QGraphicsPolygonItem, QGraphicsSimpleTextItem
)
from PySide6.QtCore import Qt, QObject, QRectF, QPointF, QTimer, Signal
from PySide6.QtGui import QBrush, QPen, QColor, QFont, QPainterPath, QPainter, QPolygonF

from .graph_analysis import (
    PathResult, TagGroup, compute_tag_groups, filter_by_tags, group_members,
    hierarchical_layout, path_to_status,
)
from .layout_store import LayoutStore, is_complete, merge_layout
from .state_graph import GraphModel, StateNode, TransitionEdge
from .theme import DEFAULT_THEME, Theme

logger = logging.getLogger(__name__)

Position = Tuple[float, float]

GROUP_DEBOUNCE_MS = 50
GROUP_Z_BASE = -100
EDGE_Z = 0
NODE_Z = 10
PARALLEL_EDGE_SPREAD = 24

# Cycled through for tag group overlays
GROUP_COLORS = ['#3b82f6', '#a855f7', '#10b981', '#f59e0b', '#ef4444', '#06b6d4', '#ec4899']


class DraggableNode(QGraphicsRectItem):
    """A draggable rectangle representing one state."""

    def __init__(self, state: StateNode, x: float, y: float, theme: Theme = DEFAULT_THEME):
        super().__init__(0, 0, theme.node_width, theme.node_height)
        self.node_id = state.id
        self.state = state
        self.edges = []  # Connected edges to update on move
        self.listener = None  # The diagram; cleared on teardown
        self._press_pos = None

        self.setPos(x, y)
        self.setZValue(NODE_Z)

        self.setFlag(QGraphicsItem.ItemIsMovable, True)
        self.setFlag(QGraphicsItem.ItemIsSelectable, True)
        self.setFlag(QGraphicsItem.ItemSendsGeometryChanges, True)

        # Fill by status, border by platform; multi-platform states get a wide dashed border
        self.setBrush(QBrush(QColor(state.color)))
        if state.is_multi_platform:
            pen = QPen(QColor(theme.multi_border_color), theme.multi_border_width)
            pen.setStyle(Qt.DashLine)
        else:
            pen = QPen(QColor(state.platform_color), theme.border_width)
        self.setPen(pen)
        self.setToolTip(f"{state.label}\nstatus: {state.status or '-'}\n"
                        f"platforms: {', '.join(state.platforms)}")

        self._text = QGraphicsTextItem(f"{state.icon} {state.label}", self)
        self._text.setDefaultTextColor(QColor(theme.text_color))
        self._text.setFont(QFont("Arial", 8))
        self._text.setTextWidth(theme.node_width - 8)
        text_rect = self._text.boundingRect()
        self._text.setPos(
            (theme.node_width - text_rect.width()) / 2,
            (theme.node_height - text_rect.height()) / 2
        )

    @property
    def top_left(self) -> Position:
        return (self.pos().x(), self.pos().y())

    def itemChange(self, change, value):
        """Update connected edges when node moves."""
        if change == QGraphicsItem.ItemPositionHasChanged:
            for edge in self.edges:
                edge.update_path()
            if self.listener is not None:
                self.listener.node_moved(self)
        return super().itemChange(change, value)

    def mousePressEvent(self, event):
        self._press_pos = self.pos()
        super().mousePressEvent(event)

    def mouseReleaseEvent(self, event):
        super().mouseReleaseEvent(event)
        moved = self._press_pos is not None and self._press_pos != self.pos()
        self._press_pos = None
        if self.listener is not None:
            self.listener.node_released(self, moved)


class EdgePath(QGraphicsPathItem):
    """A labelled transition arrow that follows its nodes."""

    def __init__(self, source: DraggableNode, target: DraggableNode, edge: TransitionEdge,
                 theme: Theme = DEFAULT_THEME, bend: float = 0.0):
        super().__init__()
        self.source = source
        self.target = target
        self.edge = edge
        self.bend = bend
        self._theme = theme
        self.setZValue(EDGE_Z)

        source.edges.append(self)
        if target is not source:
            target.edges.append(self)

        color = QColor(edge.color)
        pen = QPen(color, theme.edge_width)
        if edge.dashed:
            pen.setStyle(Qt.DashLine)
        self.setPen(pen)

        self._arrow = QGraphicsPolygonItem(self)
        self._arrow.setBrush(QBrush(color))
        self._arrow.setPen(QPen(Qt.NoPen))

        self._label = QGraphicsSimpleTextItem(edge.label, self)
        self._label.setBrush(QBrush(QColor(theme.text_color)))
        self._label.setFont(QFont("Arial", 7))
        tooltip = edge.event
        if edge.action_step_count:
            tooltip += f"\n{edge.action_step_count} action steps"
        if edge.platforms:
            tooltip += f"\nplatforms: {', '.join(edge.platforms)}"
        self.setToolTip(tooltip)

        self.update_path()

    def update_path(self):
        """Recalculate path from source edge to target edge with arrow."""
        source_rect = self.source.sceneBoundingRect()
        target_rect = self.target.sceneBoundingRect()
        path = QPainterPath()

        if self.source is self.target:
            # Self transition: loop over the top of the node
            top = QPointF(source_rect.center().x(), source_rect.top())
            start = QPointF(top.x() - 15, top.y())
            end = QPointF(top.x() + 15, top.y())
            lift = 35 + self.bend
            path.moveTo(start)
            path.cubicTo(QPointF(start.x() - 20, start.y() - lift),
                         QPointF(end.x() + 20, end.y() - lift), end)
            self.setPath(path)
            self._update_arrow(QPointF(end.x() + 5, end.y() - 10), end)
            self._place_label(QPointF(top.x(), top.y() - lift))
            return

        start = self._get_edge_point(source_rect, target_rect.center())
        end = self._get_edge_point(target_rect, source_rect.center())
        path.moveTo(start)
        if self.bend:
            control = self._control_point(start, end)
            path.quadTo(control, end)
            label_at = path.pointAtPercent(0.5)
            self._update_arrow(control, end)
        else:
            path.lineTo(end)
            label_at = QPointF((start.x() + end.x()) / 2, (start.y() + end.y()) / 2)
            self._update_arrow(start, end)
        self.setPath(path)
        self._place_label(label_at)

    def _control_point(self, start: QPointF, end: QPointF) -> QPointF:
        dx = end.x() - start.x()
        dy = end.y() - start.y()
        length = math.hypot(dx, dy) or 1.0
        mid = QPointF((start.x() + end.x()) / 2, (start.y() + end.y()) / 2)
        return QPointF(mid.x() - dy / length * self.bend, mid.y() + dx / length * self.bend)

    def _place_label(self, at: QPointF):
        rect = self._label.boundingRect()
        self._label.setPos(at.x() - rect.width() / 2, at.y() - rect.height() / 2)

    def _get_edge_point(self, rect: QRectF, toward: QPointF) -> QPointF:
        """Get the midpoint of the rect side closest to the 'toward' point."""
        center = rect.center()
        dx = toward.x() - center.x()
        dy = toward.y() - center.y()

        # Normalize by dimensions to handle non-square nodes
        half_width = rect.width() / 2
        half_height = rect.height() / 2
        if half_width > 0 and half_height > 0:
            norm_dx = abs(dx) / half_width
            norm_dy = abs(dy) / half_height
        else:
            norm_dx = abs(dx)
            norm_dy = abs(dy)

        if norm_dx > norm_dy:
            if dx > 0:
                return QPointF(rect.right(), center.y())
            return QPointF(rect.left(), center.y())
        if dy > 0:
            return QPointF(center.x(), rect.bottom())
        return QPointF(center.x(), rect.top())

    def _update_arrow(self, start: QPointF, end: QPointF):
        """Point the arrow head along start -> end, tip at end."""
        dx = end.x() - start.x()
        dy = end.y() - start.y()
        length = math.sqrt(dx * dx + dy * dy)
        if length == 0:
            self._arrow.setPolygon(QPolygonF())
            return
        dx /= length
        dy /= length

        size = self._theme.arrow_size
        p2 = QPointF(end.x() - size * dx + size * 0.5 * dy,
                     end.y() - size * dy - size * 0.5 * dx)
        p3 = QPointF(end.x() - size * dx - size * 0.5 * dy,
                     end.y() - size * dy + size * 0.5 * dx)
        self._arrow.setPolygon(QPolygonF([end, p2, p3]))


class TagGroupItem(QGraphicsRectItem):
    """Translucent box around the states sharing one tag value."""

    def __init__(self, group: TagGroup, color: str):
        rect = group.rect
        super().__init__(rect.x, rect.y, rect.width, rect.height)
        self.group = group
        self.setZValue(GROUP_Z_BASE + group.z_order)

        fill = QColor(color)
        fill.setAlpha(28)
        self.setBrush(QBrush(fill))
        pen = QPen(QColor(color), 1.5)
        pen.setStyle(Qt.DashLine)
        self.setPen(pen)
        self.setAcceptedMouseButtons(Qt.NoButton)

        self._label = QGraphicsSimpleTextItem(group.tag, self)
        self._label.setBrush(QBrush(QColor(color)))
        self._label.setFont(QFont("Arial", 7))
        self._label.setPos(rect.x + 4, rect.y + 2)


class TransitionPicker(QObject):
    """Two-click source/target selection for authoring a transition.

    idle --click A--> source_selected --click B--> emits picked({source, target}) --> idle
    Clicking the source again, or deactivating, returns to idle.
    """

    IDLE = 'idle'
    SOURCE_SELECTED = 'source_selected'

    picked = Signal(dict)
    stateChanged = Signal(str)

    def __init__(self, parent=None):
        super().__init__(parent)
        self.active = False
        self.state = self.IDLE
        self.source = None

    def set_active(self, active: bool):
        self.active = active
        self.reset()

    def reset(self):
        self.source = None
        self._set_state(self.IDLE)

    def _set_state(self, state: str):
        if state != self.state:
            self.state = state
            self.stateChanged.emit(state)

    def click(self, node_id: str, file_path: str = '') -> Optional[dict]:
        if not self.active:
            return None
        if self.state == self.IDLE:
            self.source = {'id': node_id, 'file': file_path}
            self._set_state(self.SOURCE_SELECTED)
            return None
        if node_id == self.source['id']:
            self.reset()
            return None
        payload = {'source': self.source, 'target': {'id': node_id, 'file': file_path}}
        self.reset()
        self.picked.emit(payload)
        return payload


class GraphController:
    """Imperative controls over one diagram; dead once the diagram is torn down."""

    def __init__(self, view: 'InteractiveStateDiagram'):
        self._view = view

    @property
    def valid(self) -> bool:
        return self._view is not None

    def invalidate(self):
        self._view = None

    def _target(self):
        if self._view is None:
            logger.debug("Graph controller used after teardown; ignoring")
        return self._view

    def fit(self):
        if self._target():
            self._view.fit()

    def reset_zoom(self):
        if self._target():
            self._view.resetTransform()

    def relayout(self):
        if self._target():
            self._view.relayout()

    def save_layout(self, remote: bool = True):
        if self._target():
            self._view.save_layout(remote=remote)

    def reset_layout(self, remote: bool = True):
        if self._target():
            self._view.reset_layout(remote=remote)

    def highlight_path_to(self, target: str) -> Optional[PathResult]:
        if self._target():
            return self._view.highlight_path_to(target)
        return None

    def clear_path_highlight(self):
        if self._target():
            self._view.clear_path_highlight()


class InteractiveStateDiagram(QGraphicsView):
    """QGraphicsView displaying the state machine of one project."""

    nodeClicked = Signal(str)
    transitionRequested = Signal(dict)

    def __init__(self, parent=None, theme: Theme = DEFAULT_THEME,
                 layout_store: Optional[LayoutStore] = None):
        super().__init__(parent)
        self._scene = QGraphicsScene(self)
        self.setScene(self._scene)
        self.theme = theme
        self.layout_store = layout_store

        self.setRenderHint(QPainter.Antialiasing)
        self.setDragMode(QGraphicsView.ScrollHandDrag)
        self.setBackgroundBrush(QBrush(QColor(theme.background)))

        self.model = GraphModel()
        self.project_path = ''
        self.tag_filters: Set[str] = set()
        self.group_categories: List[str] = []

        self._nodes: Dict[str, DraggableNode] = {}
        self._edges: List[EdgePath] = []
        self._groups: List[TagGroupItem] = []
        self._highlighted: Optional[PathResult] = None

        self._group_timer = QTimer(self)
        self._group_timer.setSingleShot(True)
        self._group_timer.setInterval(GROUP_DEBOUNCE_MS)
        self._group_timer.timeout.connect(self._refresh_groups)

        self.picker = TransitionPicker(self)
        self.picker.picked.connect(self.transitionRequested)

        self.controller = GraphController(self)

    # -- inputs --------------------------------------------------------------

    def set_model(self, model: GraphModel, project_path: Optional[str] = None):
        self.model = model
        if project_path is not None:
            self.project_path = project_path
        self.rebuild()

    def set_tag_filters(self, filters: Iterable[str]):
        self.tag_filters = set(filters)
        self.rebuild()

    def set_group_categories(self, categories: Iterable[str]):
        self.group_categories = list(categories)
        self._refresh_groups()

    def set_transition_mode(self, enabled: bool):
        self.picker.set_active(enabled)
        self._scene.clearSelection()

    @property
    def transition_mode(self) -> bool:
        return self.picker.active

    # -- building ------------------------------------------------------------

    def _clear(self):
        self._group_timer.stop()
        for node in self._nodes.values():
            node.listener = None
        self._scene.clear()
        self._nodes = {}
        self._edges = []
        self._groups = []
        self._highlighted = None

    def _initial_positions(self) -> Dict[str, Position]:
        auto = hierarchical_layout(self.model, (self.theme.node_width, self.theme.node_height))
        saved = self.layout_store.load(self.project_path) if self.layout_store else None
        if saved and not is_complete(saved, auto):
            logger.debug("Saved layout covers %d of %d nodes; the rest are placed automatically",
                         sum(1 for node_id in auto if node_id in saved), len(auto))
        return merge_layout(auto, saved)

    def rebuild(self):
        """Full rebuild of the scene from (model, filters, layout)."""
        self._clear()
        if self.model.is_empty:
            return

        visible, edges = filter_by_tags(self.model, self.tag_filters)
        positions = self._initial_positions()
        for node_id, state in self.model.nodes.items():
            if node_id not in visible:
                continue
            x, y = positions.get(node_id, (0.0, 0.0))
            node = DraggableNode(state, x, y, self.theme)
            node.listener = self
            self._scene.addItem(node)
            self._nodes[node_id] = node
        self._build_edges(edges)
        self._refresh_groups()

    def _build_edges(self, edges: List[TransitionEdge]):
        """Create EdgePath for each transition; parallel edges fan out."""
        seen_pairs: Dict[Tuple[str, str], int] = {}
        for edge in edges:
            pair = tuple(sorted((edge.source, edge.target)))
            index = seen_pairs.get(pair, 0)
            seen_pairs[pair] = index + 1
            # 0, +1, -1, +2, -2 ... spread around the straight line
            side = 1 if index % 2 else -1
            bend = side * ((index + 1) // 2) * PARALLEL_EDGE_SPREAD
            if edge.source > edge.target:
                bend = -bend
            item = EdgePath(self._nodes[edge.source], self._nodes[edge.target], edge, self.theme, bend)
            self._scene.addItem(item)
            self._edges.append(item)

    # -- node callbacks ------------------------------------------------------

    def node_moved(self, node: DraggableNode):
        self._group_timer.start()

    def node_released(self, node: DraggableNode, moved: bool):
        if moved:
            self._persist_layout()
            return
        if self.picker.active:
            self.picker.click(node.node_id, node.state.implication_file)
            if self.picker.state == TransitionPicker.SOURCE_SELECTED:
                node.setSelected(True)
            return
        self.nodeClicked.emit(node.node_id)

    # -- layout --------------------------------------------------------------

    def positions(self) -> Dict[str, Position]:
        return {node_id: node.top_left for node_id, node in self._nodes.items()}

    def apply_positions(self, positions: Dict[str, Position]):
        for node_id, (x, y) in positions.items():
            node = self._nodes.get(node_id)
            if node is not None:
                node.setPos(x, y)
        self._group_timer.start()

    def _persist_layout(self):
        if self.layout_store is None or not self.project_path:
            return
        try:
            self.layout_store.save(self.project_path, self.positions())
        except OSError as e:
            logger.error("Could not save layout locally: %s", e)

    def save_layout(self, remote: bool = True):
        """Save current positions locally and, with remote, to the backend (raises ApiError)."""
        if self.layout_store is None or not self.project_path:
            return
        self.layout_store.save(self.project_path, self.positions(), remote=remote)

    def reset_layout(self, remote: bool = True):
        if self.layout_store is not None and self.project_path:
            self.layout_store.clear(self.project_path, remote=remote)
        self.relayout()

    def relayout(self):
        self.apply_positions(hierarchical_layout(self.model, (self.theme.node_width, self.theme.node_height)))

    # -- tag groups ----------------------------------------------------------

    def _refresh_groups(self):
        for item in self._groups:
            self._scene.removeItem(item)
        self._groups = []
        if not self.group_categories or not self._nodes:
            return

        members = group_members(self.model, self.group_categories, set(self._nodes))
        groups = compute_tag_groups(members, self.positions(),
                                    (self.theme.node_width, self.theme.node_height),
                                    self.theme.group_padding, self.theme.group_padding_step)
        colors = {tag: GROUP_COLORS[i % len(GROUP_COLORS)] for i, tag in enumerate(sorted(members))}
        for group in groups:
            item = TagGroupItem(group, colors[group.tag])
            self._scene.addItem(item)
            self._groups.append(item)
        if self._highlighted is not None:
            self._apply_highlight(self._highlighted)

    # -- path highlighting ---------------------------------------------------

    def highlight_path_to(self, target: str) -> Optional[PathResult]:
        """Dim everything off the shortest path from the initial state to target.

        Returns None and leaves the view untouched when there is no such path.
        """
        result = path_to_status(self.model, target)
        if result is None:
            return None
        self._highlighted = result
        self._apply_highlight(result)
        return result

    def _apply_highlight(self, result: PathResult):
        on_nodes = set(result.nodes)
        on_edges = {edge.key for edge in result.edges}
        dim = self.theme.dimmed_opacity
        for node_id, node in self._nodes.items():
            node.setOpacity(1.0 if node_id in on_nodes else dim)
        for item in self._edges:
            item.setOpacity(1.0 if item.edge.key in on_edges else dim)
        for item in self._groups:
            item.setOpacity(dim)

    def clear_path_highlight(self):
        self._highlighted = None
        for item in list(self._nodes.values()) + self._edges + self._groups:
            item.setOpacity(1.0)

    def is_dimmed(self, node_id: str) -> bool:
        node = self._nodes.get(node_id)
        return node is not None and node.opacity() < 1.0

    # -- view ----------------------------------------------------------------

    def fit(self):
        rect = self._scene.itemsBoundingRect()
        if not rect.isEmpty():
            self.fitInView(rect.adjusted(-20, -20, 20, 20), Qt.KeepAspectRatio)

    def focus_node(self, node_id: str) -> bool:
        node = self._nodes.get(node_id)
        if node is None:
            return False
        self._scene.clearSelection()
        node.setSelected(True)
        self.centerOn(node)
        return True

    def wheelEvent(self, event):
        factor = 1.15 if event.angleDelta().y() > 0 else 1 / 1.15
        self.scale(factor, factor)

    def node_item(self, node_id: str) -> Optional[DraggableNode]:
        return self._nodes.get(node_id)

    @property
    def edge_items(self) -> List[EdgePath]:
        return list(self._edges)

    @property
    def group_items(self) -> List[TagGroupItem]:
        return list(self._groups)

    def teardown(self):
        """Stop timers, drop listeners, clear the scene and invalidate the controller."""
        self._clear()
        try:
            self.picker.picked.disconnect(self.transitionRequested)
        except (RuntimeError, TypeError):
            logger.debug("Picker signal already disconnected")
        self.picker.set_active(False)
        self.controller.invalidate()
