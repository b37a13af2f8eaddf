# implications_explorer/graph_analysis.py
"""
Graph algorithms behind the diagram, kept free of Qt so they can be tested alone.

- Path search: locate the initial and target states and find a shortest path
  (uniform edge weight) with NetworkX.
- Tag filtering: which nodes and edges survive a set of 'category:value' filters.
- Tag groups: axis-aligned bounding boxes around nodes sharing a tag value,
  padded so that larger groups sit behind smaller ones.
- Automatic layout: layered left-to-right placement with barycenter ordering.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

import networkx as nx

from .state_graph import GraphModel, TransitionEdge

logger = logging.getLogger(__name__)

Position = Tuple[float, float]

INITIAL_STATE = 'initial'


def to_digraph(model: GraphModel) -> nx.MultiDiGraph:
    """Directed multigraph view of the model; parallel edges keep their events."""
    graph = nx.MultiDiGraph()
    for node_id in model.nodes:
        graph.add_node(node_id)
    for edge in model.edges:
        graph.add_edge(edge.source, edge.target, key=edge.event, edge=edge)
    return graph


# ---------------------------------------------------------------------------
# Path search
# ---------------------------------------------------------------------------

def find_target_node(model: GraphModel, target: str) -> Optional[str]:
    """Resolve a status string to a node id.

    Exact id or status match wins. Otherwise the shortest id that starts with
    the target, then the shortest id that contains it, so 'pending' never
    resolves to 'pending_review' while an exact 'pending' exists.
    """
    needle = (target or '').strip().lower()
    if not needle:
        return None

    for node in model.nodes.values():
        if node.id == needle or (node.status or '').lower() == needle:
            return node.id

    prefixed = sorted((nid for nid in model.nodes if nid.startswith(needle)), key=lambda n: (len(n), n))
    if prefixed:
        return prefixed[0]
    contained = sorted((nid for nid in model.nodes if needle in nid), key=lambda n: (len(n), n))
    if contained:
        return contained[0]
    return None


def find_initial_node(model: GraphModel) -> Optional[str]:
    """The canonical starting state of the machine."""
    if INITIAL_STATE in model.nodes:
        return INITIAL_STATE
    for node in model.nodes.values():
        if INITIAL_STATE in node.id or INITIAL_STATE in (node.status or '').lower():
            return node.id

    targets = {edge.target for edge in model.edges}
    for node_id in model.nodes:
        if node_id not in targets:
            return node_id
    return next(iter(model.nodes), None)


@dataclass
class PathResult:
    nodes: List[str]
    edges: List[TransitionEdge] = field(default_factory=list)

    @property
    def length(self) -> int:
        return len(self.edges)


def shortest_path(model: GraphModel, source: str, target: str) -> Optional[PathResult]:
    """Shortest path from source to target, or None when unreachable."""
    graph = to_digraph(model)
    try:
        node_path = nx.shortest_path(graph, source, target)
    except (nx.NetworkXNoPath, nx.NodeNotFound):
        return None

    edges = []
    for u, v in zip(node_path, node_path[1:]):
        # Parallel edges share the hop; the first one stands for it
        first_key = next(iter(graph[u][v]))
        edges.append(graph[u][v][first_key]['edge'])
    return PathResult(nodes=node_path, edges=edges)


def path_to_status(model: GraphModel, target: str) -> Optional[PathResult]:
    """Path from the initial state to the node matching target, or None (logged)."""
    target_id = find_target_node(model, target)
    if target_id is None:
        logger.warning("No state matches '%s'; nothing to highlight", target)
        return None
    initial_id = find_initial_node(model)
    if initial_id is None:
        logger.warning("Graph has no initial state; nothing to highlight")
        return None
    result = shortest_path(model, initial_id, target_id)
    if result is None:
        logger.warning("No path from '%s' to '%s'", initial_id, target_id)
    return result


# ---------------------------------------------------------------------------
# Tag filtering
# ---------------------------------------------------------------------------

def filter_by_tags(model: GraphModel,
                   active_filters: Iterable[str]) -> Tuple[Set[str], List[TransitionEdge]]:
    """Nodes carrying any active tag, and edges whose endpoints both survive.

    With no active filters everything is visible.
    """
    active = set(active_filters)
    if not active:
        return set(model.nodes), list(model.edges)

    visible = {node_id for node_id, node in model.nodes.items() if node.tag_keys() & active}
    edges = [edge for edge in model.edges if edge.source in visible and edge.target in visible]
    return visible, edges


# ---------------------------------------------------------------------------
# Tag group geometry
# ---------------------------------------------------------------------------

@dataclass
class Rect:
    x: float
    y: float
    width: float
    height: float

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    def contains(self, other: 'Rect') -> bool:
        return (self.x <= other.x and self.y <= other.y
                and self.right >= other.right and self.bottom >= other.bottom)


@dataclass
class TagGroup:
    tag: str
    node_ids: List[str]
    rect: Rect
    padding: float
    z_order: int


def bounding_box(positions: Dict[str, Position], node_ids: Iterable[str],
                 node_size: Tuple[float, float]) -> Optional[Rect]:
    """Enclosing rectangle of the given nodes (positions are top-left corners)."""
    width, height = node_size
    points = [positions[nid] for nid in node_ids if nid in positions]
    if not points:
        return None
    min_x = min(x for x, _ in points)
    min_y = min(y for _, y in points)
    max_x = max(x for x, _ in points) + width
    max_y = max(y for _, y in points) + height
    return Rect(min_x, min_y, max_x - min_x, max_y - min_y)


def group_members(model: GraphModel, categories: Iterable[str],
                  visible: Optional[Set[str]] = None) -> Dict[str, List[str]]:
    """'category:value' -> node ids, for the requested categories."""
    wanted = set(categories)
    groups: Dict[str, List[str]] = {}
    for node_id, node in model.nodes.items():
        if visible is not None and node_id not in visible:
            continue
        for category, values in node.tags.items():
            if category not in wanted:
                continue
            for value in values:
                groups.setdefault(f"{category}:{value}", []).append(node_id)
    return groups


def compute_tag_groups(groups: Dict[str, List[str]], positions: Dict[str, Position],
                       node_size: Tuple[float, float], base_padding: float = 16,
                       padding_step: float = 12) -> List[TagGroup]:
    """Padded bounding boxes for each group, staggered by descending area.

    The largest group gets the most padding and the lowest z-order, so a group
    nested inside another always stays visible on top of it.
    """
    boxes = []
    for tag, node_ids in groups.items():
        rect = bounding_box(positions, node_ids, node_size)
        if rect is not None:
            boxes.append((tag, node_ids, rect))

    boxes.sort(key=lambda item: (-item[2].area, item[0]))
    count = len(boxes)
    result = []
    for rank, (tag, node_ids, rect) in enumerate(boxes):
        padding = base_padding + padding_step * (count - 1 - rank)
        padded = Rect(rect.x - padding, rect.y - padding,
                      rect.width + 2 * padding, rect.height + 2 * padding)
        result.append(TagGroup(tag=tag, node_ids=list(node_ids), rect=padded,
                               padding=padding, z_order=rank))
    return result


# ---------------------------------------------------------------------------
# Automatic layout
# ---------------------------------------------------------------------------

def assign_layers(model: GraphModel) -> Dict[str, int]:
    """Layer index per node: BFS depth from the roots.

    Roots are the initial state plus every node without incoming edges. Nodes
    only reachable through cycles are seeded one layer after the deepest
    placed node.
    """
    graph = nx.DiGraph()
    graph.add_nodes_from(model.nodes)
    graph.add_edges_from((edge.source, edge.target) for edge in model.edges if edge.source != edge.target)

    roots = [nid for nid in graph.nodes if graph.in_degree(nid) == 0]
    initial = find_initial_node(model)
    if initial is not None and initial not in roots:
        roots.insert(0, initial)

    layers: Dict[str, int] = {}
    seeds = roots
    offset = 0
    while len(layers) < graph.number_of_nodes():
        if not seeds:
            seeds = [next(nid for nid in graph.nodes if nid not in layers)]
        for seed in seeds:
            if seed in layers:
                continue
            for node_id, depth in nx.single_source_shortest_path_length(graph, seed).items():
                layers.setdefault(node_id, depth + offset)
        offset = max(layers.values()) + 1
        seeds = []
    return layers


def hierarchical_layout(model: GraphModel, node_size: Tuple[float, float] = (120, 50),
                        rank_sep: float = 150, node_sep: float = 60,
                        margin: float = 50, sweeps: int = 4) -> Dict[str, Position]:
    """Layered left-to-right layout: x by layer, y ordered by neighbor barycenter."""
    if model.is_empty:
        return {}

    layers = assign_layers(model)
    by_layer: Dict[int, List[str]] = {}
    for node_id in model.nodes:
        by_layer.setdefault(layers[node_id], []).append(node_id)
    layer_indexes = sorted(by_layer)

    neighbors: Dict[str, Set[str]] = {nid: set() for nid in model.nodes}
    for edge in model.edges:
        if edge.source != edge.target:
            neighbors[edge.source].add(edge.target)
            neighbors[edge.target].add(edge.source)

    order = {nid: i for layer in by_layer.values() for i, nid in enumerate(layer)}

    def barycenter(node_id: str, adjacent: Set[str]) -> float:
        linked = [order[n] for n in neighbors[node_id] if n in adjacent]
        if not linked:
            return order[node_id]
        return sum(linked) / len(linked)

    for _ in range(sweeps):
        for previous, current in zip(layer_indexes, layer_indexes[1:]):
            adjacent = set(by_layer[previous])
            by_layer[current].sort(key=lambda n: barycenter(n, adjacent))
            order.update({nid: i for i, nid in enumerate(by_layer[current])})
        for following, current in zip(layer_indexes[::-1], layer_indexes[-2::-1]):
            adjacent = set(by_layer[following])
            by_layer[current].sort(key=lambda n: barycenter(n, adjacent))
            order.update({nid: i for i, nid in enumerate(by_layer[current])})

    width, height = node_size
    tallest = max(len(nodes) for nodes in by_layer.values())
    column_height = tallest * height + (tallest - 1) * node_sep

    positions: Dict[str, Position] = {}
    for column, layer_index in enumerate(layer_indexes):
        nodes = by_layer[layer_index]
        layer_height = len(nodes) * height + (len(nodes) - 1) * node_sep
        top = margin + (column_height - layer_height) / 2
        x = margin + column * (width + rank_sep)
        for row, node_id in enumerate(nodes):
            positions[node_id] = (x, top + row * (height + node_sep))
    return positions


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

@dataclass
class SearchHit:
    node_id: str
    text: str
    kind: str  # 'state' or 'transition'


def search_graph(model: GraphModel, query: str, limit: int = 50) -> List[SearchHit]:
    """Case-insensitive match over state ids, labels and statuses, then transition events.

    A transition hit points at its source state.
    """
    needle = (query or '').strip().lower()
    if not needle:
        return []

    hits: List[SearchHit] = []
    for node in model.nodes.values():
        fields = (node.id, node.label, node.status or '')
        if any(needle in value.lower() for value in fields):
            hits.append(SearchHit(node.id, f"{node.icon} {node.label} ({node.id})", 'state'))
    for edge in model.edges:
        if needle in edge.event.lower():
            hits.append(SearchHit(edge.source, f"{edge.event}: {edge.source} -> {edge.target}", 'transition'))
    return hits[:limit]
