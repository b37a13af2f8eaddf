"""Graph data model for the state diagram, built from a discovery scan."""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from .discovery import DiscoveryResult, Implication, normalize_state_id, UNKNOWN_STATE
from .theme import DEFAULT_THEME, Theme, configured_node_color

logger = logging.getLogger(__name__)


@dataclass
class StateNode:
    id: str
    label: str
    status: Optional[str]
    class_name: Optional[str]
    color: str
    icon: str
    platform: str
    platform_color: str
    platforms: List[str]
    screen: Optional[str] = None
    pattern: Optional[str] = None
    tags: Dict[str, List[str]] = field(default_factory=dict)
    implication_file: str = ''
    test_file: str = ''

    @property
    def is_multi_platform(self) -> bool:
        return len(self.platforms) > 1

    @property
    def border_style(self) -> str:
        return 'multi' if self.is_multi_platform else 'solid'

    def tag_keys(self) -> Set[str]:
        """All 'category:value' strings this node carries."""
        return {f"{category}:{value}" for category, values in self.tags.items() for value in values}


@dataclass
class TransitionEdge:
    source: str
    target: str
    event: str
    color: str
    platforms: List[str] = field(default_factory=list)
    has_requires: bool = False
    has_conditions: bool = False
    action_step_count: int = 0
    is_observer: bool = False

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.source, self.target, self.event)

    @property
    def id(self) -> str:
        return f"{self.source}-{self.target}-{self.event}"

    @property
    def label(self) -> str:
        return f"👁 {self.event}" if self.is_observer else self.event

    @property
    def dashed(self) -> bool:
        return self.has_requires or self.has_conditions


@dataclass
class GraphModel:
    nodes: Dict[str, StateNode] = field(default_factory=dict)
    edges: List[TransitionEdge] = field(default_factory=list)
    screen_groups: Dict[str, List[str]] = field(default_factory=dict)
    discovered_tags: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.nodes

    def to_dict(self) -> dict:
        """JSON-friendly snapshot, used for the session cache."""
        return {
            'nodes': [
                {'id': n.id, 'label': n.label, 'status': n.status, 'platform': n.platform,
                 'platforms': n.platforms, 'tags': n.tags, 'screen': n.screen}
                for n in self.nodes.values()
            ],
            'edges': [
                {'id': e.id, 'source': e.source, 'target': e.target, 'label': e.event}
                for e in self.edges
            ],
            'screenGroups': self.screen_groups,
            'discoveredTags': self.discovered_tags,
        }


def node_id_for(implication: Implication) -> str:
    """A state's id: its lowercased status when declared, else its normalized class name."""
    metadata = implication.metadata
    if metadata.status:
        return metadata.status.lower()
    return normalize_state_id(metadata.class_name)


def _join(project_path: str, relative: Optional[str]) -> str:
    if not relative:
        return ''
    if not project_path:
        return relative
    return project_path.rstrip('/') + '/' + relative.lstrip('/')


def state_lookup(implications: List[Implication]) -> Dict[str, str]:
    """Map every name a transition may use for a state (class name, normalized
    class name, lowercased status) to its node id. The first claim wins."""
    lookup: Dict[str, str] = {}
    for implication in implications:
        metadata = implication.metadata
        node_id = node_id_for(implication)
        for alias in (metadata.class_name, normalize_state_id(metadata.class_name), node_id,
                      metadata.status.lower() if metadata.status else None):
            if alias:
                lookup.setdefault(alias, node_id)
    return lookup


def resolve_state(lookup: Dict[str, str], name: str) -> Optional[str]:
    """Node id for a state name written as a class name, normalized name or status."""
    for candidate in (name, name.lower(), normalize_state_id(name)):
        if candidate in lookup:
            return lookup[candidate]
    return None


def build_graph_from_discovery(discovery: DiscoveryResult, theme: Theme = DEFAULT_THEME) -> GraphModel:
    """Build the node/edge model from a discovery scan.

    Only implications with a state machine config become nodes. Node colours
    come from the scan's config.graphColors when it has one, else from the
    theme's status colours. Nodes are created first so that every edge can
    be checked against the final node set; edges whose endpoints do not
    resolve are dropped with a warning.
    """
    model = GraphModel()
    all_tags: Dict[str, Set[str]] = {}
    graph_colors = discovery.config.get('graphColors')
    if not isinstance(graph_colors, dict):
        graph_colors = None

    stateful = discovery.stateful_implications
    lookup = state_lookup(stateful)
    logger.debug("Building graph from %d stateful implications (of %d)",
                 len(stateful), len(discovery.implications))

    # Pass 1: nodes
    for implication in stateful:
        metadata = implication.metadata
        node_id = node_id_for(implication)
        if node_id in model.nodes:
            logger.warning("Duplicate state id '%s' from %s; keeping the first", node_id, implication.path)
            continue

        class_state = normalize_state_id(metadata.class_name)
        platform = metadata.effective_platform
        status_key = metadata.status or node_id
        if graph_colors is not None:
            color = configured_node_color(graph_colors, metadata.platform or platform,
                                          metadata.status, metadata.pattern)
        else:
            color = theme.status_color(status_key)
        node = StateNode(
            id=node_id,
            label=class_state if metadata.class_name else UNKNOWN_STATE,
            status=metadata.status,
            class_name=metadata.class_name,
            color=color,
            icon=theme.status_icon(status_key),
            platform=platform,
            platform_color=theme.platform_style(platform).color,
            platforms=metadata.all_platforms,
            screen=metadata.screen,
            pattern=metadata.pattern,
            tags={category: list(values) for category, values in metadata.tags.items()},
            implication_file=_join(discovery.project_path, implication.path),
            test_file=_join(discovery.project_path, metadata.test_file),
        )
        model.nodes[node_id] = node

        for category, values in node.tags.items():
            all_tags.setdefault(category, set()).update(values)
        if metadata.screen:
            model.screen_groups.setdefault(metadata.screen, []).append(node_id)

    # Pass 2: edges
    for transition in discovery.transitions:
        source = resolve_state(lookup, transition.from_state)
        target = resolve_state(lookup, transition.to_state)
        if source is None or target is None:
            logger.warning("Dropping transition %s -> %s (%s): unknown state",
                           transition.from_state, transition.to_state, transition.event)
            continue

        if transition.platforms:
            color = theme.platform_style(transition.platforms[0]).color
        else:
            color = model.nodes[source].platform_color

        model.edges.append(TransitionEdge(
            source=source,
            target=target,
            event=transition.event,
            color=color,
            platforms=list(transition.platforms),
            has_requires=transition.has_requires,
            has_conditions=transition.has_conditions,
            action_step_count=transition.action_step_count,
            is_observer=transition.is_observer,
        ))

    model.discovered_tags = {category: sorted(values) for category, values in all_tags.items()}
    logger.info("Built graph: %d nodes, %d edges", len(model.nodes), len(model.edges))
    return model
