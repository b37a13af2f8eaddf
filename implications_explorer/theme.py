# implications_explorer/theme.py
"""Colors, icons and sizes used by the state diagram."""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

# State status colors (per-project; unknown statuses fall back to DEFAULT_STATUS_COLOR)
STATUS_COLORS = {
    'created': '#6b7280',      # Slate
    'pending': '#eab308',      # Yellow
    'invited': '#3b82f6',      # Blue
    'accepted': '#10b981',     # Emerald
    'rejected': '#ef4444',     # Red
    'standby': '#f59e0b',      # Amber
    'checked_in': '#8b5cf6',   # Violet
    'checked_out': '#06b6d4',  # Cyan
}
DEFAULT_STATUS_COLOR = '#6b7280'

STATUS_ICONS = {
    'created': '📝',
    'pending': '⏳',
    'invited': '💌',
    'accepted': '✅',
    'rejected': '❌',
    'standby': '⏸',
    'checked_in': '🎯',
    'checked_out': '✨',
}
DEFAULT_STATUS_ICON = '📝'


@dataclass
class PlatformStyle:
    name: str
    color: str
    icon: str


PLATFORM_STYLES = {
    'web': PlatformStyle('Web', '#f1f5f9', '🌐'),
    'mobile-dancer': PlatformStyle('Dancer', '#a855f7', '📱'),
    'dancer': PlatformStyle('Dancer', '#a855f7', '📱'),
    'mobile-manager': PlatformStyle('Manager', '#3b82f6', '📲'),
    'clubApp': PlatformStyle('Manager', '#3b82f6', '📲'),
}
UNKNOWN_PLATFORM = PlatformStyle('Unknown', '#666666', '❓')

# Node colour maps for projects whose scan config sets graphColors.
# Each map falls back to its '_default' entry.
GRAPH_COLOR_MAPS = {
    'platforms': {
        'web': '#3b82f6',
        'mobile-dancer': '#a855f7',
        'mobile-manager': '#06b6d4',
        'mobile': '#8b5cf6',
        '_default': '#3b82f6',
    },
    'statuses': {
        'pending': '#f59e0b',
        'accepted': '#10b981',
        'rejected': '#ef4444',
        'cancelled': '#6b7280',
        'completed': '#3b82f6',
        'checked_in': '#8b5cf6',
        '_default': '#8b5cf6',
    },
    'patterns': {
        'booking': '#3b82f6',
        'cms': '#10b981',
        '_default': '#8b5cf6',
    },
}
GRAPH_COLOR_FALLBACK = '#3b82f6'

# colorNodesBy value -> colour map it reads
_COLOR_BY_MAP = {'platform': 'platforms', 'status': 'statuses', 'pattern': 'patterns'}


def normalize_hex_color(color: Optional[str]) -> str:
    """Drop the alpha channel of an 8-digit hex colour (#rrggbbaa -> #rrggbb)."""
    if not isinstance(color, str) or not color:
        return GRAPH_COLOR_MAPS['statuses']['_default']
    if len(color) == 9 and color.startswith('#'):
        return color[:7]
    return color


def configured_node_color(graph_colors: Dict[str, Any], platform: str,
                          status: Optional[str], pattern: Optional[str]) -> str:
    """Node colour from a project's graphColors config.

    colorNodesBy picks the attribute (platform, status or pattern; anything
    else means platform). Maps missing from the config use GRAPH_COLOR_MAPS.
    """
    color_by = graph_colors.get('colorNodesBy')
    map_name = _COLOR_BY_MAP.get(color_by, 'platforms') if isinstance(color_by, str) else 'platforms'
    value = {'platforms': platform, 'statuses': status, 'patterns': pattern}[map_name]
    color_map = graph_colors.get(map_name)
    if not isinstance(color_map, dict):
        color_map = GRAPH_COLOR_MAPS[map_name]
    raw = color_map.get((value or '').lower()) or color_map.get('_default') or GRAPH_COLOR_FALLBACK
    return normalize_hex_color(raw)


@dataclass
class Theme:
    status_colors: Dict[str, str] = field(default_factory=lambda: dict(STATUS_COLORS))
    status_icons: Dict[str, str] = field(default_factory=lambda: dict(STATUS_ICONS))
    platforms: Dict[str, PlatformStyle] = field(default_factory=lambda: dict(PLATFORM_STYLES))

    background = '#1e293b'
    text_color = '#f1f5f9'
    edge_label_background = '#1e293b'
    dimmed_opacity = 0.15

    node_width = 120
    node_height = 50
    border_width = 3
    multi_border_width = 6
    multi_border_color = '#10b981'
    edge_width = 1.5
    arrow_size = 10

    # Tag group overlays: padding grows by one step per size rank
    group_padding = 16
    group_padding_step = 12

    def status_color(self, status: str) -> str:
        return self.status_colors.get((status or '').lower(), DEFAULT_STATUS_COLOR)

    def status_icon(self, status: str) -> str:
        return self.status_icons.get((status or '').lower(), DEFAULT_STATUS_ICON)

    def platform_style(self, platform: str) -> PlatformStyle:
        return self.platforms.get(platform, UNKNOWN_PLATFORM)


DEFAULT_THEME = Theme()
