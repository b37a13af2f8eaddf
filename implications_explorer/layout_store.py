# implications_explorer/layout_store.py
"""
Client-side persistence: a small JSON key-value cache and the saved graph layouts.

The cache plays the role a browser's local storage would: flat string keys,
JSON values, no expiry and no versioning. Layouts live under
'graphLayout:<projectPath>' and are optionally mirrored to the backend.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple

from .api_client import ApiClient, ApiError

logger = logging.getLogger(__name__)

Position = Tuple[float, float]

LAYOUT_PREFIX = 'graphLayout:'
SESSION_KEYS = (
    'lastProjectPath',
    'lastDiscoveryResult',
    'lastAnalysisResult',
    'lastStateRegistry',
    'lastGraphData',
)


class LocalCache:
    """JSON-file backed key-value store."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._data: Dict[str, Any] = self._read()

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable cache %s: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring cache %s: top level is not an object", self.path)
            return {}
        return data

    def _write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Write to a sibling temp file then swap, so a crash never leaves half a cache
        fd, tmp_name = tempfile.mkstemp(dir=str(self.path.parent), prefix='.cache-', suffix='.json')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(self._data, f, indent=2)
            os.replace(tmp_name, self.path)
        except OSError:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)
            raise

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        self._write()

    def update(self, values: Dict[str, Any]) -> None:
        self._data.update(values)
        self._write()

    def remove(self, key: str) -> None:
        if key in self._data:
            del self._data[key]
            self._write()

    def keys(self):
        return list(self._data)


def layout_key(project_path: str) -> str:
    return f"{LAYOUT_PREFIX}{project_path}"


def positions_to_json(positions: Dict[str, Position]) -> Dict[str, Dict[str, float]]:
    return {node_id: {'x': float(x), 'y': float(y)} for node_id, (x, y) in positions.items()}


def positions_from_json(data: Any) -> Dict[str, Position]:
    """Parse {'id': {'x': .., 'y': ..}}; entries that are not numeric points are skipped."""
    positions: Dict[str, Position] = {}
    if not isinstance(data, dict):
        return positions
    for node_id, point in data.items():
        if not isinstance(point, dict):
            continue
        x, y = point.get('x'), point.get('y')
        if isinstance(x, (int, float)) and isinstance(y, (int, float)):
            positions[node_id] = (float(x), float(y))
    return positions


def merge_layout(auto_positions: Dict[str, Position],
                 saved: Optional[Dict[str, Position]]) -> Dict[str, Position]:
    """Saved positions win node by node; nodes the save doesn't know keep the automatic one."""
    merged = dict(auto_positions)
    for node_id, point in (saved or {}).items():
        if node_id in merged:
            merged[node_id] = point
    return merged


def is_complete(saved: Optional[Dict[str, Position]], node_ids: Iterable[str]) -> bool:
    return saved is not None and all(node_id in saved for node_id in node_ids)


class LayoutStore:
    """Saved node positions per project, local first, backend optional."""

    def __init__(self, cache: LocalCache, api: Optional[ApiClient] = None):
        self.cache = cache
        self.api = api

    def load(self, project_path: str) -> Optional[Dict[str, Position]]:
        local = self.cache.get(layout_key(project_path))
        if local is not None:
            return positions_from_json(local)

        if self.api is None:
            return None
        try:
            remote = self.api.load_layout(project_path)
        except ApiError as e:
            # A missing layout only means the automatic one is used
            logger.warning("Could not load layout from backend: %s", e)
            return None
        if remote is None:
            return None
        positions = positions_from_json(remote)
        self.cache.set(layout_key(project_path), positions_to_json(positions))
        return positions

    def save(self, project_path: str, positions: Dict[str, Position], remote: bool = False) -> None:
        """Merge positions into the stored layout and persist it locally.

        Nodes not in `positions` keep their stored point, so saving while a
        filter hides part of the graph does not forget the hidden nodes. With
        remote=True the merged layout is also written to the backend (may
        raise ApiError).
        """
        merged = positions_from_json(self.cache.get(layout_key(project_path)))
        merged.update(positions)
        self.cache.set(layout_key(project_path), positions_to_json(merged))
        logger.debug("Saved layout for %s (%d of %d nodes)", project_path, len(positions), len(merged))
        if remote and self.api is not None:
            self.api.save_layout(project_path, positions_to_json(merged))

    def clear(self, project_path: str, remote: bool = False) -> None:
        self.cache.remove(layout_key(project_path))
        if remote and self.api is not None:
            self.api.delete_layout(project_path)


class SessionCache:
    """Resume state between runs: last project and the last scan's outputs."""

    def __init__(self, cache: LocalCache):
        self.cache = cache

    def remember_scan(self, project_path: str, discovery: Dict[str, Any],
                      graph: Dict[str, Any], analysis: Any = None) -> None:
        self.cache.update({
            'lastProjectPath': project_path,
            'lastDiscoveryResult': discovery,
            'lastAnalysisResult': analysis,
            'lastStateRegistry': discovery.get('stateRegistry'),
            'lastGraphData': graph,
        })

    @property
    def last_project_path(self) -> Optional[str]:
        return self.cache.get('lastProjectPath')

    @property
    def last_discovery(self) -> Optional[Dict[str, Any]]:
        return self.cache.get('lastDiscoveryResult')

    def clear(self) -> None:
        for key in SESSION_KEYS:
            self.cache.remove(key)
