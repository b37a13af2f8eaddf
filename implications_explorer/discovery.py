# implications_explorer/discovery.py
"""
Typed view of the backend's DiscoveryResult payload.

The scan service returns loosely shaped JSON. It is validated here, once, at
the boundary: every optional field is either present with the right type or
None, and entries that are not objects at all are skipped with a warning.
Nothing in this module raises on bad input.
"""

import copy
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

UNKNOWN_STATE = 'Unknown'
DEFAULT_PLATFORM = 'web'

_IMPLICATIONS_SUFFIX = re.compile(r'Implications$', re.IGNORECASE)
_INTERIOR_UPPER = re.compile(r'(?<!^)(?=[A-Z])')


def normalize_state_id(name: Optional[str]) -> str:
    """Turn a class name like 'PendingReviewImplications' into 'pending_review'.

    The suffix is always stripped. A base that already contains an underscore
    is treated as normalized and only lowercased, which makes the function
    idempotent.
    """
    if not name:
        return UNKNOWN_STATE.lower()
    base = _IMPLICATIONS_SUFFIX.sub('', name)
    if '_' in base:
        return base.lower()
    normalized = _INTERIOR_UPPER.sub('_', base).lower()
    return normalized or name.lower()


def _as_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _as_str_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [v for v in value if isinstance(v, str) and v.strip()]
    return []


def _as_dict(value: Any) -> Optional[Dict[str, Any]]:
    if isinstance(value, dict):
        return value
    return None


def _action_name(entry: Any) -> Optional[str]:
    """Readable action name from the various setup entry shapes."""
    if isinstance(entry, str):
        return entry or None
    if isinstance(entry, dict):
        for key in ('actionName', 'name', 'type', 'action'):
            if isinstance(entry.get(key), str) and entry[key]:
                return entry[key]
        if entry:
            return '{%s: ...}' % next(iter(entry))
    return None


@dataclass
class SetupEntry:
    """How a test reaches a prior state before running."""
    test_file: Optional[str] = None
    action_name: Optional[str] = None
    platform: Optional[str] = None
    previous_status: Optional[str] = None
    raw: Any = None

    @classmethod
    def from_raw(cls, raw: Any) -> 'SetupEntry':
        data = raw if isinstance(raw, dict) else {}
        return cls(
            test_file=_as_str(data.get('testFile')),
            action_name=_action_name(raw),
            platform=_as_str(data.get('platform')),
            previous_status=_as_str(data.get('previousStatus')),
            raw=raw,
        )


@dataclass
class ImplicationMetadata:
    class_name: Optional[str] = None
    status: Optional[str] = None
    has_xstate_config: bool = False
    platform: Optional[str] = None
    platforms: List[str] = field(default_factory=list)
    trigger_button: Optional[str] = None
    required_fields: List[str] = field(default_factory=list)
    ui_coverage: Dict[str, Any] = field(default_factory=dict)
    setup: List[SetupEntry] = field(default_factory=list)
    screen: Optional[str] = None
    pattern: Optional[str] = None
    entity: Optional[str] = None
    tags: Dict[str, List[str]] = field(default_factory=dict)
    xstate_context: Dict[str, Any] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: Any) -> 'ImplicationMetadata':
        data = raw if isinstance(raw, dict) else {}

        setup_raw = data.get('setup')
        if isinstance(setup_raw, list):
            setup = [SetupEntry.from_raw(entry) for entry in setup_raw]
        elif setup_raw:
            setup = [SetupEntry.from_raw(setup_raw)]
        else:
            setup = []

        meta = {}
        xstate_config = _as_dict(data.get('xstateConfig'))
        if xstate_config:
            meta = _as_dict(xstate_config.get('meta')) or {}

        tags: Dict[str, List[str]] = {}
        for source in (_as_dict(data.get('tags')), _as_dict(meta.get('tags'))):
            for category, value in (source or {}).items():
                values = _as_str_list(value)
                if values:
                    tags[category] = values
        entity = _as_str(meta.get('entity')) or _as_str(data.get('entity'))
        if entity:
            tags['entity'] = [entity]
        screen = _as_str(data.get('screen'))
        if screen and 'screen' not in tags:
            tags['screen'] = [screen]

        return cls(
            class_name=_as_str(data.get('className')),
            status=_as_str(data.get('status')),
            has_xstate_config=data.get('hasXStateConfig') is True,
            platform=_as_str(data.get('platform')),
            platforms=_as_str_list(data.get('platforms')),
            trigger_button=_as_str(data.get('triggerButton')),
            required_fields=_as_str_list(data.get('requiredFields')),
            ui_coverage=_as_dict(data.get('uiCoverage')) or {},
            setup=setup,
            screen=screen,
            pattern=_as_str(data.get('pattern')),
            entity=entity,
            tags=tags,
            xstate_context=_as_dict(data.get('xstateContext')) or {},
            raw=data,
        )

    @property
    def setup_platform(self) -> Optional[str]:
        for entry in self.setup:
            if entry.platform:
                return entry.platform
        return None

    @property
    def effective_platform(self) -> str:
        return self.setup_platform or self.platform or DEFAULT_PLATFORM

    @property
    def all_platforms(self) -> List[str]:
        return list(self.platforms) or [self.effective_platform]

    @property
    def test_file(self) -> Optional[str]:
        for entry in self.setup:
            if entry.test_file:
                return entry.test_file
        return None


@dataclass
class Implication:
    path: str
    metadata: ImplicationMetadata
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> 'Implication':
        metadata = ImplicationMetadata.from_raw(raw.get('metadata'))
        # Some scanners put className beside metadata rather than inside it
        if metadata.class_name is None:
            metadata.class_name = _as_str(raw.get('className'))
        return cls(
            path=_as_str(raw.get('path')) or '',
            metadata=metadata,
            raw=raw,
        )

    @property
    def is_stateful(self) -> bool:
        return self.metadata.has_xstate_config


@dataclass
class Transition:
    from_state: str
    to_state: str
    event: str
    platforms: List[str] = field(default_factory=list)
    requires: Optional[Dict[str, Any]] = None
    conditions: Optional[Dict[str, Any]] = None
    action_details: Optional[Dict[str, Any]] = None
    is_observer: bool = False
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> 'Transition':
        return cls(
            from_state=_as_str(raw.get('from')) or UNKNOWN_STATE,
            to_state=_as_str(raw.get('to')) or UNKNOWN_STATE,
            event=_as_str(raw.get('event')) or '',
            platforms=_as_str_list(raw.get('platforms')),
            requires=_as_dict(raw.get('requires')) or None,
            conditions=_as_dict(raw.get('conditions')),
            action_details=_as_dict(raw.get('actionDetails')),
            is_observer=raw.get('isObserver') is True,
            raw=raw,
        )

    @property
    def has_requires(self) -> bool:
        return bool(self.requires)

    @property
    def has_conditions(self) -> bool:
        blocks = (self.conditions or {}).get('blocks')
        return isinstance(blocks, list) and len(blocks) > 0

    @property
    def action_step_count(self) -> int:
        steps = (self.action_details or {}).get('steps')
        return len(steps) if isinstance(steps, list) else 0


@dataclass
class DiscoveryResult:
    project_path: str = ''
    implications: List[Implication] = field(default_factory=list)
    transitions: List[Transition] = field(default_factory=list)
    config: Dict[str, Any] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, payload: Any) -> 'DiscoveryResult':
        """Validate a raw scan payload. Malformed entries are skipped, never raised."""
        if not isinstance(payload, dict):
            logger.warning("Discovery payload is not an object (%s); treating as empty",
                           type(payload).__name__)
            payload = {}

        files = _as_dict(payload.get('files')) or {}
        raw_implications = files.get('implications')
        if not isinstance(raw_implications, list):
            raw_implications = []
        raw_transitions = payload.get('transitions')
        if not isinstance(raw_transitions, list):
            raw_transitions = []

        implications = []
        for index, entry in enumerate(raw_implications):
            if not isinstance(entry, dict):
                logger.warning("Skipping implication #%d: not an object", index)
                continue
            implications.append(Implication.from_raw(entry))

        transitions = []
        for index, entry in enumerate(raw_transitions):
            if not isinstance(entry, dict):
                logger.warning("Skipping transition #%d: not an object", index)
                continue
            transitions.append(Transition.from_raw(entry))

        return cls(
            project_path=_as_str(payload.get('projectPath')) or '',
            implications=implications,
            transitions=transitions,
            config=_as_dict(payload.get('config')) or {},
            raw=payload,
        )

    @property
    def stateful_implications(self) -> List[Implication]:
        return [imp for imp in self.implications if imp.is_stateful]

    def replace_implication(self, updated: Dict[str, Any]) -> 'DiscoveryResult':
        """Return a new result with the implication at updated['path'] swapped in."""
        payload = copy.deepcopy(self.raw) if self.raw else {}
        files = payload.setdefault('files', {})
        entries = files.get('implications') if isinstance(files.get('implications'), list) else []
        target = updated.get('path')
        files['implications'] = [
            updated if isinstance(entry, dict) and entry.get('path') == target else entry
            for entry in entries
        ]
        return DiscoveryResult.from_dict(payload)
