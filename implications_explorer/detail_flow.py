# implications_explorer/detail_flow.py
"""
Selection and edit flow for a single state.

resolve_state_detail() turns a clicked node id into everything the detail
dialog shows. EditSession holds the viewing/editing state machine: edits go
to a deep-copied scratch copy, and save() submits only the parts that differ
from the original, in a fixed order (metadata, context, transitions).
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .api_client import ApiClient, ApiError
from .discovery import DiscoveryResult, Implication, SetupEntry
from .state_graph import node_id_for, resolve_state, state_lookup

logger = logging.getLogger(__name__)

VIEWING = 'viewing'
EDITING = 'editing'

STEP_METADATA = 'metadata'
STEP_CONTEXT = 'context'
STEP_TRANSITIONS = 'transitions'

# Metadata keys the detail dialog can edit
EDITABLE_META = ('status', 'triggerButton', 'platform', 'platforms', 'requiredFields',
                 'setup', 'screen', 'pattern', 'tags')


class SaveError(Exception):
    """A save step failed. `step` names it; `completed` lists the steps already written."""

    def __init__(self, step: str, cause: Exception, completed: Optional[List[str]] = None):
        self.step = step
        self.cause = cause
        self.completed = list(completed or [])
        if self.completed:
            message = f"Saved {', '.join(self.completed)}, but saving {step} failed: {cause}"
        else:
            message = f"Saving {step} failed: {cause}"
        super().__init__(message)


@dataclass
class TransitionRef:
    event: str
    source: str
    target: str
    platforms: List[str] = field(default_factory=list)
    action_details: Optional[Dict[str, Any]] = None
    is_observer: bool = False


@dataclass
class StateDetail:
    id: str
    class_name: Optional[str]
    status: Optional[str]
    implication_file: str
    test_file: Optional[str]
    platform: str
    platforms: List[str]
    meta: Dict[str, Any]
    context: Dict[str, Any]
    required_fields: List[str]
    ui_coverage: Dict[str, Any]
    setup: List[SetupEntry]
    outgoing: List[TransitionRef] = field(default_factory=list)
    incoming: List[TransitionRef] = field(default_factory=list)
    # node id -> implication file, for resolving transition targets on save
    state_files: Dict[str, str] = field(default_factory=dict)

    @property
    def title(self) -> str:
        return self.class_name or self.id


def _absolute(project_path: str, relative: str) -> str:
    if not project_path or not relative or relative.startswith('/'):
        return relative or ''
    return project_path.rstrip('/') + '/' + relative


def resolve_state_detail(node_id: str, discovery: DiscoveryResult) -> Optional[StateDetail]:
    """Full detail for the state with this node id, or None when it is not in the scan."""
    stateful = discovery.stateful_implications
    implication: Optional[Implication] = None
    for candidate in stateful:
        if node_id_for(candidate) == node_id:
            implication = candidate
            break
    if implication is None:
        logger.warning("State '%s' not found in discovery result", node_id)
        return None

    lookup = state_lookup(stateful)
    outgoing, incoming = [], []
    for transition in discovery.transitions:
        source = resolve_state(lookup, transition.from_state)
        target = resolve_state(lookup, transition.to_state)
        ref = TransitionRef(
            event=transition.event,
            source=source or transition.from_state,
            target=target or transition.to_state,
            platforms=list(transition.platforms),
            action_details=transition.action_details,
            is_observer=transition.is_observer,
        )
        if source == node_id:
            outgoing.append(ref)
        if target == node_id:
            incoming.append(ref)

    state_files = {}
    for candidate in stateful:
        state_files.setdefault(node_id_for(candidate), _absolute(discovery.project_path, candidate.path))

    metadata = implication.metadata
    return StateDetail(
        id=node_id,
        class_name=metadata.class_name,
        status=metadata.status,
        implication_file=_absolute(discovery.project_path, implication.path),
        test_file=metadata.test_file,
        platform=metadata.effective_platform,
        platforms=metadata.all_platforms,
        meta={key: copy.deepcopy(metadata.raw[key]) for key in EDITABLE_META if key in metadata.raw},
        context=copy.deepcopy(metadata.xstate_context),
        required_fields=list(metadata.required_fields),
        ui_coverage=metadata.ui_coverage,
        setup=list(metadata.setup),
        outgoing=outgoing,
        incoming=incoming,
        state_files=state_files,
    )


def _transition_entry(ref: TransitionRef) -> Dict[str, Any]:
    return {
        'event': ref.event,
        'target': ref.target,
        'platforms': list(ref.platforms),
        'actionDetails': copy.deepcopy(ref.action_details),
        'originalEvent': ref.event,
    }


@dataclass
class EditDiff:
    metadata: Optional[Dict[str, Any]] = None
    context: Optional[Dict[str, Any]] = None
    added: List[Dict[str, Any]] = field(default_factory=list)
    changed: List[Dict[str, Any]] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)

    @property
    def transitions_changed(self) -> bool:
        return bool(self.added or self.changed or self.removed)

    @property
    def is_empty(self) -> bool:
        return self.metadata is None and self.context is None and not self.transitions_changed


class EditSession:
    """viewing <-> editing state machine over one StateDetail."""

    def __init__(self, detail: StateDetail, api: ApiClient,
                 confirm_discard: Optional[Callable[[], bool]] = None,
                 on_rescan: Optional[Callable[[str, bool], None]] = None):
        self.detail = detail
        self.api = api
        self.confirm_discard = confirm_discard or (lambda: True)
        self.on_rescan = on_rescan
        self.mode = VIEWING
        self.is_saving = False
        self.original = self._snapshot()
        self.scratch: Optional[Dict[str, Any]] = None

    def _snapshot(self) -> Dict[str, Any]:
        return {
            'meta': copy.deepcopy(self.detail.meta),
            'context': copy.deepcopy(self.detail.context),
            'transitions': [_transition_entry(ref) for ref in self.detail.outgoing],
        }

    @property
    def is_editing(self) -> bool:
        return self.mode == EDITING

    @property
    def has_changes(self) -> bool:
        return self.scratch is not None and self.scratch != self.original

    @property
    def can_save(self) -> bool:
        return self.is_editing and self.has_changes and not self.is_saving

    def begin_edit(self) -> None:
        if self.is_editing:
            return
        self.scratch = copy.deepcopy(self.original)
        self.mode = EDITING

    def cancel(self) -> bool:
        """Leave editing. With unsaved changes the confirm callback decides; returns True if left."""
        if not self.is_editing:
            return True
        if self.has_changes and not self.confirm_discard():
            return False
        self.scratch = None
        self.mode = VIEWING
        return True

    def _require_editing(self) -> Dict[str, Any]:
        if not self.is_editing:
            raise RuntimeError('Not in edit mode')
        return self.scratch

    # -- edits -------------------------------------------------------------

    def set_meta(self, key: str, value: Any) -> None:
        self._require_editing()['meta'][key] = value

    def set_context(self, key: str, value: Any) -> None:
        self._require_editing()['context'][key] = value

    def remove_context(self, key: str) -> None:
        self._require_editing()['context'].pop(key, None)

    def add_transition(self, event: str, target: str, platforms: Optional[List[str]] = None,
                       action_details: Optional[Dict[str, Any]] = None) -> None:
        self._require_editing()['transitions'].append({
            'event': event,
            'target': target,
            'platforms': list(platforms or []),
            'actionDetails': action_details,
            'originalEvent': None,
        })

    def update_transition(self, index: int, **changes) -> None:
        entry = self._require_editing()['transitions'][index]
        for key, value in changes.items():
            if key == 'originalEvent':
                raise KeyError(key)
            entry[key] = value

    def remove_transition(self, index: int) -> None:
        del self._require_editing()['transitions'][index]

    def apply_suggestion(self, kind: str, value: Any) -> None:
        """Apply a one-click suggestion: a trigger button, a field or a setup action."""
        meta = self._require_editing()['meta']
        if kind == 'triggerButton':
            meta['triggerButton'] = value
        elif kind == 'requiredField':
            fields = meta.setdefault('requiredFields', [])
            if value not in fields:
                fields.append(value)
        elif kind == 'setupAction':
            setup = meta.setdefault('setup', [])
            if value not in setup:
                setup.append(value)
        elif kind == 'platform':
            meta['platform'] = value
        else:
            raise ValueError(f"Unknown suggestion kind: {kind}")

    # -- diff and save -----------------------------------------------------

    def diff(self) -> EditDiff:
        result = EditDiff()
        if self.scratch is None:
            return result

        if self.scratch['meta'] != self.original['meta']:
            result.metadata = copy.deepcopy(self.scratch['meta'])

        before, after = self.original['context'], self.scratch['context']
        context_updates = {key: value for key, value in after.items() if before.get(key) != value}
        # The backend only updates fields, so a removed field is written as null
        context_updates.update({key: None for key in before if key not in after})
        if context_updates:
            result.context = context_updates

        originals = {entry['event']: entry for entry in self.original['transitions']}
        kept = set()
        for entry in self.scratch['transitions']:
            origin = entry.get('originalEvent')
            if origin is None:
                result.added.append(entry)
                continue
            kept.add(origin)
            if entry != originals.get(origin):
                result.changed.append(entry)
        result.removed = [event for event in originals if event not in kept]
        return result

    def save(self) -> EditDiff:
        """Write the pending changes; raises SaveError naming the failed step.

        On failure the scratch copy is kept and the session stays in editing.
        Every write that did land, down to a single transition, is folded
        into the original so a retry does not resubmit it, and the graph is
        still told to rescan if the file changed.
        """
        if not self.can_save:
            return EditDiff()

        diff = self.diff()
        file_path = self.detail.implication_file
        completed: List[str] = []
        transitions_before = copy.deepcopy(self.original['transitions'])
        self.is_saving = True
        try:
            if diff.metadata is not None:
                self._run_step(STEP_METADATA, completed,
                               lambda: self.api.update_metadata(file_path, diff.metadata))
                self.original['meta'] = copy.deepcopy(self.scratch['meta'])

            if diff.context is not None:
                self._run_step(STEP_CONTEXT, completed,
                               lambda: self.api.update_context(file_path, diff.context))
                self.original['context'] = copy.deepcopy(self.scratch['context'])

            if diff.transitions_changed:
                self._run_step(STEP_TRANSITIONS, completed, lambda: self._save_transitions(diff))
                self.original['transitions'] = [dict(entry, originalEvent=entry['event'])
                                                for entry in self.scratch['transitions']]
        except SaveError:
            transitions_written = self.original['transitions'] != transitions_before
            if STEP_METADATA in completed or transitions_written:
                self._notify_rescan(file_path, transitions_written)
            raise
        finally:
            self.is_saving = False

        self.detail.meta = copy.deepcopy(self.original['meta'])
        self.detail.context = copy.deepcopy(self.original['context'])
        self.scratch = None
        self.mode = VIEWING
        logger.info("Saved %s for %s", ', '.join(completed) or 'nothing', self.detail.id)

        if diff.metadata is not None or diff.transitions_changed:
            self._notify_rescan(file_path, diff.transitions_changed)
        return diff

    def _notify_rescan(self, file_path: str, full: bool) -> None:
        if self.on_rescan:
            self.on_rescan(file_path, full)

    def _run_step(self, step: str, completed: List[str], action: Callable[[], Any]) -> None:
        try:
            action()
        except ApiError as e:
            logger.error("Save step '%s' failed for %s: %s", step, self.detail.id, e)
            raise SaveError(step, e, completed) from e
        completed.append(step)

    def _save_transitions(self, diff: EditDiff) -> None:
        # Each write is folded into the original as soon as it lands
        source_file = self.detail.implication_file
        saved = self.original['transitions']
        for event in diff.removed:
            self.api.delete_transition(source_file, event)
            saved[:] = [entry for entry in saved if entry['event'] != event]
        for entry in diff.changed:
            self.api.update_transition(
                source_file,
                old_event=entry['originalEvent'],
                new_event=entry['event'],
                new_target=entry['target'],
                platform=(entry.get('platforms') or [None])[0],
                action_details=entry.get('actionDetails'),
            )
            old_event = entry['originalEvent']
            entry['originalEvent'] = entry['event']
            saved[:] = [copy.deepcopy(entry) if existing['event'] == old_event else existing
                        for existing in saved]
        for entry in diff.added:
            target_file = self.detail.state_files.get(entry['target'])
            if not target_file:
                raise ApiError(f"Unknown target state '{entry['target']}'")
            self.api.add_transition(
                source_file,
                target_file,
                entry['event'],
                platform=(entry.get('platforms') or [None])[0],
                action_details=entry.get('actionDetails'),
            )
            entry['originalEvent'] = entry['event']
            saved.append(copy.deepcopy(entry))
