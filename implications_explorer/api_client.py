# implications_explorer/api_client.py
"""
HTTP client for the companion backend (scan, file edits, layouts, notes, locks).

Every call is a single blocking round-trip. Failures raise ApiError carrying
the HTTP status and the backend's own error message; there is no retry.
"""

import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from . import config
from .discovery import DiscoveryResult

logger = logging.getLogger(__name__)

NOTE_DEFAULT_STATUS = 'draft'
NOTE_DEFAULT_CATEGORY = 'note'
NOTE_TARGETS = ('state', 'transition')


class ApiError(Exception):
    """A backend call failed (network error or non-2xx response)."""

    def __init__(self, message: str, status: Optional[int] = None, endpoint: str = ''):
        super().__init__(message)
        self.status = status
        self.endpoint = endpoint

    def __str__(self):
        base = super().__str__()
        if self.status is not None:
            return f"{base} (HTTP {self.status} from {self.endpoint})"
        return base


@dataclass
class Note:
    id: str
    content: str
    category: str = NOTE_DEFAULT_CATEGORY
    status: str = NOTE_DEFAULT_STATUS
    title: Optional[str] = None
    ticket: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Note':
        return cls(
            id=str(data.get('id', '')),
            content=data.get('content') or '',
            category=data.get('category') or NOTE_DEFAULT_CATEGORY,
            status=data.get('status') or NOTE_DEFAULT_STATUS,
            title=data.get('title'),
            ticket=data.get('ticket'),
            created_at=data.get('createdAt'),
            updated_at=data.get('updatedAt'),
        )


@dataclass
class NoteBook:
    """All notes of a project, keyed by state name and by transition key."""
    states: Dict[str, List[Note]]
    transitions: Dict[str, List[Note]]
    categories: Dict[str, Any]

    def for_state(self, state_name: str) -> List[Note]:
        return self.states.get(state_name, [])

    def for_transition(self, transition_key: str) -> List[Note]:
        return self.transitions.get(transition_key, [])


@dataclass
class Lock:
    test_file: str
    locked: bool
    reason: Optional[str] = None
    locked_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Lock':
        return cls(
            test_file=data.get('testFile') or data.get('path') or '',
            locked=data.get('locked') is True,
            reason=data.get('reason'),
            locked_at=data.get('lockedAt'),
        )


def transition_key(source: str, event: str, target: str) -> str:
    """Notes address a transition as 'source:EVENT:target'."""
    return f"{source}:{event}:{target}"


class ApiClient:
    """Thin JSON-over-HTTP wrapper around the backend routes."""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 opener: Optional[Callable] = None):
        self.base_url = (base_url or config.get_api_url()).rstrip('/')
        self.timeout = timeout if timeout is not None else config.get_request_timeout()
        self._open = opener or urllib.request.urlopen

    # -- transport ---------------------------------------------------------

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None,
                 query: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = self.base_url + path
        if query:
            url += '?' + urllib.parse.urlencode({k: v for k, v in query.items() if v is not None})

        data = None
        headers = {'Accept': 'application/json'}
        if payload is not None:
            data = json.dumps(payload).encode('utf-8')
            headers['Content-Type'] = 'application/json'

        request = urllib.request.Request(url, data=data, headers=headers, method=method)
        logger.debug("%s %s", method, url)
        try:
            with self._open(request, timeout=self.timeout) as response:
                body = response.read()
        except urllib.error.HTTPError as e:
            raise ApiError(self._error_message(e), status=e.code, endpoint=path) from e
        except urllib.error.URLError as e:
            raise ApiError(f"Backend unreachable at {self.base_url}: {e.reason}", endpoint=path) from e
        except OSError as e:
            raise ApiError(f"Request to {path} failed: {e}", endpoint=path) from e

        if not body:
            return {}
        try:
            result = json.loads(body.decode('utf-8'))
        except ValueError as e:
            raise ApiError(f"Invalid JSON from {path}", endpoint=path) from e
        if isinstance(result, dict) and result.get('success') is False:
            raise ApiError(result.get('error') or 'Request failed', endpoint=path)
        return result if isinstance(result, dict) else {'data': result}

    @staticmethod
    def _error_message(error: urllib.error.HTTPError) -> str:
        try:
            detail = json.loads(error.read().decode('utf-8'))
        except (ValueError, OSError, AttributeError):
            return error.reason or 'Request failed'
        if isinstance(detail, dict) and detail.get('error'):
            return str(detail['error'])
        return error.reason or 'Request failed'

    # -- discovery ---------------------------------------------------------

    def scan(self, project_path: str) -> DiscoveryResult:
        payload = self._request('POST', '/api/discovery/scan', {'projectPath': project_path})
        payload.setdefault('projectPath', project_path)
        return DiscoveryResult.from_dict(payload)

    def parse_single_file(self, file_path: str) -> Dict[str, Any]:
        return self._request('POST', '/api/discovery/parse-single-file', {'filePath': file_path})

    # -- layout ------------------------------------------------------------

    def load_layout(self, project_path: str) -> Optional[Dict[str, Any]]:
        """Saved positions ({id: {x, y}}) held by the backend, or None."""
        result = self._request('GET', '/api/implications/graph/layout', query={'projectPath': project_path})
        layout = result.get('layout')
        if not isinstance(layout, dict):
            return None
        return layout.get('positions')

    def save_layout(self, project_path: str, positions: Dict[str, Dict[str, float]]) -> None:
        self._request('POST', '/api/implications/graph/layout',
                      {'projectPath': project_path, 'layout': {'positions': positions}})

    def delete_layout(self, project_path: str) -> None:
        self._request('DELETE', '/api/implications/graph/layout', query={'projectPath': project_path})

    # -- implications ------------------------------------------------------

    def update_metadata(self, file_path: str, metadata: Dict[str, Any]) -> Dict[str, Any]:
        return self._request('POST', '/api/implications/update-metadata',
                             {'filePath': file_path, 'metadata': metadata})

    def update_context(self, file_path: str, context_updates: Dict[str, Any]) -> Dict[str, Any]:
        return self._request('POST', '/api/implications/update-context',
                             {'filePath': file_path, 'contextUpdates': context_updates})

    def context_schema(self, file_path: str) -> Dict[str, Any]:
        return self._request('GET', '/api/implications/context-schema', query={'filePath': file_path})

    def add_transition(self, source_file: str, target_file: str, event: str,
                       platform: Optional[str] = None,
                       action_details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._request('POST', '/api/implications/add-transition', {
            'sourceFile': source_file,
            'targetFile': target_file,
            'event': event,
            'platform': platform,
            'actionDetails': action_details,
        })

    def update_transition(self, source_file: str, old_event: str, new_event: str,
                          new_target: Optional[str] = None, platform: Optional[str] = None,
                          action_details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._request('POST', '/api/implications/update-transition', {
            'sourceFile': source_file,
            'oldEvent': old_event,
            'newEvent': new_event,
            'newTarget': new_target,
            'platform': platform,
            'actionDetails': action_details,
        })

    def delete_transition(self, source_file: str, event: str) -> Dict[str, Any]:
        return self._request('POST', '/api/implications/delete-transition',
                             {'sourceFile': source_file, 'event': event})

    def create_state(self, project_path: str, form: Dict[str, Any]) -> Dict[str, Any]:
        payload = dict(form)
        payload['projectPath'] = project_path
        return self._request('POST', '/api/implications/create-state', payload)

    # -- notes -------------------------------------------------------------

    def get_notes(self, project_path: str) -> NoteBook:
        result = self._request('GET', '/api/notes', query={'projectPath': project_path})
        raw = result.get('notes') or {}

        def parse(section):
            return {
                key: [Note.from_dict(n) for n in notes if isinstance(n, dict)]
                for key, notes in (raw.get(section) or {}).items()
                if isinstance(notes, list)
            }

        return NoteBook(states=parse('states'), transitions=parse('transitions'),
                        categories=raw.get('categories') or {})

    def add_note(self, project_path: str, target: str, key: str, content: str,
                 title: Optional[str] = None, category: Optional[str] = None,
                 ticket: Optional[str] = None, status: Optional[str] = None) -> Note:
        """Attach a note to a state ('state') or a transition key ('transition')."""
        if target not in NOTE_TARGETS:
            raise ValueError(f"Note target must be one of {NOTE_TARGETS}, got {target!r}")
        if not content or not content.strip():
            raise ValueError("Note content is required")
        payload = {
            'title': title.strip() if title else None,
            'content': content.strip(),
            'category': category or NOTE_DEFAULT_CATEGORY,
            'ticket': ticket.strip() if ticket else None,
            'status': status or NOTE_DEFAULT_STATUS,
        }
        path = f"/api/notes/{target}/{urllib.parse.quote(key, safe='')}"
        result = self._request('POST', path, payload, query={'projectPath': project_path})
        return Note.from_dict(result.get('note') or payload)

    def update_note(self, project_path: str, note_id: str, **changes) -> Note:
        path = f"/api/notes/{urllib.parse.quote(note_id, safe='')}"
        result = self._request('PUT', path, changes, query={'projectPath': project_path})
        return Note.from_dict(result.get('note') or dict(changes, id=note_id))

    def delete_note(self, project_path: str, note_id: str) -> None:
        path = f"/api/notes/{urllib.parse.quote(note_id, safe='')}"
        self._request('DELETE', path, query={'projectPath': project_path})

    # -- locks -------------------------------------------------------------

    def get_state_locks(self, project_path: str, state_name: str,
                        setup_entries: Optional[List[Dict[str, Any]]] = None) -> List[Lock]:
        query = {'projectPath': project_path}
        if setup_entries:
            query['setupEntries'] = json.dumps(setup_entries)
        path = f"/api/locks/state/{urllib.parse.quote(state_name, safe='')}"
        result = self._request('GET', path, query=query)
        return [Lock.from_dict(entry) for entry in result.get('tests') or [] if isinstance(entry, dict)]

    def toggle_lock(self, project_path: str, test_file: str, reason: str = '') -> Lock:
        result = self._request('POST', '/api/locks/toggle',
                               {'projectPath': project_path, 'testPath': test_file, 'reason': reason})
        return Lock(
            test_file=result.get('path') or test_file,
            locked=result.get('action') == 'locked' or result.get('locked') is True,
            reason=result.get('reason'),
            locked_at=result.get('lockedAt'),
        )
