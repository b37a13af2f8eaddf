# implications_explorer/validation.py
"""Form validation for the authoring dialogs.

Each validator returns an error message or None, so the dialogs can show
it next to the field. The *_form helpers collect messages per field and
raise ValidationError when anything is wrong.
"""

import re
from typing import Any, Dict, Iterable, Optional

EVENT_PATTERN = re.compile(r'^[A-Z][A-Z0-9_]*$')
STATE_NAME_PATTERN = re.compile(r'^[a-z_]+$')
IDENTIFIER_PATTERN = re.compile(r'^[a-zA-Z_$][a-zA-Z0-9_$]*$')


class ValidationError(Exception):
    """One or more form fields are invalid; `errors` maps field -> message."""

    def __init__(self, errors: Dict[str, str]):
        self.errors = dict(errors)
        super().__init__('; '.join(f"{name}: {message}" for name, message in self.errors.items()))


def validate_event_name(event: str, existing: Iterable[str] = (),
                        original: Optional[str] = None) -> Optional[str]:
    event = (event or '').strip()
    if not event:
        return 'Event name is required'
    if not EVENT_PATTERN.match(event):
        return 'Event name must be UPPER_SNAKE_CASE (e.g. APPROVE_BOOKING)'
    if event != original and event in set(existing):
        return f"This state already has a {event} transition"
    return None


def validate_state_name(name: str, existing: Iterable[str] = ()) -> Optional[str]:
    name = (name or '').strip()
    if not name:
        return 'State name is required'
    if not STATE_NAME_PATTERN.match(name):
        return 'Use lowercase letters and underscores only'
    if name in set(existing):
        return 'A state with this name already exists'
    return None


def validate_field_name(name: str, existing: Iterable[str] = ()) -> Optional[str]:
    """Context field names become JS object keys."""
    name = (name or '').strip()
    if not name:
        return 'Field name is required'
    if not IDENTIFIER_PATTERN.match(name):
        return 'Must start with a letter, $ or _ and contain only letters, digits, $ and _'
    if name in set(existing):
        return 'Field already exists'
    return None


def display_name(state_name: str) -> str:
    """'pending_review' -> 'Pending Review'."""
    return ' '.join(word.capitalize() for word in state_name.split('_') if word)


def _action_details_errors(details: Dict[str, Any]) -> Dict[str, str]:
    errors = {}
    if not (details.get('description') or '').strip():
        errors['description'] = 'Description is required when adding action details'
    for index, step in enumerate(details.get('steps') or []):
        for key, label in (('description', 'Step description'), ('instance', 'Instance name'),
                           ('method', 'Method name')):
            if not (step.get(key) or '').strip():
                errors[f"step_{index}_{key}"] = f"{label} is required"
    return errors


def _raise_if_any(errors: Dict[str, str]) -> None:
    if errors:
        raise ValidationError(errors)


def validate_transition_form(form: Dict[str, Any], existing_events: Iterable[str] = (),
                             original_event: Optional[str] = None) -> Dict[str, Any]:
    """Check an add/edit transition form and return the cleaned submission."""
    errors = {}
    event = (form.get('event') or '').strip()
    message = validate_event_name(event, existing_events, original_event)
    if message:
        errors['event'] = message
    if not form.get('target'):
        errors['target'] = 'Target state is required'

    details = form.get('actionDetails')
    if details:
        errors.update(_action_details_errors(details))
    _raise_if_any(errors)

    return {
        'event': event,
        'target': form['target'],
        'platforms': list(form.get('platforms') or []) or None,
        'actionDetails': details or None,
    }


def validate_state_form(form: Dict[str, Any], existing_states: Iterable[str] = ()) -> Dict[str, Any]:
    """Check a create-state form and return it with a derived display name."""
    name = (form.get('stateName') or '').strip()
    message = validate_state_name(name, existing_states)
    _raise_if_any({'stateName': message} if message else {})

    cleaned = dict(form)
    cleaned['stateName'] = name
    cleaned['displayName'] = display_name(name)
    return cleaned
