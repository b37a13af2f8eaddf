# implications_explorer/tests/test_validation.py
import pytest
from ..validation import (
    ValidationError, display_name, validate_event_name, validate_field_name,
    validate_state_form, validate_state_name, validate_transition_form,
)


@pytest.mark.parametrize("event", ["ACCEPT", "ACCEPT_BOOKING", "STEP_2"])
def test_valid_event_names(event):
    assert validate_event_name(event) is None


@pytest.mark.parametrize("event, message", [
    ("", "required"),
    ("accept", "UPPER_SNAKE_CASE"),
    ("2FAST", "UPPER_SNAKE_CASE"),
    ("ACCEPT-NOW", "UPPER_SNAKE_CASE"),
])
def test_invalid_event_names(event, message):
    assert message in validate_event_name(event)


def test_duplicate_event_unless_it_is_the_one_being_edited():
    assert "already has" in validate_event_name("ACCEPT", ["ACCEPT", "REJECT"])
    assert validate_event_name("ACCEPT", ["ACCEPT", "REJECT"], original="ACCEPT") is None


def test_state_name_rules():
    assert validate_state_name("") == "State name is required"
    assert validate_state_name("Pending") == "Use lowercase letters and underscores only"
    assert validate_state_name("pending2") == "Use lowercase letters and underscores only"
    assert validate_state_name("pending", ["pending"]) == "A state with this name already exists"
    assert validate_state_name("pending_review", ["pending"]) is None


def test_field_name_rules():
    assert validate_field_name("$ref") is None
    assert validate_field_name("bookedAt") is None
    assert validate_field_name("1st") is not None
    assert validate_field_name("date", ["date"]) == "Field already exists"


def test_display_name():
    assert display_name("pending_review") == "Pending Review"
    assert display_name("checked__in") == "Checked In"


def test_transition_form_collects_all_errors():
    with pytest.raises(ValidationError) as excinfo:
        validate_transition_form({"event": "go", "target": "",
                                  "actionDetails": {"description": "", "steps": [{"instance": "page"}]}})
    errors = excinfo.value.errors
    assert set(errors) == {"event", "target", "description", "step_0_description", "step_0_method"}


def test_transition_form_cleans_submission():
    form = validate_transition_form({"event": " ACCEPT ", "target": "accepted", "platforms": []})
    assert form == {"event": "ACCEPT", "target": "accepted", "platforms": None, "actionDetails": None}


def test_state_form_adds_display_name():
    form = validate_state_form({"stateName": " pending_review ", "copyFrom": "pending"}, ["pending"])
    assert form["stateName"] == "pending_review"
    assert form["displayName"] == "Pending Review"
    assert form["copyFrom"] == "pending"

    with pytest.raises(ValidationError) as excinfo:
        validate_state_form({"stateName": "pending"}, ["pending"])
    assert excinfo.value.errors == {"stateName": "A state with this name already exists"}
