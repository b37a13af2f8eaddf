# implications_explorer/tests/test_discovery.py
import pytest
from ..discovery import DiscoveryResult, normalize_state_id, SetupEntry
from .conftest import discovery_payload, implication


@pytest.mark.parametrize("name, expected", [
    ("PendingReviewImplications", "pending_review"),
    ("CreatedBookingImplications", "created_booking"),
    ("Accepted", "accepted"),
    ("pending_review", "pending_review"),
    ("Checked_In", "checked_in"),
    ("Booking_PendingImplications", "booking_pending"),
])
def test_normalize_state_id(name, expected):
    assert normalize_state_id(name) == expected


def test_normalize_state_id_is_idempotent():
    for name in ("PendingReviewImplications", "CheckedInImplications", "Standby",
                 "Booking_PendingImplications"):
        once = normalize_state_id(name)
        assert normalize_state_id(once) == once


def test_normalize_missing_name_is_unknown():
    assert normalize_state_id(None) == "unknown"
    assert normalize_state_id("") == "unknown"


def test_from_dict_parses_metadata(booking_payload):
    result = DiscoveryResult.from_dict(booking_payload)
    assert result.project_path == "/work/app"
    assert len(result.implications) == 5
    assert len(result.transitions) == 4

    pending = result.implications[1].metadata
    assert pending.class_name == "PendingBookingImplications"
    assert pending.status == "pending"
    assert pending.required_fields == ["date", "time"]
    assert pending.test_file == "tests/pending.spec.js"
    assert pending.tags == {"flow": ["booking"]}


def test_stateful_implications_excludes_stateless(booking_payload):
    result = DiscoveryResult.from_dict(booking_payload)
    names = [imp.metadata.class_name for imp in result.stateful_implications]
    assert "HelperImplications" not in names
    assert len(names) == 4


def test_malformed_entries_are_skipped():
    payload = discovery_payload(
        [implication("GoodImplications", "good"), "not-an-object", 42],
        [{"from": "good", "to": "good", "event": "LOOP"}, None],
    )
    result = DiscoveryResult.from_dict(payload)
    assert len(result.implications) == 1
    assert len(result.transitions) == 1


def test_non_object_payload_is_empty():
    result = DiscoveryResult.from_dict(["nope"])
    assert result.implications == []
    assert result.transitions == []


def test_wrongly_typed_fields_become_defaults():
    payload = discovery_payload([{
        "path": "x.js",
        "metadata": {"className": 7, "hasXStateConfig": "yes", "requiredFields": "date",
                     "uiCoverage": [], "platforms": ["web", 3]},
    }])
    metadata = DiscoveryResult.from_dict(payload).implications[0].metadata
    assert metadata.class_name is None
    assert metadata.has_xstate_config is False
    assert metadata.required_fields == ["date"]
    assert metadata.ui_coverage == {}
    assert metadata.platforms == ["web"]


def test_class_name_beside_metadata_is_used():
    payload = discovery_payload([{
        "className": "CreatedBookingImplications",
        "metadata": {"hasXStateConfig": True, "status": "created"},
    }])
    metadata = DiscoveryResult.from_dict(payload).implications[0].metadata
    assert metadata.class_name == "CreatedBookingImplications"


def test_effective_platform_prefers_setup():
    payload = discovery_payload([
        implication("AImplications", "a", platform="web", setup=[{"platform": "dancer"}]),
        implication("BImplications", "b"),
    ])
    first, second = DiscoveryResult.from_dict(payload).implications
    assert first.metadata.effective_platform == "dancer"
    assert second.metadata.effective_platform == "web"
    assert second.metadata.all_platforms == ["web"]


def test_setup_entry_action_name_shapes():
    assert SetupEntry.from_raw("loginAs").action_name == "loginAs"
    assert SetupEntry.from_raw({"actionName": "acceptBooking"}).action_name == "acceptBooking"
    assert SetupEntry.from_raw({"custom": 1}).action_name == "{custom: ...}"
    assert SetupEntry.from_raw(None).action_name is None


def test_tags_merge_meta_entity_and_screen():
    payload = discovery_payload([{
        "path": "a.js",
        "metadata": {
            "className": "AImplications", "hasXStateConfig": True, "screen": "BookingScreen",
            "tags": {"flow": "booking"},
            "xstateConfig": {"meta": {"entity": "booking", "tags": {"team": ["core"]}}},
        },
    }])
    tags = DiscoveryResult.from_dict(payload).implications[0].metadata.tags
    assert tags == {"flow": ["booking"], "team": ["core"], "entity": ["booking"],
                    "screen": ["BookingScreen"]}


def test_replace_implication_swaps_matching_path(booking_payload):
    result = DiscoveryResult.from_dict(booking_payload)
    updated = implication("PendingBookingImplications", "pending", triggerButton="ASK",
                          path=booking_payload["files"]["implications"][1]["path"])

    replaced = result.replace_implication(updated)

    assert replaced.implications[1].metadata.trigger_button == "ASK"
    assert len(replaced.implications) == len(result.implications)
    # the original result is untouched
    assert result.implications[1].metadata.trigger_button == "REQUEST_BOOKING"
