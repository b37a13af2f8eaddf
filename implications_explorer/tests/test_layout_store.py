# implications_explorer/tests/test_layout_store.py
import json
from unittest import mock

import pytest
from ..api_client import ApiError
from ..layout_store import (
    LayoutStore, LocalCache, SessionCache, is_complete, layout_key, merge_layout,
    positions_from_json, positions_to_json,
)


@pytest.fixture
def cache(tmp_path):
    return LocalCache(tmp_path / "cache.json")


def test_cache_persists_across_instances(tmp_path):
    path = tmp_path / "nested" / "cache.json"
    LocalCache(path).set("answer", {"value": 42})
    assert LocalCache(path).get("answer") == {"value": 42}


def test_unreadable_cache_starts_empty(tmp_path):
    path = tmp_path / "cache.json"
    path.write_text("{not json", encoding="utf-8")
    assert LocalCache(path).keys() == []
    path.write_text("[1, 2]", encoding="utf-8")
    assert LocalCache(path).keys() == []


def test_cache_remove(cache):
    cache.set("a", 1)
    cache.remove("a")
    cache.remove("never-there")
    assert cache.get("a") is None
    assert json.loads(cache.path.read_text(encoding="utf-8")) == {}


def test_layout_round_trip_reproduces_positions(cache):
    store = LayoutStore(cache)
    saved = {"created": (10.0, 20.5), "pending": (300.0, -40.0)}
    store.save("/work/app", saved)

    reloaded = LayoutStore(LocalCache(cache.path)).load("/work/app")
    current_auto = {"created": (0.0, 0.0), "pending": (1.0, 1.0), "new_state": (5.0, 5.0)}
    applied = merge_layout(current_auto, reloaded)

    assert applied["created"] == saved["created"]
    assert applied["pending"] == saved["pending"]
    assert applied["new_state"] == (5.0, 5.0)


def test_merge_ignores_nodes_no_longer_present():
    merged = merge_layout({"a": (0.0, 0.0)}, {"a": (1.0, 2.0), "gone": (9.0, 9.0)})
    assert merged == {"a": (1.0, 2.0)}
    assert merge_layout({"a": (0.0, 0.0)}, None) == {"a": (0.0, 0.0)}


def test_layouts_are_per_project(cache):
    store = LayoutStore(cache)
    store.save("/one", {"a": (1.0, 1.0)})
    store.save("/two", {"a": (2.0, 2.0)})
    assert store.load("/one") == {"a": (1.0, 1.0)}
    assert store.load("/two") == {"a": (2.0, 2.0)}
    assert layout_key("/one") == "graphLayout:/one"


def test_positions_from_json_skips_bad_points():
    data = {"a": {"x": 1, "y": 2}, "b": {"x": "1", "y": 2}, "c": [1, 2]}
    assert positions_from_json(data) == {"a": (1.0, 2.0)}
    assert positions_from_json(None) == {}
    assert positions_to_json({"a": (1, 2)}) == {"a": {"x": 1.0, "y": 2.0}}


def test_is_complete():
    assert is_complete({"a": (0, 0), "b": (0, 0)}, ["a", "b"])
    assert not is_complete({"a": (0, 0)}, ["a", "b"])
    assert not is_complete(None, [])


def test_load_falls_back_to_backend_and_caches(cache):
    api = mock.Mock()
    api.load_layout.return_value = {"a": {"x": 3, "y": 4}}
    store = LayoutStore(cache, api)

    assert store.load("/work/app") == {"a": (3.0, 4.0)}
    assert cache.get(layout_key("/work/app")) == {"a": {"x": 3.0, "y": 4.0}}
    store.load("/work/app")
    api.load_layout.assert_called_once_with("/work/app")


def test_backend_failure_means_no_saved_layout(cache):
    api = mock.Mock()
    api.load_layout.side_effect = ApiError("down")
    assert LayoutStore(cache, api).load("/work/app") is None


def test_remote_save_and_clear(cache):
    api = mock.Mock()
    store = LayoutStore(cache, api)
    store.save("/work/app", {"a": (1.0, 2.0)})
    api.save_layout.assert_not_called()

    store.save("/work/app", {"a": (1.0, 2.0)}, remote=True)
    api.save_layout.assert_called_once_with("/work/app", {"a": {"x": 1.0, "y": 2.0}})

    store.clear("/work/app", remote=True)
    assert cache.get(layout_key("/work/app")) is None
    api.delete_layout.assert_called_once_with("/work/app")


def test_save_merges_into_stored_layout(cache):
    api = mock.Mock()
    store = LayoutStore(cache, api)
    store.save("/work/app", {"a": (1.0, 1.0), "b": (2.0, 2.0)})
    store.save("/work/app", {"b": (5.0, 6.0)}, remote=True)

    assert store.load("/work/app") == {"a": (1.0, 1.0), "b": (5.0, 6.0)}
    api.save_layout.assert_called_once_with(
        "/work/app", {"a": {"x": 1.0, "y": 1.0}, "b": {"x": 5.0, "y": 6.0}})


def test_session_cache_remember_and_clear(cache):
    session = SessionCache(cache)
    discovery = {"projectPath": "/work/app", "stateRegistry": {"pending": "PendingImplications"}}
    session.remember_scan("/work/app", discovery, {"nodes": []}, {"totalStates": 0})

    assert session.last_project_path == "/work/app"
    assert session.last_discovery == discovery
    assert cache.get("lastStateRegistry") == {"pending": "PendingImplications"}

    cache.set(layout_key("/work/app"), {})
    session.clear()
    assert session.last_project_path is None
    assert layout_key("/work/app") in cache.keys()
