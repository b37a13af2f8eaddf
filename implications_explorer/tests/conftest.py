# implications_explorer/tests/conftest.py
import os

import pytest

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")


@pytest.fixture(scope="session")
def app():
    """Provide QApplication instance for Qt widget tests."""
    from PySide6.QtWidgets import QApplication
    return QApplication.instance() or QApplication([])


def implication(class_name, status=None, stateful=True, path=None, **metadata):
    """Raw implication entry as the scan endpoint returns it."""
    meta = {"className": class_name, "hasXStateConfig": stateful}
    if status is not None:
        meta["status"] = status
    meta.update(metadata)
    return {"path": path or f"tests/implications/{class_name}.js", "metadata": meta}


def transition(source, target, event, **extra):
    entry = {"from": source, "to": target, "event": event}
    entry.update(extra)
    return entry


def discovery_payload(implications, transitions=(), project_path="/work/app"):
    return {
        "projectPath": project_path,
        "files": {"implications": list(implications)},
        "transitions": list(transitions),
    }


@pytest.fixture
def booking_payload():
    """Four-state booking flow with a status-less state and a stateless helper."""
    return discovery_payload(
        [
            implication("InitialImplications", "initial", platform="web"),
            implication("PendingBookingImplications", "pending", platform="web",
                        triggerButton="REQUEST_BOOKING", requiredFields=["date", "time"],
                        setup=[{"testFile": "tests/pending.spec.js", "actionName": "requestBooking",
                                "platform": "web"}],
                        uiCoverage={"total": 2}, tags={"flow": ["booking"]}),
            implication("AcceptedBookingImplications", "accepted", platform="mobile-dancer",
                        platforms=["web", "mobile-dancer"], triggerButton="ACCEPT_BOOKING",
                        requiredFields=["date", "time", "dancer"],
                        setup=[{"actionName": "acceptBooking"}], uiCoverage={"total": 1},
                        tags={"flow": ["booking", "payment"]}),
            implication("ArchivedImplications"),
            implication("HelperImplications", stateful=False),
        ],
        [
            transition("InitialImplications", "pending", "REQUEST"),
            transition("pending", "AcceptedBookingImplications", "ACCEPT", platforms=["mobile-dancer"]),
            transition("pending", "accepted", "FAST_TRACK", requires={"vip": True}),
            transition("accepted", "nowhere", "ESCALATE"),
        ],
    )
