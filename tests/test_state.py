import pytest

from mobile.state import ActivityLog, MembershipState, Session, Severity
from shared.utils import is_http_url, is_ws_url, token_preview


def test_activity_log_keeps_most_recent_first_and_drops_oldest():
    log = ActivityLog(capacity=3)
    for i in range(5):
        log.add("Mobile 1", f"event {i}")

    assert len(log) == 3
    assert [e.message for e in log.entries()] == ["event 4", "event 3", "event 2"]


def test_activity_log_filters_by_source():
    log = ActivityLog()
    log.add("Mobile 1", "a")
    log.add("Mobile 2", "b", Severity.ERROR)
    log.add("Debug", "c")

    assert [e.message for e in log.for_source("Mobile 2")] == ["b"]
    assert log.for_source("Mobile 2")[0].severity is Severity.ERROR
    log.clear()
    assert log.entries() == []


def test_activity_log_rejects_zero_capacity():
    with pytest.raises(ValueError):
        ActivityLog(capacity=0)


def test_session_to_dict_uses_wire_field_names():
    rec = Session(client_id="sim-user-001", entity_id="sim-plane-001", display_name="Foxtrot-4")
    data = rec.to_dict()

    assert data["userId"] == "sim-user-001"
    assert data["planeId"] == "sim-plane-001"
    assert data["playerName"] == "Foxtrot-4"
    assert data["status"] == MembershipState.NOT_JOINED.value
    assert data["authToken"] is None and data["matchId"] is None


def test_url_and_token_helpers():
    assert is_ws_url("ws://aeroduel.local:45045/ws")
    assert is_ws_url("wss://x")
    assert not is_ws_url("http://x")
    assert not is_ws_url("ws://x:notaport")
    assert not is_ws_url(None)
    assert is_http_url("http://aeroduel.local:45045")
    assert not is_http_url("aeroduel.local")
    assert token_preview("tok123456789") == "tok12345..."
    assert token_preview(None) == "-"
