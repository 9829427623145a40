import pytest

from peerlink.errors import InvalidTransition, MediaUnavailable
from peerlink.session import CallSession, CallState, Role


def test_initial_snapshot() -> None:
    session = CallSession()

    snapshot = session.snapshot()
    assert snapshot.state is CallState.IDLE
    assert snapshot.role is None
    assert snapshot.call_id is None
    assert snapshot.remote_description_applied is False
    assert snapshot.to_dict()["state"] == "idle"


def test_full_lifecycle() -> None:
    session = CallSession()

    session.media_ready(["camera"])
    assert session.state is CallState.LOCAL_MEDIA_READY

    session.begin_negotiation(Role.CALLEE, "abc123")
    assert session.state is CallState.NEGOTIATING
    assert session.snapshot().to_dict()["role"] == "callee"

    assert session.mark_connected() is not None
    assert session.mark_connected() is None
    assert session.close() is True
    assert session.close() is False
    assert session.is_closed


def test_media_ready_requires_tracks() -> None:
    session = CallSession()
    with pytest.raises(MediaUnavailable):
        session.media_ready([])
    assert session.state is CallState.IDLE


def test_invalid_transitions() -> None:
    session = CallSession()
    with pytest.raises(InvalidTransition):
        session.begin_negotiation(Role.CALLER, "abc123")
    with pytest.raises(InvalidTransition):
        session.mark_connected()

    session.close()
    with pytest.raises(InvalidTransition):
        session.media_ready(["camera"])


def test_any_state_can_close() -> None:
    for prepare in (
        lambda s: None,
        lambda s: s.media_ready(["camera"]),
        lambda s: (s.media_ready(["camera"]), s.begin_negotiation(Role.CALLER, "x")),
    ):
        session = CallSession()
        prepare(session)
        assert session.close(RuntimeError("gone")) is True
        assert session.snapshot().to_dict()["closedReason"] == "gone"


def test_remote_candidate_bookkeeping() -> None:
    session = CallSession()

    assert session.admit_remote_candidate("k1") is True
    assert session.admit_remote_candidate("k1") is False

    session.buffer_remote_candidate("first")  # type: ignore[arg-type]
    session.buffer_remote_candidate("second")  # type: ignore[arg-type]
    assert session.take_buffered_candidates() == ["first", "second"]
    assert session.take_buffered_candidates() == []


def test_subscribe_receives_transitions() -> None:
    session = CallSession()
    received = []

    token = session.subscribe(lambda snapshot: received.append(snapshot.state))
    session.media_ready(["camera"])
    session.begin_negotiation(Role.CALLER, "abc123")
    assert received == [CallState.LOCAL_MEDIA_READY, CallState.NEGOTIATING]

    session.unsubscribe(token)
    session.close()
    assert received == [CallState.LOCAL_MEDIA_READY, CallState.NEGOTIATING]

    with pytest.raises(TypeError):
        session.subscribe("not callable")  # type: ignore[arg-type]
