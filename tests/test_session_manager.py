"""Tests for session tracking."""

from datetime import timedelta

from conftest import at, event
from screenwatch.models import AgeGroup, EndReason, SessionState
from screenwatch.session.manager import SessionManager

PRESCHOOL = AgeGroup.PRESCHOOL
TODDLER = AgeGroup.TODDLER


class Recorder:
    """Collects observer and end-listener calls."""

    def __init__(self, manager: SessionManager) -> None:
        self.updates: list = []
        self.ended: list = []
        manager.subscribe(self.updates.append)
        manager.subscribe_ended(lambda snap, reason, when: self.ended.append((snap, reason, when)))


class TestSessionStart:
    def test_first_classification_starts_session(self, policies) -> None:
        manager = SessionManager(policies)
        recorder = Recorder(manager)

        snapshot = manager.on_classification(event(PRESCHOOL, at(0)))

        assert snapshot.age_group == PRESCHOOL
        assert snapshot.started_at == at(0)
        assert snapshot.last_observed_at == at(0)
        assert snapshot.elapsed_minutes == 0
        assert snapshot.limit_minutes == 60
        assert snapshot.lock_episode_raised is False
        assert snapshot.state == SessionState.ACTIVE
        assert recorder.updates == [snapshot]

    def test_same_group_continues_session(self, policies) -> None:
        manager = SessionManager(policies)

        first = manager.on_classification(event(PRESCHOOL, at(0)))
        second = manager.on_classification(event(PRESCHOOL, at(3), confidence=97.0))

        assert second.id == first.id
        assert second.started_at == at(0)
        assert second.last_observed_at == at(3)
        assert second.confidence == 97.0

    def test_no_silence_ending_from_classification(self, policies) -> None:
        manager = SessionManager(policies)

        first = manager.on_classification(event(PRESCHOOL, at(0)))
        # Long gap, but no tick in between: still the same session
        second = manager.on_classification(event(PRESCHOOL, at(20)))

        assert second.id == first.id
        assert second.started_at == at(0)


class TestElapsedTime:
    def test_elapsed_independent_of_classification_count(self, policies) -> None:
        sparse = SessionManager(policies)
        dense = SessionManager(policies)

        sparse.on_classification(event(PRESCHOOL, at(0)))
        for minute in range(0, 5):
            sparse.on_classification(event(PRESCHOOL, at(minute * 4)))
        for second in range(0, 16 * 60, 30):
            dense.on_classification(event(PRESCHOOL, at(0, second)))

        assert sparse.on_tick(at(17, 30)).elapsed_minutes == 17
        assert dense.on_tick(at(17, 30)).elapsed_minutes == 17

    def test_missed_ticks_do_not_drift(self, policies) -> None:
        manager = SessionManager(policies)
        manager.on_classification(event(PRESCHOOL, at(0)))
        manager.on_classification(event(PRESCHOOL, at(4)))

        # One late tick reflects the full span, not a tick count
        assert manager.on_tick(at(4, 59)).elapsed_minutes == 4

    def test_elapsed_never_decreases(self, policies) -> None:
        manager = SessionManager(policies)
        manager.on_classification(event(PRESCHOOL, at(0)))
        manager.on_classification(event(PRESCHOOL, at(3)))

        assert manager.on_tick(at(4)).elapsed_minutes == 4
        # Clock stepped back
        assert manager.on_tick(at(2)).elapsed_minutes == 4


class TestSupersession:
    def test_age_group_change_supersedes(self, policies) -> None:
        manager = SessionManager(policies)
        recorder = Recorder(manager)

        old = manager.on_classification(event(PRESCHOOL, at(0)))
        manager.on_classification(event(PRESCHOOL, at(3)))
        manager.on_tick(at(4))
        new = manager.on_classification(event(TODDLER, at(4, 30)))

        assert new.id != old.id
        assert new.age_group == TODDLER
        assert new.elapsed_minutes == 0
        assert new.started_at == at(4, 30)
        assert new.limit_minutes == 45

        # Observer saw the end (None) right before the new session
        assert recorder.updates[-2] is None
        assert recorder.updates[-1] == new

        snapshot, reason, ended_at = recorder.ended[0]
        assert snapshot.id == old.id
        assert reason == EndReason.SUPERSEDED
        assert ended_at == at(4, 30)
        assert snapshot.elapsed_minutes == 4

    def test_oscillation_thrashes_sessions(self, policies) -> None:
        manager = SessionManager(policies)
        recorder = Recorder(manager)

        ids = set()
        for i, group in enumerate([PRESCHOOL, TODDLER, PRESCHOOL, TODDLER]):
            ids.add(manager.on_classification(event(group, at(0, i))).id)

        assert len(ids) == 4
        assert len(recorder.ended) == 3


class TestSilenceTimeout:
    def test_tick_ends_silent_session(self, policies) -> None:
        manager = SessionManager(policies, silence_timeout=timedelta(minutes=5))
        recorder = Recorder(manager)

        manager.on_classification(event(PRESCHOOL, at(0)))
        manager.on_classification(event(PRESCHOOL, at(2)))

        assert manager.on_tick(at(7)) is not None  # exactly 5 min: not yet
        assert manager.on_tick(at(7, 1)) is None

        assert manager.current is None
        assert recorder.updates[-1] is None
        assert recorder.ended[0][1] == EndReason.SILENCE_TIMEOUT
        assert recorder.ended[0][0].elapsed_minutes == 7

    def test_classification_after_timeout_starts_fresh(self, policies) -> None:
        manager = SessionManager(policies)

        old = manager.on_classification(event(PRESCHOOL, at(0)))
        manager.current.lock_episode_raised = True
        manager.on_tick(at(6))
        new = manager.on_classification(event(PRESCHOOL, at(6, 30)))

        assert new.id != old.id
        assert new.started_at == at(6, 30)
        assert new.lock_episode_raised is False

    def test_tick_without_session(self, policies) -> None:
        manager = SessionManager(policies)
        assert manager.on_tick(at(1)) is None


class TestExplicitEnd:
    def test_end_session_returns_final_snapshot(self, policies) -> None:
        manager = SessionManager(policies)
        recorder = Recorder(manager)
        manager.on_classification(event(PRESCHOOL, at(0)))
        manager.on_tick(at(3))

        final = manager.end_session(EndReason.MONITORING_STOPPED, at(3, 10))

        assert final is not None
        assert final.elapsed_minutes == 3
        assert manager.current is None
        assert recorder.ended[0][1] == EndReason.MONITORING_STOPPED

    def test_end_without_session(self, policies) -> None:
        manager = SessionManager(policies)
        assert manager.end_session(EndReason.MONITORING_STOPPED, at(0)) is None


def test_publish_resends_current_snapshot(policies) -> None:
    manager = SessionManager(policies)
    recorder = Recorder(manager)

    assert manager.publish() is None
    assert recorder.updates == []

    manager.on_classification(event(PRESCHOOL, at(0)))
    manager.current.lock_episode_raised = True
    snapshot = manager.publish()

    assert snapshot.lock_episode_raised is True
    assert recorder.updates[-1] == snapshot


def test_observer_errors_are_contained(policies) -> None:
    manager = SessionManager(policies)
    seen = []

    def broken(snapshot) -> None:
        raise RuntimeError("UI went away")

    manager.subscribe(broken)
    manager.subscribe(seen.append)

    snapshot = manager.on_classification(event(PRESCHOOL, at(0)))
    assert seen == [snapshot]
