"""Tests for the per-channel session state machine."""

import json
from datetime import timedelta

import pytest

from pomocop.pomo import (
    AlreadyRunningError,
    EventKind,
    Lifecycle,
    NotRunningError,
    Phase,
    PhaseConfig,
    RecoveryCorruptError,
    Session,
)
from tests.conftest import T0


@pytest.fixture
def session() -> Session:
    return Session.create("chan-1", PhaseConfig(), T0)


class TestCreate:
    def test_starts_in_first_work_phase(self, session):
        assert session.phase == Phase.work(0)
        assert session.phase_started_at == T0
        assert session.deadline == T0 + timedelta(minutes=25)
        assert session.lifecycle == Lifecycle.RUNNING
        assert session.subscribers == frozenset()
        assert session.created_at == T0

    def test_refuses_when_running_session_exists(self, session):
        with pytest.raises(AlreadyRunningError) as exc_info:
            Session.create("chan-1", PhaseConfig(), T0, existing=session)
        assert exc_info.value.channel_id == "chan-1"

    def test_allows_replacing_stopped_session(self, session):
        fresh = Session.create("chan-1", PhaseConfig(), T0, existing=session.stop())
        assert fresh.is_running
        assert fresh.id != session.id

    def test_naive_now_treated_as_utc(self):
        naive = T0.replace(tzinfo=None)
        session = Session.create("chan-1", PhaseConfig(), naive)
        assert session.phase_started_at == T0


class TestTiming:
    def test_remaining_and_elapsed(self, session):
        now = T0 + timedelta(minutes=10)
        assert session.remaining(now) == timedelta(minutes=15)
        assert session.elapsed(now) == timedelta(minutes=10)

    def test_remaining_never_negative(self, session):
        assert session.remaining(T0 + timedelta(hours=2)) == timedelta(0)

    def test_elapsed_clamped_to_phase(self, session):
        assert session.elapsed(T0 - timedelta(minutes=1)) == timedelta(0)
        assert session.elapsed(T0 + timedelta(hours=2)) == timedelta(minutes=25)


class TestTransitions:
    """Tests for advancing, skipping and replaying phases."""

    def test_advance_starts_next_phase_at_now(self, session):
        now = T0 + timedelta(minutes=25, seconds=3)
        updated, entered = session.advance(now)
        assert entered == Phase.short_break(0)
        assert updated.phase == entered
        assert updated.phase_started_at == now
        assert updated.deadline == now + timedelta(minutes=5)
        # original is untouched
        assert session.phase == Phase.work(0)

    def test_skip_matches_expiry(self, session):
        now = T0 + timedelta(minutes=7)
        assert session.force_advance(now) == session.advance(now)

    def test_skip_sequence_reaches_long_break(self, session):
        phases = []
        current = session
        for _ in range(7):
            current, entered = current.force_advance(T0)
            phases.append(entered)
        assert phases == [
            Phase.short_break(0),
            Phase.work(1),
            Phase.short_break(1),
            Phase.work(2),
            Phase.short_break(2),
            Phase.work(3),
            Phase.long_break(3),
        ]

    def test_catch_up_replays_from_old_deadlines(self, session):
        # Deadline was 40 minutes ago.
        now = session.deadline + timedelta(minutes=40)
        caught_up, steps = session.catch_up(now, max_iterations=100)
        assert steps == 4
        assert caught_up.phase == Phase.work(2)
        assert caught_up.remaining(now) == timedelta(minutes=20)
        assert caught_up.deadline == T0 + timedelta(minutes=25 + 5 + 25 + 5 + 25)

    def test_catch_up_noop_before_deadline(self, session):
        caught_up, steps = session.catch_up(
            T0 + timedelta(minutes=1), max_iterations=100
        )
        assert steps == 0
        assert caught_up is session

    def test_catch_up_exact_deadline_advances(self, session):
        caught_up, steps = session.catch_up(session.deadline, max_iterations=100)
        assert steps == 1
        assert caught_up.phase == Phase.short_break(0)

    def test_catch_up_cap(self, session):
        with pytest.raises(RecoveryCorruptError, match="exceeded 3"):
            session.catch_up(T0 + timedelta(days=1), max_iterations=3)


class TestSubscribers:
    def test_subscribe_and_unsubscribe(self, session):
        joined = session.subscribe("alice")
        assert joined.subscribers == {"alice"}
        left = joined.unsubscribe("alice")
        assert left.subscribers == frozenset()

    def test_duplicate_subscribe_returns_same_session(self, session):
        joined = session.subscribe("alice")
        assert joined.subscribe("alice") is joined

    def test_unsubscribe_unknown_returns_same_session(self, session):
        assert session.unsubscribe("bob") is session

    def test_stopped_session_rejects_membership_changes(self, session):
        stopped = session.stop()
        with pytest.raises(NotRunningError):
            stopped.subscribe("alice")
        with pytest.raises(NotRunningError):
            stopped.unsubscribe("alice")


class TestStatus:
    def test_status_view(self, session):
        session = session.subscribe("alice")
        view = session.status(T0 + timedelta(minutes=10))
        assert view.channel_id == "chan-1"
        assert view.phase == Phase.work(0)
        assert view.duration == timedelta(minutes=25)
        assert view.elapsed == timedelta(minutes=10)
        assert view.remaining == timedelta(minutes=15)
        assert view.next_phase == Phase.short_break(0)
        assert view.subscribers == {"alice"}
        # 15 minutes left of work(0) + 90 minutes until long_break(3)
        assert view.long_break_at == T0 + timedelta(minutes=10 + 15 + 90)

    def test_event_carries_phase_timing(self, session):
        event = session.event(EventKind.STARTED)
        assert event.kind == EventKind.STARTED
        assert event.phase == Phase.work(0)
        assert event.duration == timedelta(minutes=25)
        assert event.deadline == session.deadline
        assert event.previous is None
        assert event.missed_phases == 0


class TestSnapshots:
    """Tests for snapshot encoding and validation."""

    def test_json_round_trip(self, session):
        session = session.subscribe("bob").subscribe("alice")
        restored = Session.from_json(session.to_json())
        assert restored == session

    def test_subscribers_serialized_sorted(self, session):
        session = session.subscribe("bob").subscribe("alice")
        assert json.loads(session.to_json())["subscribers"] == ["alice", "bob"]

    def test_invalid_json(self):
        with pytest.raises(RecoveryCorruptError, match="invalid JSON"):
            Session.from_json("{not json", channel_id="chan-9")

    def test_non_object(self):
        with pytest.raises(RecoveryCorruptError):
            Session.from_json("[1, 2]")

    def test_missing_field(self, session):
        data = session.to_dict()
        del data["deadline"]
        with pytest.raises(RecoveryCorruptError) as exc_info:
            Session.from_dict(data)
        assert exc_info.value.channel_id == "chan-1"

    def test_unknown_phase_kind(self, session):
        data = session.to_dict()
        data["phase"]["kind"] = "nap"
        with pytest.raises(RecoveryCorruptError):
            Session.from_dict(data)

    def test_deadline_must_match_phase_length(self, session):
        data = session.to_dict()
        data["deadline"] = (session.deadline + timedelta(minutes=3)).isoformat()
        with pytest.raises(RecoveryCorruptError, match="does not match"):
            Session.from_dict(data)

    def test_invalid_config_is_corrupt(self, session):
        data = session.to_dict()
        data["config"]["cycle_length"] = 0
        with pytest.raises(RecoveryCorruptError):
            Session.from_dict(data)

    @pytest.mark.parametrize(
        "path, value",
        [
            (("phase", "index"), 1.7),
            (("phase", "index"), "2"),
            (("config", "cycle_length"), 2.9),
            (("config", "cycle_length"), True),
        ],
    )
    def test_counters_must_be_integers(self, session, path, value):
        data = session.to_dict()
        data[path[0]][path[1]] = value
        with pytest.raises(RecoveryCorruptError, match="must be an integer"):
            Session.from_dict(data)

    def test_infinite_duration_is_corrupt(self, session):
        data = session.to_dict()
        data["config"]["work_seconds"] = float("inf")
        with pytest.raises(RecoveryCorruptError):
            Session.from_json(json.dumps(data))

    @pytest.mark.parametrize(
        "started_at, deadline",
        [
            ("9999-12-31T23:59:00+00:00", "9999-12-31T23:59:59+00:00"),
            # fits, but the next long break does not
            ("9999-12-31T23:00:00+00:00", "9999-12-31T23:25:00+00:00"),
        ],
    )
    def test_timestamps_at_the_end_of_time_are_corrupt(
        self, session, started_at, deadline
    ):
        data = session.to_dict()
        data["phase_started_at"] = started_at
        data["deadline"] = deadline
        with pytest.raises(RecoveryCorruptError):
            Session.from_dict(data)
