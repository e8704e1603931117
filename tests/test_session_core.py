from __future__ import annotations

from dataclasses import dataclass

import pytest

from nback_trainer.cognitive_core import InvalidLevel, Outcome, SeededRng, SessionStatus
from nback_trainer.config import Settings
from nback_trainer.scoring import classify_outcome, next_level
from nback_trainer.session import NBackSession, SessionState


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += float(dt)


def _session(
    *,
    seed: int = 7,
    settings: Settings | None = None,
) -> tuple[NBackSession, FakeClock]:
    clock = FakeClock()
    session = NBackSession(
        clock=clock,
        wall_clock=FakeClock(t=1_700_000_000.0),
        rng=SeededRng(seed),
        settings=settings,
    )
    return session, clock


def _play_trial(session: NBackSession, clock: FakeClock, *, perfect: bool) -> None:
    session.set_stimulus()
    trial = session.current_trial
    assert trial is not None
    clock.advance(0.45)
    if perfect and not trial.is_warmup:
        if trial.position_match or trial.audio_match:
            session.record_response(trial.position_match, trial.audio_match)
    clock.advance(2.55)
    session.end_trial()


def test_start_session_generates_sequence_and_enters_warmup() -> None:
    session, _ = _session()
    assert session.status is SessionStatus.IDLE

    session.start_session(2)

    assert session.status is SessionStatus.WARMUP
    assert session.n_level == 2
    assert len(session.sequence) == 22
    assert session.current_trial_index == 0
    assert session.responses == ()
    assert session.session_id.startswith("session_1700000000000_")
    assert session.started_at == pytest.approx(1_700_000_000.0)
    assert session.stimulus_onset is None


@pytest.mark.parametrize("level", [0, 7, -1])
def test_start_session_rejects_out_of_range_level(level: int) -> None:
    session, _ = _session()
    with pytest.raises(InvalidLevel):
        session.start_session(level)
    assert session.status is SessionStatus.IDLE


def test_start_session_without_level_uses_adaptive_or_manual_level() -> None:
    session, _ = _session(settings=Settings(default_n_level=4, adaptive_mode=True, adaptive_n_level=3))
    session.start_session()
    assert session.n_level == 3

    manual, _ = _session(settings=Settings(default_n_level=4, adaptive_mode=False, adaptive_n_level=3))
    manual.start_session()
    assert manual.n_level == 4


def test_set_stimulus_tracks_warmup_and_playing() -> None:
    session, clock = _session()
    session.start_session(1)

    clock.advance(1.0)
    assert session.set_stimulus() is True
    assert session.status is SessionStatus.WARMUP
    assert session.stimulus_onset == pytest.approx(1.0)

    session.end_trial()
    assert session.stimulus_onset is None
    session.set_stimulus()
    assert session.status is SessionStatus.PLAYING


def test_record_response_ignored_in_warmup_and_before_stimulus() -> None:
    session, clock = _session()
    session.start_session(1)

    session.set_stimulus()
    assert session.record_response(True, True) is False  # warmup
    session.end_trial()

    # Scored trial, but stimulus not shown yet.
    assert session.record_response(True, False) is False
    assert session.responses == ()

    session.set_stimulus()
    clock.advance(0.3)
    assert session.record_response(True, False) is True
    assert len(session.responses) == 1


def test_first_press_per_key_wins() -> None:
    session, clock = _session()
    session.start_session(1)
    session.set_stimulus()
    session.end_trial()

    session.set_stimulus()
    clock.advance(0.4)
    session.record_response(True, False)
    clock.advance(0.5)
    session.record_response(True, False)
    session.record_response(False, True)

    (response,) = session.responses
    assert response.position_pressed is True
    assert response.position_rt_ms == pytest.approx(400.0)
    assert response.audio_pressed is True
    assert response.audio_rt_ms == pytest.approx(900.0)
    assert response.position_outcome is None


def test_end_trial_synthesizes_no_press_response() -> None:
    session, clock = _session()
    session.start_session(2)
    for _ in range(2):
        session.set_stimulus()
        session.end_trial()

    trial = session.current_trial
    assert trial is not None and not trial.is_warmup
    session.set_stimulus()
    clock.advance(3.0)
    session.end_trial()

    response = session.response_for(trial.index)
    assert response is not None
    assert response.position_pressed is False
    assert response.audio_pressed is False
    assert response.position_rt_ms is None and response.audio_rt_ms is None
    assert response.position_outcome is classify_outcome(trial.position_match, False)
    assert response.audio_outcome is classify_outcome(trial.audio_match, False)
    assert response.position_outcome in (Outcome.MISS, Outcome.CORRECT_REJECTION)


def test_warmup_trials_never_get_responses() -> None:
    session, _ = _session()
    session.start_session(3)
    for _ in range(3):
        session.set_stimulus()
        session.end_trial()
    assert session.responses == ()
    assert session.current_trial_index == 3


def test_full_session_has_one_response_per_scored_trial() -> None:
    session, clock = _session(seed=31)
    session.start_session(2)
    while session.status is not SessionStatus.FINISHED:
        _play_trial(session, clock, perfect=False)

    indices = [r.trial_index for r in session.responses]
    assert sorted(indices) == list(range(2, 22))
    assert len(set(indices)) == len(indices)
    assert session.progress == 100
    assert session.trials_remaining == 0
    assert session.current_trial is None


def test_perfect_session_levels_up_next_session_only() -> None:
    session, clock = _session(seed=99, settings=Settings(adaptive_mode=True, adaptive_n_level=2))
    session.start_session()
    while session.status is not SessionStatus.FINISHED:
        _play_trial(session, clock, perfect=True)

    record = session.finish_session()
    assert record is not None
    assert record.position_accuracy == 100
    assert record.audio_accuracy == 100
    assert record.combined_accuracy == 100
    assert record.avg_reaction_time_ms == 450
    assert record.completed is True
    assert record.adaptive_enabled is True
    assert record.n_level == 2
    assert session.n_level == 2
    assert session.adaptive_n_level == 3
    assert session.last_level_change == (2, 3)

    # Repeated finish returns the same record and does not step the level again.
    assert session.finish_session() is record
    assert session.adaptive_n_level == 3


def test_silent_session_levels_down_when_matches_are_missed() -> None:
    session, clock = _session(seed=5, settings=Settings(adaptive_mode=True, adaptive_n_level=3))
    session.start_session()
    while session.status is not SessionStatus.FINISHED:
        _play_trial(session, clock, perfect=False)

    record = session.finish_session()
    assert record is not None
    assert record.position_hits == 0 and record.audio_hits == 0
    assert record.position_false_alarms == 0 and record.audio_false_alarms == 0
    assert record.avg_reaction_time_ms == 0
    assert session.adaptive_n_level == next_level(
        3, record.position_accuracy, record.audio_accuracy, record.combined_accuracy
    )


def test_adaptive_off_keeps_level() -> None:
    session, clock = _session(settings=Settings(adaptive_mode=False, default_n_level=2, adaptive_n_level=2))
    session.start_session()
    while session.status is not SessionStatus.FINISHED:
        _play_trial(session, clock, perfect=True)
    record = session.finish_session()
    assert record is not None
    assert record.adaptive_enabled is False
    assert session.adaptive_n_level == 2
    assert session.last_level_change is None


def test_finish_before_start_is_noop() -> None:
    session, _ = _session()
    assert session.finish_session() is None
    assert session.status is SessionStatus.IDLE


def test_early_finish_is_marked_incomplete() -> None:
    session, clock = _session()
    session.start_session(1)
    for _ in range(5):
        _play_trial(session, clock, perfect=False)
    record = session.finish_session()
    assert record is not None
    assert record.completed is False
    assert session.status is SessionStatus.FINISHED
    assert session.end_trial() is False


def test_pause_and_resume() -> None:
    session, _ = _session()
    assert session.pause_session() is False

    session.start_session(1)
    assert session.resume_session() is False
    assert session.pause_session() is True
    assert session.status is SessionStatus.PAUSED
    assert session.pause_session() is False
    assert session.resume_session() is True
    assert session.status is SessionStatus.WARMUP

    session.set_stimulus()
    session.end_trial()
    session.set_stimulus()
    session.pause_session()
    session.resume_session()
    assert session.status is SessionStatus.PLAYING


def test_paused_session_ignores_stimulus_and_responses() -> None:
    session, clock = _session()
    session.start_session(1)
    session.set_stimulus()
    session.end_trial()
    session.set_stimulus()
    session.pause_session()

    clock.advance(0.5)
    assert session.record_response(True, True) is False
    assert session.set_stimulus() is False


def test_reset_clears_session_but_keeps_adaptive_settings() -> None:
    session, clock = _session(settings=Settings(adaptive_n_level=4))
    session.start_session(2)
    _play_trial(session, clock, perfect=False)

    session.reset_session()

    assert session.status is SessionStatus.IDLE
    assert session.sequence == ()
    assert session.responses == ()
    assert session.current_trial_index == 0
    assert session.session_id == ""
    assert session.started_at is None
    assert session.adaptive_n_level == 4


def test_restore_then_serialize_reproduces_snapshot_except_onset() -> None:
    session, clock = _session(seed=12)
    session.start_session(2)
    for _ in range(4):
        _play_trial(session, clock, perfect=True)
    session.set_stimulus()
    clock.advance(0.3)
    session.record_response(True, False)

    original = session.session_state()
    assert original.stimulus_onset is not None
    payload = original.to_dict()

    other, _ = _session(seed=999)
    other.restore_session(SessionState.from_dict(payload))
    again = other.session_state().to_dict()

    assert again["stimulus_onset"] is None
    payload["stimulus_onset"] = None
    assert again == payload


def test_restored_trial_requires_new_stimulus() -> None:
    session, clock = _session()
    session.start_session(1)
    session.set_stimulus()
    session.end_trial()
    session.set_stimulus()
    state = session.session_state()

    session.restore_session(state)
    assert session.record_response(True, False) is False
    session.set_stimulus()
    clock.advance(0.2)
    assert session.record_response(True, False) is True


def test_interrupted_session_round_trip_comes_back_paused() -> None:
    session, clock = _session()
    session.start_session(2)
    for _ in range(3):
        _play_trial(session, clock, perfect=True)

    record = session.interrupted_session(interrupted_at=123.0)
    assert record is not None
    assert record.interrupted_at == 123.0

    other, _ = _session(seed=1)
    other.restore_interrupted(record)
    assert other.status is SessionStatus.PAUSED
    assert other.current_trial_index == 3
    assert other.session_id == session.session_id
    assert other.sequence == session.sequence
    assert other.responses == session.responses


def test_no_interrupted_record_when_idle() -> None:
    session, _ = _session()
    assert session.interrupted_session() is None


def test_malformed_state_raises_value_error() -> None:
    with pytest.raises(ValueError):
        SessionState.from_dict({"status": "playing"})


def test_settings_helpers_clamp_and_toggle() -> None:
    session, _ = _session()
    session.set_n_level(42)
    assert session.n_level == 6
    session.set_n_level(0)
    assert session.n_level == 1

    adaptive = session.adaptive_mode
    session.toggle_adaptive_mode()
    assert session.adaptive_mode is (not adaptive)
    sound = session.sound_effects_enabled
    session.toggle_sound_effects()
    assert session.sound_effects_enabled is (not sound)

    update = session.settings_update()
    assert update["default_n_level"] == 1
    assert update["adaptive_mode"] is (not adaptive)
