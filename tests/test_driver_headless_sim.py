from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import pytest

from nback_trainer.cognitive_core import SeededRng, SessionStatus, Trial
from nback_trainer.config import Settings
from nback_trainer.driver import DriverConfig, NBackDriver
from nback_trainer.persistence import SessionStore
from nback_trainer.session import NBackSession


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += float(dt)


def _build(
    tmp_path: Path | None,
    *,
    seed: int = 17,
    settings: Settings | None = None,
) -> tuple[NBackDriver, FakeClock, FakeClock, SessionStore | None, list[Trial]]:
    clock = FakeClock()
    wall = FakeClock(t=50_000.0)
    store = None if tmp_path is None else SessionStore(tmp_path / "nback.sqlite3", wall_clock=wall)
    session = NBackSession(clock=clock, wall_clock=wall, rng=SeededRng(seed), settings=settings)
    presented: list[Trial] = []
    driver = NBackDriver(session=session, clock=clock, store=store, on_stimulus=presented.append)
    return driver, clock, wall, store, presented


def _run_to_end(driver: NBackDriver, clock: FakeClock, *, perfect: bool, max_steps: int = 20_000) -> None:
    for _ in range(max_steps):
        if driver.status is SessionStatus.FINISHED:
            return
        trial = driver.session.current_trial
        clock.advance(1.0 / 60.0)
        onset = driver.session.stimulus_onset
        if perfect and trial is not None and onset is not None and 0.4 <= clock.now() - onset < 0.42:
            if trial.position_match:
                driver.press_position()
            if trial.audio_match:
                driver.press_audio()
        driver.update()
    raise AssertionError("session did not finish")


def test_full_run_persists_record_and_adaptive_level(tmp_path: Path) -> None:
    driver, clock, _, store, presented = _build(tmp_path, settings=Settings(adaptive_n_level=2))
    assert store is not None

    driver.start()
    assert driver.status is SessionStatus.WARMUP
    _run_to_end(driver, clock, perfect=True)

    assert [t.index for t in presented] == list(range(22))
    payload = driver.snapshot()
    assert payload.status is SessionStatus.FINISHED
    assert payload.record is not None
    assert payload.record.combined_accuracy == 100
    assert payload.level_change == (2, 3)

    (saved,) = store.load_sessions()
    assert saved == payload.record
    assert store.load_settings().adaptive_n_level == 3
    assert store.load_interrupted_snapshot() is None


def test_headless_run_is_deterministic_for_same_seed() -> None:
    def run_once() -> tuple[object, ...]:
        driver, clock, _, _, _ = _build(None, seed=441)
        driver.start(3)
        _run_to_end(driver, clock, perfect=True)
        rec = driver.session.last_record
        assert rec is not None
        return (
            rec.position_hits,
            rec.audio_hits,
            rec.position_correct_rejections,
            rec.audio_correct_rejections,
            rec.avg_reaction_time_ms,
        )

    assert run_once() == run_once()


def test_presses_are_gated_by_window_and_debounce() -> None:
    driver, clock, _, _, _ = _build(None)
    driver.start(1)

    # Warmup trial: presses are not forwarded.
    clock.advance(0.5)
    assert driver.press_position() is False

    clock.advance(2.5)
    driver.update()
    assert driver.status is SessionStatus.PLAYING

    # Anticipation (< 100 ms) is rejected and starts the debounce interval.
    clock.advance(0.05)
    assert driver.press_position() is False
    clock.advance(0.06)
    assert driver.press_position() is False  # debounced
    clock.advance(0.2)
    assert driver.press_position() is True
    response = driver.session.response_for(1)
    assert response is not None
    assert response.position_rt_ms == pytest.approx(310.0)

    # Past the response window.
    clock.advance(2.7)
    assert driver.press_audio() is False


def test_stimulus_visibility_window() -> None:
    driver, clock, _, _, _ = _build(None)
    driver.start(1)
    first = driver.session.current_trial
    assert first is not None

    payload = driver.snapshot()
    assert payload.position == first.position
    assert payload.letter == first.letter
    assert payload.trial_number == 1

    clock.advance(0.6)
    payload = driver.snapshot()
    assert payload.position is None
    assert payload.letter is None


def test_pause_saves_snapshot_and_resume_reissues_stimulus(tmp_path: Path) -> None:
    driver, clock, _, store, presented = _build(tmp_path)
    assert store is not None
    driver.start(2)
    for _ in range(3):
        clock.advance(3.0)
        driver.update()
    assert driver.session.current_trial_index == 3

    assert driver.toggle_pause() is SessionStatus.PAUSED
    snapshot = store.load_interrupted_snapshot()
    assert snapshot is not None
    assert snapshot.current_trial_index == 3

    clock.advance(30.0)
    driver.update()
    assert driver.session.current_trial_index == 3

    assert driver.toggle_pause() is SessionStatus.PLAYING
    assert driver.session.stimulus_onset == pytest.approx(clock.now())
    assert presented[-1].index == 3


def test_resume_interrupted_from_store(tmp_path: Path) -> None:
    driver, clock, wall, store, _ = _build(tmp_path)
    assert store is not None
    driver.start(2)
    for _ in range(4):
        clock.advance(3.0)
        driver.update()
    driver.toggle_pause()
    session_id = driver.session.session_id

    fresh, fresh_clock, _, _, presented = _build(None)
    restored = NBackDriver(
        session=fresh.session,
        clock=fresh_clock,
        store=store,
        on_stimulus=presented.append,
    )
    wall.advance(60.0)
    assert restored.resume_interrupted() is True
    assert restored.session.session_id == session_id
    assert restored.session.current_trial_index == 4
    assert restored.status is SessionStatus.PLAYING
    assert presented[-1].index == 4

    _run_to_end(restored, fresh_clock, perfect=False)
    assert len(store.load_sessions()) == 1
    assert store.load_interrupted_snapshot() is None


def test_abort_resets_and_clears_snapshot(tmp_path: Path) -> None:
    driver, clock, _, store, _ = _build(tmp_path)
    assert store is not None
    driver.start(1)
    driver.toggle_pause()
    assert store.load_interrupted_snapshot() is not None

    driver.abort()
    assert driver.status is SessionStatus.IDLE
    assert store.load_interrupted_snapshot() is None
    clock.advance(5.0)
    driver.update()
    assert driver.status is SessionStatus.IDLE


def test_invalid_driver_config_rejected() -> None:
    driver, clock, _, _, _ = _build(None)
    with pytest.raises(ValueError):
        NBackDriver(
            session=driver.session,
            clock=clock,
            config=DriverConfig(trial_interval_s=1.0, stimulus_duration_s=2.0),
        )
