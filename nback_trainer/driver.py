from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass

from .clock import Clock
from .cognitive_core import Modality, SessionStatus, Trial
from .persistence import SessionStore
from .results import SessionRecord
from .session import NBackSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DriverConfig:
    trial_interval_s: float = 3.0
    stimulus_duration_s: float = 0.5
    response_window_s: float = 2.9
    debounce_s: float = 0.1


@dataclass(frozen=True, slots=True)
class NBackPayload:
    """View model for the UI (pure data)."""

    status: SessionStatus
    n_level: int
    trial_number: int  # 1-based; 0 when no trial is showing
    total_trials: int
    is_warmup: bool
    position: int | None  # visible grid slot, None when hidden
    letter: str | None
    progress: int
    position_pressed: bool
    audio_pressed: bool
    adaptive_mode: bool
    record: SessionRecord | None
    level_change: tuple[int, int] | None


class NBackDriver:
    """Paces a session in real time: present, collect presses, end, repeat.

    - Time is entirely via injected Clock; call ``update()`` every frame.
    - Presses are debounced per key and only forwarded inside the response window.
    - Results and the adaptive level are written to the store, when one is given.
    """

    def __init__(
        self,
        *,
        session: NBackSession,
        clock: Clock,
        store: SessionStore | None = None,
        config: DriverConfig | None = None,
        on_stimulus: Callable[[Trial], None] | None = None,
    ) -> None:
        cfg = config or DriverConfig()
        if cfg.trial_interval_s <= 0.0:
            raise ValueError("trial_interval_s must be > 0")
        if not (0.0 < cfg.stimulus_duration_s <= cfg.trial_interval_s):
            raise ValueError("stimulus_duration_s must be in (0, trial_interval_s]")
        if not (0.0 < cfg.response_window_s <= cfg.trial_interval_s):
            raise ValueError("response_window_s must be in (0, trial_interval_s]")
        if cfg.debounce_s < 0.0:
            raise ValueError("debounce_s must be >= 0")

        self._session = session
        self._clock = clock
        self._store = store
        self._cfg = cfg
        self._on_stimulus = on_stimulus

        self._trial_started_at_s: float | None = None
        self._last_press_at_s = {Modality.POSITION: -math.inf, Modality.AUDIO: -math.inf}

    @property
    def session(self) -> NBackSession:
        return self._session

    @property
    def status(self) -> SessionStatus:
        return self._session.status

    def start(self, level: int | None = None) -> None:
        self._session.start_session(level)
        self._present()

    def update(self) -> None:
        if self._session.status not in (SessionStatus.WARMUP, SessionStatus.PLAYING):
            return
        if self._trial_started_at_s is None:
            return
        if self._clock.now() - self._trial_started_at_s < self._cfg.trial_interval_s:
            return

        self._session.end_trial()
        if self._session.status is SessionStatus.FINISHED:
            self._finish()
        else:
            self._present()

    def stimulus_visible(self) -> bool:
        if self._trial_started_at_s is None or self._session.status not in (
            SessionStatus.WARMUP,
            SessionStatus.PLAYING,
        ):
            return False
        return self._clock.now() - self._trial_started_at_s < self._cfg.stimulus_duration_s

    def press_position(self) -> bool:
        return self._press(Modality.POSITION)

    def press_audio(self) -> bool:
        return self._press(Modality.AUDIO)

    def toggle_pause(self) -> SessionStatus:
        status = self._session.status
        if status in (SessionStatus.WARMUP, SessionStatus.PLAYING):
            self._session.pause_session()
            self.save_progress()
        elif status is SessionStatus.PAUSED:
            self._session.resume_session()
            # A resumed trial re-issues its stimulus.
            self._present()
        return self._session.status

    def save_progress(self) -> None:
        """Store a recovery snapshot for the live session, if any."""

        if self._store is None:
            return
        record = self._session.interrupted_session()
        if record is not None:
            self._store.save_interrupted_snapshot(record)

    def abort(self) -> None:
        self._session.reset_session()
        self._trial_started_at_s = None
        if self._store is not None:
            self._store.clear_interrupted_snapshot()

    def resume_interrupted(self) -> bool:
        if self._store is None:
            return False
        record = self._store.load_interrupted_snapshot()
        if record is None:
            return False

        self._session.restore_interrupted(record)
        if self._session.current_trial is None:
            self._finish()
            return True
        self._session.resume_session()
        self._present()
        return True

    def snapshot(self) -> NBackPayload:
        session = self._session
        trial = session.current_trial
        active = trial is not None and session.status not in (SessionStatus.IDLE, SessionStatus.FINISHED)
        response = None if trial is None else session.response_for(trial.index)
        visible = active and self.stimulus_visible()

        return NBackPayload(
            status=session.status,
            n_level=session.n_level,
            trial_number=(session.current_trial_index + 1) if active else 0,
            total_trials=len(session.sequence),
            is_warmup=session.is_warmup,
            position=trial.position if visible and trial is not None else None,
            letter=trial.letter if visible and trial is not None else None,
            progress=session.progress,
            position_pressed=bool(response and response.position_pressed),
            audio_pressed=bool(response and response.audio_pressed),
            adaptive_mode=session.adaptive_mode,
            record=session.last_record,
            level_change=session.last_level_change,
        )

    def _present(self) -> None:
        trial = self._session.current_trial
        if trial is None or not self._session.set_stimulus():
            return
        self._trial_started_at_s = self._clock.now()
        if self._on_stimulus is not None:
            self._on_stimulus(trial)

    def _press(self, modality: Modality) -> bool:
        if self._session.status is not SessionStatus.PLAYING:
            return False

        now = self._clock.now()
        if now - self._last_press_at_s[modality] < self._cfg.debounce_s:
            return False
        self._last_press_at_s[modality] = now

        onset = self._session.stimulus_onset
        if onset is None:
            return False
        elapsed_s = now - onset
        min_s = self._session.config.min_reaction_time_ms / 1000.0
        if elapsed_s < min_s or elapsed_s > self._cfg.response_window_s:
            logger.debug("%s press outside response window (%.3fs)", modality.value, elapsed_s)
            return False

        return self._session.record_response(
            modality is Modality.POSITION,
            modality is Modality.AUDIO,
        )

    def _finish(self) -> None:
        self._trial_started_at_s = None
        record = self._session.finish_session()
        if record is None or self._store is None:
            return
        self._store.save_session(record)
        self._store.save_settings(self._session.settings_update())
        self._store.clear_interrupted_snapshot()
