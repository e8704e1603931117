"""Live dual N-back session: idle -> warmup -> playing <-> paused -> finished.

The session is driven by an external event source (timer ticks, key presses).
Calls that have no effect in the current state are ignored and return ``False``
or ``None``; the only raised error is ``InvalidLevel`` from ``start_session``.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from typing import Any, Mapping

from .clock import Clock, WallClock
from .cognitive_core import InvalidLevel, SeededRng, SessionStatus, Trial, TrialResponse, round_half_up
from .config import NBackConfig, Settings
from .results import SessionRecord
from .scoring import aggregate, finalize_response, next_level
from .sequence import SequenceGenerator

logger = logging.getLogger(__name__)

__all__ = [
    "InterruptedSession",
    "InvalidLevel",
    "NBackSession",
    "SessionState",
]


@dataclass(frozen=True, slots=True)
class SessionState:
    """Serializable snapshot of a live session."""

    status: SessionStatus
    n_level: int
    current_trial_index: int
    sequence: tuple[Trial, ...]
    responses: tuple[TrialResponse, ...]
    session_id: str
    started_at: float | None
    stimulus_onset: float | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "n_level": self.n_level,
            "current_trial_index": self.current_trial_index,
            "sequence": [t.to_dict() for t in self.sequence],
            "responses": [r.to_dict() for r in self.responses],
            "session_id": self.session_id,
            "started_at": self.started_at,
            "stimulus_onset": self.stimulus_onset,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SessionState":
        try:
            started_at = data.get("started_at")
            onset = data.get("stimulus_onset")
            return cls(
                status=SessionStatus(str(data["status"])),
                n_level=int(data["n_level"]),
                current_trial_index=int(data["current_trial_index"]),
                sequence=tuple(Trial.from_dict(t) for t in data["sequence"]),
                responses=tuple(TrialResponse.from_dict(r) for r in data["responses"]),
                session_id=str(data["session_id"]),
                started_at=None if started_at is None else float(started_at),
                stimulus_onset=None if onset is None else float(onset),
            )
        except (KeyError, TypeError) as exc:
            raise ValueError(f"malformed session state: {exc}") from exc


@dataclass(frozen=True, slots=True)
class InterruptedSession:
    """Recovery record for a session left unfinished."""

    session_id: str
    n_level: int
    current_trial_index: int
    sequence: tuple[Trial, ...]
    responses: tuple[TrialResponse, ...]
    started_at: float
    interrupted_at: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "n_level": self.n_level,
            "current_trial_index": self.current_trial_index,
            "sequence": [t.to_dict() for t in self.sequence],
            "responses": [r.to_dict() for r in self.responses],
            "started_at": self.started_at,
            "interrupted_at": self.interrupted_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "InterruptedSession":
        try:
            return cls(
                session_id=str(data["session_id"]),
                n_level=int(data["n_level"]),
                current_trial_index=int(data["current_trial_index"]),
                sequence=tuple(Trial.from_dict(t) for t in data["sequence"]),
                responses=tuple(TrialResponse.from_dict(r) for r in data["responses"]),
                started_at=float(data["started_at"]),
                interrupted_at=float(data["interrupted_at"]),
            )
        except (KeyError, TypeError) as exc:
            raise ValueError(f"malformed interrupted session: {exc}") from exc


class NBackSession:
    """Owns one live session plus the adaptive level carried between sessions.

    - Deterministic: sequences come from the injected RNG.
    - Time is entirely via injected clocks (``clock`` for reaction times,
      ``wall_clock`` for timestamps).
    """

    def __init__(
        self,
        *,
        clock: Clock,
        wall_clock: Clock | None = None,
        rng: SeededRng | None = None,
        config: NBackConfig | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._clock = clock
        self._wall_clock = wall_clock or WallClock()
        self._rng = rng or SeededRng()
        self._cfg = config or NBackConfig()
        self._generator = SequenceGenerator(rng=self._rng, config=self._cfg)

        self._status = SessionStatus.IDLE
        self._n_level = self._cfg.min_level
        self._cursor = 0
        self._sequence: list[Trial] = []
        self._responses: list[TrialResponse] = []
        self._session_id = ""
        self._started_at: float | None = None
        self._stimulus_onset: float | None = None

        self._adaptive_mode = True
        self._adaptive_n_level = self._cfg.min_level
        self._sound_effects_enabled = True

        self._last_record: SessionRecord | None = None
        self._last_level_change: tuple[int, int] | None = None

        self.apply_settings(settings or Settings())

    # -- views -------------------------------------------------------------

    @property
    def config(self) -> NBackConfig:
        return self._cfg

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def n_level(self) -> int:
        return self._n_level

    @property
    def current_trial_index(self) -> int:
        return self._cursor

    @property
    def sequence(self) -> tuple[Trial, ...]:
        return tuple(self._sequence)

    @property
    def responses(self) -> tuple[TrialResponse, ...]:
        return tuple(replace(r) for r in self._responses)

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def started_at(self) -> float | None:
        return self._started_at

    @property
    def stimulus_onset(self) -> float | None:
        return self._stimulus_onset

    @property
    def adaptive_mode(self) -> bool:
        return self._adaptive_mode

    @property
    def adaptive_n_level(self) -> int:
        return self._adaptive_n_level

    @property
    def sound_effects_enabled(self) -> bool:
        return self._sound_effects_enabled

    @property
    def last_record(self) -> SessionRecord | None:
        return self._last_record

    @property
    def last_level_change(self) -> tuple[int, int] | None:
        """(previous, next) adaptive level from the most recent finish, if adaptive."""
        return self._last_level_change

    @property
    def current_trial(self) -> Trial | None:
        if self._cursor >= len(self._sequence):
            return None
        return self._sequence[self._cursor]

    @property
    def is_warmup(self) -> bool:
        trial = self.current_trial
        return False if trial is None else trial.is_warmup

    @property
    def progress(self) -> int:
        if not self._sequence:
            return 0
        return round_half_up(100.0 * self._cursor / len(self._sequence))

    @property
    def trials_remaining(self) -> int:
        return len(self._sequence) - self._cursor

    def response_for(self, trial_index: int) -> TrialResponse | None:
        for response in self._responses:
            if response.trial_index == trial_index:
                return replace(response)
        return None

    # -- settings ----------------------------------------------------------

    def apply_settings(self, settings: Settings) -> None:
        self._n_level = self._cfg.clamp_level(settings.default_n_level)
        self._adaptive_mode = bool(settings.adaptive_mode)
        self._adaptive_n_level = self._cfg.clamp_level(settings.adaptive_n_level)
        self._sound_effects_enabled = bool(settings.sound_effects_enabled)

    def settings_update(self) -> dict[str, Any]:
        """Partial settings mapping reflecting this session's carried state."""

        return {
            "default_n_level": self._n_level,
            "adaptive_mode": self._adaptive_mode,
            "adaptive_n_level": self._adaptive_n_level,
            "sound_effects_enabled": self._sound_effects_enabled,
        }

    def set_n_level(self, level: int) -> None:
        self._n_level = self._cfg.clamp_level(level)

    def toggle_adaptive_mode(self) -> None:
        self._adaptive_mode = not self._adaptive_mode

    def toggle_sound_effects(self) -> None:
        self._sound_effects_enabled = not self._sound_effects_enabled

    # -- transitions -------------------------------------------------------

    def start_session(self, level: int | None = None) -> None:
        if level is None:
            level = self._adaptive_n_level if self._adaptive_mode else self._n_level
        if not self._cfg.is_valid_level(level):
            raise InvalidLevel(
                f"level {level} outside supported range {self._cfg.min_level}..{self._cfg.max_level}"
            )

        started_at = self._wall_clock.now()
        self._session_id = f"session_{int(started_at * 1000)}_{uuid.uuid4().hex[:9]}"
        self._n_level = int(level)
        self._sequence = self._generator.generate(self._n_level)
        self._responses = []
        self._cursor = 0
        self._started_at = started_at
        self._stimulus_onset = None
        self._last_record = None
        self._last_level_change = None
        self._status = SessionStatus.WARMUP
        logger.info("session %s started at n=%d", self._session_id, self._n_level)

    def set_stimulus(self) -> bool:
        trial = self.current_trial
        if trial is None or self._status in (SessionStatus.IDLE, SessionStatus.PAUSED, SessionStatus.FINISHED):
            logger.debug("set_stimulus ignored in status %s", self._status.value)
            return False
        self._stimulus_onset = self._clock.now()
        self._status = SessionStatus.WARMUP if trial.is_warmup else SessionStatus.PLAYING
        return True

    def record_response(self, position_pressed: bool, audio_pressed: bool) -> bool:
        """Upsert the current trial's response; the first press per key wins."""

        trial = self.current_trial
        if trial is None or trial.is_warmup:
            logger.debug("record_response ignored: no scored trial")
            return False
        if self._stimulus_onset is None:
            logger.debug("record_response ignored: stimulus not shown")
            return False
        if self._status is not SessionStatus.PLAYING:
            logger.debug("record_response ignored in status %s", self._status.value)
            return False

        reaction_ms = (self._clock.now() - self._stimulus_onset) * 1000.0
        response = self._find_response(trial.index)
        if response is None:
            self._responses.append(
                TrialResponse(
                    trial_index=trial.index,
                    position_pressed=bool(position_pressed),
                    audio_pressed=bool(audio_pressed),
                    position_rt_ms=reaction_ms if position_pressed else None,
                    audio_rt_ms=reaction_ms if audio_pressed else None,
                )
            )
            return True

        changed = False
        if position_pressed and not response.position_pressed:
            response.position_pressed = True
            response.position_rt_ms = reaction_ms
            changed = True
        if audio_pressed and not response.audio_pressed:
            response.audio_pressed = True
            response.audio_rt_ms = reaction_ms
            changed = True
        return changed

    def end_trial(self) -> bool:
        trial = self.current_trial
        if trial is None or self._status in (SessionStatus.IDLE, SessionStatus.FINISHED):
            logger.debug("end_trial ignored in status %s", self._status.value)
            return False

        if not trial.is_warmup:
            response = self._find_response(trial.index)
            if response is None:
                response = TrialResponse(trial_index=trial.index)
                self._responses.append(response)
            finalize_response(trial, response)

        self._cursor += 1
        self._stimulus_onset = None
        if self._cursor >= len(self._sequence):
            self._status = SessionStatus.FINISHED
        return True

    def finish_session(self) -> SessionRecord | None:
        if self._started_at is None:
            logger.debug("finish_session ignored: no session started")
            return None
        if self._status is SessionStatus.FINISHED and self._last_record is not None:
            return self._last_record

        self._status = SessionStatus.FINISHED
        record = aggregate(
            self._sequence,
            self._responses,
            session_id=self._session_id,
            n_level=self._n_level,
            started_at=self._started_at,
            adaptive_enabled=self._adaptive_mode,
            completed=self._cursor >= len(self._sequence),
            config=self._cfg,
        )
        self._last_record = record

        if self._adaptive_mode:
            previous = self._adaptive_n_level
            self._adaptive_n_level = next_level(
                self._n_level,
                record.position_accuracy,
                record.audio_accuracy,
                record.combined_accuracy,
                config=self._cfg,
            )
            self._last_level_change = (previous, self._adaptive_n_level)
            if self._adaptive_n_level != previous:
                logger.info("adaptive level %d -> %d", previous, self._adaptive_n_level)

        logger.info(
            "session %s finished: combined=%d position=%d audio=%d",
            record.id,
            record.combined_accuracy,
            record.position_accuracy,
            record.audio_accuracy,
        )
        return record

    def pause_session(self) -> bool:
        if self._status not in (SessionStatus.WARMUP, SessionStatus.PLAYING):
            return False
        self._status = SessionStatus.PAUSED
        return True

    def resume_session(self) -> bool:
        if self._status is not SessionStatus.PAUSED:
            return False
        self._status = SessionStatus.WARMUP if self.is_warmup else SessionStatus.PLAYING
        return True

    def reset_session(self) -> None:
        self._status = SessionStatus.IDLE
        self._sequence = []
        self._responses = []
        self._cursor = 0
        self._session_id = ""
        self._started_at = None
        self._stimulus_onset = None

    # -- recovery ----------------------------------------------------------

    def session_state(self) -> SessionState:
        return SessionState(
            status=self._status,
            n_level=self._n_level,
            current_trial_index=self._cursor,
            sequence=tuple(self._sequence),
            responses=tuple(replace(r) for r in self._responses),
            session_id=self._session_id,
            started_at=self._started_at,
            stimulus_onset=self._stimulus_onset,
        )

    def restore_session(self, state: SessionState) -> None:
        """Restore verbatim, except stimulus onset: a resumed trial re-issues its stimulus."""

        self._status = state.status
        self._n_level = int(state.n_level)
        self._cursor = int(state.current_trial_index)
        self._sequence = list(state.sequence)
        self._responses = [replace(r) for r in state.responses]
        self._session_id = state.session_id
        self._started_at = state.started_at
        self._stimulus_onset = None
        self._last_record = None
        self._last_level_change = None
        logger.info("session %s restored at trial %d", self._session_id, self._cursor)

    def interrupted_session(self, *, interrupted_at: float | None = None) -> InterruptedSession | None:
        if self._started_at is None or self._status in (SessionStatus.IDLE, SessionStatus.FINISHED):
            return None
        return InterruptedSession(
            session_id=self._session_id,
            n_level=self._n_level,
            current_trial_index=self._cursor,
            sequence=tuple(self._sequence),
            responses=tuple(replace(r) for r in self._responses),
            started_at=self._started_at,
            interrupted_at=self._wall_clock.now() if interrupted_at is None else float(interrupted_at),
        )

    def restore_interrupted(self, record: InterruptedSession) -> None:
        """Resume an interrupted session; it comes back paused."""

        self.restore_session(
            SessionState(
                status=SessionStatus.PAUSED,
                n_level=record.n_level,
                current_trial_index=record.current_trial_index,
                sequence=record.sequence,
                responses=record.responses,
                session_id=record.session_id,
                started_at=record.started_at,
                stimulus_onset=None,
            )
        )

    def _find_response(self, trial_index: int) -> TrialResponse | None:
        for response in self._responses:
            if response.trial_index == trial_index:
                return response
        return None
