from __future__ import annotations

import math
import random
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Mapping, MutableSequence, Sequence, TypeVar

T = TypeVar("T")


class InvalidLevel(ValueError):
    """Raised when an N level is outside the supported range."""


class Outcome(StrEnum):
    """Signal-detection outcome for one modality of one trial."""

    HIT = "hit"
    MISS = "miss"
    FALSE_ALARM = "falseAlarm"
    CORRECT_REJECTION = "correctRejection"


class SessionStatus(StrEnum):
    IDLE = "idle"
    WARMUP = "warmup"
    PLAYING = "playing"
    PAUSED = "paused"
    FINISHED = "finished"


class Modality(StrEnum):
    POSITION = "position"
    AUDIO = "audio"


@dataclass(frozen=True, slots=True)
class Trial:
    index: int
    position: int  # grid slot, 0..grid_size-1
    letter: str
    is_warmup: bool
    position_match: bool
    audio_match: bool

    def is_match(self, modality: Modality) -> bool:
        return self.position_match if modality is Modality.POSITION else self.audio_match

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "position": self.position,
            "letter": self.letter,
            "is_warmup": self.is_warmup,
            "position_match": self.position_match,
            "audio_match": self.audio_match,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Trial":
        return cls(
            index=int(data["index"]),
            position=int(data["position"]),
            letter=str(data["letter"]),
            is_warmup=bool(data["is_warmup"]),
            position_match=bool(data["position_match"]),
            audio_match=bool(data["audio_match"]),
        )


@dataclass(slots=True)
class TrialResponse:
    """Response record for one trial index; mutable until the trial ends."""

    trial_index: int
    position_pressed: bool = False
    audio_pressed: bool = False
    position_rt_ms: float | None = None  # ms from stimulus onset, None if unpressed
    audio_rt_ms: float | None = None
    position_outcome: Outcome | None = None  # None until finalized; always None for warmup
    audio_outcome: Outcome | None = None

    def pressed(self, modality: Modality) -> bool:
        return self.position_pressed if modality is Modality.POSITION else self.audio_pressed

    def outcome(self, modality: Modality) -> Outcome | None:
        return self.position_outcome if modality is Modality.POSITION else self.audio_outcome

    def to_dict(self) -> dict[str, Any]:
        return {
            "trial_index": self.trial_index,
            "position_pressed": self.position_pressed,
            "audio_pressed": self.audio_pressed,
            "position_rt_ms": self.position_rt_ms,
            "audio_rt_ms": self.audio_rt_ms,
            "position_outcome": None if self.position_outcome is None else self.position_outcome.value,
            "audio_outcome": None if self.audio_outcome is None else self.audio_outcome.value,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TrialResponse":
        return cls(
            trial_index=int(data["trial_index"]),
            position_pressed=bool(data.get("position_pressed", False)),
            audio_pressed=bool(data.get("audio_pressed", False)),
            position_rt_ms=_opt_float(data.get("position_rt_ms")),
            audio_rt_ms=_opt_float(data.get("audio_rt_ms")),
            position_outcome=_opt_outcome(data.get("position_outcome")),
            audio_outcome=_opt_outcome(data.get("audio_outcome")),
        )


class SeededRng:
    """Simple seeded RNG wrapper to keep deterministic streams explicit.

    Pass ``seed=None`` for an OS-seeded stream.
    """

    def __init__(self, seed: int | None = None) -> None:
        self._rng = random.Random(None if seed is None else int(seed))

    def randint(self, a: int, b: int) -> int:
        return self._rng.randint(a, b)

    def randrange(self, stop: int) -> int:
        return self._rng.randrange(stop)

    def choice(self, seq: Sequence[T]) -> T:
        return self._rng.choice(seq)

    def shuffle(self, items: MutableSequence[Any]) -> None:
        self._rng.shuffle(items)

    def random(self) -> float:
        return self._rng.random()

    def getrandbits(self, k: int) -> int:
        return self._rng.getrandbits(k)


def clamp_int(x: int, lo: int, hi: int) -> int:
    return lo if x <= lo else hi if x >= hi else int(x)


def round_half_up(x: float) -> int:
    # Halves round toward +inf (2.5 -> 3), unlike Python's banker's rounding.
    return int(math.floor(x + 0.5))


def _opt_float(value: object) -> float | None:
    return None if value is None else float(value)  # type: ignore[arg-type]


def _opt_outcome(value: object) -> Outcome | None:
    return None if value is None else Outcome(str(value))
