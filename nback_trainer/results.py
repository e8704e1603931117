from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Mapping


@dataclass(frozen=True, slots=True)
class SessionRecord:
    """Persistable summary of one completed session.

    Field names are the stored format; append new fields with defaults only so
    previously persisted records still load.
    """

    id: str
    timestamp: float  # epoch seconds the session started
    n_level: int
    total_trials: int
    scored_trials: int

    position_hits: int
    position_misses: int
    position_false_alarms: int
    position_correct_rejections: int
    position_accuracy: int

    audio_hits: int
    audio_misses: int
    audio_false_alarms: int
    audio_correct_rejections: int
    audio_accuracy: int

    combined_accuracy: int
    avg_reaction_time_ms: int
    adaptive_enabled: bool
    completed: bool

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SessionRecord":
        return cls(
            id=str(data["id"]),
            timestamp=float(data["timestamp"]),
            n_level=int(data["n_level"]),
            total_trials=int(data["total_trials"]),
            scored_trials=int(data["scored_trials"]),
            position_hits=int(data["position_hits"]),
            position_misses=int(data["position_misses"]),
            position_false_alarms=int(data["position_false_alarms"]),
            position_correct_rejections=int(data["position_correct_rejections"]),
            position_accuracy=int(data["position_accuracy"]),
            audio_hits=int(data["audio_hits"]),
            audio_misses=int(data["audio_misses"]),
            audio_false_alarms=int(data["audio_false_alarms"]),
            audio_correct_rejections=int(data["audio_correct_rejections"]),
            audio_accuracy=int(data["audio_accuracy"]),
            combined_accuracy=int(data["combined_accuracy"]),
            avg_reaction_time_ms=int(data["avg_reaction_time_ms"]),
            adaptive_enabled=bool(data["adaptive_enabled"]),
            completed=bool(data["completed"]),
        )
