from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any, Mapping

AUDIO_LETTERS: tuple[str, ...] = ("C", "H", "K", "L", "Q", "R", "S", "T")


@dataclass(frozen=True, slots=True)
class NBackConfig:
    # N-back range
    min_level: int = 1
    max_level: int = 6

    # Trials per session = base_trials + N
    base_trials: int = 20
    grid_size: int = 9
    letters: tuple[str, ...] = AUDIO_LETTERS

    # Sequence generation
    position_match_rate: float = 0.25
    audio_match_rate: float = 0.25
    min_position_matches: int = 4
    min_audio_matches: int = 4

    # Adaptive difficulty thresholds (percent)
    level_up_combined: int = 80
    level_up_min_individual: int = 75
    level_down_combined: int = 50
    level_down_min_individual: int = 40

    # Below this is anticipation, not a response.
    min_reaction_time_ms: float = 100.0

    # Session recovery / storage limits
    recovery_window_s: float = 5.0 * 60.0
    max_sessions_stored: int = 365
    max_storage_bytes: int = 4 * 1024 * 1024
    target_storage_bytes: int = int(3.5 * 1024 * 1024)
    min_sessions_kept: int = 10

    def __post_init__(self) -> None:
        if self.min_level < 1:
            raise ValueError("min_level must be >= 1")
        if self.max_level < self.min_level:
            raise ValueError("max_level must be >= min_level")
        if self.base_trials < 1:
            raise ValueError("base_trials must be >= 1")
        if self.grid_size < 2:
            raise ValueError("grid_size must be >= 2")
        if len(self.letters) < 2:
            raise ValueError("letters must hold at least two symbols")
        for name in ("position_match_rate", "audio_match_rate"):
            rate = getattr(self, name)
            if not (0.0 <= rate <= 1.0):
                raise ValueError(f"{name} must be in [0.0, 1.0]")
        if self.min_position_matches < 0 or self.min_audio_matches < 0:
            raise ValueError("match floors must be >= 0")
        for name in (
            "level_up_combined",
            "level_up_min_individual",
            "level_down_combined",
            "level_down_min_individual",
        ):
            value = getattr(self, name)
            if not (0 <= value <= 100):
                raise ValueError(f"{name} must be in [0, 100]")
        if self.min_reaction_time_ms < 0:
            raise ValueError("min_reaction_time_ms must be >= 0")
        if self.recovery_window_s <= 0:
            raise ValueError("recovery_window_s must be > 0")
        if self.max_sessions_stored < 1:
            raise ValueError("max_sessions_stored must be >= 1")
        if self.target_storage_bytes > self.max_storage_bytes:
            raise ValueError("target_storage_bytes must be <= max_storage_bytes")

    def trials_per_session(self, n_level: int) -> int:
        return self.base_trials + int(n_level)

    def clamp_level(self, level: int) -> int:
        return max(self.min_level, min(self.max_level, int(level)))

    def is_valid_level(self, level: int) -> bool:
        return self.min_level <= int(level) <= self.max_level


@dataclass(frozen=True, slots=True)
class Settings:
    """User settings persisted between sessions."""

    default_n_level: int = 2
    adaptive_mode: bool = True
    adaptive_n_level: int = 2
    sound_effects_enabled: bool = True
    reminder_enabled: bool = False
    reminder_time: str = "09:00"  # HH:MM
    reminder_days: tuple[int, ...] = (1, 2, 3, 4, 5)  # 0-6, Sunday = 0
    has_completed_onboarding: bool = False

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["reminder_days"] = list(self.reminder_days)
        return data

    def merged(self, partial: Mapping[str, Any]) -> "Settings":
        """Return a copy with known keys from ``partial`` applied; unknown keys are ignored."""

        known = {f.name for f in fields(self)}
        data = self.to_dict()
        for key, value in partial.items():
            if key in known:
                data[key] = value
        return Settings.from_dict(data)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Settings":
        base = cls()
        return cls(
            default_n_level=int(data.get("default_n_level", base.default_n_level)),
            adaptive_mode=bool(data.get("adaptive_mode", base.adaptive_mode)),
            adaptive_n_level=int(data.get("adaptive_n_level", base.adaptive_n_level)),
            sound_effects_enabled=bool(data.get("sound_effects_enabled", base.sound_effects_enabled)),
            reminder_enabled=bool(data.get("reminder_enabled", base.reminder_enabled)),
            reminder_time=str(data.get("reminder_time", base.reminder_time)),
            reminder_days=tuple(int(d) for d in data.get("reminder_days", base.reminder_days)),
            has_completed_onboarding=bool(
                data.get("has_completed_onboarding", base.has_completed_onboarding)
            ),
        )
