"""Progress statistics over stored session records (newest first)."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime

from .cognitive_core import round_half_up
from .results import SessionRecord

# Training time is estimated, not measured.
SECONDS_PER_TRIAL_ESTIMATE = 3.0


@dataclass(frozen=True, slots=True)
class LevelAccuracy:
    level: int
    avg_accuracy: int
    session_count: int


@dataclass(frozen=True, slots=True)
class TrendPoint:
    timestamp: float
    accuracy: int
    n_level: int


@dataclass(frozen=True, slots=True)
class TrainingStats:
    total_sessions: int
    completed_sessions: int
    average_accuracy: int
    average_reaction_time_ms: int
    best_n_level: int
    current_streak: int
    total_training_minutes: int
    accuracy_by_level: tuple[LevelAccuracy, ...]
    recent_sessions: tuple[SessionRecord, ...]
    accuracy_trend: tuple[TrendPoint, ...]


def average_accuracy(sessions: Sequence[SessionRecord]) -> int:
    completed = [s for s in sessions if s.completed]
    if not completed:
        return 0
    return round_half_up(sum(s.combined_accuracy for s in completed) / len(completed))


def average_reaction_time(sessions: Sequence[SessionRecord]) -> int:
    timed = [s for s in sessions if s.completed and s.avg_reaction_time_ms > 0]
    if not timed:
        return 0
    return round_half_up(sum(s.avg_reaction_time_ms for s in timed) / len(timed))


def best_n_level(sessions: Sequence[SessionRecord]) -> int:
    return max((s.n_level for s in sessions), default=0)


def current_streak(sessions: Sequence[SessionRecord], *, today: date) -> int:
    """Consecutive days, ending today, with at least one session."""

    streak = 0
    for s in sorted(sessions, key=lambda r: r.timestamp, reverse=True):
        days_back = (today - datetime.fromtimestamp(s.timestamp).date()).days
        if days_back == streak:
            streak += 1
        elif days_back > streak:
            break
    return streak


def total_training_minutes(sessions: Sequence[SessionRecord]) -> int:
    total_trials = sum(s.total_trials for s in sessions)
    return round_half_up(total_trials * SECONDS_PER_TRIAL_ESTIMATE / 60.0)


def accuracy_by_level(sessions: Sequence[SessionRecord]) -> tuple[LevelAccuracy, ...]:
    totals: dict[int, list[int]] = {}
    for s in sessions:
        if s.completed:
            totals.setdefault(s.n_level, []).append(s.combined_accuracy)
    return tuple(
        LevelAccuracy(
            level=level,
            avg_accuracy=round_half_up(sum(accs) / len(accs)),
            session_count=len(accs),
        )
        for level, accs in sorted(totals.items())
    )


def accuracy_trend(sessions: Sequence[SessionRecord], *, limit: int = 30) -> tuple[TrendPoint, ...]:
    """Most recent completed sessions in chronological order."""

    recent = [s for s in sessions if s.completed][:limit]
    return tuple(
        TrendPoint(timestamp=s.timestamp, accuracy=s.combined_accuracy, n_level=s.n_level)
        for s in reversed(recent)
    )


def summarize(sessions: Sequence[SessionRecord], *, today: date | None = None) -> TrainingStats:
    day = today or date.today()
    return TrainingStats(
        total_sessions=len(sessions),
        completed_sessions=sum(1 for s in sessions if s.completed),
        average_accuracy=average_accuracy(sessions),
        average_reaction_time_ms=average_reaction_time(sessions),
        best_n_level=best_n_level(sessions),
        current_streak=current_streak(sessions, today=day),
        total_training_minutes=total_training_minutes(sessions),
        accuracy_by_level=accuracy_by_level(sessions),
        recent_sessions=tuple(sessions[:10]),
        accuracy_trend=accuracy_trend(sessions),
    )
