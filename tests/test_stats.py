from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timedelta

from nback_trainer.results import SessionRecord
from nback_trainer.stats import (
    accuracy_by_level,
    accuracy_trend,
    current_streak,
    summarize,
)

TODAY = date(2026, 3, 14)


def _at(days_ago: int, hour: int = 12) -> float:
    day = TODAY - timedelta(days=days_ago)
    return datetime(day.year, day.month, day.day, hour).timestamp()


def _record(idx: int, *, days_ago: int = 0, **overrides: object) -> SessionRecord:
    base = SessionRecord(
        id=f"s{idx}",
        timestamp=_at(days_ago),
        n_level=2,
        total_trials=22,
        scored_trials=20,
        position_hits=5,
        position_misses=0,
        position_false_alarms=0,
        position_correct_rejections=15,
        position_accuracy=100,
        audio_hits=5,
        audio_misses=0,
        audio_false_alarms=0,
        audio_correct_rejections=15,
        audio_accuracy=100,
        combined_accuracy=80,
        avg_reaction_time_ms=500,
        adaptive_enabled=True,
        completed=True,
    )
    return replace(base, **overrides)  # type: ignore[arg-type]


def test_empty_history() -> None:
    s = summarize([], today=TODAY)
    assert s.total_sessions == 0
    assert s.average_accuracy == 0
    assert s.average_reaction_time_ms == 0
    assert s.best_n_level == 0
    assert s.current_streak == 0
    assert s.total_training_minutes == 0
    assert s.accuracy_by_level == ()


def test_averages_use_completed_sessions_only() -> None:
    sessions = [
        _record(3, combined_accuracy=71, avg_reaction_time_ms=400),
        _record(2, combined_accuracy=80, avg_reaction_time_ms=0),
        _record(1, combined_accuracy=10, avg_reaction_time_ms=900, completed=False),
    ]
    s = summarize(sessions, today=TODAY)
    assert s.total_sessions == 3
    assert s.completed_sessions == 2
    assert s.average_accuracy == 76  # 75.5 rounds up
    assert s.average_reaction_time_ms == 400
    assert s.total_training_minutes == 3  # 66 trials * 3 s


def test_streak_counts_consecutive_days_ending_today() -> None:
    sessions = [_record(1, days_ago=0), _record(2, days_ago=0), _record(3, days_ago=1), _record(4, days_ago=3)]
    assert current_streak(sessions, today=TODAY) == 2
    assert current_streak([_record(1, days_ago=1)], today=TODAY) == 0


def test_accuracy_by_level_sorted_ascending() -> None:
    sessions = [
        _record(1, n_level=3, combined_accuracy=60),
        _record(2, n_level=1, combined_accuracy=90),
        _record(3, n_level=3, combined_accuracy=71),
    ]
    rows = accuracy_by_level(sessions)
    assert [(r.level, r.avg_accuracy, r.session_count) for r in rows] == [(1, 90, 1), (3, 66, 2)]


def test_trend_is_chronological_and_limited() -> None:
    sessions = [_record(i, combined_accuracy=i) for i in range(40, 0, -1)]  # newest first
    trend = accuracy_trend(sessions, limit=30)
    assert len(trend) == 30
    assert [p.accuracy for p in trend] == list(range(11, 41))


def test_best_level_and_recent_sessions() -> None:
    sessions = [_record(i, n_level=1 + i % 5) for i in range(12)]
    s = summarize(sessions, today=TODAY)
    assert s.best_n_level == 5
    assert len(s.recent_sessions) == 10
    assert s.recent_sessions[0].id == "s0"
