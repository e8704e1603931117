from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Sequence

from .cognitive_core import Modality, Outcome, Trial, TrialResponse, round_half_up
from .config import NBackConfig
from .results import SessionRecord


def classify_outcome(is_match: bool, responded: bool) -> Outcome:
    if is_match:
        return Outcome.HIT if responded else Outcome.MISS
    return Outcome.FALSE_ALARM if responded else Outcome.CORRECT_REJECTION


def calculate_accuracy(hits: int, misses: int, false_alarms: int, correct_rejections: int) -> int:
    """Percent of correct judgements, (hits + correct rejections) / total; 0 when empty."""

    total = hits + misses + false_alarms + correct_rejections
    if total == 0:
        return 0
    return round_half_up(100.0 * (hits + correct_rejections) / total)


def average_reaction_time(reaction_times_ms: Iterable[float | None], *, min_valid_ms: float) -> int:
    valid = [float(rt) for rt in reaction_times_ms if rt is not None and rt >= min_valid_ms]
    if not valid:
        return 0
    return round_half_up(sum(valid) / len(valid))


def aggregate(
    trials: Sequence[Trial],
    responses: Sequence[TrialResponse],
    *,
    session_id: str,
    n_level: int,
    started_at: float,
    adaptive_enabled: bool,
    completed: bool = True,
    config: NBackConfig | None = None,
) -> SessionRecord:
    """Summarise a session; warmup trials and their responses are never counted."""

    cfg = config or NBackConfig()
    scored_indices = {t.index for t in trials if not t.is_warmup}
    scored_responses = [r for r in responses if r.trial_index in scored_indices]

    position = Counter(r.position_outcome for r in scored_responses if r.position_outcome is not None)
    audio = Counter(r.audio_outcome for r in scored_responses if r.audio_outcome is not None)

    position_accuracy = _modality_accuracy(position)
    audio_accuracy = _modality_accuracy(audio)
    combined_accuracy = round_half_up((position_accuracy + audio_accuracy) / 2.0)

    rts: list[float | None] = [r.position_rt_ms for r in scored_responses]
    rts.extend(r.audio_rt_ms for r in scored_responses)

    return SessionRecord(
        id=str(session_id),
        timestamp=float(started_at),
        n_level=int(n_level),
        total_trials=len(trials),
        scored_trials=len(scored_indices),
        position_hits=position[Outcome.HIT],
        position_misses=position[Outcome.MISS],
        position_false_alarms=position[Outcome.FALSE_ALARM],
        position_correct_rejections=position[Outcome.CORRECT_REJECTION],
        position_accuracy=position_accuracy,
        audio_hits=audio[Outcome.HIT],
        audio_misses=audio[Outcome.MISS],
        audio_false_alarms=audio[Outcome.FALSE_ALARM],
        audio_correct_rejections=audio[Outcome.CORRECT_REJECTION],
        audio_accuracy=audio_accuracy,
        combined_accuracy=combined_accuracy,
        avg_reaction_time_ms=average_reaction_time(rts, min_valid_ms=cfg.min_reaction_time_ms),
        adaptive_enabled=bool(adaptive_enabled),
        completed=bool(completed),
    )


def next_level(
    current_level: int,
    position_accuracy: int,
    audio_accuracy: int,
    combined_accuracy: int,
    *,
    config: NBackConfig | None = None,
) -> int:
    """Adaptive N for the next session: up one, down one, or unchanged."""

    cfg = config or NBackConfig()
    if (
        combined_accuracy >= cfg.level_up_combined
        and position_accuracy >= cfg.level_up_min_individual
        and audio_accuracy >= cfg.level_up_min_individual
    ):
        return min(current_level + 1, cfg.max_level)

    if (
        combined_accuracy < cfg.level_down_combined
        or position_accuracy < cfg.level_down_min_individual
        or audio_accuracy < cfg.level_down_min_individual
    ):
        return max(current_level - 1, cfg.min_level)

    return current_level


def finalize_response(trial: Trial, response: TrialResponse) -> None:
    """Set both modality outcomes of ``response`` from the trial's ground truth."""

    response.position_outcome = classify_outcome(
        trial.is_match(Modality.POSITION), response.pressed(Modality.POSITION)
    )
    response.audio_outcome = classify_outcome(trial.is_match(Modality.AUDIO), response.pressed(Modality.AUDIO))


def _modality_accuracy(counts: Counter[Outcome]) -> int:
    return calculate_accuracy(
        counts[Outcome.HIT],
        counts[Outcome.MISS],
        counts[Outcome.FALSE_ALARM],
        counts[Outcome.CORRECT_REJECTION],
    )
