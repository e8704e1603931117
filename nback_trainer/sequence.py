"""Trial sequence generation for a dual N-back session.

A sequence is ``base_trials + N`` trials. The first N are warmup trials and can
never match. Matches are injected separately per modality toward a target count;
the audio pass may overwrite a position match created by the position pass (and
vice versa), so the targets are soft. Match flags are always recomputed from the
final cue values at the end.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .cognitive_core import InvalidLevel, SeededRng, Trial, round_half_up
from .config import NBackConfig

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _TrialDraft:
    index: int
    position: int
    letter: str
    is_warmup: bool


@dataclass(frozen=True, slots=True)
class SequenceStats:
    total_trials: int
    scored_trials: int
    position_matches: int
    audio_matches: int
    dual_matches: int


def target_match_count(scored_count: int, *, rate: float, floor: int) -> int:
    return max(int(floor), round_half_up(scored_count * rate))


class SequenceGenerator:
    """Builds trial sequences from an injected randomness source."""

    def __init__(self, *, rng: SeededRng, config: NBackConfig | None = None) -> None:
        self._rng = rng
        self._cfg = config or NBackConfig()
        # (position, audio) matches injected by the most recent generate() call.
        self.last_injected: tuple[int, int] = (0, 0)

    def generate(self, n_level: int) -> list[Trial]:
        n = int(n_level)
        if n < 1:
            raise InvalidLevel(f"n_level must be >= 1, got {n_level}")

        cfg = self._cfg
        total = cfg.trials_per_session(n)
        drafts = [
            _TrialDraft(
                index=i,
                position=self._rng.randrange(cfg.grid_size),
                letter=self._rng.choice(cfg.letters),
                is_warmup=i < n,
            )
            for i in range(total)
        ]

        scored_count = total - n
        position_target = target_match_count(
            scored_count, rate=cfg.position_match_rate, floor=cfg.min_position_matches
        )
        audio_target = target_match_count(
            scored_count, rate=cfg.audio_match_rate, floor=cfg.min_audio_matches
        )
        scored_indices = [d.index for d in drafts if not d.is_warmup]

        injected_position = self._inject_positions(drafts, scored_indices, n=n, target=position_target)
        injected_audio = self._inject_letters(drafts, scored_indices, n=n, target=audio_target)
        self.last_injected = (injected_position, injected_audio)

        trials = [
            Trial(
                index=d.index,
                position=d.position,
                letter=d.letter,
                is_warmup=d.is_warmup,
                position_match=(not d.is_warmup) and d.position == drafts[d.index - n].position,
                audio_match=(not d.is_warmup) and d.letter == drafts[d.index - n].letter,
            )
            for d in drafts
        ]

        if logger.isEnabledFor(logging.DEBUG):
            stats = sequence_stats(trials)
            logger.debug(
                "generated n=%d trials=%d injected=(%d, %d) actual=(%d, %d)",
                n,
                total,
                injected_position,
                injected_audio,
                stats.position_matches,
                stats.audio_matches,
            )
        return trials

    def _inject_positions(self, drafts: list[_TrialDraft], indices: list[int], *, n: int, target: int) -> int:
        order = list(indices)
        self._rng.shuffle(order)
        count = 0
        for idx in order:
            if count >= target:
                break
            drafts[idx].position = drafts[idx - n].position
            count += 1
        return count

    def _inject_letters(self, drafts: list[_TrialDraft], indices: list[int], *, n: int, target: int) -> int:
        order = list(indices)
        self._rng.shuffle(order)
        count = 0
        for idx in order:
            if count >= target:
                break
            drafts[idx].letter = drafts[idx - n].letter
            count += 1
        return count


def generate_sequence(
    n_level: int,
    *,
    rng: SeededRng,
    config: NBackConfig | None = None,
) -> list[Trial]:
    return SequenceGenerator(rng=rng, config=config).generate(n_level)


def sequence_stats(trials: list[Trial]) -> SequenceStats:
    scored = [t for t in trials if not t.is_warmup]
    return SequenceStats(
        total_trials=len(trials),
        scored_trials=len(scored),
        position_matches=sum(1 for t in scored if t.position_match),
        audio_matches=sum(1 for t in scored if t.audio_match),
        dual_matches=sum(1 for t in scored if t.position_match and t.audio_match),
    )
