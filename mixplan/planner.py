"""Greedy set ordering over pairwise similarity."""

from typing import Dict, List, Optional, Sequence, Tuple

from .config import DEFAULT_CONFIG, AnalysisConfig
from .logging_config import get_logger
from .models import SetPlan, SimilarityResult, Track, Transition
from .scoring import SimilarityScorer

logger = get_logger(__name__)

SET_MODES = ("warm_up", "peak_time", "open_format")


def _energy(track: Track) -> int:
    return track.analysis.energy_global if track.analysis is not None else 0


class SetPlanner:
    """Orders tracks into a set for a given mode."""

    def __init__(
        self, scorer: SimilarityScorer = None, library=None, config: AnalysisConfig = None
    ):
        """Initialize planner.

        Args:
            scorer: Pairwise scorer. Built from ``library`` and ``config`` if
                not provided.
            library: Optional TrackLibrary supplying embeddings.
            config: Planner configuration. Uses DEFAULT_CONFIG if not provided.
        """
        self.config = config or DEFAULT_CONFIG
        self.scorer = scorer or SimilarityScorer(self.config, library)

    def optimize_set(
        self,
        tracks: Sequence[Track],
        mode: str,
        start_track: Optional[Track] = None,
        end_track: Optional[Track] = None,
    ) -> SetPlan:
        """Order ``tracks`` into a set.

        Args:
            tracks: Tracks to plan. Every one appears exactly once in the plan.
            mode: One of SET_MODES.
            start_track: Track fixed in first position.
            end_track: Track fixed in last position.

        Returns:
            SetPlan with n-1 transitions for n tracks.

        Raises:
            ValueError: On an unknown mode, duplicate track ids, or start/end
                tracks that are not among ``tracks``.
        """
        if mode not in SET_MODES:
            raise ValueError(f"Unknown set mode: {mode}")

        ids = [t.id for t in tracks]
        if len(set(ids)) != len(ids):
            raise ValueError("Duplicate track ids in set")
        for label, fixed in (("Start", start_track), ("End", end_track)):
            if fixed is not None and fixed.id not in ids:
                raise ValueError(f"{label} track {fixed.id} is not in the set")
        if (
            start_track is not None
            and end_track is not None
            and start_track.id == end_track.id
            and len(tracks) > 1
        ):
            raise ValueError("Start and end track must differ")

        if len(tracks) < 2:
            return self._build_plan(list(tracks), {}, mode)

        pairs = self._score_pairs(tracks)
        order = self._greedy_order(list(tracks), pairs, mode, start_track, end_track)
        plan = self._build_plan(order, pairs, mode)
        logger.info(
            "Planned %s set of %d tracks, average transition %.3f",
            mode,
            len(order),
            plan.average_score,
        )
        return plan

    def _score_pairs(self, tracks: Sequence[Track]) -> Dict[Tuple[int, int], SimilarityResult]:
        embeddings = {t.id: self.scorer.embedding_for(t) for t in tracks}
        pairs = {}
        for a in tracks:
            for b in tracks:
                if a.id != b.id:
                    pairs[(a.id, b.id)] = self.scorer.score(a, b, embeddings[a.id], embeddings[b.id])
        return pairs

    def _first_track(self, tracks: List[Track], mode: str) -> Track:
        if mode == "warm_up":
            return min(tracks, key=_energy)
        if mode == "peak_time":
            by_energy = sorted(tracks, key=_energy, reverse=True)
            return by_energy[len(tracks) // 3]
        return tracks[0]

    def _step_rank(self, current: Track, candidate: Track, combined: float, mode: str):
        """Sort key for a candidate next track; the greatest key wins."""
        cfg = self.config
        delta = _energy(candidate) - _energy(current)

        if mode == "warm_up":
            if 0 <= delta <= cfg.warm_up_max_step:
                group, bonus = 2, 1.0
            elif delta > cfg.warm_up_max_step:
                group, bonus = 1, 0.5
            else:
                group, bonus = 0, 0.3 if delta >= -1 else 0.0
            return group, combined + cfg.energy_flow_weight * bonus

        if mode == "open_format":
            bonus = 1.0 if abs(delta) <= cfg.warm_up_max_step else 0.5
            return 0, combined + cfg.energy_flow_weight * bonus

        return 0, combined

    def _greedy_order(
        self,
        tracks: List[Track],
        pairs: Dict[Tuple[int, int], SimilarityResult],
        mode: str,
        start_track: Optional[Track],
        end_track: Optional[Track],
    ) -> List[Track]:
        by_id = {t.id: t for t in tracks}
        end_id = end_track.id if end_track is not None else None

        if start_track is not None:
            first = by_id[start_track.id]
        else:
            # The end track never opens the set
            openers = [t for t in tracks if t.id != end_id]
            first = self._first_track(openers, mode)

        order = [first]
        remaining = [t for t in tracks if t.id != first.id and t.id != end_id]

        while remaining:
            current = order[-1]
            best = None
            best_rank = None
            for candidate in remaining:
                combined = pairs[(current.id, candidate.id)].combined_score
                rank = self._step_rank(current, candidate, combined, mode)
                if best_rank is None or rank > best_rank:
                    best, best_rank = candidate, rank
            logger.debug("Next after %s: %s", current.id, best.id)
            order.append(best)
            remaining.remove(best)

        if end_id is not None:
            order.append(by_id[end_id])
        return order

    def _build_plan(
        self, order: List[Track], pairs: Dict[Tuple[int, int], SimilarityResult], mode: str
    ) -> SetPlan:
        transitions = []
        for prev, nxt in zip(order, order[1:]):
            result = pairs[(prev.id, nxt.id)]
            if prev.analysis is not None and nxt.analysis is not None:
                bpm_delta = nxt.analysis.bpm - prev.analysis.bpm
                energy_delta = nxt.analysis.energy_global - prev.analysis.energy_global
            else:
                bpm_delta, energy_delta = 0.0, 0
            transitions.append(
                Transition(
                    from_track=prev,
                    to_track=nxt,
                    score=result.combined_score,
                    explanation=result.explanation,
                    bpm_delta=bpm_delta,
                    key_relation=result.key_relation,
                    energy_delta=energy_delta,
                )
            )

        total = sum(t.score for t in transitions)
        return SetPlan(
            tracks=order,
            transitions=transitions,
            total_score=total,
            average_score=total / len(transitions) if transitions else 0.0,
            energy_flow=[t.analysis.energy_global for t in order if t.analysis is not None],
            mode=mode,
        )
