"""
Anti-Spoof Scorer: combines session history into a single liveness score
"""
import logging
from typing import Iterable, Optional, Sequence

import numpy as np

from ..config import ScoringThresholds, ScoringWeights
from ..models.data_models import Metrics, ScoringResult

logger = logging.getLogger(__name__)


class ScoringEngine:
    """
    Computes a weighted anti-spoof score in [0, 1].

    The score is a pure function of its inputs: calling it twice on the same
    history yields the same result.
    """

    def __init__(
        self,
        weights: Optional[ScoringWeights] = None,
        thresholds: Optional[ScoringThresholds] = None
    ):
        self.weights = weights or ScoringWeights()
        self.thresholds = thresholds or ScoringThresholds()

    def movement_score(self, history: Sequence[Metrics]) -> float:
        """
        Score inter-frame movement.

        Static photos barely move; replayed or glitching video jumps. Full
        credit inside the band, partial credit for any other non-zero mean.
        Frames with no previous frame to compare against are left out.
        """
        t = self.thresholds
        movements = [m.frame_movement for m in history if m.has_movement_reference]
        if len(movements) < t.min_movement_samples:
            return 0.0
        avg_movement = float(np.mean(movements))
        if t.min_movement <= avg_movement <= t.max_movement:
            return 1.0
        if avg_movement > 0:
            return t.movement_partial_credit
        return 0.0

    def depth_score(self, history: Sequence[Metrics]) -> float:
        """Score mean z-variance; flat images carry almost none"""
        t = self.thresholds
        if len(history) < t.min_depth_samples:
            return 0.0
        avg_depth = float(np.mean([m.depth_variance for m in history]))
        if avg_depth > t.min_depth_variance:
            return 1.0
        if avg_depth > 0:
            return t.depth_partial_credit
        return 0.0

    def variance_score(self, history: Sequence[Metrics]) -> float:
        """Score natural micro-fluctuation of eye openness; a pinned value scores zero"""
        if len(history) < 2:
            return 0.0
        variance = float(np.var([m.eye_openness for m in history]))
        return float(np.clip(variance / self.thresholds.min_metric_variance, 0.0, 1.0))

    def challenge_score(self, completed: Iterable[str], assigned: Iterable[str]) -> float:
        """Fraction of assigned challenges that were completed"""
        assigned_ids = set(assigned)
        if not assigned_ids:
            return 0.0
        return len(assigned_ids & set(completed)) / len(assigned_ids)

    def compute_score(
        self,
        history: Sequence[Metrics],
        completed: Iterable[str],
        assigned: Iterable[str]
    ) -> ScoringResult:
        """
        Combine all sub-scores using the configured weights.

        Args:
            history: Rolling window of metrics for the session
            completed: Ids of completed challenges
            assigned: Ids of all challenges assigned to the session

        Returns:
            ScoringResult: Final score in [0, 1] with each component
        """
        history = list(history)
        movement = self.movement_score(history)
        depth = self.depth_score(history)
        variance = self.variance_score(history)
        challenges = self.challenge_score(completed, assigned)

        w = self.weights
        final_score = (
            w.movement * movement +
            w.depth * depth +
            w.variance * variance +
            w.challenges * challenges
        )
        final_score = float(np.clip(final_score, 0.0, 1.0))

        logger.debug(
            f"Anti-spoof score {final_score:.3f} (movement={movement:.2f}, depth={depth:.2f}, "
            f"variance={variance:.2f}, challenges={challenges:.2f}, frames={len(history)})"
        )

        return ScoringResult(
            final_score=final_score,
            movement_score=movement,
            depth_score=depth,
            variance_score=variance,
            challenge_score=challenges,
        )


def passes_acceptance(score: float, all_completed: bool, min_score: float) -> bool:
    """Acceptance rule: the score clears the minimum and every challenge was completed"""
    return all_completed and score >= min_score
