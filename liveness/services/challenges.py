"""
Challenge variants with a uniform evaluate(metrics, baseline) interface
"""
from typing import Optional

from ..config import LivenessConfig
from ..models.data_models import Baseline, ChallengeKind, Metrics


def _blendshape_mean(metrics: Metrics, *names: str) -> Optional[float]:
    if not metrics.blendshapes:
        return None
    values = [metrics.blendshapes[name] for name in names if name in metrics.blendshapes]
    if not values:
        return None
    return sum(values) / len(values)


class Challenge:
    """
    One physical challenge in a session.

    ``evaluate`` is called once per valid frame and returns whether that
    frame counts toward the hold requirement.
    """

    kind: ChallengeKind
    prompt: str

    def __init__(self, required_hold_frames: int):
        self.required_hold_frames = required_hold_frames

    @property
    def challenge_id(self) -> str:
        return self.kind.value

    def evaluate(self, metrics: Metrics, baseline: Baseline) -> bool:
        raise NotImplementedError

    def reset(self) -> None:
        """Forget any intermediate phase, e.g. after the face was lost"""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(hold={self.required_hold_frames})"


class BlinkChallenge(Challenge):
    """
    Two-phase blink: eyes must close below the drop threshold, then reopen
    above the recovery threshold. Sustained squinting never reopens, so it
    never passes.
    """

    kind = ChallengeKind.BLINK
    prompt = "Blink your eyes"

    def __init__(
        self,
        required_hold_frames: int,
        drop_fraction: float,
        reopen_fraction: float,
        blendshape_threshold: float = 0.5
    ):
        super().__init__(required_hold_frames)
        self.drop_fraction = drop_fraction
        self.reopen_fraction = reopen_fraction
        self.blendshape_threshold = blendshape_threshold
        self.eyes_closed_seen = False

    def close_threshold(self, baseline: Baseline) -> float:
        return baseline.resting_eye_openness * self.drop_fraction

    def reopen_threshold(self, baseline: Baseline) -> float:
        return baseline.resting_eye_openness * self.reopen_fraction

    def evaluate(self, metrics: Metrics, baseline: Baseline) -> bool:
        openness = metrics.eye_openness
        blink_score = _blendshape_mean(metrics, "eyeBlinkLeft", "eyeBlinkRight")

        closed = openness < self.close_threshold(baseline)
        if blink_score is not None and blink_score >= self.blendshape_threshold:
            closed = True

        if closed:
            self.eyes_closed_seen = True
            return False
        return self.eyes_closed_seen and openness > self.reopen_threshold(baseline)

    def reset(self) -> None:
        self.eyes_closed_seen = False


class SmileChallenge(Challenge):
    """Mouth ratio must rise above the resting ratio by both margins"""

    kind = ChallengeKind.SMILE
    prompt = "Smile"

    def __init__(
        self,
        required_hold_frames: int,
        margin_fraction: float,
        min_delta: float,
        blendshape_threshold: float = 0.5
    ):
        super().__init__(required_hold_frames)
        self.margin_fraction = margin_fraction
        self.min_delta = min_delta
        self.blendshape_threshold = blendshape_threshold

    def threshold(self, baseline: Baseline) -> float:
        resting = baseline.resting_mouth_ratio
        return max(resting * (1.0 + self.margin_fraction), resting + self.min_delta)

    def evaluate(self, metrics: Metrics, baseline: Baseline) -> bool:
        smile_score = _blendshape_mean(metrics, "mouthSmileLeft", "mouthSmileRight")
        if smile_score is not None and smile_score >= self.blendshape_threshold:
            return True
        return metrics.mouth_ratio >= self.threshold(baseline)


class TurnChallenge(Challenge):
    """Head yaw must move past the threshold, relative to resting yaw, in one direction"""

    def __init__(self, required_hold_frames: int, kind: ChallengeKind, threshold_degrees: float):
        if kind not in (ChallengeKind.TURN_LEFT, ChallengeKind.TURN_RIGHT):
            raise ValueError(f"Not a turn challenge: {kind}")
        super().__init__(required_hold_frames)
        self.kind = kind
        self.threshold_degrees = threshold_degrees
        # Positive yaw is a turn toward the subject's own left
        self.direction = 1.0 if kind == ChallengeKind.TURN_LEFT else -1.0

    @property
    def prompt(self) -> str:
        side = "left" if self.kind == ChallengeKind.TURN_LEFT else "right"
        return f"Turn your head to the {side}"

    def evaluate(self, metrics: Metrics, baseline: Baseline) -> bool:
        delta = (metrics.head_yaw - baseline.resting_yaw) * self.direction
        return delta >= self.threshold_degrees


def build_challenge(kind: ChallengeKind, settings: LivenessConfig) -> Challenge:
    """
    Create a fresh challenge of the given kind from the session configuration.

    Args:
        kind: Challenge kind to build
        settings: Session configuration holding thresholds and hold frames

    Returns:
        Challenge: A new challenge instance with no intermediate state
    """
    hold = settings.hold_frames_for(kind.value)
    if kind == ChallengeKind.BLINK:
        return BlinkChallenge(
            hold,
            drop_fraction=settings.blink_drop_fraction,
            reopen_fraction=settings.reopen_fraction,
            blendshape_threshold=settings.blendshape_blink_threshold,
        )
    if kind == ChallengeKind.SMILE:
        return SmileChallenge(
            hold,
            margin_fraction=settings.smile_margin_fraction,
            min_delta=settings.smile_min_delta,
            blendshape_threshold=settings.blendshape_smile_threshold,
        )
    return TurnChallenge(hold, kind, settings.turn_yaw_threshold_degrees)
