"""
Configuration management for the liveness engine
"""
import os
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple
from dotenv import load_dotenv

load_dotenv()


def parse_hold_frames(raw: str) -> Dict[str, int]:
    """
    Parse a per-challenge hold-frame mapping.

    Args:
        raw: Comma separated ``kind:frames`` pairs, e.g. ``"blink:2,smile:5"``

    Returns:
        Dict[str, int]: Challenge kind value to required hold frames
    """
    hold_frames = {}
    for item in raw.split(','):
        item = item.strip()
        if not item:
            continue
        kind, _, frames = item.partition(':')
        if not frames:
            raise ValueError(f"Invalid hold frame entry '{item}', expected kind:frames")
        hold_frames[kind.strip()] = int(frames)
    return hold_frames


def _optional_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    return int(value) if value else None


class Config:
    """Engine defaults, overridable through the environment"""

    # Challenge configuration
    REQUIRED_HOLD_FRAMES = parse_hold_frames(
        os.getenv('LIVENESS_HOLD_FRAMES', 'blink:2,smile:5,turn_left:5,turn_right:5')
    )
    CHALLENGE_COUNT = _optional_int('LIVENESS_CHALLENGE_COUNT')
    CHALLENGE_TIMEOUT_MS = int(os.getenv('LIVENESS_CHALLENGE_TIMEOUT_MS', '10000'))
    BLINK_DROP_FRACTION = float(os.getenv('LIVENESS_BLINK_DROP_FRACTION', '0.7'))
    SMILE_MARGIN_FRACTION = float(os.getenv('LIVENESS_SMILE_MARGIN_FRACTION', '0.5'))
    SMILE_MIN_DELTA = float(os.getenv('LIVENESS_SMILE_MIN_DELTA', '0.05'))
    TURN_YAW_THRESHOLD_DEGREES = float(os.getenv('LIVENESS_TURN_YAW_THRESHOLD_DEGREES', '10.0'))
    BLENDSHAPE_BLINK_THRESHOLD = float(os.getenv('LIVENESS_BLENDSHAPE_BLINK_THRESHOLD', '0.5'))
    BLENDSHAPE_SMILE_THRESHOLD = float(os.getenv('LIVENESS_BLENDSHAPE_SMILE_THRESHOLD', '0.5'))

    # Calibration configuration
    CALIBRATION_SAMPLES = int(os.getenv('LIVENESS_CALIBRATION_SAMPLES', '10'))
    CALIBRATION_TIMEOUT_MS = int(os.getenv('LIVENESS_CALIBRATION_TIMEOUT_MS', '10000'))

    # Scoring configuration
    MIN_ACCEPTANCE_SCORE = float(os.getenv('LIVENESS_MIN_ACCEPTANCE_SCORE', '0.6'))
    HISTORY_WINDOW = int(os.getenv('LIVENESS_HISTORY_WINDOW', '30'))

    # Detector / pipeline configuration
    MODEL_PATH = os.getenv('LIVENESS_MODEL_PATH', 'models/face_landmarker.task')
    FRAME_QUEUE_SIZE = int(os.getenv('LIVENESS_FRAME_QUEUE_SIZE', '4'))
    # Seconds the worker waits for a frame before checking timeouts on its own
    PIPELINE_IDLE_INTERVAL = float(os.getenv('LIVENESS_PIPELINE_IDLE_INTERVAL', '0.1'))


config = Config()


@dataclass(frozen=True)
class GeometryBounds:
    """
    Plausibility bounds for a single face.

    Widths are fractions of the frame width, ratios are relative to the
    cheek-to-cheek face width.
    """

    # Objects far away or filling the whole frame are not usable faces
    face_width_min: float = 0.08
    face_width_max: float = 0.95
    # Forehead-to-chin over cheek-to-cheek; outside this range the shape is not an oval
    height_width_min: float = 0.4
    height_width_max: float = 4.0
    # Outer eye corners relative to face width
    eye_face_min: float = 0.1
    eye_face_max: float = 0.95
    # Nose far off-center indicates a print held at a steep angle
    nose_offset_max: float = 0.6
    # Printed or on-screen faces carry almost no z spread
    min_depth_variance: float = 0.0001


@dataclass(frozen=True)
class ScoringWeights:
    """Anti-spoof sub-score weights; must sum to 1"""

    movement: float = 0.30
    depth: float = 0.30
    variance: float = 0.15
    challenges: float = 0.25

    def __post_init__(self):
        weights = (self.movement, self.depth, self.variance, self.challenges)
        if any(w < 0 for w in weights):
            raise ValueError("Scoring weights must be non-negative")
        if abs(sum(weights) - 1.0) > 1e-9:
            raise ValueError(f"Scoring weights must sum to 1, got {sum(weights):.4f}")


@dataclass(frozen=True)
class ScoringThresholds:
    """Bands used by the anti-spoof sub-scores"""

    # Mean landmark displacement per frame, normalized coordinates
    min_movement: float = 0.001
    max_movement: float = 0.08
    movement_partial_credit: float = 0.4
    min_movement_samples: int = 5

    min_depth_variance: float = 0.0001
    depth_partial_credit: float = 0.5
    min_depth_samples: int = 3

    # Natural eye-openness jitter over the window
    min_metric_variance: float = 1e-5


def _default_challenge_kinds() -> Tuple[str, ...]:
    return ('blink', 'smile', 'turn_left', 'turn_right')


@dataclass(frozen=True)
class LivenessConfig:
    """
    Per-session tuning surface.

    Every threshold the engine uses lives here so that behaviour differences
    between deployments are configuration rather than code.
    """

    required_hold_frames: Dict[str, int] = field(
        default_factory=lambda: dict(config.REQUIRED_HOLD_FRAMES)
    )
    calibration_sample_count: int = config.CALIBRATION_SAMPLES
    min_acceptance_score: float = config.MIN_ACCEPTANCE_SCORE
    challenge_timeout_ms: int = config.CHALLENGE_TIMEOUT_MS
    calibration_timeout_ms: int = config.CALIBRATION_TIMEOUT_MS
    blink_drop_fraction: float = config.BLINK_DROP_FRACTION
    blink_reopen_fraction: Optional[float] = None
    smile_margin_fraction: float = config.SMILE_MARGIN_FRACTION
    smile_min_delta: float = config.SMILE_MIN_DELTA
    turn_yaw_threshold_degrees: float = config.TURN_YAW_THRESHOLD_DEGREES
    history_window_size: int = config.HISTORY_WINDOW
    challenge_kinds: Tuple[str, ...] = field(default_factory=_default_challenge_kinds)
    challenge_count: Optional[int] = config.CHALLENGE_COUNT
    blendshape_blink_threshold: float = config.BLENDSHAPE_BLINK_THRESHOLD
    blendshape_smile_threshold: float = config.BLENDSHAPE_SMILE_THRESHOLD
    geometry: GeometryBounds = field(default_factory=GeometryBounds)
    scoring_weights: ScoringWeights = field(default_factory=ScoringWeights)
    scoring: ScoringThresholds = field(default_factory=ScoringThresholds)

    def __post_init__(self):
        if self.calibration_sample_count < 1:
            raise ValueError("calibration_sample_count must be at least 1")
        if not 0.0 <= self.min_acceptance_score <= 1.0:
            raise ValueError("min_acceptance_score must be within [0, 1]")
        if self.challenge_timeout_ms <= 0 or self.calibration_timeout_ms <= 0:
            raise ValueError("Timeouts must be positive")
        if not 0.0 < self.blink_drop_fraction < 1.0:
            raise ValueError("blink_drop_fraction must be within (0, 1)")
        if not self.blink_drop_fraction < self.reopen_fraction <= 1.0:
            raise ValueError("blink_reopen_fraction must lie between the drop fraction and 1")
        if self.smile_margin_fraction < 0 or self.smile_min_delta < 0:
            raise ValueError("Smile margins must be non-negative")
        if self.turn_yaw_threshold_degrees <= 0:
            raise ValueError("turn_yaw_threshold_degrees must be positive")
        if self.history_window_size < 2:
            raise ValueError("history_window_size must be at least 2")
        if not self.challenge_kinds:
            raise ValueError("At least one challenge kind is required")
        for kind in self.challenge_kinds:
            if self.required_hold_frames.get(kind, 0) < 1:
                raise ValueError(f"required_hold_frames for '{kind}' must be at least 1")
        if self.challenge_count is not None and not 1 <= self.challenge_count <= len(self.challenge_kinds):
            raise ValueError("challenge_count must be between 1 and the number of challenge kinds")

    @property
    def reopen_fraction(self) -> float:
        """Blink recovery fraction; halfway between the drop fraction and fully open by default"""
        if self.blink_reopen_fraction is not None:
            return self.blink_reopen_fraction
        return (1.0 + self.blink_drop_fraction) / 2.0

    def hold_frames_for(self, kind: str) -> int:
        return self.required_hold_frames[kind]
