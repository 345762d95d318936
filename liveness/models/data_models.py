"""
Data models for the liveness engine
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np


class ChallengeKind(Enum):
    """Physical challenges a presenter can be asked to perform"""
    BLINK = "blink"
    SMILE = "smile"
    TURN_LEFT = "turn_left"
    TURN_RIGHT = "turn_right"


class SessionState(Enum):
    """Lifecycle of a liveness session"""
    LOADING = "loading"
    READY = "ready"
    CALIBRATING = "calibrating"
    CHALLENGING = "challenging"
    COMPLETED = "completed"
    FAILED = "failed"


class FrameStatus(Enum):
    """Outcome of processing a single frame"""
    ACCEPTED = "accepted"
    NO_FACE = "no_face"
    INVALID_GEOMETRY = "invalid_geometry"
    EXTRACTOR_FAULT = "extractor_fault"
    IGNORED = "ignored"


class FailureReason(Enum):
    """Terminal failure reasons reported to the caller"""
    CALIBRATION_INCOMPLETE = "calibration_incomplete"
    CHALLENGE_TIMEOUT = "challenge_timeout"
    SCORE_BELOW_THRESHOLD = "score_below_threshold"


class GeometryRejection(Enum):
    """Why a frame's face geometry was rejected"""
    FACE_WIDTH = "face_width"
    ASPECT_RATIO = "aspect_ratio"
    EYE_SPACING = "eye_spacing"
    NOSE_OFFSET = "nose_offset"
    FLAT_DEPTH = "flat_depth"


TERMINAL_STATES = (SessionState.COMPLETED, SessionState.FAILED)


@dataclass
class LandmarkFrame:
    """
    Face keypoints for one video frame.

    Points follow the MediaPipe FaceMesh index scheme. Coordinates are
    normalized to [0, 1] unless ``normalized`` is False, in which case
    ``image_size`` gives the pixel dimensions.
    """
    points: np.ndarray
    normalized: bool = True
    image_size: Optional[Tuple[int, int]] = None
    blendshapes: Optional[Dict[str, float]] = None
    timestamp: Optional[float] = None

    @property
    def has_depth(self) -> bool:
        return self.points.ndim == 2 and self.points.shape[1] >= 3

    @property
    def frame_width(self) -> float:
        if self.normalized or self.image_size is None:
            return 1.0
        return float(self.image_size[0])

    @property
    def frame_height(self) -> float:
        if self.normalized or self.image_size is None:
            return 1.0
        return float(self.image_size[1])


@dataclass(frozen=True)
class Metrics:
    """Semantic measurements derived from exactly one landmark frame"""
    left_eye_openness: float
    right_eye_openness: float
    mouth_ratio: float
    head_yaw: float
    head_pitch: float
    face_size_ratio: float
    frame_movement: float
    depth_variance: float
    blendshapes: Optional[Dict[str, float]] = None
    # False when there was no previous frame to measure movement against
    has_movement_reference: bool = True

    @property
    def eye_openness(self) -> float:
        return (self.left_eye_openness + self.right_eye_openness) / 2.0


@dataclass(frozen=True)
class Baseline:
    """Resting metric values for one session"""
    resting_eye_openness: float
    resting_mouth_ratio: float
    resting_yaw: float
    sample_count: int


@dataclass(frozen=True)
class ChallengeSequence:
    """Randomized, fixed order of challenges for a session"""
    session_id: str
    nonce: str
    seed: int
    timestamp: float
    challenges: Tuple[ChallengeKind, ...]


@dataclass(frozen=True)
class GeometryResult:
    """Accept/reject decision from the face geometry validator"""
    accepted: bool
    reason: Optional[GeometryRejection] = None


@dataclass(frozen=True)
class ScoringResult:
    """Composite anti-spoof score and its components"""
    final_score: float
    movement_score: float
    depth_score: float
    variance_score: float
    challenge_score: float


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view of a session for interface layers"""
    verification_id: str
    state: SessionState
    frame_status: FrameStatus
    current_challenge: Optional[ChallengeKind]
    prompt: Optional[str]
    hold_counter: int
    required_hold_frames: int
    completed_challenges: Tuple[str, ...]
    progress: float
    calibration_samples: int
    failure_reason: Optional[FailureReason] = None
    score: Optional[float] = None


@dataclass
class VerificationResult:
    """Final outcome handed to the submission collaborator"""
    verification_id: str
    passed: bool
    score: float
    completed_challenges: List[str]
    snapshot: Optional[str] = None
    failure_reason: Optional[FailureReason] = None
    timestamp: float = field(default_factory=lambda: datetime.now(timezone.utc).timestamp())

    def to_payload(self) -> Dict[str, Any]:
        """
        Build the JSON-ready submission payload.

        Returns:
            Dict[str, Any]: camelCase payload with an ISO-8601 UTC timestamp
        """
        return {
            "verificationId": self.verification_id,
            "passed": self.passed,
            "livenessScore": self.score,
            "completedChallenges": list(self.completed_challenges),
            "selfieBase64": self.snapshot,
            "failureReason": self.failure_reason.value if self.failure_reason else None,
            "timestamp": datetime.fromtimestamp(self.timestamp, tz=timezone.utc).isoformat(),
        }
