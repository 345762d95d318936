"""
Shared fixtures and synthetic landmark builders for the liveness tests
"""
import numpy as np
import pytest

from liveness.config import LivenessConfig
from liveness.models.data_models import TERMINAL_STATES, ChallengeKind, LandmarkFrame, Metrics
from liveness.services.challenge_sequencer import ChallengeSequencer
from liveness.services.metric_extractor import (
    CHIN,
    FOREHEAD,
    LEFT_CHEEK,
    LEFT_EYE,
    LEFT_MOUTH,
    LOWER_LIP,
    NOSE_TIP,
    RIGHT_CHEEK,
    RIGHT_EYE,
    RIGHT_MOUTH,
    UPPER_LIP,
)

FRAME_INTERVAL = 1.0 / 30.0

# Eye openness / mouth ratio / nose offset that satisfy each challenge
CLOSED_EYES = 0.10
SMILE_RATIO = 0.30
TURN_OFFSET = 0.2


def _place_eye(points, indices, x_start, x_end, y, openness):
    width = x_end - x_start
    gap = openness * width
    corner_a, upper_1, upper_2, corner_b, lower_2, lower_1 = indices
    points[corner_a, :2] = (x_start, y)
    points[corner_b, :2] = (x_end, y)
    points[upper_1, :2] = (x_start + width / 3.0, y - gap / 2.0)
    points[lower_1, :2] = (x_start + width / 3.0, y + gap / 2.0)
    points[upper_2, :2] = (x_start + 2.0 * width / 3.0, y - gap / 2.0)
    points[lower_2, :2] = (x_start + 2.0 * width / 3.0, y + gap / 2.0)


def make_landmarks(
    eye_openness: float = 0.30,
    mouth_ratio: float = 0.05,
    nose_offset: float = 0.0,
    shift: tuple = (0.0, 0.0),
    z_amplitude: float = 0.03,
    with_depth: bool = True,
    count: int = 468
) -> np.ndarray:
    """
    Build a synthetic MediaPipe-style face.

    Face width (cheek to cheek) is 0.3 of the frame, forehead to chin 0.45,
    and the eyes/mouth are placed so the extracted ratios equal the inputs.
    """
    idx = np.arange(count)
    points = np.zeros((count, 3))
    points[:, 0] = 0.40 + 0.20 * ((idx * 37) % 100) / 100.0
    points[:, 1] = 0.35 + 0.35 * ((idx * 61) % 100) / 100.0
    points[:, 2] = z_amplitude * np.sin(idx)

    points[LEFT_CHEEK, :2] = (0.35, 0.50)
    points[RIGHT_CHEEK, :2] = (0.65, 0.50)
    points[FOREHEAD, :2] = (0.50, 0.30)
    points[CHIN, :2] = (0.50, 0.75)
    points[NOSE_TIP, :2] = (0.50 + nose_offset * 0.30, 0.55)

    _place_eye(points, RIGHT_EYE, 0.38, 0.46, 0.42, eye_openness)
    _place_eye(points, LEFT_EYE, 0.54, 0.62, 0.42, eye_openness)

    points[LEFT_MOUTH, :2] = (0.44, 0.65)
    points[RIGHT_MOUTH, :2] = (0.56, 0.65)
    points[UPPER_LIP, :2] = (0.50, 0.65 - mouth_ratio * 0.06)
    points[LOWER_LIP, :2] = (0.50, 0.65 + mouth_ratio * 0.06)

    points[:, 0] += shift[0]
    points[:, 1] += shift[1]

    if not with_depth:
        return points[:, :2].copy()
    return points


def make_frame(**kwargs) -> LandmarkFrame:
    return LandmarkFrame(points=make_landmarks(**kwargs))


def live_frame(i: int, **kwargs) -> LandmarkFrame:
    """A live-looking face: small head sway and eye-openness jitter"""
    sway = 0.003 if i % 2 else -0.003
    kwargs.setdefault('eye_openness', 0.30 + (0.01 if i % 2 else -0.01))
    kwargs.setdefault('shift', (sway, 0.0))
    return make_frame(**kwargs)


def challenge_frame(kind: ChallengeKind, i: int, **kwargs) -> LandmarkFrame:
    """A frame performing ``kind``; blinks alternate closed and open eyes"""
    if kind == ChallengeKind.BLINK:
        kwargs.setdefault('eye_openness', CLOSED_EYES if i % 2 == 0 else 0.30)
    elif kind == ChallengeKind.SMILE:
        kwargs.setdefault('mouth_ratio', SMILE_RATIO)
    elif kind == ChallengeKind.TURN_LEFT:
        kwargs.setdefault('nose_offset', TURN_OFFSET)
    elif kind == ChallengeKind.TURN_RIGHT:
        kwargs.setdefault('nose_offset', -TURN_OFFSET)
    return live_frame(i, **kwargs)


def make_metrics(
    eye: float = 0.30,
    mouth: float = 0.05,
    yaw: float = 0.0,
    movement: float = 0.005,
    depth: float = 0.0005,
    blendshapes=None,
    movement_reference: bool = True
) -> Metrics:
    return Metrics(
        left_eye_openness=eye,
        right_eye_openness=eye,
        mouth_ratio=mouth,
        head_yaw=yaw,
        head_pitch=0.0,
        face_size_ratio=0.3,
        frame_movement=movement,
        depth_variance=depth,
        blendshapes=blendshapes,
        has_movement_reference=movement_reference,
    )


class FrameClock:
    """Deterministic frame timestamps"""

    def __init__(self, start: float = 0.0):
        self.now = start

    def tick(self, seconds: float = FRAME_INTERVAL) -> float:
        self.now += seconds
        return self.now

    def __call__(self) -> float:
        return self.now


def make_settings(**overrides) -> LivenessConfig:
    values = dict(
        required_hold_frames={'blink': 1, 'smile': 3, 'turn_left': 3, 'turn_right': 3},
        calibration_sample_count=5,
        min_acceptance_score=0.6,
        challenge_timeout_ms=5000,
        calibration_timeout_ms=5000,
        blink_drop_fraction=0.7,
        smile_margin_fraction=0.5,
        smile_min_delta=0.05,
        turn_yaw_threshold_degrees=10.0,
        history_window_size=30,
    )
    values.update(overrides)
    return LivenessConfig(**values)


def feed(sequencer, frame, clock, image=None):
    """Process one frame one frame-interval after the previous one"""
    return sequencer.process_frame(frame, image=image, now=clock.tick())


def calibrate(sequencer, clock, start_index: int = 0, **frame_kwargs) -> int:
    """Move a LOADING sequencer to CHALLENGING; returns the next frame index"""
    sequencer.mark_ready()
    i = start_index
    feed(sequencer, live_frame(i, **frame_kwargs), clock)
    i += 1
    assert sequencer.start_calibration(now=clock.now)
    for _ in range(sequencer.settings.calibration_sample_count):
        feed(sequencer, live_frame(i, **frame_kwargs), clock)
        i += 1
    return i


def perform_current_challenge(sequencer, clock, start_index: int, max_frames: int = 40, **kwargs) -> int:
    """Feed frames performing the current challenge until it completes"""
    session = sequencer.session
    index_before = session.current_index
    kind = session.current_challenge.kind
    i = start_index
    for _ in range(max_frames):
        feed(sequencer, challenge_frame(kind, i, **kwargs), clock)
        i += 1
        if session.current_index != index_before or sequencer.state in TERMINAL_STATES:
            return i
    raise AssertionError(f"Challenge {kind.value} did not complete within {max_frames} frames")


@pytest.fixture
def clock():
    return FrameClock()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def sequencer(settings, clock):
    return ChallengeSequencer(settings, verification_id="test-verification", seed=1234, clock=clock)
