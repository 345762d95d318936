"""
Metric Extractor: converts raw face landmarks into semantic measurements
"""
import math
from typing import Optional, Sequence, Tuple

import numpy as np

from ..models.data_models import LandmarkFrame, Metrics

# MediaPipe FaceMesh topology
MIN_LANDMARK_COUNT = 468

# Eye contours ordered [corner, upper, upper, corner, lower, lower]
LEFT_EYE = (362, 385, 387, 263, 373, 380)
RIGHT_EYE = (33, 160, 158, 133, 153, 144)
RIGHT_EYE_OUTER = 33
LEFT_EYE_OUTER = 263

UPPER_LIP = 13
LOWER_LIP = 14
LEFT_MOUTH = 61
RIGHT_MOUTH = 291

NOSE_TIP = 1
LEFT_CHEEK = 234
RIGHT_CHEEK = 454
FOREHEAD = 10
CHIN = 152

# Landmarks that stay rigid with the skull, used for inter-frame movement
STABLE_POINTS = (NOSE_TIP, LEFT_CHEEK, RIGHT_CHEEK, FOREHEAD, CHIN)

# Treat a collapsed eye contour as an open eye
EYE_OPENNESS_FALLBACK = 0.3


class ExtractorFault(ValueError):
    """Raised when a landmark frame is malformed"""


def _distance(a: np.ndarray, b: np.ndarray) -> float:
    return float(np.hypot(a[0] - b[0], a[1] - b[1]))


def check_frame(frame: LandmarkFrame) -> np.ndarray:
    """
    Validate the point array of a landmark frame.

    Args:
        frame: Landmark frame to validate

    Returns:
        np.ndarray: The points as a float array

    Raises:
        ExtractorFault: Wrong shape, too few points, or non-finite coordinates
    """
    points = np.asarray(frame.points, dtype=float)
    if points.ndim != 2 or points.shape[1] not in (2, 3):
        raise ExtractorFault(f"Expected an (N, 2) or (N, 3) point array, got shape {points.shape}")
    if points.shape[0] < MIN_LANDMARK_COUNT:
        raise ExtractorFault(
            f"Expected at least {MIN_LANDMARK_COUNT} landmarks, got {points.shape[0]}"
        )
    if not np.all(np.isfinite(points)):
        raise ExtractorFault("Landmark coordinates contain NaN or infinite values")
    return points


def eye_openness(points: np.ndarray, indices: Sequence[int]) -> float:
    """
    Eye aspect ratio: mean of the two eyelid gaps over the corner-to-corner width.

    A zero-width eye returns EYE_OPENNESS_FALLBACK instead of dividing by zero.
    """
    p = [points[i] for i in indices]
    horizontal = _distance(p[0], p[3])
    if horizontal == 0:
        return EYE_OPENNESS_FALLBACK
    vertical_1 = _distance(p[1], p[5])
    vertical_2 = _distance(p[2], p[4])
    return (vertical_1 + vertical_2) / (2.0 * horizontal)


def mouth_ratio(points: np.ndarray) -> float:
    """Lip gap over mouth-corner width; zero for a degenerate mouth"""
    width = _distance(points[LEFT_MOUTH], points[RIGHT_MOUTH])
    if width == 0:
        return 0.0
    return _distance(points[UPPER_LIP], points[LOWER_LIP]) / width


def nose_offset(points: np.ndarray) -> float:
    """
    Horizontal nose offset from the cheek midpoint, as a fraction of face width.

    The width is signed (right cheek minus left cheek), so a mirrored image
    flips numerator and denominator together and the sign is preserved.
    """
    width = points[RIGHT_CHEEK][0] - points[LEFT_CHEEK][0]
    if width == 0:
        return 0.0
    center = (points[LEFT_CHEEK][0] + points[RIGHT_CHEEK][0]) / 2.0
    return float((points[NOSE_TIP][0] - center) / width)


def _offset_to_degrees(offset: float) -> float:
    # A nose on the cheek line sits half a face width from center
    return math.degrees(math.asin(float(np.clip(2.0 * offset, -1.0, 1.0))))


def head_yaw(points: np.ndarray) -> float:
    """
    Head yaw in degrees.

    Positive values mean the subject turned toward their own left,
    independent of whether the image is mirrored.
    """
    return _offset_to_degrees(nose_offset(points))


def head_pitch(points: np.ndarray) -> float:
    """Head pitch in degrees; positive values mean chin down"""
    height = points[CHIN][1] - points[FOREHEAD][1]
    if height == 0:
        return 0.0
    center = (points[FOREHEAD][1] + points[CHIN][1]) / 2.0
    return _offset_to_degrees(float((points[NOSE_TIP][1] - center) / height))


def face_size_ratio(points: np.ndarray, frame_width: float) -> float:
    """Landmark bounding-box width as a fraction of frame width"""
    if frame_width <= 0:
        return 0.0
    return float((points[:, 0].max() - points[:, 0].min()) / frame_width)


def frame_movement(
    points: np.ndarray,
    previous: Optional[np.ndarray],
    frame_size: Tuple[float, float] = (1.0, 1.0)
) -> float:
    """
    Mean 2-D displacement of the stable landmarks since the previous frame.

    Displacements are divided by the frame width and height, so pixel and
    normalized frames report the same movement.
    """
    if previous is None or previous.shape[0] != points.shape[0]:
        return 0.0
    scale = np.asarray(frame_size, dtype=float)
    total = sum(_distance(points[i, :2] / scale, previous[i, :2] / scale) for i in STABLE_POINTS)
    return total / len(STABLE_POINTS)


def depth_variance(points: np.ndarray, frame_width: float = 1.0) -> float:
    """
    Population variance of z over all landmarks; 0.0 for 2-D frames.

    z shares the x scale, so pixel frames are divided by the squared width.
    """
    if points.shape[1] < 3 or frame_width <= 0:
        return 0.0
    return float(np.var(points[:, 2]) / frame_width ** 2)


def extract_metrics(
    frame: Optional[LandmarkFrame],
    previous: Optional[LandmarkFrame] = None
) -> Optional[Metrics]:
    """
    Compute all metrics for one frame.

    Pure function of the current frame and, for movement, the previous one.

    Args:
        frame: Current landmark frame, or None when no face was detected
        previous: The previously processed frame, if any

    Returns:
        Optional[Metrics]: Metrics for the frame, or None for an absent face

    Raises:
        ExtractorFault: The frame is malformed
    """
    if frame is None:
        return None

    points = check_frame(frame)
    previous_points = None
    if previous is not None:
        previous_points = np.asarray(previous.points, dtype=float)
    has_reference = previous_points is not None and previous_points.shape[0] == points.shape[0]
    frame_size = (frame.frame_width, frame.frame_height)

    return Metrics(
        left_eye_openness=eye_openness(points, LEFT_EYE),
        right_eye_openness=eye_openness(points, RIGHT_EYE),
        mouth_ratio=mouth_ratio(points),
        head_yaw=head_yaw(points),
        head_pitch=head_pitch(points),
        face_size_ratio=face_size_ratio(points, frame.frame_width),
        frame_movement=frame_movement(points, previous_points, frame_size),
        depth_variance=depth_variance(points, frame.frame_width),
        blendshapes=dict(frame.blendshapes) if frame.blendshapes else None,
        has_movement_reference=has_reference,
    )
