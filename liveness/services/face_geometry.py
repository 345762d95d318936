"""
Face Geometry Validator: rejects frames whose landmarks cannot belong to a live face
"""
import logging
from typing import Optional

import numpy as np

from ..config import GeometryBounds
from ..models.data_models import GeometryRejection, GeometryResult, LandmarkFrame
from .metric_extractor import (
    CHIN,
    FOREHEAD,
    LEFT_CHEEK,
    LEFT_EYE_OUTER,
    RIGHT_CHEEK,
    RIGHT_EYE_OUTER,
    check_frame,
    depth_variance,
    nose_offset,
)

logger = logging.getLogger(__name__)


class FaceGeometryValidator:
    """
    Checks the proportions of a detected face against plausibility bounds.

    Rejects objects that are not faces, faces too small or too large to
    measure, and photographs held flat or at a steep angle to the camera.
    """

    def __init__(self, bounds: Optional[GeometryBounds] = None):
        self.bounds = bounds or GeometryBounds()

    def validate(self, frame: LandmarkFrame) -> GeometryResult:
        """
        Accept or reject one landmark frame.

        Args:
            frame: Landmark frame to check

        Returns:
            GeometryResult: accepted flag and, on rejection, the first failing bound

        Raises:
            ExtractorFault: The frame is malformed
        """
        points = check_frame(frame)
        b = self.bounds

        face_width = float(np.hypot(*(points[RIGHT_CHEEK][:2] - points[LEFT_CHEEK][:2])))
        face_height = float(np.hypot(*(points[CHIN][:2] - points[FOREHEAD][:2])))
        eye_distance = float(np.hypot(*(points[LEFT_EYE_OUTER][:2] - points[RIGHT_EYE_OUTER][:2])))

        width_ratio = face_width / frame.frame_width if frame.frame_width > 0 else 0.0
        if not b.face_width_min <= width_ratio <= b.face_width_max:
            return self._reject(GeometryRejection.FACE_WIDTH, width_ratio)

        height_width = face_height / face_width
        if not b.height_width_min <= height_width <= b.height_width_max:
            return self._reject(GeometryRejection.ASPECT_RATIO, height_width)

        eye_face = eye_distance / face_width
        if not b.eye_face_min <= eye_face <= b.eye_face_max:
            return self._reject(GeometryRejection.EYE_SPACING, eye_face)

        offset = abs(nose_offset(points))
        if offset > b.nose_offset_max:
            return self._reject(GeometryRejection.NOSE_OFFSET, offset)

        if frame.has_depth:
            variance = depth_variance(points, frame.frame_width)
            if variance < b.min_depth_variance:
                return self._reject(GeometryRejection.FLAT_DEPTH, variance)

        return GeometryResult(accepted=True)

    def _reject(self, reason: GeometryRejection, value: float) -> GeometryResult:
        logger.debug(f"Face geometry rejected: {reason.value}={value:.5f}")
        return GeometryResult(accepted=False, reason=reason)
