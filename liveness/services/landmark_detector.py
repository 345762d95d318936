"""
Landmark detector adapter around the MediaPipe Face Landmarker
"""
import logging
import os
from typing import Optional

import cv2
import mediapipe as mp
import numpy as np

from ..config import config
from ..models.data_models import LandmarkFrame

logger = logging.getLogger(__name__)


class LandmarkDetector:
    """
    Turns video frames into LandmarkFrame values using MediaPipe.

    The FaceLandmarker is created lazily on first use so the engine can be
    constructed (and tested) without the model file.
    """

    def __init__(self, model_path: Optional[str] = None, target_size: tuple = (640, 480)):
        """
        Args:
            model_path: Path to the MediaPipe ``face_landmarker.task`` model
            target_size: (width, height) frames are resized to before detection
        """
        self.model_path = model_path
        self.target_size = target_size
        self._face_landmarker = None

    @classmethod
    def from_config(cls) -> "LandmarkDetector":
        """Detector using the model path from LIVENESS_MODEL_PATH"""
        return cls(model_path=config.MODEL_PATH)

    @property
    def face_landmarker(self):
        """
        The FaceLandmarker instance, created on first access.

        Returns None if the model cannot be loaded.
        """
        if self._face_landmarker is None:
            if self.model_path is None:
                logger.warning("Model path not provided. Face landmarker will not be available.")
                return None

            if not os.path.exists(self.model_path):
                logger.warning(f"MediaPipe model not found at {self.model_path}")
                return None

            try:
                base_options = mp.tasks.BaseOptions(model_asset_path=self.model_path)
                options = mp.tasks.vision.FaceLandmarkerOptions(
                    base_options=base_options,
                    running_mode=mp.tasks.vision.RunningMode.IMAGE,
                    num_faces=1,
                    min_face_detection_confidence=0.5,
                    min_face_presence_confidence=0.5,
                    output_face_blendshapes=True,
                    output_facial_transformation_matrixes=False
                )
                self._face_landmarker = mp.tasks.vision.FaceLandmarker.create_from_options(options)
            except (RuntimeError, ValueError) as e:
                logger.error(f"Failed to initialize MediaPipe FaceLandmarker: {e}")
                return None

        return self._face_landmarker

    @property
    def available(self) -> bool:
        return self.face_landmarker is not None

    def preprocess_frame(self, frame: np.ndarray) -> np.ndarray:
        """
        Resize a BGR video frame and convert it to RGB for MediaPipe.

        Args:
            frame: Input frame in BGR format (OpenCV default)

        Returns:
            np.ndarray: Preprocessed frame in RGB format
        """
        resized = cv2.resize(frame, self.target_size, interpolation=cv2.INTER_LINEAR)
        return cv2.cvtColor(resized, cv2.COLOR_BGR2RGB)

    def detect(self, frame: np.ndarray) -> Optional[LandmarkFrame]:
        """
        Detect a single face in a video frame.

        Args:
            frame: Video frame in BGR format

        Returns:
            Optional[LandmarkFrame]: Normalized 3-D landmarks with blendshapes,
            or None when no face is found or the detector is unavailable
        """
        if frame is None or frame.size == 0:
            return None

        landmarker = self.face_landmarker
        if landmarker is None:
            return None

        rgb_frame = self.preprocess_frame(frame)
        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb_frame)

        try:
            detection_result = landmarker.detect(mp_image)
        except (RuntimeError, ValueError) as e:
            logger.warning(f"Face landmark detection failed: {e}")
            return None

        if not detection_result.face_landmarks:
            return None

        landmarks = detection_result.face_landmarks[0]
        points = np.array([[lm.x, lm.y, lm.z] for lm in landmarks], dtype=float)

        blendshapes = None
        if detection_result.face_blendshapes:
            blendshapes = {
                category.category_name: float(category.score)
                for category in detection_result.face_blendshapes[0]
            }

        height, width = frame.shape[:2]
        return LandmarkFrame(points=points, image_size=(width, height), blendshapes=blendshapes)

    def close(self) -> None:
        """Release MediaPipe resources"""
        if self._face_landmarker is not None:
            self._face_landmarker.close()
            self._face_landmarker = None

    def __del__(self):
        if getattr(self, '_face_landmarker', None) is not None:
            self.close()
