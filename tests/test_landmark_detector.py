"""
Unit tests for LandmarkDetector
"""
import numpy as np
import pytest

from liveness.services.landmark_detector import LandmarkDetector


def _mock_detection(mocker, num_points=468, blendshapes=None):
    landmarks = []
    for i in range(num_points):
        landmark = mocker.MagicMock()
        landmark.x = 0.4 + (i % 10) * 0.01
        landmark.y = 0.5
        landmark.z = 0.001 * (i % 7)
        landmarks.append(landmark)

    categories = []
    for name, score in (blendshapes or {}).items():
        category = mocker.MagicMock()
        category.category_name = name
        category.score = score
        categories.append(category)

    result = mocker.MagicMock()
    result.face_landmarks = [landmarks]
    result.face_blendshapes = [categories] if categories else []
    return result


class TestLandmarkDetector:
    """Test suite for LandmarkDetector class"""

    def setup_method(self):
        """Set up test fixtures"""
        self.detector = LandmarkDetector()
        self.frame = np.zeros((480, 640, 3), dtype=np.uint8)

    def test_no_model_path_means_unavailable(self):
        assert self.detector.face_landmarker is None
        assert not self.detector.available
        assert self.detector.detect(self.frame) is None

    def test_missing_model_file_means_unavailable(self, tmp_path):
        detector = LandmarkDetector(model_path=str(tmp_path / "missing.task"))
        assert detector.face_landmarker is None

    def test_from_config_uses_configured_model_path(self, mocker):
        mocker.patch('liveness.services.landmark_detector.config.MODEL_PATH', '/models/landmarker.task')
        detector = LandmarkDetector.from_config()
        assert detector.model_path == '/models/landmarker.task'

    def test_preprocess_resizes_and_converts_to_rgb(self):
        frame = np.zeros((240, 320, 3), dtype=np.uint8)
        frame[:, :, 0] = 255  # blue in BGR

        rgb = self.detector.preprocess_frame(frame)

        assert rgb.shape == (480, 640, 3)
        assert np.all(rgb[:, :, 2] == 255)
        assert np.all(rgb[:, :, 0] == 0)

    def test_detect_converts_landmarks(self, mocker):
        mocker.patch('liveness.services.landmark_detector.mp.Image')
        landmarker = mocker.MagicMock()
        landmarker.detect.return_value = _mock_detection(
            mocker, blendshapes={"eyeBlinkLeft": 0.7, "mouthSmileLeft": 0.2}
        )
        self.detector._face_landmarker = landmarker

        frame = self.detector.detect(self.frame)

        assert frame.points.shape == (468, 3)
        assert frame.normalized
        assert frame.has_depth
        assert frame.image_size == (640, 480)
        assert frame.points[3, 0] == pytest.approx(0.43)
        assert frame.blendshapes == {"eyeBlinkLeft": pytest.approx(0.7), "mouthSmileLeft": pytest.approx(0.2)}
        landmarker.detect.assert_called_once()

    def test_detect_without_blendshapes(self, mocker):
        mocker.patch('liveness.services.landmark_detector.mp.Image')
        landmarker = mocker.MagicMock()
        landmarker.detect.return_value = _mock_detection(mocker)
        self.detector._face_landmarker = landmarker

        assert self.detector.detect(self.frame).blendshapes is None

    def test_no_face_detected(self, mocker):
        mocker.patch('liveness.services.landmark_detector.mp.Image')
        landmarker = mocker.MagicMock()
        landmarker.detect.return_value.face_landmarks = []
        self.detector._face_landmarker = landmarker

        assert self.detector.detect(self.frame) is None

    def test_detection_error_is_no_face(self, mocker):
        mocker.patch('liveness.services.landmark_detector.mp.Image')
        landmarker = mocker.MagicMock()
        landmarker.detect.side_effect = RuntimeError("graph failure")
        self.detector._face_landmarker = landmarker

        assert self.detector.detect(self.frame) is None

    def test_empty_frame(self, mocker):
        self.detector._face_landmarker = mocker.MagicMock()
        assert self.detector.detect(None) is None
        assert self.detector.detect(np.zeros((0, 0, 3), dtype=np.uint8)) is None

    def test_close_releases_landmarker(self, mocker):
        landmarker = mocker.MagicMock()
        self.detector._face_landmarker = landmarker

        self.detector.close()

        landmarker.close.assert_called_once()
        assert self.detector._face_landmarker is None
