"""
Unit tests for BaselineCalibrator
"""
import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from liveness.exceptions import SessionStateError
from liveness.services.baseline_calibrator import BaselineCalibrator

from conftest import make_metrics


class TestBaselineCalibrator:
    """Test suite for BaselineCalibrator"""

    def test_baseline_after_exact_sample_count(self):
        calibrator = BaselineCalibrator(3)

        assert calibrator.add(make_metrics(eye=0.30)) is None
        assert calibrator.add(make_metrics(eye=0.32)) is None
        assert not calibrator.is_complete

        baseline = calibrator.add(make_metrics(eye=0.28))

        assert calibrator.is_complete
        assert baseline.sample_count == 3
        assert baseline.resting_eye_openness == pytest.approx(0.30)

    def test_means_of_each_metric(self):
        calibrator = BaselineCalibrator(2)
        calibrator.add(make_metrics(eye=0.2, mouth=0.04, yaw=2.0))
        baseline = calibrator.add(make_metrics(eye=0.4, mouth=0.06, yaw=-4.0))

        assert baseline.resting_eye_openness == pytest.approx(0.3)
        assert baseline.resting_mouth_ratio == pytest.approx(0.05)
        assert baseline.resting_yaw == pytest.approx(-1.0)

    def test_finalized_baseline_is_immutable(self):
        """Adding after finalization is a caller error"""
        calibrator = BaselineCalibrator(1)
        baseline = calibrator.add(make_metrics())

        with pytest.raises(SessionStateError):
            calibrator.add(make_metrics(eye=0.9))
        assert calibrator.baseline is baseline

    def test_reset_discards_samples(self):
        calibrator = BaselineCalibrator(3)
        calibrator.add(make_metrics(eye=0.9))
        calibrator.add(make_metrics(eye=0.9))
        calibrator.reset()

        assert calibrator.samples == 0
        assert calibrator.baseline is None

        for _ in range(3):
            baseline = calibrator.add(make_metrics(eye=0.3))
        assert baseline.resting_eye_openness == pytest.approx(0.3)

    def test_invalid_sample_count(self):
        with pytest.raises(ValueError):
            BaselineCalibrator(0)


@pytest.mark.property_test
class TestBaselineCalibratorProperties:
    """Property-based tests for calibration"""

    @given(
        eye=st.floats(min_value=0.0, max_value=1.0),
        mouth=st.floats(min_value=0.0, max_value=2.0),
        yaw=st.floats(min_value=-90.0, max_value=90.0),
        count=st.integers(min_value=1, max_value=30)
    )
    @settings(deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
    def test_identical_samples_reproduce_their_values(self, eye, mouth, yaw, count):
        """
        Property: K identical samples produce a baseline equal to those values
        """
        calibrator = BaselineCalibrator(count)
        baseline = None
        for _ in range(count):
            baseline = calibrator.add(make_metrics(eye=eye, mouth=mouth, yaw=yaw))

        assert baseline.sample_count == count
        assert baseline.resting_eye_openness == pytest.approx(eye)
        assert baseline.resting_mouth_ratio == pytest.approx(mouth)
        assert baseline.resting_yaw == pytest.approx(yaw)
