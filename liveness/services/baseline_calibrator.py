"""
Baseline Calibrator: resting reference values for a session
"""
from typing import Optional

from ..exceptions import SessionStateError
from ..models.data_models import Baseline, Metrics


class BaselineCalibrator:
    """
    Online mean over exactly ``sample_count`` valid frames.

    Once finalized the baseline never changes; a new attempt needs a new
    calibrator or an explicit reset.
    """

    def __init__(self, sample_count: int):
        if sample_count < 1:
            raise ValueError("sample_count must be at least 1")
        self.sample_count = sample_count
        self.reset()

    def reset(self) -> None:
        """Discard all samples, including a finalized baseline"""
        self._samples = 0
        self._eye_openness = 0.0
        self._mouth_ratio = 0.0
        self._yaw = 0.0
        self._baseline: Optional[Baseline] = None

    @property
    def samples(self) -> int:
        return self._samples

    @property
    def baseline(self) -> Optional[Baseline]:
        return self._baseline

    @property
    def is_complete(self) -> bool:
        return self._baseline is not None

    def add(self, metrics: Metrics) -> Optional[Baseline]:
        """
        Accumulate one valid frame.

        Args:
            metrics: Metrics of a geometry-valid frame

        Returns:
            Optional[Baseline]: The finalized baseline on the last sample, else None

        Raises:
            SessionStateError: The baseline has already been finalized
        """
        if self._baseline is not None:
            raise SessionStateError("Baseline already finalized")

        self._samples += 1
        n = self._samples
        self._eye_openness += (metrics.eye_openness - self._eye_openness) / n
        self._mouth_ratio += (metrics.mouth_ratio - self._mouth_ratio) / n
        self._yaw += (metrics.head_yaw - self._yaw) / n

        if n >= self.sample_count:
            self._baseline = Baseline(
                resting_eye_openness=self._eye_openness,
                resting_mouth_ratio=self._mouth_ratio,
                resting_yaw=self._yaw,
                sample_count=n,
            )
        return self._baseline
