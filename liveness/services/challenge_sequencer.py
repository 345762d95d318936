"""
Challenge Sequencer: the liveness session state machine
"""
import logging
import time
import uuid
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Callable, Deque, List, Optional, Tuple

import numpy as np

from ..config import LivenessConfig
from ..exceptions import SessionStateError
from ..models.data_models import (
    TERMINAL_STATES,
    Baseline,
    ChallengeKind,
    ChallengeSequence,
    FailureReason,
    FrameStatus,
    LandmarkFrame,
    Metrics,
    ScoringResult,
    SessionSnapshot,
    SessionState,
    VerificationResult,
)
from .baseline_calibrator import BaselineCalibrator
from .challenge_engine import ChallengeEngine
from .challenges import Challenge, build_challenge
from .face_geometry import FaceGeometryValidator
from .metric_extractor import ExtractorFault, extract_metrics
from .scoring_engine import ScoringEngine, passes_acceptance
from .snapshot import encode_snapshot

logger = logging.getLogger(__name__)

SessionListener = Callable[[SessionSnapshot], None]


@dataclass
class Session:
    """
    Aggregate state of one liveness attempt.

    Owned by exactly one ChallengeSequencer; everything else sees it through
    SessionSnapshot.
    """
    verification_id: str
    sequence: ChallengeSequence
    challenges: Tuple[Challenge, ...]
    history: Deque[Metrics]
    state: SessionState = SessionState.LOADING
    current_index: int = 0
    hold_counter: int = 0
    baseline: Optional[Baseline] = None
    spoof_score: Optional[float] = None
    scoring: Optional[ScoringResult] = None
    completed_challenges: List[str] = field(default_factory=list)
    snapshot: Optional[str] = None
    failure_reason: Optional[FailureReason] = None
    calibration_started_at: Optional[float] = None
    challenge_started_at: Optional[float] = None
    previous_frame: Optional[LandmarkFrame] = None
    face_present: bool = False
    frame_status: FrameStatus = FrameStatus.IGNORED
    diagnostics: Counter = field(default_factory=Counter)

    @property
    def current_challenge(self) -> Optional[Challenge]:
        if self.current_index < len(self.challenges):
            return self.challenges[self.current_index]
        return None

    @property
    def assigned_challenges(self) -> List[str]:
        return [c.challenge_id for c in self.challenges]

    @property
    def all_completed(self) -> bool:
        return set(self.assigned_challenges) <= set(self.completed_challenges)


class ChallengeSequencer:
    """
    Drives a session from LOADING through CALIBRATING and CHALLENGING to
    COMPLETED or FAILED, one frame at a time.

    Per-frame problems (no face, implausible geometry, malformed landmarks)
    never raise; they show up as the snapshot's ``frame_status``. Only
    misuse by the caller raises SessionStateError.
    """

    def __init__(
        self,
        settings: Optional[LivenessConfig] = None,
        verification_id: Optional[str] = None,
        seed: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        challenge_engine: Optional[ChallengeEngine] = None,
        scoring_engine: Optional[ScoringEngine] = None,
        validator: Optional[FaceGeometryValidator] = None
    ):
        self.settings = settings or LivenessConfig()
        self.clock = clock
        self.challenge_engine = challenge_engine or ChallengeEngine()
        self.scoring_engine = scoring_engine or ScoringEngine(
            self.settings.scoring_weights, self.settings.scoring
        )
        self.validator = validator or FaceGeometryValidator(self.settings.geometry)
        self._listeners: List[SessionListener] = []
        self._torn_down = False
        self._time_anchor: Optional[Tuple[float, float]] = None
        self.session = self._new_session(verification_id or str(uuid.uuid4()), seed)
        self._calibrator = BaselineCalibrator(self.settings.calibration_sample_count)

    def _new_session(self, verification_id: str, seed: Optional[int]) -> Session:
        sequence = self.challenge_engine.generate_challenge_sequence(
            verification_id,
            kinds=[ChallengeKind(k) for k in self.settings.challenge_kinds],
            num_challenges=self.settings.challenge_count,
            seed=seed,
        )
        challenges = tuple(build_challenge(kind, self.settings) for kind in sequence.challenges)
        logger.info(
            f"Session {verification_id} created with challenges "
            f"{[c.challenge_id for c in challenges]} (seed={sequence.seed})"
        )
        return Session(
            verification_id=verification_id,
            sequence=sequence,
            challenges=challenges,
            history=deque(maxlen=self.settings.history_window_size),
        )

    # ------------------------------------------------------------------
    # Caller-driven transitions
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self.session.state

    def mark_ready(self) -> SessionSnapshot:
        """Camera and landmark model are available; start validating frames"""
        self._require_state(SessionState.LOADING)
        self._transition(SessionState.READY)
        return self._emit(FrameStatus.IGNORED)

    def start_calibration(self, now: Optional[float] = None) -> bool:
        """
        Begin collecting the baseline, typically on explicit user action.

        Args:
            now: Current time in seconds (defaults to the time of the latest frame,
                advanced by the sequencer clock)

        Returns:
            bool: False when no valid face is currently in view

        Raises:
            SessionStateError: The session is not READY
        """
        self._require_state(SessionState.READY)
        if not self.session.face_present:
            logger.debug(f"Session {self.session.verification_id}: calibration requested without a face")
            return False

        self._calibrator.reset()
        self.session.calibration_started_at = self._now(now)
        self._transition(SessionState.CALIBRATING)
        self._emit(self.session.frame_status)
        return True

    def fail(self, reason: FailureReason) -> SessionSnapshot:
        """
        Terminate the session, e.g. when a caller-level session timeout expires.

        Raises:
            SessionStateError: The session already reached a terminal state
        """
        if self.session.state in TERMINAL_STATES:
            raise SessionStateError(f"Session already {self.session.state.value}")
        self._fail(reason)
        return self._emit(self.session.frame_status)

    def check_timeout(self, now: Optional[float] = None) -> bool:
        """
        Apply calibration and per-challenge timeouts without a new frame.

        Returns:
            bool: True if the session failed because of a timeout
        """
        if self._torn_down:
            return False
        if self._check_timeouts(self._now(now)):
            self._emit(self.session.frame_status)
            return True
        return False

    def retry(self) -> SessionSnapshot:
        """
        Start a fresh attempt after a failure.

        The verification id and subscribers are kept; baseline, history and
        challenge order are discarded and drawn anew.

        Raises:
            SessionStateError: The session is not FAILED
        """
        self._require_state(SessionState.FAILED)
        verification_id = self.session.verification_id
        self.session = self._new_session(verification_id, None)
        self._calibrator = BaselineCalibrator(self.settings.calibration_sample_count)
        self._transition(SessionState.READY)
        return self._emit(FrameStatus.IGNORED)

    def mark_gap(self) -> None:
        """The host dropped frames; do not measure movement across the gap"""
        self.session.previous_frame = None
        self.session.diagnostics['gaps'] += 1

    def teardown(self) -> None:
        """Discard buffers and subscribers; safe to call in any state"""
        if self._torn_down:
            return
        self._torn_down = True
        self.session.history.clear()
        self.session.previous_frame = None
        self.session.snapshot = None
        self._listeners.clear()
        logger.info(f"Session {self.session.verification_id} torn down in state {self.session.state.value}")

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """
        Receive a SessionSnapshot after every processed frame and transition.

        Returns:
            Callable[[], None]: Call to unsubscribe
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def snapshot(self) -> SessionSnapshot:
        s = self.session
        challenge = s.current_challenge
        in_challenge = s.state == SessionState.CHALLENGING and challenge is not None
        return SessionSnapshot(
            verification_id=s.verification_id,
            state=s.state,
            frame_status=s.frame_status,
            current_challenge=challenge.kind if in_challenge else None,
            prompt=challenge.prompt if in_challenge else None,
            hold_counter=s.hold_counter,
            required_hold_frames=challenge.required_hold_frames if in_challenge else 0,
            completed_challenges=tuple(s.completed_challenges),
            progress=len(s.completed_challenges) / len(s.challenges) if s.challenges else 0.0,
            calibration_samples=self._calibrator.samples,
            failure_reason=s.failure_reason,
            score=s.spoof_score,
        )

    def result(self) -> Optional[VerificationResult]:
        """
        Final outcome, available once the session is COMPLETED or FAILED.

        Returns:
            Optional[VerificationResult]: None while the session is still running
        """
        s = self.session
        if s.state not in TERMINAL_STATES:
            return None
        return VerificationResult(
            verification_id=s.verification_id,
            passed=s.state == SessionState.COMPLETED,
            score=s.spoof_score if s.spoof_score is not None else 0.0,
            completed_challenges=list(s.completed_challenges),
            snapshot=s.snapshot,
            failure_reason=s.failure_reason,
        )

    # ------------------------------------------------------------------
    # Frame processing
    # ------------------------------------------------------------------

    def process_frame(
        self,
        frame: Optional[LandmarkFrame],
        image: Optional[np.ndarray] = None,
        now: Optional[float] = None
    ) -> SessionSnapshot:
        """
        Process one frame in arrival order.

        Args:
            frame: Landmarks from the detector, or None when no face was found
            image: The source video frame, used only for the completion snapshot
            now: Frame time in seconds; defaults to the frame timestamp, then the clock

        Returns:
            SessionSnapshot: State after this frame
        """
        s = self.session
        if self._torn_down or s.state in TERMINAL_STATES or s.state == SessionState.LOADING:
            s.frame_status = FrameStatus.IGNORED
            return self.snapshot()

        if now is None and frame is not None and frame.timestamp is not None:
            now = frame.timestamp
        if now is None:
            now = self._now(None)
        else:
            self._time_anchor = (now, self.clock())

        if self._check_timeouts(now):
            return self._emit(s.frame_status)

        metrics, status = self._measure(frame)
        if metrics is None:
            self._on_face_lost()
            return self._emit(status)

        s.face_present = True
        s.history.append(metrics)
        s.previous_frame = frame

        if s.state == SessionState.CALIBRATING:
            self._calibrate(metrics, now)
        elif s.state == SessionState.CHALLENGING:
            self._evaluate_challenge(metrics, image, now)

        return self._emit(FrameStatus.ACCEPTED)

    def _measure(self, frame: Optional[LandmarkFrame]) -> Tuple[Optional[Metrics], FrameStatus]:
        diagnostics = self.session.diagnostics
        if frame is None:
            diagnostics[FrameStatus.NO_FACE.value] += 1
            return None, FrameStatus.NO_FACE

        try:
            geometry = self.validator.validate(frame)
            if not geometry.accepted:
                diagnostics[f"{FrameStatus.INVALID_GEOMETRY.value}:{geometry.reason.value}"] += 1
                return None, FrameStatus.INVALID_GEOMETRY
            metrics = extract_metrics(frame, self.session.previous_frame)
        except ExtractorFault as e:
            diagnostics[FrameStatus.EXTRACTOR_FAULT.value] += 1
            logger.warning(f"Session {self.session.verification_id}: malformed landmark frame ignored: {e}")
            return None, FrameStatus.EXTRACTOR_FAULT

        return metrics, FrameStatus.ACCEPTED

    def _on_face_lost(self) -> None:
        s = self.session
        s.face_present = False
        if s.state == SessionState.CALIBRATING and self._calibrator.samples:
            logger.debug(f"Session {s.verification_id}: face lost, restarting calibration")
            self._calibrator.reset()
        elif s.state == SessionState.CHALLENGING:
            s.hold_counter = 0
            if s.current_challenge is not None:
                s.current_challenge.reset()

    def _calibrate(self, metrics: Metrics, now: float) -> None:
        s = self.session
        baseline = self._calibrator.add(metrics)
        if baseline is None:
            return
        s.baseline = baseline
        s.challenge_started_at = now
        logger.info(
            f"Session {s.verification_id} baseline: eye={baseline.resting_eye_openness:.4f}, "
            f"mouth={baseline.resting_mouth_ratio:.4f}, yaw={baseline.resting_yaw:.2f}"
        )
        self._transition(SessionState.CHALLENGING)

    def _evaluate_challenge(self, metrics: Metrics, image: Optional[np.ndarray], now: float) -> None:
        s = self.session
        challenge = s.current_challenge

        if not challenge.evaluate(metrics, s.baseline):
            s.hold_counter = max(0, s.hold_counter - 1)
            return

        s.hold_counter += 1
        if s.hold_counter < challenge.required_hold_frames:
            return

        s.completed_challenges.append(challenge.challenge_id)
        s.hold_counter = 0
        s.current_index += 1
        logger.info(
            f"Session {s.verification_id}: challenge '{challenge.challenge_id}' completed "
            f"({len(s.completed_challenges)}/{len(s.challenges)})"
        )

        if s.current_challenge is None:
            self._finish(image)
        else:
            s.challenge_started_at = now

    def _finish(self, image: Optional[np.ndarray]) -> None:
        s = self.session
        result = self.scoring_engine.compute_score(
            s.history, s.completed_challenges, s.assigned_challenges
        )
        s.scoring = result
        s.spoof_score = result.final_score

        if not passes_acceptance(result.final_score, s.all_completed, self.settings.min_acceptance_score):
            logger.info(
                f"Session {s.verification_id}: score {result.final_score:.3f} below "
                f"{self.settings.min_acceptance_score:.2f}"
            )
            self._fail(FailureReason.SCORE_BELOW_THRESHOLD)
            return

        try:
            s.snapshot = encode_snapshot(image)
        except ValueError as e:
            logger.warning(f"Session {s.verification_id}: snapshot not captured: {e}")
        self._transition(SessionState.COMPLETED)

    def _check_timeouts(self, now: float) -> bool:
        s = self.session
        if s.state == SessionState.CALIBRATING:
            elapsed_ms = (now - s.calibration_started_at) * 1000.0
            if elapsed_ms > self.settings.calibration_timeout_ms:
                self._fail(FailureReason.CALIBRATION_INCOMPLETE)
                return True
        elif s.state == SessionState.CHALLENGING:
            elapsed_ms = (now - s.challenge_started_at) * 1000.0
            if elapsed_ms > self.settings.challenge_timeout_ms:
                self._fail(FailureReason.CHALLENGE_TIMEOUT)
                return True
        return False

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _now(self, now: Optional[float]) -> float:
        """
        Resolve a time reading on the timeline the frames are using.

        Once frames carry their own time (an explicit ``now`` or a frame
        timestamp), calls without ``now`` extrapolate from the last such
        reading with the sequencer clock instead of mixing the two bases.
        """
        if now is not None:
            return now
        if self._time_anchor is None:
            return self.clock()
        frame_time, clock_time = self._time_anchor
        return frame_time + (self.clock() - clock_time)

    def _require_state(self, expected: SessionState) -> None:
        if self.session.state != expected:
            raise SessionStateError(
                f"Expected session state {expected.value}, found {self.session.state.value}"
            )

    def _fail(self, reason: FailureReason) -> None:
        self.session.failure_reason = reason
        self._transition(SessionState.FAILED)

    def _transition(self, state: SessionState) -> None:
        s = self.session
        logger.info(f"Session {s.verification_id}: {s.state.value} -> {state.value}")
        s.state = state

    def _emit(self, status: FrameStatus) -> SessionSnapshot:
        self.session.frame_status = status
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception(f"Session listener {listener!r} failed")
        return snapshot
