"""
Single-producer/single-consumer hand-off of frames to a liveness session
"""
import logging
import queue
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Optional, Tuple

import numpy as np

from ..config import config
from ..exceptions import SessionStateError
from ..models.data_models import FailureReason, LandmarkFrame
from .challenge_sequencer import ChallengeSequencer
from .landmark_detector import LandmarkDetector

logger = logging.getLogger(__name__)


@dataclass
class _QueuedFrame:
    image: Optional[np.ndarray]
    landmarks: Optional[LandmarkFrame]
    now: Optional[float]
    gap_before: bool


@dataclass
class _Command:
    """A sequencer call that has to run on the worker thread"""
    name: str
    args: Tuple = ()
    future: Future = field(default_factory=Future)


_STOP = object()


class FramePipeline:
    """
    Moves frames from a capture thread to the one thread that owns the session.

    The capture side calls ``submit`` and never blocks: when the queue is full
    the frame is dropped and the next queued frame carries a gap marker, so
    movement is never measured across missing frames. A single worker thread
    runs landmark detection (when a detector is configured) and feeds the
    sequencer in FIFO order.

    Control calls (``mark_ready``, ``start_calibration``, ``fail``, ``retry``,
    ``check_timeout``) are queued behind the frames already submitted and run
    on the worker as well; each returns a Future with the sequencer's answer.
    While no frames arrive the worker checks timeouts every ``idle_interval``
    seconds.
    """

    def __init__(
        self,
        sequencer: ChallengeSequencer,
        detector: Optional[LandmarkDetector] = None,
        queue_size: int = config.FRAME_QUEUE_SIZE,
        idle_interval: float = config.PIPELINE_IDLE_INTERVAL
    ):
        self.sequencer = sequencer
        self.detector = detector
        self.frame_queue = queue.Queue(maxsize=queue_size)
        self.idle_interval = idle_interval
        self.is_running = False
        self.dropped_frames = 0
        self.error: Optional[BaseException] = None
        self._gap_pending = False
        self._worker: Optional[threading.Thread] = None
        self._stop_requested = False
        self._torn_down = False
        self._teardown_lock = threading.Lock()

    def start(self) -> None:
        if self.is_running:
            logger.debug("Frame pipeline already running")
            return
        self.is_running = True
        self._stop_requested = False
        self._worker = threading.Thread(
            target=self._process_frames, name="liveness-frame-pipeline", daemon=True
        )
        self._worker.start()
        logger.info(f"Frame pipeline started for session {self.sequencer.session.verification_id}")

    def submit(
        self,
        image: Optional[np.ndarray] = None,
        landmarks: Optional[LandmarkFrame] = None,
        now: Optional[float] = None
    ) -> bool:
        """
        Queue one frame from the capture thread.

        With a detector configured the image is run through it; otherwise
        ``landmarks`` (None meaning no face) is passed straight through.

        Returns:
            bool: False if the frame was dropped
        """
        if not self.is_running:
            return False

        item = _QueuedFrame(image=image, landmarks=landmarks, now=now, gap_before=self._gap_pending)
        try:
            self.frame_queue.put_nowait(item)
        except queue.Full:
            self.dropped_frames += 1
            self._gap_pending = True
            logger.debug(f"Frame queue full, dropped frame ({self.dropped_frames} total)")
            return False

        self._gap_pending = False
        return True

    # ------------------------------------------------------------------
    # Session control, run on the worker thread
    # ------------------------------------------------------------------

    def mark_ready(self) -> Future:
        return self._send('mark_ready')

    def start_calibration(self, now: Optional[float] = None) -> Future:
        """Future resolving to False when no valid face was in view"""
        return self._send('start_calibration', now)

    def fail(self, reason: FailureReason) -> Future:
        return self._send('fail', reason)

    def retry(self) -> Future:
        return self._send('retry')

    def check_timeout(self, now: Optional[float] = None) -> Future:
        return self._send('check_timeout', now)

    def _send(self, name: str, *args) -> Future:
        """
        Queue a sequencer call. Unlike frames, commands are never dropped:
        the caller waits for room in the queue.

        Raises:
            SessionStateError: The pipeline is not running
        """
        if not self.is_running:
            raise SessionStateError(f"Frame pipeline is not running, cannot {name}")
        command = _Command(name=name, args=args)
        self.frame_queue.put(command)
        return command.future

    def join(self) -> None:
        """Block until every queued frame and command has been processed"""
        self.frame_queue.join()

    def stop(self, timeout: float = 1.0) -> None:
        """
        Discard pending work, stop the worker and tear the session down.

        The session is only torn down once the worker is no longer using it:
        if the worker is still busy after ``timeout`` it tears the session
        down itself when it finishes.
        """
        self.is_running = False
        self._stop_requested = True
        self._discard_pending()

        worker = self._worker
        self._worker = None
        if worker is not None and worker.is_alive():
            self.frame_queue.put(_STOP)
            worker.join(timeout)
            if worker.is_alive():
                logger.warning("Frame pipeline worker still busy, session teardown left to the worker")
                return

        self._teardown()
        logger.info(f"Frame pipeline stopped ({self.dropped_frames} frames dropped)")

    def _teardown(self) -> None:
        with self._teardown_lock:
            if self._torn_down:
                return
            self._torn_down = True
        self.sequencer.teardown()

    def _discard_pending(self) -> None:
        while True:
            try:
                item = self.frame_queue.get_nowait()
            except queue.Empty:
                return
            if isinstance(item, _Command):
                item.future.cancel()
            self.frame_queue.task_done()

    def _process_frames(self) -> None:
        try:
            self._run()
        finally:
            if self._stop_requested:
                self._teardown()

    def _run(self) -> None:
        while True:
            try:
                item = self.frame_queue.get(timeout=self.idle_interval)
            except queue.Empty:
                item = None

            try:
                if item is _STOP:
                    return
                if item is None:
                    self.sequencer.check_timeout()
                elif isinstance(item, _Command):
                    self._run_command(item)
                else:
                    self._handle(item)
            except Exception as e:
                self.error = e
                self.is_running = False
                logger.exception("Frame pipeline worker stopped on an unexpected error")
                self._discard_pending()
                return
            finally:
                if item is not None:
                    self.frame_queue.task_done()

    def _run_command(self, command: _Command) -> None:
        if not command.future.set_running_or_notify_cancel():
            return
        try:
            result = getattr(self.sequencer, command.name)(*command.args)
        except Exception as e:
            logger.debug(f"Session command {command.name} failed: {e}")
            command.future.set_exception(e)
        else:
            command.future.set_result(result)

    def _handle(self, item: _QueuedFrame) -> None:
        if item.gap_before:
            self.sequencer.mark_gap()

        landmarks = item.landmarks
        if self.detector is not None:
            # Only suspension point in the pipeline
            landmarks = self.detector.detect(item.image) if item.image is not None else None

        self.sequencer.process_frame(landmarks, image=item.image, now=item.now)

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
