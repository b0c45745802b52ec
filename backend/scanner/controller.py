"""Capture state machine: frame throttling, capture decisions and cooldown."""
from __future__ import annotations

import dataclasses
import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor

from scanner.adapter import normalize
from scanner.exceptions import FrameSourceError
from scanner.fusion import (
    STATUS_CAMERA_UNAVAILABLE,
    STATUS_CAPTURE_FAILED,
    STATUS_CAPTURED,
    STATUS_RESUME_FAILED,
    STATUS_SEARCHING,
    STATUS_STOPPED,
    STATUS_STREAM_ENDED,
    decide,
    outcome_for,
)
from scanner.protocols import (
    CaptureSink,
    FrameSource,
    MarkerDetector,
    ObjectDetector,
    StatusReporter,
)
from scanner.types import (
    CaptureArtifact,
    CaptureDecision,
    DetectionRound,
    Frame,
    MarkerKind,
    PipelineState,
    PixelFormat,
    ScannerConfig,
    ScannerSnapshot,
    ScanStats,
)

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_SECONDS = 0.8
DETECTION_ERROR_LOG_EVERY = 100


class ScanController:
    """
    Owns the scanner pipeline state.

    Every mutation of the state, the in-flight guard, the current artifact and
    the counters happens under one lock. Detection rounds, captures and
    resumes run on a single worker, so at most one round executes at a time.
    Frames that arrive while a round is in flight, or while the pipeline is
    not streaming, are dropped.
    """

    def __init__(
        self,
        frame_source: FrameSource,
        object_detector: ObjectDetector,
        marker_detector: MarkerDetector,
        capture_sink: CaptureSink,
        status_reporter: StatusReporter,
        pixel_format: PixelFormat = PixelFormat.NV21,
        sensor_orientation: int | None = None,
        marker_kind: MarkerKind = MarkerKind.QR_CODE,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        executor: Executor | None = None,
    ):
        self._frame_source = frame_source
        self._object_detector = object_detector
        self._marker_detector = marker_detector
        self._capture_sink = capture_sink
        self._status_reporter = status_reporter
        self._pixel_format = pixel_format
        self._sensor_orientation = sensor_orientation
        self._marker_kind = marker_kind
        self._cooldown_seconds = cooldown_seconds

        self._lock = threading.Lock()
        self._state = PipelineState.STOPPED
        self._in_flight = False
        self._starting = False
        self._closed = False
        self._status = STATUS_STOPPED
        self._show_preview = False
        self._last_decision: CaptureDecision | None = None
        self._artifact: CaptureArtifact | None = None
        self._stats = ScanStats()
        self._cooldown_timer: threading.Timer | None = None

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="scanner-worker",
        )

    @classmethod
    def from_config(
        cls,
        config: ScannerConfig,
        frame_source: FrameSource,
        object_detector: ObjectDetector,
        marker_detector: MarkerDetector,
        capture_sink: CaptureSink,
        status_reporter: StatusReporter,
        executor: Executor | None = None,
    ) -> ScanController:
        return cls(
            frame_source=frame_source,
            object_detector=object_detector,
            marker_detector=marker_detector,
            capture_sink=capture_sink,
            status_reporter=status_reporter,
            pixel_format=config.pixel_format,
            sensor_orientation=config.sensor_orientation,
            marker_kind=config.marker_kind,
            cooldown_seconds=config.cooldown_seconds,
            executor=executor,
        )

    @property
    def state(self) -> PipelineState:
        with self._lock:
            return self._state

    def snapshot(self) -> ScannerSnapshot:
        with self._lock:
            return ScannerSnapshot(
                state=self._state,
                status=self._status,
                show_preview=self._show_preview,
                last_decision=self._last_decision,
                last_artifact=self._artifact,
                stats=dataclasses.replace(self._stats),
            )

    # ==================== Lifecycle ====================

    def start(self) -> bool:
        """Begin streaming. Returns False if the camera could not be acquired."""
        return self._begin_streaming(clear_artifact=False)

    def rescan(self) -> bool:
        """Restart scanning after the pipeline was left stopped."""
        return self._begin_streaming(clear_artifact=True)

    def shutdown(self):
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._state = PipelineState.STOPPED
            self._status = STATUS_STOPPED
            timer = self._cooldown_timer
            self._cooldown_timer = None

        if timer:
            timer.cancel()

        self._stop_source_quietly()

        for detector in (self._object_detector, self._marker_detector):
            try:
                detector.close()
            except Exception:
                logger.exception("Failed to close detector %r", detector)

        if self._owns_executor:
            # An in-flight round is abandoned; it cannot mutate state once closed.
            self._executor.shutdown(wait=False, cancel_futures=True)
        logger.info("Scanner shutdown complete")

    def _begin_streaming(self, clear_artifact: bool) -> bool:
        with self._lock:
            if self._closed or self._starting or self._state is not PipelineState.STOPPED:
                return False
            self._starting = True
            if clear_artifact:
                self._artifact = None

        try:
            self._frame_source.start(self.on_frame, self._on_stream_ended)
        except Exception as exc:
            status = f"{STATUS_CAMERA_UNAVAILABLE}: {exc}"
            with self._lock:
                self._starting = False
                if self._closed:
                    return False
                self._status = status
            logger.error("Failed to start frame source: %s", exc)
            self._report(status)
            return False

        with self._lock:
            self._starting = False
            closed = self._closed
            if not closed:
                self._state = PipelineState.STREAMING
                self._status = STATUS_SEARCHING
        if closed:
            self._stop_source_quietly()
            return False
        logger.info("Scanner streaming")
        self._report(STATUS_SEARCHING)
        return self._check_source_alive()

    # ==================== Frame intake ====================

    def on_frame(self, frame: Frame):
        """Frame source callback. Never blocks and never queues."""
        with self._lock:
            self._stats.frames_received += 1
            if self._closed or self._state is not PipelineState.STREAMING:
                self._stats.frames_dropped_not_streaming += 1
                return
            if self._in_flight:
                self._stats.frames_dropped_busy += 1
                return
            self._in_flight = True

        try:
            self._executor.submit(self._process_frame, frame)
        except RuntimeError:
            # Executor already shut down.
            with self._lock:
                self._in_flight = False

    def _on_stream_ended(self, exc: Exception):
        """Frame source callback for a stream that stopped without being asked to."""
        status = f"{STATUS_STREAM_ENDED}: {exc}"
        with self._lock:
            if self._closed or self._state is not PipelineState.STREAMING:
                return
            self._state = PipelineState.STOPPED
            self._show_preview = False
            self._stats.stream_failures += 1
            self._status = status
        logger.error("Frame source stopped delivering frames: %s", exc)
        self._report(status)

    def run_detection_round(self, frame: Frame) -> DetectionRound:
        """Adapter, object detector, then marker detector only if objects were found."""
        orientation = (
            self._sensor_orientation
            if self._sensor_orientation is not None
            else frame.sensor_orientation
        )
        try:
            image = normalize(frame, orientation, self._pixel_format)
            objects = list(self._object_detector.detect(image))
            if not objects:
                return DetectionRound(decision=CaptureDecision.NO_OBJECT)
            markers = list(self._marker_detector.detect(image))
        except Exception as exc:
            return DetectionRound(error=exc)

        return DetectionRound(
            decision=decide(objects, markers, self._marker_kind),
            object_count=len(objects),
            marker_count=len(markers),
        )

    def _process_frame(self, frame: Frame):
        try:
            result = self.run_detection_round(frame)
            with self._lock:
                if self._closed:
                    return
                self._stats.frames_processed += 1

            if not result.ok:
                self._record_detection_error(frame, result.error)
                return
            logger.debug(
                "Frame %s: %d object(s), %d marker(s) -> %s",
                frame.frame_index, result.object_count, result.marker_count, result.decision.value,
            )
            self._apply_decision(result.decision)
        except Exception:
            logger.exception("Unexpected failure while processing frame %s", frame.frame_index)
        finally:
            with self._lock:
                self._in_flight = False

    def _record_detection_error(self, frame: Frame, error: Exception | None):
        with self._lock:
            if self._closed:
                return
            self._stats.detection_errors += 1
            count = self._stats.detection_errors

        logger.debug("Detection failed for frame %s: %r", frame.frame_index, error)
        if count == 1 or count % DETECTION_ERROR_LOG_EVERY == 0:
            logger.warning("%d detection round(s) failed so far; latest: %s", count, error)

    def _apply_decision(self, decision: CaptureDecision):
        outcome = outcome_for(decision)
        with self._lock:
            if self._closed or self._state is not PipelineState.STREAMING:
                return
            self._last_decision = decision
            self._show_preview = outcome.show_preview
            self._status = outcome.status
            if outcome.trigger_capture:
                self._state = PipelineState.CAPTURING

        self._report(outcome.status)
        if outcome.trigger_capture:
            self._capture()

    # ==================== Capture / cooldown ====================

    def _capture(self):
        logger.info("Marker aligned with object; capturing still")
        try:
            self._frame_source.stop()
            artifact = self._capture_sink.capture()
        except Exception as exc:
            self._on_capture_failed(exc)
            return
        self._on_capture_succeeded(artifact)

    def _on_capture_succeeded(self, artifact: CaptureArtifact):
        with self._lock:
            if self._closed:
                return
            self._artifact = artifact
            self._stats.captures += 1
            self._show_preview = False
            self._status = STATUS_CAPTURED
            self._state = PipelineState.COOLING_DOWN
            timer = threading.Timer(self._cooldown_seconds, self._cooldown_elapsed)
            timer.daemon = True
            self._cooldown_timer = timer

        logger.info("Captured %s; resuming in %.2fs", artifact.path, self._cooldown_seconds)
        self._report(STATUS_CAPTURED)
        timer.start()

    def _on_capture_failed(self, exc: Exception):
        status = f"{STATUS_CAPTURE_FAILED}: {exc}"
        with self._lock:
            if self._closed:
                return
            self._stats.capture_failures += 1
            self._status = status
        logger.warning("Capture failed: %s", exc)
        self._report(status)
        self._restart_source()

    def _cooldown_elapsed(self):
        try:
            self._executor.submit(self._resume)
        except RuntimeError:
            logger.debug("Cooldown elapsed after executor shutdown; not resuming")

    def _resume(self):
        with self._lock:
            if self._closed or self._state is not PipelineState.COOLING_DOWN:
                return
            self._cooldown_timer = None
        self._restart_source()

    def _restart_source(self) -> bool:
        # Frames from the restarted source are dropped until the state flips below.
        try:
            if not self._frame_source.is_active():
                self._frame_source.start(self.on_frame, self._on_stream_ended)
        except Exception as exc:
            status = f"{STATUS_RESUME_FAILED}: {exc}"
            with self._lock:
                if self._closed:
                    return False
                self._state = PipelineState.STOPPED
                self._stats.resume_failures += 1
                self._status = status
            logger.error("Failed to resume frame source: %s", exc)
            self._report(status)
            return False

        with self._lock:
            closed = self._closed
            if not closed:
                self._state = PipelineState.STREAMING
                self._status = STATUS_SEARCHING
        if closed:
            self._stop_source_quietly()
            return False
        logger.info("Scanning resumed")
        self._report(STATUS_SEARCHING)
        return self._check_source_alive()

    def _check_source_alive(self) -> bool:
        # An end signal that arrived while starting was ignored; catch it here.
        if self._frame_source.is_active():
            return True
        self._on_stream_ended(FrameSourceError("stream ended while starting"))
        return False

    def _stop_source_quietly(self):
        try:
            self._frame_source.stop()
        except Exception:
            logger.exception("Failed to stop frame source")

    def _report(self, message: str):
        if self._closed:
            return
        try:
            self._status_reporter.report(message)
        except Exception:
            logger.exception("Status reporter failed for %r", message)
