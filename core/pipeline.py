"""
Detection loop for the gesture-to-text system.

One call to :meth:`Pipeline.on_pose` is one frame tick:

    pose ─┬─ recording?  → GestureRecorder.record
          └─ otherwise   → RecognitionEngine → StabilityBuffer
                            → gesture_emitted → TextAccumulator

Pose acquisition (camera, hand landmark detection) lives outside this
module; the producer hands in 21 landmarks per tick, or None when no
hand was seen.
"""

import time
import logging

from core.events import EventBus, Events
from core.types import now_ms

logger = logging.getLogger(__name__)

FRAME_BUDGET_MS = 33.0


class PipelineResult:
    """Result of a single pipeline iteration."""

    __slots__ = (
        "hand_detected", "verdict", "emitted", "text",
        "recording", "recorded", "latency_ms", "frame_id", "timestamp",
    )

    def __init__(self):
        self.hand_detected = False
        self.verdict = None
        self.emitted = None
        self.text = ""
        self.recording = False
        self.recorded = False
        self.latency_ms = 0.0
        self.frame_id = 0
        self.timestamp = 0.0


class Pipeline:
    """Composable detection loop: recognize, stabilize, accumulate text.

    Usage::

        pipeline = Pipeline(context, engine, stability, text, recorder, bus)
        pipeline.start()
        for landmarks in producer:
            result = pipeline.on_pose(landmarks)
        pipeline.stop()
    """

    def __init__(self, context, engine, stability, text=None, recorder=None,
                 event_bus=None, config=None):
        self._context = context
        self._engine = engine
        self._stability = stability
        self._text = text
        self._recorder = recorder
        self._bus = event_bus or EventBus()

        config = config or {}
        self._frame_budget_ms = config.get("frame_budget_ms", FRAME_BUDGET_MS)

        self._running = False
        self._frame_count = 0
        self._slow_frames = 0
        self._current_gesture = None
        self._current_confidence = 0.0

        if self._text is not None:
            self._bus.subscribe(Events.GESTURE_EMITTED, self._text.on_gesture_emitted)

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self):
        if self._running:
            return
        self._running = True
        logger.info("Detection started")
        self._bus.emit(Events.DETECTION_STARTED)

    def stop(self):
        """Stop detection; the stability window and any recording are dropped."""
        if not self._running:
            return
        self._running = False
        self._stability.reset()
        if self._recorder is not None and self._recorder.is_recording:
            self._recorder.cancel()
        self._current_gesture = None
        self._current_confidence = 0.0
        logger.info("Detection stopped after %d frames", self._frame_count)
        self._bus.emit(Events.DETECTION_STOPPED, frames=self._frame_count)

    def on_pose(self, pose, now=None) -> PipelineResult:
        """Execute one pipeline iteration.

        Args:
            pose: 21 landmarks, or None when no hand was detected this tick
            now: timestamp in ms (defaults to a monotonic clock)

        Returns:
            PipelineResult with recognition/recording/emission data
        """
        tick_start = time.perf_counter()
        result = PipelineResult()
        if now is None:
            now = now_ms()
        result.timestamp = now

        if not self._running:
            return result

        self._frame_count += 1
        result.frame_id = self._frame_count

        if pose is None:
            # No hand: no verdict this tick, not an error
            self._current_gesture = None
            self._current_confidence = 0.0
            self._bus.emit(Events.HAND_LOST)
            self._finish(result, tick_start)
            return result

        result.hand_detected = True

        if self._recorder is not None and self._recorder.is_recording:
            result.recording = True
            result.recorded = self._recorder.record(pose, now=now)
            self._finish(result, tick_start)
            return result

        verdict = self._engine.recognize(pose)
        result.verdict = verdict
        self._bus.emit(Events.VERDICT, verdict=verdict)

        if verdict.is_sentinel:
            self._current_gesture = None
            self._current_confidence = 0.0
        else:
            self._current_gesture = verdict.name
            self._current_confidence = verdict.confidence

        emitted = self._stability.update(verdict, now=now)
        if emitted is not None:
            result.emitted = emitted
            self._bus.emit(Events.GESTURE_EMITTED, name=emitted,
                           confidence=verdict.confidence)

        self._finish(result, tick_start)
        return result

    def _finish(self, result, tick_start):
        if self._text is not None:
            result.text = self._text.text
        result.latency_ms = (time.perf_counter() - tick_start) * 1000.0
        if result.latency_ms > self._frame_budget_ms:
            self._slow_frames += 1
            logger.debug("Frame %d took %.1fms (budget %.0fms)",
                         result.frame_id, result.latency_ms, self._frame_budget_ms)

    def build_state(self) -> dict:
        """State dict for status displays."""
        return {
            "running": self._running,
            "trained": self._context.is_trained,
            "labels": self._context.labels,
            "gesture_name": self._current_gesture,
            "gesture_confidence": self._current_confidence,
            "recording": self._recorder is not None and self._recorder.is_recording,
            "text": self._text.text if self._text is not None else "",
            "buffer": self._stability.contents,
            "frames": self._frame_count,
            "slow_frames": self._slow_frames,
        }

    @property
    def frame_count(self) -> int:
        return self._frame_count

    @property
    def current_gesture(self) -> str:
        return self._current_gesture

    @property
    def current_confidence(self) -> float:
        return self._current_confidence
