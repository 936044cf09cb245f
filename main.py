#!/usr/bin/env python3
"""
Gesture-to-text recognition.
Application entry point and wiring of the recognition core.

Architecture:
    - GestureContext owns the dataset and the installed model
    - core.Pipeline handles the pose -> verdict -> stability -> text cycle
    - core.EventBus for decoupled module communication
    - Pose acquisition is external: poses are replayed from JSON lines

Pose file format (one JSON object per line)::

    {"t": 1033, "landmarks": [[x, y, z], ... 21 points]}
    {"t": 1066, "landmarks": null}                         # no hand this tick

Usage:
    python main.py --mode stats  --dataset gestures.json
    python main.py --mode record --dataset gestures.json --gesture hello --poses hello.jsonl
    python main.py --mode train  --dataset gestures.json
    python main.py --mode replay --poses session.jsonl
"""

import sys
import os
import json
import signal
import argparse
import logging

import yaml

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, PROJECT_ROOT)

from modules.utils.config import Config
from modules.utils.logger import setup_logging, GestureLogger
from modules.capture.gesture_recorder import GestureRecorder, RecordingConfig
from modules.control.text_accumulator import TextAccumulator
from modules.recognition.recognition_engine import RecognitionEngine, RecognitionConfig
from modules.recognition.stability_buffer import StabilityBuffer, StabilityConfig
from modules.storage.persistence import create_adapter

from core.context import GestureContext
from core.errors import GestureError, TrainingError
from core.events import EventBus, Events
from core.pipeline import Pipeline
from training.dataset import GestureDataset
from training.train import TrainingConfig

logger = logging.getLogger(__name__)


class GestureToTextApp:
    """Main application wiring the recognition core together.

    Delegates the per-frame cycle to core.Pipeline and uses EventBus for
    decoupled module communication.
    """

    def __init__(self, config: Config, text_mapping: dict = None):
        self._config = config
        self._running = False

        # --- Event Bus ---
        self._bus = EventBus()

        # --- State ---
        persistence = create_adapter(config.persistence)
        self._context = GestureContext(
            dataset=GestureDataset(),
            training_config=TrainingConfig.from_dict(config.training),
            persistence=persistence,
            event_bus=self._bus,
        )

        # --- Recognition ---
        self._engine = RecognitionEngine(self._context, RecognitionConfig.from_dict(config.recognition))
        self._stability = StabilityBuffer(StabilityConfig.from_dict(config.stability))

        # --- Text / recording ---
        mapping = dict(config.text.get("mapping") or {})
        mapping.update(text_mapping or {})
        self._text = TextAccumulator(mapping, event_bus=self._bus)
        self._recorder = GestureRecorder(
            self._context.dataset, RecordingConfig.from_dict(config.recording), event_bus=self._bus,
        )
        self._gesture_logger = GestureLogger()

        # --- Build Pipeline ---
        self._pipeline = Pipeline(
            context=self._context,
            engine=self._engine,
            stability=self._stability,
            text=self._text,
            recorder=self._recorder,
            event_bus=self._bus,
            config={"frame_budget_ms": config.get("detection.frame_budget_ms", 33.0)},
        )

        # --- Wire Event Callbacks ---
        self._bus.subscribe(Events.GESTURE_EMITTED, self._gesture_logger.on_gesture_emitted)
        self._bus.subscribe(Events.PERSISTENCE_ERROR, self._on_persistence_error)
        self._bus.subscribe(Events.RECORDING_FINISHED, self._on_recording_finished)

        logger.info("GestureToTextApp initialized")

    @property
    def context(self) -> GestureContext:
        return self._context

    @property
    def text(self) -> str:
        return self._text.text

    def _on_persistence_error(self, **kwargs):
        logger.warning("Persistence %s failed: %s", kwargs.get("operation"), kwargs.get("error"))

    def _on_recording_finished(self, **kwargs):
        logger.info("Recorded %d samples for %r", kwargs.get("samples", 0), kwargs.get("name"))

    # ------------------------------------------------------------------
    # Dataset files
    # ------------------------------------------------------------------

    def load_dataset(self, path: str) -> bool:
        """Import an exported dataset; a missing file starts empty."""
        if not os.path.exists(path):
            logger.info("No dataset at %s, starting empty", path)
            return False
        with open(path, "r") as f:
            self._context.dataset.import_data(f.read())
        for name, count in self._context.dataset.stats().items():
            logger.info("  %-15s %d samples", name, count)
        return True

    def save_dataset(self, path: str):
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, "w") as f:
            f.write(self._context.dataset.export())
        logger.info("Dataset saved to %s (%d samples)", path, self._context.dataset.total_samples)

    # ------------------------------------------------------------------
    # Modes
    # ------------------------------------------------------------------

    def run_stats(self):
        dataset = self._context.dataset
        logger.info("=== DATASET ===")
        if not len(dataset):
            logger.info("  (empty)")
        for name, count in dataset.stats().items():
            logger.info("  %-15s %d samples", name, count)
        logger.info("  %d gestures, %d samples total", len(dataset.list_names()), dataset.total_samples)
        if self._context.load_model():
            logger.info("Saved model covers: %s", ", ".join(self._context.labels))
        else:
            logger.info("No trained model available")

    def run_record(self, gesture_name: str, poses_path: str, overwrite: bool = False) -> int:
        """Record one gesture from a pose file; returns samples added."""
        self._recorder.start(gesture_name, overwrite=overwrite)
        self._pipeline.start()
        self._running = True
        for now, pose in read_poses(poses_path, self._config.get("detection.interval_ms", 33)):
            if not self._running or not self._recorder.is_recording:
                break
            self._pipeline.on_pose(pose, now=now)

        if self._recorder.is_recording:
            # Pose file ended before the session finished on its own
            self._recorder.finish()
        self._pipeline.stop()
        return self._recorder.last_added

    def run_train(self) -> bool:
        """Train on the loaded dataset; the model is installed and saved."""
        def report(epoch, total, acc, val_acc):
            if epoch % 5 == 0 or epoch <= 3 or epoch == total:
                logger.info("Epoch %3d/%d | acc=%.3f | val_acc=%.3f", epoch, total, acc, val_acc)

        try:
            result = self._context.train(on_progress=report)
        except TrainingError as e:
            logger.error("Training failed: %s", e)
            return False
        logger.info("Model trained for: %s (val_acc=%.3f)",
                    ", ".join(result.labels), result.final_val_acc)
        return True

    def run_replay(self, poses_path: str) -> str:
        """Feed a recorded pose stream through detection; returns the text."""
        if not self._context.load_model():
            logger.warning("No trained model; every frame will be no_model_trained")

        self._pipeline.start()
        self._running = True
        for now, pose in read_poses(poses_path, self._config.get("detection.interval_ms", 33)):
            if not self._running:
                break
            self._pipeline.on_pose(pose, now=now)
        self._shutdown()
        return self._text.text

    def _shutdown(self):
        """Clean shutdown of all modules."""
        logger.info("Shutting down...")
        self._running = False
        self._pipeline.stop()

        state = self._pipeline.build_state()
        logger.info("Frames: %d (%d over budget) | Gestures: %d",
                    state["frames"], state["slow_frames"], self._gesture_logger.total_gestures)
        logger.info("Text: %r", self._text.text)
        logger.info("Shutdown complete.")

    def close(self):
        self._context.close()

    def handle_signal(self, signum, frame):
        """Handle SIGINT/SIGTERM for graceful shutdown."""
        logger.info("Signal %d received, shutting down...", signum)
        self._running = False


def read_poses(path: str, interval_ms: float = 33):
    """Yield ``(timestamp_ms, landmarks | None)`` from a JSON-lines pose file.

    Lines without ``"t"`` are spaced ``interval_ms`` after the previous one.
    """
    now = 0.0
    with open(path, "r") as f:
        for line_no, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning("Skipping malformed pose line %d: %s", line_no, e)
                continue
            if isinstance(record, dict):
                now = float(record["t"]) if "t" in record else now + interval_ms
                yield now, record.get("landmarks")
            else:
                now += interval_ms
                yield now, record


def load_text_mapping(path: str) -> dict:
    """Gesture → text mapping from a YAML (or JSON) file."""
    with open(path, "r") as f:
        mapping = yaml.safe_load(f) or {}
    if not isinstance(mapping, dict):
        raise ValueError("Text mapping in %s must be a mapping" % path)
    return {str(k): str(v) for k, v in mapping.items()}


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Gesture-to-text recognition"
    )
    parser.add_argument(
        "--mode", choices=["replay", "record", "train", "stats"],
        default="replay", help="Operating mode"
    )
    parser.add_argument(
        "--config", type=str, default=None,
        help="Path to config.yaml"
    )
    parser.add_argument(
        "--dataset", type=str, default=None,
        help="Dataset JSON (labels + dataset) to load and, after recording, save"
    )
    parser.add_argument(
        "--poses", type=str, default=None,
        help="JSON-lines pose stream for replay/record"
    )
    parser.add_argument(
        "--gesture", type=str, default=None,
        help="Gesture name to record"
    )
    parser.add_argument(
        "--overwrite", action="store_true",
        help="Replace an existing gesture when recording"
    )
    parser.add_argument(
        "--model-dir", type=str, default=None,
        help="Directory holding the saved model"
    )
    parser.add_argument(
        "--text-map", type=str, default=None,
        help="YAML/JSON mapping of gesture name to text"
    )
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    # Load configuration
    config = Config().load(config_path=args.config)
    if args.model_dir is not None:
        config.set("persistence.model_dir", args.model_dir)

    # Setup logging
    log_cfg = config.logging
    setup_logging(
        level=log_cfg.get("level", "INFO"),
        log_file=log_cfg.get("file"),
        max_size_mb=log_cfg.get("max_size_mb", 10),
        backup_count=log_cfg.get("backup_count", 3),
    )

    logger.info("=" * 60)
    logger.info("  GESTURE TO TEXT")
    logger.info("  Mode: %s", args.mode)
    logger.info("=" * 60)

    if args.mode in ("replay", "record") and not args.poses:
        logger.error("--poses is required in %s mode", args.mode)
        return 2
    if args.mode in ("record", "train", "stats") and not args.dataset:
        logger.error("--dataset is required in %s mode", args.mode)
        return 2
    if args.mode == "record" and not args.gesture:
        logger.error("--gesture is required in record mode")
        return 2

    try:
        text_mapping = load_text_mapping(args.text_map) if args.text_map else None
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.error("Could not load text mapping: %s", e)
        return 1

    # Create application
    app = GestureToTextApp(config, text_mapping=text_mapping)

    # Register signal handlers
    signal.signal(signal.SIGINT, app.handle_signal)
    signal.signal(signal.SIGTERM, app.handle_signal)

    try:
        if args.dataset:
            app.load_dataset(args.dataset)

        if args.mode == "stats":
            app.run_stats()
        elif args.mode == "record":
            added = app.run_record(args.gesture, args.poses, overwrite=args.overwrite)
            app.save_dataset(args.dataset)
            logger.info("Gesture %r: %d samples added", args.gesture, added)
        elif args.mode == "train":
            if not app.run_train():
                return 1
        else:
            text = app.run_replay(args.poses)
            print(text)
    except (OSError, ValueError, GestureError) as e:
        logger.error("%s", e)
        return 1
    finally:
        app.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
