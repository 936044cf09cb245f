"""
Centralized configuration manager.
Loads YAML config on top of built-in defaults and provides typed access.

    - Defaults mirror config/config.yaml so a missing file still runs
    - Schema validation for critical fields (warnings only)
    - Dot-path access: config.get("stability.window_ms")
"""

import copy
import os
import yaml
import logging

logger = logging.getLogger(__name__)

_BASE_DIR = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
_CONFIG_DIR = os.path.join(_BASE_DIR, "config")

DEFAULTS = {
    "recognition": {
        "max_distance_threshold": 10.0,
    },
    "stability": {
        "window_ms": 1000,
        "min_samples": 15,
        "stability_threshold": 0.8,
        "cooldown_ms": 4000,
        "min_confidence": 0.5,
    },
    "training": {
        "epochs": 50,
        "batch_size": 32,
        "learning_rate": 0.001,
        "train_split": 0.8,
        "hidden1": 128,
        "hidden2": 64,
        "dropout": 0.2,
        "seed": 42,
        "device": "auto",
        "min_total_samples": 0,
    },
    "recording": {
        "auto_save_delay_s": 5,
        "min_samples_auto": 50,
        "max_samples": 100,
    },
    "detection": {
        "interval_ms": 33,
        "frame_budget_ms": 33.0,
    },
    "text": {
        "mapping": {},
    },
    "persistence": {
        "backend": "directory",
        "model_dir": "models/weights",
    },
    "logging": {
        "level": "INFO",
        "file": None,
        "max_size_mb": 10,
        "backup_count": 3,
    },
}

# Schema: sections and their expected types
_CONFIG_SCHEMA = {
    "recognition": {
        "max_distance_threshold": float,
    },
    "stability": {
        "window_ms": int,
        "min_samples": int,
        "stability_threshold": float,
        "cooldown_ms": int,
        "min_confidence": float,
    },
    "training": {
        "epochs": int,
        "batch_size": int,
        "learning_rate": float,
        "train_split": float,
        "seed": int,
        "device": str,
    },
    "recording": {
        "auto_save_delay_s": float,
        "min_samples_auto": int,
        "max_samples": int,
    },
    "persistence": {
        "backend": str,
        "model_dir": str,
    },
    "text": {
        "mapping": dict,
    },
}


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base dict."""
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class Config:
    """Configuration manager. One instance is created by the application."""

    def __init__(self, data: dict = None):
        self._data = _deep_merge(copy.deepcopy(DEFAULTS), data or {})

    def load(self, config_path=None):
        """Load configuration from a YAML file onto the defaults."""
        config_path = config_path or os.path.join(_CONFIG_DIR, "config.yaml")

        try:
            with open(config_path, "r") as f:
                loaded = yaml.safe_load(f) or {}
            logger.info("Loaded config from %s", config_path)
        except FileNotFoundError:
            logger.warning("Config file not found: %s, using defaults", config_path)
            loaded = {}
        except yaml.YAMLError as e:
            logger.error("Invalid YAML in %s: %s, using defaults", config_path, e)
            loaded = {}

        if not isinstance(loaded, dict):
            logger.error("Config root in %s must be a mapping, using defaults", config_path)
            loaded = {}

        self._data = _deep_merge(copy.deepcopy(DEFAULTS), loaded)
        self._validate()
        return self

    def _validate(self):
        """Validate critical config fields against schema."""
        warnings = []
        for section_name, fields in _CONFIG_SCHEMA.items():
            section = self._data.get(section_name)
            if not isinstance(section, dict):
                warnings.append(f"Section '{section_name}' should be a dict, got {type(section).__name__}")
                continue
            for field_name, expected_type in fields.items():
                if field_name in section:
                    value = section[field_name]
                    # Allow int where float is expected
                    if expected_type is float and isinstance(value, (int, float)) \
                            and not isinstance(value, bool):
                        continue
                    if not isinstance(value, expected_type):
                        warnings.append(
                            f"{section_name}.{field_name}: expected {expected_type.__name__}, "
                            f"got {type(value).__name__} ({value!r})"
                        )

        for w in warnings:
            logger.warning("Config validation: %s", w)
        if not warnings:
            logger.debug("Config validation passed")
        return warnings

    def get(self, key_path: str, default=None):
        """Get nested config value using dot notation: 'stability.window_ms'."""
        keys = key_path.split(".")
        value = self._data
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value

    def set(self, key_path: str, value):
        """Override a nested value (CLI flags, tests)."""
        keys = key_path.split(".")
        node = self._data
        for key in keys[:-1]:
            node = node.setdefault(key, {})
        node[keys[-1]] = value

    def get_section(self, section: str) -> dict:
        """Get an entire config section."""
        return self._data.get(section, {})

    @property
    def recognition(self) -> dict:
        return self.get_section("recognition")

    @property
    def stability(self) -> dict:
        return self.get_section("stability")

    @property
    def training(self) -> dict:
        return self.get_section("training")

    @property
    def recording(self) -> dict:
        return self.get_section("recording")

    @property
    def detection(self) -> dict:
        return self.get_section("detection")

    @property
    def persistence(self) -> dict:
        return self.get_section("persistence")

    @property
    def text(self) -> dict:
        return self.get_section("text")

    @property
    def logging(self) -> dict:
        return self.get_section("logging")

    @property
    def base_dir(self) -> str:
        return _BASE_DIR
