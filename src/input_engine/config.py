"""Engine configuration loaded from YAML.

    # input-engine.yml
    history_limit: 1000
    max_queue_size: 10000
    default_filters: true
    touch:
      accuracy: high
      sensitivity: 1.2
      palm_rejection: false
      thresholds:
        drag_threshold: 10
    filters:
      - id: no_mouse
        kind: block
        condition: {event_type: mouse}

``load_config()`` with no path reads ``$INPUT_ENGINE_CONFIG`` if set and
falls back to defaults otherwise.
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Optional

import yaml

from input_engine.errors import EngineError, ErrorType
from input_engine.gestures import GestureThresholds

logger = logging.getLogger("input_engine.config")

CONFIG_ENV_VAR = "INPUT_ENGINE_CONFIG"


@dataclass
class TouchConfig:
    accuracy: str = "medium"
    sensitivity: float = 1.0
    palm_rejection: bool = False
    palm_pressure_threshold: float = 0.8
    multi_touch_enabled: bool = True
    thresholds: dict = field(default_factory=dict)  # explicit overrides

    def build_thresholds(self) -> GestureThresholds:
        return GestureThresholds.configure(self.accuracy, self.sensitivity, self.thresholds)


@dataclass
class EngineConfig:
    history_limit: int = 1000
    max_queue_size: int = 10000
    recording_buffer_limit: int = 10000
    replay_history_limit: int = 100
    auto_process: bool = True
    default_filters: bool = True
    filters: list[dict] = field(default_factory=list)
    touch: TouchConfig = field(default_factory=TouchConfig)
    host: str = "127.0.0.1"
    port: int = 8765

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> EngineConfig:
        data = dict(data or {})
        unknown = sorted(set(data) - {f.name for f in fields(cls)})
        if unknown:
            raise EngineError(ErrorType.PARSING_ERROR, f"Unknown config keys: {', '.join(unknown)}")

        touch = data.pop("touch", None) or {}
        touch_unknown = sorted(set(touch) - {f.name for f in fields(TouchConfig)})
        if touch_unknown:
            raise EngineError(ErrorType.PARSING_ERROR, f"Unknown touch config keys: {', '.join(touch_unknown)}")

        config = cls(**data, touch=TouchConfig(**touch))
        # Fail early on bad presets or thresholds
        config.touch.build_thresholds()
        return config

    @classmethod
    def from_yaml(cls, path: str | Path) -> EngineConfig:
        with open(path) as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise EngineError(ErrorType.PARSING_ERROR, f"Invalid YAML in {path}: {e}") from None
        if data is not None and not isinstance(data, dict):
            raise EngineError(ErrorType.PARSING_ERROR, f"Config {path} must be a mapping")
        return cls.from_dict(data)

    def to_yaml(self, path: str | Path):
        with open(path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)


def load_config(path: Optional[str | Path] = None) -> EngineConfig:
    """Load config from ``path``, ``$INPUT_ENGINE_CONFIG`` or defaults."""
    path = path or os.environ.get(CONFIG_ENV_VAR)
    if not path:
        return EngineConfig()
    logger.info("Loading config from %s", path)
    return EngineConfig.from_yaml(path)
