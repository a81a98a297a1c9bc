"""InputEngine - input event processing, touch gesture recognition and interaction replay."""

__version__ = "0.1.0"

from input_engine.errors import EngineError, ErrorType
from input_engine.events import EventDraft, EventType, InputEvent, Priority
from input_engine.filters import FilterCondition, FilterKind, FilterPipeline, InputFilter, PayloadPatch
from input_engine.ingress import InputIngress
from input_engine.gestures import GestureEvent, GestureThresholds, GestureType, TouchPoint, detect_drag
from input_engine.recognizer import GestureRecognizer, TouchAction, TouchInput
from input_engine.sequences import SequenceAnalyzer
from input_engine.recorder import Recording, RecordingManager
from input_engine.replay import ReplayEngine, ReplayHandle, ReplayStatus
from input_engine.snapshots import Diff, Snapshot, SnapshotStore, TerminalState
from input_engine.metrics import MetricsCollector
from input_engine.config import EngineConfig, load_config
from input_engine.engine import InputEngine
