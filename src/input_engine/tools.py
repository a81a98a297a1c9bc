"""Operation facade: schema-validated tools returning uniform envelopes.

Every tool takes a pydantic argument model and returns either
``{"success": True, "data": ...}`` or ``{"success": False, "error": {...}}``.
Nothing raised inside a tool escapes ``call_tool``.

Usage:
    result = await call_tool(engine, "touch_input",
                             {"session_id": "s1", "action": "touch", "x": 10, "y": 10})
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from input_engine.engine import InputEngine
from input_engine.errors import EngineError, ErrorType, fail, handle_error, ok
from input_engine.events import EventDraft, EventType
from input_engine.filters import InputFilter
from input_engine.gestures import GestureEvent, detect_drag
from input_engine.services import require_session

logger = logging.getLogger("input_engine.tools")

DEFAULT_TIMEOUT = 30.0

Handler = Callable[[InputEngine, Any], Awaitable[Any]]


class ToolArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")


class NoArgs(ToolArgs):
    pass


@dataclass
class Tool:
    name: str
    description: str
    args_model: type[ToolArgs]
    handler: Handler

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.args_model.model_json_schema(),
        }


class ToolRegistry:
    """Name -> tool table. Registration order is listing order."""

    def __init__(self):
        self._tools: dict[str, Tool] = {}

    def register(self, name: str, description: str, args_model: type[ToolArgs] = NoArgs):
        def decorator(fn: Handler) -> Handler:
            if name in self._tools:
                logger.warning("Tool '%s' already registered, replacing", name)
            self._tools[name] = Tool(name, description, args_model, fn)
            return fn
        return decorator

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def list(self) -> list[Tool]:
        return list(self._tools.values())

    @property
    def names(self) -> list[str]:
        return list(self._tools)


registry = ToolRegistry()


async def call_tool(
    engine: InputEngine,
    name: str,
    arguments: Optional[dict] = None,
    timeout: Optional[float] = DEFAULT_TIMEOUT,
) -> dict:
    """Validate arguments, run the tool and wrap the outcome in an envelope."""
    tool = registry.get(name)
    if tool is None:
        return fail(EngineError(
            ErrorType.PARSING_ERROR,
            f"Unknown tool: {name}",
            {"available": registry.names},
        ))

    try:
        args = tool.args_model.model_validate(arguments or {})
        data = await asyncio.wait_for(tool.handler(engine, args), timeout=timeout)
        return ok(data)
    except Exception as e:
        error = handle_error(e, f"Failed to run {name}")
        if error.type == ErrorType.COMMAND_FAILED:
            logger.error("Tool %s failed: %s", name, e)
        else:
            logger.debug("Tool %s rejected: %s", name, error.message)
        return fail(error)


# --- Input processing ---

class QueueInputEventArgs(ToolArgs):
    type: str
    payload: dict = Field(default_factory=dict)
    priority: str = "normal"
    timestamp: Optional[float] = None
    session_id: Optional[str] = None


@registry.register("queue_input_event", "Queue an input event for filtered, prioritized processing", QueueInputEventArgs)
async def queue_input_event(engine: InputEngine, args: QueueInputEventArgs):
    if args.session_id is not None:
        require_session(engine.sessions, args.session_id)
    if args.type == EventType.TOUCH.value and "action" in args.payload:
        engine.recognizer.check_payload(args.payload, args.session_id)
    event_id = engine.ingress.enqueue(EventDraft(
        type=args.type,
        payload=args.payload,
        priority=args.priority,
        timestamp=args.timestamp,
        session_id=args.session_id,
    ))
    return {"event_id": event_id, "queue_size": engine.ingress.get_queue_size()}


class FilterConditionArgs(ToolArgs):
    event_type: Optional[str] = None
    pattern: Optional[str] = None


class PayloadPatchArgs(ToolArgs):
    set: dict = Field(default_factory=dict)
    remove: list[str] = Field(default_factory=list)


class AddInputFilterArgs(ToolArgs):
    id: str = Field(min_length=1)
    name: Optional[str] = None
    kind: Literal["allow", "block", "modify", "rate_limit"]
    condition: FilterConditionArgs = Field(default_factory=FilterConditionArgs)
    enabled: bool = True
    max_rate: Optional[int] = Field(default=None, ge=1)
    patch: Optional[PayloadPatchArgs] = None


@registry.register("add_input_filter", "Add (or replace) an input filter", AddInputFilterArgs)
async def add_input_filter(engine: InputEngine, args: AddInputFilterArgs):
    replaced = engine.filters.get_filter(args.id) is not None
    input_filter = InputFilter.from_dict(args.model_dump(exclude_none=True))
    engine.filters.add_filter(input_filter)
    return {"filter": input_filter.to_dict(), "replaced": replaced}


class FilterIdArgs(ToolArgs):
    filter_id: str


@registry.register("remove_input_filter", "Remove an input filter by id", FilterIdArgs)
async def remove_input_filter(engine: InputEngine, args: FilterIdArgs):
    if not engine.filters.remove_filter(args.filter_id):
        raise EngineError(ErrorType.RESOURCE_ERROR, f"Filter {args.filter_id} not found")
    return {"removed": args.filter_id}


@registry.register("list_input_filters", "List input filters in application order")
async def list_input_filters(engine: InputEngine, args: NoArgs):
    filters = [f.to_dict() for f in engine.filters.list_filters()]
    return {"filters": filters, "count": len(filters)}


class HistoryArgs(ToolArgs):
    limit: int = Field(default=100, ge=1, le=1000)


@registry.register("get_input_history", "Get recently processed input events", HistoryArgs)
async def get_input_history(engine: InputEngine, args: HistoryArgs):
    history = [e.to_dict() for e in engine.ingress.get_event_history(args.limit)]
    return {"history": history, "count": len(history)}


@registry.register("get_input_analytics", "Get input processing analytics")
async def get_input_analytics(engine: InputEngine, args: NoArgs):
    return engine.ingress.get_analytics()


class OptimizeLatencyArgs(ToolArgs):
    enabled: bool = True


@registry.register("optimize_input_latency", "Toggle low-latency mode (drain now, disable non-protected filters)", OptimizeLatencyArgs)
async def optimize_input_latency(engine: InputEngine, args: OptimizeLatencyArgs):
    if args.enabled:
        changed = engine.ingress.optimize_latency()
    else:
        changed = engine.ingress.reset_optimizations()
    return {
        "enabled": args.enabled,
        "filters": changed,
        "message": f"Input latency optimization {'enabled' if args.enabled else 'disabled'}",
    }


# --- Touch ---

class TouchInputArgs(ToolArgs):
    session_id: str
    action: Literal["touch", "move", "release", "cancel"]
    x: float
    y: float
    touch_id: int = Field(default=1, ge=0)
    pressure: float = Field(default=0.5, ge=0.0, le=1.0)
    timestamp: Optional[float] = None
    priority: str = "high"


@registry.register("touch_input", "Send a touch sample through ingress to the gesture recognizer", TouchInputArgs)
async def touch_input(engine: InputEngine, args: TouchInputArgs):
    require_session(engine.sessions, args.session_id)
    payload = {
        "action": args.action,
        "x": args.x,
        "y": args.y,
        "touch_id": args.touch_id,
        "pressure": args.pressure,
    }
    engine.recognizer.check_payload(payload, args.session_id)

    recognized: list[GestureEvent] = []
    engine.recognizer.on_gesture(recognized.append)
    try:
        event_id = engine.ingress.enqueue(EventDraft(
            type=EventType.TOUCH,
            payload=payload,
            priority=args.priority,
            timestamp=args.timestamp,
            session_id=args.session_id,
        ))
    finally:
        engine.recognizer.off_gesture(recognized.append)

    return {
        "event_id": event_id,
        "gesture": recognized[-1].to_dict() if recognized else None,
        "active_touches": engine.recognizer.get_active_touches(args.session_id),
    }


class DetectTouchDragArgs(ToolArgs):
    session_id: str
    start_x: float
    start_y: float
    end_x: float
    end_y: float
    threshold: Optional[float] = Field(default=None, gt=0)


@registry.register("detect_touch_drag", "Check whether a movement counts as a drag", DetectTouchDragArgs)
async def detect_touch_drag(engine: InputEngine, args: DetectTouchDragArgs):
    require_session(engine.sessions, args.session_id)
    threshold = args.threshold if args.threshold is not None else engine.recognizer.thresholds.drag_threshold
    result = detect_drag((args.start_x, args.start_y), (args.end_x, args.end_y), threshold)
    return result.to_dict()


class TouchPointArgs(ToolArgs):
    x: float
    y: float
    pressure: float = Field(default=0.5, ge=0.0, le=1.0)


class SimulateMultiTouchArgs(ToolArgs):
    session_id: str
    touch_points: list[TouchPointArgs] = Field(min_length=1, max_length=10)


@registry.register("simulate_multi_touch", "Touch and release several points, one finger each", SimulateMultiTouchArgs)
async def simulate_multi_touch(engine: InputEngine, args: SimulateMultiTouchArgs):
    require_session(engine.sessions, args.session_id)
    result = engine.recognizer.simulate_multi_touch(
        args.session_id, [p.model_dump() for p in args.touch_points]
    )
    return {
        "touch_events": [e.to_dict() for e in result["events"]],
        "gestures": [g.to_dict() for g in result["gestures"]],
        "fingers_simulated": len(args.touch_points),
        "active_touches": len(engine.recognizer.get_active_touches(args.session_id)),
    }


class TouchSampleArgs(ToolArgs):
    action: Literal["touch", "move", "release", "cancel"]
    x: float
    y: float
    touch_id: int = 1
    pressure: float = Field(default=0.5, ge=0.0, le=1.0)
    timestamp: Optional[float] = None


class RecognizeComplexGestureArgs(ToolArgs):
    session_id: str
    touch_sequence: list[TouchSampleArgs]
    min_confidence: float = Field(default=0.7, ge=0.1, le=1.0)


@registry.register("recognize_complex_gesture", "Analyze a touch sequence and score gesture confidence", RecognizeComplexGestureArgs)
async def recognize_complex_gesture(engine: InputEngine, args: RecognizeComplexGestureArgs):
    require_session(engine.sessions, args.session_id)
    analysis = engine.sequence_analyzer().analyze(
        [s.model_dump() for s in args.touch_sequence],
        min_confidence=args.min_confidence,
        session_id=args.session_id,
    )
    return analysis.to_dict()


class ConfigureTouchGesturesArgs(ToolArgs):
    swipe_min_distance: Optional[float] = Field(default=None, gt=0)
    swipe_max_time: Optional[float] = Field(default=None, gt=0)
    tap_max_duration: Optional[float] = Field(default=None, gt=0)
    long_press_min_duration: Optional[float] = Field(default=None, gt=0)
    pinch_min_distance: Optional[float] = Field(default=None, gt=0)
    drag_threshold: Optional[float] = Field(default=None, gt=0)


@registry.register("configure_touch_gestures", "Override individual gesture thresholds", ConfigureTouchGesturesArgs)
async def configure_touch_gestures(engine: InputEngine, args: ConfigureTouchGesturesArgs):
    thresholds = engine.recognizer.configure_thresholds(**args.model_dump(exclude_none=True))
    return {"thresholds": thresholds.to_dict()}


class ConfigureAdvancedTouchArgs(ToolArgs):
    session_id: str
    accuracy: Literal["low", "medium", "high"] = "medium"
    sensitivity: float = Field(default=1.0, ge=0.1, le=2.0)
    palm_rejection: bool = False
    multi_touch_enabled: bool = True
    overrides: dict[str, float] = Field(default_factory=dict)


@registry.register("configure_advanced_touch", "Apply an accuracy preset, sensitivity and touch options", ConfigureAdvancedTouchArgs)
async def configure_advanced_touch(engine: InputEngine, args: ConfigureAdvancedTouchArgs):
    require_session(engine.sessions, args.session_id)
    thresholds = engine.recognizer.configure(
        accuracy=args.accuracy,
        sensitivity=args.sensitivity,
        overrides=args.overrides,
        palm_rejection=args.palm_rejection,
        multi_touch_enabled=args.multi_touch_enabled,
    )
    return {
        "configuration": args.model_dump(exclude={"session_id", "overrides"}),
        "applied_thresholds": thresholds.to_dict(),
        "capabilities": engine.recognizer.capabilities(),
    }


class OptionalSessionArgs(ToolArgs):
    session_id: Optional[str] = None


@registry.register("get_active_touches", "List touches currently down", OptionalSessionArgs)
async def get_active_touches(engine: InputEngine, args: OptionalSessionArgs):
    touches = engine.recognizer.get_active_touches(args.session_id)
    return {"touches": touches, "count": len(touches)}


class GestureHistoryArgs(ToolArgs):
    limit: int = Field(default=50, ge=1, le=1000)


@registry.register("get_gesture_history", "Get recently recognized gestures", GestureHistoryArgs)
async def get_gesture_history(engine: InputEngine, args: GestureHistoryArgs):
    gestures = [g.to_dict() for g in engine.recognizer.get_gesture_history(args.limit)]
    return {"gestures": gestures, "count": len(gestures)}


@registry.register("clear_touch_state", "Drop active touches for one session, or all touch state", OptionalSessionArgs)
async def clear_touch_state(engine: InputEngine, args: OptionalSessionArgs):
    engine.recognizer.clear_state(args.session_id)
    return {"cleared": args.session_id or "all"}


# --- Recording / replay ---

class StartRecordingArgs(ToolArgs):
    session_id: str
    name: str = ""
    description: str = ""


@registry.register("start_interaction_recording", "Start recording a session's input events", StartRecordingArgs)
async def start_interaction_recording(engine: InputEngine, args: StartRecordingArgs):
    recording = engine.recordings.start_recording(args.session_id, args.name, args.description)
    return {"recording_id": recording.id, "recording": recording.summary()}


class RecordingIdArgs(ToolArgs):
    recording_id: str


@registry.register("stop_interaction_recording", "Stop and seal a recording", RecordingIdArgs)
async def stop_interaction_recording(engine: InputEngine, args: RecordingIdArgs):
    recording = engine.recordings.stop_recording(args.recording_id)
    return recording.summary()


class ReplayArgs(ToolArgs):
    recording_id: str
    target_session_id: str
    speed: float = Field(default=1.0, ge=0.1, le=10.0)
    wait: bool = False


@registry.register("replay_interaction_sequence", "Replay a sealed recording into a session", ReplayArgs)
async def replay_interaction_sequence(engine: InputEngine, args: ReplayArgs):
    handle = engine.replays.replay(args.recording_id, args.target_session_id, args.speed)
    if args.wait:
        await handle.wait()
    return handle.to_dict()


class ReplayIdArgs(ToolArgs):
    replay_id: str


@registry.register("get_replay_status", "Get the status of a replay", ReplayIdArgs)
async def get_replay_status(engine: InputEngine, args: ReplayIdArgs):
    return engine.replays.require(args.replay_id).to_dict()


@registry.register("cancel_replay", "Cancel an in-flight replay", ReplayIdArgs)
async def cancel_replay(engine: InputEngine, args: ReplayIdArgs):
    cancelled = engine.replays.cancel(args.replay_id)
    handle = engine.replays.require(args.replay_id)
    if cancelled:
        await handle.wait()
    return {"cancelled": cancelled, "replay": handle.to_dict()}


@registry.register("list_interaction_recordings", "List recordings, optionally for one session", OptionalSessionArgs)
async def list_interaction_recordings(engine: InputEngine, args: OptionalSessionArgs):
    recordings = [r.summary() for r in engine.recordings.list_recordings(args.session_id)]
    return {"recordings": recordings, "count": len(recordings)}


# --- Snapshots / diffs ---

class CreateSnapshotArgs(ToolArgs):
    session_id: str
    metadata: dict = Field(default_factory=dict)


@registry.register("create_state_snapshot", "Capture the terminal state of a session", CreateSnapshotArgs)
async def create_state_snapshot(engine: InputEngine, args: CreateSnapshotArgs):
    snapshot = await engine.snapshots.create_snapshot(args.session_id, args.metadata)
    return {"snapshot_id": snapshot.id, "snapshot": snapshot.to_dict()}


class GenerateDiffArgs(ToolArgs):
    from_snapshot_id: str
    to_snapshot_id: str


@registry.register("generate_state_diff", "Diff two snapshots", GenerateDiffArgs)
async def generate_state_diff(engine: InputEngine, args: GenerateDiffArgs):
    diff = engine.snapshots.generate_diff(args.from_snapshot_id, args.to_snapshot_id)
    return {"diff_id": diff.id, "diff": diff.to_dict()}


@registry.register("list_state_snapshots", "List snapshots, optionally for one session", OptionalSessionArgs)
async def list_state_snapshots(engine: InputEngine, args: OptionalSessionArgs):
    snapshots = [s.to_dict() for s in engine.snapshots.list_snapshots(args.session_id)]
    return {"snapshots": snapshots, "count": len(snapshots)}


@registry.register("list_state_diffs", "List generated diffs")
async def list_state_diffs(engine: InputEngine, args: NoArgs):
    diffs = [d.to_dict() for d in engine.snapshots.list_diffs()]
    return {"diffs": diffs, "count": len(diffs)}
