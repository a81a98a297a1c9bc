"""InputEngine CLI.

Usage:
    input-engine serve        Start the HTTP tool server
    input-engine analyze      Recognize gestures in a touch sequence file
    input-engine replay       Replay a saved recording and print re-emitted events
    input-engine thresholds   Show gesture thresholds for a preset
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer
import yaml

from input_engine.errors import EngineError

app = typer.Typer(
    name="input-engine",
    help="Input event processing, touch gestures and interaction replay.",
    add_completion=False,
)


@app.callback()
def main_options(
    log_level: str = typer.Option("warning", help="Log level"),
):
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Bind address (default from config)"),
    port: Optional[int] = typer.Option(None, help="Port (default from config)"),
    config: Optional[str] = typer.Option(None, "--config", help="Path to engine YAML config"),
    session: list[str] = typer.Option(["demo"], help="In-memory session ids to create"),
    log_level: str = typer.Option("info", help="Server log level"),
):
    """Start the HTTP tool server."""
    import uvicorn
    from input_engine.engine import InputEngine
    from input_engine.server import create_app

    engine_config = _load(config)
    engine = InputEngine(engine_config)
    for session_id in session:
        engine.sessions.create(session_id)

    host = host or engine_config.host
    port = port or engine_config.port
    typer.echo(f"Starting InputEngine server on {host}:{port}")
    typer.echo(f"   Sessions: {', '.join(session)}")
    uvicorn.run(create_app(engine), host=host, port=port, log_level=log_level)


@app.command()
def analyze(
    sequence_file: str = typer.Argument(..., help="JSON or YAML file with a touch sequence"),
    min_confidence: float = typer.Option(0.7, help="Minimum accumulated confidence"),
    accuracy: str = typer.Option("medium", help="Accuracy preset: low, medium, high"),
    sensitivity: float = typer.Option(1.0, help="Touch sensitivity (0.1-2.0)"),
):
    """Recognize gestures in a recorded touch sequence."""
    from input_engine.gestures import GestureThresholds
    from input_engine.sequences import SequenceAnalyzer

    samples = _read_sequence(sequence_file)
    try:
        thresholds = GestureThresholds.configure(accuracy, sensitivity)
        analysis = SequenceAnalyzer(thresholds).analyze(samples, min_confidence=min_confidence)
    except EngineError as e:
        typer.echo(f"Error: {e.message}", err=True)
        raise typer.Exit(1)

    typer.echo(f"Analyzed {analysis.samples} samples, {len(analysis.gestures)} gestures recognized")
    for g in analysis.gestures:
        marker = "*" if g in analysis.high_confidence else " "
        direction = f" {g.direction}" if g.direction else ""
        typer.echo(
            f" {marker} {g.type.value}{direction} fingers={g.fingers} "
            f"distance={g.distance:.1f}px duration={g.duration * 1000:.0f}ms"
        )
    for (name, fingers), score in sorted(analysis.scores.items()):
        typer.echo(f"   {name}_{fingers}: {score:.1f}")
    if analysis.skipped:
        typer.echo(f"   Skipped {len(analysis.skipped)} samples")


@app.command()
def replay(
    recording: str = typer.Argument(..., help="Path to recording JSON"),
    speed: float = typer.Option(1.0, help="Playback speed multiplier (0.1-10)"),
    target: str = typer.Option("replay", help="Target session id"),
):
    """Replay a saved recording through a fresh engine."""
    from input_engine.engine import InputEngine

    path = Path(recording)
    if not path.exists():
        typer.echo(f"Recording not found: {recording}", err=True)
        raise typer.Exit(1)

    async def run() -> int:
        engine = InputEngine()
        engine.sessions.create(target)
        try:
            rec = engine.recordings.load(path)
        except EngineError as e:
            typer.echo(f"Error: {e.message}", err=True)
            return 1

        typer.echo(f"Replaying {rec.name} ({rec.event_count} events, {rec.total_duration:.2f}s) at {speed}x")

        def on_event(event):
            typer.echo(f"   {event.type.value:<12} {json.dumps(dict(event.payload), default=str)}")

        engine.ingress.subscribe(on_event)
        handle = engine.replays.replay(rec.id, target, speed)
        status = await handle.wait()
        typer.echo(f"Replay {status.value}: {handle.events_emitted} events emitted")
        for gesture in engine.recognizer.get_gesture_history():
            typer.echo(f"   gesture: {gesture.type.value} ({gesture.fingers} fingers)")
        return 0 if status.value == "completed" else 1

    code = asyncio.run(run())
    if code:
        raise typer.Exit(code)


@app.command()
def thresholds(
    accuracy: str = typer.Option("medium", help="Accuracy preset: low, medium, high"),
    sensitivity: float = typer.Option(1.0, help="Touch sensitivity (0.1-2.0)"),
    fmt: str = typer.Option("yaml", "--format", help="Output format: yaml or json"),
):
    """Print the gesture thresholds a preset and sensitivity produce."""
    from input_engine.gestures import GestureThresholds

    try:
        values = GestureThresholds.configure(accuracy, sensitivity).to_dict()
    except EngineError as e:
        typer.echo(f"Error: {e.message}", err=True)
        raise typer.Exit(1)

    if fmt == "json":
        typer.echo(json.dumps(values, indent=2))
    else:
        typer.echo(yaml.dump(values, default_flow_style=False, sort_keys=False).rstrip())


def _load(config: Optional[str]):
    from input_engine.config import load_config

    try:
        return load_config(config)
    except (EngineError, OSError) as e:
        typer.echo(f"Could not load config: {e}", err=True)
        raise typer.Exit(1)


def _read_sequence(path_str: str) -> list:
    path = Path(path_str)
    if not path.exists():
        typer.echo(f"Sequence file not found: {path_str}", err=True)
        raise typer.Exit(1)

    with open(path) as f:
        data = json.load(f) if path.suffix == ".json" else yaml.safe_load(f)
    if isinstance(data, dict):
        data = data.get("touch_sequence", [])
    if not isinstance(data, list):
        typer.echo("Sequence file must hold a list of touch samples", err=True)
        raise typer.Exit(1)
    return data


def main():
    app()


if __name__ == "__main__":
    main()
