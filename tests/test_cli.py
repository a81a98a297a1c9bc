"""Tests for the input-engine CLI."""

import json

from typer.testing import CliRunner

from input_engine.cli import app
from input_engine.engine import InputEngine
from input_engine.events import EventDraft

runner = CliRunner()


def tap_sequence(n):
    seq = []
    for i in range(n):
        seq.append({"action": "touch", "x": 10, "y": 10, "timestamp": float(i)})
        seq.append({"action": "release", "x": 11, "y": 10, "timestamp": i + 0.05})
    return seq


class TestThresholds:
    def test_yaml_output(self):
        result = runner.invoke(app, ["thresholds", "--accuracy", "high"])
        assert result.exit_code == 0
        assert "swipe_min_distance: 30.0" in result.output
        assert "drag_threshold: 15.0" in result.output

    def test_json_output(self):
        result = runner.invoke(app, ["thresholds", "--sensitivity", "2.0", "--format", "json"])
        assert result.exit_code == 0
        assert json.loads(result.output)["drag_threshold"] == 7.5

    def test_invalid_preset(self):
        result = runner.invoke(app, ["thresholds", "--accuracy", "extreme"])
        assert result.exit_code == 1


class TestAnalyze:
    def test_json_sequence(self, tmp_path):
        path = tmp_path / "taps.json"
        path.write_text(json.dumps(tap_sequence(5)))
        result = runner.invoke(app, ["analyze", str(path)])
        assert result.exit_code == 0
        assert "Analyzed 10 samples, 5 gestures recognized" in result.output
        assert "tap_1: 1.0" in result.output

    def test_yaml_mapping(self, tmp_path):
        path = tmp_path / "taps.yml"
        lines = ["touch_sequence:"]
        for s in tap_sequence(2):
            lines.append(f"  - {{action: {s['action']}, x: {s['x']}, y: {s['y']}, timestamp: {s['timestamp']}}}")
        path.write_text("\n".join(lines) + "\n")
        result = runner.invoke(app, ["analyze", str(path), "--min-confidence", "0.4"])
        assert result.exit_code == 0
        assert "2 gestures recognized" in result.output

    def test_missing_file(self, tmp_path):
        result = runner.invoke(app, ["analyze", str(tmp_path / "nope.json")])
        assert result.exit_code == 1

    def test_empty_sequence(self, tmp_path):
        path = tmp_path / "empty.json"
        path.write_text("[]")
        result = runner.invoke(app, ["analyze", str(path)])
        assert result.exit_code == 1


class TestReplay:
    def test_replays_saved_recording(self, tmp_path):
        engine = InputEngine()
        engine.sessions.create("s1")
        rec = engine.recordings.start_recording("s1", name="keys")
        for i, key in enumerate("ok"):
            engine.ingress.enqueue(EventDraft(
                type="keyboard", payload={"key": key}, timestamp=100.0 + i * 0.1, session_id="s1",
            ))
        engine.recordings.stop_recording(rec.id)
        path = engine.recordings.save(rec.id, tmp_path / "keys.json")

        result = runner.invoke(app, ["replay", str(path), "--speed", "10"])
        assert result.exit_code == 0
        assert "Replaying keys (2 events" in result.output
        assert "Replay completed: 2 events emitted" in result.output

    def test_missing_recording(self, tmp_path):
        result = runner.invoke(app, ["replay", str(tmp_path / "nope.json")])
        assert result.exit_code == 1
