"""Tests for touch-sequence analysis and confidence accumulation."""

import pytest

from input_engine.errors import EngineError, ErrorType
from input_engine.gestures import GestureThresholds
from input_engine.sequences import SequenceAnalyzer


def taps(n, start=0.0):
    seq = []
    for i in range(n):
        t = start + i
        seq.append({"action": "touch", "x": 10, "y": 10, "touch_id": 1, "timestamp": t})
        seq.append({"action": "release", "x": 11, "y": 10, "touch_id": 1, "timestamp": t + 0.05})
    return seq


def swipe(t):
    return [
        {"action": "touch", "x": 0, "y": 0, "touch_id": 1, "timestamp": t},
        {"action": "release", "x": 200, "y": 0, "touch_id": 1, "timestamp": t + 0.2},
    ]


class TestConfidence:
    def test_five_taps_reach_full_confidence(self):
        analysis = SequenceAnalyzer().analyze(taps(5))
        assert analysis.scores == {("tap", 1): 1.0}
        assert len(analysis.gestures) == 5
        assert len(analysis.high_confidence) == 5

    def test_score_is_capped(self):
        analysis = SequenceAnalyzer().analyze(taps(8))
        assert analysis.scores[("tap", 1)] == 1.0

    def test_two_taps_below_threshold(self):
        analysis = SequenceAnalyzer().analyze(taps(2))
        assert analysis.scores[("tap", 1)] == pytest.approx(0.4)
        assert analysis.high_confidence == []

        lenient = SequenceAnalyzer().analyze(taps(2), min_confidence=0.4)
        assert len(lenient.high_confidence) == 2

    def test_keys_score_independently(self):
        seq = taps(4) + swipe(10.0)
        analysis = SequenceAnalyzer().analyze(seq)
        assert analysis.scores == {("tap", 1): pytest.approx(0.8), ("swipe", 1): pytest.approx(0.2)}
        assert [g.type.value for g in analysis.high_confidence] == ["tap"] * 4

    def test_uses_given_thresholds(self):
        strict = GestureThresholds(tap_max_duration=0.01)
        analysis = SequenceAnalyzer(strict).analyze(taps(3))
        assert analysis.gestures == []


class TestInput:
    def test_empty_sequence(self):
        with pytest.raises(EngineError) as exc:
            SequenceAnalyzer().analyze([])
        assert exc.value.type == ErrorType.PARSING_ERROR

    def test_type_alias_for_action(self):
        seq = [
            {"type": "touch", "x": 10, "y": 10, "touch_id": 1, "timestamp": 0.0},
            {"type": "release", "x": 10, "y": 10, "touch_id": 1, "timestamp": 0.05},
        ]
        assert len(SequenceAnalyzer().analyze(seq).gestures) == 1

    def test_rejected_samples_are_skipped(self):
        seq = [
            {"action": "touch", "x": 10, "y": 10, "touch_id": 1, "timestamp": 0.0},
            {"action": "touch", "x": 10, "y": 10, "touch_id": 1, "timestamp": 0.01},
            {"action": "release", "x": 10, "y": 10, "touch_id": 1, "timestamp": 0.05},
        ]
        analysis = SequenceAnalyzer().analyze(seq)
        assert len(analysis.gestures) == 1
        assert [s["index"] for s in analysis.skipped] == [1]

    def test_malformed_sample(self):
        with pytest.raises(EngineError) as exc:
            SequenceAnalyzer().analyze([{"action": "touch", "y": 0}])
        assert exc.value.type == ErrorType.PARSING_ERROR

    def test_to_dict(self):
        data = SequenceAnalyzer().analyze(taps(5)).to_dict()
        assert data["confidence_scores"] == {"tap_1": 1.0}
        assert data["total_samples"] == 10
        assert len(data["high_confidence_gestures"]) == 5
        assert data["skipped_samples"] == []
