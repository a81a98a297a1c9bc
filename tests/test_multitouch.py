"""Tests for pinch and multi-finger grouping."""

import pytest

from input_engine.gestures import GestureThresholds, GestureType, TouchPoint
from input_engine.multitouch import MultiTouchTracker
from input_engine.recognizer import GestureRecognizer, TouchAction, TouchInput


@pytest.fixture
def recognizer():
    return GestureRecognizer()


class TestPinch:
    def test_pinch_open(self, recognizer):
        recognizer.simulate_touch("s1", 100, 100, touch_id=1, timestamp=0.0)
        recognizer.simulate_touch("s1", 120, 100, touch_id=2, timestamp=0.0)
        recognizer.simulate_move("s1", 200, 100, touch_id=2, timestamp=0.1)

        gesture = recognizer.simulate_release("s1", 100, 100, touch_id=1, timestamp=0.2)
        assert gesture.type == GestureType.PINCH
        assert gesture.direction == "open"
        assert gesture.fingers == 2
        assert gesture.scale == pytest.approx(5.0)
        assert gesture.distance == pytest.approx(80.0)
        assert gesture.duration == pytest.approx(0.2)
        assert gesture.touch_ids == [1, 2]

        # the other member ends silently
        assert recognizer.simulate_release("s1", 200, 100, touch_id=2, timestamp=0.3) is None
        assert len(recognizer.get_gesture_history()) == 1

    def test_pinch_close(self, recognizer):
        recognizer.simulate_touch("s1", 0, 0, touch_id=1, timestamp=0.0)
        recognizer.simulate_touch("s1", 100, 0, touch_id=2, timestamp=0.0)
        recognizer.simulate_move("s1", 40, 0, touch_id=2, timestamp=0.1)

        gesture = recognizer.simulate_release("s1", 40, 0, touch_id=2, timestamp=0.2)
        assert gesture.type == GestureType.PINCH
        assert gesture.direction == "close"
        assert gesture.scale == pytest.approx(0.4)

    def test_small_change_is_not_a_pinch(self, recognizer):
        recognizer.simulate_touch("s1", 0, 0, touch_id=1, timestamp=0.0)
        recognizer.simulate_touch("s1", 100, 0, touch_id=2, timestamp=0.0)
        recognizer.simulate_move("s1", 110, 0, touch_id=2, timestamp=0.1)
        gesture = recognizer.simulate_release("s1", 0, 0, touch_id=1, timestamp=0.2)
        assert gesture.type == GestureType.MULTI_FINGER


class TestMultiFinger:
    def test_parallel_two_finger_move(self, recognizer):
        recognizer.simulate_touch("s1", 0, 0, touch_id=1, timestamp=0.0)
        recognizer.simulate_touch("s1", 50, 0, touch_id=2, timestamp=0.0)
        recognizer.simulate_move("s1", 0, 100, touch_id=1, timestamp=0.1)
        recognizer.simulate_move("s1", 50, 100, touch_id=2, timestamp=0.1)

        gesture = recognizer.simulate_release("s1", 0, 100, touch_id=1, timestamp=0.2)
        assert gesture.type == GestureType.MULTI_FINGER
        assert gesture.fingers == 2
        assert gesture.distance == pytest.approx(100.0)
        assert gesture.direction is None

    def test_three_fingers(self, recognizer):
        for tid, x in [(1, 0), (2, 50), (3, 100)]:
            recognizer.simulate_touch("s1", x, 0, touch_id=tid, timestamp=0.0)

        gesture = recognizer.simulate_release("s1", 0, 0, touch_id=1, timestamp=0.1)
        assert gesture.type == GestureType.MULTI_FINGER
        assert gesture.fingers == 3
        assert recognizer.simulate_release("s1", 50, 0, touch_id=2, timestamp=0.2) is None
        assert recognizer.simulate_release("s1", 100, 0, touch_id=3, timestamp=0.2) is None

    def test_cancel_closes_group_silently(self, recognizer):
        recognizer.simulate_touch("s1", 0, 0, touch_id=1, timestamp=0.0)
        recognizer.simulate_touch("s1", 50, 0, touch_id=2, timestamp=0.0)
        assert recognizer.process(TouchInput(TouchAction.CANCEL, 0, 0, 1, 0.5, 0.1, "s1")) is None
        assert recognizer.simulate_release("s1", 50, 0, touch_id=2, timestamp=0.2) is None
        assert recognizer.get_gesture_history() == []

    def test_sessions_group_independently(self, recognizer):
        recognizer.simulate_touch("s1", 0, 0, touch_id=1, timestamp=0.0)
        recognizer.simulate_touch("s2", 50, 0, touch_id=2, timestamp=0.0)
        assert recognizer.simulate_release("s1", 0, 0, touch_id=1, timestamp=0.05).type == GestureType.TAP

    def test_disabled_multi_touch_classifies_each_touch(self):
        recognizer = GestureRecognizer(multi_touch_enabled=False)
        recognizer.simulate_touch("s1", 0, 0, touch_id=1, timestamp=0.0)
        recognizer.simulate_touch("s1", 50, 0, touch_id=2, timestamp=0.0)
        first = recognizer.simulate_release("s1", 0, 0, touch_id=1, timestamp=0.05)
        second = recognizer.simulate_release("s1", 50, 0, touch_id=2, timestamp=0.05)
        assert first.type == GestureType.TAP
        assert second.type == GestureType.TAP


class TestTracker:
    def test_single_touch_forms_no_group(self):
        tracker = MultiTouchTracker()
        tracker.observe("s1", {1: TouchPoint(1, 0, 0, timestamp=0.0)})
        assert tracker.active_groups() == {}
        handled, gesture = tracker.end("s1", 1, TouchPoint(1, 0, 0, timestamp=0.1), GestureThresholds())
        assert not handled
        assert gesture is None

    def test_group_membership_and_clear(self):
        tracker = MultiTouchTracker()
        tracker.observe("s1", {
            1: TouchPoint(1, 0, 0, timestamp=0.0),
            2: TouchPoint(2, 10, 0, timestamp=0.0),
        })
        assert tracker.is_member("s1", 2)
        assert tracker.active_groups() == {"s1": [1, 2]}
        tracker.clear("s1")
        assert not tracker.is_member("s1", 2)
