"""Tests for the filter pipeline."""

import logging

import pytest

from input_engine.errors import EngineError, ErrorType
from input_engine.events import EventType, InputEvent, freeze
from input_engine.filters import (
    FilterCondition,
    FilterKind,
    FilterPipeline,
    InputFilter,
    PayloadPatch,
    default_filters,
)


def make_event(event_type="keyboard", payload=None, seq=1):
    return InputEvent(
        id=f"evt_{seq}",
        type=EventType(event_type),
        timestamp=0.0,
        payload=freeze(payload or {}),
        sequence=seq,
    )


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestFilterCondition:
    def test_empty_condition_matches_everything(self):
        assert FilterCondition().matches(make_event("mouse", {"x": 1}))

    def test_event_type(self):
        cond = FilterCondition(event_type=EventType.MOUSE)
        assert cond.matches(make_event("mouse"))
        assert not cond.matches(make_event("keyboard"))

    def test_pattern_on_serialized_payload(self):
        cond = FilterCondition(pattern=r'"key": "x"')
        assert cond.matches(make_event(payload={"key": "x"}))
        assert not cond.matches(make_event(payload={"key": "y"}))

    def test_invalid_pattern(self):
        with pytest.raises(EngineError) as exc:
            FilterCondition(pattern="([")
        assert exc.value.type == ErrorType.PARSING_ERROR

    def test_unknown_event_type_in_dict(self):
        with pytest.raises(EngineError) as exc:
            FilterCondition.from_dict({"event_type": "telepathy"})
        assert exc.value.type == ErrorType.PARSING_ERROR


class TestFilterKinds:
    def test_block_drops_event(self):
        pipeline = FilterPipeline()
        pipeline.add_filter(InputFilter(id="all", name="Block all", kind=FilterKind.BLOCK))
        result = pipeline.apply(make_event())
        assert result.event is None
        assert result.dropped_by == "all"
        assert not result.rate_limited

    def test_allow_does_not_short_circuit(self):
        pipeline = FilterPipeline()
        pipeline.add_filter(InputFilter(id="allow", name="Allow", kind=FilterKind.ALLOW))
        pipeline.add_filter(InputFilter(id="block", name="Block", kind=FilterKind.BLOCK))
        assert pipeline.apply(make_event()).dropped_by == "block"

    def test_disabled_filter_is_skipped(self):
        pipeline = FilterPipeline()
        pipeline.add_filter(InputFilter(id="block", name="Block", kind=FilterKind.BLOCK, enabled=False))
        assert pipeline.apply(make_event()).event is not None

    def test_modify_patches_payload(self):
        pipeline = FilterPipeline()
        pipeline.add_filter(InputFilter(
            id="mask",
            name="Mask secrets",
            kind=FilterKind.MODIFY,
            condition=FilterCondition(pattern="secret"),
            patch=PayloadPatch(set={"masked": True}, remove=("secret",)),
        ))
        event = make_event(payload={"key": "a", "secret": "hunter2"}, seq=7)
        result = pipeline.apply(event)

        assert result.modified_by == ["mask"]
        assert dict(result.event.payload) == {"key": "a", "masked": True}
        # identity fields survive, original untouched
        assert result.event.id == event.id
        assert result.event.sequence == 7
        assert "secret" in event.payload

    def test_rate_limit_sliding_window(self):
        clock = FakeClock()
        pipeline = FilterPipeline(clock=clock)
        pipeline.add_filter(InputFilter(id="rl", name="Limit", kind=FilterKind.RATE_LIMIT, max_rate=3))

        admitted = sum(pipeline.apply(make_event(seq=i)).event is not None for i in range(5))
        assert admitted == 3

        clock.now = 0.5
        assert pipeline.apply(make_event()).rate_limited

        clock.now = 1.0
        admitted = sum(pipeline.apply(make_event(seq=i)).event is not None for i in range(5))
        assert admitted == 3

    def test_rate_limit_only_counts_matching_events(self):
        pipeline = FilterPipeline(clock=FakeClock())
        pipeline.add_filter(InputFilter(
            id="mouse_rl", name="Mouse", kind=FilterKind.RATE_LIMIT, max_rate=1,
            condition=FilterCondition(event_type=EventType.MOUSE),
        ))
        assert pipeline.apply(make_event("mouse")).event is not None
        assert pipeline.apply(make_event("mouse")).event is None
        assert pipeline.apply(make_event("keyboard")).event is not None

    def test_rate_limit_requires_max_rate(self):
        with pytest.raises(EngineError):
            InputFilter(id="rl", name="Limit", kind=FilterKind.RATE_LIMIT)


class TestFilterPipeline:
    def test_duplicate_id_replaces_in_place(self, caplog):
        pipeline = FilterPipeline()
        pipeline.add_filter(InputFilter(id="a", name="A", kind=FilterKind.ALLOW))
        pipeline.add_filter(InputFilter(id="b", name="B", kind=FilterKind.ALLOW))

        with caplog.at_level(logging.WARNING, logger="input_engine.filters"):
            pipeline.add_filter(InputFilter(id="a", name="A2", kind=FilterKind.BLOCK))

        assert [f.id for f in pipeline.list_filters()] == ["a", "b"]
        assert pipeline.get_filter("a").name == "A2"
        assert "already registered" in caplog.text

    def test_remove(self):
        pipeline = FilterPipeline()
        pipeline.add_filter(InputFilter(id="a", name="A", kind=FilterKind.BLOCK))
        assert pipeline.remove_filter("a")
        assert not pipeline.remove_filter("a")
        assert len(pipeline) == 0

    def test_from_dict_errors(self):
        with pytest.raises(EngineError):
            InputFilter.from_dict({"id": "x", "kind": "explode"})
        with pytest.raises(EngineError):
            InputFilter.from_dict({"kind": "block"})

    def test_yaml_roundtrip(self, tmp_path):
        pipeline = FilterPipeline()
        for f in default_filters():
            pipeline.add_filter(f)
        pipeline.add_filter(InputFilter(
            id="mask", name="Mask", kind=FilterKind.MODIFY,
            patch=PayloadPatch(set={"masked": True}, remove=("secret",)),
        ))

        path = tmp_path / "filters.yml"
        pipeline.to_yaml(path)
        loaded = FilterPipeline.from_yaml(path)

        assert [f.to_dict() for f in loaded.list_filters()] == [f.to_dict() for f in pipeline.list_filters()]


class TestDefaultFilters:
    @pytest.fixture
    def pipeline(self):
        pipeline = FilterPipeline()
        for f in default_filters():
            pipeline.add_filter(f)
        return pipeline

    @pytest.mark.parametrize("key,modifiers", [
        ("F4", ["alt"]),
        ("Delete", ["ctrl", "alt"]),
        ("q", ["cmd"]),
    ])
    def test_dangerous_shortcuts_blocked(self, pipeline, key, modifiers):
        result = pipeline.apply(make_event(payload={"key": key, "modifiers": modifiers}))
        assert result.dropped_by == "security_filter"

    def test_modifier_order_does_not_matter(self, pipeline):
        result = pipeline.apply(make_event(payload={"key": "del", "modifiers": ["alt", "ctrl"]}))
        assert result.dropped_by == "security_filter"

    @pytest.mark.parametrize("payload", [
        {"key": "q"},
        {"key": "a", "modifiers": ["ctrl"]},
        {"key": "q", "modifiers": ["ctrl"]},
        {"key": "q", "modifiers": ["alt"]},
        {"key": "Delete", "modifiers": ["ctrl"]},
        {"key": "F4", "modifiers": ["ctrl"]},
        {"key": "F4", "modifiers": ["alt", "shift"]},
        {"key": "F40", "modifiers": ["alt"]},
    ])
    def test_plain_keys_pass(self, pipeline, payload):
        assert pipeline.apply(make_event(payload=payload)).event is not None

    def test_defaults_are_protected(self):
        assert all(f.protected for f in default_filters())
