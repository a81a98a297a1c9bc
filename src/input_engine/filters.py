"""Ordered allow / block / modify / rate-limit rules applied to every event.

Filters are plain data: a tagged condition selects events, and ``modify``
filters carry a payload patch. Nothing here stores callables, so a filter
set can be written to and loaded from YAML.

    pipeline = FilterPipeline.from_yaml("filters.yml")
    result = pipeline.apply(event)
    if result.event is None:
        ...  # dropped (blocked or rate limited)
"""

from __future__ import annotations

import logging
import re
import time
from collections import deque
from dataclasses import dataclass, field, replace
from enum import Enum
from itertools import permutations
from pathlib import Path
from typing import Any, Callable, Optional

import yaml

from input_engine.errors import EngineError, ErrorType
from input_engine.events import EventType, InputEvent, freeze, thaw

logger = logging.getLogger("input_engine.filters")

RATE_WINDOW_SECONDS = 1.0


class FilterKind(Enum):
    ALLOW = "allow"
    BLOCK = "block"
    MODIFY = "modify"
    RATE_LIMIT = "rate_limit"


@dataclass(frozen=True)
class FilterCondition:
    """Event selector. Both parts must match when set; an empty condition matches all."""
    event_type: Optional[EventType] = None
    pattern: Optional[str] = None

    def __post_init__(self):
        if self.pattern is not None:
            try:
                re.compile(self.pattern)
            except re.error as e:
                raise EngineError(
                    ErrorType.PARSING_ERROR,
                    f"Invalid filter pattern {self.pattern!r}: {e}",
                ) from None

    def matches(self, event: InputEvent) -> bool:
        if self.event_type is not None and event.type != self.event_type:
            return False
        if self.pattern is not None:
            return _compiled(self.pattern).search(event.serialized_payload()) is not None
        return True

    def to_dict(self) -> dict:
        data = {}
        if self.event_type is not None:
            data["event_type"] = self.event_type.value
        if self.pattern is not None:
            data["pattern"] = self.pattern
        return data

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> FilterCondition:
        data = data or {}
        event_type = data.get("event_type")
        try:
            return cls(
                event_type=EventType(event_type) if event_type else None,
                pattern=data.get("pattern"),
            )
        except ValueError:
            raise EngineError(
                ErrorType.PARSING_ERROR, f"Unknown event type in condition: {event_type!r}"
            ) from None


_pattern_cache: dict[str, re.Pattern] = {}


def _compiled(pattern: str) -> re.Pattern:
    compiled = _pattern_cache.get(pattern)
    if compiled is None:
        compiled = _pattern_cache[pattern] = re.compile(pattern)
    return compiled


@dataclass(frozen=True)
class PayloadPatch:
    """Payload rewrite for modify filters: set keys, then drop keys."""
    set: dict = field(default_factory=dict)
    remove: tuple[str, ...] = ()

    def apply(self, payload) -> Any:
        patched = thaw(payload)
        patched.update(thaw(self.set))
        for key in self.remove:
            patched.pop(key, None)
        return freeze(patched)

    def to_dict(self) -> dict:
        return {"set": thaw(self.set), "remove": list(self.remove)}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> PayloadPatch:
        data = data or {}
        return cls(set=dict(data.get("set", {})), remove=tuple(data.get("remove", ())))


@dataclass
class InputFilter:
    """A predicate + action rule."""
    id: str
    name: str
    kind: FilterKind
    condition: FilterCondition = field(default_factory=FilterCondition)
    enabled: bool = True
    max_rate: Optional[int] = None  # matching events per second, rate_limit only
    patch: Optional[PayloadPatch] = None  # modify only
    protected: bool = False  # survives optimize_latency

    def __post_init__(self):
        if self.kind == FilterKind.RATE_LIMIT and (self.max_rate is None or self.max_rate < 1):
            raise EngineError(
                ErrorType.PARSING_ERROR,
                f"Filter {self.id}: rate_limit filters need max_rate >= 1",
            )

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "kind": self.kind.value,
            "enabled": self.enabled,
            "condition": self.condition.to_dict(),
        }
        if self.max_rate is not None:
            data["max_rate"] = self.max_rate
        if self.patch is not None:
            data["patch"] = self.patch.to_dict()
        if self.protected:
            data["protected"] = True
        return data

    @classmethod
    def from_dict(cls, data: dict) -> InputFilter:
        try:
            kind = FilterKind(data["kind"])
        except KeyError:
            raise EngineError(ErrorType.PARSING_ERROR, "Filter is missing 'kind'") from None
        except ValueError:
            raise EngineError(
                ErrorType.PARSING_ERROR,
                f"Unknown filter kind: {data['kind']!r}",
                {"allowed": [k.value for k in FilterKind]},
            ) from None
        if "id" not in data:
            raise EngineError(ErrorType.PARSING_ERROR, "Filter is missing 'id'")

        return cls(
            id=str(data["id"]),
            name=str(data.get("name", data["id"])),
            kind=kind,
            condition=FilterCondition.from_dict(data.get("condition")),
            enabled=data.get("enabled", True),
            max_rate=data.get("max_rate"),
            patch=PayloadPatch.from_dict(data["patch"]) if data.get("patch") else None,
            protected=data.get("protected", False),
        )


@dataclass
class FilterResult:
    """Outcome of running one event through the pipeline."""
    event: Optional[InputEvent]
    dropped_by: Optional[str] = None
    rate_limited: bool = False
    modified_by: list[str] = field(default_factory=list)


class FilterPipeline:
    """Applies filters in registration order.

    A duplicate id replaces the earlier filter in place, keeping its position.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._filters: dict[str, InputFilter] = {}
        self._windows: dict[str, deque[float]] = {}
        self._clock = clock

    def add_filter(self, input_filter: InputFilter):
        if input_filter.id in self._filters:
            logger.warning("Filter '%s' already registered, replacing", input_filter.id)
        self._filters[input_filter.id] = input_filter
        self._windows[input_filter.id] = deque()

    def remove_filter(self, filter_id: str) -> bool:
        self._windows.pop(filter_id, None)
        return self._filters.pop(filter_id, None) is not None

    def get_filter(self, filter_id: str) -> Optional[InputFilter]:
        return self._filters.get(filter_id)

    def list_filters(self) -> list[InputFilter]:
        return list(self._filters.values())

    def set_enabled(self, filter_id: str, enabled: bool) -> bool:
        f = self._filters.get(filter_id)
        if f is None:
            return False
        f.enabled = enabled
        return True

    def apply(self, event: InputEvent) -> FilterResult:
        result = FilterResult(event=event)
        current = event

        for f in self._filters.values():
            if not f.enabled or not f.condition.matches(current):
                continue

            if f.kind == FilterKind.BLOCK:
                logger.debug("Event %s blocked by %s", current.id, f.id)
                return FilterResult(event=None, dropped_by=f.id, modified_by=result.modified_by)

            if f.kind == FilterKind.ALLOW:
                continue

            if f.kind == FilterKind.MODIFY:
                if f.patch is not None:
                    current = replace(current, payload=f.patch.apply(current.payload))
                    result.modified_by.append(f.id)
                continue

            if f.kind == FilterKind.RATE_LIMIT and not self._admit(f):
                return FilterResult(
                    event=None, dropped_by=f.id, rate_limited=True, modified_by=result.modified_by
                )

        result.event = current
        return result

    def _admit(self, f: InputFilter) -> bool:
        """Sliding one-second window of admitted events for a rate_limit filter."""
        now = self._clock()
        window = self._windows.setdefault(f.id, deque())
        while window and now - window[0] >= RATE_WINDOW_SECONDS:
            window.popleft()
        if len(window) >= f.max_rate:
            return False
        window.append(now)
        return True

    @classmethod
    def from_dicts(cls, entries: list[dict], **kwargs) -> FilterPipeline:
        pipeline = cls(**kwargs)
        for entry in entries:
            pipeline.add_filter(InputFilter.from_dict(entry))
        return pipeline

    @classmethod
    def from_yaml(cls, path: str | Path, **kwargs) -> FilterPipeline:
        with open(path) as f:
            config = yaml.safe_load(f) or {}
        return cls.from_dicts(config.get("filters", []), **kwargs)

    def to_yaml(self, path: str | Path):
        entries = [f.to_dict() for f in self._filters.values()]
        with open(path, "w") as f:
            yaml.dump({"filters": entries}, f, default_flow_style=False, sort_keys=False)

    def __len__(self) -> int:
        return len(self._filters)


# Exact key + modifier set; modifiers may arrive in any order
DANGEROUS_SHORTCUTS = (
    ("f4", ("alt",)),
    ("del|delete", ("ctrl", "alt")),
    ("q", ("cmd",)),
)


def _shortcut_pattern(keys: str, modifiers: tuple[str, ...]) -> str:
    orders = "|".join('", "'.join(p) for p in permutations(modifiers))
    return rf'^(?=.*"key": "(?:{keys})")(?=.*"modifiers": \["(?:{orders})"\])'


def default_filters() -> list[InputFilter]:
    """Built-in global rate limiter and dangerous-shortcut blocker."""
    return [
        InputFilter(
            id="rate_limiter",
            name="Global Rate Limiter",
            kind=FilterKind.RATE_LIMIT,
            max_rate=1000,
            protected=True,
        ),
        InputFilter(
            id="security_filter",
            name="Security Key Filter",
            kind=FilterKind.BLOCK,
            condition=FilterCondition(
                event_type=EventType.KEYBOARD,
                pattern="(?i)" + "|".join(_shortcut_pattern(k, m) for k, m in DANGEROUS_SHORTCUTS),
            ),
            protected=True,
        ),
    ]
