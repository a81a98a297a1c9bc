"""Terminal state snapshots and deterministic diffs.

Snapshots capture the state reported by the terminal state provider and
are never mutated. Diffs compare two snapshots field by field; the change
list for a snapshot pair is computed once and reused, so diffing the same
pair twice publishes identical changes under two diff ids.

Usage:
    store = SnapshotStore(sessions, terminal)
    before = await store.create_snapshot("s1")
    ...
    after = await store.create_snapshot("s1")
    diff = store.generate_diff(before.id, after.id)
    print(diff.summary)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping, Optional

from input_engine.errors import EngineError, ErrorType, session_not_found
from input_engine.events import freeze, new_id, thaw

if TYPE_CHECKING:
    from input_engine.services import SessionDirectory, TerminalIOProvider

logger = logging.getLogger("input_engine.snapshots")


@dataclass(frozen=True)
class Cursor:
    x: int = 0
    y: int = 0
    visible: bool = True


@dataclass(frozen=True)
class Dimensions:
    cols: int = 80
    rows: int = 24


@dataclass(frozen=True)
class CellAttributes:
    bold: bool = False
    italic: bool = False
    underline: bool = False
    foreground_color: Optional[str] = None
    background_color: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "bold": self.bold,
            "italic": self.italic,
            "underline": self.underline,
            "foreground_color": self.foreground_color,
            "background_color": self.background_color,
        }


@dataclass(frozen=True)
class TerminalState:
    """What the terminal looked like at one instant."""
    content: str = ""
    cursor: Cursor = field(default_factory=Cursor)
    dimensions: Dimensions = field(default_factory=Dimensions)
    attributes: tuple[CellAttributes, ...] = ()

    def to_dict(self) -> dict:
        return {
            "content": self.content,
            "cursor": {"x": self.cursor.x, "y": self.cursor.y, "visible": self.cursor.visible},
            "dimensions": {"cols": self.dimensions.cols, "rows": self.dimensions.rows},
            "attributes": [a.to_dict() for a in self.attributes],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TerminalState:
        try:
            return cls(
                content=str(data.get("content", "")),
                cursor=Cursor(**data.get("cursor", {})),
                dimensions=Dimensions(**data.get("dimensions", {})),
                attributes=tuple(CellAttributes(**a) for a in data.get("attributes", ())),
            )
        except TypeError as e:
            raise EngineError(ErrorType.PARSING_ERROR, f"Invalid terminal state: {e}") from None


@dataclass(frozen=True)
class Snapshot:
    id: str
    session_id: str
    timestamp: float
    state: TerminalState
    metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "timestamp": self.timestamp,
            "state": self.state.to_dict(),
            "metadata": thaw(self.metadata),
        }


@dataclass(frozen=True)
class StateChange:
    """One changed field between two snapshots."""
    type: str  # content | cursor | dimensions | attributes
    path: str
    old_value: Any
    new_value: Any
    lines: tuple[int, ...] = ()  # changed line numbers, content only

    def to_dict(self) -> dict:
        data = {
            "type": self.type,
            "path": self.path,
            "old_value": self.old_value,
            "new_value": self.new_value,
        }
        if self.type == "content":
            data["lines"] = list(self.lines)
        return data


@dataclass(frozen=True)
class Diff:
    id: str
    from_snapshot_id: str
    to_snapshot_id: str
    timestamp: float
    summary: str
    changes: tuple[StateChange, ...]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from_snapshot_id": self.from_snapshot_id,
            "to_snapshot_id": self.to_snapshot_id,
            "timestamp": self.timestamp,
            "summary": self.summary,
            "changes": [c.to_dict() for c in self.changes],
        }


def changed_lines(old: str, new: str) -> tuple[int, ...]:
    """Zero-based line numbers whose text differs (including added/removed lines)."""
    a = old.split("\n")
    b = new.split("\n")
    return tuple(
        i for i in range(max(len(a), len(b)))
        if (a[i] if i < len(a) else None) != (b[i] if i < len(b) else None)
    )


def compute_changes(old: TerminalState, new: TerminalState) -> tuple[StateChange, ...]:
    """Field-by-field comparison, sorted by path."""
    before = old.to_dict()
    after = new.to_dict()
    changes = []

    if old.content != new.content:
        changes.append(StateChange(
            type="content",
            path="state.content",
            old_value=old.content,
            new_value=new.content,
            lines=changed_lines(old.content, new.content),
        ))
    if old.cursor != new.cursor:
        changes.append(StateChange("cursor", "state.cursor", before["cursor"], after["cursor"]))
    if old.dimensions != new.dimensions:
        changes.append(StateChange("dimensions", "state.dimensions", before["dimensions"], after["dimensions"]))
    if old.attributes != new.attributes:
        changes.append(StateChange("attributes", "state.attributes", before["attributes"], after["attributes"]))

    return tuple(sorted(changes, key=lambda c: c.path))


def summarize(changes: tuple[StateChange, ...]) -> str:
    if not changes:
        return "No changes detected"
    return "Changes detected in: " + ", ".join(c.type for c in changes)


class SnapshotStore:
    """Owns snapshots and diffs for all sessions."""

    def __init__(self, sessions: SessionDirectory, terminal: TerminalIOProvider):
        self._sessions = sessions
        self._terminal = terminal
        self._snapshots: dict[str, Snapshot] = {}
        self._diffs: dict[str, Diff] = {}
        self._change_cache: dict[tuple[str, str], tuple[StateChange, ...]] = {}

    async def create_snapshot(self, session_id: str, metadata: Optional[Mapping[str, Any]] = None) -> Snapshot:
        if self._sessions.lookup(session_id) is None:
            raise session_not_found(session_id)

        state = await self._terminal.get_terminal_state(session_id)
        if isinstance(state, Mapping):
            state = TerminalState.from_dict(state)

        snapshot = Snapshot(
            id=new_id("snap"),
            session_id=session_id,
            timestamp=time.time(),
            state=state,
            metadata=freeze(metadata or {}),
        )
        self._snapshots[snapshot.id] = snapshot
        logger.debug("Snapshot %s captured for session %s", snapshot.id, session_id)
        return snapshot

    def generate_diff(self, from_id: str, to_id: str) -> Diff:
        old = self._require(from_id)
        new = self._require(to_id)

        key = (from_id, to_id)
        changes = self._change_cache.get(key)
        if changes is None:
            changes = self._change_cache[key] = compute_changes(old.state, new.state)

        diff = Diff(
            id=new_id("diff"),
            from_snapshot_id=from_id,
            to_snapshot_id=to_id,
            timestamp=time.time(),
            summary=summarize(changes),
            changes=changes,
        )
        self._diffs[diff.id] = diff
        return diff

    def _require(self, snapshot_id: str) -> Snapshot:
        snapshot = self._snapshots.get(snapshot_id)
        if snapshot is None:
            raise EngineError(
                ErrorType.RESOURCE_ERROR,
                f"Snapshot {snapshot_id} not found",
                {"snapshot_id": snapshot_id},
            )
        return snapshot

    def get_snapshot(self, snapshot_id: str) -> Optional[Snapshot]:
        return self._snapshots.get(snapshot_id)

    def list_snapshots(self, session_id: Optional[str] = None) -> list[Snapshot]:
        snaps = [s for s in self._snapshots.values() if session_id is None or s.session_id == session_id]
        return sorted(snaps, key=lambda s: s.timestamp)

    def delete_snapshot(self, snapshot_id: str) -> bool:
        if self._snapshots.pop(snapshot_id, None) is None:
            return False
        for key in [k for k in self._change_cache if snapshot_id in k]:
            del self._change_cache[key]
        return True

    def get_diff(self, diff_id: str) -> Optional[Diff]:
        return self._diffs.get(diff_id)

    def list_diffs(self) -> list[Diff]:
        return sorted(self._diffs.values(), key=lambda d: d.timestamp)

    def delete_diff(self, diff_id: str) -> bool:
        return self._diffs.pop(diff_id, None) is not None

    def cleanup(self):
        """Drop every snapshot and diff."""
        self._snapshots.clear()
        self._diffs.clear()
        self._change_cache.clear()
