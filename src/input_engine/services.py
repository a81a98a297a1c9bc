"""External collaborators: session lookup and terminal I/O.

The engine only talks to these protocols. The in-memory implementations
back the tests, the CLI and the HTTP demo server.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Protocol

from input_engine.errors import EngineError, ErrorType, session_not_found
from input_engine.events import new_id
from input_engine.snapshots import TerminalState

logger = logging.getLogger("input_engine.services")


class SessionDirectory(Protocol):
    def lookup(self, session_id: str) -> Optional[Any]: ...


class TerminalIOProvider(Protocol):
    async def send_synthesized_input(self, session_id: str, data: bytes) -> None: ...

    async def get_terminal_state(self, session_id: str) -> TerminalState: ...


@dataclass
class Session:
    id: str
    name: str = ""
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "created_at": self.created_at}


class InMemorySessionDirectory:
    def __init__(self):
        self._sessions: dict[str, Session] = {}

    def create(self, session_id: Optional[str] = None, name: str = "") -> Session:
        session = Session(id=session_id or new_id("session"), name=name)
        if session.id in self._sessions:
            raise EngineError(ErrorType.RESOURCE_ERROR, f"Session {session.id} already exists")
        self._sessions[session.id] = session
        return session

    def lookup(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def remove(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def list(self) -> list[Session]:
        return list(self._sessions.values())


class InMemoryTerminal:
    """Terminal provider that stores states and collects synthesized input.

    ``state_delay`` makes get_terminal_state slow, for timeout handling.
    """

    def __init__(self, state_delay: float = 0.0):
        self.state_delay = state_delay
        self._states: dict[str, TerminalState] = {}
        self._written: dict[str, bytearray] = {}

    def set_state(self, session_id: str, state: TerminalState | Mapping[str, Any]):
        if isinstance(state, Mapping):
            state = TerminalState.from_dict(state)
        self._states[session_id] = state

    async def send_synthesized_input(self, session_id: str, data: bytes) -> None:
        self._written.setdefault(session_id, bytearray()).extend(data)
        logger.debug("Wrote %d bytes to %s", len(data), session_id)

    async def get_terminal_state(self, session_id: str) -> TerminalState:
        if self.state_delay:
            await asyncio.sleep(self.state_delay)
        return self._states.get(session_id, TerminalState())

    def written(self, session_id: str) -> bytes:
        return bytes(self._written.get(session_id, b""))


def require_session(sessions: SessionDirectory, session_id: str) -> Any:
    session = sessions.lookup(session_id)
    if session is None:
        raise session_not_found(session_id)
    return session


_SPECIAL_KEYS = {
    "enter": b"\r",
    "return": b"\r",
    "tab": b"\t",
    "backspace": b"\x7f",
    "escape": b"\x1b",
    "esc": b"\x1b",
    "space": b" ",
    "up": b"\x1b[A",
    "down": b"\x1b[B",
    "right": b"\x1b[C",
    "left": b"\x1b[D",
    "home": b"\x1b[H",
    "end": b"\x1b[F",
    "delete": b"\x1b[3~",
    "pageup": b"\x1b[5~",
    "pagedown": b"\x1b[6~",
}


def keyboard_bytes(payload: Mapping[str, Any]) -> bytes:
    """Bytes a terminal would receive for a keyboard event payload.

    ``text`` is sent verbatim; otherwise ``key`` is translated, with
    ``ctrl`` and ``alt`` modifiers applied to single characters.
    """
    text = payload.get("text")
    if text:
        return str(text).encode()

    key = str(payload.get("key", ""))
    if not key:
        return b""
    modifiers = {str(m).lower() for m in payload.get("modifiers", ())}

    special = _SPECIAL_KEYS.get(key.lower())
    if special is not None:
        data = special
    elif len(key) == 1:
        data = key.encode()
        if "ctrl" in modifiers and key.isalpha():
            data = bytes([ord(key.lower()) & 0x1F])
    else:
        return b""

    if "alt" in modifiers:
        data = b"\x1b" + data
    return data
