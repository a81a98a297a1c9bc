"""Typed errors and the uniform result envelope.

Every public operation either returns data or raises an ``EngineError``.
The tool facade turns both outcomes into the same envelope shape:

    {"success": True, "data": {...}}
    {"success": False, "error": {"type": "...", "message": "...", "details": {...}}}
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Optional

from pydantic import ValidationError


class ErrorType(Enum):
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    PARSING_ERROR = "PARSING_ERROR"
    RESOURCE_ERROR = "RESOURCE_ERROR"
    COMMAND_FAILED = "COMMAND_FAILED"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"


class EngineError(Exception):
    """An error with a machine-readable type and optional details."""

    def __init__(
        self,
        type: ErrorType,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.type = type
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "message": self.message,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"EngineError({self.type.value}, {self.message!r})"


def session_not_found(session_id: str) -> EngineError:
    return EngineError(
        ErrorType.SESSION_NOT_FOUND,
        f"Session {session_id} not found",
        {"session_id": session_id},
    )


def handle_error(error: BaseException, context: str) -> EngineError:
    """Map any exception to an EngineError, prefixing the message with context."""
    if isinstance(error, EngineError):
        return error

    if isinstance(error, ValidationError):
        return EngineError(
            ErrorType.PARSING_ERROR,
            f"{context}: invalid arguments",
            {"errors": _validation_details(error)},
        )
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return EngineError(ErrorType.TIMEOUT_ERROR, f"{context}: operation timed out")
    if isinstance(error, (ValueError, TypeError, KeyError)):
        return EngineError(ErrorType.PARSING_ERROR, f"{context}: {error}")

    return EngineError(
        ErrorType.COMMAND_FAILED,
        f"{context}: {error}",
        {"original_error": type(error).__name__},
    )


def _validation_details(error: ValidationError) -> list[dict]:
    return [
        {"loc": [str(p) for p in e.get("loc", ())], "msg": e.get("msg", "")}
        for e in error.errors()
    ]


def ok(data: Any = None) -> dict:
    return {"success": True, "data": data}


def fail(error: EngineError) -> dict:
    return {"success": False, "error": error.to_dict()}
