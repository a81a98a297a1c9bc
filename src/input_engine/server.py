"""HTTP surface for the tool facade.

Endpoints:
- GET  /api/status        engine status summary
- GET  /api/tools         tool names, descriptions and argument schemas
- POST /api/tools/{name}  run a tool; the body is its argument object
- GET  /metrics           Prometheus text exposition

Usage:
    uvicorn input_engine.server:app --host 127.0.0.1 --port 8765
    # or
    input-engine serve
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Body, FastAPI
from fastapi.responses import PlainTextResponse

from input_engine import __version__
from input_engine.config import load_config
from input_engine.engine import InputEngine
from input_engine.tools import call_tool, registry

logger = logging.getLogger("input_engine.server")


def create_app(engine: Optional[InputEngine] = None) -> FastAPI:
    """Build the FastAPI app around an engine (a default one when omitted)."""
    engine = engine or InputEngine(load_config())
    started = time.time()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Input engine server starting")
        yield
        await engine.shutdown()

    app = FastAPI(title="InputEngine", version=__version__, lifespan=lifespan)
    app.state.engine = engine

    @app.get("/api/status")
    async def api_status():
        return {
            "version": __version__,
            "uptime": round(time.time() - started, 1),
            "sessions": [s.to_dict() for s in _sessions(engine)],
            **engine.status(),
        }

    @app.get("/api/tools")
    async def list_tools():
        return {"tools": [t.to_dict() for t in registry.list()]}

    @app.post("/api/tools/{name}")
    async def run_tool(name: str, arguments: Optional[dict] = Body(default=None)):
        return await call_tool(engine, name, arguments)

    @app.get("/metrics")
    async def metrics():
        engine.metrics.set_queue_size(engine.ingress.get_queue_size())
        return PlainTextResponse(
            engine.metrics.render(),
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    return app


def _sessions(engine: InputEngine) -> list:
    list_sessions = getattr(engine.sessions, "list", None)
    return list_sessions() if callable(list_sessions) else []


def demo_engine() -> InputEngine:
    """Engine with an in-memory ``demo`` session, for trying the API by hand."""
    engine = InputEngine(load_config())
    engine.sessions.create("demo", name="Demo session")
    return engine


app = create_app(demo_engine())
