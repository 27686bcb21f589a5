"""
Core API backend for taskrelay.

It exposes the following endpoints:
- **GET /api/health** - liveness probe for health checks.
- **POST /api/agent**  - run the agent on {"prompt": "..."} and stream protocol lines back.
- **GET /tmp/...**     - generated audio files.

The agent response body is the line protocol from :mod:`taskrelay.core.protocol`, one line per
chunk, ending with a ``[COMPLETE]`` / ``[INCOMPLETE]`` line or, if the LLM call itself failed, an
``[ERROR]`` line.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import (
    Depends,
    FastAPI,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from fastapi.staticfiles import StaticFiles

from taskrelay.agent.orchestrator import Orchestrator
from taskrelay.api.models import (
    AgentRequest,
    HealthResponse,
)
from taskrelay.common import (
    AnsiColors,
    colored_print,
)
from taskrelay.config import settings
from taskrelay.core.protocol import (
    LineChannel,
    ProtocolTag,
    completion_line,
    format_line,
)
from taskrelay.tools.voice import (
    AUDIO_URL_PREFIX,
    audio_dir,
)

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Create the generated-audio directory before serving requests."""
    out_dir = audio_dir()
    out_dir.mkdir(parents=True, exist_ok=True)
    logger.debug("Serving generated audio from %s", out_dir)
    yield


app = FastAPI(
    title="taskrelay API",
    version="0.1.0",
    description="Streaming tool-calling agent",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# The directory is created by ``lifespan``; do not touch the filesystem at import time.
app.mount(
    AUDIO_URL_PREFIX, StaticFiles(directory=str(audio_dir()), check_dir=False), name="audio"
)


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------
def get_orchestrator() -> Orchestrator:
    """Fresh orchestrator (and tool registry) per request."""
    return Orchestrator()


async def run_and_stream(orchestrator: Orchestrator, prompt: str, channel: LineChannel) -> None:
    """Run the agent, writing every protocol line into *channel*; always closes it."""
    emit = channel.emit
    try:
        emit(format_line(ProtocolTag.LOG, f"Received: {prompt}"))
        outcome = await orchestrator.run(prompt, emit)
        emit(completion_line(outcome.text, outcome.completed, settings.EXHAUSTED_MARKER))
    except Exception as exc:  # pylint: disable=broad-except
        # LLM or plumbing failure: surface it on the stream, then end without a completion marker.
        logger.exception("Orchestration failed")
        message = " ".join(str(exc).splitlines()) or type(exc).__name__
        emit(format_line(ProtocolTag.ERROR, message))
    finally:
        channel.close()


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/api/health", response_model=HealthResponse, summary="Health check")
async def health() -> HealthResponse:
    """Return a simple liveness payload."""
    return HealthResponse(status="ok", timestamp=int(time.time() * 1000))


@app.post("/api/agent", summary="Run the agent and stream its progress")
async def agent_endpoint(
    req: AgentRequest, orchestrator: Orchestrator = Depends(get_orchestrator)
) -> StreamingResponse:
    """Start the orchestration task and stream its protocol lines as they are emitted."""
    channel = LineChannel()
    task = asyncio.create_task(run_and_stream(orchestrator, req.prompt, channel))

    async def body() -> AsyncIterator[str]:
        try:
            async for line in channel.lines():
                yield line + "\n"
        finally:
            # Client went away before the run finished.
            if not task.done():
                logger.info("Client disconnected; cancelling orchestration")
                task.cancel()

    return StreamingResponse(body(), media_type="text/event-stream")


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str | None = None,
    port: int | None = None,
    reload: bool = False,
    log_level: str | None = None,
) -> None:
    """Start a uvicorn server hosting *app*.

    Parameters
    ----------
    host, port:
        Bind address for the HTTP server (defaults from settings).
    reload:
        If *True*, enable auto-reload (useful in development).
    log_level:
        Logging level to use (default from settings if not provided).
    """

    # Lazy import - keeps uvicorn an optional dependency at pkg-import time
    import uvicorn  # pylint: disable=import-outside-toplevel

    host = host or settings.API_HOST
    port = port or settings.API_PORT
    if log_level is None:  # Use the default from settings if not provided
        log_level = settings.LOG_LEVEL

    logger.info(
        "Starting taskrelay API at %s:%d (reload=%s, log_level=%s)", host, port, reload, log_level
    )
    colored_print(f"taskrelay API is running at http://localhost:{port}.", AnsiColors.GREEN)
    uvicorn.run(
        "taskrelay.api.app:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


# ---------------------------------------------------------------------------
# `python -m taskrelay.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)
