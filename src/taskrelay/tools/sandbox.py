"""
Python code execution tool.

Two back-ends are available, selected by ``settings.SANDBOX_MODE``:

* ``mock``  - does not execute anything, echoes the code back (safe default for development).
* ``local`` - runs the code in an isolated ``python -I`` subprocess inside a throw-away directory,
  with a wall-clock timeout.
"""

import asyncio
import json
import logging
import sys
import tempfile
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Dict,
)

from pydantic import (
    BaseModel,
    Field,
)

from taskrelay.config import settings
from taskrelay.core.protocol import (
    ProtocolTag,
    format_line,
)
from taskrelay.tools import (
    ToolOptions,
    register_tool,
)

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124


class RunPythonArgs(BaseModel):
    """Arguments of ``run_python_in_sandbox``."""

    code: str = Field(..., description="Python code to execute inside sandbox")


# ---------------------------------------------------------------------------
# Sandbox back-ends
# ---------------------------------------------------------------------------
class Sandbox(ABC):
    """Executes a snippet of Python and reports its output."""

    mode: str = "abstract"

    @abstractmethod
    async def run_code(self, code: str) -> Dict[str, Any]:
        """Run *code*; return at least ``stdout`` and ``stderr``."""

    async def close(self) -> None:
        """Release any resources held by the sandbox."""


class MockSandbox(Sandbox):
    """Echo sandbox used when real execution is disabled."""

    mode = "mock"

    async def run_code(self, code: str) -> Dict[str, Any]:
        return {"stdout": "MOCK_SANDBOX:\n" + code, "stderr": ""}


class LocalSandbox(Sandbox):
    """Runs code in a separate interpreter process with a timeout."""

    mode = "local"

    def __init__(self, timeout: float | None = None) -> None:
        self.timeout = timeout if timeout is not None else settings.SANDBOX_TIMEOUT
        self._workdir = tempfile.TemporaryDirectory(prefix="taskrelay-sandbox-")

    async def run_code(self, code: str) -> Dict[str, Any]:
        proc = await asyncio.create_subprocess_exec(
            sys.executable,
            "-I",
            "-c",
            code,
            cwd=self._workdir.name,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            await self._kill(proc)
            logger.warning("Sandbox execution timed out after %.1fs", self.timeout)
            return {
                "stdout": "",
                "stderr": f"Execution timed out after {self.timeout:g} seconds",
                "exit_code": TIMEOUT_EXIT_CODE,
            }
        except BaseException:
            # Cancelled (e.g. client disconnect): never leave the child running.
            logger.info("Sandbox run interrupted; killing pid %s", proc.pid)
            await asyncio.shield(self._kill(proc))
            raise
        return {
            "stdout": stdout.decode("utf-8", errors="replace"),
            "stderr": stderr.decode("utf-8", errors="replace"),
            "exit_code": proc.returncode,
        }

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass  # exited in the meantime
        await proc.wait()

    async def close(self) -> None:
        self._workdir.cleanup()


def create_sandbox(mode: str | None = None) -> Sandbox:
    """Return a sandbox for *mode* (default ``settings.SANDBOX_MODE``)."""
    mode = (mode or settings.SANDBOX_MODE).lower()
    if mode == "local":
        return LocalSandbox()
    if mode != "mock":
        raise ValueError(f"Unknown sandbox mode '{mode}'.")
    logger.warning("[sandbox] SANDBOX_MODE=mock - code will not be executed.")
    return MockSandbox()


# ---------------------------------------------------------------------------
# Tool
# ---------------------------------------------------------------------------
@register_tool("run_python_in_sandbox", RunPythonArgs)
async def run_python_in_sandbox(args: RunPythonArgs, options: ToolOptions) -> Dict[str, Any]:
    """Executes Python code safely in a sandbox and returns stdout/stderr."""
    options.emit(f"[CODE] {args.code}")
    sandbox = create_sandbox()
    options.emit(format_line(ProtocolTag.SANDBOX, f"started ({sandbox.mode})"))
    try:
        result = await sandbox.run_code(args.code)
    finally:
        await sandbox.close()
    options.emit(f"[SANDBOX_RESULT] {json.dumps(result)}")
    return result
