"""
Client-side reader for the taskrelay line protocol.

:class:`StreamDemultiplexer` turns the raw byte stream of ``POST /api/agent`` back into three
channels:

* **logs**  - every line that is not a ``[FILE]`` line, verbatim (whitespace and empty lines kept);
* **files** - a table of :class:`~taskrelay.core.schema.FileArtifact` keyed by filename, where a
  later artifact with the same filename replaces the earlier one;
* **final output** - everything from the first ``[COMPLETE]`` (or ``[INCOMPLETE]``) line to the end
  of the stream, with the tag stripped.

Chunk boundaries may fall anywhere, including inside a multi-byte character or a tag, so bytes are
decoded incrementally and a line is only classified once its terminating ``\\n`` has arrived.
"""

import codecs
import json
import logging
from typing import (
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
    Tuple,
)

import httpx
from pydantic import (
    BaseModel,
    Field,
)

from taskrelay.config import settings
from taskrelay.core.protocol import (
    COMPLETION_TAGS,
    ProtocolTag,
)
from taskrelay.core.schema import FileArtifact

logger = logging.getLogger(__name__)


class StreamResult(BaseModel):
    """Everything reconstructed from one run."""

    run_logs: List[str] = Field(default_factory=list)
    final_output: Optional[str] = None
    completed: bool = False
    files: List[FileArtifact] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Line classification
# ---------------------------------------------------------------------------
def is_file_line(line: str) -> bool:
    return line.strip().startswith(ProtocolTag.FILE.marker)


def parse_file_line(line: str) -> Optional[FileArtifact]:
    """
    Decode a ``[FILE]`` line.

    Returns ``None`` (and logs a warning) for anything that is not a JSON object with non-empty
    string ``filename`` and ``content`` fields.
    """
    raw = line.strip()[len(ProtocolTag.FILE.marker) :].strip()
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Bad FILE JSON line (%s): %s", exc, raw[:200])
        return None

    if not isinstance(data, dict):
        logger.warning("FILE payload is not an object: %s", raw[:200])
        return None
    filename, content = data.get("filename"), data.get("content")
    if not (isinstance(filename, str) and filename and isinstance(content, str) and content):
        logger.warning("FILE payload lacks filename/content: %s", raw[:200])
        return None
    return FileArtifact(tool=str(data.get("tool") or ""), filename=filename, content=content)


def split_completion(lines: Sequence[str]) -> Tuple[List[str], Optional[str], bool]:
    """
    Split log lines at the first completion marker.

    Returns
    -------
    tuple
        ``(run_logs, final_output, completed)``.  *final_output* is the marker line without its tag
        followed by every later line, joined with ``\\n`` and trimmed; it is ``None`` when the
        stream has no marker.  *completed* is ``True`` only for ``[COMPLETE]``.
    """
    for index, line in enumerate(lines):
        clean = line.lstrip()
        for tag in COMPLETION_TAGS:
            if clean.startswith(tag.marker):
                first = clean[len(tag.marker) :]
                final = "\n".join([first, *lines[index + 1 :]]).strip()
                return list(lines[:index]), final, tag is ProtocolTag.COMPLETE
    return list(lines), None, False


# ---------------------------------------------------------------------------
# Demultiplexer
# ---------------------------------------------------------------------------
class StreamDemultiplexer:
    """
    Incremental parser for the agent stream.

    Parameters
    ----------
    on_log:
        Called with each log line as soon as it is complete.
    on_file:
        Called with each accepted file artifact.
    """

    def __init__(
        self,
        on_log: Callable[[str], None] | None = None,
        on_file: Callable[[FileArtifact], None] | None = None,
    ) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._on_log = on_log
        self._on_file = on_file
        self.logs: List[str] = []
        self.files: Dict[str, FileArtifact] = {}

    def feed(self, chunk: bytes | str) -> List[str]:
        """Consume one chunk; return the complete lines it finished."""
        text = self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        self._buffer += text
        *complete, self._buffer = self._buffer.split("\n")
        for line in complete:
            self._handle(line)
        return complete

    def close(self) -> None:
        """Flush a trailing line that was not newline-terminated."""
        self._buffer += self._decoder.decode(b"", final=True)
        if self._buffer:
            tail, self._buffer = self._buffer, ""
            self._handle(tail)

    def _handle(self, line: str) -> None:
        if is_file_line(line):
            artifact = parse_file_line(line)
            if artifact is not None:
                self.files.pop(artifact.filename, None)  # last write wins, moves to the end
                self.files[artifact.filename] = artifact
                if self._on_file:
                    self._on_file(artifact)
            return

        self.logs.append(line)
        if self._on_log:
            self._on_log(line)

    def result(self) -> StreamResult:
        run_logs, final_output, completed = split_completion(self.logs)
        return StreamResult(
            run_logs=run_logs,
            final_output=final_output,
            completed=completed,
            files=list(self.files.values()),
        )


# ---------------------------------------------------------------------------
# HTTP helper
# ---------------------------------------------------------------------------
def run_task(
    prompt: str,
    base_url: str | None = None,
    on_log: Callable[[str], None] | None = None,
    on_file: Callable[[FileArtifact], None] | None = None,
    client: httpx.Client | None = None,
    timeout: float = 300.0,
) -> StreamResult:
    """
    POST *prompt* to the agent endpoint and demultiplex the streamed response.

    Parameters
    ----------
    base_url:
        Server root; defaults to ``http://localhost:<API_PORT>``.
    client:
        Existing ``httpx.Client`` to use (e.g. a FastAPI ``TestClient``).

    Raises
    ------
    httpx.HTTPError
        On connection failures or a non-2xx status.
    """
    if base_url is None:
        base_url = f"http://localhost:{settings.API_PORT}"
    demux = StreamDemultiplexer(on_log=on_log, on_file=on_file)

    owns_client = client is None
    http = client if client is not None else httpx.Client(timeout=timeout)
    try:
        with http.stream("POST", f"{base_url}/api/agent", json={"prompt": prompt}) as response:
            response.raise_for_status()
            for chunk in response.iter_bytes():
                demux.feed(chunk)
    finally:
        if owns_client:
            http.close()

    demux.close()
    return demux.result()
