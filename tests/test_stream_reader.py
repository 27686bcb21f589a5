"""
Tests for the client-side stream demultiplexer.

Run with:
$ pytest -q
"""

import json

import pytest

from taskrelay.client.stream_reader import (
    StreamDemultiplexer,
    parse_file_line,
    split_completion,
)
from taskrelay.core.protocol import file_line
from taskrelay.core.schema import FileArtifact


def _demux(*chunks) -> StreamDemultiplexer:
    demux = StreamDemultiplexer()
    for chunk in chunks:
        demux.feed(chunk)
    demux.close()
    return demux


def test_file_line_round_trip() -> None:
    """A FILE line reaches the file table and never the logs."""
    demux = _demux('[FILE] {"tool":"x","filename":"f.json","content":"{\\"a\\":1}"}\n')
    result = demux.result()

    assert result.files == [FileArtifact(tool="x", filename="f.json", content='{"a":1}')]
    assert result.run_logs == []
    assert result.final_output is None


def test_later_file_replaces_earlier() -> None:
    """Files are keyed by filename; the newest artifact wins."""
    first = FileArtifact(tool="a", filename="f.txt", content="old")
    other = FileArtifact(tool="a", filename="g.txt", content="g")
    second = FileArtifact(tool="b", filename="f.txt", content="new")
    stream = "".join(file_line(a) + "\n" for a in (first, other, second))

    files = _demux(stream).result().files

    assert [f.filename for f in files] == ["g.txt", "f.txt"]
    assert files[-1].content == "new"


@pytest.mark.parametrize(
    "payload",
    [
        "{not json",
        "[1, 2]",
        json.dumps({"filename": "x.txt"}),
        json.dumps({"filename": "", "content": "c"}),
        json.dumps({"filename": "x.txt", "content": ""}),
    ],
)
def test_malformed_file_line_is_dropped(payload) -> None:
    """Bad FILE lines are ignored and do not show up as logs either."""
    demux = _demux(f"[LOG] before\n[FILE] {payload}\n[LOG] after\n")
    result = demux.result()

    assert parse_file_line(f"[FILE] {payload}") is None
    assert result.files == []
    assert result.run_logs == ["[LOG] before", "[LOG] after"]


def test_final_output_spans_rest_of_stream() -> None:
    """Everything after the completion tag is the final answer."""
    result = _demux("[LOG] a\n[COMPLETE] Final\nanswer.\n").result()

    assert result.run_logs == ["[LOG] a"]
    assert result.final_output == "Final\nanswer."
    assert result.completed


def test_missing_completion_marker() -> None:
    result = _demux("[LOG] a\n[ERROR] network down\n").result()

    assert result.final_output is None
    assert not result.completed
    assert result.run_logs == ["[LOG] a", "[ERROR] network down"]


def test_incomplete_marker_is_not_completed() -> None:
    result = _demux("[FUNC] x\n[INCOMPLETE] (no final text)\n").result()

    assert result.final_output == "(no final text)"
    assert not result.completed


def test_chunk_boundaries_inside_tag_and_multibyte_char() -> None:
    """Splitting bytes anywhere yields the same lines as a single chunk."""
    payload = "[LOG] héllo wörld\n[COMPLETE] ünïcode ✓\n".encode("utf-8")
    whole = _demux(payload).result()

    for cut in range(1, len(payload)):
        split = _demux(payload[:cut], payload[cut:]).result()
        assert split == whole

    assert whole.run_logs == ["[LOG] héllo wörld"]
    assert whole.final_output == "ünïcode ✓"


def test_file_line_split_across_chunks() -> None:
    artifact = FileArtifact(tool="t", filename="s.txt", content="Sarah: hi\nBrian: hello")
    raw = (file_line(artifact) + "\n").encode("utf-8")

    demux = _demux(raw[:10], raw[10:25], raw[25:])

    assert demux.result().files == [artifact]


def test_close_flushes_unterminated_tail() -> None:
    demux = StreamDemultiplexer()

    assert demux.feed("[LOG] a\n[COMPLETE] tail") == ["[LOG] a"]
    demux.close()

    assert demux.result().final_output == "tail"


def test_whitespace_and_empty_lines_are_preserved() -> None:
    result = _demux("[LOG] a\n\n   indented\n").result()

    assert result.run_logs == ["[LOG] a", "", "   indented"]


def test_callbacks_fire_as_lines_complete() -> None:
    logs, files = [], []
    demux = StreamDemultiplexer(on_log=logs.append, on_file=files.append)

    demux.feed("[STEP] one")
    assert logs == []
    demux.feed('\n[FILE] {"filename":"a","content":"b"}\n')

    assert logs == ["[STEP] one"]
    assert files == [FileArtifact(filename="a", content="b")]


def test_split_completion_uses_first_marker() -> None:
    lines = ["[LOG] x", "  [COMPLETE] first", "[COMPLETE] second"]

    run_logs, final, completed = split_completion(lines)

    assert run_logs == ["[LOG] x"]
    assert final == "first\n[COMPLETE] second"
    assert completed
