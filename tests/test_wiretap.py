"""
Tests for the wiretap transcript and its renderer.
"""

import json
import pytest
from pathlib import Path
from llamadash.wiretap import TranscriptPrinter, WireLog, live_tap, read_entries


@pytest.fixture
def wire_log(tmp_path):
    """Create a WireLog writing to a temp file."""
    return WireLog(str(tmp_path / "data" / "wire.jsonl"))


def test_wire_log_writes_jsonl(wire_log):
    """WireLog writes valid JSONL entries, creating the parent directory."""
    wire_log.log(
        direction="outbound",
        role="user",
        content="hello world",
        model="qwen2.5-7b",
        conversation_id="abc123",
    )
    wire_log.log(
        direction="inbound",
        role="assistant",
        content="hi there!",
        model="qwen2.5-7b",
        conversation_id="abc123",
        outcome="completed",
    )
    wire_log.close()

    lines = Path(wire_log.log_path).read_text(encoding="utf-8").strip().split("\n")
    assert len(lines) == 2

    entry1 = json.loads(lines[0])
    assert entry1["dir"] == "outbound"
    assert entry1["role"] == "user"
    assert entry1["content"] == "hello world"
    assert entry1["conv"] == "abc123"
    assert "outcome" not in entry1

    entry2 = json.loads(lines[1])
    assert entry2["dir"] == "inbound"
    assert entry2["outcome"] == "completed"
    assert entry2["len"] == 9


def test_wire_log_truncates_long_content(wire_log):
    """Long content keeps its head and tail; len records the full size."""
    long_content = "a" * 3000 + "b" * 3000
    wire_log.log(direction="inbound", role="assistant", content=long_content)
    wire_log.close()

    entry = json.loads(Path(wire_log.log_path).read_text().strip())
    assert entry["content"].startswith("a" * 1000)
    assert entry["content"].endswith("b" * 1000)
    assert "4000 chars truncated" in entry["content"]
    assert entry["len"] == 6000


def test_wire_log_keeps_unicode(wire_log):
    wire_log.log(direction="outbound", role="user", content="héllo 世界")
    wire_log.close()
    raw = Path(wire_log.log_path).read_text(encoding="utf-8")
    assert "héllo 世界" in raw


def _entry(role, content, conv="abc123", model="qwen2.5-7b", outcome=""):
    entry = {
        "ts": "2026-01-01T12:30:00+00:00",
        "dir": "outbound" if role == "user" else "inbound",
        "role": role,
        "model": model,
        "conv": conv,
        "len": len(content),
        "content": content,
    }
    if outcome:
        entry["outcome"] = outcome
    return entry


def test_read_entries_skips_garbage(tmp_path):
    path = tmp_path / "wire.jsonl"
    path.write_text(
        json.dumps(_entry("user", "one")) + "\n"
        + "not json\n\n[1, 2]\n"
        + json.dumps(_entry("assistant", "two")) + "\n",
        encoding="utf-8",
    )
    assert [e["content"] for e in read_entries(path)] == ["one", "two"]


def test_printer_renders_message():
    """Plain rendering carries time, speaker and content."""
    out = TranscriptPrinter(color=False).render(_entry("user", "hello world"))
    banner, line = out.split("\n")
    assert "conversation abc123" in banner
    assert "qwen2.5-7b" in banner
    assert line.startswith("12:30:00    you │ hello world")


def test_printer_banner_only_on_conversation_change():
    printer = TranscriptPrinter(color=False)
    first = printer.render(_entry("user", "q"))
    second = printer.render(_entry("assistant", "a"))
    third = printer.render(_entry("user", "other", conv="zzz999"))
    assert "conversation" in first
    assert "conversation" not in second
    assert "conversation zzz999" in third


def test_printer_marks_unfinished_replies():
    printer = TranscriptPrinter(color=False)
    assert "[stopped]" in printer.message(_entry("assistant", "Par", outcome="stopped"))
    assert "[completed]" not in printer.message(_entry("assistant", "Hello", outcome="completed"))


def test_printer_clips_long_messages():
    content = "\n".join(f"line {i}" for i in range(20))
    lines = TranscriptPrinter(color=False).message(_entry("assistant", content)).split("\n")
    assert len(lines) == 13
    assert lines[-1].endswith("(+8 lines)")


def test_printer_colors_by_role():
    out = TranscriptPrinter().message(_entry("assistant", "hi"))
    assert "\033[93m" in out
    assert "\033[0m" in out


def test_live_tap_prints_recent_entries(tmp_path, capsys):
    wire = WireLog(str(tmp_path / "wire.jsonl"))
    for i in range(5):
        wire.log(direction="outbound", role="user", content=f"msg {i}")
    wire.log(direction="inbound", role="assistant", content="reply")
    wire.close()

    live_tap(str(tmp_path / "wire.jsonl"), follow=False, last_n=3, role_filter="user", raw=True)
    out = capsys.readouterr().out.strip().splitlines()
    assert [json.loads(line)["content"] for line in out] == ["msg 2", "msg 3", "msg 4"]


def test_live_tap_formatted(tmp_path, capsys):
    wire = WireLog(str(tmp_path / "wire.jsonl"))
    wire.log(direction="outbound", role="user", content="ping", model="m", conversation_id="c1")
    wire.log(direction="inbound", role="assistant", content="pong", model="m",
             conversation_id="c1", outcome="completed")
    wire.close()

    live_tap(str(tmp_path / "wire.jsonl"), follow=False)
    out = capsys.readouterr().out
    assert out.count("conversation c1") == 1
    assert "ping" in out and "pong" in out


def test_live_tap_missing_file(tmp_path, capsys):
    live_tap(str(tmp_path / "nope.jsonl"), follow=False)
    assert "No wire log found" in capsys.readouterr().out
