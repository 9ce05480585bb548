"""
Wiretap: a transcript of everything committed to a conversation.

Two parts:
  1. WireLog appends one JSONL entry per committed message
  2. live_tap() replays the file as a chat transcript, grouped by
     conversation, and optionally keeps following it

User messages go out on the wire ("outbound"); assistant messages come back
("inbound") tagged with how the generation ended.
"""

import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)

MAX_CONTENT = 2000
PREVIEW_LINES = 12

ANSI = {
    "reset": "\033[0m",
    "dim": "\033[2m",
    "red": "\033[91m",
    "user": "\033[96m",
    "assistant": "\033[93m",
    "system": "\033[90m",
}

SPEAKERS = {
    "user": "you",
    "assistant": "model",
    "system": "system",
}


class WireLog:
    """
    Structured JSONL transcript.

    Format:
        {"ts": "...", "dir": "outbound|inbound", "role": "...",
         "model": "...", "conv": "...", "len": 123, "outcome": "...", "content": "..."}
    """

    def __init__(self, log_path: str):
        self.log_path = Path(log_path)
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self._file = None

    def _ensure_open(self):
        if self._file is None:
            self._file = open(self.log_path, "a", buffering=1, encoding="utf-8")  # line-buffered

    def log(
        self,
        direction: str,
        role: str,
        content: str,
        model: str = "",
        conversation_id: str = "",
        outcome: str = "",
    ):
        """Write a wire log entry."""
        self._ensure_open()
        entry = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "dir": direction,
            "role": role,
            "model": model,
            "conv": conversation_id[:16] if conversation_id else "",
            "len": len(content),
        }
        if outcome:
            entry["outcome"] = outcome

        if len(content) <= MAX_CONTENT:
            entry["content"] = content
        else:
            half = MAX_CONTENT // 2
            entry["content"] = (
                content[:half]
                + f"\n\n[... {len(content) - MAX_CONTENT} chars truncated ...]\n\n"
                + content[-half:]
            )

        self._file.write(json.dumps(entry, ensure_ascii=False) + "\n")

    def close(self):
        if self._file:
            self._file.close()
            self._file = None


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------

def _parse(line: str) -> dict | None:
    line = line.strip()
    if not line:
        return None
    try:
        entry = json.loads(line)
    except json.JSONDecodeError:
        logger.debug("Skipping unreadable wiretap line: %.80s", line)
        return None
    return entry if isinstance(entry, dict) else None


def read_entries(path: Path) -> list[dict]:
    """Every readable entry, in file order."""
    with open(path, encoding="utf-8") as f:
        return [e for e in map(_parse, f) if e is not None]


def follow_entries(path: Path, poll: float = 0.1) -> Iterator[dict]:
    """Yield entries appended after the call, forever."""
    with open(path, encoding="utf-8") as f:
        f.seek(0, 2)
        while True:
            line = f.readline()
            if not line:
                time.sleep(poll)
                continue
            entry = _parse(line)
            if entry is not None:
                yield entry


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def _clock(ts: str) -> str:
    try:
        return datetime.fromisoformat(ts).strftime("%H:%M:%S")
    except (ValueError, TypeError):
        return "--:--:--"


class TranscriptPrinter:
    """
    Renders entries as a chat transcript. A banner is printed whenever the
    conversation changes, so interleaved conversations stay readable.
    """

    def __init__(self, color: bool = True):
        self.color = color
        self._conv: str | None = None

    def _paint(self, style: str, text: str) -> str:
        if not self.color:
            return text
        return f"{ANSI[style]}{text}{ANSI['reset']}"

    def banner(self, entry: dict) -> str:
        conv = entry.get("conv") or "?"
        model = entry.get("model") or "unknown model"
        return self._paint("dim", f"┄┄ conversation {conv} · {model} ┄┄")

    def message(self, entry: dict) -> str:
        role = entry.get("role", "?")
        speaker = SPEAKERS.get(role, role)
        head = f"{self._paint('dim', _clock(entry.get('ts', '')))} "
        head += self._paint(role if role in SPEAKERS else "dim", f"{speaker:>6}")

        outcome = entry.get("outcome", "")
        if outcome and outcome != "completed":
            head += " " + self._paint("red", f"[{outcome}]")

        body = (entry.get("content") or "").split("\n")
        lines = [f"{head} │ {body[0]}"]
        lines += [f"{'':15} │ {text}" for text in body[1:PREVIEW_LINES]]
        if len(body) > PREVIEW_LINES:
            lines.append(f"{'':15} │ " + self._paint("dim", f"(+{len(body) - PREVIEW_LINES} lines)"))
        return "\n".join(lines)

    def render(self, entry: dict) -> str:
        out = []
        conv = entry.get("conv", "")
        if conv != self._conv:
            self._conv = conv
            out.append(self.banner(entry))
        out.append(self.message(entry))
        return "\n".join(out)


def live_tap(
    log_path: str | None = None,
    follow: bool = True,
    last_n: int = 20,
    role_filter: str | None = None,
    raw: bool = False,
):
    """
    Print the transcript, then keep following it.

    Args:
        log_path: Path to wire.jsonl. If None, reads from config.
        follow: Keep watching for new entries (tail -f behavior).
        last_n: Show this many recent entries before following.
        role_filter: Only show entries matching this role.
        raw: Output raw JSONL instead of formatted.
    """
    if log_path is None:
        from llamadash.config import get_config
        log_path = get_config().get("wiretap", {}).get("path", "./data/wire.jsonl")

    wire_path = Path(log_path)
    if not wire_path.exists():
        print(f"  ✗  No wire log found at {wire_path}")
        print("     Enable wiretap in config.yaml and chat first: llamadash chat")
        return

    printer = TranscriptPrinter()

    def show(entry: dict):
        if role_filter and entry.get("role") != role_filter:
            return
        print(json.dumps(entry, ensure_ascii=False) if raw else printer.render(entry))

    entries = read_entries(wire_path)
    if role_filter:
        entries = [e for e in entries if e.get("role") == role_filter]
    for entry in entries[max(0, len(entries) - last_n):]:
        show(entry)

    if not follow:
        return
    try:
        for entry in follow_entries(wire_path):
            show(entry)
    except KeyboardInterrupt:
        if not raw:
            print("\n  [line disconnected]")
