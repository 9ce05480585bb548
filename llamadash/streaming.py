"""
Stream decoder — reads an SSE-style chat completion body incrementally.

Three layers, leaves first:
  1. LineDecoder: bytes -> complete text lines (UTF-8 safe across reads)
  2. parse_line(): one line -> tagged results
         DoneSentinel | Content(text) | FinishReason(reason) | Malformed(raw)
  3. iter_events(): byte chunks -> Chunk(text)... then exactly one Done

StreamSession runs the HTTP request in its own task and settles a one-shot
StreamResult (completed / failed / cancelled). Whoever settles first wins,
so a session reports one outcome no matter how it ends.
"""

from __future__ import annotations

import asyncio
import codecs
import enum
import json
import logging
from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, Callable, Union

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


# ---------------------------------------------------------------------------
# Line framing
# ---------------------------------------------------------------------------

class LineDecoder:
    """
    Incremental UTF-8 decoder that hands back complete lines only.
    A multi-byte character split across reads is held until it completes,
    and so is any text after the last newline.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, data: bytes) -> list[str]:
        self._buffer += self._decoder.decode(data)
        *lines, self._buffer = self._buffer.split("\n")
        return lines

    def flush(self) -> list[str]:
        """Return whatever is left once the stream is exhausted."""
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        return [tail] if tail else []


# ---------------------------------------------------------------------------
# Payload classification
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DoneSentinel:
    pass


@dataclass(frozen=True)
class Content:
    text: str


@dataclass(frozen=True)
class FinishReason:
    reason: str


@dataclass(frozen=True)
class Malformed:
    raw: str


ParseResult = Union[DoneSentinel, Content, FinishReason, Malformed]


def parse_payload(payload: str) -> list[ParseResult]:
    """
    Classify the text after `data: `.
    A payload may carry both a delta and a finish reason; content comes first.
    Valid JSON without choices (e.g. a trailing usage object) yields nothing.
    """
    if payload == DONE_SENTINEL:
        return [DoneSentinel()]

    try:
        chunk = json.loads(payload)
    except json.JSONDecodeError:
        return [Malformed(payload)]

    if not isinstance(chunk, dict):
        return [Malformed(payload)]
    choices = chunk.get("choices")
    if not choices:
        return []
    if not isinstance(choices, list) or not isinstance(choices[0], dict):
        return [Malformed(payload)]

    choice = choices[0]
    results: list[ParseResult] = []
    delta = choice.get("delta")
    if isinstance(delta, dict):
        text = delta.get("content")
        if isinstance(text, str) and text:
            results.append(Content(text))
    reason = choice.get("finish_reason")
    if reason:
        results.append(FinishReason(str(reason)))
    return results


def parse_line(line: str) -> list[ParseResult] | None:
    """Classify one framed line. None means it is not an event line at all."""
    trimmed = line.strip()
    if not trimmed or not trimmed.startswith(DATA_PREFIX):
        return None
    return parse_payload(trimmed[len(DATA_PREFIX):])


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Chunk:
    text: str


@dataclass(frozen=True)
class Done:
    finish_reason: str | None = None


StreamEvent = Union[Chunk, Done]


def _events_for_line(line: str) -> list[StreamEvent]:
    results = parse_line(line)
    if not results:
        return []
    events: list[StreamEvent] = []
    for result in results:
        if isinstance(result, Content):
            events.append(Chunk(result.text))
        elif isinstance(result, FinishReason):
            events.append(Done(result.reason))
            break
        elif isinstance(result, DoneSentinel):
            events.append(Done())
            break
        else:
            logger.debug("Skipping malformed stream line: %.200s", result.raw)
    return events


async def iter_events(byte_chunks: AsyncIterable[bytes]) -> AsyncIterator[StreamEvent]:
    """
    Yield Chunk events in arrival order, then exactly one Done.
    Stops reading as soon as a terminal line is seen.
    """
    decoder = LineDecoder()
    async for data in byte_chunks:
        for line in decoder.feed(data):
            for event in _events_for_line(line):
                yield event
                if isinstance(event, Done):
                    return
    for line in decoder.flush():
        for event in _events_for_line(line):
            yield event
            if isinstance(event, Done):
                return
    yield Done()


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

class StreamOutcome(str, enum.Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class StreamResult:
    outcome: StreamOutcome
    text: str = ""
    error: BaseException | None = None
    finish_reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is StreamOutcome.COMPLETED


class StreamSession:
    """
    One streaming chat completion.

    on_chunk is called synchronously for each delta, in order. The final
    outcome is read with `await session.wait()`. cancel() settles the
    session as CANCELLED straight away; nothing read afterwards is reported.
    """

    def __init__(self, api, body: dict, on_chunk: Callable[[str], None] | None = None):
        self.api = api
        self.body = body
        self.on_chunk = on_chunk
        self._parts: list[str] = []
        self._cancelled = False
        self._task: asyncio.Task | None = None
        self._result: asyncio.Future | None = None

    @property
    def text(self) -> str:
        return "".join(self._parts)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def started(self) -> bool:
        return self._task is not None

    @property
    def closed(self) -> bool:
        return self._result is not None and self._result.done()

    def start(self) -> "StreamSession":
        if self._task is not None:
            raise RuntimeError("StreamSession already started")
        loop = asyncio.get_running_loop()
        self._result = loop.create_future()
        self._task = loop.create_task(self._run())
        return self

    def cancel(self) -> bool:
        """Abort the read. Returns False when there was nothing to abort."""
        if self._task is None or self.closed:
            return False
        self._cancelled = True
        self._settle(StreamOutcome.CANCELLED)
        self._task.cancel()
        return True

    async def wait(self) -> StreamResult:
        if self._result is None:
            raise RuntimeError("StreamSession not started")
        try:
            return await asyncio.shield(self._result)
        except asyncio.CancelledError:
            self.cancel()
            raise

    def _settle(self, outcome: StreamOutcome, error: BaseException | None = None,
                finish_reason: str | None = None):
        if self._result is None or self._result.done():
            return
        self._result.set_result(StreamResult(
            outcome=outcome,
            text=self.text,
            error=error,
            finish_reason=finish_reason,
        ))

    async def _run(self):
        try:
            async with self.api.stream_chat_completion(self.body) as resp:
                async for event in iter_events(resp.aiter_bytes()):
                    if self._cancelled:
                        break
                    if isinstance(event, Chunk):
                        self._parts.append(event.text)
                        if self.on_chunk:
                            self.on_chunk(event.text)
                    else:
                        self._settle(StreamOutcome.COMPLETED, finish_reason=event.finish_reason)
                        break
        except asyncio.CancelledError:
            self._settle(StreamOutcome.CANCELLED)
            raise
        except Exception as e:
            if self._cancelled:
                logger.debug("Stream read ended after cancel: %s", e)
                self._settle(StreamOutcome.CANCELLED)
            else:
                logger.warning("Stream session failed: %s", e)
                self._settle(StreamOutcome.FAILED, error=e)
            return
        self._settle(StreamOutcome.CANCELLED if self._cancelled else StreamOutcome.COMPLETED)
