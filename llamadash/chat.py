"""
Conversation controller — owns conversations and the one live generation.

    Idle ──send()──▶ Generating ──Done / Error / stop()──▶ Idle

A failed generation is not a state of its own: it lands back in Idle with
an "Error: ..." assistant message committed to the conversation.

Listeners registered with subscribe() are called as (event, data) on:
    "conversations"  a conversation was created or deleted
    "active"         the active pointer moved
    "chunk"          streaming text arrived (data = the delta)
    "message"        a message was committed (data = the Message)
    "generating"     generation started or ended (data = bool)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from llamadash.api import ApiClient
from llamadash.errors import ConversationNotFoundError, GenerationInProgressError
from llamadash.streaming import StreamOutcome, StreamSession
from llamadash.types import (
    DEFAULT_TITLE,
    Conversation,
    GenerationOptions,
    Message,
    build_chat_request,
)
from llamadash.wiretap import WireLog

logger = logging.getLogger(__name__)

TITLE_MAX_CHARS = 50
TITLE_ELLIPSIS = "..."

Listener = Callable[[str, Any], None]


def derive_title(content: str) -> str:
    """First user message -> conversation title."""
    if len(content) <= TITLE_MAX_CHARS:
        return content
    return content[:TITLE_MAX_CHARS] + TITLE_ELLIPSIS


class ConversationController:
    """Single-flight chat orchestration over one ApiClient."""

    def __init__(
        self,
        api: ApiClient,
        options: GenerationOptions | None = None,
        wire: WireLog | None = None,
    ):
        self.api = api
        self.default_options = options or GenerationOptions()
        self.wire = wire
        self.conversations: list[Conversation] = []
        self.active_conversation_id: str | None = None
        self.streaming_content = ""
        self._session: StreamSession | None = None
        self._target: Conversation | None = None
        self._listeners: list[Listener] = []

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def generating(self) -> bool:
        return self._session is not None

    @property
    def generating_conversation_id(self) -> str | None:
        return self._target.id if self._target else None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def _notify(self, event: str, data: Any = None):
        for listener in list(self._listeners):
            try:
                listener(event, data)
            except Exception as e:
                logger.error("Listener failed on '%s': %s", event, e)

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        for conv in self.conversations:
            if conv.id == conversation_id:
                return conv
        return None

    def get_active_conversation(self) -> Conversation | None:
        if self.active_conversation_id is None:
            return None
        return self.get_conversation(self.active_conversation_id)

    # ------------------------------------------------------------------
    # Conversation set
    # ------------------------------------------------------------------

    def create(self, model: str, system_prompt: str | None = None) -> str:
        conv = Conversation(model=model)
        if system_prompt:
            conv.messages.append(Message("system", system_prompt))
        self.conversations.insert(0, conv)
        self.active_conversation_id = conv.id
        logger.debug("Created conversation %s for model '%s'", conv.id, model)
        self._notify("conversations")
        self._notify("active", conv.id)
        return conv.id

    def delete(self, conversation_id: str):
        conv = self.get_conversation(conversation_id)
        if conv is None:
            logger.debug("delete(%s): no such conversation", conversation_id)
            return

        if self._target is conv:
            self._session.cancel()
            self._clear_generation()

        self.conversations.remove(conv)
        self._notify("conversations")
        if self.active_conversation_id == conversation_id:
            self.active_conversation_id = self.conversations[0].id if self.conversations else None
            self._notify("active", self.active_conversation_id)

    def set_active(self, conversation_id: str):
        if self.get_conversation(conversation_id) is None:
            raise ConversationNotFoundError(conversation_id)
        self.active_conversation_id = conversation_id
        self._notify("active", conversation_id)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def send(self, content: str, options: GenerationOptions | None = None) -> Message | None:
        """
        Append a user message and stream the assistant's reply into it.
        Returns the committed assistant message, or None when nothing was
        sent or the generation was stopped.
        """
        conv = self.get_active_conversation()
        if conv is None or not content:
            return None
        if self.generating:
            raise GenerationInProgressError(
                f"Conversation {self._target.id} is still generating"
            )

        conv.messages.append(Message("user", content))
        self._log_wire(conv, "user", content)
        if conv.title == DEFAULT_TITLE and conv.user_message_count() == 1:
            conv.title = derive_title(content)
            self._notify("conversations")
        self._notify("message", conv.messages[-1])

        body = build_chat_request(conv.model, conv.messages, options or self.default_options)
        self.streaming_content = ""

        session = StreamSession(self.api, body)

        def on_chunk(text: str):
            if self._session is not session:
                return
            self.streaming_content += text
            self._notify("chunk", text)

        session.on_chunk = on_chunk
        self._session = session
        self._target = conv
        self._notify("generating", True)
        session.start()

        try:
            result = await session.wait()
        except asyncio.CancelledError:
            if self._session is session:
                self.stop()
            raise
        if self._session is not session:
            # stop() or delete() already finalized this generation
            return None

        if result.outcome is StreamOutcome.COMPLETED:
            return self._commit(conv, self.streaming_content, "completed")
        if result.outcome is StreamOutcome.FAILED:
            logger.warning("Generation for %s failed: %s", conv.id, result.error)
            return self._commit(conv, f"Error: {result.error}", "failed")
        self._clear_generation()
        return None

    def stop(self) -> Message | None:
        """Abort the generation, keeping whatever was streamed so far."""
        session, conv = self._session, self._target
        partial = self.streaming_content
        if session is None:
            self.streaming_content = ""
            return None

        session.cancel()
        if conv is not None and partial:
            return self._commit(conv, partial, "stopped")
        self._clear_generation()
        return None

    def _commit(self, conv: Conversation, content: str, outcome: str) -> Message:
        message = Message("assistant", content)
        conv.messages.append(message)
        self._log_wire(conv, "assistant", content, outcome)
        self._clear_generation()
        self._notify("message", message)
        return message

    def _clear_generation(self):
        self.streaming_content = ""
        self._session = None
        self._target = None
        self._notify("generating", False)

    def _log_wire(self, conv: Conversation, role: str, content: str, outcome: str = ""):
        if self.wire is None:
            return
        try:
            self.wire.log(
                direction="outbound" if role == "user" else "inbound",
                role=role,
                content=content,
                model=conv.model,
                conversation_id=conv.id,
                outcome=outcome,
            )
        except OSError as e:
            logger.warning("Wiretap write failed: %s", e)
