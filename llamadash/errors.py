"""
Exception types for llamadash.

Two families:
  - wire failures (TransportError, ApiError) coming back from the server
  - local misuse (unknown ids, illegal status moves, overlapping sends)

Malformed stream lines and user cancellation have no exception type:
the decoder discards the former and reports the latter as an outcome.
"""

from __future__ import annotations


class LlamaDashError(Exception):
    """Base class for everything llamadash raises."""


class TransportError(LlamaDashError):
    """Connection refused/reset, timeout, or a non-2xx status before any data."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ApiError(LlamaDashError):
    """A management call the server answered with an error status."""

    def __init__(self, status_code: int, detail: str = ""):
        self.status_code = status_code
        self.detail = detail
        msg = f"HTTP {status_code}"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class ConversationNotFoundError(LlamaDashError, KeyError):
    def __init__(self, conversation_id: str):
        super().__init__(f"No conversation with id {conversation_id!r}")
        self.conversation_id = conversation_id

    def __str__(self) -> str:
        return self.args[0]


class ModelNotFoundError(LlamaDashError, KeyError):
    def __init__(self, model_id: str):
        super().__init__(f"No model with id {model_id!r}")
        self.model_id = model_id

    def __str__(self) -> str:
        return self.args[0]


class InvalidTransitionError(LlamaDashError, ValueError):
    """A model status change outside the lifecycle graph."""

    def __init__(self, model_id: str, current: str, target: str):
        super().__init__(f"Model {model_id!r} cannot go from {current} to {target}")
        self.model_id = model_id
        self.current = current
        self.target = target


class GenerationInProgressError(LlamaDashError):
    """send() was called while another generation is still streaming."""
