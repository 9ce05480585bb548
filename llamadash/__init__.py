"""
llamadash — streaming chat and model management client for a llama-dashboard server.
"""
from llamadash.api import ApiClient
from llamadash.chat import ConversationController
from llamadash.registry import ModelRegistry
from llamadash.streaming import StreamOutcome, StreamResult, StreamSession
from llamadash.types import Conversation, GenerationOptions, Message, ModelEntry, ModelStatus

__version__ = "0.3.0"

__all__ = [
    "ApiClient",
    "ConversationController",
    "ModelRegistry",
    "StreamSession",
    "StreamResult",
    "StreamOutcome",
    "Conversation",
    "Message",
    "ModelEntry",
    "ModelStatus",
    "GenerationOptions",
]
