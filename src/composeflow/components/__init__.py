"""
Component contracts.

Each submodule defines the protocol a backend implements plus its option
helpers. The compose engine only depends on these protocols; concrete chat
models, retrievers and so on live in separate packages.
"""

from . import document, embedding, indexer, model, prompt, retriever, tool
from .option import ComponentOption
from .model import BaseChatModel, ChatModel, ToolCallingChatModel
from .tool import BaseTool, InvokableTool, StreamableTool
from .prompt import (
    ChatTemplate,
    DefaultChatTemplate,
    FormatType,
    from_messages,
    messages_placeholder,
)
from .retriever import Retriever
from .indexer import Indexer
from .embedding import Embedder
from .document import Loader, Transformer

__all__ = [
    "document",
    "embedding",
    "indexer",
    "model",
    "prompt",
    "retriever",
    "tool",
    "ComponentOption",
    "BaseChatModel",
    "ChatModel",
    "ToolCallingChatModel",
    "BaseTool",
    "InvokableTool",
    "StreamableTool",
    "ChatTemplate",
    "DefaultChatTemplate",
    "FormatType",
    "from_messages",
    "messages_placeholder",
    "Retriever",
    "Indexer",
    "Embedder",
    "Loader",
    "Transformer",
]
