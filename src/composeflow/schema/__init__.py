from .message import (
    RoleType,
    System,
    User,
    Assistant,
    Tool,
    FunctionCall,
    ToolCall,
    ResponseMeta,
    Message,
    system_message,
    user_message,
    assistant_message,
    tool_message,
    concat_messages,
)
from .document import Document, Source
from .tool import ToolInfo, ToolChoice
from .concat import concat_items, register_stream_chunk_concat_func
from .stream import (
    StreamReader,
    StreamWriter,
    ReplayableStream,
    SkipChunk,
    pipe,
    stream_reader_from_array,
    stream_reader_from_iterable,
    stream_reader_with_convert,
    merge_stream_readers,
    merge_named_stream_readers,
    concat_stream,
    concat_message_stream,
)

__all__ = [
    "RoleType",
    "System",
    "User",
    "Assistant",
    "Tool",
    "FunctionCall",
    "ToolCall",
    "ResponseMeta",
    "Message",
    "system_message",
    "user_message",
    "assistant_message",
    "tool_message",
    "concat_messages",
    "Document",
    "Source",
    "ToolInfo",
    "ToolChoice",
    "concat_items",
    "register_stream_chunk_concat_func",
    "StreamReader",
    "StreamWriter",
    "ReplayableStream",
    "SkipChunk",
    "pipe",
    "stream_reader_from_array",
    "stream_reader_from_iterable",
    "stream_reader_with_convert",
    "merge_stream_readers",
    "merge_named_stream_readers",
    "concat_stream",
    "concat_message_stream",
]
