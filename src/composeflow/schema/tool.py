"""Tool descriptions handed to tool-calling chat models."""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class ToolInfo:
    """
    Description of a tool.

    Attributes:
        name: Unique tool name, matched against ``ToolCall.function.name``.
        desc: Natural-language description shown to the model.
        params: JSON schema of the arguments object. When set, the tools node
            validates call arguments against it before running the tool.
        extra: Provider-specific extension fields.
    """

    name: str
    desc: str = ""
    params: Optional[Dict[str, Any]] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_openai_format(self) -> Dict[str, Any]:
        """Render the tool in the OpenAI ``tools`` request format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.desc,
                "parameters": self.params or {"type": "object", "properties": {}},
            },
        }


class ToolChoice:
    """Allowed values for the model ``tool_choice`` option."""

    FORBIDDEN = "none"
    ALLOWED = "auto"
    FORCED = "required"
