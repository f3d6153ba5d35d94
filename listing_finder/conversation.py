"""Message types exchanged with the chat model during one agent run."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Tuple, Union


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    arguments: str = "{}"

    @classmethod
    def from_wire(cls, raw: Mapping[str, Any], index: int = 0) -> "ToolCall":
        func = raw.get("function") or {}
        return cls(
            id=str(raw.get("id") or f"call_{index}"),
            name=str(func.get("name") or ""),
            arguments=func.get("arguments") or "{}",
        )

    def to_wire(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass(frozen=True)
class SystemMessage:
    content: str

    def to_wire(self) -> Dict[str, Any]:
        return {"role": "system", "content": self.content}


@dataclass(frozen=True)
class UserMessage:
    content: str

    def to_wire(self) -> Dict[str, Any]:
        return {"role": "user", "content": self.content}


@dataclass(frozen=True)
class AssistantMessage:
    content: str = ""
    tool_calls: Tuple[ToolCall, ...] = ()

    def to_wire(self) -> Dict[str, Any]:
        message: Dict[str, Any] = {"role": "assistant", "content": self.content}
        if self.tool_calls:
            message["tool_calls"] = [call.to_wire() for call in self.tool_calls]
        return message


@dataclass(frozen=True)
class ToolMessage:
    tool_call_id: str
    content: str

    def to_wire(self) -> Dict[str, Any]:
        return {"role": "tool", "tool_call_id": self.tool_call_id, "content": self.content}


Message = Union[SystemMessage, UserMessage, AssistantMessage, ToolMessage]


@dataclass
class Conversation:
    """Append-only message log owned by a single agent run."""

    _messages: List[Message] = field(default_factory=list)

    def append(self, message: Message) -> None:
        self._messages.append(message)

    def to_wire(self) -> List[Dict[str, Any]]:
        return [message.to_wire() for message in self._messages]

    def __len__(self) -> int:
        return len(self._messages)
