"""Conversation turns exchanged between the caller, the model and the tools."""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Union

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from pydantic import BaseModel, Field, TypeAdapter


class ToolCall(BaseModel):
    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class SystemTurn(BaseModel):
    role: Literal["system"] = "system"
    content: str


class UserTurn(BaseModel):
    role: Literal["user"] = "user"
    content: str


class AssistantTurn(BaseModel):
    role: Literal["assistant"] = "assistant"
    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)


class ToolResultTurn(BaseModel):
    role: Literal["tool"] = "tool"
    call_id: str
    name: str
    content: str
    is_error: bool = False

    def payload(self) -> Any:
        try:
            return json.loads(self.content)
        except ValueError:
            return self.content


Turn = Annotated[
    Union[SystemTurn, UserTurn, AssistantTurn, ToolResultTurn],
    Field(discriminator="role"),
]

TranscriptAdapter: TypeAdapter[list[Turn]] = TypeAdapter(list[Turn])


def load_transcript(raw: list[dict[str, Any]] | None) -> list[Turn]:
    """Validate a caller-supplied transcript (e.g. from an API body)."""
    return TranscriptAdapter.validate_python(raw or [])


def dump_transcript(turns: list[Turn]) -> list[dict[str, Any]]:
    return TranscriptAdapter.dump_python(turns, mode="json")


def to_langchain_messages(turns: list[Turn]) -> list[BaseMessage]:
    messages: list[BaseMessage] = []
    for turn in turns:
        match turn:
            case SystemTurn(content=content):
                messages.append(SystemMessage(content=content))
            case UserTurn(content=content):
                messages.append(HumanMessage(content=content))
            case AssistantTurn(content=content, tool_calls=calls):
                messages.append(
                    AIMessage(
                        content=content,
                        tool_calls=[
                            {"id": call.id, "name": call.name, "args": call.arguments}
                            for call in calls
                        ],
                    )
                )
            case ToolResultTurn(call_id=call_id, name=name, content=content):
                messages.append(ToolMessage(content=content, tool_call_id=call_id, name=name))
    return messages
