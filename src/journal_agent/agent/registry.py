"""Tool registry built on Pydantic v2 models."""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from time import perf_counter
from typing import Any

from langchain_core.tools import StructuredTool
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from journal_agent.errors import QueryValidationError
from journal_agent.types import ToolTrace

ToolHandler = Callable[[BaseModel], Awaitable[dict[str, Any]]]


class ToolSpec(BaseModel):
    """Declarative tool specification for registration and validation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str
    args_schema: type[BaseModel]
    handler: ToolHandler
    tags: list[str] = Field(default_factory=list)

    def validate_payload(self, payload: dict[str, Any]) -> BaseModel:
        try:
            return self.args_schema.model_validate(payload)
        except ValidationError as exc:
            raise QueryValidationError(f"Invalid arguments for {self.name}: {exc}") from exc

    async def invoke(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self.handler(self.validate_payload(payload))


class ToolRegistry:
    """Stores tool specs and exports LangChain-compatible tool objects.

    The LangChain export is used for schema generation and model binding;
    the agent kernel always executes through `execute`.
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}
        self._observer: Callable[[ToolTrace], None] | None = None

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec

    def set_observer(self, observer: Callable[[ToolTrace], None] | None) -> None:
        """Set an optional callback invoked after each tool execution."""
        self._observer = observer

    async def execute(
        self,
        name: str,
        payload: dict[str, Any],
        *,
        observer: Callable[[ToolTrace], None] | None = None,
    ) -> dict[str, Any]:
        """Run a tool; `observer` overrides the registry-wide observer for this call."""
        spec = self._tools.get(name)
        if spec is None:
            raise KeyError(f"Unknown tool: {name}")
        return await self._execute_spec(spec, payload, observer or self._observer)

    def as_langchain_tools(self) -> list[StructuredTool]:
        return [
            StructuredTool.from_function(
                name=spec.name,
                description=spec.description,
                args_schema=spec.args_schema,
                coroutine=self._build_coroutine(spec),
            )
            for spec in self._tools.values()
        ]

    def specs(self) -> list[ToolSpec]:
        return list(self._tools.values())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def _build_coroutine(self, spec: ToolSpec) -> Callable[..., Awaitable[dict[str, Any]]]:
        async def _callable(**kwargs: Any) -> dict[str, Any]:
            return await self._execute_spec(spec, kwargs, self._observer)

        return _callable

    async def _execute_spec(
        self,
        spec: ToolSpec,
        payload: dict[str, Any],
        observer: Callable[[ToolTrace], None] | None,
    ) -> dict[str, Any]:
        start = perf_counter()
        try:
            output = await spec.invoke(payload)
        except Exception as exc:
            _notify(observer, spec.name, payload, "", start, error=str(exc))
            raise
        _notify(observer, spec.name, payload, json.dumps(output, default=str), start)
        return output


def _notify(
    observer: Callable[[ToolTrace], None] | None,
    name: str,
    payload: dict[str, Any],
    output: str,
    start: float,
    *,
    error: str | None = None,
) -> None:
    if observer is None:
        return
    observer(
        ToolTrace(
            name=name,
            input_payload=payload,
            output_preview=output[:320],
            latency_ms=(perf_counter() - start) * 1000.0,
            error=error,
        )
    )
