import pytest
from pydantic import BaseModel

from journal_agent.agent.registry import ToolRegistry, ToolSpec


class EchoInput(BaseModel):
    text: str


async def _upper(data: EchoInput) -> dict:
    return {"text": data.text.upper()}


async def _boom(data: EchoInput) -> dict:
    raise RuntimeError(f"cannot handle {data.text}")


@pytest.mark.asyncio
async def test_tool_observer_captures_latency_and_payload() -> None:
    registry = ToolRegistry()
    registry.register(ToolSpec(name="echo", description="uppercase", args_schema=EchoInput, handler=_upper))

    observed = []
    registry.set_observer(observed.append)
    result = await registry.execute("echo", {"text": "hello"})
    registry.set_observer(None)

    assert result == {"text": "HELLO"}
    assert len(observed) == 1
    assert observed[0].name == "echo"
    assert observed[0].input_payload == {"text": "hello"}
    assert observed[0].output_preview == '{"text": "HELLO"}'
    assert observed[0].latency_ms >= 0.0
    assert observed[0].error is None


@pytest.mark.asyncio
async def test_per_call_observer_records_failures() -> None:
    registry = ToolRegistry()
    registry.register(ToolSpec(name="boom", description="always fails", args_schema=EchoInput, handler=_boom))
    observed = []

    with pytest.raises(RuntimeError):
        await registry.execute("boom", {"text": "x"}, observer=observed.append)

    assert observed[0].error == "cannot handle x"
    assert observed[0].output_preview == ""
