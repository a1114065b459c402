import json

import pytest

from chatstream.errors import ToolLoopLimitError
from chatstream.services.tool_loop import ToolLoop
from chatstream.tools import ToolProvider, ToolRegistry, create_default_registry
from chatstream.tools.registry import ToolFunction

from conftest import ScriptedBackend, content, thinking, tool_call


def ids():
    counter = iter(range(1, 1000))
    return lambda: f"call_{next(counter)}"


async def collect(loop: ToolLoop, **kwargs):
    return [chunk async for chunk in loop.run("m", [{"role": "user", "content": "hi"}], **kwargs)]


@pytest.mark.asyncio
async def test_single_round_without_tools_streams_text_only():
    backend = ScriptedBackend([[thinking("hmm "), thinking("ok"), content("Hello"), content(" there")]])
    loop = ToolLoop(backend)

    chunks = await collect(loop)

    assert [(c.kind, c.text) for c in chunks] == [
        ("reasoning", "hmm "),
        ("reasoning", "ok"),
        ("text", "Hello"),
        ("text", " there"),
    ]
    assert loop.rounds == 1
    assert loop.reasoning == "hmm ok"
    assert loop.text == "Hello there"
    assert [(p.type, p.text) for p in loop.parts] == [("reasoning", "hmm ok"), ("text", "Hello there")]


@pytest.mark.asyncio
async def test_two_tool_rounds_then_answer():
    backend = ScriptedBackend(
        [
            [thinking("need math"), tool_call("calculate", expression="2+3")],
            [thinking("and time"), tool_call("get_time", format="unix", timezone="UTC")],
            [content("2+3 is 5")],
        ]
    )
    loop = ToolLoop(backend, ToolProvider(create_default_registry()), id_factory=ids())

    chunks = await collect(loop, tools=[{"name": "calculate"}])
    kinds = [c.kind for c in chunks]

    assert kinds == [
        "reasoning",
        "tool_call",
        "tool_result",
        "stream_continue",
        "reasoning",
        "tool_call",
        "tool_result",
        "stream_continue",
        "text",
    ]
    assert loop.rounds == 3
    assert "done" not in kinds

    first_call = chunks[1].tool_call
    assert first_call.id == "call_1"
    assert first_call.name == "calculate"
    assert first_call.arguments == {"expression": "2+3"}
    assert first_call.phase == "reasoning"
    assert chunks[2].tool_result.id == "call_1"
    assert chunks[2].tool_result.result == {"result": 5, "expression": "2+3"}
    assert chunks[2].tool_result.error is None


@pytest.mark.asyncio
async def test_tool_results_are_fed_back_into_the_next_round():
    backend = ScriptedBackend([[content("checking"), tool_call("calculate", expression="6*7")], [content("42")]])
    loop = ToolLoop(backend, ToolProvider(create_default_registry()))

    await collect(loop)

    second_round = backend.calls[1]["messages"]
    assert second_round[0] == {"role": "user", "content": "hi"}
    assert second_round[1]["role"] == "assistant"
    assert second_round[1]["content"] == "checking"
    assert second_round[1]["tool_calls"][0]["function"]["name"] == "calculate"
    assert second_round[2]["role"] == "tool"
    assert second_round[2]["tool_name"] == "calculate"
    assert json.loads(second_round[2]["content"]) == {"result": 42, "expression": "6*7"}


@pytest.mark.asyncio
async def test_failing_tool_reports_error_and_loop_continues():
    def explode(args):
        raise RuntimeError("sensor offline")

    registry = ToolRegistry([ToolFunction("sensor", "reads a sensor", {"type": "object"}, explode)])
    backend = ScriptedBackend([[tool_call("sensor")], [content("The sensor is offline.")]])
    loop = ToolLoop(backend, ToolProvider(registry))

    chunks = await collect(loop)
    result = next(c for c in chunks if c.kind == "tool_result").tool_result

    assert result.result is None
    assert result.error == 'Tool "sensor" execution failed: sensor offline'
    assert chunks[-1].kind == "text"
    assert json.loads(backend.calls[1]["messages"][-1]["content"]) == {"error": result.error}


@pytest.mark.asyncio
async def test_unknown_tool_is_reported_not_raised():
    backend = ScriptedBackend([[tool_call("teleport")], [content("Cannot do that.")]])
    loop = ToolLoop(backend, ToolProvider(create_default_registry()))

    chunks = await collect(loop)
    result = next(c for c in chunks if c.kind == "tool_result").tool_result

    assert result.error == 'Tool "teleport" not found'


@pytest.mark.asyncio
async def test_round_cap_raises():
    backend = ScriptedBackend([[tool_call("calculate", expression="1")]])
    loop = ToolLoop(backend, ToolProvider(create_default_registry()), max_rounds=3)

    with pytest.raises(ToolLoopLimitError):
        await collect(loop)
    assert loop.rounds == 3


@pytest.mark.asyncio
async def test_tool_calls_and_results_are_recorded_as_parts():
    backend = ScriptedBackend([[content("Let me add."), tool_call("calculate", expression="1+1")], [content(" Done.")]])
    loop = ToolLoop(backend, ToolProvider(create_default_registry()), id_factory=ids())

    await collect(loop)

    assert [p.type for p in loop.parts] == ["text", "tool-call", "tool-result", "text"]
    assert loop.parts[1].id == loop.parts[2].id == "call_1"
    assert loop.parts[1].phase == "response"


@pytest.mark.asyncio
async def test_math_delimiters_are_normalized_in_streamed_text():
    backend = ScriptedBackend([[content("x is \\"), content("(1\\)")]])
    loop = ToolLoop(backend)

    chunks = await collect(loop)

    assert "".join(c.text for c in chunks) == "x is $1$"
