import asyncio
import json
import logging

import pytest

from chatstream.errors import BackendUnavailableError
from chatstream.models.chat import ApiMessage, ChatRequest
from chatstream.models.message import TextPart
from chatstream.services.chat_store import InMemoryChatStore
from chatstream.services import transducer as transducer_module
from chatstream.services.transducer import MessagePersister, StreamTransducer
from chatstream.tools import ToolProvider, create_default_registry

from conftest import FailingStore, ScriptedBackend, content, thinking, tool_call


def make_request(**kwargs) -> ChatRequest:
    return ChatRequest(model="m", messages=[ApiMessage(role="user", content="hi")], **kwargs)


async def run(transducer: StreamTransducer, request: ChatRequest, tools=None, is_disconnected=None):
    lines = [line async for line in transducer.stream(request, tools, is_disconnected=is_disconnected)]
    assert all(line.endswith("\n") and line.count("\n") == 1 for line in lines)
    return [json.loads(line) for line in lines]


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_three_round_turn_ends_with_exactly_one_done():
    backend = ScriptedBackend(
        [
            [tool_call("calculate", expression="1+1")],
            [tool_call("calculate", expression="2+2")],
            [content("Both computed.")],
        ]
    )
    provider = ToolProvider(create_default_registry())
    transducer = StreamTransducer(backend, tool_provider=provider)
    request = make_request(enableTools=True)

    tools = await transducer.preflight(request)
    chunks = await run(transducer, request, tools)
    kinds = [c["kind"] for c in chunks]

    assert len(backend.calls) == 3
    assert kinds.count("done") == 1
    assert kinds[-1] == "done"
    assert kinds.count("tool_call") == 2
    assert kinds.count("tool_result") == 2
    assert kinds.count("stream_continue") == 2
    assert chunks[0]["toolCall"]["name"] == "calculate"


@pytest.mark.asyncio
async def test_preflight_raises_when_backend_is_down():
    transducer = StreamTransducer(ScriptedBackend(reachable=False))

    with pytest.raises(BackendUnavailableError):
        await transducer.preflight(make_request())


@pytest.mark.asyncio
async def test_preflight_disables_tools_for_models_without_support():
    provider = ToolProvider(create_default_registry())
    transducer = StreamTransducer(ScriptedBackend(tools_supported=False), tool_provider=provider)

    assert await transducer.preflight(make_request(enableTools=True)) is None


@pytest.mark.asyncio
async def test_preflight_advertises_tools_when_supported():
    provider = ToolProvider(create_default_registry())
    transducer = StreamTransducer(ScriptedBackend(), tool_provider=provider)

    tools = await transducer.preflight(make_request(enableTools=True))

    assert {t["name"] for t in tools} == {"calculate", "get_time"}


@pytest.mark.asyncio
async def test_think_resolution_prefers_reasoning_level():
    backend = ScriptedBackend([[content("ok")]])
    transducer = StreamTransducer(backend)

    await run(transducer, make_request(think=True, reasoningLevel="high"))
    await run(transducer, make_request())

    assert backend.calls[0]["think"] == "high"
    assert backend.calls[1]["think"] is False


@pytest.mark.asyncio
async def test_failure_after_start_becomes_error_chunk():
    backend = ScriptedBackend([[content("partial"), content("more")]], fail_after=1)
    transducer = StreamTransducer(backend)

    chunks = await run(transducer, make_request())

    assert chunks == [
        {"kind": "text", "text": "partial"},
        {"kind": "error", "error": "backend connection dropped"},
    ]


@pytest.mark.asyncio
async def test_round_cap_surfaces_as_error_chunk():
    backend = ScriptedBackend([[tool_call("calculate", expression="1")]])
    transducer = StreamTransducer(backend, tool_provider=ToolProvider(create_default_registry()), max_tool_rounds=2)

    chunks = await run(transducer, make_request(), tools=[{"name": "calculate"}])

    assert chunks[-1] == {"kind": "error", "error": "Tool loop exceeded 2 rounds without a final answer"}
    assert all(c["kind"] != "done" for c in chunks)


@pytest.mark.asyncio
async def test_disconnect_stops_generation_without_done():
    backend = ScriptedBackend([[content("a"), content("b"), content("c")]])
    transducer = StreamTransducer(backend)
    seen = []

    async def is_disconnected():
        seen.append(True)
        return len(seen) > 1

    chunks = await run(transducer, make_request(), is_disconnected=is_disconnected)

    assert chunks == [{"kind": "text", "text": "a"}]


@pytest.mark.asyncio
async def test_persisted_turn_writes_placeholder_and_final_parts():
    store = InMemoryChatStore()
    backend = ScriptedBackend([[thinking("plan"), content("answer")]])
    transducer = StreamTransducer(backend, store=store)

    await run(transducer, make_request(chatId="c1", assistantMessageId="a1"))

    [message] = await store.list_messages("c1")
    assert message.id == "a1"
    assert message.role == "assistant"
    assert [(p.type, p.text) for p in message.parts] == [("reasoning", "plan"), ("text", "answer")]
    chat = await store.get_chat("c1")
    assert chat.last_message_at is not None


@pytest.mark.asyncio
async def test_request_without_ids_is_not_persisted():
    store = InMemoryChatStore()
    transducer = StreamTransducer(ScriptedBackend([[content("x")]]), store=store)

    await run(transducer, make_request(chatId="c1"))

    assert await store.list_messages("c1") == []


@pytest.mark.asyncio
async def test_partial_parts_are_persisted_when_the_stream_fails():
    store = InMemoryChatStore()
    backend = ScriptedBackend([[content("half"), content("rest")]], fail_after=1)
    transducer = StreamTransducer(backend, store=store)

    await run(transducer, make_request(chatId="c1", assistantMessageId="a1"))

    [message] = await store.list_messages("c1")
    assert [p.text for p in message.parts] == ["half"]


@pytest.mark.asyncio
async def test_persistence_failures_never_break_the_stream():
    transducer = StreamTransducer(ScriptedBackend([[content("fine")]]), store=FailingStore())

    chunks = await run(transducer, make_request(chatId="c1", assistantMessageId="a1"))

    assert chunks == [{"kind": "text", "text": "fine"}, {"kind": "done"}]


@pytest.mark.asyncio
async def test_persister_throttles_intermediate_writes():
    store = InMemoryChatStore()
    clock = FakeClock()
    persister = MessagePersister(store, "c1", "a1", interval=0.25, clock=clock)
    await persister.start()

    for step in range(10):
        clock.now = step * 0.1
        persister.maybe_update([TextPart(text=f"v{step}")])
        if persister._pending is not None:
            await persister._pending

    # Writes land at t=0.3, 0.6 and 0.9
    assert persister.writes == 3

    await persister.finalize([TextPart(text="final")])

    assert persister.writes == 4
    [message] = await store.list_messages("c1")
    assert message.parts[0].text == "final"


class StallingBackend(ScriptedBackend):
    """Streams two fragments, then waits forever for the next one"""

    async def chat_stream(self, model, messages, think=False, tools=None):
        yield content("half")
        yield content(" more")
        await asyncio.Event().wait()


@pytest.mark.asyncio
async def test_closing_the_stream_mid_turn_still_persists_partial_parts():
    store = InMemoryChatStore()
    transducer = StreamTransducer(ScriptedBackend([[content("half"), content(" more"), content(" tail")]]), store=store)
    gen = transducer.stream(make_request(chatId="c1", assistantMessageId="a1"))

    assert json.loads(await gen.__anext__()) == {"kind": "text", "text": "half"}
    assert json.loads(await gen.__anext__()) == {"kind": "text", "text": " more"}
    await gen.aclose()

    [message] = await store.list_messages("c1")
    assert [p.text for p in message.parts] == ["half more"]
    assert (await store.get_chat("c1")).last_message_at is not None


@pytest.mark.asyncio
async def test_cancelling_the_consumer_still_persists_partial_parts():
    store = InMemoryChatStore()
    transducer = StreamTransducer(StallingBackend(), store=store)
    received = []

    async def consume():
        async for line in transducer.stream(make_request(chatId="c1", assistantMessageId="a1")):
            received.append(line)

    task = asyncio.create_task(consume())
    while len(received) < 2:
        await asyncio.sleep(0)
    await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    [message] = await store.list_messages("c1")
    assert [p.text for p in message.parts] == ["half more"]


class RecordingHandler(logging.Handler):
    def __init__(self):
        super().__init__(logging.DEBUG)
        self.messages = []

    def emit(self, record):
        self.messages.append(record.getMessage())


@pytest.mark.parametrize("level, logged", [(logging.DEBUG, True), (logging.INFO, False)])
@pytest.mark.asyncio
async def test_final_message_is_logged_only_at_debug(level, logged):
    logger = transducer_module.logger
    handler = RecordingHandler()
    previous = logger.level
    logger.addHandler(handler)
    logger.setLevel(level)
    try:
        await run(StreamTransducer(ScriptedBackend([[thinking("plan"), content("answer")]])), make_request())
    finally:
        logger.removeHandler(handler)
        logger.setLevel(previous)

    finals = [m for m in handler.messages if "final assistant message" in m]
    assert bool(finals) is logged
    if logged:
        assert finals[0].endswith("[thinking]\nplan\n[/thinking]\nanswer")
