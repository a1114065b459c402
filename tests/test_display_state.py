import pytest

from chatstream.client.display_state import DisplayStateManager
from chatstream.models.chat import StreamChunk, ToolCallPayload, ToolResultPayload
from chatstream.models.message import TextPart, UIMessage


class Clock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now


def user(id_, text="hi"):
    return UIMessage(id=id_, role="user", parts=[TextPart(text=text)])


def assistant(id_, text="ok"):
    return UIMessage(id=id_, role="assistant", parts=[TextPart(text=text)])


def reasoning(text):
    return StreamChunk(kind="reasoning", text=text)


def text(value):
    return StreamChunk(kind="text", text=value)


def start_turn(manager, assistant_id="a1"):
    manager.set_status("submitted")
    manager.set_stream_phase("reasoning")
    manager.set_current_assistant_id(assistant_id)


@pytest.fixture
def manager():
    return DisplayStateManager("c1", clock=Clock())


def test_chunks_coalesce_into_one_assistant_message(manager):
    manager.add_user_message(user("u1"))
    start_turn(manager)

    for chunk in [reasoning("a"), reasoning("b"), text("c")]:
        manager.update_streaming_message(chunk, "a1")

    messages = manager.messages
    assert [m.id for m in messages] == ["u1", "a1"]
    assert [(p.type, p.text) for p in messages[1].parts] == [("reasoning", "ab"), ("text", "c")]
    assert manager.status == "streaming"
    assert manager.stream_phase == "answer"


def test_reasoning_after_text_opens_a_new_part(manager):
    start_turn(manager)
    for chunk in [text("x"), reasoning("y"), text("z")]:
        manager.update_streaming_message(chunk, "a1")

    assert [(p.type, p.text) for p in manager.messages[0].parts] == [("text", "x"), ("reasoning", "y"), ("text", "z")]


def test_reasoning_duration_is_recorded_on_finalize():
    clock = Clock(10.0)
    manager = DisplayStateManager("c1", clock=clock)
    start_turn(manager)

    manager.update_streaming_message(reasoning("thinking"), "a1")
    clock.now = 13.6
    manager.update_streaming_message(text("answer"), "a1")
    manager.finalize_reasoning()

    assert manager.reasoning_durations == {"a1": 4}
    assert manager.current_assistant_id is None
    assert manager.reasoning_start is None


def test_no_reasoning_means_no_duration(manager):
    start_turn(manager)
    manager.update_streaming_message(text("answer"), "a1")
    manager.finalize_reasoning()

    assert manager.reasoning_durations == {}


def test_tool_calls_tracked_per_phase(manager):
    start_turn(manager)
    manager.update_streaming_message(
        StreamChunk(kind="tool_call", tool_call=ToolCallPayload(id="t1", name="calculate", arguments={"expression": "1+1"}, phase="reasoning")),
        "a1",
    )
    manager.update_streaming_message(
        StreamChunk(kind="tool_call", tool_call=ToolCallPayload(id="t2", name="get_time", phase="response")), "a1"
    )

    [pending] = manager.reasoning_tool_calls()
    assert pending.state == "input-available"

    manager.update_streaming_message(
        StreamChunk(kind="tool_result", tool_result=ToolResultPayload(id="t1", result={"result": 2}, phase="reasoning")), "a1"
    )
    manager.update_streaming_message(
        StreamChunk(kind="tool_result", tool_result=ToolResultPayload(id="t2", error="boom", phase="response")), "a1"
    )

    [done] = manager.reasoning_tool_calls()
    assert done.state == "output-available"
    assert done.result == {"result": 2}
    [failed] = manager.response_tool_calls()
    assert failed.state == "output-error"
    assert failed.error == "boom"

    [event] = manager.reasoning_timeline()
    assert event.type == "tool_call"
    assert event.tool_call.state == "output-available"
    assert len(manager.all_tool_calls()) == 2


def test_result_for_unknown_call_is_ignored(manager):
    start_turn(manager)
    manager.update_streaming_message(
        StreamChunk(kind="tool_result", tool_result=ToolResultPayload(id="ghost", result=1)), "a1"
    )

    assert manager.all_tool_calls() == []


def test_new_assistant_message_clears_tool_tracking(manager):
    start_turn(manager, "a1")
    manager.update_streaming_message(
        StreamChunk(kind="tool_call", tool_call=ToolCallPayload(id="t1", name="calculate")), "a1"
    )
    manager.finalize_reasoning()

    # Still visible after the turn ends
    assert len(manager.response_tool_calls()) == 1

    manager.set_current_assistant_id("a2")
    assert manager.response_tool_calls() == []
    assert manager.response_timeline() == []


def test_error_message_replaces_previous_error(manager):
    manager.add_user_message(user("u1"))
    start_turn(manager)
    manager.add_error_message("first failure")
    manager.add_error_message("second failure", retryable=False)

    errors = [m for m in manager.messages if m.is_error]
    assert len(errors) == 1
    assert errors[0].text() == "second failure"
    assert errors[0].metadata == {"isError": True, "retryable": False}
    assert manager.status == "error"
    assert manager.stream_phase == "idle"

    manager.remove_error_messages()
    assert not manager.has_error_messages()


def test_illegal_status_transition_is_ignored(manager):
    manager.set_status("submitted")
    manager.set_status("streaming")
    manager.set_status("submitted")
    assert manager.status == "streaming"

    manager.set_status("error")
    manager.set_status("streaming")
    assert manager.status == "error"

    manager.set_status("ready")
    assert manager.status == "ready"


def test_hydration_fills_an_empty_view(manager):
    assert manager.hydrate([user("u1"), assistant("a1")]) is True
    assert [m.id for m in manager.messages] == ["u1", "a1"]


def test_hydration_never_clobbers_a_live_stream(manager):
    manager.add_user_message(user("u1"))
    start_turn(manager)
    manager.update_streaming_message(text("partial"), "a1")

    assert manager.hydrate([user("u1"), assistant("a1", "old"), user("u2"), assistant("a2")]) is False
    assert manager.messages[-1].parts[0].text == "partial"

    manager.set_status("ready")
    manager.set_status("submitted")
    assert manager.hydrate([]) is False


def test_hydration_accepts_longer_history(manager):
    manager.add_user_message(user("u1"))

    assert manager.hydrate([user("u1"), assistant("a1")]) is True


def test_hydration_keeps_live_view_within_one_message(manager):
    manager.add_user_message(user("u1"))
    manager.add_user_message(assistant("a1"))

    # One message of slack for an optimistic write still in flight
    assert manager.hydrate([user("u1")]) is False
    assert len(manager.messages) == 2


def test_hydration_accepts_when_ready_and_far_apart(manager):
    for i in range(4):
        manager.add_user_message(user(f"u{i}"))

    assert manager.hydrate([user("u0")]) is True
    assert [m.id for m in manager.messages] == ["u0"]


def test_hydration_replaces_error_placeholder(manager):
    manager.add_user_message(user("u1"))
    manager.add_error_message("failed")

    assert manager.hydrate([user("u1")]) is True
    assert not manager.has_error_messages()


def test_remove_messages_after_returns_removed_suffix(manager):
    for m in [user("u1"), assistant("a1"), user("u2"), assistant("a2")]:
        manager.add_user_message(m)

    removed = manager.remove_messages_after("u2")

    assert [m.id for m in removed] == ["u2", "a2"]
    assert [m.id for m in manager.messages] == ["u1", "a1"]
    assert manager.remove_messages_after("missing") == []


def test_listeners_are_notified_until_unsubscribed(manager):
    calls = []
    unsubscribe = manager.on_state_change(lambda: calls.append(1))

    manager.add_user_message(user("u1"))
    unsubscribe()
    manager.add_user_message(user("u2"))

    assert calls == [1]


def test_mark_as_persisted_and_debug_info(manager):
    manager.add_user_message(user("u1"))
    manager.mark_as_persisted("u1")
    manager.mark_as_persisted("u1")

    info = manager.debug_info()
    assert info["displayMessagesCount"] == 1
    assert info["persistedMessagesCount"] == 1
    assert info["chatId"] == "c1"


def test_reset_clears_everything(manager):
    manager.add_user_message(user("u1"))
    start_turn(manager)
    manager.reset()

    assert manager.messages == []
    assert manager.status == "ready"
    assert manager.current_assistant_id is None
