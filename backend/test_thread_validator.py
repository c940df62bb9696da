"""
Tests for the thread validator that runs before every Telegram handler.

Telegram objects are faked with SimpleNamespace; only the attributes the
validator reads are provided.
"""
import asyncio
from types import SimpleNamespace

from telegram.ext import ApplicationHandlerStop

from policy_bot.state.services import StateServices
from policy_bot.telegram.middleware import WRONG_THREAD_MESSAGE, find_thread_conflict, thread_validator

CHAT_ID = -100123


class FakeMessage:
    def __init__(self, text, thread_id=None):
        self.text = text
        self.message_thread_id = thread_id
        self.replies = []

    async def reply_text(self, text, **kwargs):
        self.replies.append(text)


def make_services() -> StateServices:
    return StateServices(
        state_ttl_seconds=3600,
        cleanup_interval_seconds=900,
        admin_timeout_seconds=3600,
        admin_sweep_interval_seconds=60,
        flow_context_max_age_seconds=7200,
    )


def make_update(message=None, callback_query=None, chat_id=CHAT_ID):
    return SimpleNamespace(
        effective_chat=SimpleNamespace(id=chat_id, type="supergroup"),
        message=message,
        callback_query=callback_query,
    )


def make_context(services):
    return SimpleNamespace(application=SimpleNamespace(bot_data={"state": services}))


def run_validator(update, services) -> bool:
    """True when the update was blocked."""
    try:
        asyncio.run(thread_validator(update, make_context(services)))
    except ApplicationHandlerStop:
        return True
    return False


def conflicting_services() -> StateServices:
    services = make_services()
    services.flow_states.save_state(CHAT_ID, "POL1", {"step": "payment"}, 7)
    services.awaiting.awaiting_phone_number.set(CHAT_ID, {"flow_id": "flow_1", "policy_number": "POL1"})
    return services


def test_find_thread_conflict():
    print("\n" + "=" * 70)
    print("TEST 1: Conflict detection")
    print("=" * 70)

    services = make_services()
    assert find_thread_conflict(services, CHAT_ID, None) == [], "Nothing pending"

    services.flow_states.save_state(CHAT_ID, "POL1", {}, 7)
    services.flow_states.save_state(CHAT_ID, "POL2", {}, 9)
    services.flow_states.save_state(-999, "POL1", {}, 5)
    assert find_thread_conflict(services, CHAT_ID, None) == [], "No thread-less awaiting input"

    services.awaiting.awaiting_get_policy_number.set(CHAT_ID, {"requested_by": 1})
    assert find_thread_conflict(services, CHAT_ID, None) == [], "Pending input names no policy"

    services.awaiting.awaiting_delete_reason.set(CHAT_ID, {"policy_number": "POL8"})
    assert find_thread_conflict(services, CHAT_ID, None) == [], "Policy not active in any thread"

    services.awaiting.awaiting_phone_number.set(CHAT_ID, {"flow_id": "flow_1", "policy_number": "POL1"})
    assert find_thread_conflict(services, CHAT_ID, None) == ["7"], "Only POL1's thread, not the other chat's"
    assert find_thread_conflict(services, CHAT_ID, 7) == [], "Threaded messages are never blocked"
    print("  PASS: conflicts listed only for a pending policy anchored elsewhere")


def test_general_topic_answer_passes_while_other_topic_has_a_flow():
    services = make_services()
    # Someone looked up a policy in topic 7
    services.flow_states.save_state(CHAT_ID, "POL7", {"step": "viewing"}, 7)
    # Someone else asked for /poliza in the General topic
    services.awaiting.awaiting_get_policy_number.set(CHAT_ID, {"requested_by": 2})

    message = FakeMessage("POL9")
    assert run_validator(make_update(message), services) is False
    assert message.replies == []


def test_blocks_threadless_text_during_threaded_flow():
    services = conflicting_services()
    message = FakeMessage("POL1")

    assert run_validator(make_update(message), services) is True
    assert message.replies == [WRONG_THREAD_MESSAGE]


def test_lets_through_threaded_text_commands_and_callbacks():
    services = conflicting_services()

    threaded = FakeMessage("POL1", thread_id=7)
    assert run_validator(make_update(threaded), services) is False
    assert threaded.replies == []

    command = FakeMessage("/start")
    assert run_validator(make_update(command), services) is False
    assert command.replies == []

    callback = SimpleNamespace(message=SimpleNamespace(message_thread_id=None))
    assert run_validator(make_update(callback_query=callback), services) is False


def test_lets_through_when_nothing_to_check():
    services = make_services()
    assert run_validator(make_update(FakeMessage("hello")), services) is False
    assert run_validator(make_update(message=None), services) is False

    no_chat = SimpleNamespace(effective_chat=None, message=FakeMessage("x"), callback_query=None)
    assert run_validator(no_chat, services) is False

    context = SimpleNamespace(application=SimpleNamespace(bot_data={}))
    asyncio.run(thread_validator(make_update(FakeMessage("x")), context))


def test_validator_errors_let_update_through():
    class BrokenAwaiting:
        def active_steps(self, chat_id, thread_id=None):
            raise RuntimeError("boom")

    services = make_services()
    services.awaiting = BrokenAwaiting()
    message = FakeMessage("POL1")
    assert run_validator(make_update(message), services) is False
    assert message.replies == []


if __name__ == "__main__":
    test_find_thread_conflict()
    test_general_topic_answer_passes_while_other_topic_has_a_flow()
    test_blocks_threadless_text_during_threaded_flow()
    test_lets_through_threaded_text_commands_and_callbacks()
    test_lets_through_when_nothing_to_check()
    test_validator_errors_let_update_through()
    print("\n✅ All thread validator tests passed!")
