# tests/test_chat_store.py
import asyncio

import httpx
import pytest

from conftest import message_json, reply_json, request_json, session_json, wait_for
from solanize.api.chat_api import ChatApi
from solanize.chat.store import ChatSessionStore, merge_messages
from solanize.errors import ErrorKind
from solanize.storage.models import ChatMessage, ChatSession, MessageRole

MESSAGES = "/chat/sessions/s1/messages"

SWAP_ACTION = {
    "action_id": "a1",
    "intent_description": "Swap 1 SOL for USDC",
    "confidence_score": 0.92,
    "endpoints_to_call": [
        {
            "endpoint": "/api/v1/swap",
            "method": "POST",
            "description": "Execute swap",
            "params": {"amount": 1, "from": "SOL", "to": "USDC"},
            "risk_level": "high",
        }
    ],
    "estimated_cost": 0.000005,
    "warnings": ["Price impact above 1%"],
}


def prepared_json(transaction_id: str = "t1") -> dict:
    return {
        "transaction_id": transaction_id,
        "transaction_type": "transfer",
        "unsigned_transaction": "AAAA",
        "from_address": "from",
        "to_address": "to",
        "amount": 0.5,
        "token": "SOL",
        "fee_estimate": 0.000005,
    }


def use_session(store: ChatSessionStore, session_id: str = "s1") -> None:
    store.sessions = [ChatSession(id=session_id, title="Chat")]
    store.current_session_id = session_id
    store.messages[session_id] = []


def contents(messages) -> list[tuple[str, str]]:
    return [(m.role.value, m.content) for m in messages]


class TestMergeMessages:
    def test_confirmed_then_optimistic(self):
        a = ChatMessage(id="1", content="a", role=MessageRole.USER)
        b = ChatMessage(id="temp-user-x", content="b", role=MessageRole.USER)
        assert merge_messages([a], [b]) == [a, b]

    def test_none_entries_and_sequences_are_dropped(self):
        a = ChatMessage(id="1", content="a", role=MessageRole.USER)
        assert merge_messages([None, a], None) == [a]
        assert merge_messages(None, None) == []


class TestSending:
    @pytest.mark.asyncio
    async def test_create_then_send(self, backend, store):
        backend.on("POST", "/chat/sessions", session_json("s1", "New chat"))
        backend.on("POST", MESSAGES, reply_json("m1", "m2", "hello", "Hi! How can I help?"))

        session = await store.create_session()
        assert session.id == "s1"
        assert store.current_session_id == "s1"

        assert await store.send_message("hello") is True

        assert contents(store.current_messages()) == [
            ("user", "hello"),
            ("assistant", "Hi! How can I help?"),
        ]
        assert store.optimistic["s1"] == []
        assert store.pending_actions.keys() == []
        assert store.error is None

    @pytest.mark.asyncio
    async def test_optimistic_entry_visible_while_in_flight(self, backend, store):
        use_session(store)
        release = asyncio.Event()

        async def slow_reply(request):
            await release.wait()
            return reply_json("m1", "m2", "hello")

        backend.on("POST", MESSAGES, slow_reply)

        task = asyncio.create_task(store.send_message("hello"))
        await wait_for(lambda: backend.count("POST", MESSAGES) == 1)

        [pending] = store.current_messages()
        assert pending.is_optimistic
        assert pending.content == "hello"
        assert store.loading["sending"] is True

        release.set()
        assert await task is True
        assert store.loading["sending"] is False
        assert not any(m.is_optimistic for m in store.current_messages())

    @pytest.mark.asyncio
    async def test_concurrent_sends_keep_one_entry_per_unresolved_call(self, backend, store):
        use_session(store)
        gates = {"one": asyncio.Event(), "two": asyncio.Event()}

        async def gated_reply(request):
            content = request_json(request)["content"]
            await gates[content].wait()
            return reply_json(f"u-{content}", f"a-{content}", content, "ok")

        backend.on("POST", MESSAGES, gated_reply)

        first = asyncio.create_task(store.send_message("one"))
        second = asyncio.create_task(store.send_message("two"))
        await wait_for(lambda: backend.count("POST", MESSAGES) == 2)
        assert [m.content for m in store.optimistic["s1"]] == ["one", "two"]

        gates["one"].set()
        await first
        assert [m.content for m in store.optimistic["s1"]] == ["two"]

        gates["two"].set()
        await second
        assert store.optimistic["s1"] == []
        assert [m.id for m in store.messages["s1"]] == ["u-one", "a-one", "u-two", "a-two"]

    @pytest.mark.asyncio
    async def test_send_without_session_creates_one_from_first_words(self, backend, store):
        long_text = "Please send half a SOL to my friend " + "x" * 40
        backend.on("POST", "/chat/sessions", session_json("s1"))
        backend.on("POST", MESSAGES, reply_json("m1", "m2", long_text))

        assert await store.send_message(long_text) is True

        create_body = request_json(backend.calls("POST", "/chat/sessions")[0])
        assert create_body["title"] == long_text[:50]
        assert store.current_session_id == "s1"

    @pytest.mark.asyncio
    async def test_blank_message_is_ignored(self, backend, store):
        use_session(store)
        assert await store.send_message("   ") is False
        assert backend.requests == []

    @pytest.mark.asyncio
    async def test_refuses_placeholder_session(self, backend, store):
        assert await store.send_message("hi", "temp-session-abc") is False
        assert store.error.kind == ErrorKind.VALIDATION
        assert backend.requests == []


class TestFailures:
    @pytest.mark.asyncio
    async def test_network_failure_keeps_input_and_retries(self, backend, store):
        use_session(store)

        def offline(request):
            raise httpx.ConnectError("connection refused", request=request)

        backend.on("POST", MESSAGES, offline)

        assert await store.send_message("hello") is False

        messages = store.current_messages()
        assert contents(messages)[0] == ("user", "hello")
        assert messages[0].is_optimistic
        errors = [m for m in messages if m.role == MessageRole.ASSISTANT]
        assert len(errors) == 1
        assert "error" in errors[0].content
        assert store.error.kind == ErrorKind.NETWORK
        assert store.error.retry is not None

        backend.on("POST", MESSAGES, reply_json("m1", "m2", "hello", "Back online"))
        assert await store.error.retry() is True

        first, second = backend.calls("POST", MESSAGES)
        assert request_json(first) == request_json(second)
        assert contents(store.current_messages()) == [
            ("user", "hello"),
            ("assistant", "Back online"),
        ]
        assert store.error is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, body, kind",
        [
            (400, {"detail": "Message too long"}, ErrorKind.VALIDATION),
            (422, {"message": "Invalid session"}, ErrorKind.VALIDATION),
            (401, {"detail": "Token expired"}, ErrorKind.AUTH),
            (500, None, ErrorKind.NETWORK),
        ],
    )
    async def test_errors_are_classified(self, backend, store, status, body, kind):
        use_session(store)
        if body is None:
            backend.on("POST", MESSAGES, lambda request: httpx.Response(status, text="oops"))
        else:
            backend.on("POST", MESSAGES, (status, body))

        assert await store.send_message("hello") is False

        assert store.error.kind == kind
        if body is not None:
            assert store.error.message in body.values()

    @pytest.mark.asyncio
    async def test_load_sessions_failure_sets_error(self, backend, store):
        backend.on("GET", "/chat/sessions", (503, {}))

        assert await store.load_sessions() is None
        assert store.error.kind == ErrorKind.NETWORK
        assert store.loading["sessions"] is False


class TestProposals:
    @pytest.mark.asyncio
    async def test_approve_with_modified_params(self, backend, store):
        use_session(store)
        backend.on(
            "POST",
            MESSAGES,
            reply_json("m1", "m2", "swap 1 SOL", "Here is the plan", proposed_actions=SWAP_ACTION),
        )
        await store.send_message("swap 1 SOL")

        assert "a1" in store.pending_actions
        [action] = store.current_pending_actions()
        assert action.high_risk_calls[0].params["amount"] == 1

        backend.on("POST", MESSAGES, reply_json("m3", "m4", "User approved actions", "Done"))
        edited = {"/api/v1/swap": {"amount": 0.5, "from": "SOL", "to": "USDC"}}
        assert await store.approve_action("a1", edited) is True

        body = request_json(backend.calls("POST", MESSAGES)[-1])
        assert body["content"] == "User approved actions"
        assert body["action_response"] == {
            "action_id": "a1",
            "approved": True,
            "modified_params": edited,
        }
        assert "a1" not in store.pending_actions
        assert store.optimistic["s1"] == []

    @pytest.mark.asyncio
    async def test_reject_removes_action(self, backend, store):
        use_session(store)
        backend.on("POST", MESSAGES, reply_json("m1", "m2", "swap", proposed_actions=SWAP_ACTION))
        await store.send_message("swap")

        backend.on("POST", MESSAGES, reply_json("m3", "m4", "User rejected the proposed actions"))
        assert await store.reject_action("a1") is True

        body = request_json(backend.calls("POST", MESSAGES)[-1])
        assert body["action_response"] == {"action_id": "a1", "approved": False}
        assert store.pending_actions.keys() == []

    @pytest.mark.asyncio
    async def test_failed_approval_keeps_action_pending(self, backend, store):
        use_session(store)
        backend.on("POST", MESSAGES, reply_json("m1", "m2", "swap", proposed_actions=SWAP_ACTION))
        await store.send_message("swap")

        backend.on("POST", MESSAGES, (500, {}))
        assert await store.approve_action("a1") is False

        assert "a1" in store.pending_actions
        assert store.optimistic["s1"] == []

    @pytest.mark.asyncio
    async def test_approve_unknown_action_is_refused(self, backend, store):
        use_session(store)
        assert await store.approve_action("missing") is False
        assert backend.requests == []

    @pytest.mark.asyncio
    async def test_prepared_transaction_reaches_listeners(self, backend, store):
        use_session(store)
        received = []
        store.add_transaction_listener(lambda prepared, sid: received.append((prepared, sid)))
        backend.on(
            "POST",
            MESSAGES,
            reply_json("m1", "m2", "send 0.5 SOL", prepared_transaction=prepared_json("t1")),
        )

        await store.send_message("send 0.5 SOL")

        assert store.pending_transactions.keys() == ["t1"]
        [(prepared, session_id)] = received
        assert prepared.transaction_id == "t1"
        assert session_id == "s1"

    @pytest.mark.asyncio
    async def test_signed_transaction_resolves_pending(self, backend, store):
        use_session(store)
        backend.on(
            "POST",
            MESSAGES,
            reply_json("m1", "m2", "send", prepared_transaction=prepared_json("t1")),
        )
        await store.send_message("send")

        backend.on("POST", MESSAGES, reply_json("m3", "m4", "Transaction signed", "Submitted"))
        assert await store.sign_transaction("t1", "c2lnbmVk") is True

        body = request_json(backend.calls("POST", MESSAGES)[-1])
        assert body["signed_transaction"] == "c2lnbmVk"
        assert body["transaction_id"] == "t1"
        assert "t1" not in store.pending_transactions

    @pytest.mark.asyncio
    async def test_resolved_transaction_cannot_be_signed_again(self, backend, store):
        use_session(store)
        backend.on(
            "POST",
            MESSAGES,
            reply_json("m1", "m2", "send", prepared_transaction=prepared_json("t1")),
        )
        await store.send_message("send")
        backend.on("POST", MESSAGES, reply_json("m3", "m4", "Transaction signed", "Submitted"))
        assert await store.sign_transaction("t1", "c2lnbmVk") is True

        assert await store.sign_transaction("t1", "c2lnbmVk") is False
        assert await store.sign_transaction("unknown", "c2lnbmVk") is False
        assert backend.count("POST", MESSAGES) == 2


class TestSessions:
    @pytest.mark.asyncio
    async def test_load_sessions_selects_first(self, backend, store):
        backend.on("GET", "/chat/sessions", [session_json("s1"), session_json("s2")])
        backend.on("GET", MESSAGES, [message_json("old1", "earlier")])

        sessions = await store.load_sessions()

        assert [s.id for s in sessions] == ["s1", "s2"]
        assert store.current_session_id == "s1"
        assert store.has_any_sessions
        assert [m.id for m in store.current_messages()] == ["old1"]
        assert backend.count("GET", "/chat/sessions/s2/messages") == 0

    @pytest.mark.asyncio
    async def test_history_kept_after_sending_and_switching_back(self, backend, store):
        backend.on("GET", "/chat/sessions", [session_json("s1"), session_json("s2")])
        backend.on(
            "GET",
            MESSAGES,
            [message_json("old1", "earlier"), message_json("old2", "answer", "assistant")],
        )
        backend.on("GET", "/chat/sessions/s2/messages", [])
        backend.on("POST", MESSAGES, reply_json("m1", "m2", "hi"))

        await store.load_sessions()
        await store.send_message("hi")
        await store.switch_session("s2")
        await store.switch_session("s1")

        assert [m.id for m in store.current_messages()] == ["old1", "old2", "m1", "m2"]
        assert backend.count("GET", MESSAGES) == 1

    @pytest.mark.asyncio
    async def test_local_replies_do_not_count_as_fetched_history(self, backend, store):
        use_session(store)
        backend.on("POST", MESSAGES, reply_json("m1", "m2", "hi"))
        backend.on("GET", MESSAGES, [message_json("old1", "earlier")])
        backend.on("GET", "/chat/sessions/s2/messages", [])

        await store.send_message("hi")
        await store.switch_session("s2")
        await store.switch_session("s1")

        assert [m.id for m in store.current_messages()] == ["old1", "m1", "m2"]
        assert backend.count("GET", MESSAGES) == 1

    @pytest.mark.asyncio
    async def test_unauthenticated_store_stays_empty(self, backend, gateway):
        store = ChatSessionStore(ChatApi(gateway), lambda: False)

        assert await store.load_sessions() == []
        assert await store.create_session() is None
        assert backend.requests == []

    @pytest.mark.asyncio
    async def test_placeholder_session_while_creating(self, backend, store):
        release = asyncio.Event()

        async def slow_create(request):
            await release.wait()
            return session_json("s9", "Trading")

        backend.on("POST", "/chat/sessions", slow_create)

        task = asyncio.create_task(store.create_session("Trading"))
        await wait_for(lambda: backend.count("POST", "/chat/sessions") == 1)
        [placeholder] = store.sessions
        assert placeholder.is_placeholder
        assert store.current_session_id == placeholder.id

        release.set()
        session = await task
        assert [s.id for s in store.sessions] == ["s9"]
        assert store.current_session_id == session.id == "s9"

    @pytest.mark.asyncio
    async def test_failed_create_restores_previous_session(self, backend, store):
        use_session(store, "s0")
        backend.on("POST", "/chat/sessions", (500, {}))

        assert await store.create_session("Trading") is None

        assert [s.id for s in store.sessions] == ["s0"]
        assert store.current_session_id == "s0"

        backend.on("POST", "/chat/sessions", session_json("s1", "Trading"))
        created = await store.error.retry()
        assert created.id == "s1"
        assert store.current_session_id == "s1"

    @pytest.mark.asyncio
    async def test_switch_session_fetches_once(self, backend, store):
        backend.on(
            "GET",
            "/chat/sessions/s2/messages",
            [message_json("m1", "hi"), message_json("m2", "hello", "assistant")],
        )

        await store.switch_session("s2")
        await store.switch_session("s2")

        assert store.current_session_id == "s2"
        assert backend.count("GET", "/chat/sessions/s2/messages") == 1
        assert [m.id for m in store.current_messages()] == ["m1", "m2"]

    @pytest.mark.asyncio
    async def test_delete_current_session_selects_next(self, backend, store):
        store.sessions = [ChatSession(id="s1"), ChatSession(id="s2")]
        store.current_session_id = "s1"
        backend.on("DELETE", "/chat/sessions/s1", {"deleted": True})

        assert await store.delete_session("s1") is True

        assert [s.id for s in store.sessions] == ["s2"]
        assert store.current_session_id == "s2"

    @pytest.mark.asyncio
    async def test_delete_missing_session_counts_as_success(self, backend, store):
        use_session(store)

        assert await store.delete_session("s1") is True

        assert store.sessions == []
        assert store.current_session_id is None
        assert store.error is None


class TestStaleness:
    @pytest.mark.asyncio
    async def test_reply_for_deleted_session_is_dropped(self, backend, store):
        use_session(store)
        release = asyncio.Event()

        async def slow_reply(request):
            await release.wait()
            return reply_json("m1", "m2", "hello", proposed_actions=SWAP_ACTION)

        backend.on("POST", MESSAGES, slow_reply)
        backend.on("DELETE", "/chat/sessions/s1", {})

        task = asyncio.create_task(store.send_message("hello"))
        await wait_for(lambda: backend.count("POST", MESSAGES) == 1)
        await store.delete_session("s1")
        release.set()

        assert await task is False
        assert "s1" not in store.messages
        assert "a1" not in store.pending_actions

    @pytest.mark.asyncio
    async def test_reply_after_reset_is_dropped(self, backend, store):
        use_session(store)
        release = asyncio.Event()

        async def slow_reply(request):
            await release.wait()
            return reply_json("m1", "m2", "hello")

        backend.on("POST", MESSAGES, slow_reply)

        task = asyncio.create_task(store.send_message("hello"))
        await wait_for(lambda: backend.count("POST", MESSAGES) == 1)
        store.reset()
        release.set()

        assert await task is False
        assert store.messages == {}
        assert store.sessions == []

    @pytest.mark.asyncio
    async def test_sessions_loaded_before_reset_are_dropped(self, backend, store):
        release = asyncio.Event()

        async def slow_list(request):
            await release.wait()
            return [session_json("s1")]

        backend.on("GET", "/chat/sessions", slow_list)

        task = asyncio.create_task(store.load_sessions())
        await wait_for(lambda: backend.count("GET", "/chat/sessions") == 1)
        store.reset()
        release.set()

        assert await task is None
        assert store.sessions == []
