"""Tests for the response engine."""

import json

import pytest

from kindred.engine import EngineConfig, Mode, ResponseEngine, SessionContext, UnknownContactError
from kindred.engine import prompts
from kindred.gateway import TransportError
from kindred.logging import JSONLLogger
from kindred.models import Contact, Message, MessageType, Sticker
from kindred.store import Containers


@pytest.fixture
def typing_calls() -> list[tuple[str, bool]]:
    return []


@pytest.fixture
def engine(containers: Containers, backend, typing_calls) -> ResponseEngine:
    config = EngineConfig(segment_delay=0, transfer_delay=0, rolling_summary=False)
    return ResponseEngine(
        containers,
        backend,
        config,
        on_typing=lambda contact_id, active: typing_calls.append((contact_id, active)),
    )


def events(jsonl: JSONLLogger) -> list[dict]:
    with open(jsonl.log_path) as f:
        return [json.loads(line) for line in f]


class TestUserRecords:
    """Operations that only append user records."""

    def test_send_message(self, engine: ResponseEngine, containers: Containers, contact: Contact):
        msg = engine.send_message(SessionContext(contact.id), "hi", quote="earlier")

        stored = containers.messages(contact.id)
        assert stored[0].content == "hi"
        assert stored[0].quote == "earlier"
        assert msg.role == "user"

    def test_send_transfer(self, engine: ResponseEngine, containers: Containers, contact: Contact):
        engine.send_transfer(SessionContext(contact.id), 50, "lunch")

        stored = containers.messages(contact.id)[0]
        assert stored.is_type(MessageType.TRANSFER)
        assert stored.status == "pending"
        assert stored.amount == 50.0

    def test_send_transfer_rejects_non_positive(self, engine: ResponseEngine, contact: Contact):
        with pytest.raises(ValueError):
            engine.send_transfer(SessionContext(contact.id), 0)

    def test_send_sticker(self, engine: ResponseEngine, containers: Containers, contact: Contact):
        engine.send_sticker(SessionContext(contact.id), Sticker(url="u", desc="wave"))

        stored = containers.messages(contact.id)[0]
        assert stored.sticker_desc == "wave"

    def test_offline_mode_recorded(self, engine: ResponseEngine, containers: Containers, contact: Contact):
        engine.send_message(SessionContext(contact.id, mode=Mode.OFFLINE), "*waves*")

        assert containers.messages(contact.id)[0].mode == "offline"

    def test_end_call(self, engine: ResponseEngine, containers: Containers, contact: Contact):
        ctx = SessionContext(contact.id, mode=Mode.CALL)

        assert engine.end_call(ctx, 0) is None
        record = engine.end_call(ctx, 42)

        assert record.role == "system"
        assert record.content == "Call ended, Sam hung up"
        assert containers.messages(contact.id)[-1].is_type(MessageType.CALL_END)


class TestRespond:
    """The full pipeline."""

    @pytest.mark.asyncio
    async def test_thought_and_segments(
        self, engine: ResponseEngine, containers: Containers, contact: Contact, backend, typing_calls
    ):
        ctx = SessionContext(contact.id)
        engine.send_message(ctx, "hello?")
        backend.queue("[THOUGHTS: nervous] ||| hey ||| are you there")

        result = await engine.respond(ctx)
        await result.delivery

        messages = containers.messages(contact.id)
        assert [m.content for m in messages[1:]] == ["hey", "are you there"]
        assert messages[1].thought is None
        assert messages[2].thought == "nervous"
        assert result.mode_instruction == "default"
        assert typing_calls == [(contact.id, True), (contact.id, False)]

    @pytest.mark.asyncio
    async def test_request_shape(self, engine: ResponseEngine, contact: Contact, backend):
        ctx = SessionContext(contact.id)
        engine.send_message(ctx, "hello?")
        backend.queue("hi")

        await engine.respond(ctx)
        await engine.drain()

        sent = backend.calls[0]["messages"]
        assert sent[0]["role"] == "system"
        assert sent[-1] == {"role": "user", "content": "hello?"}

    @pytest.mark.asyncio
    async def test_rejected_transfer(
        self, engine: ResponseEngine, containers: Containers, contact: Contact, backend
    ):
        ctx = SessionContext(contact.id)
        engine.send_transfer(ctx, 50)
        backend.queue("[REJECT] sorry I can't accept this")

        result = await engine.respond(ctx)
        await engine.drain()

        messages = containers.messages(contact.id)
        assert messages[0].status == "rejected"
        assert messages[1].is_type(MessageType.TRANSFER_RECEIPT)
        assert messages[1].amount == 50
        assert messages[1].status == "rejected"
        assert messages[2].content == "sorry I can't accept this"
        assert result.resolution.transfer_resolved is True

    @pytest.mark.asyncio
    async def test_accepted_invite(
        self, engine: ResponseEngine, containers: Containers, contact: Contact, backend
    ):
        ctx = SessionContext(contact.id)
        engine.send_invite(ctx)
        backend.queue("[THOUGHTS: finally] ||| [ACCEPT_INVITE] yes!!")

        result = await engine.respond(ctx)
        await engine.drain()

        assert result.mode_instruction == "invite"
        assert containers.couple().active is True
        assert containers.couple().partner_id == contact.id
        assert containers.messages(contact.id)[-1].content == "yes!!"

    @pytest.mark.asyncio
    async def test_retract_last(
        self, engine: ResponseEngine, containers: Containers, contact: Contact, backend, jsonl
    ):
        ctx = SessionContext(contact.id)
        containers.append_message(contact.id, Message(role="assistant", content="whatever."))
        engine.send_message(ctx, "that was cold")
        backend.queue("[CMD:RETRACT_LAST] sorry, I didn't mean it")

        result = await engine.respond(ctx)
        await engine.drain()

        messages = containers.messages(contact.id)
        assert messages[0].retracted is True
        assert result.retracted.content == "whatever."
        assert messages[-1].content == "sorry, I didn't mean it"
        assert "retract" in [e["event"] for e in events(jsonl)]

    @pytest.mark.asyncio
    async def test_transport_error(
        self, engine: ResponseEngine, containers: Containers, contact: Contact, backend, typing_calls, jsonl
    ):
        ctx = SessionContext(contact.id)
        engine.send_message(ctx, "hello?")
        backend.queue(TransportError("HTTP error! status: 503"))

        with pytest.raises(TransportError):
            await engine.respond(ctx)

        assert len(containers.messages(contact.id)) == 1
        assert typing_calls == [(contact.id, True), (contact.id, False)]
        logged = events(jsonl)
        assert logged[-1]["event"] == "transport_error"
        assert logged[-1]["error"] == "HTTP error! status: 503"

    @pytest.mark.asyncio
    async def test_unknown_contact(self, engine: ResponseEngine):
        with pytest.raises(UnknownContactError):
            await engine.respond(SessionContext("ghost"))

    @pytest.mark.asyncio
    async def test_offline_single_message(
        self, engine: ResponseEngine, containers: Containers, contact: Contact, backend
    ):
        ctx = SessionContext(contact.id, mode=Mode.OFFLINE)
        engine.send_message(ctx, "*takes your hand*")
        backend.queue("[THOUGHTS: warm] ||| Aria squeezes back. ||| The rain keeps falling.")

        result = await engine.respond(ctx)

        assert result.delivery is None
        last = containers.messages(contact.id)[-1]
        assert last.content == "Aria squeezes back. ||| The rain keeps falling."
        assert last.thought == "warm"
        assert last.mode == "offline"


class TestRegenerate:
    """Regenerating the last reply."""

    @pytest.mark.asyncio
    async def test_requires_assistant_tail(self, engine: ResponseEngine, contact: Contact, backend):
        ctx = SessionContext(contact.id)
        engine.send_message(ctx, "hello?")

        assert await engine.regenerate(ctx) is None
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_replaces_trailing_replies(
        self, engine: ResponseEngine, containers: Containers, contact: Contact, backend
    ):
        ctx = SessionContext(contact.id)
        engine.send_message(ctx, "hello?")
        containers.append_message(contact.id, Message(role="assistant", content="first"))
        containers.append_message(contact.id, Message(role="assistant", content="second"))
        backend.queue("again")

        await engine.regenerate(ctx)
        await engine.drain()

        assert [m.content for m in containers.messages(contact.id)] == ["hello?", "again"]


class TestCalls:
    """Picking up a call."""

    @pytest.mark.asyncio
    async def test_start_call(self, engine: ResponseEngine, containers: Containers, contact: Contact, backend):
        engine.send_message(SessionContext(contact.id), "earlier chat")
        backend.queue("[THOUGHTS: surprised] ||| Hello? ||| Is that you?")

        result = await engine.start_call(SessionContext(contact.id))

        sent = backend.calls[0]["messages"]
        assert len(sent) == 1
        assert prompts.CALL_ANSWER_INSTRUCTION in sent[0]["content"]
        assert result.mode_instruction == "call_answer"
        last = containers.messages(contact.id)[-1]
        assert last.content == "Hello? ||| Is that you?"
        assert last.thought == "surprised"


class TestRollingSummary:
    """Background memory after enough rounds."""

    @pytest.mark.asyncio
    async def test_summary_after_interval(self, containers: Containers, contact: Contact, backend):
        contact.user_settings.summary_interval = 1
        containers.save_contact(contact)
        engine = ResponseEngine(containers, backend, EngineConfig(segment_delay=0))
        ctx = SessionContext(contact.id)
        engine.send_message(ctx, "I adopted a cat today")
        backend.queue(
            "no way ||| show me!",
            '{"content": "Sam adopted a cat today.", "keywords": ["cat"]}',
        )

        await engine.respond(ctx)
        await engine.drain()

        memories = containers.memories(contact.id)
        assert [m.content for m in memories.normal] == ["Sam adopted a cat today."]
        assert memories.normal[0].keywords == ["cat"]
        assert backend.calls[1]["temperature"] == 0.5

    @pytest.mark.asyncio
    async def test_disabled_auto_summary(self, containers: Containers, contact: Contact, backend):
        contact.user_settings.summary_interval = 1
        contact.user_settings.auto_summary = False
        containers.save_contact(contact)
        engine = ResponseEngine(containers, backend, EngineConfig(segment_delay=0))
        ctx = SessionContext(contact.id)
        engine.send_message(ctx, "hi")
        backend.queue("hello")

        await engine.respond(ctx)
        await engine.drain()

        assert len(backend.calls) == 1
        assert containers.memories(contact.id).normal == []
