"""Tests for the context compiler."""

from datetime import datetime

import pytest

from kindred.engine import ContextCompiler, Mode, SessionContext, UnknownContactError, gloss_message
from kindred.engine import prompts
from kindred.engine.compiler import RETRACTED_ASSISTANT_TEXT, RETRACTED_USER_NOTICE
from kindred.memory import ContactMemories, MemoryEntry, MemoryManager
from kindred.models import Contact, Message, MessageType, TransferStatus
from kindred.store import Containers, Keys

NOW = datetime(2024, 5, 20, 21, 30, 0)


@pytest.fixture
def compiler(containers: Containers) -> ContextCompiler:
    return ContextCompiler(containers, MemoryManager(containers), clock=lambda: NOW)


def user(text: str, **kwargs) -> Message:
    return Message(role="user", content=text, **kwargs)


def assistant(text: str, **kwargs) -> Message:
    return Message(role="assistant", content=text, **kwargs)


class TestGloss:
    """Rewriting stored messages into request blocks."""

    def test_plain_message(self):
        assert gloss_message(user("hi")) == {"role": "user", "content": "hi"}

    def test_transfer(self):
        msg = Message(role="user", type="transfer", amount=50.0, note="coffee", status="pending")
        block = gloss_message(msg)

        assert block["role"] == "user"
        assert "payment of 50" in block["content"]
        assert "coffee" in block["content"]

    def test_rejected_receipt(self):
        msg = Message(
            role="assistant",
            type=MessageType.TRANSFER_RECEIPT.value,
            amount=12.5,
            status=TransferStatus.REJECTED.value,
        )
        assert gloss_message(msg)["content"] == "[I declined and returned the payment of 12.50]"

    def test_retracted_user_becomes_notice(self):
        block = gloss_message(user("secret", retracted=True))

        assert block == {"role": "system", "content": RETRACTED_USER_NOTICE}
        assert "secret" not in block["content"]

    def test_retracted_assistant(self):
        block = gloss_message(assistant("oops", retracted=True))

        assert block == {"role": "assistant", "content": RETRACTED_ASSISTANT_TEXT}

    def test_quote_and_time_prefix(self):
        stamp = int(datetime(2024, 5, 20, 8, 15, 0).timestamp() * 1000)
        block = gloss_message(user("same", quote="do you like tea?", timestamp=stamp), True)

        assert block["content"] == '[sent at 2024-05-20 08:15:00] [Replying to: "do you like tea?"] same'

    def test_sticker(self):
        msg = Message(role="user", type="sticker", sticker_desc="happy", sticker_url="u")
        assert gloss_message(msg)["content"] == "[Sticker: happy]"


class TestCompile:
    """Instruction block and history assembly."""

    def test_unknown_contact(self, compiler: ContextCompiler):
        with pytest.raises(UnknownContactError):
            compiler.compile(SessionContext("missing"))

    def test_block_order(self, compiler: ContextCompiler, containers: Containers, contact: Contact):
        """Blocks appear in the documented order."""
        contact.user_settings.time_awareness = True
        contact.bound_world_entries = ["w2"]
        containers.save_contact(contact)
        containers.save_memories(contact.id, ContactMemories(
            important=[MemoryEntry(content="Sam is allergic to cats")],
            normal=[MemoryEntry(content="We watched a movie", keywords=["movie"])],
        ))
        containers.store.set(Keys.CALENDAR, {"2024-05-20": [{"type": "anniversary", "title": "first date"}]})
        containers.store.set(Keys.WORLDBOOK, {"entries": [
            {"id": "w1", "title": "City", "content": "Rainy harbor town", "type": "global"},
            {"id": "w2", "title": "Studio", "content": "Aria rents a loft", "type": "bound"},
        ]})
        containers.store.set(Keys.STICKERS, [{"url": "u", "desc": "happy"}])
        containers.append_message(contact.id, user("any movie tonight?"))

        compiled = compiler.compile(SessionContext(contact.id, stickers_enabled=True))
        text = compiled.instruction

        markers = [
            prompts.DEFAULT_SYSTEM_PROMPT,
            "Name: Aria",
            "Name: Sam",
            "Sam is allergic to cats",
            "We watched a movie",
            "Current real time: 2024-05-20 21:30:00",
            "first date",
            "Rainy harbor town",
            "Aria rents a loft",
            "1. happy",
            "[CMD:RETRACT_LAST]",
            "===== Reply format (required) =====",
        ]
        positions = [text.index(m) for m in markers]
        assert positions == sorted(positions)
        assert compiled.mode_instruction == "default"
        assert [s.desc for s in compiled.catalog] == ["happy"]

    def test_settings_prompt_override(self, compiler: ContextCompiler, containers: Containers, contact: Contact):
        containers.store.set(Keys.SETTINGS, {"prompt": "CUSTOM BASE PROMPT"})

        compiled = compiler.compile(SessionContext(contact.id))

        assert compiled.instruction.startswith("CUSTOM BASE PROMPT")

    def test_triggered_memories_need_keyword(self, compiler: ContextCompiler, containers: Containers, contact: Contact):
        containers.save_memories(contact.id, ContactMemories(
            normal=[MemoryEntry(content="Sam hates cilantro", keywords=["Cilantro"])],
        ))
        containers.append_message(contact.id, user("what's for dinner"))

        assert "cilantro" not in compiler.compile(SessionContext(contact.id)).instruction

        containers.append_message(contact.id, user("no CILANTRO please"))
        assert "Sam hates cilantro" in compiler.compile(SessionContext(contact.id)).instruction

    def test_stickers_disabled(self, compiler: ContextCompiler, containers: Containers, contact: Contact):
        containers.store.set(Keys.STICKERS, [{"url": "u", "desc": "happy"}])

        compiled = compiler.compile(SessionContext(contact.id, stickers_enabled=False))

        assert compiled.catalog is None
        assert "===== Stickers =====" not in compiled.instruction

    def test_context_limit(self, compiler: ContextCompiler, containers: Containers, contact: Contact):
        contact.user_settings.context_limit = 3
        containers.save_contact(contact)
        for i in range(6):
            containers.append_message(contact.id, user(f"message {i}"))

        compiled = compiler.compile(SessionContext(contact.id))

        assert [b["content"] for b in compiled.history] == ["message 3", "message 4", "message 5"]
        messages = compiled.to_messages()
        assert messages[0]["role"] == "system"
        assert len(messages) == 4

    def test_no_time_prefix_without_awareness(self, compiler: ContextCompiler, containers: Containers, contact: Contact):
        containers.append_message(contact.id, user("hey"))

        compiled = compiler.compile(SessionContext(contact.id))

        assert compiled.history[-1]["content"] == "hey"
        assert "Current real time" not in compiled.instruction


class TestModeInstruction:
    """Exactly one mode block, by priority."""

    def _transfer(self, containers: Containers, contact_id: str) -> None:
        containers.append_message(contact_id, Message(
            role="user", type="transfer", amount=50.0, note="", status="pending",
        ))

    def test_transfer_wins_over_call(self, compiler: ContextCompiler, containers: Containers, contact: Contact):
        self._transfer(containers, contact.id)
        containers.append_message(contact.id, Message(role="user", type="invite_request"))

        compiled = compiler.compile(SessionContext(contact.id, mode=Mode.CALL))

        assert compiled.mode_instruction == "transfer"
        assert "payment of 50" in compiled.instruction
        assert prompts.SINGLE_SEGMENT_SHAPE in compiled.instruction
        assert prompts.CALL_INSTRUCTION not in compiled.instruction
        assert compiled.pending.transfer is not None
        assert compiled.pending.invite is not None

    def test_invite(self, compiler: ContextCompiler, containers: Containers, contact: Contact):
        containers.append_message(contact.id, Message(role="user", type="invite_request"))

        compiled = compiler.compile(SessionContext(contact.id))

        assert compiled.mode_instruction == "invite"
        assert "[ACCEPT_INVITE]" in compiled.instruction

    def test_settled_transfer_is_not_pending(self, compiler: ContextCompiler, containers: Containers, contact: Contact):
        containers.append_message(contact.id, Message(
            role="user", type="transfer", amount=5.0, status="accepted",
        ))

        assert compiler.compile(SessionContext(contact.id)).mode_instruction == "default"

    def test_call(self, compiler: ContextCompiler, contact: Contact):
        compiled = compiler.compile(SessionContext(contact.id, mode=Mode.CALL))

        assert compiled.mode_instruction == "call"

    def test_offline_uses_contact_settings(self, compiler: ContextCompiler, containers: Containers, contact: Contact):
        contact.offline_settings.min = 300
        contact.offline_settings.max = 400
        contact.offline_settings.style = "noir"
        containers.save_contact(contact)

        compiled = compiler.compile(SessionContext(contact.id, mode=Mode.OFFLINE))

        assert compiled.mode_instruction == "offline"
        assert "Length: 300 - 400 words." in compiled.instruction
        assert "Style: noir" in compiled.instruction


class TestCallAnswer:
    """Picking up a call."""

    def test_no_history(self, compiler: ContextCompiler, containers: Containers, contact: Contact):
        containers.append_message(contact.id, user("hello?"))

        compiled = compiler.compile_call_answer(SessionContext(contact.id, mode=Mode.CALL))

        assert compiled.history == []
        assert compiled.mode_instruction == "call_answer"
        assert "Name: Sam" in compiled.instruction
        assert "night-shift nurse" not in compiled.instruction
        assert prompts.CALL_ANSWER_INSTRUCTION in compiled.instruction
