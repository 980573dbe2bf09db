"""Shared fixtures."""

from pathlib import Path
from typing import Any

import pytest

from kindred.gateway import TransportError
from kindred.logging import JSONLLogger, configure_logger
from kindred.models import Contact, UserSettings
from kindred.store import Containers, LegacyJSONStore, SQLiteBackend, StateStore


class FakeBackend:
    """ChatBackend double that replays queued replies and records requests."""

    def __init__(self, *replies: str | Exception) -> None:
        self.replies: list[str | Exception] = list(replies)
        self.calls: list[dict[str, Any]] = []
        self.model = "fake-model"

    def queue(self, *replies: str | Exception) -> None:
        self.replies.extend(replies)

    async def chat(
        self, messages: list[dict[str, Any]], temperature: float | None = None
    ) -> str:
        self.calls.append({"messages": messages, "temperature": temperature})
        if not self.replies:
            raise TransportError("No reply queued")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture(autouse=True)
def jsonl(tmp_path: Path) -> JSONLLogger:
    """Route the global event log into the test directory."""
    return configure_logger(tmp_path / "logs")


@pytest.fixture
def store(tmp_path: Path) -> StateStore:
    state = StateStore(
        SQLiteBackend(tmp_path / "kindred.db"),
        legacy=LegacyJSONStore(tmp_path / "legacy"),
    )
    state.open()
    yield state
    state.close()


@pytest.fixture
def containers(store: StateStore) -> Containers:
    return Containers(store)


@pytest.fixture
def contact(containers: Containers) -> Contact:
    """A saved contact with default settings."""
    person = Contact(
        id="c1",
        name="Aria",
        persona="A warm, teasing illustrator who loves rainy days.",
        user_settings=UserSettings(user_name="Sam", user_persona="A night-shift nurse."),
    )
    containers.save_contact(person)
    return person


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()
