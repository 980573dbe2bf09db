"""Typed accessors over the state store containers.

Every mutating helper re-reads the container it changes and writes the whole
container back, so concurrent writers never work from a stale snapshot.
"""

from typing import Any

from ..memory.models import ContactMemories
from ..models import Contact, CoupleState, Message, Sticker, WorldEntry
from .store import Keys, StateStore


class Containers:
    """Domain view of a :class:`StateStore`."""

    def __init__(self, store: StateStore) -> None:
        self.store = store

    # Contacts

    def contacts(self) -> list[Contact]:
        return [Contact.from_dict(c) for c in self.store.get(Keys.CONTACTS)]

    def get_contact(self, contact_id: str) -> Contact | None:
        for contact in self.contacts():
            if contact.id == str(contact_id):
                return contact
        return None

    def save_contact(self, contact: Contact) -> None:
        """Insert or replace a contact by id."""
        raw = self.store.get(Keys.CONTACTS)
        for i, item in enumerate(raw):
            if str(item.get("id")) == contact.id:
                raw[i] = contact.to_dict()
                break
        else:
            raw.append(contact.to_dict())
        self.store.set(Keys.CONTACTS, raw)

    def stamp_last_summary(self, contact_id: str, when_ms: int) -> None:
        contact = self.get_contact(contact_id)
        if contact is None:
            return
        contact.daily_summary.last_summary = when_ms
        self.save_contact(contact)

    # Messages

    def messages(self, contact_id: str) -> list[Message]:
        chats = self.store.get(Keys.CHATS)
        return [Message.from_dict(m) for m in chats.get(str(contact_id), [])]

    def save_messages(self, contact_id: str, messages: list[Message]) -> None:
        chats = self.store.get(Keys.CHATS)
        chats[str(contact_id)] = [m.to_dict() for m in messages]
        self.store.set(Keys.CHATS, chats)

    def append_message(self, contact_id: str, message: Message) -> Message:
        chats = self.store.get(Keys.CHATS)
        chats.setdefault(str(contact_id), []).append(message.to_dict())
        self.store.set(Keys.CHATS, chats)
        return message

    # Memories

    def memories(self, contact_id: str) -> ContactMemories:
        return ContactMemories.from_dict(self.store.get(Keys.MEMORIES).get(str(contact_id)))

    def save_memories(self, contact_id: str, memories: ContactMemories) -> None:
        all_memories = self.store.get(Keys.MEMORIES)
        all_memories[str(contact_id)] = memories.to_dict()
        self.store.set(Keys.MEMORIES, all_memories)

    # Relationship

    def couple(self) -> CoupleState:
        return CoupleState.from_dict(self.store.get(Keys.COUPLE))

    def save_couple(self, state: CoupleState) -> None:
        self.store.set(Keys.COUPLE, state.to_dict())

    # Read-only collaborators

    def stickers(self) -> list[Sticker]:
        return [
            Sticker(url=s.get("url", ""), desc=s.get("desc", ""))
            for s in self.store.get(Keys.STICKERS)
        ]

    def world_entries(self) -> list[WorldEntry]:
        book = self.store.get(Keys.WORLDBOOK)
        return [
            WorldEntry(
                id=str(e.get("id", "")),
                title=e.get("title", ""),
                content=e.get("content", ""),
                type=e.get("type", "global"),
            )
            for e in book.get("entries", [])
        ]

    def calendar(self) -> dict[str, list[dict[str, Any]]]:
        return self.store.get(Keys.CALENDAR)

    def settings(self) -> dict[str, Any]:
        return self.store.get(Keys.SETTINGS)
