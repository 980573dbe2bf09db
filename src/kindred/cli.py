"""CLI interface for Kindred."""

import asyncio
import time
import uuid

from .config import KindredConfig, load_config
from .engine import (
    EngineConfig,
    Mode,
    ResponseEngine,
    ResponseResult,
    SessionContext,
    UnknownContactError,
)
from .gateway import ChatBackend, ChatGateway, TransportError
from .logging import configure_logger, get_logger
from .memory import DailySummarizer, SummaryError, SummaryScheduler
from .models import Contact, Message, MessageType, Role
from .store import (
    Containers,
    LegacyJSONStore,
    SQLiteBackend,
    StateStore,
    StorageWriteError,
)

BANNER = """
╔══════════════════════════════════════════╗
║             💌 Kindred v0.1.0            ║
║        Companion chat in a terminal      ║
╚══════════════════════════════════════════╝

Commands:
  /contacts             - List contacts
  /new <name> [persona] - Create a contact
  /use <id>             - Switch to a contact
  /call, /hangup        - Start or end a voice call
  /offline, /online     - Enter or leave offline (meet-up) mode
  /retry                - Regenerate the last reply
  /continue             - Ask for another reply without a new message
  /transfer <amt> [note]- Send a payment
  /invite               - Invite the contact to a couple space
  /summary              - Run the daily summary now
  /retry-save           - Retry saves that failed to reach disk
  /help                 - Show this help
  /exit, /quit          - Exit the CLI

Type your message and press Enter.
"""


class CLI:
    """Interactive command-line interface for Kindred."""

    def __init__(
        self,
        config: KindredConfig | None = None,
        backend: ChatBackend | None = None,
    ) -> None:
        self.config = config or load_config()

        self.store = StateStore(
            SQLiteBackend(self.config.db_path),
            legacy=LegacyJSONStore(self.config.legacy_dir),
            on_write_error=self._on_storage_error,
        )
        self.store.open()
        self.containers = Containers(self.store)

        if backend is None:
            backend = ChatGateway.from_settings(
                api_key=self.config.api_key,
                base_url=self.config.base_url,
                model=self.config.model,
                temperature=self.config.temperature,
                timeout=self.config.timeout,
            )
        self.backend = backend

        self.engine = ResponseEngine(
            self.containers,
            backend,
            EngineConfig(
                system_prompt=self.config.system_prompt,
                segment_delay=self.config.segment_delay,
                transfer_delay=self.config.transfer_delay,
            ),
            on_typing=self._on_typing,
        )
        self.scheduler = SummaryScheduler(
            self.containers,
            DailySummarizer(self.containers, backend),
            sweep_interval=self.config.sweep_interval,
        )

        contacts = self.containers.contacts()
        self.contact_id: str | None = contacts[0].id if contacts else None
        self.mode = Mode.NORMAL
        self.call_started: float | None = None
        self.logger = get_logger()
        self.logger.bind(self.contact_id)

    @property
    def ctx(self) -> SessionContext:
        """Session for the selected contact.

        Raises:
            UnknownContactError: If no contact is selected.
        """
        if self.contact_id is None:
            raise UnknownContactError("No contact selected")
        return SessionContext(
            contact_id=self.contact_id,
            mode=self.mode,
            stickers_enabled=self.config.stickers_enabled,
        )

    def _contact(self) -> Contact | None:
        if self.contact_id is None:
            return None
        return self.containers.get_contact(self.contact_id)

    def _on_storage_error(self, error: StorageWriteError) -> None:
        print(f"\n⚠ Could not save '{error.key}'. Use /retry-save after freeing space.")

    def _on_typing(self, contact_id: str, active: bool) -> None:
        if active:
            contact = self.containers.get_contact(contact_id)
            print(f"\n💬 {contact.name if contact else contact_id} is typing...")

    def _format_message(self, msg: Message, contact_name: str) -> str:
        """Format a stored message for display."""
        if msg.role == Role.SYSTEM.value:
            return f"  · {msg.content}"

        speaker = "you" if msg.role == Role.USER.value else contact_name
        if msg.retracted:
            return f"{speaker}> (message retracted)"
        if msg.is_type(MessageType.TRANSFER_RECEIPT):
            return f"{speaker}> [{msg.status} the payment of {msg.amount:g}]"
        if msg.is_type(MessageType.TRANSFER):
            return f"{speaker}> [payment of {msg.amount:g}, note: {msg.note or 'none'}]"

        line = f"{speaker}> {msg.content}"
        if msg.thought:
            line += f"\n  (thinking: {msg.thought})"
        return line

    def _print_since(self, index: int) -> int:
        """Print messages appended after ``index``. Returns the new length."""
        contact = self._contact()
        name = contact.name if contact else "them"
        messages = self.containers.messages(self.contact_id) if self.contact_id else []
        for msg in messages[index:]:
            if msg.role != Role.USER.value:
                print(self._format_message(msg, name))
        return len(messages)

    async def _show_result(self, start: int, result: ResponseResult | None) -> None:
        index = self._print_since(start)
        if result is not None and result.delivery is not None:
            await asyncio.gather(result.delivery, return_exceptions=True)
            self._print_since(index)

    async def _reply(self, operation: str) -> None:
        """Run an engine turn and print what it delivered."""
        if self.contact_id is None:
            print("\n❌ No contact selected. Use /contacts and /use <id>.")
            return

        start = len(self.containers.messages(self.contact_id))
        try:
            if operation == "retry":
                # Regeneration first removes the trailing replies.
                messages = self.containers.messages(self.contact_id)
                while messages and messages[-1].role == Role.ASSISTANT.value:
                    messages.pop()
                start = len(messages)
                result = await self.engine.regenerate(self.ctx)
                if result is None:
                    print("\nNothing to regenerate.")
                    return
            elif operation == "call":
                result = await self.engine.start_call(self.ctx)
            else:
                result = await self.engine.respond(self.ctx)
        except (TransportError, UnknownContactError) as e:
            print(f"\n❌ Error: {e}")
            self.logger.log("error", contact_id=self.contact_id, error=str(e))
            return

        await self._show_result(start, result)

    async def _process_message(self, message: str) -> None:
        """Send a user message and wait for the reply."""
        if self.contact_id is None:
            print("\n❌ No contact selected. Use /contacts and /use <id>.")
            return
        self.engine.send_message(self.ctx, message)
        await self._reply("respond")

    def _list_contacts(self) -> None:
        contacts = self.containers.contacts()
        if not contacts:
            print("\nNo contacts yet. Create one with /new <name> [persona].")
            return
        for contact in contacts:
            marker = "*" if contact.id == self.contact_id else " "
            print(f" {marker} {contact.id}: {contact.name}")

    def _new_contact(self, args: str) -> None:
        name, _, persona = args.partition(" ")
        if not name:
            print("\nUsage: /new <name> [persona]")
            return
        contact = Contact(id=uuid.uuid4().hex[:8], name=name, persona=persona.strip())
        self.containers.save_contact(contact)
        self.scheduler.sync()
        self.contact_id = contact.id
        self.logger.bind(contact.id)
        print(f"\n✓ Created {contact.name} ({contact.id})")

    def _use(self, contact_id: str) -> None:
        contact = self.containers.get_contact(contact_id)
        if contact is None:
            print(f"\n❌ Unknown contact: {contact_id}")
            return
        self.contact_id = contact.id
        self.mode = Mode.NORMAL
        self.call_started = None
        self.logger.bind(contact.id)
        print(f"\n✓ Now talking to {contact.name}")

    async def _hangup(self) -> None:
        if self.mode is not Mode.CALL or self.call_started is None:
            print("\nNo call in progress.")
            return
        duration = time.monotonic() - self.call_started
        self.engine.end_call(self.ctx, duration)
        self.mode = Mode.NORMAL
        self.call_started = None
        print(f"\n📞 Call ended ({int(duration)}s)")

    async def _transfer(self, args: str) -> None:
        amount_text, _, note = args.partition(" ")
        try:
            amount = float(amount_text)
            self.engine.send_transfer(self.ctx, amount, note.strip())
        except ValueError:
            print("\nUsage: /transfer <amount> [note]  (amount must be positive)")
            return
        await self._reply("respond")

    async def _summary(self) -> None:
        try:
            result = await self.scheduler.trigger_now(self.ctx.contact_id)
        except SummaryError as e:
            print(f"\n❌ Summary failed: {e}")
            return
        if result.entry is None:
            print("\n📝 Nothing new to summarize.")
        else:
            print(f"\n📝 Summary saved ({len(result.promoted)} important memory(ies) promoted)")

    async def _handle_command(self, command: str) -> bool:
        """Handle a special command. Returns True if should continue, False to exit."""
        cmd, _, args = command.strip().partition(" ")
        cmd = cmd.lower()
        args = args.strip()

        if cmd in ("/exit", "/quit", "exit", "quit"):
            print("\n👋 Goodbye!")
            return False

        if cmd == "/help":
            print(BANNER)
            return True

        if cmd == "/contacts":
            self._list_contacts()
            return True

        if cmd == "/new":
            self._new_contact(args)
            return True

        if cmd == "/use":
            self._use(args)
            return True

        if cmd == "/retry-save":
            self.store.retry_failed()
            print("\n✓ Re-queued failed saves")
            return True

        if self.contact_id is None:
            print("\n❌ No contact selected. Use /contacts and /use <id>.")
            return True

        if cmd == "/call":
            self.mode = Mode.CALL
            self.call_started = time.monotonic()
            await self._reply("call")
        elif cmd == "/hangup":
            await self._hangup()
        elif cmd == "/offline":
            self.mode = Mode.OFFLINE
            print("\n✓ Offline mode: replies are one long narrative")
        elif cmd == "/online":
            self.mode = Mode.NORMAL
            print("\n✓ Back online")
        elif cmd == "/retry":
            await self._reply("retry")
        elif cmd == "/continue":
            await self._reply("respond")
        elif cmd == "/transfer":
            await self._transfer(args)
        elif cmd == "/invite":
            self.engine.send_invite(self.ctx)
            await self._reply("respond")
        elif cmd == "/summary":
            await self._summary()

        return True  # Unknown command, continue

    async def run(self) -> None:
        """Run the interactive CLI."""
        print(BANNER)
        contact = self._contact()
        if contact is not None:
            print(f"Talking to: {contact.name}\n")

        self.logger.log("session_start", contact_id=self.contact_id)
        self.scheduler.start()

        try:
            while True:
                try:
                    # Read off the loop thread so deliveries keep landing.
                    user_input = (await asyncio.to_thread(input, "you> ")).strip()

                    if not user_input:
                        continue

                    if user_input.startswith("/") or user_input.lower() in ("exit", "quit"):
                        if not await self._handle_command(user_input):
                            break
                        continue

                    await self._process_message(user_input)

                except KeyboardInterrupt:
                    print("\n\n⚡ Interrupted")
                    print("👋 Goodbye!")
                    break

                except EOFError:
                    print("\n👋 Goodbye!")
                    break
        finally:
            await self.close()

    async def close(self) -> None:
        """Stop background work and release the store."""
        await self.scheduler.stop()
        await self.engine.drain()
        await self.store.flush()
        self.store.close()
        self.logger.log("session_end", contact_id=self.contact_id)


async def run_cli() -> None:
    """Run the CLI with default configuration."""
    config = load_config()
    configure_logger(config.log_dir)

    if not config.api_key:
        print("❌ Error: GROQ_API_KEY environment variable not set")
        print("   Set it in .env or export it.")
        return

    cli = CLI(config)
    await cli.run()
