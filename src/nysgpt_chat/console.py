from __future__ import annotations

import asyncio
import contextlib
import signal

from loguru import logger

from nysgpt_chat import events as ev
from nysgpt_chat.commands.router import CommandRouter
from nysgpt_chat.conversation import ConversationStateMachine, ExchangeOutcome
from nysgpt_chat.errors import QuotaExceededError
from nysgpt_chat.events import ConversationEvent


class ChatConsole:
    """Line-oriented front end: prints deltas as they arrive and patches as they land."""

    _LINE_PREFIX = "assistant> "

    def __init__(self, conversation: ConversationStateMachine):
        self._conversation = conversation
        self._printed: dict[str, str] = {}
        self._unsubscribe = conversation.events.subscribe(self._on_event)
        self._command_router = CommandRouter(
            on_help=self._on_help,
            on_new=self._on_new,
            on_load=self._on_load,
            on_model=self._on_model,
            on_unknown=self._on_unknown_command,
        )

    def close(self) -> None:
        self._unsubscribe()

    async def run(self, user_message: str) -> ExchangeOutcome | None:
        if await self._command_router.try_handle(user_message):
            return None

        loop = asyncio.get_running_loop()
        with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
            loop.add_signal_handler(signal.SIGINT, self._conversation.stop)
        try:
            outcome = await self._conversation.submit(user_message)
        except QuotaExceededError:
            return None
        finally:
            with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
                loop.remove_signal_handler(signal.SIGINT)

        if outcome is None:
            print(f"{self._LINE_PREFIX}Nothing was sent.")
        return outcome

    def _on_event(self, event: ConversationEvent) -> None:
        if event.type == ev.MESSAGE_DELTA and event.message_id:
            self._print_progress(event.message_id, event.payload.get("content") or "")
        elif event.type == ev.MESSAGE_FINALIZED and event.message_id:
            self._finish_message(event.message_id, event.payload.get("outcome"))
        elif event.type == ev.MESSAGE_PATCHED:
            citations = event.payload.get("citations") or []
            related = event.payload.get("related") or []
            if citations:
                print(f"{self._LINE_PREFIX}[Cited: {', '.join(citations)}]")
            if related:
                print(f"{self._LINE_PREFIX}[Related: {', '.join(related)}]")
        elif event.type == ev.NOTICE:
            print(f"{self._LINE_PREFIX}{event.payload.get('text', '')}")
        elif event.type == ev.SESSION_CREATED:
            logger.info(f"Session saved: {event.payload.get('session_id')}")

    def _print_progress(self, message_id: str, content: str) -> None:
        printed = self._printed.get(message_id)
        if printed is None:
            print(self._LINE_PREFIX, end="", flush=True)
            printed = ""
        if content.startswith(printed):
            print(content[len(printed):], end="", flush=True)
            self._printed[message_id] = content
        else:
            self._printed[message_id] = printed

    def _finish_message(self, message_id: str, outcome: str | None) -> None:
        message = next((m for m in self._conversation.messages if m.id == message_id), None)
        if message is not None:
            self._print_progress(message_id, message.content)
        self._printed.pop(message_id, None)
        if outcome == ExchangeOutcome.CANCELED.value:
            print(" [stopped]")
        else:
            print()
        if message is not None and message.side_channel_entities:
            print(f"{self._LINE_PREFIX}[Mentioned: {', '.join(message.side_channel_entities)}]")

    async def _on_help(self) -> None:
        print(f"{self._LINE_PREFIX}Available commands:")
        print(f"{self._LINE_PREFIX}- /help")
        print(f"{self._LINE_PREFIX}- /new                 start a new chat")
        print(f"{self._LINE_PREFIX}- /load <session-id>   reopen a saved chat")
        print(f"{self._LINE_PREFIX}- /model <name>        switch model (current: {self._conversation.model})")
        print(f"{self._LINE_PREFIX}Press Ctrl-C while an answer is streaming to stop it.")

    async def _on_new(self) -> None:
        await self._conversation.new_chat()
        print(f"{self._LINE_PREFIX}Started a new chat.")

    async def _on_load(self, argument: str) -> None:
        if not argument:
            print(f"{self._LINE_PREFIX}Usage: /load <session-id>")
            return
        if not await self._conversation.load_session(argument):
            return
        print(f"{self._LINE_PREFIX}Loaded session {argument}:")
        for message in self._conversation.messages:
            preview = " ".join(message.content.split())[:100]
            print(f"{self._LINE_PREFIX}  {message.role}: {preview}")

    async def _on_model(self, argument: str) -> None:
        if not argument:
            print(f"{self._LINE_PREFIX}Current model: {self._conversation.model}")
            return
        self._conversation.model = argument
        print(f"{self._LINE_PREFIX}Model set to {argument}")

    def _on_unknown_command(self, trimmed: str) -> None:
        print(f"{self._LINE_PREFIX}Unknown local command: {trimmed}")
