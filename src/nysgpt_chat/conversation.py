from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from loguru import logger

from nysgpt_chat import events as ev
from nysgpt_chat.context_assembler import ContextAssembler, synthesize_entity_prompt
from nysgpt_chat.enrichment import EnrichmentEngine, extract_side_channel
from nysgpt_chat.errors import EmptyInputError, QuotaExceededError, StreamTransportError
from nysgpt_chat.events import ConversationEvents
from nysgpt_chat.model_router import BackendRoute, select_backend
from nysgpt_chat.models import Attachment, LinkedEntity, Message, SelectedEntity
from nysgpt_chat.persistence import SessionPersistenceBridge
from nysgpt_chat.stream_consumer import AbortHandle, StreamConsumer, StreamUpdate
from nysgpt_chat.usage import UsageTracker, count_words

TRANSPORT_ERROR_TEXT = "I encountered an error while generating a response. Please try again."

THINKING_PHRASES = (
    "Thinking...",
    "Reviewing the legislative record...",
    "Checking bill histories...",
    "Consulting committee records...",
    "Drafting a response...",
)


class ChatState(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    STREAMING = "streaming"
    SETTLING = "settling"
    CANCELED = "canceled"
    ERRORED = "errored"


class ExchangeOutcome(str, Enum):
    COMPLETED = "completed"
    CANCELED = "canceled"
    ERRORED = "errored"


_IN_FLIGHT = (ChatState.SUBMITTING, ChatState.STREAMING)


@dataclass
class StreamingRequest:
    abort: AbortHandle
    route: BackendRoute
    message_id: str


class ConversationStateMachine:
    """Owns the message list of the active conversation and drives one exchange at a time."""

    def __init__(
        self,
        *,
        assembler: ContextAssembler,
        consumer: StreamConsumer,
        enrichment: EnrichmentEngine,
        persistence: SessionPersistenceBridge,
        events: ConversationEvents | None = None,
        usage: UsageTracker | None = None,
        model: str = "gpt-4o-mini",
    ):
        self._assembler = assembler
        self._consumer = consumer
        self._enrichment = enrichment
        self._persistence = persistence
        self._events = events or ConversationEvents()
        self._usage = usage
        self._model = model

        self._state = ChatState.IDLE
        self._messages: list[Message] = []
        self._session_id: str | None = None
        self._linked_entity: LinkedEntity | None = None
        self._pending_abort: AbortHandle | None = None
        self._request: StreamingRequest | None = None
        self._idle = asyncio.Event()
        self._idle.set()
        self._generation = 0
        self._thinking_index = 0
        self._background: set[asyncio.Task] = set()
        self._persist_lock = asyncio.Lock()

    @property
    def state(self) -> ChatState:
        return self._state

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def request(self) -> StreamingRequest | None:
        return self._request

    @property
    def events(self) -> ConversationEvents:
        return self._events

    @property
    def model(self) -> str:
        return self._model

    @model.setter
    def model(self, value: str) -> None:
        self._model = value

    async def submit(
        self,
        user_text: str,
        *,
        attachments: Sequence[Attachment] = (),
        selected_entities: Sequence[SelectedEntity] = (),
        system_context_override: str | None = None,
        chat_type: str | None = None,
        entity_name: str | None = None,
        contract_number: str | None = None,
        linked_entity: LinkedEntity | None = None,
    ) -> ExchangeOutcome | None:
        if self._state in _IN_FLIGHT:
            logger.debug(f"Submission rejected while {self._state.value}")
            return None

        if self._usage is not None and self._usage.is_limit_exceeded():
            error = QuotaExceededError(self._usage.words_used, self._usage.daily_limit)
            self._events.emit(ev.NOTICE, {"level": "error", "text": str(error)})
            raise error

        abort = AbortHandle()
        self._pending_abort = abort
        self._idle.clear()
        self._set_state(ChatState.SUBMITTING)
        try:
            return await self._run_exchange(
                abort,
                user_text,
                attachments=attachments,
                selected_entities=selected_entities,
                system_context_override=system_context_override,
                chat_type=chat_type,
                entity_name=entity_name,
                contract_number=contract_number,
                linked_entity=linked_entity,
            )
        finally:
            self._pending_abort = None
            self._request = None
            if self._state is not ChatState.IDLE:
                self._set_state(ChatState.IDLE)
            self._idle.set()

    def stop(self) -> bool:
        """Abort the in-flight exchange, if any. The partial answer is kept."""
        handle = self._request.abort if self._request is not None else self._pending_abort
        if handle is None or handle.aborted:
            return False
        logger.info("Stopping in-flight exchange")
        handle.abort()
        return True

    async def new_chat(self) -> None:
        await self._abort_and_wait()
        self._reset()
        self._events.emit(ev.SESSION_RESET)
        logger.info("Started a new chat")

    async def load_session(self, session_id: str) -> bool:
        await self._abort_and_wait()
        self._reset()
        generation = self._generation

        loaded = await self._persistence.load_session(session_id)
        if generation != self._generation:
            return False
        if loaded is None:
            self._events.emit(ev.NOTICE, {"level": "warning", "text": f"Could not load session {session_id}"})
            return False

        self._messages = loaded
        self._session_id = session_id
        self._events.emit(ev.SESSION_LOADED, {"session_id": session_id, "count": len(loaded)})
        return True

    async def drain(self) -> None:
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _run_exchange(
        self,
        abort: AbortHandle,
        user_text: str,
        *,
        attachments: Sequence[Attachment],
        selected_entities: Sequence[SelectedEntity],
        system_context_override: str | None,
        chat_type: str | None,
        entity_name: str | None,
        contract_number: str | None,
        linked_entity: LinkedEntity | None,
    ) -> ExchangeOutcome | None:
        generation = self._generation
        try:
            payload = await self._assembler.build_request(
                user_text,
                attachments,
                selected_entities,
                self._messages,
                system_context_override,
                model=self._model,
                chat_type=chat_type,
                entity_name=entity_name,
                contract_number=contract_number,
            )
        except EmptyInputError:
            logger.debug("Nothing to submit")
            return None

        if abort.aborted or generation != self._generation:
            self._set_state(ChatState.CANCELED)
            return ExchangeOutcome.CANCELED

        if self._linked_entity is None and linked_entity is not None:
            self._linked_entity = linked_entity

        route = select_backend(self._model)
        display_text = user_text.strip() or synthesize_entity_prompt(selected_entities) or payload.prompt
        user_message = Message.user(display_text)
        assistant = Message.streaming_assistant(model=self._model, thinking_phrase=self._next_thinking_phrase())
        self._append(user_message)
        self._append(assistant)

        self._request = StreamingRequest(abort=abort, route=route, message_id=assistant.id)
        self._set_state(ChatState.STREAMING)

        final_text: str | None = None
        received_text = ""

        def on_delta(update: StreamUpdate) -> None:
            nonlocal received_text
            if generation != self._generation or not assistant.is_streaming:
                return
            received_text = update.text
            side_channel = extract_side_channel(update.content)
            assistant.update_stream(
                side_channel.main_content,
                reasoning=update.reasoning,
                reasoning_complete=update.reasoning_complete,
            )
            assistant.side_channel_entities = list(side_channel.entities)
            self._events.emit(
                ev.MESSAGE_DELTA,
                {
                    "content": side_channel.main_content,
                    "reasoning": update.reasoning,
                    "side_channel_entities": list(side_channel.entities),
                    "still_extracting": side_channel.still_extracting,
                },
                message_id=assistant.id,
            )

        def on_done(text: str) -> None:
            nonlocal final_text
            final_text = text

        outcome = ExchangeOutcome.COMPLETED
        try:
            await self._consumer.consume(payload, route, on_delta, on_done, abort)
        except StreamTransportError as ex:
            logger.warning(f"Stream failed on {route.name}: {ex}")
            outcome = ExchangeOutcome.ERRORED
            final_text = ex.partial_text
        else:
            if final_text is None:
                outcome = ExchangeOutcome.CANCELED
        finally:
            self._request = None

        if outcome is ExchangeOutcome.COMPLETED:
            self._set_state(ChatState.SETTLING)
        elif outcome is ExchangeOutcome.CANCELED:
            self._set_state(ChatState.CANCELED)
        else:
            self._set_state(ChatState.ERRORED)

        if outcome is ExchangeOutcome.CANCELED:
            # Re-read the raw text: the visible content no longer holds the side-channel block.
            analysis = self._enrichment.analyze_text(received_text, route)
            assistant.finalize(analysis.content)
        else:
            analysis = self._enrichment.analyze_text(final_text or "", route)
            if outcome is ExchangeOutcome.ERRORED and not analysis.content.strip():
                assistant.finalize(TRANSPORT_ERROR_TEXT)
            else:
                assistant.finalize(analysis.content)
        if analysis.reasoning:
            assistant.reasoning = analysis.reasoning
        assistant.side_channel_entities = list(analysis.side_channel_entities)
        assistant.source_citations = list(analysis.source_citations)
        self._events.emit(ev.MESSAGE_FINALIZED, {"outcome": outcome.value}, message_id=assistant.id)
        logger.info(f"Exchange {outcome.value}: backend={route.name}, chars={len(assistant.content)}")

        if self._usage is not None and assistant.content != TRANSPORT_ERROR_TEXT:
            self._usage.add_words(count_words(assistant.content))

        codes = analysis.codes if assistant.content != TRANSPORT_ERROR_TEXT else []
        self._spawn(self._enrich_and_persist(generation, assistant, codes))
        return outcome

    async def _enrich_and_persist(self, generation: int, assistant: Message, codes: list[str]) -> None:
        async with self._persist_lock:
            if generation != self._generation:
                return
            citations = await self._enrichment.resolve_citations(codes)
            if generation != self._generation:
                logger.debug("Discarding citations for a replaced conversation")
                return
            if citations:
                assistant.apply_citations(citations)
                self._emit_patched(assistant)

            await self._persist(generation)

            if not assistant.citations or generation != self._generation:
                return
            related = await self._enrichment.resolve_related(assistant.citations)
            if generation != self._generation:
                logger.debug("Discarding related entities for a replaced conversation")
                return
            if related:
                assistant.apply_related(related)
                self._emit_patched(assistant)
                await self._persist(generation)

    async def _persist(self, generation: int) -> None:
        if not self._persistence.enabled or not self._messages:
            return
        if self._session_id is None:
            first = next((m for m in self._messages if m.role == "user"), None)
            if first is None:
                return
            session_id = await self._persistence.ensure_session(first, self._linked_entity)
            if session_id is None or generation != self._generation:
                return
            self._session_id = session_id
            self._events.emit(ev.SESSION_CREATED, {"session_id": session_id})
        await self._persistence.append_exchange(self._session_id, self._messages)

    async def _abort_and_wait(self) -> None:
        if self._state in _IN_FLIGHT or not self._idle.is_set():
            self.stop()
            await self._idle.wait()

    def _reset(self) -> None:
        self._generation += 1
        self._messages = []
        self._session_id = None
        self._linked_entity = None

    def _append(self, message: Message) -> None:
        self._messages.append(message)
        self._events.emit(ev.MESSAGE_CREATED, {"role": message.role}, message_id=message.id)

    def _emit_patched(self, message: Message) -> None:
        self._events.emit(
            ev.MESSAGE_PATCHED,
            {
                "citations": [c.code for c in message.citations],
                "related": [c.code for c in message.related_entities],
            },
            message_id=message.id,
        )

    def _next_thinking_phrase(self) -> str:
        phrase = THINKING_PHRASES[self._thinking_index % len(THINKING_PHRASES)]
        self._thinking_index += 1
        return phrase

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background enrichment failed: {error}")

    def _set_state(self, state: ChatState) -> None:
        if state is self._state:
            return
        logger.debug(f"Chat state: {self._state.value} -> {state.value}")
        self._state = state
        self._events.emit(ev.STATE, {"state": state.value})
