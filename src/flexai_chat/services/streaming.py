"""Streaming lifecycle controller.

Drives one assistant reply at a time: opens a streaming message in the store,
feeds it the fragments a generator produces, and finalizes it as completed,
cancelled or failed. The store enforces that only one reply streams at once.
"""

import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Protocol

import structlog

from ..config import Settings
from ..domain.errors import GenerationInProgressError
from ..domain.models import AIModel, Message, Role, StreamingState
from ..repositories.base import ConversationRepository
from .llm import GeminiResponseGenerator
from .resolver import CannedResponseGenerator

logger = structlog.get_logger()


class ResponseGenerator(Protocol):
    """Anything that turns a user message into an ordered stream of text."""

    def generate(self, message: str, *, model: Optional[AIModel] = None) -> AsyncIterator[str]:
        ...


@dataclass
class ReplyStream:
    """An opened assistant reply; iterate it to drive the generator."""

    conversation_id: str
    message_id: str
    fragments: AsyncIterator[str]
    store: ConversationRepository

    def __aiter__(self) -> AsyncIterator[str]:
        return self.fragments.__aiter__()

    async def aclose(self) -> None:
        """Close the reply, cancelling it if it never finished.

        Safe to call more than once and after the reply completed.
        """
        aclose = getattr(self.fragments, "aclose", None)
        if aclose is not None:
            await aclose()
        if self.store.generation_state == StreamingState(
            conversation_id=self.conversation_id, message_id=self.message_id
        ):
            logger.info("generation_abandoned", conversation_id=self.conversation_id,
                        message_id=self.message_id)
            self.store.cancel_streaming(self.conversation_id, self.message_id)


class StreamingController:
    """Feeds generator output into streaming messages of a store."""

    def __init__(self, store: ConversationRepository, generator: ResponseGenerator):
        self.store = store
        self.generator = generator
        self._task: Optional[asyncio.Task] = None

    @property
    def is_generating(self) -> bool:
        return isinstance(self.store.generation_state, StreamingState)

    def _ensure_idle(self) -> None:
        state = self.store.generation_state
        if isinstance(state, StreamingState):
            raise GenerationInProgressError(state.conversation_id, state.message_id)

    def _open(self, conversation_id: str, prompt: str, model: AIModel) -> ReplyStream:
        message_id = self.store.start_streaming_response(conversation_id)
        return ReplyStream(
            conversation_id=conversation_id,
            message_id=message_id,
            fragments=self._drive(conversation_id, message_id, prompt, model),
            store=self.store,
        )

    async def _drive(
        self, conversation_id: str, message_id: str, prompt: str, model: AIModel
    ) -> AsyncIterator[str]:
        """Apply fragments in generator order, then finalize the message."""
        stream = self.generator.generate(prompt, model=model)
        fragments = 0
        try:
            async for fragment in stream:
                if self.store.generation_state != StreamingState(
                    conversation_id=conversation_id, message_id=message_id
                ):
                    # conversation or message deleted, or stopped from elsewhere
                    logger.info("generation_released", conversation_id=conversation_id,
                                message_id=message_id, fragments=fragments)
                    break
                self.store.append_streaming_token(conversation_id, message_id, fragment)
                fragments += 1
                yield fragment
        except (asyncio.CancelledError, GeneratorExit):
            self.store.cancel_streaming(conversation_id, message_id)
            logger.info("generation_cancelled", conversation_id=conversation_id,
                        message_id=message_id, fragments=fragments)
            raise
        except Exception as e:
            logger.error(
                "generation_failed",
                conversation_id=conversation_id,
                message_id=message_id,
                fragments=fragments,
                error=str(e),
            )
            self.store.fail_streaming(conversation_id, message_id)
        else:
            self.store.complete_streaming(conversation_id, message_id)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

    def stream_message(self, conversation_id: str, text: str) -> Optional[ReplyStream]:
        """Add a user message and open the assistant reply to it.

        Returns None for blank text or an unknown conversation. Raises
        GenerationInProgressError while another reply is streaming.
        """
        text = text.strip()
        if not text:
            return None
        self._ensure_idle()
        conversation = self.store.get_conversation(conversation_id)
        if conversation is None:
            logger.warning("conversation_not_found", conversation_id=conversation_id, action="send")
            return None
        self.store.add_user_message(conversation_id, text)
        return self._open(conversation_id, text, conversation.model)

    def stream_regeneration(self, conversation_id: str) -> Optional[ReplyStream]:
        """Replace the last assistant reply with a fresh one.

        The last user message is answered again without being duplicated.
        """
        self._ensure_idle()
        conversation = self.store.get_conversation(conversation_id)
        if conversation is None:
            logger.warning("conversation_not_found", conversation_id=conversation_id, action="regenerate")
            return None

        last_user = next((m for m in reversed(conversation.messages) if m.role == Role.USER), None)
        if last_user is None:
            return None
        last_reply = next((m for m in reversed(conversation.messages) if m.role == Role.ASSISTANT), None)
        if last_reply is not None:
            self.store.delete_message(conversation_id, last_reply.id)
        logger.info("regenerating_reply", conversation_id=conversation_id, user_message_id=last_user.id)
        return self._open(conversation_id, last_user.content, conversation.model)

    async def _consume(self, reply: Optional[ReplyStream]) -> Optional[Message]:
        if reply is None:
            return None
        try:
            async for _ in reply:
                pass
        finally:
            await reply.aclose()
        conversation = self.store.get_conversation(reply.conversation_id)
        return conversation.find_message(reply.message_id) if conversation else None

    async def send_message(self, conversation_id: str, text: str) -> Optional[Message]:
        """Send a user message and wait for the finalized assistant reply."""
        return await self._consume(self.stream_message(conversation_id, text))

    async def regenerate(self, conversation_id: str) -> Optional[Message]:
        return await self._consume(self.stream_regeneration(conversation_id))

    def start_send(self, conversation_id: str, text: str) -> asyncio.Task:
        """Run send_message in the background so stop() can interrupt it."""
        self._task = asyncio.create_task(self.send_message(conversation_id, text))
        return self._task

    async def stop(self) -> bool:
        """Stop the reply being generated, keeping what has streamed so far.

        Returns False when nothing was streaming.
        """
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            return True

        state = self.store.generation_state
        if isinstance(state, StreamingState):
            self.store.cancel_streaming(state.conversation_id, state.message_id)
            return True
        return False


def create_generator(settings: Settings) -> ResponseGenerator:
    """Build the generator named by the settings."""
    canned = CannedResponseGenerator(
        words_per_chunk=settings.stream_words_per_chunk,
        first_delay=settings.stream_first_delay,
        interval=settings.stream_interval,
    )
    if settings.generator == "gemini":
        return GeminiResponseGenerator(api_key=settings.gemini_api_key, fallback=canned)
    if settings.generator != "canned":
        logger.warning("unknown_generator", generator=settings.generator, fallback="canned")
    return canned
