"""In-memory conversation store."""

from threading import RLock
from typing import Any, Callable, Dict, List, Optional, Union

import structlog

from ..config import get_settings
from ..domain.errors import GenerationInProgressError
from ..domain.models import (
    DEFAULT_PREVIEW,
    DEFAULT_TITLE,
    IDLE,
    AIModel,
    Conversation,
    FinishReason,
    GenerationState,
    Message,
    Reaction,
    Role,
    StoreSnapshot,
    StreamingState,
    derive_title,
    make_preview,
    now_ms,
)
from .base import ConversationRepository

logger = structlog.get_logger()


class InMemoryConversationStore(ConversationRepository):
    """Thread-safe in-memory conversation store.

    Owns the conversation collection, the active conversation selector, the
    selected model and the process-wide generation state. Readers get deep
    copies; the only way to change state is through the methods below.
    """

    def __init__(
        self,
        selected_model: AIModel = AIModel.PRO,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        """Initialize an empty store."""
        self._lock = RLock()
        self._clock = clock
        self._conversations: List[Conversation] = []
        self._active_conversation_id: Optional[str] = None
        self._selected_model = AIModel(selected_model)
        self._generation: GenerationState = IDLE
        logger.info("conversation_store_initialized", model=self._selected_model.value)

    # Lookups

    def _find(self, conversation_id: str) -> Optional[Conversation]:
        for conversation in self._conversations:
            if conversation.id == conversation_id:
                return conversation
        return None

    def _find_message(self, conversation_id: str, message_id: str, action: str) -> Optional[Message]:
        conversation = self._find(conversation_id)
        if conversation is None:
            logger.warning("conversation_not_found", conversation_id=conversation_id, action=action)
            return None
        message = conversation.find_message(message_id)
        if message is None:
            logger.warning(
                "message_not_found",
                conversation_id=conversation_id,
                message_id=message_id,
                action=action,
            )
        return message

    # State accessors

    @property
    def active_conversation_id(self) -> Optional[str]:
        return self._active_conversation_id

    @property
    def active_conversation(self) -> Optional[Conversation]:
        """The active conversation, if its id resolves."""
        if self._active_conversation_id is None:
            return None
        return self.get_conversation(self._active_conversation_id)

    @property
    def selected_model(self) -> AIModel:
        return self._selected_model

    @property
    def generation_state(self) -> GenerationState:
        return self._generation

    @property
    def is_generating(self) -> bool:
        return isinstance(self._generation, StreamingState)

    @property
    def streaming_message_id(self) -> Optional[str]:
        if isinstance(self._generation, StreamingState):
            return self._generation.message_id
        return None

    # Conversations

    def create_conversation(self, initial_prompt: Optional[str] = None) -> str:
        """Create an empty conversation at the front and make it active."""
        now = self._clock()
        conversation = Conversation(
            title=derive_title(initial_prompt) if initial_prompt else DEFAULT_TITLE,
            created_at=now,
            updated_at=now,
            preview=make_preview(initial_prompt) if initial_prompt else DEFAULT_PREVIEW,
            model=self._selected_model,
        )
        with self._lock:
            self._conversations.insert(0, conversation)
            self._active_conversation_id = conversation.id
        logger.info(
            "conversation_created",
            conversation_id=conversation.id,
            model=conversation.model.value,
        )
        return conversation.id

    def set_active_conversation(self, conversation_id: Optional[str]) -> None:
        with self._lock:
            self._active_conversation_id = conversation_id

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        """Retrieve a copy of a conversation by ID."""
        with self._lock:
            conversation = self._find(conversation_id)
            return conversation.model_copy(deep=True) if conversation else None

    def list_conversations(self) -> List[Conversation]:
        with self._lock:
            return [c.model_copy(deep=True) for c in self._conversations]

    def delete_conversation(self, conversation_id: str) -> None:
        """Remove a conversation and drop any selection or stream tied to it."""
        with self._lock:
            conversation = self._find(conversation_id)
            if conversation is None:
                logger.warning("conversation_not_found", conversation_id=conversation_id, action="delete")
                return
            self._conversations.remove(conversation)
            if self._active_conversation_id == conversation_id:
                self._active_conversation_id = None
            if (
                isinstance(self._generation, StreamingState)
                and self._generation.conversation_id == conversation_id
            ):
                logger.info("generation_abandoned", conversation_id=conversation_id,
                            message_id=self._generation.message_id)
                self._generation = IDLE
        logger.info("conversation_deleted", conversation_id=conversation_id)

    def clear_all(self) -> None:
        with self._lock:
            count = len(self._conversations)
            self._conversations = []
            self._active_conversation_id = None
            self._generation = IDLE
        logger.info("conversations_cleared", count=count)

    def rename_conversation(self, conversation_id: str, title: str) -> None:
        """Set the trimmed title; a blank title keeps the current one."""
        new_title = title.strip()
        with self._lock:
            conversation = self._find(conversation_id)
            if conversation is None:
                logger.warning("conversation_not_found", conversation_id=conversation_id, action="rename")
                return
            if not new_title:
                return
            conversation.title = new_title
            conversation.title_locked = True

    def pin_conversation(self, conversation_id: str, pinned: bool) -> None:
        with self._lock:
            conversation = self._find(conversation_id)
            if conversation is None:
                logger.warning("conversation_not_found", conversation_id=conversation_id, action="pin")
                return
            conversation.is_pinned = bool(pinned)

    def set_model(self, model: Union[AIModel, str]) -> None:
        """Select the model for conversations created from now on."""
        try:
            selected = AIModel(model)
        except ValueError:
            logger.warning("unknown_model", model=model)
            return
        with self._lock:
            self._selected_model = selected
        logger.info("model_selected", model=selected.value)

    # Messages

    def add_user_message(self, conversation_id: str, content: str) -> Message:
        """Append a user message.

        The message is returned even when the conversation does not exist, in
        which case nothing is stored.
        """
        message = Message(role=Role.USER, content=content, timestamp=self._clock())
        with self._lock:
            conversation = self._find(conversation_id)
            if conversation is None:
                logger.warning("conversation_not_found", conversation_id=conversation_id, action="add_user_message")
                return message
            if not conversation.title_locked and not conversation.messages:
                conversation.title = derive_title(content)
            # a conversation is only ever titled from its opening message
            conversation.title_locked = True
            conversation.messages.append(message)
            conversation.touch(message.timestamp)
            conversation.preview = make_preview(content)
            logger.info(
                "message_added",
                conversation_id=conversation_id,
                message_id=message.id,
                message_role=message.role.value,
            )
            return message.model_copy()

    def react_to_message(
        self,
        conversation_id: str,
        message_id: str,
        reaction: Optional[Union[Reaction, str]],
    ) -> None:
        """Set a reaction; repeating the current reaction clears it."""
        try:
            requested = Reaction(reaction) if reaction is not None else None
        except ValueError:
            logger.warning("unknown_reaction", conversation_id=conversation_id, reaction=reaction)
            return
        with self._lock:
            message = self._find_message(conversation_id, message_id, "react")
            if message is None:
                return
            message.reaction = None if message.reaction == requested else requested

    def delete_message(self, conversation_id: str, message_id: str) -> None:
        with self._lock:
            conversation = self._find(conversation_id)
            message = self._find_message(conversation_id, message_id, "delete_message")
            if message is None:
                return
            conversation.messages.remove(message)
            conversation.touch(self._clock())
            if (
                isinstance(self._generation, StreamingState)
                and self._generation.message_id == message_id
            ):
                self._generation = IDLE
        logger.info("message_deleted", conversation_id=conversation_id, message_id=message_id)

    def edit_message(self, conversation_id: str, message_id: str, new_content: str) -> None:
        """Replace the content of a finalized message, keeping its timestamp."""
        with self._lock:
            conversation = self._find(conversation_id)
            message = self._find_message(conversation_id, message_id, "edit_message")
            if message is None:
                return
            if message.is_streaming:
                logger.warning("edit_while_streaming_ignored", conversation_id=conversation_id,
                               message_id=message_id)
                return
            message.content = new_content
            message.is_edited = True
            conversation.touch(self._clock())
            conversation.preview = make_preview(new_content)

    # Streaming

    def start_streaming_response(self, conversation_id: str) -> str:
        """Open a streaming assistant message and return its id.

        Raises GenerationInProgressError while another message is streaming.
        An unknown conversation gets an id back but no stream is opened.
        """
        with self._lock:
            if isinstance(self._generation, StreamingState):
                logger.warning(
                    "generation_rejected",
                    conversation_id=conversation_id,
                    streaming_conversation_id=self._generation.conversation_id,
                    streaming_message_id=self._generation.message_id,
                )
                raise GenerationInProgressError(
                    self._generation.conversation_id, self._generation.message_id
                )

            message = Message(
                role=Role.ASSISTANT,
                content="",
                streaming_content="",
                is_streaming=True,
                timestamp=self._clock(),
            )
            conversation = self._find(conversation_id)
            if conversation is None:
                logger.warning("conversation_not_found", conversation_id=conversation_id, action="start_streaming")
                return message.id

            conversation.messages.append(message)
            conversation.touch(message.timestamp)
            self._generation = StreamingState(conversation_id=conversation_id, message_id=message.id)
        logger.info("streaming_started", conversation_id=conversation_id, message_id=message.id)
        return message.id

    def append_streaming_token(self, conversation_id: str, message_id: str, token: str) -> None:
        with self._lock:
            message = self._find_message(conversation_id, message_id, "append_token")
            if message is None:
                return
            if not message.is_streaming:
                logger.debug("token_for_finalized_message", conversation_id=conversation_id,
                             message_id=message_id)
                return
            message.streaming_content = (message.streaming_content or "") + token

    def complete_streaming(self, conversation_id: str, message_id: str) -> None:
        self._finalize(conversation_id, message_id, FinishReason.COMPLETED)

    def cancel_streaming(self, conversation_id: str, message_id: str) -> None:
        self._finalize(conversation_id, message_id, FinishReason.CANCELLED)

    def fail_streaming(self, conversation_id: str, message_id: str) -> None:
        self._finalize(conversation_id, message_id, FinishReason.FAILED)

    def _finalize(self, conversation_id: str, message_id: str, reason: FinishReason) -> None:
        """Commit the buffer of a streaming message and release the stream."""
        with self._lock:
            message = self._find_message(conversation_id, message_id, f"finalize_{reason.value}")
            if message is not None and message.is_streaming:
                _commit_stream(message, reason)
                self._find(conversation_id).touch(self._clock())
                logger.info(
                    "streaming_finalized",
                    conversation_id=conversation_id,
                    message_id=message_id,
                    finish_reason=reason.value,
                    content_length=len(message.content),
                )
            if (
                isinstance(self._generation, StreamingState)
                and self._generation.message_id == message_id
            ):
                self._generation = IDLE

    # Snapshots

    def to_snapshot(self) -> Dict[str, Any]:
        """Serialize the store to JSON-compatible plain data."""
        with self._lock:
            snapshot = StoreSnapshot(
                conversations=self._conversations,
                active_conversation_id=self._active_conversation_id,
                selected_model=self._selected_model,
            )
            return snapshot.model_dump(mode="json", by_alias=True)

    def restore_snapshot(self, data: Dict[str, Any]) -> None:
        """Replace the store contents with a snapshot.

        Streams cannot survive a restore, so messages still marked as
        streaming are finalized as cancelled.
        """
        snapshot = StoreSnapshot.model_validate(data)
        interrupted = 0
        for conversation in snapshot.conversations:
            for message in conversation.messages:
                if message.is_streaming:
                    _commit_stream(message, FinishReason.CANCELLED)
                    interrupted += 1
        with self._lock:
            self._conversations = snapshot.conversations
            self._active_conversation_id = snapshot.active_conversation_id
            self._selected_model = snapshot.selected_model
            self._generation = IDLE
        logger.info(
            "snapshot_restored",
            conversations=len(snapshot.conversations),
            interrupted_streams=interrupted,
        )

    @classmethod
    def from_snapshot(cls, data: Dict[str, Any], clock: Callable[[], int] = now_ms) -> "InMemoryConversationStore":
        store = cls(clock=clock)
        store.restore_snapshot(data)
        return store


def _commit_stream(message: Message, reason: FinishReason) -> None:
    if message.streaming_content is not None:
        message.content = message.streaming_content
    message.streaming_content = None
    message.is_streaming = False
    message.finish_reason = reason


_store: Optional[InMemoryConversationStore] = None


def get_conversation_store() -> InMemoryConversationStore:
    """Get the process-wide conversation store."""
    global _store
    if _store is None:
        _store = InMemoryConversationStore(selected_model=get_settings().default_model)
    return _store


def reset_conversation_store() -> InMemoryConversationStore:
    """Replace the process-wide store with an empty one."""
    global _store
    _store = None
    return get_conversation_store()
