"""Domain models for the coach chat engine."""

import time
from enum import Enum
from typing import List, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DEFAULT_TITLE = "New Chat"
DEFAULT_PREVIEW = "New conversation"
TITLE_MAX_WORDS = 6
PREVIEW_MAX_CHARS = 80


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


def new_id() -> str:
    return str(uuid4())


def derive_title(text: str) -> str:
    """Build a conversation title from the first words of a message."""
    words = text.split()
    if not words:
        return DEFAULT_TITLE
    title = " ".join(words[:TITLE_MAX_WORDS])
    return f"{title}..." if len(words) > TITLE_MAX_WORDS else title


def make_preview(text: str) -> str:
    return text[:PREVIEW_MAX_CHARS]


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class Reaction(str, Enum):
    UP = "up"
    DOWN = "down"


class AIModel(str, Enum):
    """Response profile a conversation is answered with."""

    PRO = "pro"
    FAST = "fast"


class FinishReason(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class ChatModel(BaseModel):
    """Base model: snake_case attributes, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class Message(ChatModel):
    """One turn in a conversation."""

    id: str = Field(default_factory=new_id)
    role: Role = Role.USER
    content: str = ""
    streaming_content: Optional[str] = None
    is_streaming: bool = False
    timestamp: int = Field(default_factory=now_ms)
    reaction: Optional[Reaction] = None
    is_edited: bool = False
    finish_reason: Optional[FinishReason] = None

    @property
    def display_content(self) -> str:
        """Text a renderer should show right now."""
        if self.is_streaming:
            return self.streaming_content or ""
        return self.content


class Conversation(ChatModel):
    """A titled thread of messages."""

    id: str = Field(default_factory=new_id)
    title: str = DEFAULT_TITLE
    messages: List[Message] = Field(default_factory=list)
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)
    preview: str = DEFAULT_PREVIEW
    is_pinned: bool = False
    model: AIModel = AIModel.PRO
    # set once the title came from the first message or a rename
    title_locked: bool = False

    @property
    def message_count(self) -> int:
        return len(self.messages)

    def find_message(self, message_id: str) -> Optional[Message]:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def streaming_message(self) -> Optional[Message]:
        for message in self.messages:
            if message.is_streaming:
                return message
        return None

    def touch(self, timestamp: int) -> None:
        # updated_at never moves behind created_at
        self.updated_at = max(timestamp, self.created_at)


class IdleState(ChatModel):
    """No response is being generated."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["idle"] = "idle"


class StreamingState(ChatModel):
    """A response is being generated into one message."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["streaming"] = "streaming"
    conversation_id: str
    message_id: str


GenerationState = Union[IdleState, StreamingState]

IDLE = IdleState()


class StoreSnapshot(ChatModel):
    """Plain-data image of the whole store."""

    conversations: List[Conversation] = Field(default_factory=list)
    active_conversation_id: Optional[str] = None
    selected_model: AIModel = AIModel.PRO
