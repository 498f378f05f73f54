"""Base conversation store interface."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Union

from ..domain.models import AIModel, Conversation, GenerationState, Message, Reaction


class ConversationRepository(ABC):
    """Abstract base class for conversation stores.

    Operations that reference an unknown conversation or message, or pass an
    unknown reaction or model, leave the state unchanged and do not raise.
    The one exception is start_streaming_response, which raises
    GenerationInProgressError while another reply is streaming.
    """

    @abstractmethod
    def create_conversation(self, initial_prompt: Optional[str] = None) -> str:
        """Create an empty conversation, make it active and return its id."""
        pass

    @abstractmethod
    def set_active_conversation(self, conversation_id: Optional[str]) -> None:
        """Select the current conversation."""
        pass

    @abstractmethod
    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        """Retrieve a conversation by ID."""
        pass

    @abstractmethod
    def list_conversations(self) -> List[Conversation]:
        """List all conversations, most recently created first."""
        pass

    @abstractmethod
    def add_user_message(self, conversation_id: str, content: str) -> Message:
        """Append a user message."""
        pass

    @abstractmethod
    def start_streaming_response(self, conversation_id: str) -> str:
        """Open a streaming assistant message and return its id."""
        pass

    @abstractmethod
    def append_streaming_token(self, conversation_id: str, message_id: str, token: str) -> None:
        """Append a fragment to a streaming message."""
        pass

    @abstractmethod
    def complete_streaming(self, conversation_id: str, message_id: str) -> None:
        """Finalize a streaming message with its full text."""
        pass

    @abstractmethod
    def cancel_streaming(self, conversation_id: str, message_id: str) -> None:
        """Finalize a streaming message with whatever has accumulated."""
        pass

    @abstractmethod
    def fail_streaming(self, conversation_id: str, message_id: str) -> None:
        """Finalize a streaming message whose generator failed."""
        pass

    @abstractmethod
    def delete_conversation(self, conversation_id: str) -> None:
        """Remove a conversation."""
        pass

    @abstractmethod
    def clear_all(self) -> None:
        """Remove every conversation."""
        pass

    @abstractmethod
    def rename_conversation(self, conversation_id: str, title: str) -> None:
        """Set a conversation title."""
        pass

    @abstractmethod
    def pin_conversation(self, conversation_id: str, pinned: bool) -> None:
        """Pin or unpin a conversation."""
        pass

    @abstractmethod
    def react_to_message(
        self,
        conversation_id: str,
        message_id: str,
        reaction: Optional[Union[Reaction, str]],
    ) -> None:
        """Toggle a reaction on a message."""
        pass

    @abstractmethod
    def delete_message(self, conversation_id: str, message_id: str) -> None:
        """Remove a message from a conversation."""
        pass

    @abstractmethod
    def edit_message(self, conversation_id: str, message_id: str, new_content: str) -> None:
        """Replace a message's content."""
        pass

    @abstractmethod
    def set_model(self, model: Union[AIModel, str]) -> None:
        """Select the model used by conversations created from now on."""
        pass

    @property
    @abstractmethod
    def generation_state(self) -> GenerationState:
        """Process-wide generation state."""
        pass

    @abstractmethod
    def to_snapshot(self) -> Dict[str, Any]:
        """Serialize the store to plain data."""
        pass

    @abstractmethod
    def restore_snapshot(self, data: Dict[str, Any]) -> None:
        """Replace the store contents with a snapshot."""
        pass
