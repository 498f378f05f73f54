"""Exceptions raised by the chat engine."""


class FlexAIChatError(Exception):
    """Base class for chat engine errors."""
    pass


class GenerationInProgressError(FlexAIChatError):
    """Raised when a response is requested while another one is streaming."""

    def __init__(self, conversation_id: str, message_id: str):
        self.conversation_id = conversation_id
        self.message_id = message_id
        super().__init__(
            f"Message {message_id} in conversation {conversation_id} is still streaming"
        )


class GenerationFailedError(FlexAIChatError):
    """Raised by a generator that could not produce its response."""
    pass
