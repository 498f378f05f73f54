"""FlexAI coach chat engine: conversations, streamed replies and history views."""

__version__ = "0.1.0"
