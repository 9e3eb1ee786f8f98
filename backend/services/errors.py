"""Errors raised by the conversation tree."""


class ConversationError(Exception):
    """Base class for conversation tree failures."""


class NotFoundError(ConversationError):
    """An unknown conversation or message id was referenced."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class InvalidArgumentError(ConversationError):
    """A required value was missing or malformed."""
