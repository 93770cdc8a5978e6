"""Error kinds raised by the conversational retrieval chain."""

from __future__ import annotations


class ChainError(Exception):
    """Base class for chain failures."""


class ConfigurationError(ChainError, ValueError):
    """Chain cannot be assembled (missing model/retriever, bad strategy or option)."""


class RetrievalFailure(ChainError):
    """The underlying similarity search or query embedding failed."""


class ModelInvocationFailure(ChainError):
    """A language model call failed during rewrite or combination."""


class NotificationFailure(ChainError):
    """Posting a transcript copy to the external service failed. Never fatal."""
