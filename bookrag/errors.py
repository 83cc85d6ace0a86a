"""
Error taxonomy for the RAG pipelines.

Every error raised by a pipeline stage derives from RAGError. The
orchestrators tag the error with the failing stage (``error.stage``) and
re-raise it unchanged, so callers can both catch by type and report where
the run stopped.
"""
from typing import Optional


class RAGError(Exception):
    """Base class for all pipeline errors."""

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.stage = stage

    @property
    def transient(self) -> bool:
        """Whether retrying the same call may succeed."""
        return False


class ConfigurationError(RAGError, ValueError):
    """Invalid or inconsistent configuration."""


class LoadError(RAGError):
    """Source documents could not be read from the filesystem."""


class _ServiceError(RAGError):
    """Failure of an external network service."""

    def __init__(self, message: str, transient: bool = False, stage: Optional[str] = None):
        super().__init__(message, stage=stage)
        self._transient = transient

    @property
    def transient(self) -> bool:
        return self._transient


class EmbeddingServiceError(_ServiceError):
    """
    The embedding service failed or answered with something unusable.

    ``transient`` is True for network failures, timeouts, throttling and
    server-side errors; False for bad input or malformed responses.
    """


class GenerationServiceError(_ServiceError):
    """The language model service failed or timed out."""


class StoreUnavailableError(RAGError):
    """The vector database could not be reached."""


class DimensionMismatchError(RAGError, ValueError):
    """A vector's dimensionality does not match the collection's."""

    def __init__(self, expected: int, actual: int, stage: Optional[str] = None):
        super().__init__(
            f"Embedding dimension {actual} does not match collection dimension {expected}",
            stage=stage,
        )
        self.expected = expected
        self.actual = actual


class ContextTooLargeError(RAGError):
    """The assembled prompt exceeds the model's input limit."""

    def __init__(self, prompt_chars: int, limit: int, stage: Optional[str] = None):
        super().__init__(
            f"Assembled prompt is {prompt_chars} characters, limit is {limit}",
            stage=stage,
        )
        self.prompt_chars = prompt_chars
        self.limit = limit
