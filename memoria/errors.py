"""Exception types raised by the memory system."""


class MemorySystemError(Exception):
    """Base class for all memory system errors."""


class InvalidArguments(MemorySystemError, ValueError):
    """A required argument was missing or empty."""


class EmbeddingError(MemorySystemError):
    """Text could not be turned into an embedding vector."""


class StorageError(MemorySystemError):
    """A memory record could not be stored."""


class RetrievalError(MemorySystemError):
    """Stored memories could not be searched."""


class ResponseGenerationError(MemorySystemError):
    """The response generator failed to produce a reply."""
