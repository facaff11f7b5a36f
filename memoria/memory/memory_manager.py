"""Memory manager for the assistant's long-term memory.

Stores exchanges as embedded, timestamped records and retrieves them either by
recency or by similarity, always scoped to the owning user.
"""
import time
import uuid
from typing import Callable, List, Optional, Sequence

import numpy as np
from loguru import logger

from ..errors import InvalidArguments, RetrievalError, StorageError
from .embedding import EmbeddingGenerator
from .models import MemoryRecord, ScoredMemory
from .store import MemoryStore

DAY_MS = 24 * 60 * 60 * 1000
DEFAULT_MAX_MEMORY_AGE_MS = 30 * DAY_MS
DEFAULT_MAX_RESULTS = 100


def now_ms() -> int:
    """Current time in milliseconds since epoch."""
    return int(time.time() * 1000)


class MemoryManager:
    """Manages the assistant's memory system."""

    def __init__(
        self,
        store: Optional[MemoryStore] = None,
        embedding_generator: Optional[EmbeddingGenerator] = None,
        max_memory_age_ms: int = DEFAULT_MAX_MEMORY_AGE_MS,
        max_results: int = DEFAULT_MAX_RESULTS,
        clock: Callable[[], int] = now_ms,
    ):
        """Initialize the memory manager.

        Args:
            store: Record store (an in-memory one is created if None)
            embedding_generator: Embedding generator (fallback-only if None)
            max_memory_age_ms: Oldest age returned by retrieve_memories
            max_results: Upper bound on the size of a recency search
            clock: Function returning the current time in milliseconds
        """
        if embedding_generator is None:
            embedding_generator = EmbeddingGenerator()
        self.embedding_generator = embedding_generator
        if store is None:
            store = MemoryStore(embedding_dim=self.embedding_generator.embedding_dim)
        self.store = store
        if self.store.embedding_dim != self.embedding_generator.embedding_dim:
            raise ValueError(
                f"Store dimension {self.store.embedding_dim} does not match embedding "
                f"dimension {self.embedding_generator.embedding_dim}"
            )

        self.max_memory_age_ms = max_memory_age_ms
        self.max_results = max_results
        self.clock = clock

    @property
    def embedding_dim(self) -> int:
        """Get the dimension of the embeddings."""
        return self.embedding_generator.embedding_dim

    async def initialize(self) -> bool:
        """Log readiness; records were already loaded by the store."""
        logger.info(f"Initializing memory manager with {len(self.store)} stored memories")
        return True

    async def store_memory(self, user_id: str, context: Sequence[str]) -> MemoryRecord:
        """Embed and store one exchange.

        Args:
            user_id: Owner of the memory
            context: Ordered strings making up the exchange

        Returns:
            The created MemoryRecord

        Raises:
            InvalidArguments: If user_id or context is missing or malformed
            StorageError: If embedding or storing the record fails
        """
        if not user_id or not isinstance(user_id, str):
            logger.error(f"Invalid parameters for storing memory - userId: {user_id!r}")
            raise InvalidArguments("Invalid parameters for storing memory")
        if (
            not isinstance(context, (list, tuple))
            or not context
            or not all(isinstance(item, str) for item in context)
        ):
            logger.error(f"Invalid context for storing memory - userId: {user_id}")
            raise InvalidArguments("Invalid parameters for storing memory")

        try:
            logger.info(f"Storing memory for user {user_id}")
            text = "\n".join(context)
            embedding = await self.embedding_generator.embed(text)

            record = MemoryRecord(
                id=str(uuid.uuid4()),
                user_id=user_id,
                context=tuple(context),
                timestamp=self.clock(),
                embedding=embedding,
            )
            self.store.add(record)

            logger.info(f"Successfully stored memory with ID {record.id} for user {user_id}")
            return record
        except Exception as e:
            logger.error(f"Failed to store memory for user {user_id}: {e}")
            raise StorageError(f"Memory storage failed: {e}") from e

    async def retrieve_memories(self, user_id: str, limit: int = 10) -> List[MemoryRecord]:
        """Get this user's recent memories, newest first.

        Args:
            user_id: Owner of the memories
            limit: Maximum number of records to consider

        Returns:
            Records owned by user_id no older than the maximum memory age

        Raises:
            InvalidArguments: If user_id is empty
            RetrievalError: If the store search fails
        """
        if not user_id:
            logger.error("Attempted to retrieve memories without userId")
            raise InvalidArguments("User ID is required for retrieving memories")

        try:
            logger.info(f"Retrieving memories for user {user_id} with limit {limit}")
            results = self.store.search(
                np.zeros(self.embedding_dim, dtype=np.float32),
                min(limit, self.max_results),
            )
        except Exception as e:
            logger.error(f"Failed to retrieve memories for user {user_id}: {e}")
            raise RetrievalError(f"Memory retrieval failed: {e}") from e

        now = self.clock()
        memories = [
            result.record
            for result in results
            if result.user_id == user_id
            and now - result.timestamp <= self.max_memory_age_ms
        ]
        memories.sort(key=lambda record: record.timestamp, reverse=True)

        logger.info(f"Retrieved {len(memories)} memories for user {user_id}")
        return memories

    async def find_similar_memories(
        self,
        user_id: str,
        query_text: str,
        limit: int = 10,
    ) -> List[ScoredMemory]:
        """Find this user's memories most similar to ``query_text``.

        No age limit applies.

        Args:
            user_id: Owner of the memories
            query_text: Text to compare against
            limit: Number of top-ranked records to consider

        Returns:
            Scored records owned by user_id, most similar first

        Raises:
            InvalidArguments: If user_id or query_text is empty
            RetrievalError: If the store search fails
        """
        if not user_id or not query_text:
            logger.error(f"Invalid parameters for finding similar memories - userId: {user_id!r}")
            raise InvalidArguments("User ID and query text are required for finding similar memories")

        try:
            logger.info(
                f"Finding similar memories for user {user_id} with query: {query_text[:50]}..."
            )
            query_vector = await self.embedding_generator.embed(query_text)
            results = self.store.search(query_vector, limit)
        except Exception as e:
            logger.error(f"Failed to find similar memories for user {user_id}: {e}")
            raise RetrievalError(f"Similar memory search failed: {e}") from e

        memories = [result for result in results if result.user_id == user_id]
        logger.info(f"Found {len(memories)} similar memories for user {user_id}")
        return memories

    def close(self) -> None:
        """Clean up resources."""
        try:
            self.store.close()
        except Exception as e:
            logger.error(f"Error during cleanup: {e}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
