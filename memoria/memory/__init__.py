"""
Memory System.

Provides storage and retrieval of per-user conversation memories using
vector embeddings, FAISS similarity search and SQLite persistence.
"""

from .memory_manager import MemoryManager
from .models import MemoryRecord, ScoredMemory
from .embedding import EmbeddingGenerator, EmbeddingResult, GeminiEmbeddingService, fallback_embedding
from .faiss_index import FAISSIndex
from .store import MemoryStore

__all__ = [
    'MemoryManager',
    'MemoryRecord',
    'ScoredMemory',
    'EmbeddingGenerator',
    'EmbeddingResult',
    'GeminiEmbeddingService',
    'fallback_embedding',
    'FAISSIndex',
    'MemoryStore'
]
