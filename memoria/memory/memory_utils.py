"""Utility functions for working with the memory system."""

from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict

from .models import MemoryRecord, ScoredMemory
from .store import MemoryStore


def format_timestamp(timestamp_ms: int) -> str:
    """Format a millisecond timestamp as an ISO-8601 UTC string."""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).isoformat()


def describe_memory(memory: Any) -> str:
    """One-line human readable summary of a record or scored record."""
    record: MemoryRecord = memory.record if isinstance(memory, ScoredMemory) else memory
    preview = " | ".join(record.context)
    if len(preview) > 80:
        preview = preview[:77] + "..."
    line = f"[{format_timestamp(record.timestamp)}] {preview}"
    if isinstance(memory, ScoredMemory):
        line = f"({memory.similarity:.3f}) {line}"
    return line


def get_memory_statistics(store: MemoryStore) -> Dict[str, Any]:
    """Get statistics about the stored memories.

    Args:
        store: The memory record store

    Returns:
        Dictionary with memory statistics
    """
    records = store.records()
    stats: Dict[str, Any] = {
        "total_memories": len(records),
        "count_by_user": dict(Counter(r.user_id for r in records)),
        "embedding_dim": store.embedding_dim,
    }

    if records:
        stats["oldest_memory"] = format_timestamp(records[0].timestamp)
        stats["newest_memory"] = format_timestamp(records[-1].timestamp)

    return stats
