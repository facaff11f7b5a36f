"""Append-only memory record store with similarity search.

Records live in memory for fast access, are mirrored to a SQL table so they
survive restarts when a file database is used, and are indexed in FAISS for
cosine similarity ranking.
"""
import threading
from typing import Dict, List, Optional

import numpy as np
from loguru import logger

from .faiss_index import FAISSIndex
from .models import (
    MemoryRecord,
    MemoryRow,
    ScoredMemory,
    create_session_factory,
    get_engine,
    init_db,
    records_from_rows,
)


class MemoryStore:
    """Holds every stored memory record; nothing is ever deleted."""

    def __init__(self, db_url: str = "sqlite:///:memory:", embedding_dim: int = 512):
        """Initialize the store.

        Args:
            db_url: SQLAlchemy database URL
            embedding_dim: Length every record embedding must have
        """
        self.embedding_dim = embedding_dim
        self.engine = get_engine(db_url)
        self.Session = create_session_factory(self.engine)
        init_db(self.engine)

        self.index = FAISSIndex(embedding_dim=embedding_dim)
        self._records: Dict[str, MemoryRecord] = {}
        self._lock = threading.RLock()

        self._load_existing_records()

    def _load_existing_records(self) -> None:
        """Load records from the database into memory and the FAISS index."""
        with self.Session() as session:
            rows = session.query(MemoryRow).order_by(MemoryRow.timestamp).all()
            records = records_from_rows(rows)

        if not records:
            logger.info("No existing memory records found in database")
            return

        usable = []
        for record in records:
            if record.embedding.shape[0] != self.embedding_dim:
                logger.error(
                    f"Skipping memory {record.id}: embedding dimension "
                    f"{record.embedding.shape[0]} != {self.embedding_dim}"
                )
                continue
            usable.append(record)

        if usable:
            self.index.add_embeddings(
                np.stack([r.embedding for r in usable]),
                [r.id for r in usable],
            )
            self._records.update((r.id, r) for r in usable)
        logger.info(f"Loaded {len(usable)} existing memory records")

    def add(self, record: MemoryRecord) -> MemoryRecord:
        """Append a record.

        Raises:
            ValueError: If the embedding length or the record ID is invalid
            sqlalchemy.exc.SQLAlchemyError: If the database write fails
        """
        if record.embedding.shape[0] != self.embedding_dim:
            raise ValueError(
                f"Embedding dimension {record.embedding.shape[0]} does not match "
                f"store dimension {self.embedding_dim}"
            )

        with self._lock:
            if record.id in self._records:
                raise ValueError(f"Duplicate memory record ID {record.id}")

            with self.Session() as session:
                try:
                    session.add(record.to_row())
                    session.commit()
                except Exception:
                    session.rollback()
                    raise

            self.index.add_embeddings(record.embedding.reshape(1, -1), [record.id])
            self._records[record.id] = record

        logger.debug(f"Stored memory record {record.id} for user {record.user_id}")
        return record

    def search(self, query_vector: Optional[np.ndarray], limit: int) -> List[ScoredMemory]:
        """Return up to ``limit`` records ranked by cosine similarity.

        Ties are broken by timestamp, most recent first, then by ID. A None,
        empty or zero query scores every record 0, which ranks purely by
        recency.

        Args:
            query_vector: Query embedding
            limit: Maximum number of results

        Returns:
            Scored records, best first
        """
        if limit <= 0:
            return []
        if query_vector is None:
            query_vector = np.zeros(self.embedding_dim, dtype=np.float32)

        with self._lock:
            # Exhaustive scoring so ties at the cut-off resolve deterministically
            hits = self.index.search(query_vector, len(self._records))
            scored = [
                ScoredMemory(self._records[record_id], score)
                for record_id, score in hits
                if record_id in self._records
            ]

        scored.sort(key=lambda m: (-m.similarity, -m.timestamp, m.id))
        return scored[:limit]

    def get(self, record_id: str) -> Optional[MemoryRecord]:
        """Get a record by ID."""
        return self._records.get(record_id)

    def records(self) -> List[MemoryRecord]:
        """All records, oldest first."""
        with self._lock:
            return sorted(self._records.values(), key=lambda r: (r.timestamp, r.id))

    def close(self) -> None:
        """Release database resources."""
        self.engine.dispose()

    def __len__(self) -> int:
        return len(self._records)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
