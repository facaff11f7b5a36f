"""
FAISS (Facebook AI Similarity Search) index for exact cosine similarity search.
"""
import threading
from typing import Dict, List, Sequence, Tuple

import faiss
import numpy as np
from loguru import logger


def normalize_rows(vectors: np.ndarray) -> np.ndarray:
    """L2-normalize each row; rows with zero norm stay zero."""
    vectors = np.array(vectors, dtype=np.float32, copy=True)
    if vectors.ndim == 1:
        vectors = vectors.reshape(1, -1)
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    np.divide(vectors, norms, out=vectors, where=norms > 0)
    return vectors


class FAISSIndex:
    """
    Wrapper around a flat FAISS inner-product index.

    Vectors are normalized before they are added and before they are used as
    queries, so the inner product FAISS computes is the cosine similarity of
    the original vectors, whether or not the caller normalized them.
    """

    def __init__(self, embedding_dim: int = 512):
        """Initialize the FAISS index.

        Args:
            embedding_dim: Dimension of the embeddings
        """
        self.embedding_dim = embedding_dim

        self.index = None
        self.id_to_idx: Dict[str, int] = {}  # Map record ID to FAISS index
        self.idx_to_id: Dict[int, str] = {}  # Map FAISS index to record ID
        self.next_idx = 0
        self._lock = threading.RLock()

        self._init_index()

    def _init_index(self) -> None:
        """Initialize a new FAISS index."""
        # IndexFlatIP is exhaustive, so results are exact
        self.index = faiss.IndexIDMap(faiss.IndexFlatIP(self.embedding_dim))

    def add_embeddings(
        self,
        embeddings: np.ndarray,
        record_ids: Sequence[str],
    ) -> None:
        """Add embeddings to the index.

        Args:
            embeddings: Numpy array of shape (n, embedding_dim)
            record_ids: Record IDs corresponding to each embedding
        """
        embeddings = normalize_rows(embeddings)
        if len(embeddings) != len(record_ids):
            raise ValueError("Number of embeddings must match number of record IDs")
        if embeddings.shape[1] != self.embedding_dim:
            raise ValueError(
                f"Embedding dimension {embeddings.shape[1]} does not match index "
                f"dimension {self.embedding_dim}"
            )

        with self._lock:
            indices = np.arange(self.next_idx, self.next_idx + len(embeddings), dtype=np.int64)

            for i, record_id in enumerate(record_ids):
                self.id_to_idx[record_id] = int(indices[i])
                self.idx_to_id[int(indices[i])] = record_id

            self.index.add_with_ids(embeddings, indices)
            self.next_idx += len(embeddings)

        logger.debug(f"Added {len(embeddings)} embeddings to FAISS index")

    def search(self, query_embedding: np.ndarray, k: int) -> List[Tuple[str, float]]:
        """Search for the ``k`` most similar embeddings.

        An empty or all-zero query is valid and scores every vector 0.

        Args:
            query_embedding: Query embedding of shape (embedding_dim,)
            k: Number of results to return

        Returns:
            List of (record_id, cosine similarity) pairs, best first
        """
        with self._lock:
            total = self.index.ntotal
            if total == 0 or k <= 0:
                return []
            k = min(k, total)

            query = np.asarray(query_embedding, dtype=np.float32).reshape(-1)
            if query.size == 0:
                query = np.zeros(self.embedding_dim, dtype=np.float32)
            if query.shape[0] != self.embedding_dim:
                raise ValueError(
                    f"Query dimension {query.shape[0]} does not match index "
                    f"dimension {self.embedding_dim}"
                )

            distances, indices = self.index.search(normalize_rows(query), k)

            results = []
            for idx, score in zip(indices[0], distances[0]):
                if idx < 0:  # Skip invalid indices
                    continue
                record_id = self.idx_to_id.get(int(idx))
                if record_id is not None:
                    results.append((record_id, float(score)))
            return results

    def __len__(self) -> int:
        """Get the number of vectors in the index."""
        return self.index.ntotal if self.index is not None else 0
