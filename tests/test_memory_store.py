"""
Tests for the record store and its FAISS index.
"""
import os
import tempfile
import unittest

import numpy as np

from memoria.memory.faiss_index import FAISSIndex
from memoria.memory.models import MemoryRecord
from memoria.memory.store import MemoryStore

DIM = 4


def unit(*values):
    vector = np.array(values, dtype=np.float32)
    return vector / np.linalg.norm(vector)


def make_record(record_id, embedding, timestamp, user_id="alice", context=("hi", "hello")):
    return MemoryRecord(
        id=record_id,
        user_id=user_id,
        context=context,
        timestamp=timestamp,
        embedding=embedding,
    )


class TestFAISSIndex(unittest.TestCase):
    """Test cases for the cosine similarity index."""

    def test_search_returns_cosine_scores(self):
        """Scores are cosine similarities, regardless of vector length."""
        index = FAISSIndex(embedding_dim=DIM)
        index.add_embeddings(
            np.array([[10, 0, 0, 0], [1, 1, 0, 0], [0, 0, 3, 0]], dtype=np.float32),
            ["a", "b", "c"],
        )

        hits = dict(index.search(np.array([2, 0, 0, 0], dtype=np.float32), 3))

        self.assertAlmostEqual(hits["a"], 1.0, places=5)
        self.assertAlmostEqual(hits["b"], 1 / np.sqrt(2), places=5)
        self.assertAlmostEqual(hits["c"], 0.0, places=5)

    def test_empty_index(self):
        """Searching an empty index returns nothing."""
        index = FAISSIndex(embedding_dim=DIM)
        self.assertEqual(index.search(np.ones(DIM, dtype=np.float32), 5), [])
        self.assertEqual(len(index), 0)

    def test_rejects_wrong_dimension(self):
        """Embeddings must match the index dimension."""
        index = FAISSIndex(embedding_dim=DIM)
        with self.assertRaises(ValueError):
            index.add_embeddings(np.ones((1, DIM + 1), dtype=np.float32), ["x"])


class TestMemoryStore(unittest.TestCase):
    """Test cases for the memory store."""

    def setUp(self):
        """Set up test environment."""
        self.store = MemoryStore(embedding_dim=DIM)

    def tearDown(self):
        """Clean up after tests."""
        self.store.close()

    def test_add_and_get(self):
        """Added records can be fetched by ID."""
        record = make_record("r1", unit(1, 0, 0, 0), 1000)
        self.store.add(record)

        self.assertEqual(len(self.store), 1)
        self.assertIs(self.store.get("r1"), record)
        self.assertIsNone(self.store.get("missing"))

    def test_search_orders_by_similarity(self):
        """Most similar records come first."""
        self.store.add(make_record("orthogonal", unit(0, 1, 0, 0), 3000))
        self.store.add(make_record("exact", unit(1, 0, 0, 0), 1000))
        self.store.add(make_record("partial", unit(1, 1, 0, 0), 2000))

        results = self.store.search(unit(1, 0, 0, 0), 3)

        self.assertEqual([r.id for r in results], ["exact", "partial", "orthogonal"])
        self.assertAlmostEqual(results[0].similarity, 1.0, places=5)
        self.assertAlmostEqual(results[1].similarity, 1 / np.sqrt(2), places=5)
        self.assertAlmostEqual(results[2].similarity, 0.0, places=5)

    def test_ties_broken_by_recency(self):
        """Records with equal similarity are ranked newest first."""
        embedding = unit(1, 2, 3, 4)
        self.store.add(make_record("old", embedding, 1000))
        self.store.add(make_record("new", embedding, 5000))
        self.store.add(make_record("middle", embedding, 3000))

        results = self.store.search(embedding, 3)

        self.assertEqual([r.id for r in results], ["new", "middle", "old"])

    def test_zero_query_ranks_by_recency(self):
        """A zero or missing query ranks everything by timestamp."""
        for i, timestamp in enumerate((2000, 9000, 4000)):
            self.store.add(make_record(f"r{i}", unit(i + 1, 1, 0, 1), timestamp))

        for query in (np.zeros(DIM, dtype=np.float32), None):
            results = self.store.search(query, 10)
            self.assertEqual([r.timestamp for r in results], [9000, 4000, 2000])
            self.assertTrue(all(r.similarity == 0.0 for r in results))

    def test_limit(self):
        """Search never returns more than the limit."""
        for i in range(5):
            self.store.add(make_record(f"r{i}", unit(1, i, 0, 0), 1000 + i))

        self.assertEqual(len(self.store.search(unit(1, 0, 0, 0), 2)), 2)
        self.assertEqual(len(self.store.search(unit(1, 0, 0, 0), 50)), 5)
        self.assertEqual(self.store.search(unit(1, 0, 0, 0), 0), [])

    def test_tie_at_cutoff_keeps_newest(self):
        """When the limit cuts through a tie, the newest records survive."""
        embedding = unit(0, 0, 1, 0)
        for i in range(6):
            self.store.add(make_record(f"r{i}", embedding, 1000 * (i + 1)))

        results = self.store.search(embedding, 2)

        self.assertEqual([r.id for r in results], ["r5", "r4"])

    def test_rejects_wrong_dimension(self):
        """Records with a different embedding length are refused."""
        with self.assertRaises(ValueError):
            self.store.add(make_record("bad", np.ones(DIM + 2, dtype=np.float32), 1000))
        self.assertEqual(len(self.store), 0)

    def test_rejects_duplicate_id(self):
        """Record IDs are unique."""
        self.store.add(make_record("same", unit(1, 0, 0, 0), 1000))
        with self.assertRaises(ValueError):
            self.store.add(make_record("same", unit(0, 1, 0, 0), 2000))
        self.assertEqual(len(self.store), 1)

    def test_records_are_immutable(self):
        """Stored records and their embeddings cannot be modified."""
        record = self.store.add(make_record("r1", unit(1, 0, 0, 0), 1000))

        with self.assertRaises(AttributeError):
            record.user_id = "mallory"
        with self.assertRaises(ValueError):
            record.embedding[0] = 5.0

    def test_records_oldest_first(self):
        """records() lists everything in creation order."""
        self.store.add(make_record("b", unit(1, 0, 0, 0), 2000))
        self.store.add(make_record("a", unit(1, 0, 0, 0), 1000))

        self.assertEqual([r.id for r in self.store.records()], ["a", "b"])


class TestMemoryStorePersistence(unittest.TestCase):
    """Test cases for reloading records from a database file."""

    def setUp(self):
        """Set up test environment."""
        self.db_fd, self.db_path = tempfile.mkstemp(suffix=".db")
        self.db_url = f"sqlite:///{self.db_path}"

    def tearDown(self):
        """Clean up after tests."""
        try:
            os.close(self.db_fd)
            os.unlink(self.db_path)
        except Exception as e:
            print(f"Warning: Failed to clean up test files: {e}")

    def test_records_survive_restart(self):
        """A new store on the same database sees earlier records."""
        with MemoryStore(db_url=self.db_url, embedding_dim=DIM) as store:
            store.add(make_record("first", unit(1, 0, 0, 0), 1000, context=("a", "b")))
            store.add(make_record("second", unit(0, 1, 0, 0), 2000, user_id="bob"))

        with MemoryStore(db_url=self.db_url, embedding_dim=DIM) as reopened:
            self.assertEqual(len(reopened), 2)

            first = reopened.get("first")
            self.assertEqual(first.user_id, "alice")
            self.assertEqual(first.context, ("a", "b"))
            self.assertEqual(first.timestamp, 1000)
            self.assertTrue(np.allclose(first.embedding, unit(1, 0, 0, 0)))

            results = reopened.search(unit(0, 1, 0, 0), 1)
            self.assertEqual(results[0].id, "second")

    def test_skips_records_with_other_dimension(self):
        """Rows written with another embedding size are not loaded."""
        with MemoryStore(db_url=self.db_url, embedding_dim=DIM) as store:
            store.add(make_record("r1", unit(1, 0, 0, 0), 1000))

        with MemoryStore(db_url=self.db_url, embedding_dim=DIM * 2) as reopened:
            self.assertEqual(len(reopened), 0)


if __name__ == "__main__":
    unittest.main()
