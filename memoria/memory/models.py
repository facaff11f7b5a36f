"""Data models for the memory system."""
import uuid
from dataclasses import dataclass, field
from typing import Dict, Any, List, Sequence, Tuple

import numpy as np
from sqlalchemy import BigInteger, Column, JSON, String, create_engine, Index
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

# SQLAlchemy base class
Base = declarative_base()


def _frozen_vector(values: Any) -> np.ndarray:
    vector = np.array(values, dtype=np.float32).reshape(-1)
    vector.flags.writeable = False
    return vector


@dataclass(frozen=True)
class MemoryRecord:
    """One stored exchange with its owner, creation time and embedding."""

    user_id: str
    context: Tuple[str, ...]
    timestamp: int  # milliseconds since epoch
    embedding: np.ndarray = field(repr=False, compare=False)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self):
        object.__setattr__(self, "context", tuple(self.context))
        object.__setattr__(self, "embedding", _frozen_vector(self.embedding))

    @property
    def text(self) -> str:
        """The exchange joined into the text that was embedded."""
        return "\n".join(self.context)

    def to_dict(self, include_embedding: bool = False) -> Dict[str, Any]:
        """Convert the record to a dictionary.

        Args:
            include_embedding: Whether to include the embedding values

        Returns:
            Dictionary representation of the record
        """
        result = {
            "id": self.id,
            "user_id": self.user_id,
            "context": list(self.context),
            "timestamp": self.timestamp,
        }
        if include_embedding:
            result["embedding"] = self.embedding.tolist()
        return result

    def to_row(self) -> "MemoryRow":
        return MemoryRow(
            id=self.id,
            user_id=self.user_id,
            context=list(self.context),
            timestamp=self.timestamp,
            embedding=self.embedding.tolist(),
        )

    @classmethod
    def from_row(cls, row: "MemoryRow") -> "MemoryRecord":
        return cls(
            id=row.id,
            user_id=row.user_id,
            context=tuple(row.context or ()),
            timestamp=int(row.timestamp),
            embedding=row.embedding or [],
        )


@dataclass(frozen=True)
class ScoredMemory:
    """A memory record together with its similarity to a search query."""

    record: MemoryRecord
    similarity: float

    @property
    def id(self) -> str:
        return self.record.id

    @property
    def user_id(self) -> str:
        return self.record.user_id

    @property
    def context(self) -> Tuple[str, ...]:
        return self.record.context

    @property
    def timestamp(self) -> int:
        return self.record.timestamp

    def to_dict(self) -> Dict[str, Any]:
        result = self.record.to_dict()
        result["similarity"] = self.similarity
        return result


class MemoryRow(Base):
    """Persistent row backing a MemoryRecord."""
    __tablename__ = "memory_records"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(255), nullable=False, index=True)
    context = Column(JSON, nullable=False)
    timestamp = Column(BigInteger, nullable=False, index=True)
    embedding = Column(JSON, nullable=False)  # Stored as JSON for portability

    def __repr__(self) -> str:
        return f"<MemoryRow(id={self.id}, user_id={self.user_id}, timestamp={self.timestamp})>"

# Create indexes for performance
Index("idx_memory_user_time", MemoryRow.user_id, MemoryRow.timestamp)

def get_engine(db_url: str = "sqlite:///:memory:", **kwargs) -> Engine:
    """Get a SQLAlchemy engine with the specified configuration."""
    if db_url.startswith("sqlite"):
        kwargs.update({
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool
        })

    return create_engine(db_url, **kwargs)

def create_session_factory(engine: Engine) -> sessionmaker:
    """Create a session factory for the given engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)

def init_db(engine: Engine) -> None:
    """Initialize the database with all tables."""
    Base.metadata.create_all(bind=engine)

def records_from_rows(rows: Sequence[MemoryRow]) -> List[MemoryRecord]:
    """Convert database rows into memory records."""
    return [MemoryRecord.from_row(row) for row in rows]
