"""Tiered agent memory: working, episodic and semantic."""

from __future__ import annotations

import json
import math
import sqlite3
import time
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from pydantic import BaseModel, Field

from agentloop.tasks import new_id
from agentloop.util.logging import get_logger

logger = get_logger(__name__)

Embedder = Callable[[str], "list[float] | None"]

DEMOTION_THRESHOLD = 0.5
CONSOLIDATION_THRESHOLD = 0.8


class MemoryType(str, Enum):
    WORKING = "working"
    EPISODIC = "episodic"
    SEMANTIC = "semantic"


DEFAULT_IMPORTANCE = {
    MemoryType.WORKING: 1.0,
    MemoryType.EPISODIC: 0.7,
    MemoryType.SEMANTIC: 0.9,
}


class Memory(BaseModel):
    id: str = Field(default_factory=new_id)
    type: MemoryType
    content: str
    embedding: list[float] | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    importance: float = Field(default=0.5, ge=0.0, le=1.0)
    timestamp: float = Field(default_factory=time.time)


class MemoryBackend(ABC):
    """Durable storage for memories. The in-process tiers remain authoritative."""

    @abstractmethod
    def save(self, memory: Memory) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete(self, memory_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def load(self, memory_type: MemoryType, limit: int | None = None) -> list[Memory]:
        raise NotImplementedError

    @abstractmethod
    def clear(self) -> None:
        raise NotImplementedError


class SqliteMemoryBackend(MemoryBackend):
    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        self._init_db()

    def _init_db(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS memories (
                    id TEXT PRIMARY KEY,
                    type TEXT NOT NULL,
                    content TEXT NOT NULL,
                    embedding_json TEXT,
                    metadata_json TEXT,
                    importance REAL,
                    timestamp REAL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_memories_type ON memories(type)")
            conn.commit()

    def save(self, memory: Memory) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO memories (
                    id, type, content, embedding_json, metadata_json, importance, timestamp
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    memory.id,
                    memory.type.value,
                    memory.content,
                    json.dumps(memory.embedding) if memory.embedding is not None else None,
                    json.dumps(memory.metadata, ensure_ascii=False, default=str),
                    memory.importance,
                    memory.timestamp,
                ),
            )
            conn.commit()

    def delete(self, memory_id: str) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("DELETE FROM memories WHERE id = ?", (memory_id,))
            conn.commit()

    def load(self, memory_type: MemoryType, limit: int | None = None) -> list[Memory]:
        query = (
            "SELECT id, type, content, embedding_json, metadata_json, importance, timestamp "
            "FROM memories WHERE type = ? ORDER BY timestamp DESC, rowid DESC"
        )
        params: tuple[Any, ...] = (memory_type.value,)
        if limit is not None:
            query += " LIMIT ?"
            params = (memory_type.value, limit)
        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute(query, params).fetchall()
        memories = [
            Memory(
                id=row[0],
                type=MemoryType(row[1]),
                content=row[2],
                embedding=json.loads(row[3]) if row[3] else None,
                metadata=json.loads(row[4]) if row[4] else {},
                importance=row[5],
                timestamp=row[6],
            )
            for row in rows
        ]
        memories.reverse()
        return memories

    def clear(self) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("DELETE FROM memories")
            conn.commit()


class MemoryStore:
    """Three memory tiers with bounded working and episodic sequences.

    Working memory evicts its oldest entry once it grows past ``max_working``;
    an evicted entry with importance above 0.5 moves to episodic memory, any
    other is dropped. Episodic memory evicts its oldest entry unconditionally.
    Semantic memory is unbounded and only filled by direct writes or
    :meth:`consolidate`.
    """

    def __init__(
        self,
        max_working: int = 10,
        max_episodic: int = 100,
        backend: MemoryBackend | None = None,
        embedder: Embedder | None = None,
    ) -> None:
        self.max_working = max_working
        self.max_episodic = max_episodic
        self.backend = backend
        self.embedder = embedder
        self._working: list[Memory] = []
        self._episodic: list[Memory] = []
        self._semantic: dict[str, Memory] = {}

    def add_working(
        self,
        content: str,
        metadata: dict[str, Any] | None = None,
        importance: float | None = None,
    ) -> Memory:
        memory = self._new(MemoryType.WORKING, content, metadata, importance)
        self._working.append(memory)
        while len(self._working) > self.max_working:
            evicted = self._working.pop(0)
            if evicted.importance > DEMOTION_THRESHOLD:
                self.add_episodic(evicted.content, evicted.metadata, evicted.importance)
            else:
                logger.debug("Dropped working memory %s", evicted.id)
        return memory

    def add_episodic(
        self,
        content: str,
        metadata: dict[str, Any] | None = None,
        importance: float | None = None,
    ) -> Memory:
        memory = self._new(MemoryType.EPISODIC, content, metadata, importance)
        self._episodic.append(memory)
        self._persist(memory)
        while len(self._episodic) > self.max_episodic:
            evicted = self._episodic.pop(0)
            self._forget(evicted)
        return memory

    def add_semantic(
        self,
        content: str,
        metadata: dict[str, Any] | None = None,
        importance: float | None = None,
    ) -> Memory:
        memory = self._new(MemoryType.SEMANTIC, content, metadata, importance)
        memory.embedding = self._embed(content)
        self._semantic[memory.id] = memory
        self._persist(memory)
        return memory

    def get_working(self) -> list[Memory]:
        return list(self._working)

    def get_episodic(self, limit: int = 10) -> list[Memory]:
        if limit <= 0:
            return []
        return list(self._episodic[-limit:])

    def get_semantic(self) -> list[Memory]:
        return list(self._semantic.values())

    def search_semantic(self, query: str, limit: int = 5) -> list[Memory]:
        query_vector = self._embed(query) if self._semantic else None
        scored: list[tuple[float, Memory]] = []
        needle = query.lower()
        for memory in self._semantic.values():
            if query_vector and memory.embedding:
                score = _cosine(query_vector, memory.embedding)
                if score > 0:
                    scored.append((score, memory))
            elif needle in memory.content.lower():
                scored.append((1.0, memory))
        scored.sort(key=lambda item: (item[0], item[1].importance), reverse=True)
        return [memory for _, memory in scored[:limit]]

    def consolidate(self) -> int:
        """Promote important episodic entries into semantic memory."""
        known = {memory.content for memory in self._semantic.values()}
        promoted = 0
        for memory in list(self._episodic):
            if memory.importance <= CONSOLIDATION_THRESHOLD or memory.content in known:
                continue
            self.add_semantic(memory.content, memory.metadata, memory.importance)
            known.add(memory.content)
            promoted += 1
        logger.info("Memory consolidated: %s promoted", promoted)
        return promoted

    def get_context_summary(self) -> str:
        working = "\n".join(memory.content for memory in self._working)
        recent = "\n".join(memory.content for memory in self._episodic[-5:])
        return f"Working Memory:\n{working}\n\nRecent History:\n{recent}"

    def stats(self) -> dict[str, int]:
        counts = {
            "working": len(self._working),
            "episodic": len(self._episodic),
            "semantic": len(self._semantic),
        }
        counts["total"] = sum(counts.values())
        return counts

    def clear(self) -> None:
        self._working.clear()
        self._episodic.clear()
        self._semantic.clear()
        if self.backend is not None:
            try:
                self.backend.clear()
            except Exception as exc:  # noqa: BLE001
                logger.error("Failed to clear persistent memory: %s", exc)
        logger.info("Memory cleared")

    def restore(self) -> int:
        """Reload episodic and semantic tiers from the backend."""
        if self.backend is None:
            return 0
        try:
            episodic = self.backend.load(MemoryType.EPISODIC, limit=self.max_episodic)
            semantic = self.backend.load(MemoryType.SEMANTIC)
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to restore memory: %s", exc)
            return 0
        self._episodic = episodic
        self._semantic = {memory.id: memory for memory in semantic}
        logger.info("Restored %s episodic and %s semantic memories", len(episodic), len(semantic))
        return len(episodic) + len(semantic)

    def _new(
        self,
        memory_type: MemoryType,
        content: str,
        metadata: dict[str, Any] | None,
        importance: float | None,
    ) -> Memory:
        return Memory(
            type=memory_type,
            content=content,
            metadata=dict(metadata or {}),
            importance=DEFAULT_IMPORTANCE[memory_type] if importance is None else importance,
        )

    def _embed(self, text: str) -> list[float] | None:
        if self.embedder is None:
            return None
        try:
            return self.embedder(text)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Embedding failed: %s", exc)
            return None

    def _persist(self, memory: Memory) -> None:
        if self.backend is None:
            return
        try:
            self.backend.save(memory)
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to persist memory %s: %s", memory.id, exc)

    def _forget(self, memory: Memory) -> None:
        if self.backend is None:
            return
        try:
            self.backend.delete(memory.id)
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to delete memory %s: %s", memory.id, exc)


def _cosine(left: list[float], right: list[float]) -> float:
    if len(left) != len(right):
        return 0.0
    dot = sum(a * b for a, b in zip(left, right))
    norm = math.sqrt(sum(a * a for a in left)) * math.sqrt(sum(b * b for b in right))
    if norm == 0:
        return 0.0
    return dot / norm
