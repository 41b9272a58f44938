"""
SearchProxy Query Store
========================
Persistence of recognized queries. The pipeline only depends on the narrow
:class:`QueryStore` contract; two backends implement it:

  • MongoQueryStore – ``HttpProxyQueries.queries`` documents via pymongo's
    asyncio client
  • JsonlQueryStore – one JSON object per line in a local file

Persisted shape (both backends)::

    {"when": <timestamp>, "query": "<raw query>", "keywords": ["...", ...]}
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from pymongo import AsyncMongoClient, DESCENDING
from pymongo.errors import PyMongoError

from searchproxy.config import QUERIES_FILE, StoreConfig
from searchproxy.core.errors import StoreFailure
from searchproxy.core.recognizers import Query

logger = logging.getLogger(__name__)

COLLECTION = "queries"


# ── Data Models ──────────────────────────────────────────────────────────────

@dataclass
class StoredRecord:
    """A persisted query record."""
    when: datetime
    query: str
    keywords: List[str] = field(default_factory=list)

    @classmethod
    def from_query(cls, query: Query, when: datetime) -> "StoredRecord":
        return cls(when=when, query=query.text, keywords=list(query.keywords))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "when": self.when,
            "query": self.query,
            "keywords": list(self.keywords),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoredRecord":
        when = data.get("when")
        if isinstance(when, str):
            when = datetime.fromisoformat(when)
        elif when is None:
            when = datetime.fromtimestamp(0, tz=timezone.utc)
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        return cls(
            when=when,
            query=data.get("query", ""),
            keywords=list(data.get("keywords", [])),
        )


# ── Contract ─────────────────────────────────────────────────────────────────

@runtime_checkable
class QueryStore(Protocol):
    """What the recording interceptor needs from a persistence backend.

    Implementations must be safe for concurrent use from many requests and
    raise :class:`StoreFailure` when a write cannot be completed.
    """

    async def insert(self, query: Query, when: datetime) -> None: ...

    async def recent(self, limit: int = 20) -> List[StoredRecord]: ...

    async def close(self) -> None: ...


# ── MongoDB ──────────────────────────────────────────────────────────────────

class MongoQueryStore:
    """Query store backed by a MongoDB collection."""

    backend = "mongodb"

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 27017,
        database: str = "HttpProxyQueries",
        collection: str = COLLECTION,
        client: Optional[AsyncMongoClient] = None,
    ):
        self.host = host
        self.port = port
        # tz_aware so "when" round-trips as an aware UTC datetime
        self._client = client or AsyncMongoClient(host, port, tz_aware=True)
        self._collection = self._client[database][collection]

    async def insert(self, query: Query, when: datetime) -> None:
        record = StoredRecord.from_query(query, when)
        try:
            await self._collection.insert_one(record.to_dict())
        except PyMongoError as e:
            raise StoreFailure(str(e), backend=self.backend) from e

    async def recent(self, limit: int = 20) -> List[StoredRecord]:
        try:
            cursor = self._collection.find({}, {"_id": 0}).sort("when", DESCENDING).limit(limit)
            docs = await cursor.to_list(length=limit)
        except PyMongoError as e:
            raise StoreFailure(str(e), backend=self.backend) from e
        return [StoredRecord.from_dict(d) for d in docs]

    async def close(self) -> None:
        await self._client.close()


# ── JSON Lines ───────────────────────────────────────────────────────────────

class JsonlQueryStore:
    """Query store appending JSON lines to a local file.

    Writes run in a worker thread; a lock keeps concurrent lines whole.
    """

    backend = "jsonl"

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else QUERIES_FILE
        self._lock = threading.Lock()

    def _append(self, line: str) -> None:
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")

    def _read_all(self) -> List[StoredRecord]:
        if not self.path.exists():
            return []
        records = []
        with self._lock, open(self.path, encoding="utf-8") as f:
            for lineno, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(StoredRecord.from_dict(json.loads(line)))
                except (json.JSONDecodeError, ValueError) as e:
                    logger.warning(f"Skipping corrupt record at {self.path}:{lineno}: {e}")
        return records

    async def insert(self, query: Query, when: datetime) -> None:
        data = StoredRecord.from_query(query, when).to_dict()
        data["when"] = when.isoformat()
        try:
            await asyncio.to_thread(self._append, json.dumps(data))
        except OSError as e:
            raise StoreFailure(str(e), backend=self.backend) from e

    async def recent(self, limit: int = 20) -> List[StoredRecord]:
        try:
            records = await asyncio.to_thread(self._read_all)
        except OSError as e:
            raise StoreFailure(str(e), backend=self.backend) from e
        records.sort(key=lambda r: r.when, reverse=True)
        return records[:limit]

    async def close(self) -> None:
        pass


# ── Factory ──────────────────────────────────────────────────────────────────

def create_store(cfg: StoreConfig) -> QueryStore:
    """Build the store selected by ``cfg.backend``."""
    if cfg.backend == "mongodb":
        logger.info(f"Recording queries to mongodb://{cfg.host}:{cfg.port}/{cfg.database}.{cfg.collection}")
        return MongoQueryStore(
            host=cfg.host,
            port=cfg.port,
            database=cfg.database,
            collection=cfg.collection,
        )
    if cfg.backend == "jsonl":
        store = JsonlQueryStore(Path(cfg.path) if cfg.path else None)
        logger.info(f"Recording queries to {store.path}")
        return store
    raise ValueError(f"Unknown store backend: {cfg.backend}")
