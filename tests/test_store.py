"""
Tests for SearchProxy query stores.
"""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo.errors import ServerSelectionTimeoutError

from searchproxy.config import StoreConfig
from searchproxy.core.errors import StoreFailure
from searchproxy.core.recognizers import Query
from searchproxy.core.store import (
    JsonlQueryStore,
    MongoQueryStore,
    QueryStore,
    StoredRecord,
    create_store,
)


# ── Helpers ──────────────────────────────────────────────────────────────────

WHEN = datetime(2024, 5, 6, 7, 8, 9, tzinfo=timezone.utc)
QUERY = Query(text="hello+world", keywords=("hello", "world"))


def _mock_client(collection):
    client = MagicMock()
    client.__getitem__.return_value.__getitem__.return_value = collection
    client.close = AsyncMock()
    return client


# ── StoredRecord ─────────────────────────────────────────────────────────────


class TestStoredRecord:
    def test_from_query(self):
        r = StoredRecord.from_query(QUERY, WHEN)
        assert r.when == WHEN
        assert r.query == "hello+world"
        assert r.keywords == ["hello", "world"]

    def test_to_dict_field_names(self):
        d = StoredRecord.from_query(QUERY, WHEN).to_dict()
        assert d == {"when": WHEN, "query": "hello+world", "keywords": ["hello", "world"]}

    def test_from_dict_iso_string(self):
        r = StoredRecord.from_dict({"when": WHEN.isoformat(), "query": "q", "keywords": ["q"]})
        assert r.when == WHEN

    def test_from_dict_naive_datetime_is_utc(self):
        r = StoredRecord.from_dict({"when": datetime(2024, 1, 1), "query": "q"})
        assert r.when.tzinfo == timezone.utc
        assert r.keywords == []

    def test_from_dict_defaults(self):
        r = StoredRecord.from_dict({})
        assert r.query == ""
        assert r.when == datetime.fromtimestamp(0, tz=timezone.utc)


# ── MongoDB ──────────────────────────────────────────────────────────────────


class TestMongoQueryStore:
    def test_satisfies_contract(self):
        store = MongoQueryStore(client=_mock_client(MagicMock()))
        assert isinstance(store, QueryStore)

    def test_uses_database_and_collection(self):
        client = _mock_client(MagicMock())
        MongoQueryStore(database="HttpProxyQueries", collection="queries", client=client)
        client.__getitem__.assert_called_with("HttpProxyQueries")
        client.__getitem__.return_value.__getitem__.assert_called_with("queries")

    @pytest.mark.asyncio
    async def test_insert_document_shape(self):
        collection = MagicMock()
        collection.insert_one = AsyncMock()
        store = MongoQueryStore(client=_mock_client(collection))

        await store.insert(QUERY, WHEN)

        collection.insert_one.assert_awaited_once_with(
            {"when": WHEN, "query": "hello+world", "keywords": ["hello", "world"]}
        )

    @pytest.mark.asyncio
    async def test_insert_failure(self):
        collection = MagicMock()
        collection.insert_one = AsyncMock(side_effect=ServerSelectionTimeoutError("no servers"))
        store = MongoQueryStore(client=_mock_client(collection))

        with pytest.raises(StoreFailure, match="no servers") as exc:
            await store.insert(QUERY, WHEN)
        assert exc.value.backend == "mongodb"
        assert isinstance(exc.value.__cause__, ServerSelectionTimeoutError)

    @pytest.mark.asyncio
    async def test_recent(self):
        cursor = MagicMock()
        cursor.sort.return_value = cursor
        cursor.limit.return_value = cursor
        cursor.to_list = AsyncMock(return_value=[
            {"when": WHEN, "query": "a+b", "keywords": ["a", "b"]},
        ])
        collection = MagicMock()
        collection.find.return_value = cursor
        store = MongoQueryStore(client=_mock_client(collection))

        records = await store.recent(5)

        assert records == [StoredRecord(when=WHEN, query="a+b", keywords=["a", "b"])]
        cursor.limit.assert_called_once_with(5)

    @pytest.mark.asyncio
    async def test_close(self):
        client = _mock_client(MagicMock())
        await MongoQueryStore(client=client).close()
        client.close.assert_awaited_once()


# ── JSON Lines ───────────────────────────────────────────────────────────────


class TestJsonlQueryStore:
    def test_satisfies_contract(self, tmp_path):
        assert isinstance(JsonlQueryStore(tmp_path / "q.jsonl"), QueryStore)

    @pytest.mark.asyncio
    async def test_insert_appends_lines(self, tmp_path):
        path = tmp_path / "nested" / "queries.jsonl"
        store = JsonlQueryStore(path)
        await store.insert(QUERY, WHEN)
        await store.insert(Query("x", ("x",)), WHEN + timedelta(seconds=1))

        lines = path.read_text().splitlines()
        assert len(lines) == 2
        first = json.loads(lines[0])
        assert first == {"when": WHEN.isoformat(), "query": "hello+world", "keywords": ["hello", "world"]}

    @pytest.mark.asyncio
    async def test_recent_newest_first(self, tmp_path):
        store = JsonlQueryStore(tmp_path / "q.jsonl")
        for i in range(5):
            await store.insert(Query(f"q{i}", (f"q{i}",)), WHEN + timedelta(minutes=i))

        records = await store.recent(3)
        assert [r.query for r in records] == ["q4", "q3", "q2"]
        assert records[0].when == WHEN + timedelta(minutes=4)

    @pytest.mark.asyncio
    async def test_recent_missing_file(self, tmp_path):
        assert await JsonlQueryStore(tmp_path / "none.jsonl").recent() == []

    @pytest.mark.asyncio
    async def test_recent_skips_corrupt_lines(self, tmp_path):
        path = tmp_path / "q.jsonl"
        path.write_text(
            json.dumps({"when": WHEN.isoformat(), "query": "ok", "keywords": ["ok"]}) + "\n"
            "{not json\n"
            "\n"
        )
        records = await JsonlQueryStore(path).recent()
        assert [r.query for r in records] == ["ok"]

    @pytest.mark.asyncio
    async def test_insert_failure(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        store = JsonlQueryStore(blocker / "q.jsonl")
        with pytest.raises(StoreFailure) as exc:
            await store.insert(QUERY, WHEN)
        assert exc.value.backend == "jsonl"


# ── Factory ──────────────────────────────────────────────────────────────────


class TestCreateStore:
    def test_jsonl(self, tmp_path):
        store = create_store(StoreConfig(backend="jsonl", path=str(tmp_path / "q.jsonl")))
        assert isinstance(store, JsonlQueryStore)
        assert store.path == tmp_path / "q.jsonl"

    def test_mongodb(self):
        store = create_store(StoreConfig(backend="mongodb", host="db.internal", port=27018))
        assert isinstance(store, MongoQueryStore)
        assert store.host == "db.internal"
        assert store.port == 27018

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown store backend"):
            create_store(StoreConfig(backend="redis"))
