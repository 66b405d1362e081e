"""
Testes para fedinbox/storage/kv_store.py
"""

import pytest

from fedinbox.storage.kv_store import KvStore, serialize_key


def test_serialize_key_joins_segments():
    assert serialize_key(["migration", "separate-mentions"]) == "migration/separate-mentions"


def test_serialize_key_keeps_strings():
    assert serialize_key("batch-refollow/state") == "batch-refollow/state"


@pytest.mark.asyncio
async def test_get_missing_returns_default(db):
    store = KvStore()

    assert await store.get(["nada", "aqui"]) is None
    assert await store.get(["nada", "aqui"], {}) == {}


@pytest.mark.asyncio
async def test_set_then_get(db):
    store = KvStore()

    await store.set(["batch-refollow", "state"], {"status": "running", "cursor": 4})

    assert await store.get("batch-refollow/state") == {"status": "running", "cursor": 4}


@pytest.mark.asyncio
async def test_set_overwrites_existing_value(db):
    store = KvStore()

    await store.set(("a", "b"), 1)
    await store.set(("a", "b"), 2)

    assert await store.get(("a", "b")) == 2


@pytest.mark.asyncio
async def test_delete(db):
    store = KvStore()
    await store.set(("a", "b"), "x")

    await store.delete(("a", "b"))

    assert await store.get(("a", "b")) is None


@pytest.mark.asyncio
async def test_list_by_prefix(db):
    store = KvStore()
    await store.set(("migration", "one"), {"completed": True})
    await store.set(("migration", "two"), {"completed": False})
    await store.set(("migrationx", "three"), {})
    await store.set(("batch-refollow", "state"), {})

    entries = await store.list(["migration"])

    assert [key for key, _ in entries] == ["migration/one", "migration/two"]
