"""
fedinbox/storage/kv_store.py

Adaptador chave-valor sobre a tabela `kv`.

As chaves são sequências de segmentos (ex: ["batch-refollow", "state"])
serializadas como caminho único: "batch-refollow/state".
"""

from typing import Any, Sequence

from sqlalchemy import delete, select
from sqlalchemy.dialects.sqlite import insert

from fedinbox import database
from fedinbox.models.kv_entry import KvEntry

KvKey = str | Sequence[str]


def serialize_key(key: KvKey) -> str:
    if isinstance(key, str):
        return key
    return "/".join(key)


class KvStore:
    async def get(self, key: KvKey, default: Any = None) -> Any:
        async with database.async_session_factory() as session:
            entry = await session.get(KvEntry, serialize_key(key))
        return default if entry is None else entry.value

    async def set(self, key: KvKey, value: Any) -> None:
        now = database.utcnow()
        stmt = insert(KvEntry).values(key=serialize_key(key), value=value, updated_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=[KvEntry.key],
            set_={"value": stmt.excluded.value, "updated_at": now},
        )
        async with database.async_session_factory() as session:
            async with session.begin():
                await session.execute(stmt)

    async def delete(self, key: KvKey) -> None:
        async with database.async_session_factory() as session:
            async with session.begin():
                await session.execute(delete(KvEntry).where(KvEntry.key == serialize_key(key)))

    async def list(self, prefix: KvKey = "") -> list[tuple[str, Any]]:
        """Lista (chave, valor) das entradas cujo caminho começa em `prefix`."""
        stmt = select(KvEntry).order_by(KvEntry.key)
        path = serialize_key(prefix)
        if path:
            stmt = stmt.where(
                (KvEntry.key == path) | KvEntry.key.startswith(f"{path}/", autoescape=True)
            )
        async with database.async_session_factory() as session:
            entries = (await session.scalars(stmt)).all()
        return [(entry.key, entry.value) for entry in entries]


kv_store = KvStore()
