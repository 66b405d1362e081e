"""
fedinbox/migrations.py

Migrações de dados executadas uma única vez na inicialização.

Cada migração tem uma entrada no KV em `migration/<nome>`:
    {"completed": true, "date": "<ISO 8601>", "updated": <linhas alteradas>}
Ela é consultada antes de rodar o corpo da migração e gravada ao final.
"""

import logging
from typing import Awaitable, Callable

from sqlalchemy import select

from fedinbox import database
from fedinbox.models.timeline_item import TimelineItem
from fedinbox.storage.kv_store import kv_store

log = logging.getLogger(__name__)

Migration = Callable[[], Awaitable[int]]


async def run_migration(name: str, body: Migration) -> dict:
    """
    Executa `body` se a migração ainda não foi concluída.
    Retorna {"skipped": bool, "updated": int}.
    """
    key = ("migration", name)
    state = await kv_store.get(key) or {}
    if state.get("completed"):
        return {"skipped": True, "updated": 0}

    updated = await body()
    await kv_store.set(
        key,
        {"completed": True, "date": database.utcnow().isoformat(), "updated": updated},
    )
    log.info(f"Migração {name} concluída: {updated} registro(s) alterado(s)")
    return {"skipped": False, "updated": updated}


async def separate_mentions() -> int:
    """
    Move entradas "@usuario@instancia" de `category` para `mentions`.
    Itens antigos não guardavam a URL da menção, então ela fica vazia.
    """
    updated = 0
    async with database.async_session_factory() as session:
        async with session.begin():
            items = (await session.scalars(select(TimelineItem))).all()
            for item in items:
                category = item.category or []
                if not any(isinstance(c, str) and c.startswith("@") for c in category):
                    continue

                mentions = list(item.mentions or [])
                remaining = []
                for entry in category:
                    if isinstance(entry, str) and entry.startswith("@"):
                        name = entry[1:]
                        if all(m.get("name") != name for m in mentions):
                            mentions.append({"name": name, "url": ""})
                    else:
                        remaining.append(entry)

                item.category = remaining
                item.mentions = mentions
                updated += 1
    return updated


MIGRATIONS: list[tuple[str, Migration]] = [
    ("separate-mentions", separate_mentions),
]


async def run_migrations() -> None:
    for name, body in MIGRATIONS:
        await run_migration(name, body)
