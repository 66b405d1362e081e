"""
fedinbox/storage/timeline.py

Operações sobre a timeline. Os itens chegam aqui já normalizados por
`fedinbox.activitypub.extract.extract_object_data`.
"""

from datetime import datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.sqlite import insert

from fedinbox import database
from fedinbox.models.timeline_item import TimelineItem

ITEM_FIELDS = (
    "uid",
    "type",
    "url",
    "name",
    "content",
    "summary",
    "sensitive",
    "published",
    "author",
    "category",
    "mentions",
    "photo",
    "video",
    "audio",
    "in_reply_to",
    "boosted_by",
    "boosted_at",
    "link_previews",
)

UPDATABLE_FIELDS = ("content", "name", "summary", "sensitive")

MAX_PAGE_SIZE = 100


async def add_timeline_item(item: dict) -> tuple[TimelineItem, bool]:
    """
    Insere o item se o `uid` ainda não existir; caso contrário mantém o
    registro atual. Retorna (item armazenado, True se foi inserido agora).
    """
    values = {key: item[key] for key in ITEM_FIELDS if key in item}
    values.setdefault("published", database.utcnow())
    stmt = (
        insert(TimelineItem)
        .values(**values)
        .on_conflict_do_nothing(index_elements=[TimelineItem.uid])
    )
    async with database.async_session_factory() as session:
        async with session.begin():
            result = await session.execute(stmt)
        stored = await session.scalar(select(TimelineItem).where(TimelineItem.uid == item["uid"]))
    return stored, result.rowcount > 0


async def get_timeline_item(uid: str) -> TimelineItem | None:
    async with database.async_session_factory() as session:
        return await session.scalar(select(TimelineItem).where(TimelineItem.uid == uid))


async def get_timeline_items(
        before: datetime | None = None,
        after: datetime | None = None,
        limit: int = 20,
        author_url: str | None = None,
        tag: str | None = None,
) -> list[TimelineItem]:
    """Página de itens, do mais recente para o mais antigo."""
    limit = min(limit if limit > 0 else 20, MAX_PAGE_SIZE)
    stmt = select(TimelineItem).order_by(TimelineItem.published.desc(), TimelineItem.id.desc())
    if before is not None:
        stmt = stmt.where(TimelineItem.published < before)
    elif after is not None:
        stmt = stmt.where(TimelineItem.published > after)
    if author_url:
        stmt = stmt.where(func.json_extract(TimelineItem.author, "$.url") == author_url)
    if not tag:
        stmt = stmt.limit(limit)
    async with database.async_session_factory() as session:
        items = list((await session.scalars(stmt)).all())
    if tag:
        # category é uma lista JSON; o filtro por hashtag é feito em Python
        wanted = tag.lstrip("#").lower()
        items = [item for item in items if wanted in (c.lower() for c in item.category or [])]
    return items[:limit]


async def update_timeline_item(uid: str, updates: dict) -> bool:
    """Atualiza conteúdo/título/aviso de um item existente (Update remoto)."""
    values = {key: updates[key] for key in UPDATABLE_FIELDS if key in updates}
    if not values:
        return False
    async with database.async_session_factory() as session:
        async with session.begin():
            result = await session.execute(
                update(TimelineItem).where(TimelineItem.uid == uid).values(**values)
            )
    return result.rowcount > 0


async def set_link_previews(uid: str, previews: list[dict]) -> bool:
    async with database.async_session_factory() as session:
        async with session.begin():
            result = await session.execute(
                update(TimelineItem).where(TimelineItem.uid == uid).values(link_previews=previews)
            )
    return result.rowcount > 0


async def delete_timeline_item(uid: str) -> bool:
    async with database.async_session_factory() as session:
        async with session.begin():
            result = await session.execute(delete(TimelineItem).where(TimelineItem.uid == uid))
    return result.rowcount > 0


async def count_timeline_items() -> int:
    async with database.async_session_factory() as session:
        return await session.scalar(select(func.count()).select_from(TimelineItem))
