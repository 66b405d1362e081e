"""
fedinbox/storage/interactions.py

Likes e boosts enviados pelo actor local, um registro por (objeto, tipo).
"""

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.sqlite import insert

from fedinbox import database
from fedinbox.models.interaction import InteractionRecord

INTERACTION_TYPES = ("like", "boost")


async def record_interaction(
        object_url: str,
        type: str,
        activity_id: str,
        recipient_url: str = "",
) -> None:
    if type not in INTERACTION_TYPES:
        raise ValueError(f"Tipo de interação inválido: {type!r}")
    now = database.utcnow()
    stmt = insert(InteractionRecord).values(
        object_url=object_url,
        type=type,
        activity_id=activity_id,
        recipient_url=recipient_url,
        created_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[InteractionRecord.object_url, InteractionRecord.type],
        set_={"activity_id": activity_id, "recipient_url": recipient_url, "created_at": now},
    )
    async with database.async_session_factory() as session:
        async with session.begin():
            await session.execute(stmt)


async def get_interaction(object_url: str, type: str) -> InteractionRecord | None:
    async with database.async_session_factory() as session:
        return await session.scalar(
            select(InteractionRecord).where(
                InteractionRecord.object_url == object_url,
                InteractionRecord.type == type,
            )
        )


async def remove_interaction(object_url: str, type: str) -> bool:
    async with database.async_session_factory() as session:
        async with session.begin():
            result = await session.execute(
                delete(InteractionRecord).where(
                    InteractionRecord.object_url == object_url,
                    InteractionRecord.type == type,
                )
            )
    return result.rowcount > 0


async def remove_interactions_for(object_urls: list[str]) -> int:
    if not object_urls:
        return 0
    async with database.async_session_factory() as session:
        async with session.begin():
            result = await session.execute(
                delete(InteractionRecord).where(InteractionRecord.object_url.in_(object_urls))
            )
    return result.rowcount


async def count_interactions() -> int:
    async with database.async_session_factory() as session:
        return await session.scalar(select(func.count()).select_from(InteractionRecord))
