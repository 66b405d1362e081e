"""
fedinbox/storage/notifications.py

Notificações do actor local. A inserção é idempotente por `uid`: a mesma
atividade reentregue não gera uma segunda notificação.
"""

from datetime import datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.sqlite import insert

from fedinbox import database
from fedinbox.models.notification import NOTIFICATION_TYPES, Notification

NOTIFICATION_FIELDS = (
    "uid",
    "type",
    "actor_url",
    "actor_name",
    "actor_photo",
    "actor_handle",
    "target_url",
    "content",
    "published",
)

MAX_PAGE_SIZE = 100


async def add_notification(**notification) -> bool:
    """Insere a notificação se o `uid` for novo. Retorna True se inseriu."""
    if notification.get("type") not in NOTIFICATION_TYPES:
        raise ValueError(f"Tipo de notificação inválido: {notification.get('type')!r}")
    values = {key: notification[key] for key in NOTIFICATION_FIELDS if key in notification}
    values.setdefault("published", database.utcnow())
    stmt = (
        insert(Notification)
        .values(read=False, **values)
        .on_conflict_do_nothing(index_elements=[Notification.uid])
    )
    async with database.async_session_factory() as session:
        async with session.begin():
            result = await session.execute(stmt)
    return result.rowcount > 0


async def get_notification(uid: str) -> Notification | None:
    async with database.async_session_factory() as session:
        return await session.scalar(select(Notification).where(Notification.uid == uid))


async def get_notifications(
        before: datetime | None = None,
        limit: int = 20,
        unread_only: bool = False,
) -> list[Notification]:
    limit = min(limit if limit > 0 else 20, MAX_PAGE_SIZE)
    stmt = select(Notification).order_by(Notification.published.desc(), Notification.id.desc())
    if unread_only:
        stmt = stmt.where(Notification.read.is_(False))
    if before is not None:
        stmt = stmt.where(Notification.published < before)
    async with database.async_session_factory() as session:
        return list((await session.scalars(stmt.limit(limit))).all())


async def unread_count() -> int:
    async with database.async_session_factory() as session:
        return await session.scalar(
            select(func.count()).select_from(Notification).where(Notification.read.is_(False))
        )


async def mark_read(uids: list[str]) -> int:
    async with database.async_session_factory() as session:
        async with session.begin():
            result = await session.execute(
                update(Notification).where(Notification.uid.in_(uids)).values(read=True)
            )
    return result.rowcount


async def mark_all_read() -> int:
    async with database.async_session_factory() as session:
        async with session.begin():
            result = await session.execute(update(Notification).values(read=True))
    return result.rowcount


async def delete_notification(uid: str) -> bool:
    async with database.async_session_factory() as session:
        async with session.begin():
            result = await session.execute(delete(Notification).where(Notification.uid == uid))
    return result.rowcount > 0


async def clear_notifications() -> int:
    async with database.async_session_factory() as session:
        async with session.begin():
            result = await session.execute(delete(Notification))
    return result.rowcount
