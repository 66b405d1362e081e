"""
fedinbox/storage/activity_log.py

Log de atividades recebidas e enviadas, para visibilidade do operador.

Falhas ao gravar o log são apenas registradas: o processamento de uma
atividade nunca deve falhar por causa do log.
"""

import logging

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from fedinbox import database
from fedinbox.models.activity_log import ActivityLogEntry

log = logging.getLogger(__name__)

LOG_FIELDS = (
    "direction",
    "type",
    "actor_url",
    "actor_name",
    "object_url",
    "target_url",
    "content",
    "summary",
)


async def log_activity(**record) -> None:
    """
    Grava uma entrada no log. Campos aceitos: direction ("inbound" |
    "outbound"), type, actor_url, actor_name, object_url, target_url,
    content e summary.
    """
    entry = ActivityLogEntry(**{key: record[key] for key in LOG_FIELDS if key in record})
    try:
        async with database.async_session_factory() as session:
            async with session.begin():
                session.add(entry)
    except SQLAlchemyError as e:
        log.warning(f"Falha ao registrar atividade {record.get('type')}: {e}")


async def delete_by_object_url(object_url: str) -> int:
    async with database.async_session_factory() as session:
        async with session.begin():
            result = await session.execute(
                delete(ActivityLogEntry).where(ActivityLogEntry.object_url == object_url)
            )
    return result.rowcount


async def delete_matching(type: str, actor_url: str, object_url: str) -> int:
    """Remove as entradas de uma atividade desfeita (Undo de Like/Announce)."""
    async with database.async_session_factory() as session:
        async with session.begin():
            result = await session.execute(
                delete(ActivityLogEntry).where(
                    ActivityLogEntry.type == type,
                    ActivityLogEntry.actor_url == actor_url,
                    ActivityLogEntry.object_url == object_url,
                )
            )
    return result.rowcount


async def recent_activities(limit: int = 50, direction: str | None = None) -> list[ActivityLogEntry]:
    stmt = select(ActivityLogEntry).order_by(
        ActivityLogEntry.received_at.desc(), ActivityLogEntry.id.desc()
    )
    if direction:
        stmt = stmt.where(ActivityLogEntry.direction == direction)
    async with database.async_session_factory() as session:
        return list((await session.scalars(stmt.limit(limit))).all())
