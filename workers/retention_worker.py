"""
workers/retention_worker.py

Mantém a timeline dentro de `timeline_retention_limit` itens.

Os ids a remover são calculados ordenando por `published` (mais recente
primeiro) e pulando os N que ficam; a remoção é feita por id, seguida das
interações que apontavam para os itens removidos.
"""

import asyncio
import logging

from sqlalchemy import delete, func, select

from fedinbox import database
from fedinbox.config import settings
from fedinbox.models.interaction import InteractionRecord
from fedinbox.models.timeline_item import TimelineItem

log = logging.getLogger(__name__)


async def cleanup_timeline(retention_limit: int) -> dict:
    """Remove os itens além do limite. Retorna {removed, interactions_removed}."""
    result = {"removed": 0, "interactions_removed": 0}
    if retention_limit <= 0:
        return result

    async with database.async_session_factory() as session:
        async with session.begin():
            total = await session.scalar(select(func.count()).select_from(TimelineItem))
            if total <= retention_limit:
                return result

            rows = (
                await session.execute(
                    select(TimelineItem.id, TimelineItem.uid)
                    .order_by(TimelineItem.published.desc(), TimelineItem.id.desc())
                    .offset(retention_limit)
                )
            ).all()
            if not rows:
                return result

            ids = [row.id for row in rows]
            uids = [row.uid for row in rows if row.uid]

            deleted = await session.execute(delete(TimelineItem).where(TimelineItem.id.in_(ids)))
            result["removed"] = deleted.rowcount

            if uids:
                cascaded = await session.execute(
                    delete(InteractionRecord).where(InteractionRecord.object_url.in_(uids))
                )
                result["interactions_removed"] = cascaded.rowcount

    if result["removed"]:
        log.info(
            f"Limpeza da timeline: {result['removed']} item(ns) e "
            f"{result['interactions_removed']} interação(ões) removidos"
        )
    return result


async def run_retention_worker() -> None:
    """Limpa na inicialização e depois a cada `timeline_cleanup_interval` segundos."""
    log.info("Worker de retenção iniciado")
    while True:
        try:
            await cleanup_timeline(settings.timeline_retention_limit)
        except Exception as e:
            log.error(f"Erro na limpeza da timeline: {e}", exc_info=True)
        await asyncio.sleep(settings.timeline_cleanup_interval)
