"""
fedinbox/storage/following.py

Operações sobre os actors seguidos pelo actor local e a contabilidade do
re-follow em lote.

Accept/Reject são correlacionados pela URL do actor e por um `source`
pendente, não pelo id do Follow original: servidores remotos nem sempre
devolvem o Follow intacto dentro do Accept. Dois follows independentes para
o mesmo actor seriam indistinguíveis aqui.
"""

from datetime import datetime, timedelta

from sqlalchemy import and_, func, or_, select
from sqlalchemy.dialects.sqlite import insert

from fedinbox import database
from fedinbox.models.following import (
    PENDING_SOURCES,
    SOURCE_FEDERATION,
    SOURCE_IMPORT,
    SOURCE_MICROSUB_READER,
    SOURCE_REFOLLOW_FAILED,
    SOURCE_REFOLLOW_SENT,
    SOURCE_REJECTED,
    FollowingTarget,
)

PROFILE_FIELDS = ("name", "handle", "inbox", "shared_inbox")

CLEARED_REFOLLOW_FIELDS = {
    "refollow_attempts": None,
    "refollow_last_attempt": None,
    "refollow_error": None,
}


async def upsert_following(actor_url: str, source: str = SOURCE_FEDERATION, **profile) -> None:
    values = {key: profile[key] for key in PROFILE_FIELDS if key in profile}
    stmt = insert(FollowingTarget).values(actor_url=actor_url, source=source, **values)
    stmt = stmt.on_conflict_do_update(
        index_elements=[FollowingTarget.actor_url],
        set_={"source": source, **values},
    )
    async with database.async_session_factory() as session:
        async with session.begin():
            await session.execute(stmt)


async def import_following(entries: list[dict]) -> int:
    """
    Importa contas seguidas (ex: exportação do Mastodon) com `source=import`.
    Contas já presentes não são tocadas. Retorna quantas foram inseridas.
    """
    imported = 0
    async with database.async_session_factory() as session:
        async with session.begin():
            for entry in entries:
                values = {key: entry[key] for key in PROFILE_FIELDS if key in entry}
                stmt = (
                    insert(FollowingTarget)
                    .values(actor_url=entry["actor_url"], source=SOURCE_IMPORT, **values)
                    .on_conflict_do_nothing(index_elements=[FollowingTarget.actor_url])
                )
                result = await session.execute(stmt)
                imported += result.rowcount
    return imported


async def get_following(actor_url: str) -> FollowingTarget | None:
    async with database.async_session_factory() as session:
        return await session.scalar(
            select(FollowingTarget).where(FollowingTarget.actor_url == actor_url)
        )


async def is_following(actor_url: str) -> bool:
    if not actor_url:
        return False
    return await get_following(actor_url) is not None


async def delete_following(actor_url: str) -> bool:
    async with database.async_session_factory() as session:
        async with session.begin():
            target = await session.scalar(
                select(FollowingTarget).where(FollowingTarget.actor_url == actor_url)
            )
            if target is None:
                return False
            await session.delete(target)
    return True


async def _transition_pending(actor_url: str, values: dict) -> FollowingTarget | None:
    async with database.async_session_factory() as session:
        async with session.begin():
            target = await session.scalar(
                select(FollowingTarget).where(
                    FollowingTarget.actor_url == actor_url,
                    FollowingTarget.source.in_(PENDING_SOURCES),
                )
            )
            if target is None:
                return None
            for key, value in {**values, **CLEARED_REFOLLOW_FIELDS}.items():
                setattr(target, key, value)
    return target


async def mark_accepted(actor_url: str) -> FollowingTarget | None:
    """Accept(Follow): pendente → federation. Retorna a linha alterada ou None."""
    return await _transition_pending(
        actor_url, {"source": SOURCE_FEDERATION, "accepted_at": database.utcnow()}
    )


async def mark_rejected(actor_url: str) -> FollowingTarget | None:
    """Reject(Follow): pendente → rejected."""
    return await _transition_pending(
        actor_url, {"source": SOURCE_REJECTED, "rejected_at": database.utcnow()}
    )


# ---------------------------------------------------------------------------
# Re-follow em lote
# ---------------------------------------------------------------------------


def _refollow_filter(max_retries: int, retry_cooldown: float, now: datetime | None = None):
    """Alvos que precisam de (novo) Follow: nunca aceitos e com tentativas restantes."""
    cutoff = (now or database.utcnow()) - timedelta(seconds=retry_cooldown)
    return or_(
        FollowingTarget.source.in_((SOURCE_IMPORT, SOURCE_MICROSUB_READER)),
        and_(
            FollowingTarget.source == SOURCE_REFOLLOW_SENT,
            func.coalesce(FollowingTarget.refollow_attempts, 0) < max_retries,
            or_(
                FollowingTarget.refollow_last_attempt.is_(None),
                FollowingTarget.refollow_last_attempt < cutoff,
            ),
        ),
    )


async def next_refollow_candidate(
        after_id: int,
        max_retries: int,
        retry_cooldown: float,
) -> FollowingTarget | None:
    stmt = (
        select(FollowingTarget)
        .where(FollowingTarget.id > after_id, _refollow_filter(max_retries, retry_cooldown))
        .order_by(FollowingTarget.id)
        .limit(1)
    )
    async with database.async_session_factory() as session:
        return await session.scalar(stmt)


async def count_refollow_candidates(after_id: int, max_retries: int, retry_cooldown: float) -> int:
    stmt = (
        select(func.count())
        .select_from(FollowingTarget)
        .where(FollowingTarget.id > after_id, _refollow_filter(max_retries, retry_cooldown))
    )
    async with database.async_session_factory() as session:
        return await session.scalar(stmt)


async def record_refollow_success(target_id: int, canonical_url: str | None = None) -> None:
    async with database.async_session_factory() as session:
        async with session.begin():
            target = await session.get(FollowingTarget, target_id)
            if target is None:
                return
            target.source = SOURCE_REFOLLOW_SENT
            target.refollow_last_attempt = database.utcnow()
            target.refollow_error = None
            target.refollow_attempts = (target.refollow_attempts or 0) + 1
            if canonical_url and canonical_url != target.actor_url:
                # Accept chega com a URL canônica; guardá-la permite a correlação
                taken = await session.scalar(
                    select(FollowingTarget.id).where(FollowingTarget.actor_url == canonical_url)
                )
                if taken is None:
                    target.actor_url = canonical_url


async def record_refollow_failure(target_id: int, error: str, max_retries: int) -> int:
    """Registra a falha e retorna o total de tentativas do alvo."""
    async with database.async_session_factory() as session:
        async with session.begin():
            target = await session.get(FollowingTarget, target_id)
            if target is None:
                return 0
            attempts = (target.refollow_attempts or 0) + 1
            target.refollow_attempts = attempts
            target.refollow_last_attempt = database.utcnow()
            target.refollow_error = error
            target.source = (
                SOURCE_REFOLLOW_FAILED if attempts >= max_retries else SOURCE_REFOLLOW_SENT
            )
    return attempts


async def count_by_source() -> dict[str, int]:
    stmt = select(FollowingTarget.source, func.count()).group_by(FollowingTarget.source)
    async with database.async_session_factory() as session:
        rows = (await session.execute(stmt)).all()
    return {source: count for source, count in rows}
