"""
fedinbox/storage/followers.py

Operações sobre os followers do actor local. Todas as escritas são
idempotentes por `actor_url`.
"""

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.sqlite import insert

from fedinbox import database
from fedinbox.models.follower import Follower

PROFILE_FIELDS = ("handle", "name", "avatar", "inbox", "shared_inbox")


async def upsert_follower(actor_url: str, **profile) -> None:
    """Cria o follower ou atualiza seus dados. Follow reentregue não duplica."""
    values = {key: profile[key] for key in PROFILE_FIELDS if key in profile}
    values["followed_at"] = database.utcnow()
    stmt = insert(Follower).values(actor_url=actor_url, **values)
    stmt = stmt.on_conflict_do_update(index_elements=[Follower.actor_url], set_=values)
    async with database.async_session_factory() as session:
        async with session.begin():
            await session.execute(stmt)


async def get_follower(actor_url: str) -> Follower | None:
    async with database.async_session_factory() as session:
        return await session.get(Follower, actor_url)


async def delete_follower(actor_url: str) -> bool:
    async with database.async_session_factory() as session:
        async with session.begin():
            result = await session.execute(delete(Follower).where(Follower.actor_url == actor_url))
    return result.rowcount > 0


async def update_follower_profile(actor_url: str, **profile) -> bool:
    """Atualiza nome/handle/avatar apenas se o follower já existir."""
    values = {key: profile[key] for key in PROFILE_FIELDS if key in profile}
    values["updated_at"] = database.utcnow()
    async with database.async_session_factory() as session:
        async with session.begin():
            result = await session.execute(
                update(Follower).where(Follower.actor_url == actor_url).values(**values)
            )
    return result.rowcount > 0


async def move_follower(old_actor_url: str, new_actor_url: str) -> bool:
    """
    Redireciona o follower para a nova conta após um Move.

    Se a nova conta já segue o actor local (ela costuma reenviar Follow logo
    após migrar), a linha antiga é apenas removida para não violar a chave.
    """
    async with database.async_session_factory() as session:
        async with session.begin():
            old = await session.get(Follower, old_actor_url)
            if old is None:
                return False
            existing = await session.get(Follower, new_actor_url)
            if existing is not None:
                existing.moved_from = old_actor_url
                await session.delete(old)
            else:
                await session.execute(
                    update(Follower)
                    .where(Follower.actor_url == old_actor_url)
                    .values(actor_url=new_actor_url, moved_from=old_actor_url)
                    .execution_options(synchronize_session=False)
                )
    return True


async def count_followers() -> int:
    async with database.async_session_factory() as session:
        return await session.scalar(select(func.count()).select_from(Follower))


async def list_followers(limit: int = 100, offset: int = 0) -> list[Follower]:
    stmt = select(Follower).order_by(Follower.followed_at.desc()).limit(limit).offset(offset)
    async with database.async_session_factory() as session:
        return list((await session.scalars(stmt)).all())
