"""
fedinbox/activitypub/interactions.py

Likes e boosts enviados pelo actor local.

- like / unlike   → Like e Undo(Like) entregues ao autor do post
- boost / unboost → Announce e Undo(Announce) entregues aos followers
                    (shared inbox quando houver) e ao autor do post

Cada envio mantém o `InteractionRecord` correspondente: o id guardado é
reutilizado no Undo. Se o autor não puder ser resolvido no Undo, o
registro local é removido mesmo assim.
"""

import logging
import uuid

from apkit.models import Announce, Like, Undo

from fedinbox.activitypub.context import DeliveryError, FederationContext, RemoteFetchError
from fedinbox.activitypub.fields import field, id_of
from fedinbox.storage import followers, interactions

log = logging.getLogger(__name__)

PUBLIC = "https://www.w3.org/ns/activitystreams#Public"


class InteractionError(Exception):
    """O post ou seu autor não puderam ser resolvidos para a interação."""


async def _resolve_author(ctx: FederationContext, url: str):
    obj = await ctx.lookup(url)
    author = field(obj, "attributed_to")
    if not author:
        raise InteractionError(f"Post {url} não tem autor")
    return await ctx.resolve(author, actor=True)


def _new_activity_id() -> str:
    return f"urn:uuid:{uuid.uuid4()}"


async def _deliver_to_followers(ctx: FederationContext, activity) -> int:
    """Entrega uma vez por inbox; followers da mesma instância dividem o shared inbox."""
    delivered, seen = 0, set()
    for follower in await followers.list_followers(limit=10_000):
        inbox = follower.shared_inbox or follower.inbox
        if not inbox or inbox in seen:
            continue
        seen.add(inbox)
        recipient = {
            "id": follower.actor_url,
            "inbox": follower.inbox,
            "endpoints": {"sharedInbox": follower.shared_inbox},
        }
        try:
            await ctx.send_activity(recipient, activity)
            delivered += 1
        except DeliveryError as e:
            log.warning(f"Entrega para {inbox} falhou: {e}")
    return delivered


async def like(ctx: FederationContext, url: str) -> str:
    """Curte `url`. Retorna o id da atividade Like enviada."""
    try:
        recipient = await _resolve_author(ctx, url)
    except RemoteFetchError as e:
        raise InteractionError(f"Não foi possível resolver {url}: {e}") from e

    activity_id = _new_activity_id()
    activity = Like(id=activity_id, actor=ctx.actor_uri, object=url)
    await ctx.send_activity(recipient, activity)

    await interactions.record_interaction(url, "like", activity_id, id_of(recipient))
    log.info(f"Like enviado para {url}")
    return activity_id


async def unlike(ctx: FederationContext, url: str) -> bool:
    """Desfaz o like em `url`. Retorna False se não havia like registrado."""
    existing = await interactions.get_interaction(url, "like")
    if existing is None:
        return False

    try:
        recipient = await _resolve_author(ctx, url)
    except (RemoteFetchError, InteractionError) as e:
        log.warning(f"Autor de {url} indisponível, removendo só o registro local: {e}")
        await interactions.remove_interaction(url, "like")
        return True

    undo = Undo(
        id=_new_activity_id(),
        actor=ctx.actor_uri,
        object=Like(id=existing.activity_id, actor=ctx.actor_uri, object=url),
    )
    await ctx.send_activity(recipient, undo)
    await interactions.remove_interaction(url, "like")
    log.info(f"Undo(Like) enviado para {url}")
    return True


async def boost(ctx: FederationContext, url: str) -> str:
    """Impulsiona `url` para os followers e avisa o autor do post."""
    activity_id = _new_activity_id()
    activity = Announce(
        id=activity_id,
        actor=ctx.actor_uri,
        object=url,
        to=[PUBLIC],
        cc=[f"{ctx.actor_uri}/followers"],
    )
    delivered = await _deliver_to_followers(ctx, activity)

    recipient_url = ""
    try:
        recipient = await _resolve_author(ctx, url)
        await ctx.send_activity(recipient, activity)
        recipient_url = id_of(recipient)
    except (RemoteFetchError, InteractionError, DeliveryError) as e:
        log.warning(f"Boost de {url} não entregue ao autor: {e}")

    await interactions.record_interaction(url, "boost", activity_id, recipient_url)
    log.info(f"Announce de {url} entregue em {delivered} inbox(es)")
    return activity_id


async def unboost(ctx: FederationContext, url: str) -> bool:
    existing = await interactions.get_interaction(url, "boost")
    if existing is None:
        return False

    undo = Undo(
        id=_new_activity_id(),
        actor=ctx.actor_uri,
        object=Announce(id=existing.activity_id, actor=ctx.actor_uri, object=url),
        to=[PUBLIC],
        cc=[f"{ctx.actor_uri}/followers"],
    )
    await _deliver_to_followers(ctx, undo)
    if existing.recipient_url:
        try:
            await ctx.send_activity(existing.recipient_url, undo)
        except (RemoteFetchError, DeliveryError) as e:
            log.warning(f"Undo(Announce) de {url} não entregue ao autor: {e}")

    await interactions.remove_interaction(url, "boost")
    log.info(f"Undo(Announce) enviado para {url}")
    return True
