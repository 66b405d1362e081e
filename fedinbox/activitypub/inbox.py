"""
fedinbox/activitypub/inbox.py

Máquina de estados do inbox: cada atividade recebida é roteada pelo tipo
para um handler que atualiza followers, following, timeline, notificações
e o log de atividades.

Todos os handlers toleram referências remotas que não podem ser buscadas
(servidores com secure mode, objetos apagados): `RemoteFetchError` é
registrado e o handler retorna sem gravar nada. Reentregas são seguras
porque toda escrita é um upsert pela identidade remota.
"""

import logging
import uuid
from typing import Awaitable, Callable

from apkit.models import Accept, Follow

from fedinbox.activitypub.context import DeliveryError, FederationContext, RemoteFetchError
from fedinbox.activitypub.extract import (
    extract_actor_info,
    extract_content,
    extract_object_data,
    has_renderable_content,
    is_content_object,
)
from fedinbox.activitypub.fields import (
    as_list,
    field,
    href_of,
    id_of,
    is_embedded,
    kind_of,
    parse_datetime,
    text_of,
)
from fedinbox.database import utcnow
from fedinbox.services import link_preview
from fedinbox.storage import activity_log, followers, following, notifications, timeline

log = logging.getLogger(__name__)

Handler = Callable[[FederationContext, object], Awaitable[None]]

HANDLERS: dict[str, Handler] = {}


def handles(kind: str):
    def decorator(func: Handler) -> Handler:
        HANDLERS[kind] = func
        return func

    return decorator


async def dispatch(ctx: FederationContext, activity) -> bool:
    """
    Processa uma atividade recebida. Retorna False quando o tipo não é
    tratado ou quando uma referência remota não pôde ser resolvida.
    """
    kind = kind_of(activity)
    handler = HANDLERS.get(kind)
    if handler is None:
        log.info(f"Atividade {kind or 'sem tipo'} ignorada")
        return False
    try:
        await handler(ctx, activity)
    except RemoteFetchError as e:
        log.warning(f"{kind} {id_of(activity)} descartado: {e}")
        return False
    return True


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _is_own(ctx: FederationContext, url: str) -> bool:
    return bool(url) and url.startswith(ctx.publication_url)


async def _actor_or_url(ctx: FederationContext, activity):
    """Actor resolvido, ou apenas a URL quando o fetch falha (só para exibição)."""
    try:
        return await ctx.get_actor(activity)
    except RemoteFetchError as e:
        log.debug(f"Actor de {id_of(activity)} indisponível: {e}")
        return id_of(field(activity, "actor"))


def _actor_fields(info: dict) -> dict:
    return {
        "actor_url": info["url"],
        "actor_name": info["name"],
        "actor_photo": info["photo"],
        "actor_handle": info["handle"],
    }


def _mentions_actor(obj, actor_url: str) -> bool:
    for tag in as_list(field(obj, "tag")):
        if kind_of(tag) == "Mention" and href_of(tag) == actor_url:
            return True
    return False


async def _store_timeline_item(item: dict) -> None:
    _, inserted = await timeline.add_timeline_item(item)
    if not inserted:
        return
    log.info(f"Item {item['uid']} adicionado à timeline")
    html = item["content"]["html"]
    if html:
        link_preview.schedule_preview_fetch(item["uid"], html)


# ---------------------------------------------------------------------------
# Social graph
# ---------------------------------------------------------------------------


def _follower_profile(actor) -> dict:
    info = extract_actor_info(actor)
    return {
        "handle": text_of(actor, "preferred_username"),
        "name": info["name"],
        "avatar": info["photo"],
        "inbox": href_of(field(actor, "inbox")),
        "shared_inbox": href_of(field(field(actor, "endpoints"), "shared_inbox")),
    }



@handles("Follow")
async def on_follow(ctx: FederationContext, follow) -> None:
    """Registra o follower, aceita automaticamente e notifica."""
    actor = await ctx.get_actor(follow)
    actor_url = id_of(actor)
    if not actor_url:
        return

    info = extract_actor_info(actor)
    await followers.upsert_follower(actor_url, **_follower_profile(actor))

    follow_id = id_of(follow)
    accept = Accept(
        id=f"{ctx.actor_uri}#accepts/{uuid.uuid4()}",
        actor=ctx.actor_uri,
        object=Follow(id=follow_id, actor=actor_url, object=ctx.actor_uri),
    )
    try:
        await ctx.send_activity(actor, accept)
        log.info(f"Follow aceito de {actor_url}")
    except DeliveryError as e:
        log.warning(f"Accept para {actor_url} não foi entregue: {e}")

    await activity_log.log_activity(
        direction="inbound",
        type="Follow",
        actor_url=actor_url,
        actor_name=info["name"],
        summary=f"{info['name']} seguiu você",
    )
    await notifications.add_notification(
        uid=follow_id or f"follow:{actor_url}",
        type="follow",
        **_actor_fields(info),
    )


@handles("Undo")
async def on_undo(ctx: FederationContext, undo) -> None:
    actor_url = id_of(field(undo, "actor"))
    inner = await ctx.get_object(undo)
    inner_kind = kind_of(inner)

    if inner_kind == "Follow":
        await followers.delete_follower(actor_url)
        await activity_log.log_activity(
            direction="inbound",
            type="Undo(Follow)",
            actor_url=actor_url,
            summary=f"{actor_url} deixou de seguir você",
        )
        log.info(f"Follower removido: {actor_url}")
    elif inner_kind in ("Like", "Announce"):
        object_url = id_of(field(inner, "object"))
        removed = await activity_log.delete_matching(inner_kind, actor_url, object_url)
        log.info(f"Undo({inner_kind}) de {actor_url} em {object_url}: {removed} registro(s)")
    else:
        await activity_log.log_activity(
            direction="inbound",
            type=f"Undo({inner_kind or 'unknown'})",
            actor_url=actor_url,
            summary=f"{actor_url} desfez {inner_kind or 'unknown'}",
        )


@handles("Accept")
async def on_accept(ctx: FederationContext, accept) -> None:
    """
    Accept de um Follow nosso. O objeto interno não é inspecionado: vários
    servidores devolvem o actor em vez do Follow. A correlação é feita pela
    URL do actor contra os alvos com `source` pendente.
    """
    actor_url = id_of(field(accept, "actor"))
    if not actor_url:
        return
    target = await following.mark_accepted(actor_url)
    if target is None:
        log.debug(f"Accept de {actor_url} sem Follow pendente")
        return

    name = target.name or target.handle or actor_url
    await activity_log.log_activity(
        direction="inbound",
        type="Accept(Follow)",
        actor_url=actor_url,
        actor_name=name,
        summary=f"{name} aceitou nosso Follow",
    )
    log.info(f"Follow aceito por {actor_url}")


@handles("Reject")
async def on_reject(ctx: FederationContext, reject) -> None:
    actor_url = id_of(field(reject, "actor"))
    if not actor_url:
        return
    target = await following.mark_rejected(actor_url)
    if target is None:
        return

    name = target.name or target.handle or actor_url
    await activity_log.log_activity(
        direction="inbound",
        type="Reject(Follow)",
        actor_url=actor_url,
        actor_name=name,
        summary=f"{name} recusou nosso Follow",
    )
    log.info(f"Follow recusado por {actor_url}")


@handles("Move")
async def on_move(ctx: FederationContext, move) -> None:
    old_url = id_of(field(move, "actor"))
    new_url = id_of(field(move, "target"))
    if not old_url or not new_url:
        return

    # A conta nova traz o inbox para onde as próximas entregas devem ir
    try:
        new_account = await ctx.get_target(move)
    except RemoteFetchError as e:
        log.warning(f"Conta nova {new_url} indisponível, mantendo dados antigos: {e}")
        new_account = None

    moved = await followers.move_follower(old_url, new_url)
    if moved and new_account is not None:
        await followers.update_follower_profile(new_url, **_follower_profile(new_account))
    await activity_log.log_activity(
        direction="inbound",
        type="Move",
        actor_url=old_url,
        object_url=new_url,
        summary=f"{old_url} migrou para {new_url}",
    )
    if moved:
        log.info(f"Follower {old_url} migrado para {new_url}")


@handles("Block")
async def on_block(ctx: FederationContext, block) -> None:
    actor_url = id_of(field(block, "actor"))
    if actor_url and await followers.delete_follower(actor_url):
        log.info(f"{actor_url} bloqueou o actor local, follower removido")


# ---------------------------------------------------------------------------
# Interações com conteúdo
# ---------------------------------------------------------------------------


@handles("Like")
async def on_like(ctx: FederationContext, like) -> None:
    """Só likes em conteúdo da publicação local interessam."""
    object_url = id_of(field(like, "object"))
    if not _is_own(ctx, object_url):
        return

    info = extract_actor_info(await _actor_or_url(ctx, like))
    await activity_log.log_activity(
        direction="inbound",
        type="Like",
        actor_url=info["url"],
        actor_name=info["name"],
        object_url=object_url,
        summary=f"{info['name']} curtiu {object_url}",
    )
    await notifications.add_notification(
        uid=id_of(like) or f"like:{info['url']}:{object_url}",
        type="like",
        target_url=object_url,
        **_actor_fields(info),
    )


@handles("Announce")
async def on_announce(ctx: FederationContext, announce) -> None:
    """
    Dois caminhos independentes para o mesmo evento:
    1. boost de conteúdo local → log + notificação
    2. boost feito por alguém que seguimos → objeto entra na timeline
    """
    object_url = id_of(field(announce, "object"))
    actor_url = id_of(field(announce, "actor"))
    if not object_url or not actor_url:
        return

    own = _is_own(ctx, object_url)
    followed = await following.is_following(actor_url)
    if not own and not followed:
        return

    info = extract_actor_info(await _actor_or_url(ctx, announce))

    if own:
        await activity_log.log_activity(
            direction="inbound",
            type="Announce",
            actor_url=actor_url,
            actor_name=info["name"],
            object_url=object_url,
            summary=f"{info['name']} impulsionou {object_url}",
        )
        await notifications.add_notification(
            uid=id_of(announce) or f"boost:{actor_url}:{object_url}",
            type="boost",
            target_url=object_url,
            **_actor_fields(info),
        )

    if not followed:
        return

    try:
        obj = await ctx.get_object(announce)
    except RemoteFetchError as e:
        log.warning(f"Objeto impulsionado {object_url} indisponível: {e}")
        return
    if not has_renderable_content(obj):
        log.info(f"Boost de {object_url} sem conteúdo renderizável, ignorado")
        return

    author = field(obj, "attributed_to")
    try:
        author = await ctx.resolve(author, actor=True)
    except RemoteFetchError:
        author = id_of(author)

    item = extract_object_data(
        obj,
        author=author,
        boosted_by=info,
        boosted_at=parse_datetime(field(announce, "published")) or utcnow(),
    )
    await _store_timeline_item(item)


@handles("Create")
async def on_create(ctx: FederationContext, create) -> None:
    obj = await ctx.get_object(create)
    object_url = id_of(obj)
    if not object_url:
        return

    actor_url = id_of(field(create, "actor"))
    author = await _actor_or_url(ctx, create)
    info = extract_actor_info(author)
    in_reply_to = ctx.get_in_reply_to(obj)
    is_reply = _is_own(ctx, in_reply_to)
    mentioned = _mentions_actor(obj, ctx.actor_uri)
    content = extract_content(obj)["content"] if is_reply or mentioned else None

    if is_reply:
        await activity_log.log_activity(
            direction="inbound",
            type="Reply",
            actor_url=actor_url,
            actor_name=info["name"],
            object_url=object_url,
            target_url=in_reply_to,
            content=content["html"],
            summary=f"{info['name']} respondeu {in_reply_to}",
        )
        await notifications.add_notification(
            uid=f"reply:{object_url}",
            type="reply",
            target_url=in_reply_to,
            content=content,
            published=parse_datetime(field(obj, "published")) or utcnow(),
            **_actor_fields(info),
        )

    if mentioned:
        await notifications.add_notification(
            uid=f"mention:{object_url}",
            type="mention",
            target_url=href_of(field(obj, "url")) or object_url,
            content=content,
            published=parse_datetime(field(obj, "published")) or utcnow(),
            **_actor_fields(info),
        )

    if await following.is_following(actor_url):
        if not has_renderable_content(obj):
            return
        await _store_timeline_item(extract_object_data(obj, author=author))


@handles("Update")
async def on_update(ctx: FederationContext, update) -> None:
    """
    Post editado → atualiza o item da timeline no lugar.
    Qualquer outra coisa → atualização de perfil do actor, aplicada só se
    ele já for follower.
    """
    obj = field(update, "object")
    if not is_embedded(obj):
        obj = await ctx.get_object(update)

    if is_content_object(obj):
        uid = id_of(obj)
        if await timeline.update_timeline_item(uid, extract_content(obj)):
            log.info(f"Item {uid} atualizado")
        return

    actor_url = id_of(field(update, "actor"))
    if not actor_url or await followers.get_follower(actor_url) is None:
        return
    profile = obj if id_of(obj) == actor_url else await ctx.get_actor(update)
    info = extract_actor_info(profile)
    await followers.update_follower_profile(
        actor_url,
        name=info["name"],
        handle=text_of(profile, "preferred_username"),
        avatar=info["photo"],
    )
    log.info(f"Perfil de {actor_url} atualizado")


@handles("Delete")
async def on_delete(ctx: FederationContext, delete) -> None:
    object_url = id_of(field(delete, "object"))
    if not object_url:
        return
    await activity_log.delete_by_object_url(object_url)
    if await timeline.delete_timeline_item(object_url):
        log.info(f"Item {object_url} removido da timeline")


@handles("Add")
@handles("Remove")
async def on_collection_change(ctx: FederationContext, activity) -> None:
    # Pin/unpin em coleções featured
    log.debug(f"{kind_of(activity)} de {id_of(field(activity, 'actor'))} ignorado")
