import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from apkit.server.app import ActivityPubServer
from apkit.server.responses import ActivityResponse
from apkit.models import (
    Nodeinfo, NodeinfoSoftware,
    NodeinfoServices, NodeinfoUsage, NodeinfoUsageUsers,
)
from apkit.client import WebfingerResource, WebfingerResult, WebfingerLink

from fedinbox.config import actor_uri, settings
from fedinbox.activitypub import interactions
from fedinbox.activitypub.actor import build_actor
from fedinbox.activitypub.context import DeliveryError, FederationContext
from fedinbox.activitypub.handlers import register_handlers

logging.basicConfig(level=logging.INFO)

actor = build_actor()


@asynccontextmanager
async def lifespan(app):
    import fedinbox.database
    import fedinbox.migrations
    import fedinbox.services.link_preview
    import workers.refollow_worker
    import workers.retention_worker

    await fedinbox.database.init_db()
    await fedinbox.migrations.run_migrations()

    tasks = [
        asyncio.create_task(workers.retention_worker.run_retention_worker()),
        asyncio.create_task(workers.refollow_worker.run_refollow_worker()),
    ]
    yield
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    await fedinbox.services.link_preview.drain_pending()


api = ActivityPubServer(lifespan=lifespan)
register_handlers(api)
api.inbox("/users/{identifier}/inbox")


@api.get("/users/{identifier}")
async def get_actor(identifier: str):
    if identifier == settings.actor_username:
        return ActivityResponse(actor)
    return JSONResponse({"error": "Not found"}, status_code=404)


@api.webfinger()
async def webfinger(request: Request, acct: WebfingerResource) -> Response:
    if acct.username == settings.actor_username and acct.host == settings.domain:
        link = WebfingerLink(
            rel="self",
            type="application/activity+json",
            href=actor_uri(),
        )
        result = WebfingerResult(subject=acct, links=[link])
        return JSONResponse(result.to_json(), media_type="application/jrd+json")
    return JSONResponse({"error": "Not found"}, status_code=404)


@api.nodeinfo("/nodeinfo/2.1", "2.1")
async def nodeinfo():
    return ActivityResponse(
        Nodeinfo(
            version="2.1",
            software=NodeinfoSoftware(name="fedinbox", version="1.0.0"),
            protocols=["activitypub"],
            services=NodeinfoServices(inbound=[], outbound=[]),
            openRegistrations=False,
            usage=NodeinfoUsage(users=NodeinfoUsageUsers(total=1)),
            metadata={},
        )
    )


@api.get("/health")
async def health():
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# Administração do re-follow em lote
# ---------------------------------------------------------------------------


@api.post("/admin/refollow/pause")
async def pause_refollow():
    from workers.refollow_worker import refollow_controller

    await refollow_controller.pause()
    return {"ok": True, "status": "paused"}


@api.post("/admin/refollow/resume")
async def resume_refollow():
    from workers.refollow_worker import refollow_controller

    await refollow_controller.resume()
    return {"ok": True, "status": "running"}


@api.get("/admin/refollow/status")
async def refollow_status():
    from workers.refollow_worker import refollow_controller

    return await refollow_controller.status()


# ---------------------------------------------------------------------------
# Likes e boosts enviados pelo actor local
# ---------------------------------------------------------------------------


class InteractionRequest(BaseModel):
    url: str


async def _interact(action, url: str) -> JSONResponse:
    try:
        result = await action(FederationContext(), url)
    except interactions.InteractionError as e:
        return JSONResponse({"ok": False, "error": str(e)}, status_code=404)
    except DeliveryError as e:
        return JSONResponse({"ok": False, "error": str(e)}, status_code=502)
    if isinstance(result, bool):
        return JSONResponse({"ok": True, "removed": result})
    return JSONResponse({"ok": True, "activity_id": result})


@api.post("/admin/interactions/like")
async def like_post(body: InteractionRequest):
    return await _interact(interactions.like, body.url)


@api.post("/admin/interactions/unlike")
async def unlike_post(body: InteractionRequest):
    return await _interact(interactions.unlike, body.url)


@api.post("/admin/interactions/boost")
async def boost_post(body: InteractionRequest):
    return await _interact(interactions.boost, body.url)


@api.post("/admin/interactions/unboost")
async def unboost_post(body: InteractionRequest):
    return await _interact(interactions.unboost, body.url)
