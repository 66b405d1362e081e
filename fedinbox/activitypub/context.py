"""
fedinbox/activitypub/context.py

Capacidades de rede que os handlers do inbox e os workers usam para falar
com o Fediverso, sem depender do contexto interno do apkit:

- `actor_uri` / `publication_url` — identidade do actor local
- `get_actor()` / `get_object()` / `get_target()` — resolvem referências de
  uma atividade, buscando remotamente quando só a URL foi entregue
- `get_in_reply_to()` — URL do post respondido (sem fetch)
- `lookup()` — busca assinada de um documento ActivityPub
- `send_activity()` — entrega assinada (draft-cavage) no inbox do destinatário

Qualquer falha de fetch vira `RemoteFetchError`; recusas de entrega viram
`DeliveryError`. Quem chama decide se isso interrompe ou só é registrado.
"""

import logging

from apkit.client.asyncio.client import ActivityPubClient

from fedinbox.activitypub.fields import field, href_of, id_of, is_embedded, kind_of
from fedinbox.activitypub.keys import get_actor_keys
from fedinbox.config import actor_uri, publication_url

log = logging.getLogger(__name__)

ACTIVITY_JSON = "application/activity+json"


class RemoteFetchError(Exception):
    """Objeto ou actor remoto não pôde ser obtido (secure mode, 404/410, rede)."""


class DeliveryError(Exception):
    """O inbox remoto recusou ou não recebeu a atividade."""


class FederationContext:
    """Contexto passado a cada handler do inbox e ao controlador de re-follow."""

    @property
    def actor_uri(self) -> str:
        return actor_uri()

    @property
    def publication_url(self) -> str:
        return publication_url()

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    async def lookup(self, url: str):
        """Busca assinada de um objeto remoto; retorna o documento JSON-LD."""
        if not url:
            raise RemoteFetchError("URL vazia")
        keys = await get_actor_keys()
        try:
            async with ActivityPubClient() as client:
                async with client.get(
                        url,
                        headers={"Accept": ACTIVITY_JSON},
                        signatures=keys,
                        sign_with=["draft-cavage"],
                ) as response:
                    if response.status >= 400:
                        raise RemoteFetchError(f"{url} respondeu {response.status}")
                    return await response.json(content_type=None)
        except RemoteFetchError:
            raise
        except Exception as e:
            raise RemoteFetchError(f"Falha ao buscar {url}: {e}") from e

    async def lookup_actor(self, url: str):
        if not url:
            raise RemoteFetchError("URL de actor vazia")
        try:
            async with ActivityPubClient() as client:
                actor = await client.actor.fetch(url)
        except Exception as e:
            raise RemoteFetchError(f"Falha ao buscar actor {url}: {e}") from e
        if actor is None:
            raise RemoteFetchError(f"Actor {url} não encontrado")
        return actor

    async def resolve(self, ref, *, actor: bool = False):
        """Retorna o objeto embutido ou busca a URL referenciada."""
        if isinstance(ref, (list, tuple)):
            ref = ref[0] if ref else None
        if ref is None:
            raise RemoteFetchError("Referência ausente")
        if is_embedded(ref):
            return ref
        url = id_of(ref)
        if actor:
            return await self.lookup_actor(url)
        return await self.lookup(url)

    async def get_actor(self, activity):
        return await self.resolve(field(activity, "actor"), actor=True)

    async def get_object(self, activity):
        return await self.resolve(field(activity, "object"))

    async def get_target(self, activity):
        return await self.resolve(field(activity, "target"))

    def get_in_reply_to(self, obj) -> str | None:
        return id_of(field(obj, "in_reply_to")) or None

    # ------------------------------------------------------------------
    # Entrega
    # ------------------------------------------------------------------

    async def send_activity(self, recipient, activity) -> None:
        """Entrega `activity` assinada no inbox (ou shared inbox) de `recipient`."""
        if isinstance(recipient, str):
            recipient = await self.lookup_actor(recipient)

        endpoints = field(recipient, "endpoints")
        inbox = href_of(field(endpoints, "shared_inbox")) or href_of(field(recipient, "inbox"))
        if not inbox:
            raise DeliveryError(f"Actor {id_of(recipient)} não tem inbox")

        keys = await get_actor_keys()
        try:
            async with ActivityPubClient() as client:
                async with client.post(
                        inbox,
                        json=activity,
                        signatures=keys,
                        sign_with=["draft-cavage"],
                ) as response:
                    status = response.status
                    body = await response.text()
        except Exception as e:
            raise DeliveryError(f"Erro ao entregar em {inbox}: {e}") from e

        if status >= 400:
            raise DeliveryError(f"{inbox} respondeu {status}: {body[:200]}")
        log.info(f"Atividade {kind_of(activity)} entregue em {inbox} ({status})")
