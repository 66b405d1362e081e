"""
workers/refollow_worker.py

Re-follow em lote: reenvia Follow para as contas seguidas que nunca
confirmaram (importadas de outra instância, vindas do leitor ou com Follow
anterior sem Accept).

- Um Follow por alvo, com `refollow_delay_per_follow` segundos entre envios
- Ordem estável por `id`; o cursor é gravado no KV após cada envio, então um
  restart continua de onde parou
- `pause()` é cooperativo: o envio em andamento termina, o próximo não começa
- Falhas incrementam `refollow_attempts`; em `refollow_max_retries` o alvo
  vai para `refollow:failed`
- Accept/Reject recebidos pelo inbox tiram o alvo do filtro de pendentes

Estado em `batch-refollow/state`:
    {status, cursor, processed, total, last_error, started_at, updated_at}
"""

import asyncio
import logging
import uuid

from apkit.models import Follow

from fedinbox.activitypub.context import DeliveryError, FederationContext, RemoteFetchError
from fedinbox.activitypub.fields import id_of
from fedinbox.config import settings
from fedinbox.database import utcnow
from fedinbox.storage import activity_log, following
from fedinbox.storage.kv_store import kv_store

log = logging.getLogger(__name__)

STATE_KEY = ("batch-refollow", "state")

STATUS_RUNNING = "running"
STATUS_PAUSED = "paused"
STATUS_IDLE = "idle"


def _initial_state() -> dict:
    return {
        "status": STATUS_IDLE,
        "cursor": 0,
        "processed": 0,
        "total": 0,
        "last_error": None,
        "started_at": None,
        "updated_at": None,
    }


class RefollowController:
    def __init__(self, ctx: FederationContext | None = None, sleep=asyncio.sleep):
        self.ctx = ctx or FederationContext()
        self._sleep = sleep
        self._state_lock = asyncio.Lock()
        self._pass_lock = asyncio.Lock()
        self._task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Estado persistido
    # ------------------------------------------------------------------

    async def load_state(self) -> dict:
        return {**_initial_state(), **(await kv_store.get(STATE_KEY) or {})}

    async def _update_state(self, **changes) -> dict:
        async with self._state_lock:
            state = await self.load_state()
            state.update(changes, updated_at=utcnow().isoformat())
            await kv_store.set(STATE_KEY, state)
        return state

    async def pause(self) -> dict:
        state = await self._update_state(status=STATUS_PAUSED)
        log.info("Re-follow em lote pausado")
        return state

    async def resume(self) -> dict:
        """Retoma do cursor gravado; se não havia passada, `run()` inicia uma nova."""
        state = await self.load_state()
        if state["status"] == STATUS_PAUSED:
            state = await self._update_state(status=STATUS_RUNNING)
            log.info(f"Re-follow em lote retomado a partir do id {state['cursor']}")
        self.start()
        return state

    async def status(self) -> dict:
        state = await self.load_state()
        return {
            "state": state["status"],
            "processed": state["processed"],
            "total": state["total"],
            "last_error": state["last_error"],
        }

    # ------------------------------------------------------------------
    # Execução
    # ------------------------------------------------------------------

    def start(self) -> asyncio.Task:
        """Dispara uma passada em background, se nenhuma estiver em andamento."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="batch-refollow")
        return self._task

    async def run(self) -> dict:
        """
        Executa uma passada completa. Uma passada interrompida (pause ou
        restart) continua do cursor gravado; ao terminar, o estado volta a
        idle com o cursor zerado.
        """
        if self._pass_lock.locked():
            return await self.load_state()

        async with self._pass_lock:
            state = await self.load_state()
            if state["status"] == STATUS_PAUSED:
                return state

            max_retries = settings.refollow_max_retries
            cooldown = settings.refollow_retry_cooldown

            if state["status"] != STATUS_RUNNING:
                total = await following.count_refollow_candidates(0, max_retries, cooldown)
                if total == 0:
                    return state
                now = utcnow().isoformat()
                state = await self._update_state(
                    status=STATUS_RUNNING,
                    cursor=0,
                    processed=0,
                    total=total,
                    last_error=None,
                    started_at=now,
                )
                log.info(f"Re-follow em lote iniciado: {total} conta(s)")
            elif not state["total"]:
                remaining = await following.count_refollow_candidates(
                    state["cursor"], max_retries, cooldown
                )
                state = await self._update_state(total=state["processed"] + remaining)

            while True:
                state = await self.load_state()
                if state["status"] != STATUS_RUNNING:
                    log.info(f"Re-follow em lote interrompido no id {state['cursor']}")
                    return state

                target = await following.next_refollow_candidate(
                    state["cursor"], max_retries, cooldown
                )
                if target is None:
                    break

                error = await self.send_follow(target)
                changes = {"cursor": target.id, "processed": state["processed"] + 1}
                if error:
                    changes["last_error"] = f"{target.actor_url}: {error}"
                state = await self._update_state(**changes)

                await self._sleep(settings.refollow_delay_per_follow)

            state = await self._update_state(status=STATUS_IDLE, cursor=0)
            log.info(f"Re-follow em lote concluído: {state['processed']} envio(s)")
            return state

    async def send_follow(self, target) -> str | None:
        """Envia um Follow para o alvo. Retorna a mensagem de erro, se houver."""
        try:
            actor = await self.ctx.lookup_actor(target.actor_url)
            canonical_url = id_of(actor) or target.actor_url
            follow = Follow(
                id=f"{self.ctx.actor_uri}#follows/{uuid.uuid4()}",
                actor=self.ctx.actor_uri,
                object=canonical_url,
            )
            await self.ctx.send_activity(actor, follow)
        except (RemoteFetchError, DeliveryError) as e:
            attempts = await following.record_refollow_failure(
                target.id, str(e), settings.refollow_max_retries
            )
            log.warning(
                f"Re-follow falhou para {target.actor_url} "
                f"(tentativa {attempts}/{settings.refollow_max_retries}): {e}"
            )
            return str(e)

        await following.record_refollow_success(target.id, canonical_url)
        name = target.name or target.actor_url
        await activity_log.log_activity(
            direction="outbound",
            type="Follow",
            actor_url=self.ctx.actor_uri,
            actor_name=name,
            object_url=canonical_url,
            summary=f"Re-follow em lote: Follow enviado para {name}",
        )
        log.info(f"Re-follow: Follow enviado para {canonical_url}")
        return None


refollow_controller = RefollowController()


async def run_refollow_worker(controller: RefollowController | None = None) -> None:
    controller = controller or refollow_controller
    await asyncio.sleep(settings.refollow_startup_delay)
    log.info("Worker de re-follow iniciado")
    while True:
        try:
            await controller.run()
        except Exception as e:
            log.error(f"Erro no worker de re-follow: {e}", exc_info=True)
        await asyncio.sleep(settings.refollow_pass_interval)
