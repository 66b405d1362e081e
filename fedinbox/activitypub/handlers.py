"""
fedinbox/activitypub/handlers.py

Registra os handlers de atividades ActivityPub no servidor apkit.

Todos os tipos tratados pelo inbox são encaminhados para
`fedinbox.activitypub.inbox.dispatch`, que decide o que gravar. O apkit já
verificou a assinatura HTTP quando o handler é chamado; a resposta é sempre
202, mesmo quando a atividade é descartada.
"""

import logging

from apkit.models import (
    Accept,
    Add,
    Announce,
    Block,
    Create,
    Delete,
    Follow,
    Like,
    Move,
    Reject,
    Remove,
    Undo,
    Update,
)
from apkit.server.types import Context
from fastapi import Response

from fedinbox.activitypub.context import FederationContext
from fedinbox.activitypub.inbox import dispatch

log = logging.getLogger(__name__)

INBOX_KINDS = (
    Follow,
    Undo,
    Accept,
    Reject,
    Like,
    Announce,
    Create,
    Delete,
    Move,
    Update,
    Block,
    Add,
    Remove,
)


def register_handlers(app) -> None:
    """
    Registra um handler por tipo de atividade no servidor apkit.
    Chamado em main.py após criar a instância ActivityPubServer.
    """
    federation = FederationContext()

    async def on_activity(ctx: Context):
        activity = ctx.activity
        try:
            await dispatch(federation, activity)
        except Exception as e:
            log.error(f"Erro ao processar {type(activity).__name__}: {e}", exc_info=True)
        return Response(status_code=202)

    for kind in INBOX_KINDS:
        app.on(kind)(on_activity)
