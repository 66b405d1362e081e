from cryptography.hazmat.primitives import serialization
from apkit.server.types import ActorKey

from fedinbox.config import actor_uri, settings


def load_private_key():
    with open(settings.private_key_path, "rb") as f:
        return serialization.load_pem_private_key(f.read(), password=None)


def load_public_key_pem() -> str:
    with open(settings.public_key_path) as f:
        return f.read()


async def get_keys_for_actor(identifier: str) -> list[ActorKey]:
    """
    Callback exigido pelo apkit para assinar atividades de saída.
    Recebe o `identifier` (username na URL) e retorna a(s) chave(s) do actor.
    """
    if identifier == settings.actor_username:
        private_key = load_private_key()
        return [ActorKey(key_id=f"{actor_uri()}#main-key", private_key=private_key)]
    return []


async def get_actor_keys() -> list[ActorKey]:
    """Retorna as chaves do actor local. Atalho para entregas e fetches assinados."""
    return await get_keys_for_actor(settings.actor_username)
