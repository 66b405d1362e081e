"""
Fixtures compartilhadas entre todos os testes.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from fedinbox.activitypub.context import DeliveryError, FederationContext, RemoteFetchError
from fedinbox.activitypub.fields import id_of

REMOTE_HOST = "https://mastodon.social"


# ---------------------------------------------------------------------------
# Chaves RSA geradas em memória — evita dependência de arquivos em disco
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def rsa_private_key():
    """Par de chaves RSA gerado uma única vez por sessão de testes."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def rsa_private_key_pem(rsa_private_key) -> bytes:
    return rsa_private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


@pytest.fixture(scope="session")
def rsa_public_key_pem(rsa_private_key) -> str:
    return (
        rsa_private_key.public_key()
        .public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        .decode()
    )


# ---------------------------------------------------------------------------
# Configuração Dynaconf isolada para testes
# Usa monkeypatch para sobrescrever os atributos sem tocar em arquivos .toml
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def patch_settings(monkeypatch, rsa_private_key_pem, rsa_public_key_pem, tmp_path):
    """
    Sobrescreve as settings do Dynaconf com valores de teste.
    `autouse=True` garante que nenhum teste acesse configurações reais
    ou tente ler arquivos de chave do disco.
    """
    from fedinbox import config

    # Escreve as chaves em arquivos temporários para os módulos que usam open()
    private_pem_path = tmp_path / "private.pem"
    public_pem_path = tmp_path / "public.pem"
    private_pem_path.write_bytes(rsa_private_key_pem)
    public_pem_path.write_text(rsa_public_key_pem)

    monkeypatch.setattr(config.settings, "domain", "bot.test")
    monkeypatch.setattr(config.settings, "actor_username", "testbot")
    monkeypatch.setattr(config.settings, "actor_display_name", "Test Blog")
    monkeypatch.setattr(config.settings, "actor_summary", "Blog de teste")
    monkeypatch.setattr(config.settings, "publication_url", "https://bot.test/")
    monkeypatch.setattr(config.settings, "private_key_path", str(private_pem_path))
    monkeypatch.setattr(config.settings, "public_key_path", str(public_pem_path))
    monkeypatch.setattr(config.settings, "refollow_delay_per_follow", 0)
    monkeypatch.setattr(config.settings, "refollow_startup_delay", 0)
    monkeypatch.setattr(config.settings, "refollow_max_retries", 3)
    monkeypatch.setattr(config.settings, "refollow_retry_cooldown", 3600)
    monkeypatch.setattr(config.settings, "link_preview_max_per_post", 3)
    monkeypatch.setattr(config.settings, "link_preview_timeout", 10)


# ---------------------------------------------------------------------------
# Banco em memória — StaticPool mantém uma única conexão, então todas as
# sessões enxergam as mesmas tabelas
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def db():
    from fedinbox.database import Base
    from fedinbox.models import (  # noqa: F401
        activity_log,
        follower,
        following,
        interaction,
        kv_entry,
        notification,
        timeline_item,
    )

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)
    with patch("fedinbox.database.async_session_factory", factory):
        yield factory
    await engine.dispose()


# ---------------------------------------------------------------------------
# Contexto de federação falso: documentos remotos vêm de um dicionário
# ---------------------------------------------------------------------------


class FakeContext(FederationContext):
    """
    `lookup` devolve documentos de `documents` (ou RemoteFetchError);
    `send_activity` guarda (url do destinatário, atividade) em `sent`.
    """

    def __init__(self, documents: dict | None = None):
        self.documents = dict(documents or {})
        self.sent: list[tuple[str, object]] = []
        self.failing_recipients: set[str] = set()

    def add(self, *documents: dict) -> None:
        for document in documents:
            self.documents[document["id"]] = document

    async def lookup(self, url: str):
        if url not in self.documents:
            raise RemoteFetchError(f"{url} indisponível")
        return self.documents[url]

    async def lookup_actor(self, url: str):
        return await self.lookup(url)

    async def send_activity(self, recipient, activity) -> None:
        url = recipient if isinstance(recipient, str) else id_of(recipient)
        if url in self.failing_recipients:
            raise DeliveryError(f"{url} respondeu 500")
        self.sent.append((url, activity))


@pytest.fixture
def fake_ctx() -> FakeContext:
    return FakeContext()


# ---------------------------------------------------------------------------
# Factories de documentos JSON-LD remotos
# ---------------------------------------------------------------------------


@pytest.fixture
def remote_actor_url() -> str:
    return f"{REMOTE_HOST}/users/fulano"


@pytest.fixture
def local_actor_url() -> str:
    return "https://bot.test/users/testbot"


@pytest.fixture
def make_actor():
    def _make(username: str = "fulano", name: str = "Fulano", host: str = REMOTE_HOST) -> dict:
        url = f"{host}/users/{username}"
        return {
            "id": url,
            "type": "Person",
            "preferredUsername": username,
            "name": name,
            "inbox": f"{url}/inbox",
            "endpoints": {"sharedInbox": f"{host}/inbox"},
            "icon": {"type": "Image", "url": f"{host}/avatars/{username}.png"},
        }

    return _make


@pytest.fixture
def make_note_doc(remote_actor_url):
    def _make(
        note_id: str = f"{REMOTE_HOST}/users/fulano/statuses/1",
        content: str = "<p>Olá Fediverso</p>",
        attributed_to: str | None = None,
        **extra,
    ) -> dict:
        return {
            "id": note_id,
            "type": "Note",
            "attributedTo": attributed_to or remote_actor_url,
            "content": content,
            "published": "2024-05-01T12:00:00Z",
            "to": ["https://www.w3.org/ns/activitystreams#Public"],
            **extra,
        }

    return _make


# ---------------------------------------------------------------------------
# Factories de objetos apkit para uso nos testes
# ---------------------------------------------------------------------------


@pytest.fixture
def make_note(local_actor_url):
    """Factory que cria objetos Note do apkit com valores padrão."""
    from apkit.models import Note

    def _make(
        content: str = "<p>Mensagem de teste</p>",
        note_id: str = f"{REMOTE_HOST}/users/fulano/statuses/1",
        attributed_to: str = f"{REMOTE_HOST}/users/fulano",
    ) -> Note:
        return Note(
            id=note_id,
            attributed_to=attributed_to,
            content=content,
            to=["https://www.w3.org/ns/activitystreams#Public"],
            cc=[local_actor_url],
        )

    return _make


@pytest.fixture
def make_create(remote_actor_url, make_note):
    """Factory que cria objetos Create do apkit."""
    from apkit.models import Create

    def _make(note=None, actor: str | None = None) -> Create:
        return Create(
            id=f"{REMOTE_HOST}/users/fulano/statuses/1/activity",
            actor=actor or remote_actor_url,
            object=note or make_note(),
            to=["https://www.w3.org/ns/activitystreams#Public"],
        )

    return _make


@pytest.fixture
def make_follow(remote_actor_url, local_actor_url):
    """Factory que cria objetos Follow do apkit."""
    from apkit.models import Follow

    def _make(follower: str | None = None) -> Follow:
        return Follow(
            id=f"{REMOTE_HOST}/users/fulano#follows/1",
            actor=follower or remote_actor_url,
            object=local_actor_url,
        )

    return _make


@pytest.fixture
def mock_ctx(make_create):
    """
    Mock do Context do apkit entregue aos handlers registrados.
    """
    ctx = MagicMock()
    ctx.activity = make_create()
    ctx.send = AsyncMock()
    return ctx
