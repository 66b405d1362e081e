"""
fedinbox/database.py

Configuração do banco de dados SQLite via SQLAlchemy assíncrono.

Exporta:
- `engine`                — engine assíncrona compartilhada
- `async_session_factory` — fábrica de sessões usada pelos stores
- `Base`                  — classe base para os modelos ORM
- `utcnow()`              — timestamp UTC usado em todos os campos *_at
- `init_db()`             — cria as tabelas na inicialização da aplicação

Os stores em `fedinbox/storage` acessam `database.async_session_factory`
pelo módulo (e não via `from ... import`) para que os testes possam trocar
a fábrica por uma apontando para um banco em memória.
"""

from datetime import datetime, timezone
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from fedinbox.config import settings

# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

engine = create_async_engine(
    settings.database_url,
    echo=False,
    connect_args={"check_same_thread": False},
)

# ---------------------------------------------------------------------------
# Fábrica de sessões
# ---------------------------------------------------------------------------

# Nome distinto de AsyncSession (classe) para evitar colisão no mesmo módulo
async_session_factory = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,  # evita lazy-load após commit em contexto assíncrono
    class_=AsyncSession,
)


# ---------------------------------------------------------------------------
# Base declarativa
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Inicialização
# ---------------------------------------------------------------------------

async def init_db() -> None:
    """
    Cria todas as tabelas definidas nos modelos ORM caso ainda não existam.
    Deve ser chamado uma única vez no startup da aplicação (lifespan do FastAPI).
    """
    # Importa os modelos para que o SQLAlchemy os registre no metadata da Base
    # antes de criar as tabelas. Sem este import, as tabelas não serão criadas.
    from fedinbox.models import (  # noqa: F401
        activity_log,
        follower,
        following,
        interaction,
        kv_entry,
        notification,
        timeline_item,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
