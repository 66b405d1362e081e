"""
fedinbox/models/follower.py

Modelo ORM dos followers do actor local.

Cada linha é um actor remoto que segue o actor local. A chave é a URL
canônica do actor, de modo que Follow repetido (reentrega, retry do
servidor remoto) sempre cai na mesma linha.
"""

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from fedinbox.database import Base, utcnow


class Follower(Base):
    __tablename__ = "followers"

    # URL canônica do actor remoto — identificador único no Fediverso
    # ex: "https://mastodon.social/users/fulano"
    actor_url: Mapped[str] = mapped_column(String(2048), primary_key=True)

    handle: Mapped[str] = mapped_column(String(255), default="")
    name: Mapped[str] = mapped_column(String(512), default="")
    avatar: Mapped[str] = mapped_column(String(2048), default="")

    # Inbox do actor — cached para evitar re-fetch a cada entrega
    inbox: Mapped[str] = mapped_column(String(2048), default="")
    shared_inbox: Mapped[str] = mapped_column(String(2048), default="")

    # insert_default é avaliado pelo SQLAlchemy no momento do INSERT,
    # garantindo o timezone correto independente da configuração do sistema
    followed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        insert_default=utcnow,
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Preenchido quando o actor migra de conta (atividade Move)
    moved_from: Mapped[str | None] = mapped_column(String(2048))

    def __repr__(self) -> str:
        return f"<Follower actor_url={self.actor_url!r}>"
