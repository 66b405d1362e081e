"""
fedinbox/models/following.py

Modelo ORM dos actors que o actor local segue (ou tenta seguir).

O campo `source` funciona como máquina de estados do follow de saída:

    import ──► refollow:sent ──► federation        (Accept recebido)
                    │      └───► rejected          (Reject recebido)
                    └──────────► refollow:failed   (tentativas esgotadas)

`reader` e `microsub-reader` marcam follows feitos pela interface de leitura.
"""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from fedinbox.database import Base, utcnow

SOURCE_IMPORT = "import"
SOURCE_FEDERATION = "federation"
SOURCE_READER = "reader"
SOURCE_MICROSUB_READER = "microsub-reader"
SOURCE_REFOLLOW_SENT = "refollow:sent"
SOURCE_REFOLLOW_FAILED = "refollow:failed"
SOURCE_REJECTED = "rejected"

# Follows enviados que ainda aguardam Accept/Reject do servidor remoto
PENDING_SOURCES = (SOURCE_REFOLLOW_SENT, SOURCE_MICROSUB_READER)


class FollowingTarget(Base):
    __tablename__ = "following"

    # Identidade interna: define a ordem estável de iteração do re-follow
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    actor_url: Mapped[str] = mapped_column(String(2048), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(512), default="")
    handle: Mapped[str] = mapped_column(String(255), default="")
    inbox: Mapped[str] = mapped_column(String(2048), default="")
    shared_inbox: Mapped[str] = mapped_column(String(2048), default="")

    source: Mapped[str] = mapped_column(String(32), default=SOURCE_FEDERATION, index=True)

    followed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        insert_default=utcnow,
    )
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    refollow_attempts: Mapped[int | None] = mapped_column(Integer)
    refollow_last_attempt: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    refollow_error: Mapped[str | None] = mapped_column(Text)

    def __repr__(self) -> str:
        return f"<FollowingTarget actor_url={self.actor_url!r} source={self.source!r}>"
