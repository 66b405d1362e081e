"""
fedinbox/models/notification.py

Notificações derivadas de eventos sobre o conteúdo ou a identidade do actor
local (follow, like, boost, reply, mention). Só são inseridas por este
serviço; `read` é alterado pela interface de administração.
"""

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from fedinbox.database import Base, utcnow

NOTIFICATION_TYPES = ("follow", "like", "boost", "reply", "mention")


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # id da atividade remota ou chave composta (ex: "mention:<url do post>")
    uid: Mapped[str] = mapped_column(String(2048), unique=True, index=True)
    type: Mapped[str] = mapped_column(String(16))

    actor_url: Mapped[str] = mapped_column(String(2048), default="")
    actor_name: Mapped[str] = mapped_column(String(512), default="")
    actor_photo: Mapped[str] = mapped_column(String(2048), default="")
    actor_handle: Mapped[str] = mapped_column(String(255), default="")

    target_url: Mapped[str | None] = mapped_column(String(2048))
    content: Mapped[dict | None] = mapped_column(JSON)

    published: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        insert_default=utcnow,
    )
    read: Mapped[bool] = mapped_column(Boolean, default=False)

    def __repr__(self) -> str:
        return f"<Notification uid={self.uid!r} type={self.type!r}>"
