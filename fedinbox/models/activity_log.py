"""
fedinbox/models/activity_log.py

Registro append-only das atividades recebidas e enviadas, exibido no log
de atividades da administração.
"""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from fedinbox.database import Base, utcnow


class ActivityLogEntry(Base):
    __tablename__ = "activity_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # "inbound" | "outbound"
    direction: Mapped[str] = mapped_column(String(16))
    # ex: "Follow", "Undo(Follow)", "Reply"
    type: Mapped[str] = mapped_column(String(64), index=True)

    actor_url: Mapped[str] = mapped_column(String(2048), default="")
    actor_name: Mapped[str | None] = mapped_column(String(512))
    object_url: Mapped[str | None] = mapped_column(String(2048), index=True)
    target_url: Mapped[str | None] = mapped_column(String(2048))
    content: Mapped[str | None] = mapped_column(Text)
    summary: Mapped[str] = mapped_column(Text, default="")

    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        insert_default=utcnow,
    )

    def __repr__(self) -> str:
        return f"<ActivityLogEntry {self.direction} {self.type}>"
