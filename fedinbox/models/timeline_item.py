"""
fedinbox/models/timeline_item.py

Cópias normalizadas de posts remotos exibidas na timeline do actor local.

`uid` é a URL canônica do objeto remoto: reentregas do mesmo Create ou
Announce caem sempre no mesmo registro. `id` é a identidade interna usada
pela retenção para apagar exatamente as linhas selecionadas.
"""

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from fedinbox.database import Base, utcnow


class TimelineItem(Base):
    __tablename__ = "timeline"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    uid: Mapped[str] = mapped_column(String(2048), unique=True, index=True)

    # "note" | "article" | "boost"
    type: Mapped[str] = mapped_column(String(16), default="note")
    url: Mapped[str] = mapped_column(String(2048), default="")
    name: Mapped[str] = mapped_column(Text, default="")

    # {"text": ..., "html": ...}, html já sanitizado
    content: Mapped[dict] = mapped_column(JSON, default=dict)
    summary: Mapped[str] = mapped_column(Text, default="")
    sensitive: Mapped[bool] = mapped_column(Boolean, default=False)

    published: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)

    # {"name", "url", "photo", "handle"}
    author: Mapped[dict] = mapped_column(JSON, default=dict)

    category: Mapped[list] = mapped_column(JSON, default=list)
    mentions: Mapped[list] = mapped_column(JSON, default=list)
    photo: Mapped[list] = mapped_column(JSON, default=list)
    video: Mapped[list] = mapped_column(JSON, default=list)
    audio: Mapped[list] = mapped_column(JSON, default=list)

    in_reply_to: Mapped[str] = mapped_column(String(2048), default="")

    boosted_by: Mapped[dict | None] = mapped_column(JSON)
    boosted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    link_previews: Mapped[list] = mapped_column(JSON, default=list)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        insert_default=utcnow,
    )

    def __repr__(self) -> str:
        return f"<TimelineItem uid={self.uid!r}>"
