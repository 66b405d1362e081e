"""
fedinbox/models/interaction.py

Likes e boosts enviados pelo actor local. Guardar o id da atividade
original permite montar o Undo correspondente mais tarde.
"""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fedinbox.database import Base, utcnow


class InteractionRecord(Base):
    __tablename__ = "interactions"
    __table_args__ = (UniqueConstraint("object_url", "type", name="uq_interaction_object_type"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    object_url: Mapped[str] = mapped_column(String(2048), index=True)

    # "like" | "boost"
    type: Mapped[str] = mapped_column(String(16))
    activity_id: Mapped[str] = mapped_column(String(2048))
    recipient_url: Mapped[str] = mapped_column(String(2048), default="")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        insert_default=utcnow,
    )

    def __repr__(self) -> str:
        return f"<InteractionRecord {self.type} {self.object_url!r}>"
