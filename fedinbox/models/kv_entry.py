"""
fedinbox/models/kv_entry.py

Entradas chave-valor genéricas. A chave é o caminho hierárquico já
serializado (ex: "batch-refollow/state", "migration/separate-mentions").
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from fedinbox.database import Base, utcnow


class KvEntry(Base):
    __tablename__ = "kv"

    key: Mapped[str] = mapped_column(String(1024), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        insert_default=utcnow,
        onupdate=utcnow,
    )

    def __repr__(self) -> str:
        return f"<KvEntry key={self.key!r}>"
