"""ORM models backing the remote envelope store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from .base import Base, TimestampMixin

JSONType = JSON


class StoredEnvelopeModel(TimestampMixin, Base):
    __tablename__ = "stored_envelopes"
    __table_args__ = (Index("ix_stored_envelopes_kind", "kind"),)

    store_key: Mapped[str] = mapped_column(String(191), primary_key=True)
    kind: Mapped[str] = mapped_column(String(64), nullable=False)
    schema_version: Mapped[int] = mapped_column(Integer, nullable=False)
    last_modified: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)


__all__ = ["StoredEnvelopeModel"]
