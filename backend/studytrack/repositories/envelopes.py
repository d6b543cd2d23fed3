"""Database-backed envelope repository used by the store service."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db.models import StoredEnvelopeModel
from ..errors import StaleWriteError
from ..records import StoredEnvelope

logger = logging.getLogger(__name__)


def _normalize_key(key: str) -> str:
    normalized = key.strip()
    if not normalized:
        raise ValueError("Store key cannot be empty.")
    return normalized


class EnvelopeRepository:
    """Single-row-per-key persistence with last-writer-wins on ``last_modified``."""

    def _get_model(self, session: Session, key: str) -> Optional[StoredEnvelopeModel]:
        stmt = select(StoredEnvelopeModel).where(StoredEnvelopeModel.store_key == _normalize_key(key))
        return session.execute(stmt).scalar_one_or_none()

    @staticmethod
    def _to_domain(model: StoredEnvelopeModel) -> StoredEnvelope:
        return StoredEnvelope(
            kind=model.kind,
            schema_version=model.schema_version,
            last_modified=model.last_modified,
            payload=dict(model.payload or {}),
        )

    def get(self, session: Session, key: str) -> Optional[StoredEnvelope]:
        model = self._get_model(session, key)
        if model is None:
            return None
        return self._to_domain(model)

    def put(self, session: Session, key: str, envelope: StoredEnvelope) -> StoredEnvelope:
        """Store ``envelope`` unless the stored copy is strictly newer."""
        model = self._get_model(session, key)
        if model is None:
            model = StoredEnvelopeModel(store_key=_normalize_key(key))
            session.add(model)
        else:
            existing = self._to_domain(model)
            if existing.last_modified > envelope.last_modified:
                logger.info(
                    "Rejecting stale write for %s (%s older than %s)",
                    key,
                    envelope.last_modified.isoformat(),
                    existing.last_modified.isoformat(),
                )
                raise StaleWriteError(f"Stored envelope for '{key}' is newer than the incoming write.")

        model.kind = envelope.kind
        model.schema_version = envelope.schema_version
        model.last_modified = envelope.last_modified
        model.payload = envelope.model_dump(mode="json")["payload"]
        session.flush()
        return self._to_domain(model)

    def delete(self, session: Session, key: str) -> bool:
        model = self._get_model(session, key)
        if model is None:
            return False
        session.delete(model)
        session.flush()
        return True


envelopes = EnvelopeRepository()

__all__ = ["EnvelopeRepository", "envelopes"]
