"""REST endpoints of the authoritative envelope store."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Response, status

from .db.session import session_scope
from .errors import StaleWriteError
from .records import StoredEnvelope
from .repositories.envelopes import envelopes

router = APIRouter(prefix="/api/store", tags=["store"])
logger = logging.getLogger(__name__)


def _require_key(key: str) -> str:
    trimmed = key.strip()
    if not trimmed:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Store key cannot be empty.")
    return trimmed


@router.get("/{key}", response_model=StoredEnvelope)
def fetch_envelope(key: str) -> StoredEnvelope:
    normalized = _require_key(key)
    with session_scope(commit=False) as session:
        envelope = envelopes.get(session, normalized)
    if envelope is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No envelope stored for '{normalized}'.")
    return envelope


@router.put("/{key}", response_model=StoredEnvelope)
def put_envelope(key: str, envelope: StoredEnvelope) -> StoredEnvelope:
    normalized = _require_key(key)
    try:
        with session_scope() as session:
            stored = envelopes.put(session, normalized, envelope)
    except StaleWriteError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    logger.debug("Stored %s envelope v%d for %s", stored.kind, stored.schema_version, normalized)
    return stored


@router.delete("/{key}", status_code=status.HTTP_204_NO_CONTENT)
def delete_envelope(key: str) -> Response:
    normalized = _require_key(key)
    with session_scope() as session:
        deleted = envelopes.delete(session, normalized)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No envelope stored for '{normalized}'.")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


__all__ = ["router"]
