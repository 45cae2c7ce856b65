"""
Read-only ledger viewer: GET /ledger/{channel}. Lab/dev diagnostics; most recent first.
Token values are never returned, only their length.
"""
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from forge_relay.credential_store import Channel, CredentialStore, CredentialStoreUnavailable, RoutedRecord
from forge_relay.database import get_db

logger = logging.getLogger(__name__)
router = APIRouter(tags=["ledger"])


@router.get("/ledger/{channel}")
def list_ledger(channel: str, limit: int = 5, db: Session = Depends(get_db)):
    """Unknown channel names show the legacy ledger."""
    selected = Channel.parse(channel, Channel.LEGACY)
    try:
        records = CredentialStore(db, selected).list_recent(limit)
    except CredentialStoreUnavailable as e:
        logger.warning("Ledger %s unavailable: %s", selected.value, e.__cause__)
        return JSONResponse({"msg": "Ledger unavailable.", "channel": selected.value}, status_code=503)
    return {
        "channel": selected.value,
        "records": [
            {
                "captured_at": r.captured_at.isoformat(),
                "token_length": len(r.value),
                "routing": r.routing.to_dict() if isinstance(r, RoutedRecord) else None,
            }
            for r in records
        ],
    }
