"""
Credential capture: GET /forge-token (legacy channel) and GET /forge-token-2 (next channel).
The Forge app calls these with its invocation token as a Bearer credential; we append it to
the channel's ledger. Always answers 200 {"ok": "ok", "token": ...}: capture is fire-and-forget,
so storage failures are logged, not surfaced.
"""
import logging

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session

from forge_relay.claims import ClaimsDecoder, RoutingMetadata
from forge_relay.credential_store import Channel, CredentialStore, CredentialStoreUnavailable
from forge_relay.database import get_db

logger = logging.getLogger(__name__)
router = APIRouter()

# Scheme match is exact and case-sensitive: "bearer x" or "Basic x" capture ""
BEARER_PREFIX = "Bearer "

# Forge forwards OAuth tokens in these when the app requests them; logged by presence only
FORGE_OAUTH_HEADERS = ("x-forge-oauth-system", "x-forge-oauth-user")


def get_bearer_token(authorization: str | None = Header(None)) -> str:
    """Bearer credential from the Authorization header, or "" when absent or malformed."""
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return ""
    return authorization[len(BEARER_PREFIX):]


def get_claims_decoder(request: Request) -> ClaimsDecoder:
    return request.app.state.claims_decoder


def _capture(db: Session, channel: Channel, token: str, routing: RoutingMetadata | None = None) -> dict:
    try:
        CredentialStore(db, channel).record(token, routing)
    except CredentialStoreUnavailable:
        logger.exception("Capture on %s channel not persisted", channel.value)
    return {"ok": "ok", "token": token}


@router.get("/forge-token")
def capture_token(
    token: str = Depends(get_bearer_token),
    db: Session = Depends(get_db),
):
    """Legacy channel: store the bare credential."""
    if not token:
        logger.info("Capture on legacy channel without a Bearer credential; recording empty value")
    return _capture(db, Channel.LEGACY, token)


@router.get("/forge-token-2")
def capture_token_next(
    request: Request,
    token: str = Depends(get_bearer_token),
    decoder: ClaimsDecoder = Depends(get_claims_decoder),
    db: Session = Depends(get_db),
):
    """Next channel: also decode routing context (installation, API base URL, app, environment)."""
    for name in FORGE_OAUTH_HEADERS:
        logger.debug("%s header present: %s", name, name in request.headers)

    routing = decoder.decode(token)
    if routing.is_empty:
        logger.info("No routing metadata decoded from credential (policy=%s)", decoder.policy)
    else:
        logger.info(
            "Decoded routing metadata: installation=%s app=%s environment=%s",
            routing.installation_id,
            routing.app_id,
            routing.environment_type,
        )
    return _capture(db, Channel.NEXT, token, routing)
