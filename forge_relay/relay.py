"""
Comment relay: POST /forge-comment and POST /forge-direct-comment.

Posts a comment to a Jira issue authenticated with the most recently captured credential.
The endpoints always answer 200; callers inspect the "error" field of the envelope:
  - kind=response: Jira answered non-2xx (status, data, headers captured)
  - kind=no_response: network error or timeout (outbound request described)
  - kind=request_setup: the request could not be built or issued
With no credential captured yet the relay still goes out with an empty Bearer value and
Jira's rejection is reported through the same envelope.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from forge_relay.config import DEFAULT_COMMENT_CHANNEL, DIRECT_COMMENT_BASE_URL, JIRA_SITE_URL
from forge_relay.credential_store import (
    Channel,
    CredentialRecord,
    CredentialStore,
    CredentialStoreUnavailable,
    RoutedRecord,
)
from forge_relay.database import get_db

logger = logging.getLogger(__name__)
router = APIRouter()

ERROR_RESPONSE = "response"
ERROR_NO_RESPONSE = "no_response"
ERROR_REQUEST_SETUP = "request_setup"


@dataclass
class CommentPayload:
    issue_id_or_key: str
    comment_content: str


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


async def get_comment_payload(request: Request) -> CommentPayload:
    """
    Permissive body parsing: invalid JSON, a non-object body, or non-string fields all
    coerce to "" instead of a 422.
    """
    raw = await request.body()
    try:
        data = json.loads(raw) if raw else {}
    except ValueError:
        logger.info("Comment relay body is not valid JSON; using empty fields")
        data = {}
    if not isinstance(data, dict):
        data = {}
    return CommentPayload(
        issue_id_or_key=_as_str(data.get("issueIdOrKey")),
        comment_content=_as_str(data.get("commentContent")),
    )


def get_http_client(request: Request) -> httpx.Client:
    return request.app.state.http_client


def select_channel(channel: str | None = None) -> Channel:
    """?channel=legacy|next overrides the deployment default; anything else falls back to it."""
    default = Channel.parse(DEFAULT_COMMENT_CHANNEL, Channel.LEGACY)
    return Channel.parse(channel, default)


def resolve_credential(db: Session, channel: Channel) -> CredentialRecord | None:
    """Latest record on the channel; None when the ledger is empty or unreadable."""
    try:
        record = CredentialStore(db, channel).most_recent()
    except CredentialStoreUnavailable:
        logger.exception("Could not read latest credential on %s channel; relaying without one", channel.value)
        return None
    if record is None:
        logger.warning("No credential captured on %s channel yet; relaying with empty token", channel.value)
    return record


def comment_url(base_url: str, issue_id_or_key: str) -> str:
    return f"{base_url.rstrip('/')}/rest/api/3/issue/{quote(issue_id_or_key, safe='')}/comment"


def build_comment_body(comment_text: str) -> dict:
    """Atlassian Document Format body; one paragraph per line."""
    content = []
    for line in comment_text.split("\n"):
        if line:
            content.append({"type": "paragraph", "content": [{"type": "text", "text": line}]})
        else:
            content.append({"type": "paragraph", "content": []})
    return {"body": {"type": "doc", "version": 1, "content": content}}


def _response_data(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def post_comment(client: httpx.Client, url: str, token: str, comment_text: str) -> tuple[dict, Any]:
    """
    Issue the authenticated POST. Returns (error, raw_response_data): error is {} on 2xx,
    raw_response_data is the parsed body on 2xx and None otherwise.
    """
    try:
        outbound = client.build_request(
            "POST",
            url,
            json=build_comment_body(comment_text),
            # "Bearer" alone when no token: trailing whitespace is not a valid header value
            headers={"Authorization": f"Bearer {token}".strip(), "Accept": "application/json"},
        )
    except Exception as e:
        logger.warning("Could not build comment request for %s: %s", url, e)
        return {"kind": ERROR_REQUEST_SETUP, "message": str(e)}, None

    try:
        response = client.send(outbound)
    except httpx.UnsupportedProtocol as e:
        logger.warning("Could not issue comment request to %s: %s", url, e)
        return {"kind": ERROR_REQUEST_SETUP, "message": str(e)}, None
    except httpx.RequestError as e:
        logger.warning("No response from %s: %s", url, e)
        return {
            "kind": ERROR_NO_RESPONSE,
            "message": str(e) or e.__class__.__name__,
            "request": {"method": outbound.method, "url": str(outbound.url)},
        }, None

    if not response.is_success:
        logger.info("Jira answered %s for %s", response.status_code, url)
        return {
            "kind": ERROR_RESPONSE,
            "message": f"Request failed with status code {response.status_code}",
            "status": response.status_code,
            "data": _response_data(response),
            "headers": dict(response.headers),
        }, None
    logger.info("Comment posted via %s (status %s)", url, response.status_code)
    return {}, _response_data(response)


def _relay(
    db: Session,
    client: httpx.Client,
    payload: CommentPayload,
    channel: Channel,
    *,
    use_routing: bool,
) -> dict:
    record = resolve_credential(db, channel)
    token = record.value if record is not None else ""

    if not use_routing:
        base_url = DIRECT_COMMENT_BASE_URL
    elif isinstance(record, RoutedRecord) and record.routing.api_base_url:
        base_url = record.routing.api_base_url
    else:
        base_url = JIRA_SITE_URL
    request_url = comment_url(base_url, payload.issue_id_or_key)

    error, raw = post_comment(client, request_url, token, payload.comment_content)
    return {
        "token": token,
        "issueIdOrKey": payload.issue_id_or_key,
        "commentContent": payload.comment_content,
        "requestUrl": request_url,
        "error": error,
        "rawResponseData": raw,
    }


@router.post("/forge-comment")
def forge_comment(
    payload: CommentPayload = Depends(get_comment_payload),
    channel: Channel = Depends(select_channel),
    client: httpx.Client = Depends(get_http_client),
    db: Session = Depends(get_db),
):
    """Relay to the tenant's API base from the credential's claims, else the static Jira site."""
    return _relay(db, client, payload, channel, use_routing=True)


@router.post("/forge-direct-comment")
def forge_direct_comment(
    payload: CommentPayload = Depends(get_comment_payload),
    channel: Channel = Depends(select_channel),
    client: httpx.Client = Depends(get_http_client),
    db: Session = Depends(get_db),
):
    """Relay to the fixed diagnostic endpoint, ignoring any apiBaseUrl claim."""
    return _relay(db, client, payload, channel, use_routing=False)
