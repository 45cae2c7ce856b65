"""
Decode routing context from a Forge invocation token (JWT).

Default policy "trust": claims are read without checking the signature. They are only used to
pick the Jira API base URL and to annotate ledger rows, never to authorize anything.
Policy "verify": the signature is checked against the Forge JWKS first; a token that fails
verification is treated like an unparseable one (no routing metadata).
"""
from dataclasses import asdict, dataclass
from typing import Any

import jwt
from jwt import PyJWKClient

POLICY_TRUST = "trust"
POLICY_VERIFY = "verify"

# Flat field -> path inside the decoded claims
CLAIM_PATHS: dict[str, tuple[str, ...]] = {
    "installation_id": ("app", "installationId"),
    "api_base_url": ("app", "apiBaseUrl"),
    "app_id": ("app", "id"),
    "environment_type": ("app", "environment", "type"),
    "environment_id": ("app", "environment", "id"),
}


@dataclass(frozen=True)
class RoutingMetadata:
    installation_id: str = ""
    api_base_url: str = ""
    app_id: str = ""
    environment_type: str = ""
    environment_id: str = ""

    @property
    def is_empty(self) -> bool:
        return not any(asdict(self).values())

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


def _lookup(claims: Any, path: tuple[str, ...]) -> str:
    """Walk nested dicts; anything missing or not a string becomes ""."""
    node = claims
    for key in path:
        if not isinstance(node, dict):
            return ""
        node = node.get(key)
    return node if isinstance(node, str) else ""


def routing_from_claims(claims: Any) -> RoutingMetadata:
    return RoutingMetadata(**{field: _lookup(claims, path) for field, path in CLAIM_PATHS.items()})


def decode_claims(token: str) -> RoutingMetadata:
    """
    Read claims from the middle JWT segment without signature verification.
    Never raises: malformed or empty tokens yield all-empty metadata.
    """
    if not isinstance(token, str) or token.count(".") != 2:
        return RoutingMetadata()
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except Exception:
        return RoutingMetadata()
    return routing_from_claims(claims)


class ClaimsDecoder:
    """Applies the configured claims policy. One instance per app (holds the JWKS cache)."""

    def __init__(self, policy: str = POLICY_TRUST, jwks_url: str | None = None, audience: str | None = None):
        if policy not in (POLICY_TRUST, POLICY_VERIFY):
            raise ValueError(f"Unknown claims policy: {policy!r}")
        if policy == POLICY_VERIFY and not jwks_url:
            raise ValueError("jwks_url is required for the verify policy")
        self.policy = policy
        self.audience = audience
        self._jwks_client = (
            PyJWKClient(uri=jwks_url, cache_jwk_set=True, lifespan=300) if policy == POLICY_VERIFY else None
        )

    def decode(self, token: str) -> RoutingMetadata:
        if self.policy == POLICY_TRUST:
            return decode_claims(token)
        return self._decode_verified(token)

    def _decode_verified(self, token: str) -> RoutingMetadata:
        if not isinstance(token, str) or token.count(".") != 2:
            return RoutingMetadata()
        try:
            signing_key = self._jwks_client.get_signing_key_from_jwt(token)
            claims = jwt.decode(
                token,
                signing_key.key,
                algorithms=["RS256"],
                audience=self.audience,
                # Signature only: expiry is not enforced for captured credentials
                options={"verify_exp": False, "verify_aud": self.audience is not None},
            )
        except Exception:
            return RoutingMetadata()
        return routing_from_claims(claims)
