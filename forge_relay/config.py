"""
Forge relay configuration. All values come from the environment with local-dev defaults.
No secrets in this file; captured credentials live only in the database.
"""
import os

# SQLite for development; point at Postgres (e.g. Cloud SQL) in deployment
DATABASE_URL = os.environ.get("RELAY_DATABASE_URL", "sqlite:///./forge_relay.db")

# Create the tokens tables on startup. Disable when the schema is managed elsewhere.
CREATE_TABLES_ON_STARTUP = os.environ.get("RELAY_CREATE_TABLES", "1").lower() not in ("0", "false", "no")

# Static Jira site used when a credential carries no apiBaseUrl (legacy channel)
JIRA_SITE_URL = os.environ.get("JIRA_SITE_URL", "https://rozuvan.atlassian.net").rstrip("/")

# Fixed diagnostic target for /forge-direct-comment; never derived from token claims
DIRECT_COMMENT_BASE_URL = os.environ.get("DIRECT_COMMENT_BASE_URL", JIRA_SITE_URL).rstrip("/")

# Channel whose latest credential /forge-comment relays with: "legacy" or "next"
DEFAULT_COMMENT_CHANNEL = os.environ.get("FORGE_COMMENT_CHANNEL", "legacy").strip().lower()

# Claims policy for /forge-token-2: "trust" decodes without checking the signature,
# "verify" checks it against the Forge JWKS before using any claim for routing.
CLAIMS_POLICY = os.environ.get("FORGE_CLAIMS_POLICY", "trust").strip().lower()
FORGE_JWKS_URL = os.environ.get(
    "FORGE_JWKS_URL", "https://forge.cdn.prod.atlassian-dev.net/.well-known/jwks.json"
)
# Expected aud claim under the verify policy; empty = audience not checked
FORGE_AUDIENCE = os.environ.get("FORGE_AUDIENCE", "").strip() or None

# Outbound HTTP timeout (seconds) for calls to the Jira REST API
HTTP_TIMEOUT = float(os.environ.get("RELAY_HTTP_TIMEOUT", "10"))

# Comma-separated CORS origins; "*" allows any embedding host
CORS_ALLOW_ORIGINS = [
    o.strip() for o in os.environ.get("CORS_ALLOW_ORIGINS", "*").split(",") if o.strip()
]

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
