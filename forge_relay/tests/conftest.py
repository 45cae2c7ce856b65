"""
Pytest configuration for forge_relay. In-memory SQLite per app lifespan; Jira is stubbed with
httpx.MockTransport through the get_http_client dependency.
"""
import os

# Must be set before forge_relay.config is imported
os.environ["RELAY_DATABASE_URL"] = "sqlite:///:memory:"
os.environ.pop("FORGE_CLAIMS_POLICY", None)
os.environ.pop("FORGE_COMMENT_CHANNEL", None)

import httpx
import jwt
import pytest
from fastapi.testclient import TestClient

from forge_relay.database import init_db, make_engine, make_session_factory
from forge_relay.main import app
from forge_relay.relay import get_http_client

TEST_SECRET = "forge-relay-test-signing-secret-0123456789"


def make_forge_token(app_claims: dict | None = None, **extra) -> str:
    """HS256 token shaped like a Forge invocation token (signature irrelevant under 'trust')."""
    payload = {"iss": "forge/invocation-token", **extra}
    if app_claims is not None:
        payload["app"] = app_claims
    return jwt.encode(payload, TEST_SECRET, algorithm="HS256")


class JiraStub:
    """Callable for httpx.MockTransport; records requests and replays a canned response or error."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.status_code = 201
        self.json_body: object = {"id": "10000"}
        self.error: Exception | None = None

    def respond(self, status_code: int, json_body: object = None) -> None:
        self.status_code = status_code
        self.json_body = json_body

    def fail_with(self, error: Exception) -> None:
        self.error = error

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.json_body is None:
            return httpx.Response(self.status_code)
        return httpx.Response(self.status_code, json=self.json_body)


@pytest.fixture
def forge_token():
    return make_forge_token


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def jira(client):
    stub = JiraStub()
    http = httpx.Client(transport=httpx.MockTransport(stub))
    app.dependency_overrides[get_http_client] = lambda: http
    yield stub
    http.close()


@pytest.fixture
def db():
    engine = make_engine("sqlite:///:memory:")
    init_db(engine)
    session = make_session_factory(engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()
