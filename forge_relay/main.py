"""
Forge relay service.
Captures Forge invocation tokens (/forge-token, /forge-token-2) and relays Jira comments
with the latest one (/forge-comment, /forge-direct-comment).
"""
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from forge_relay import config
from forge_relay.capture import router as capture_router
from forge_relay.claims import ClaimsDecoder
from forge_relay.database import get_engine, init_db, make_engine, make_session_factory
from forge_relay.ledger import router as ledger_router
from forge_relay.relay import router as relay_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the DB pool and outbound HTTP client before serving; close both on shutdown."""
    # Config errors (unknown claims policy) fail startup before any resource is opened
    app.state.claims_decoder = ClaimsDecoder(
        policy=config.CLAIMS_POLICY,
        jwks_url=config.FORGE_JWKS_URL,
        audience=config.FORGE_AUDIENCE,
    )
    engine = make_engine(config.DATABASE_URL)
    http_client = None
    try:
        app.state.engine = engine
        app.state.session_factory = make_session_factory(engine)
        if config.CREATE_TABLES_ON_STARTUP:
            try:
                init_db(engine)
            except SQLAlchemyError:
                # Captures still answer 200 without a database; relays go out with an empty token
                logger.exception("Could not create tokens tables on startup")
        http_client = httpx.Client(timeout=config.HTTP_TIMEOUT)
        app.state.http_client = http_client
        logger.info("Forge relay ready (claims policy=%s, comment channel=%s)", config.CLAIMS_POLICY, config.DEFAULT_COMMENT_CHANNEL)
        yield
    finally:
        if http_client is not None:
            http_client.close()
        engine.dispose()


app = FastAPI(title="Forge Relay", version="0.2.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(capture_router, tags=["capture"])
app.include_router(relay_router, tags=["relay"])
app.include_router(ledger_router)


@app.get("/", response_class=PlainTextResponse)
def index():
    return "Hello World!"


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok", "service": "forge_relay"}


@app.get("/db-init", response_class=PlainTextResponse)
def db_init(engine: Engine = Depends(get_engine)):
    """Create the tokens tables if missing."""
    try:
        init_db(engine)
    except SQLAlchemyError as e:
        logger.exception("db-init failed")
        return JSONResponse({"msg": "Could not initialize tables.", "err": str(e)}, status_code=500)
    return "DB initialized OK"


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(
        "forge_relay.main:app",
        host="0.0.0.0",
        port=3000,
    )
