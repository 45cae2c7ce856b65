"""
Append-only ledger of captured credentials, one per channel.

Timestamps are assigned here, not by the client or the database, and strictly increase
across writes from this process. "Most recent" is the greatest created_at, ties by id.
Rows are never updated or deleted.
"""
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from forge_relay.claims import RoutingMetadata
from forge_relay.models import Token, TokenNext

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 100


class Channel(str, Enum):
    LEGACY = "legacy"
    NEXT = "next"

    @classmethod
    def parse(cls, value: str | None, default: "Channel") -> "Channel":
        """Unknown or missing values fall back to default (relay never 4xxs)."""
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return default


_MODELS = {Channel.LEGACY: Token, Channel.NEXT: TokenNext}


class CredentialStoreUnavailable(Exception):
    """The underlying database could not be read or written."""


@dataclass(frozen=True)
class LegacyRecord:
    value: str
    captured_at: datetime
    channel: Channel = Channel.LEGACY


@dataclass(frozen=True)
class RoutedRecord:
    value: str
    captured_at: datetime
    routing: RoutingMetadata
    channel: Channel = Channel.NEXT


CredentialRecord = LegacyRecord | RoutedRecord


_clock_lock = threading.Lock()
_last_stamp: datetime | None = None


def _next_timestamp() -> datetime:
    """UTC now (naive, as stored), bumped by 1µs if it would not exceed the previous stamp."""
    global _last_stamp
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    with _clock_lock:
        if _last_stamp is not None and now <= _last_stamp:
            now = _last_stamp + timedelta(microseconds=1)
        _last_stamp = now
        return now


def _to_record(row) -> CredentialRecord:
    if isinstance(row, TokenNext):
        return RoutedRecord(
            value=row.token_value or "",
            captured_at=row.created_at,
            routing=RoutingMetadata(
                installation_id=row.installation_id or "",
                api_base_url=row.api_base_url or "",
                app_id=row.app_id or "",
                environment_type=row.environment_type or "",
                environment_id=row.environment_id or "",
            ),
        )
    return LegacyRecord(value=row.token_value or "", captured_at=row.created_at)


class CredentialStore:
    def __init__(self, db: Session, channel: Channel):
        self.db = db
        self.channel = channel
        self.model = _MODELS[channel]

    def record(self, value: str, routing: RoutingMetadata | None = None) -> CredentialRecord:
        """Append one credential. Routing metadata is kept only on the next channel."""
        value = value if isinstance(value, str) else ""
        captured_at = _next_timestamp()
        if self.channel is Channel.NEXT:
            routing = routing or RoutingMetadata()
            row = TokenNext(token_value=value, created_at=captured_at, **routing.to_dict())
            record = RoutedRecord(value=value, captured_at=captured_at, routing=routing)
        else:
            row = Token(token_value=value, created_at=captured_at)
            record = LegacyRecord(value=value, captured_at=captured_at)
        try:
            self.db.add(row)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise CredentialStoreUnavailable(f"Could not record credential on {self.channel.value} channel") from e
        logger.debug("Recorded credential on %s channel (length=%d)", self.channel.value, len(value))
        return record

    def most_recent(self) -> CredentialRecord | None:
        """Latest record for the channel, or None when the ledger is empty."""
        rows = self._query(1)
        return _to_record(rows[0]) if rows else None

    def list_recent(self, limit: int = 5) -> list[CredentialRecord]:
        """Newest first, capped at MAX_LIST_LIMIT."""
        limit = min(max(1, limit), MAX_LIST_LIMIT)
        return [_to_record(r) for r in self._query(limit)]

    def _query(self, limit: int):
        stmt = (
            select(self.model)
            .order_by(self.model.created_at.desc(), self.model.id.desc())
            .limit(limit)
        )
        try:
            return list(self.db.scalars(stmt))
        except SQLAlchemyError as e:
            self.db.rollback()
            raise CredentialStoreUnavailable(f"Could not read {self.channel.value} channel") from e
