"""Tests for the per-channel credential ledger."""
import threading

import pytest
from sqlalchemy import func, select

from forge_relay.claims import RoutingMetadata
from forge_relay.credential_store import (
    MAX_LIST_LIMIT,
    Channel,
    CredentialStore,
    CredentialStoreUnavailable,
    LegacyRecord,
    RoutedRecord,
)
from forge_relay.database import init_db, make_engine, make_session_factory
from forge_relay.models import Token, TokenNext


def test_empty_ledger_has_no_most_recent(db):
    assert CredentialStore(db, Channel.LEGACY).most_recent() is None
    assert CredentialStore(db, Channel.NEXT).most_recent() is None


def test_most_recent_is_last_recorded(db):
    store = CredentialStore(db, Channel.LEGACY)
    for value in ["t1", "t2", "t3"]:
        store.record(value)
    latest = store.most_recent()
    assert isinstance(latest, LegacyRecord)
    assert latest.value == "t3"


def test_timestamps_strictly_increase(db):
    store = CredentialStore(db, Channel.LEGACY)
    stamps = [store.record(f"t{i}").captured_at for i in range(50)]
    assert all(a < b for a, b in zip(stamps, stamps[1:]))
    assert store.most_recent().captured_at == stamps[-1]


def test_identical_captures_are_separate_entries(db):
    store = CredentialStore(db, Channel.LEGACY)
    records = [store.record("same") for _ in range(3)]
    assert db.scalar(select(func.count()).select_from(Token)) == 3
    latest = store.most_recent()
    assert latest.value == "same"
    assert latest.captured_at == records[-1].captured_at


def test_empty_string_is_a_valid_value(db):
    store = CredentialStore(db, Channel.LEGACY)
    store.record("abc")
    store.record("")
    assert store.most_recent().value == ""


def test_channels_are_independent(db):
    CredentialStore(db, Channel.LEGACY).record("legacy-token")
    assert CredentialStore(db, Channel.NEXT).most_recent() is None
    CredentialStore(db, Channel.NEXT).record("next-token")
    assert CredentialStore(db, Channel.LEGACY).most_recent().value == "legacy-token"
    assert CredentialStore(db, Channel.NEXT).most_recent().value == "next-token"


def test_next_channel_keeps_routing_metadata(db):
    store = CredentialStore(db, Channel.NEXT)
    routing = RoutingMetadata(installation_id="INST1", api_base_url="https://api.example", app_id="app")
    store.record("tok", routing)
    latest = store.most_recent()
    assert isinstance(latest, RoutedRecord)
    assert latest.routing == routing
    row = db.scalars(select(TokenNext)).one()
    assert row.installation_id == "INST1"
    assert row.api_base_url == "https://api.example"
    assert row.environment_type == ""


def test_next_channel_without_metadata_defaults_empty(db):
    store = CredentialStore(db, Channel.NEXT)
    store.record("tok")
    assert store.most_recent().routing.is_empty


def test_list_recent_newest_first_and_capped(db):
    store = CredentialStore(db, Channel.LEGACY)
    for i in range(7):
        store.record(f"t{i}")
    assert [r.value for r in store.list_recent(3)] == ["t6", "t5", "t4"]
    assert len(store.list_recent(0)) == 1
    assert len(store.list_recent(MAX_LIST_LIMIT + 50)) == 7


def test_missing_tables_raise_store_unavailable():
    engine = make_engine("sqlite:///:memory:")
    session = make_session_factory(engine)()
    try:
        store = CredentialStore(session, Channel.LEGACY)
        with pytest.raises(CredentialStoreUnavailable):
            store.record("abc")
        with pytest.raises(CredentialStoreUnavailable):
            store.most_recent()
    finally:
        session.close()
        engine.dispose()


@pytest.mark.parametrize(
    "value,expected",
    [("next", Channel.NEXT), ("LEGACY", Channel.LEGACY), (" next ", Channel.NEXT), ("bogus", Channel.LEGACY), (None, Channel.LEGACY)],
)
def test_channel_parse_falls_back(value, expected):
    assert Channel.parse(value, Channel.LEGACY) is expected


def test_concurrent_records_get_distinct_ordered_stamps(tmp_path):
    """Writers on separate sessions interleave safely; every stamp is unique."""
    engine = make_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    init_db(engine)
    factory = make_session_factory(engine)
    threads_n, per_thread = 8, 20
    errors = []
    start = threading.Barrier(threads_n)

    def writer(n):
        session = factory()
        try:
            store = CredentialStore(session, Channel.LEGACY)
            start.wait()
            for i in range(per_thread):
                store.record(f"w{n}-{i}")
        except Exception as e:
            errors.append(e)
        finally:
            session.close()

    workers = [threading.Thread(target=writer, args=(n,)) for n in range(threads_n)]
    for w in workers:
        w.start()
    for w in workers:
        w.join()

    session = factory()
    try:
        assert errors == []
        rows = list(session.scalars(select(Token)))
        assert len(rows) == threads_n * per_thread
        stamps = [row.created_at for row in rows]
        assert len(set(stamps)) == len(stamps)
        newest = max(rows, key=lambda row: row.created_at)
        latest = CredentialStore(session, Channel.LEGACY).most_recent()
        assert latest.value == newest.token_value
        assert latest.captured_at == newest.created_at
    finally:
        session.close()
        engine.dispose()
