import lmdb
import pytest

from tests.helpers import Clock

from kvspaces.core.models.keyspace import KeyspaceDescriptor
from kvspaces.core.storage.manager import StoreManager
from kvspaces.core.storage.marshallers import TYPE_STRING
from kvspaces.infra.lmdb_engine.engine import LMDBEngine
from kvspaces.infra.lmdb_engine.options import KeyspaceOptions
from kvspaces.infra.lmdb_engine.ttl import LMDBTtlDatabase


def concat(current: bytes | None, operand: bytes) -> bytes:
    return (current or b"") + operand


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def store(tmp_path, clock, engine_options, closeable):
    keyspaces = [
        KeyspaceDescriptor("default"),
        KeyspaceDescriptor("sessions", KeyspaceOptions(merge_operator=concat)),
    ]
    store = StoreManager.open_ttl(
        LMDBEngine(clock=clock), str(tmp_path), engine_options, keyspaces, [0, 10], closeable
    )
    yield store
    store.close()


@pytest.mark.it
def test_ttl_database_is_exposed(store):
    db = store.ttl_db()
    assert isinstance(db, LMDBTtlDatabase)
    assert db.ttl_of(store.handle("sessions")) == 10
    assert db.ttl_of(store.handle()) == 0

    with pytest.raises(RuntimeError):
        store.transaction_db()


@pytest.mark.it
def test_entry_expires_after_ttl(store, clock):
    store.put(b"token", b"abc", keyspace="sessions")

    clock.advance(10)
    assert store.get(b"token", keyspace="sessions") == b"abc"

    clock.advance(1)
    assert store.get(b"token", keyspace="sessions") is None
    assert not store.key_exists(b"token", keyspace="sessions")
    assert not store.key_may_exist(b"token", keyspace="sessions")


@pytest.mark.it
def test_rewrite_refreshes_expiry(store, clock):
    store.put(b"token", b"v1", keyspace="sessions")
    clock.advance(8)
    store.put(b"token", b"v2", keyspace="sessions")
    clock.advance(8)

    assert store.get(b"token", keyspace="sessions") == b"v2"


@pytest.mark.it
def test_zero_ttl_never_expires(store, clock):
    store.put(b"k", b"v")
    clock.advance(10 * 365 * 24 * 3600)
    assert store.get(b"k") == b"v"


@pytest.mark.it
def test_iteration_skips_expired_entries(store, clock):
    store.put("a", b"old", keyspace="sessions")
    store.put("b", b"old", keyspace="sessions")
    clock.advance(6)
    store.put("c", b"new", keyspace="sessions")
    clock.advance(6)

    with store.new_entry_iterator(TYPE_STRING, TYPE_STRING, keyspace="sessions") as entries:
        assert list(entries) == [("c", "new")]


@pytest.mark.it
def test_compaction_purges_expired_entries(store, clock):
    store.put(b"a", b"1", keyspace="sessions")
    store.put(b"b", b"2", keyspace="sessions")
    clock.advance(11)
    store.put(b"c", b"3", keyspace="sessions")

    assert store.get_int_property("lmdb.entries", keyspace="sessions") == 3

    store.compact_range("sessions")
    assert store.get_int_property("lmdb.entries", keyspace="sessions") == 1
    assert store.get(b"c", keyspace="sessions") == b"3"
    assert store.ttl_db().purge_expired(store.handle("sessions")) == 0


@pytest.mark.it
def test_merge_ignores_expired_value(store, clock):
    store.merge(b"k", b"a", keyspace="sessions")
    store.merge(b"k", b"b", keyspace="sessions")
    assert store.get(b"k", keyspace="sessions") == b"ab"

    clock.advance(11)
    store.merge(b"k", b"c", keyspace="sessions")
    assert store.get(b"k", keyspace="sessions") == b"c"


@pytest.mark.it
def test_value_without_timestamp_is_corruption(store):
    db = store.ttl_db()
    with db.env.begin(write=True) as txn:
        txn.put(b"bad", b"xy", db=store.handle("sessions").dbi)

    with pytest.raises(lmdb.CorruptedError):
        store.get(b"bad", keyspace="sessions")
