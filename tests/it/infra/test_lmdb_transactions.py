from concurrent.futures import ThreadPoolExecutor

import pytest

from kvspaces.core.models.keyspace import KeyspaceDescriptor
from kvspaces.core.storage.manager import StoreManager
from kvspaces.infra.lmdb_engine.errors import TransactionBusyError, TransactionConflictError
from kvspaces.infra.lmdb_engine.options import KeyspaceOptions, TransactionDBOptions


def concat(current: bytes | None, operand: bytes) -> bytes:
    return (current or b"") + operand


@pytest.fixture
def keyspaces():
    return [
        KeyspaceDescriptor("default"),
        KeyspaceDescriptor("accounts", KeyspaceOptions(merge_operator=concat)),
    ]


@pytest.fixture
def pessimistic(tmp_path, lmdb_engine, engine_options, keyspaces, closeable):
    store = StoreManager.open_transactional(
        lmdb_engine,
        str(tmp_path),
        engine_options,
        TransactionDBOptions(lock_timeout=0.1),
        keyspaces,
        closeable,
    )
    yield store
    store.close()


@pytest.fixture
def optimistic(tmp_path, lmdb_engine, engine_options, keyspaces, closeable):
    store = StoreManager.open_optimistic(lmdb_engine, str(tmp_path), engine_options, keyspaces, closeable)
    yield store
    store.close()


@pytest.fixture
def executor():
    with ThreadPoolExecutor(max_workers=1) as pool:
        yield pool


@pytest.mark.it
def test_pessimistic_commit(pessimistic, executor):
    db = pessimistic.transaction_db()
    accounts = pessimistic.handle("accounts")

    with db.begin_transaction() as txn:
        txn.put(accounts, b"alice", b"10")
        txn.merge(accounts, b"log", b"+10")
        assert txn.get_for_update(accounts, b"alice") == b"10"
        assert executor.submit(pessimistic.get, b"alice", "accounts").result() is None

    assert not txn.active
    assert pessimistic.get(b"alice", keyspace="accounts") == b"10"
    assert pessimistic.get(b"log", keyspace="accounts") == b"+10"


@pytest.mark.it
def test_pessimistic_rollback(pessimistic):
    db = pessimistic.transaction_db()
    accounts = pessimistic.handle("accounts")
    pessimistic.put(b"alice", b"10", keyspace="accounts")

    txn = db.begin_transaction()
    txn.delete(accounts, b"alice")
    assert txn.get(accounts, b"alice") is None
    txn.rollback()

    assert pessimistic.get(b"alice", keyspace="accounts") == b"10"
    with pytest.raises(RuntimeError):
        txn.commit()


@pytest.mark.it
def test_pessimistic_rolls_back_on_error(pessimistic):
    db = pessimistic.transaction_db()
    accounts = pessimistic.handle("accounts")

    with pytest.raises(ValueError):
        with db.begin_transaction() as txn:
            txn.put(accounts, b"bob", b"5")
            raise ValueError("abort")

    assert pessimistic.get(b"bob", keyspace="accounts") is None
    with db.begin_transaction() as txn:
        txn.put(accounts, b"bob", b"6")
    assert pessimistic.get(b"bob", keyspace="accounts") == b"6"


@pytest.mark.it
def test_pessimistic_lock_timeout(pessimistic, executor):
    db = pessimistic.transaction_db()
    assert db.lock_timeout == 0.1

    txn = db.begin_transaction()
    try:
        with pytest.raises(TransactionBusyError):
            executor.submit(db.begin_transaction).result()
        with pytest.raises(TransactionBusyError):
            executor.submit(pessimistic.put, b"k", b"v").result()
    finally:
        txn.rollback()

    executor.submit(pessimistic.put, b"k", b"v").result()
    assert pessimistic.get(b"k") == b"v"


@pytest.mark.it
def test_optimistic_read_your_writes(optimistic):
    db = optimistic.optimistic_transaction_db()
    accounts = optimistic.handle("accounts")
    optimistic.put(b"gone", b"x", keyspace="accounts")

    txn = db.begin_transaction()
    txn.put(accounts, b"alice", b"10")
    txn.delete(accounts, b"gone")
    txn.merge(accounts, b"log", b"a")
    txn.merge(accounts, b"log", b"b")

    assert txn.get(accounts, b"alice") == b"10"
    assert txn.get(accounts, b"gone") is None
    assert txn.get(accounts, b"log") == b"ab"
    assert optimistic.get(b"alice", keyspace="accounts") is None
    assert optimistic.get(b"gone", keyspace="accounts") == b"x"

    txn.commit()

    assert optimistic.get(b"alice", keyspace="accounts") == b"10"
    assert optimistic.get(b"gone", keyspace="accounts") is None
    assert optimistic.get(b"log", keyspace="accounts") == b"ab"


@pytest.mark.it
def test_optimistic_conflict_applies_nothing(optimistic):
    db = optimistic.optimistic_transaction_db()
    accounts = optimistic.handle("accounts")
    optimistic.put(b"alice", b"10", keyspace="accounts")

    txn = db.begin_transaction()
    balance = int(txn.get_for_update(accounts, b"alice"))
    txn.put(accounts, b"alice", str(balance + 5).encode())
    txn.put(accounts, b"bob", b"1")

    optimistic.put(b"alice", b"20", keyspace="accounts")

    with pytest.raises(TransactionConflictError):
        txn.commit()

    assert not txn.active
    assert optimistic.get(b"alice", keyspace="accounts") == b"20"
    assert optimistic.get(b"bob", keyspace="accounts") is None


@pytest.mark.it
def test_optimistic_blind_write_conflicts(optimistic):
    db = optimistic.optimistic_transaction_db()
    accounts = optimistic.handle("accounts")

    txn = db.begin_transaction()
    txn.put(accounts, b"carol", b"1")
    optimistic.put(b"carol", b"2", keyspace="accounts")

    with pytest.raises(TransactionConflictError):
        txn.commit()


@pytest.mark.it
def test_optimistic_ignores_untracked_changes(optimistic):
    db = optimistic.optimistic_transaction_db()
    accounts = optimistic.handle("accounts")

    with db.begin_transaction() as txn:
        assert txn.get(accounts, b"other") is None
        txn.put(accounts, b"mine", b"1")
        optimistic.put(b"other", b"changed", keyspace="accounts")

    assert optimistic.get(b"mine", keyspace="accounts") == b"1"


@pytest.mark.it
def test_optimistic_rollback(optimistic):
    db = optimistic.optimistic_transaction_db()
    accounts = optimistic.handle("accounts")

    txn = db.begin_transaction()
    txn.put(accounts, b"alice", b"10")
    txn.rollback()

    assert optimistic.get(b"alice", keyspace="accounts") is None
    with pytest.raises(RuntimeError):
        txn.put(accounts, b"alice", b"11")
