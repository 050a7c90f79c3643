import threading
from contextlib import contextmanager
from typing import Generator, Iterable

import lmdb

from kvspaces.infra.lmdb_engine.backend import (
    LMDBDatabase,
    LMDBKeyspaceHandle,
    merge_operator_of,
)
from kvspaces.infra.lmdb_engine.errors import (
    TransactionBusyError,
    TransactionConflictError,
)
from kvspaces.infra.lmdb_engine.options import TransactionDBOptions, WriteOptions

_MISSING = object()


class LMDBTransactionDatabase(LMDBDatabase):
    """
    LMDB database with pessimistic transactions.

    LMDB allows a single write transaction per environment, so a
    pessimistic transaction simply holds it, and with it an exclusive
    lock on every keyspace, from `begin_transaction` to commit or
    rollback. Plain writes through this database take the same lock.

    The lock is process-local and honours
    `TransactionDBOptions.lock_timeout`; running out of time raises
    TransactionBusyError. A thread that holds a transaction must not
    issue plain writes before finishing it.
    """
    def __init__(self, env: lmdb.Environment, txn_db_options: TransactionDBOptions) -> None:
        super().__init__(env)
        self._txn_db_options = txn_db_options
        self._write_lock = threading.Lock()

    @property
    def lock_timeout(self) -> float | None:
        return self._txn_db_options.lock_timeout

    def begin_transaction(self, write_options: WriteOptions | None = None) -> "PessimisticTransaction":
        self._acquire()
        try:
            txn = self._env.begin(write=True)
        except BaseException:
            self._write_lock.release()
            raise
        return PessimisticTransaction(self, txn, write_options)

    @contextmanager
    def _write(self, options: WriteOptions | None) -> Generator[lmdb.Transaction, None, None]:
        self._acquire()
        try:
            with super()._write(options) as txn:
                yield txn
        finally:
            self._write_lock.release()

    def _acquire(self) -> None:
        timeout = self.lock_timeout
        if not self._write_lock.acquire(timeout=-1 if timeout is None else timeout):
            raise TransactionBusyError(
                f"Write lock not acquired within {timeout} seconds"
            )

    def _finish(self, write_options: WriteOptions | None) -> None:
        self._write_lock.release()
        if write_options is not None and write_options.sync:
            self._env.sync(True)


class PessimisticTransaction:
    """
    Transaction holding the LMDB write transaction. Reads see the
    transaction's own writes; nothing is visible to others before commit.

    Used as a context manager, it commits when the block succeeds and
    rolls back when it raises.
    """
    def __init__(
        self,
        db: LMDBTransactionDatabase,
        txn: lmdb.Transaction,
        write_options: WriteOptions | None,
    ) -> None:
        self._db = db
        self._txn = txn
        self._write_options = write_options
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def get(self, handle: LMDBKeyspaceHandle, key: bytes) -> bytes | None:
        self._ensure_active()
        return self._txn.get(key, db=handle.dbi)

    def get_for_update(self, handle: LMDBKeyspaceHandle, key: bytes) -> bytes | None:
        # every key is already locked by the write transaction
        return self.get(handle, key)

    def put(self, handle: LMDBKeyspaceHandle, key: bytes, value: bytes) -> None:
        self._ensure_active()
        self._txn.put(key, value, db=handle.dbi)

    def delete(self, handle: LMDBKeyspaceHandle, key: bytes) -> None:
        self._ensure_active()
        self._txn.delete(key, db=handle.dbi)

    def merge(self, handle: LMDBKeyspaceHandle, key: bytes, value: bytes) -> None:
        operator = merge_operator_of(handle)
        self.put(handle, key, operator(self.get(handle, key), value))

    def commit(self) -> None:
        self._ensure_active()
        self._active = False
        try:
            self._txn.commit()
        except BaseException:
            self._db._finish(None)
            raise
        self._db._finish(self._write_options)

    def rollback(self) -> None:
        self._ensure_active()
        self._active = False
        try:
            self._txn.abort()
        finally:
            self._db._finish(None)

    def __enter__(self) -> "PessimisticTransaction":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if not self._active:
            return
        if exc_type is None:
            self.commit()
        else:
            self.rollback()

    def _ensure_active(self) -> None:
        if not self._active:
            raise RuntimeError("Transaction is already committed or rolled back")


class LMDBOptimisticDatabase(LMDBDatabase):
    """
    LMDB database with optimistic transactions.

    A transaction reads from the snapshot taken when it began and buffers
    its writes. At commit, inside a single write transaction, every key
    it wrote or read with `get_for_update` is compared with the value it
    had in the snapshot; any difference aborts the commit with
    TransactionConflictError and nothing is applied.

    Values are compared, not versions: a key changed and then restored
    to its snapshot value does not count as a conflict.
    """
    def begin_transaction(self, write_options: WriteOptions | None = None) -> "OptimisticTransaction":
        return OptimisticTransaction(self, self._env.begin(), write_options)

    def _apply(
        self,
        tracked: Iterable[tuple[LMDBKeyspaceHandle, bytes, bytes | None]],
        writes: Iterable[tuple[LMDBKeyspaceHandle, bytes, bytes | None]],
        write_options: WriteOptions | None,
    ) -> None:
        with self._write(write_options) as txn:
            for handle, key, seen in tracked:
                if txn.get(key, db=handle.dbi) != seen:
                    raise TransactionConflictError(
                        f"Key {key!r} of keyspace '{handle.name}' changed "
                        "since the transaction began"
                    )

            for handle, key, value in writes:
                if value is None:
                    txn.delete(key, db=handle.dbi)
                else:
                    txn.put(key, value, db=handle.dbi)


class OptimisticTransaction:
    """
    Snapshot-isolated transaction validated at commit time. Reads see the
    transaction's own buffered writes on top of its snapshot.

    Used as a context manager, it commits when the block succeeds and
    rolls back when it raises. Conflicts are reported by `commit`; retry
    policy is left to the caller.
    """
    def __init__(
        self,
        db: LMDBOptimisticDatabase,
        snapshot: lmdb.Transaction,
        write_options: WriteOptions | None,
    ) -> None:
        self._db = db
        self._snapshot = snapshot
        self._write_options = write_options
        self._tracked: dict[tuple[str, bytes], tuple[LMDBKeyspaceHandle, bytes, bytes | None]] = {}
        self._writes: dict[tuple[str, bytes], tuple[LMDBKeyspaceHandle, bytes, bytes | None]] = {}
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def get(self, handle: LMDBKeyspaceHandle, key: bytes) -> bytes | None:
        self._ensure_active()
        pending = self._writes.get((handle.name, key), _MISSING)
        if pending is not _MISSING:
            return pending[2]
        return self._snapshot.get(key, db=handle.dbi)

    def get_for_update(self, handle: LMDBKeyspaceHandle, key: bytes) -> bytes | None:
        value = self.get(handle, key)
        self._track(handle, key)
        return value

    def put(self, handle: LMDBKeyspaceHandle, key: bytes, value: bytes) -> None:
        self._ensure_active()
        self._track(handle, key)
        self._writes[(handle.name, key)] = (handle, key, value)

    def delete(self, handle: LMDBKeyspaceHandle, key: bytes) -> None:
        self._ensure_active()
        self._track(handle, key)
        self._writes[(handle.name, key)] = (handle, key, None)

    def merge(self, handle: LMDBKeyspaceHandle, key: bytes, value: bytes) -> None:
        operator = merge_operator_of(handle)
        self.put(handle, key, operator(self.get(handle, key), value))

    def commit(self) -> None:
        self._ensure_active()
        self._active = False
        try:
            self._db._apply(
                self._tracked.values(),
                self._writes.values(),
                self._write_options,
            )
        finally:
            self._release()

    def rollback(self) -> None:
        self._ensure_active()
        self._active = False
        self._release()

    def __enter__(self) -> "OptimisticTransaction":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if not self._active:
            return
        if exc_type is None:
            self.commit()
        else:
            self.rollback()

    def _track(self, handle: LMDBKeyspaceHandle, key: bytes) -> None:
        ident = (handle.name, key)
        if ident not in self._tracked:
            self._tracked[ident] = (handle, key, self._snapshot.get(key, db=handle.dbi))

    def _release(self) -> None:
        self._snapshot.abort()
        self._tracked.clear()
        self._writes.clear()

    def _ensure_active(self) -> None:
        if not self._active:
            raise RuntimeError("Transaction is already committed or rolled back")
