import functools
import logging
from contextlib import contextmanager
from typing import Any, Callable, Generator

import lmdb

from kvspaces.infra.lmdb_engine.errors import HandleClosedError
from kvspaces.infra.lmdb_engine.options import (
    FlushOptions,
    KeyspaceOptions,
    MergeOperator,
    ReadOptions,
    WriteOptions,
)

# property name -> key of Transaction.stat(db)
KEYSPACE_PROPERTIES = {
    "lmdb.entries": "entries",
    "lmdb.depth": "depth",
    "lmdb.branch-pages": "branch_pages",
    "lmdb.leaf-pages": "leaf_pages",
    "lmdb.overflow-pages": "overflow_pages",
    "lmdb.psize": "psize",
}

# property name -> key of Environment.info()
ENVIRONMENT_PROPERTIES = {
    "lmdb.map-size": "map_size",
    "lmdb.last-pgno": "last_pgno",
    "lmdb.last-txnid": "last_txnid",
    "lmdb.max-readers": "max_readers",
    "lmdb.num-readers": "num_readers",
}

READERS_PROPERTY = "lmdb.readers"


class LMDBKeyspaceHandle:
    """
    A keyspace of an LMDB environment: a named database (DBI) plus the
    per-keyspace settings the adapter needs (merge operator, TTL).

    LMDB does not release DBIs individually, closing the handle only
    makes further use of it fail.
    """
    def __init__(
        self,
        name: str,
        dbi: Any,
        options: KeyspaceOptions | None = None,
        ttl: int = 0,
    ) -> None:
        self._name = name
        self._dbi = dbi
        self._options = options
        self._ttl = ttl

    @property
    def name(self) -> str:
        return self._name

    @property
    def options(self) -> KeyspaceOptions | None:
        return self._options

    @property
    def ttl(self) -> int:
        return self._ttl

    @property
    def closed(self) -> bool:
        return self._dbi is None

    @property
    def dbi(self) -> Any:
        self.ensure_open()
        return self._dbi

    def ensure_open(self) -> None:
        if self._dbi is None:
            raise HandleClosedError(f"Keyspace handle '{self._name}' is closed")

    def close(self) -> None:
        self._dbi = None

    def __repr__(self) -> str:
        return f"LMDBKeyspaceHandle(name={self._name!r}, closed={self.closed})"


def merge_operator_of(handle: LMDBKeyspaceHandle) -> MergeOperator:
    options = handle.options
    if options is None or options.merge_operator is None:
        raise lmdb.InvalidParameterError(
            f"No merge operator configured for keyspace '{handle.name}'"
        )
    return options.merge_operator


class LMDBCursor:
    """
    Forward cursor over one keyspace, reading from its own read-only
    transaction (a consistent snapshot taken when the cursor was created).

    `decode` turns a stored value into the value seen by callers; an entry
    for which it returns None is invisible and skipped. Bounds from
    ReadOptions are applied while positioning.

    The cursor pins its snapshot until `close`.
    """
    def __init__(
        self,
        txn: lmdb.Transaction,
        handle: LMDBKeyspaceHandle,
        decode: Callable[[bytes], bytes | None],
        options: ReadOptions | None = None,
    ) -> None:
        self._txn = txn
        self._cursor = txn.cursor(db=handle.dbi)
        self._decode = decode
        self._lower = options.iterate_lower_bound if options is not None else None
        self._upper = options.iterate_upper_bound if options is not None else None

        self._current: bytes | None = None
        self._valid = False
        self._closed = False

    def seek_to_first(self) -> None:
        if self._lower is None:
            self._settle(self._cursor.first())
        else:
            self._settle(self._cursor.set_range(self._lower))

    def seek(self, key: bytes) -> None:
        if self._lower is not None and key < self._lower:
            key = self._lower
        self._settle(self._cursor.set_range(key))

    def valid(self) -> bool:
        return self._valid

    def key(self) -> bytes:
        self._check_positioned()
        return self._cursor.key()

    def value(self) -> bytes:
        self._check_positioned()
        return self._current

    def next(self) -> None:
        self._check_positioned()
        self._settle(self._cursor.next())

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._valid = False
        self._current = None
        self._cursor.close()
        self._txn.abort()

    def _check_positioned(self) -> None:
        if not self._valid:
            raise RuntimeError("Cursor is not positioned on an entry")

    def _settle(self, positioned: bool) -> None:
        while positioned:
            if self._upper is not None and self._cursor.key() >= self._upper:
                positioned = False
                break

            self._current = self._decode(self._cursor.value())
            if self._current is not None:
                break

            positioned = self._cursor.next()

        self._valid = positioned
        if not positioned:
            self._current = None


class LMDBDatabase:
    """
    Plain LMDB database: one environment, one named database per
    keyspace.

    Each call runs in its own short-lived LMDB transaction. LMDB
    serializes writers and never blocks readers, so the object can be
    shared between threads; cursors cannot.

    Subclasses change how values are stored through `_encode`/`_decode`
    and how write transactions are obtained through `_write`.
    """
    def __init__(self, env: lmdb.Environment, read_only: bool = False) -> None:
        self._env = env
        self._read_only = read_only
        self._logger = logging.getLogger("infra.lmdb_engine")

    @property
    def env(self) -> lmdb.Environment:
        return self._env

    @property
    def read_only(self) -> bool:
        return self._read_only

    def put(
        self,
        handle: LMDBKeyspaceHandle,
        key: bytes,
        value: bytes,
        options: WriteOptions | None = None
    ) -> None:
        dbi = handle.dbi
        with self._write(options) as txn:
            txn.put(key, self._encode(handle, value), db=dbi)

    def get(
        self,
        handle: LMDBKeyspaceHandle,
        key: bytes,
        options: ReadOptions | None = None
    ) -> bytes | None:
        dbi = handle.dbi
        with self._env.begin(db=dbi) as txn:
            return self._decode(handle, txn.get(key))

    def key_exists(
        self,
        handle: LMDBKeyspaceHandle,
        key: bytes,
        options: ReadOptions | None = None
    ) -> bool:
        return self.get(handle, key, options) is not None

    def key_may_exist(
        self,
        handle: LMDBKeyspaceHandle,
        key: bytes,
        options: ReadOptions | None = None
    ) -> tuple[bool, bytes | None]:
        # LMDB has no filters to consult, the lookup itself is exact.
        value = self.get(handle, key, options)
        return value is not None, value

    def merge(
        self,
        handle: LMDBKeyspaceHandle,
        key: bytes,
        value: bytes,
        options: WriteOptions | None = None
    ) -> None:
        dbi = handle.dbi
        operator = merge_operator_of(handle)
        with self._write(options) as txn:
            current = self._decode(handle, txn.get(key, db=dbi))
            txn.put(key, self._encode(handle, operator(current, value)), db=dbi)

    def delete(
        self,
        handle: LMDBKeyspaceHandle,
        key: bytes,
        options: WriteOptions | None = None
    ) -> None:
        dbi = handle.dbi
        with self._write(options) as txn:
            txn.delete(key, db=dbi)

    def single_delete(
        self,
        handle: LMDBKeyspaceHandle,
        key: bytes,
        options: WriteOptions | None = None
    ) -> None:
        # B+tree deletes leave no tombstone, both flavours are the same.
        self.delete(handle, key, options)

    def delete_range(
        self,
        handle: LMDBKeyspaceHandle,
        begin: bytes,
        end: bytes,
        options: WriteOptions | None = None
    ) -> None:
        dbi = handle.dbi
        if begin >= end:
            return

        with self._write(options) as txn:
            doomed: list[bytes] = []
            with txn.cursor(db=dbi) as cursor:
                if cursor.set_range(begin):
                    for key in cursor.iternext(keys=True, values=False):
                        if key >= end:
                            break
                        doomed.append(key)

            for key in doomed:
                txn.delete(key, db=dbi)

        self._logger.debug(
            "Deleted %d keys from keyspace '%s' in range [%r, %r)",
            len(doomed), handle.name, begin, end
        )

    def new_cursor(
        self,
        handle: LMDBKeyspaceHandle,
        options: ReadOptions | None = None
    ) -> LMDBCursor:
        dbi = handle.dbi
        txn = self._env.begin(db=dbi)
        try:
            return LMDBCursor(
                txn,
                handle,
                functools.partial(self._decode, handle),
                options,
            )
        except BaseException:
            txn.abort()
            raise

    def compact_range(self, handle: LMDBKeyspaceHandle) -> None:
        # Freed B+tree pages are reused in place, there is nothing to
        # rewrite for a plain keyspace.
        handle.ensure_open()
        self._logger.debug("Nothing to compact in keyspace '%s'", handle.name)

    def flush(self, handle: LMDBKeyspaceHandle, options: FlushOptions | None = None) -> None:
        handle.ensure_open()
        wait = True if options is None else options.wait
        self._env.sync(wait)

    def get_property(self, handle: LMDBKeyspaceHandle, name: str) -> str:
        if name == READERS_PROPERTY:
            handle.ensure_open()
            return self._env.readers()
        return str(self.get_int_property(handle, name))

    def get_int_property(self, handle: LMDBKeyspaceHandle, name: str) -> int:
        dbi = handle.dbi

        if name in KEYSPACE_PROPERTIES:
            with self._env.begin() as txn:
                return int(txn.stat(dbi)[KEYSPACE_PROPERTIES[name]])

        if name in ENVIRONMENT_PROPERTIES:
            return int(self._env.info()[ENVIRONMENT_PROPERTIES[name]])

        raise lmdb.InvalidParameterError(f"Unknown property '{name}'")

    def close(self) -> None:
        self._env.close()

    @contextmanager
    def _write(self, options: WriteOptions | None) -> Generator[lmdb.Transaction, None, None]:
        with self._env.begin(write=True) as txn:
            yield txn

        if options is not None and options.sync:
            self._env.sync(True)

    def _encode(self, handle: LMDBKeyspaceHandle, value: bytes) -> bytes:
        return value

    def _decode(self, handle: LMDBKeyspaceHandle, stored: bytes | None) -> bytes | None:
        return stored
