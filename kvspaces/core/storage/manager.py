import logging
from typing import Any, Callable, Iterable, Sequence, TypeVar

from kvspaces.core.models.keyspace import (
    DEFAULT_KEYSPACE,
    DBKind,
    KeyspaceDescriptor,
    ValueHolder,
)
from kvspaces.core.ports.engine import Cursor, Database, Engine, KeyspaceHandle
from kvspaces.core.ports.marshaller import Marshaller
from kvspaces.core.storage.iterator import EntryIterator, KeyPredicate
from kvspaces.core.storage.marshallers import TYPE_BYTES, TYPE_STRING
from kvspaces.core.storage.registry import KeyspaceRegistry

K = TypeVar("K")
V = TypeVar("V")

Key = bytes | str
Closeable = Callable[[], None]

logger = logging.getLogger("core.storage.manager")


class StoreManager:
    """
    Keyspace-aware facade over an open database.

    A StoreManager owns exactly one database handle and the registry of
    its keyspace handles. Every operation takes an optional keyspace
    name, resolved through the registry (None means the default
    keyspace), and an optional engine-native options object passed
    through untouched (None means engine defaults). Keys may be given as
    bytes or as text, text being encoded as UTF-8. Values are raw bytes.

    The manager holds no lock. Thread-safety is the engine's: shared
    database and keyspace handles may be used from several threads,
    cursors and iterators may not. `close` must only be called once,
    after every other call (live iterators included) has completed.
    """
    def __init__(
        self,
        kind: DBKind,
        database: Database,
        handles: Sequence[KeyspaceHandle],
        closeable: Closeable,
    ) -> None:
        self._kind = kind
        self._db = database
        self._registry = KeyspaceRegistry(handles)
        self._closeable = closeable

    # ------------------------------------------------------------------ #
    # Open
    # ------------------------------------------------------------------ #

    @classmethod
    def open(
        cls,
        engine: Engine,
        path: str,
        options: Any,
        descriptors: Sequence[KeyspaceDescriptor],
        closeable: Closeable,
        read_only: bool = False,
    ) -> "StoreManager":
        cls._check_open_args(engine, path, options, descriptors, closeable)
        database, handles = engine.open(path, options, descriptors, read_only)
        return cls._opened(DBKind.plain, path, database, handles, closeable)

    @classmethod
    def open_ttl(
        cls,
        engine: Engine,
        path: str,
        options: Any,
        descriptors: Sequence[KeyspaceDescriptor],
        ttls: Sequence[int],
        closeable: Closeable,
        read_only: bool = False,
    ) -> "StoreManager":
        """
        Open a database whose keyspaces expire entries. `ttls` holds one
        duration in seconds per descriptor, in the same order; a value
        <= 0 disables expiry for that keyspace.
        """
        cls._check_open_args(engine, path, options, descriptors, closeable)
        if ttls is None:
            raise ValueError("ttls is required")
        if len(ttls) != len(descriptors):
            raise ValueError(
                f"Expected {len(descriptors)} TTL values (one per keyspace), got {len(ttls)}"
            )

        database, handles = engine.open_ttl(path, options, descriptors, ttls, read_only)
        return cls._opened(DBKind.ttl, path, database, handles, closeable)

    @classmethod
    def open_transactional(
        cls,
        engine: Engine,
        path: str,
        options: Any,
        txn_db_options: Any,
        descriptors: Sequence[KeyspaceDescriptor],
        closeable: Closeable,
    ) -> "StoreManager":
        cls._check_open_args(engine, path, options, descriptors, closeable)
        if txn_db_options is None:
            raise ValueError("txn_db_options is required")

        database, handles = engine.open_transactional(path, options, txn_db_options, descriptors)
        return cls._opened(DBKind.transactional, path, database, handles, closeable)

    @classmethod
    def open_optimistic(
        cls,
        engine: Engine,
        path: str,
        options: Any,
        descriptors: Sequence[KeyspaceDescriptor],
        closeable: Closeable,
    ) -> "StoreManager":
        cls._check_open_args(engine, path, options, descriptors, closeable)
        database, handles = engine.open_optimistic(path, options, descriptors)
        return cls._opened(DBKind.optimistic, path, database, handles, closeable)

    @classmethod
    def _opened(
        cls,
        kind: DBKind,
        path: str,
        database: Database,
        handles: Sequence[KeyspaceHandle],
        closeable: Closeable,
    ) -> "StoreManager":
        manager = cls._registered(kind, database, handles, closeable)
        logger.info(
            "Opened %s database at %s with keyspaces %s",
            kind.value, path, ", ".join(manager.keyspaces)
        )
        return manager

    @classmethod
    def _registered(
        cls,
        kind: DBKind,
        database: Database,
        handles: Sequence[KeyspaceHandle],
        closeable: Closeable,
    ) -> "StoreManager":
        try:
            return cls(kind, database, handles, closeable)
        except Exception:
            # nobody owns the native objects yet, release them here
            _release(kind, database, handles)
            raise

    @staticmethod
    def _check_open_args(
        engine: Engine,
        path: str,
        options: Any,
        descriptors: Sequence[KeyspaceDescriptor],
        closeable: Closeable,
    ) -> None:
        if engine is None:
            raise ValueError("engine is required")
        if path is None:
            raise ValueError("path is required")
        if options is None:
            raise ValueError("options is required")
        if closeable is None:
            raise ValueError("closeable is required")
        if not descriptors:
            raise ValueError("At least one keyspace descriptor is required")
        if descriptors[0].name != DEFAULT_KEYSPACE:
            raise ValueError(
                f"The first keyspace descriptor must be '{DEFAULT_KEYSPACE}', "
                f"got '{descriptors[0].name}'"
            )

        seen: set[str] = set()
        for descriptor in descriptors:
            if descriptor.name in seen:
                raise ValueError(f"Duplicate keyspace descriptor '{descriptor.name}'")
            seen.add(descriptor.name)

    # ------------------------------------------------------------------ #
    # Accessors
    # ------------------------------------------------------------------ #

    @property
    def kind(self) -> DBKind:
        return self._kind

    @property
    def database(self) -> Database:
        return self._db

    @property
    def keyspaces(self) -> tuple[str, ...]:
        return self._registry.names

    def handle(self, keyspace: str | None = None) -> KeyspaceHandle:
        """
        Native handle of a keyspace, for use with the specialised
        databases (transactions take handles, not names). The handle stays
        owned by this manager.
        """
        return self._registry.resolve(DEFAULT_KEYSPACE if keyspace is None else keyspace)

    def ttl_db(self) -> Database:
        return self._expect(DBKind.ttl)

    def transaction_db(self) -> Database:
        return self._expect(DBKind.transactional)

    def optimistic_transaction_db(self) -> Database:
        return self._expect(DBKind.optimistic)

    def _expect(self, kind: DBKind) -> Database:
        if self._kind != kind:
            raise RuntimeError(
                f"Database was opened as '{self._kind.value}', not '{kind.value}'"
            )
        return self._db

    # ------------------------------------------------------------------ #
    # Reads & writes
    # ------------------------------------------------------------------ #

    def put(
        self,
        key: Key,
        value: bytes,
        keyspace: str | None = None,
        options: Any = None
    ) -> None:
        key = self._key(key)
        self._require(value, "value")
        self._db.put(self.handle(keyspace), key, value, options)

    def get(self, key: Key, keyspace: str | None = None, options: Any = None) -> bytes | None:
        return self._db.get(self.handle(keyspace), self._key(key), options)

    def key_exists(self, key: Key, keyspace: str | None = None, options: Any = None) -> bool:
        return self._db.key_exists(self.handle(keyspace), self._key(key), options)

    def key_may_exist(
        self,
        key: Key,
        keyspace: str | None = None,
        options: Any = None,
        holder: ValueHolder | None = None,
    ) -> bool:
        """
        Probabilistic membership test: a False answer is definitive, a
        True answer may be a false positive and must be confirmed with
        `get` or `key_exists` when correctness depends on it. The false
        positive rate is engine dependent.

        When `holder` is given and the engine fetched the value while
        answering, the value is stored in it.
        """
        maybe, value = self._db.key_may_exist(self.handle(keyspace), self._key(key), options)
        if holder is not None:
            holder.value = value if maybe else None
        return maybe

    def merge(
        self,
        key: Key,
        value: bytes,
        keyspace: str | None = None,
        options: Any = None
    ) -> None:
        key = self._key(key)
        self._require(value, "value")
        self._db.merge(self.handle(keyspace), key, value, options)

    def delete(self, key: Key, keyspace: str | None = None, options: Any = None) -> None:
        self._db.delete(self.handle(keyspace), self._key(key), options)

    def single_delete(self, key: Key, keyspace: str | None = None, options: Any = None) -> None:
        self._db.single_delete(self.handle(keyspace), self._key(key), options)

    def delete_range(
        self,
        from_key: Key,
        to_key: Key,
        keyspace: str | None = None,
        options: Any = None
    ) -> None:
        """Delete every key in [from_key, to_key); to_key itself is kept."""
        begin = self._key(from_key, "from_key")
        end = self._key(to_key, "to_key")
        self._db.delete_range(self.handle(keyspace), begin, end, options)

    # ------------------------------------------------------------------ #
    # Iteration
    # ------------------------------------------------------------------ #

    def new_cursor(self, keyspace: str | None = None, options: Any = None) -> Cursor:
        """Raw native cursor. The caller owns it and must close it."""
        return self._db.new_cursor(self.handle(keyspace), options)

    def new_entry_iterator(
        self,
        key_marshaller: Marshaller[K],
        value_marshaller: Marshaller[V] | None = None,
        start_key: K | None = None,
        end_matcher: KeyPredicate | None = None,
        key_filter: KeyPredicate | None = None,
        keyspace: str | None = None,
        options: Any = None,
    ) -> EntryIterator[K, V]:
        """
        Iterator over decoded entries of a keyspace, see EntryIterator.
        The caller owns the iterator and must close it.
        """
        self._require(key_marshaller, "key_marshaller")
        handle = self.handle(keyspace)
        return EntryIterator(
            self._db.new_cursor(handle, options),
            key_marshaller,
            value_marshaller,
            start_key,
            end_matcher,
            key_filter,
        )

    def new_key_iterator(
        self,
        key_marshaller: Marshaller[K],
        start_key: K | None = None,
        end_matcher: KeyPredicate | None = None,
        key_filter: KeyPredicate | None = None,
        keyspace: str | None = None,
        options: Any = None,
    ) -> EntryIterator[K, bytes]:
        """Same as new_entry_iterator, values are left as raw bytes."""
        return self.new_entry_iterator(
            key_marshaller,
            None,
            start_key,
            end_matcher,
            key_filter,
            keyspace,
            options,
        )

    # ------------------------------------------------------------------ #
    # Maintenance
    # ------------------------------------------------------------------ #

    # Compaction and property reads take no options object: neither the
    # port nor LMDB has any setting for them.

    def compact_range(self, keyspace: str | None = None) -> None:
        self._db.compact_range(self.handle(keyspace))

    def flush(self, keyspace: str | None = None, options: Any = None) -> None:
        self._db.flush(self.handle(keyspace), options)

    def get_property(self, name: str, keyspace: str | None = None) -> str:
        self._require(name, "name")
        return self._db.get_property(self.handle(keyspace), name)

    def get_int_property(self, name: str, keyspace: str | None = None) -> int:
        self._require(name, "name")
        return self._db.get_int_property(self.handle(keyspace), name)

    # ------------------------------------------------------------------ #
    # Close
    # ------------------------------------------------------------------ #

    def close(self) -> None:
        """
        Close keyspace handles (registry order), then the database, then
        call the closeable. Failures of the first two steps are logged
        and do not stop the teardown; a failure of the closeable
        propagates.
        """
        _release(self._kind, self._db, self._registry)

        logger.debug("Closed %s database, running closeable", self._kind.value)
        self._closeable()

    def __enter__(self) -> "StoreManager":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _require(value: Any, name: str) -> None:
        if value is None:
            raise ValueError(f"{name} is required")

    @classmethod
    def _key(cls, key: Key, name: str = "key") -> bytes:
        cls._require(key, name)
        if isinstance(key, str):
            return TYPE_STRING.marshal(key)
        if not isinstance(key, (bytes, bytearray, memoryview)):
            raise TypeError(f"{name} must be bytes or str, not {type(key).__name__}")
        return TYPE_BYTES.marshal(bytes(key))


def _release(kind: DBKind, database: Database, handles: Iterable[KeyspaceHandle]) -> None:
    # Handles first, then the database; failures are logged, not raised.
    for handle in handles:
        try:
            handle.close()
        except Exception:
            logger.exception("Failed to close keyspace handle '%s'", handle.name)

    try:
        database.close()
    except Exception:
        logger.exception("Failed to close %s database", kind.value)
