from typing import Any, Protocol, Sequence

from kvspaces.core.models.keyspace import KeyspaceDescriptor


class KeyspaceHandle(Protocol):
    """
    Native handle on one keyspace (column family) of an open database.

    Handles are produced by the Engine at open time, one per descriptor,
    and are closed by their owner before the database they belong to.
    """

    @property
    def name(self) -> str:
        """Name of the keyspace this handle refers to."""

    def close(self) -> None:
        """Release the native handle. Using it afterwards is an error."""


class Cursor(Protocol):
    """
    Native forward cursor over the sorted keys of one keyspace.

    A cursor is created unpositioned; callers position it with
    `seek_to_first` or `seek` before reading. It is not thread-safe and
    holds native resources until `close` is called.
    """

    def seek_to_first(self) -> None:
        """Position on the first entry of the keyspace."""

    def seek(self, key: bytes) -> None:
        """Position on the first entry whose key is >= `key`."""

    def valid(self) -> bool:
        """True while the cursor points at an entry."""

    def key(self) -> bytes:
        """Raw key of the current entry."""

    def value(self) -> bytes:
        """Raw value of the current entry."""

    def next(self) -> None:
        """Advance to the following entry."""

    def close(self) -> None:
        """Release the cursor and anything it pins (snapshots, txns)."""


class Database(Protocol):
    """
    Operations of an open database handle. Every call is addressed to a
    keyspace handle and accepts an optional engine-native options object;
    `None` means the engine defaults for that call.

    All calls are blocking. Engine failures surface as the engine's own
    exception type.
    """

    def put(self, handle: KeyspaceHandle, key: bytes, value: bytes, options: Any = None) -> None:
        """Store `value` under `key`, replacing any previous value."""

    def get(self, handle: KeyspaceHandle, key: bytes, options: Any = None) -> bytes | None:
        """Return the value stored under `key`, or None when absent."""

    def key_exists(self, handle: KeyspaceHandle, key: bytes, options: Any = None) -> bool:
        """Exact membership test."""

    def key_may_exist(
        self,
        handle: KeyspaceHandle,
        key: bytes,
        options: Any = None
    ) -> tuple[bool, bytes | None]:
        """
        Cheap membership test. May answer True for an absent key, never
        False for a present one. When the engine found the value on the
        way, it is returned as the second item.
        """

    def merge(self, handle: KeyspaceHandle, key: bytes, value: bytes, options: Any = None) -> None:
        """Combine `value` with the current value through the merge operator."""

    def delete(self, handle: KeyspaceHandle, key: bytes, options: Any = None) -> None:
        """Remove `key`. Removing a missing key succeeds silently."""

    def single_delete(self, handle: KeyspaceHandle, key: bytes, options: Any = None) -> None:
        """Remove a key that was written at most once since its last delete."""

    def delete_range(
        self,
        handle: KeyspaceHandle,
        begin: bytes,
        end: bytes,
        options: Any = None
    ) -> None:
        """Remove every key in [begin, end)."""

    def new_cursor(self, handle: KeyspaceHandle, options: Any = None) -> Cursor:
        """Open a new unpositioned cursor. The caller owns it."""

    def compact_range(self, handle: KeyspaceHandle) -> None:
        """Synchronously compact the keyspace."""

    def flush(self, handle: KeyspaceHandle, options: Any = None) -> None:
        """Force in-memory state of the keyspace to durable storage."""

    def get_property(self, handle: KeyspaceHandle, name: str) -> str:
        """Engine-defined property, rendered as text."""

    def get_int_property(self, handle: KeyspaceHandle, name: str) -> int:
        """Engine-defined numeric property."""

    def close(self) -> None:
        """Close the database. Keyspace handles must be closed first."""


class Engine(Protocol):
    """
    Opener for the storage engine. An Engine instance is created once by
    the process bootstrap (any library loading happens there) and then
    used to open databases.

    Each open call returns the database together with one keyspace handle
    per descriptor, in descriptor order. If opening fails, nothing stays
    acquired.
    """

    def open(
        self,
        path: str,
        options: Any,
        descriptors: Sequence[KeyspaceDescriptor],
        read_only: bool = False,
    ) -> tuple[Database, list[KeyspaceHandle]]:
        """Open a plain database."""

    def open_ttl(
        self,
        path: str,
        options: Any,
        descriptors: Sequence[KeyspaceDescriptor],
        ttls: Sequence[int],
        read_only: bool = False,
    ) -> tuple[Database, list[KeyspaceHandle]]:
        """Open a database whose keyspaces expire entries after `ttls` seconds."""

    def open_transactional(
        self,
        path: str,
        options: Any,
        txn_db_options: Any,
        descriptors: Sequence[KeyspaceDescriptor],
    ) -> tuple[Database, list[KeyspaceHandle]]:
        """Open a database supporting pessimistic transactions."""

    def open_optimistic(
        self,
        path: str,
        options: Any,
        descriptors: Sequence[KeyspaceDescriptor],
    ) -> tuple[Database, list[KeyspaceHandle]]:
        """Open a database supporting optimistic transactions."""
