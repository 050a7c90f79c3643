from dataclasses import dataclass
from typing import Callable

MergeOperator = Callable[[bytes | None, bytes], bytes]


@dataclass(frozen=True)
class EngineOptions:
    """
    Environment-wide settings of an LMDB database. Mirrors the arguments
    of `lmdb.open`.
    """
    map_size: int = 1 << 30
    """
    Maximum size of the memory map, hence of the database, in bytes.
    """

    max_dbs: int = 16
    """
    Maximum number of named databases, i.e. keyspaces.
    """

    max_readers: int = 126
    """
    Maximum number of simultaneous read transactions (cursors included).
    """

    readahead: bool = True
    writemap: bool = False

    sync: bool = True
    """
    Flush system buffers to disk when committing a transaction.
    """

    lock: bool = True
    """
    Use the LMDB lock file. Disable only when the caller guarantees a
    single process and no concurrent writers.
    """

    create_if_missing: bool = True
    """
    Create the database directory when it does not exist.
    """

    create_missing_keyspaces: bool = True
    """
    Create keyspaces named by descriptors that do not exist yet. When
    False, opening fails with lmdb.NotFoundError instead.
    """


@dataclass(frozen=True)
class KeyspaceOptions:
    merge_operator: MergeOperator | None = None
    """
    Combines the current value (None when absent) with a merge operand
    into the new value. Required for `merge` on the keyspace.
    """


@dataclass(frozen=True)
class ReadOptions:
    iterate_lower_bound: bytes | None = None
    """
    Cursors never move before this key (inclusive).
    """

    iterate_upper_bound: bytes | None = None
    """
    Cursors become invalid on reaching this key (exclusive).
    """


@dataclass(frozen=True)
class WriteOptions:
    sync: bool = False
    """
    Force a synchronous flush of the environment after the write, even
    when the environment was opened with sync=False.
    """


@dataclass(frozen=True)
class FlushOptions:
    wait: bool = True
    """
    Block until data reached the disk. With False the flush is only
    scheduled when the environment runs with sync=False.
    """


@dataclass(frozen=True)
class TransactionDBOptions:
    lock_timeout: float | None = None
    """
    Seconds to wait for the write lock when starting a pessimistic
    transaction or a plain write. None waits forever.
    """
