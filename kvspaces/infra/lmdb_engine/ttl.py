import time
from typing import Callable

import lmdb

from kvspaces.infra.lmdb_engine.backend import LMDBDatabase, LMDBKeyspaceHandle

TIMESTAMP_SIZE = 4


class LMDBTtlDatabase(LMDBDatabase):
    """
    LMDB database whose keyspaces expire entries.

    Every stored value carries its write time as a 4-byte big-endian
    unix timestamp suffix:

        stored = value || uint32(write_time)

    An entry of a keyspace opened with ttl > 0 becomes invisible to
    reads, cursors and merges once `write_time + ttl < now`. It stays on
    disk until `compact_range` (or `purge_expired`) removes it.
    A keyspace with ttl <= 0 never expires, but still uses the suffix so
    its layout does not depend on its TTL.
    """
    def __init__(
        self,
        env: lmdb.Environment,
        read_only: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(env, read_only)
        self._clock = clock

    def ttl_of(self, handle: LMDBKeyspaceHandle) -> int:
        handle.ensure_open()
        return handle.ttl

    def purge_expired(self, handle: LMDBKeyspaceHandle) -> int:
        """Physically remove expired entries, returns how many were removed."""
        dbi = handle.dbi
        if handle.ttl <= 0:
            return 0

        with self._write(None) as txn:
            with txn.cursor(db=dbi) as cursor:
                doomed = [
                    key for key, stored in cursor
                    if self._expired(handle, stored)
                ]

            for key in doomed:
                txn.delete(key, db=dbi)

        return len(doomed)

    def compact_range(self, handle: LMDBKeyspaceHandle) -> None:
        removed = self.purge_expired(handle)
        self._logger.debug(
            "Compacted keyspace '%s': %d expired entries removed",
            handle.name, removed
        )

    def _encode(self, handle: LMDBKeyspaceHandle, value: bytes) -> bytes:
        now = int(self._clock())
        return value + now.to_bytes(TIMESTAMP_SIZE, "big")

    def _decode(self, handle: LMDBKeyspaceHandle, stored: bytes | None) -> bytes | None:
        if stored is None:
            return None
        if len(stored) < TIMESTAMP_SIZE:
            raise lmdb.CorruptedError(
                f"Entry without timestamp in TTL keyspace '{handle.name}'"
            )
        if self._expired(handle, stored):
            return None
        return stored[:-TIMESTAMP_SIZE]

    def _expired(self, handle: LMDBKeyspaceHandle, stored: bytes) -> bool:
        if handle.ttl <= 0:
            return False
        written = int.from_bytes(stored[-TIMESTAMP_SIZE:], "big")
        return written + handle.ttl < self._clock()
