import logging
import time
from typing import Callable, Sequence

import lmdb

from kvspaces.core.models.keyspace import KeyspaceDescriptor
from kvspaces.infra.lmdb_engine.backend import LMDBDatabase, LMDBKeyspaceHandle
from kvspaces.infra.lmdb_engine.options import EngineOptions, TransactionDBOptions
from kvspaces.infra.lmdb_engine.transactions import (
    LMDBOptimisticDatabase,
    LMDBTransactionDatabase,
)
from kvspaces.infra.lmdb_engine.ttl import LMDBTtlDatabase

DatabaseFactory = Callable[[lmdb.Environment], LMDBDatabase]


class LMDBEngine:
    """
    Engine implementation backed by LMDB. Every keyspace is a named
    database of a single LMDB environment rooted at `path`.

    Create one instance at process start and reuse it for every open. The
    clock is only used by TTL databases.
    """
    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._logger = logging.getLogger("infra.lmdb_engine")
        self._logger.debug(
            "LMDB engine ready (liblmdb %s, py-lmdb %s)",
            ".".join(map(str, lmdb.version())), lmdb.__version__
        )

    def open(
        self,
        path: str,
        options: EngineOptions,
        descriptors: Sequence[KeyspaceDescriptor],
        read_only: bool = False,
    ) -> tuple[LMDBDatabase, list[LMDBKeyspaceHandle]]:
        return self._open(
            path,
            options,
            descriptors,
            [0] * len(descriptors),
            read_only,
            lambda env: LMDBDatabase(env, read_only),
        )

    def open_ttl(
        self,
        path: str,
        options: EngineOptions,
        descriptors: Sequence[KeyspaceDescriptor],
        ttls: Sequence[int],
        read_only: bool = False,
    ) -> tuple[LMDBTtlDatabase, list[LMDBKeyspaceHandle]]:
        return self._open(
            path,
            options,
            descriptors,
            ttls,
            read_only,
            lambda env: LMDBTtlDatabase(env, read_only, self._clock),
        )

    def open_transactional(
        self,
        path: str,
        options: EngineOptions,
        txn_db_options: TransactionDBOptions,
        descriptors: Sequence[KeyspaceDescriptor],
    ) -> tuple[LMDBTransactionDatabase, list[LMDBKeyspaceHandle]]:
        return self._open(
            path,
            options,
            descriptors,
            [0] * len(descriptors),
            False,
            lambda env: LMDBTransactionDatabase(env, txn_db_options),
        )

    def open_optimistic(
        self,
        path: str,
        options: EngineOptions,
        descriptors: Sequence[KeyspaceDescriptor],
    ) -> tuple[LMDBOptimisticDatabase, list[LMDBKeyspaceHandle]]:
        return self._open(
            path,
            options,
            descriptors,
            [0] * len(descriptors),
            False,
            LMDBOptimisticDatabase,
        )

    def _open(
        self,
        path: str,
        options: EngineOptions,
        descriptors: Sequence[KeyspaceDescriptor],
        ttls: Sequence[int],
        read_only: bool,
        factory: DatabaseFactory,
    ):
        env = lmdb.open(
            path,
            map_size=options.map_size,
            max_dbs=options.max_dbs,
            max_readers=options.max_readers,
            readahead=options.readahead,
            writemap=options.writemap,
            sync=options.sync,
            lock=options.lock,
            readonly=read_only,
            create=options.create_if_missing and not read_only,
        )

        try:
            create = options.create_missing_keyspaces and not read_only
            handles = []
            for descriptor, ttl in zip(descriptors, ttls, strict=True):
                dbi = env.open_db(descriptor.name.encode("utf-8"), create=create)
                handles.append(
                    LMDBKeyspaceHandle(descriptor.name, dbi, descriptor.options, ttl)
                )
            database = factory(env)
        except BaseException:
            env.close()
            raise

        self._logger.debug(
            "Opened LMDB environment %s (read_only=%s, %d keyspaces)",
            path, read_only, len(handles)
        )
        return database, handles
