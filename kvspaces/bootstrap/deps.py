import json
import logging
from functools import lru_cache

from pydantic import ValidationError

from kvspaces.bootstrap.config.settings import KVSpacesConfig
from kvspaces.core.models.keyspace import KeyspaceDescriptor
from kvspaces.core.storage.manager import StoreManager
from kvspaces.infra.lmdb_engine.engine import LMDBEngine
from kvspaces.infra.lmdb_engine.options import EngineOptions, TransactionDBOptions

logger = logging.getLogger("bootstrap.deps")


@lru_cache
def get_engine() -> LMDBEngine:
    """The process-wide engine, initialised on first use."""
    return LMDBEngine()


@lru_cache
def get_config() -> KVSpacesConfig:
    try:
        return KVSpacesConfig()  # type: ignore[call-arg]
    except FileNotFoundError as ex:
        raise SystemExit(f"Provide a correct configuration file path: {ex}")
    except ValidationError as ex:
        msg = ["Configuration validation failed:"]
        errs = json.loads(ex.json())
        for err in errs:
            msg.append(f"  {'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}")
        raise SystemExit("\n".join(msg))


def get_engine_options(config: KVSpacesConfig) -> EngineOptions:
    storage = config.storage
    return EngineOptions(
        map_size=storage.map_size,
        max_dbs=max(storage.max_dbs, len(config.keyspaces)),
        max_readers=storage.max_readers,
        readahead=storage.readahead,
        writemap=storage.writemap,
        sync=storage.sync,
        lock=storage.lock,
    )


def open_store(config: KVSpacesConfig | None = None) -> StoreManager:
    """
    Open the StoreManager described by the configuration, using the
    variant it selects.
    """
    if config is None:
        config = get_config()

    storage = config.storage
    path = str(storage.path)
    options = get_engine_options(config)
    descriptors = [KeyspaceDescriptor(name=ks.name) for ks in config.keyspaces]
    engine = get_engine()

    if not storage.read_only:
        storage.path.mkdir(parents=True, exist_ok=True)

    def release() -> None:
        logger.info("Store at %s released", path)

    match storage.variant:
        case "ttl":
            ttls = [ks.ttl for ks in config.keyspaces]
            return StoreManager.open_ttl(
                engine, path, options, descriptors, ttls, release, storage.read_only
            )
        case "transactional":
            txn_db_options = TransactionDBOptions(lock_timeout=storage.lock_timeout)
            return StoreManager.open_transactional(
                engine, path, options, txn_db_options, descriptors, release
            )
        case "optimistic":
            return StoreManager.open_optimistic(engine, path, options, descriptors, release)
        case _:
            return StoreManager.open(
                engine, path, options, descriptors, release, storage.read_only
            )
