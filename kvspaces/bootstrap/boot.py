import logging

from kvspaces.bootstrap.deps import get_config, open_store
from kvspaces.core.helpers.utils import setup_logging

logger = logging.getLogger("bootstrap.boot")


def main() -> None:
    """
    Open the configured store, report the size of every keyspace and
    close it. Creates the database and its keyspaces on first run.
    """
    config = get_config()
    setup_logging(config.log_level)

    with open_store(config) as store:
        for name in store.keyspaces:
            logger.info(
                "Keyspace '%s': %d entries",
                name, store.get_int_property("lmdb.entries", keyspace=name)
            )
