import lmdb


class HandleClosedError(lmdb.Error):
    """A keyspace handle was used after being closed."""


class TransactionConflictError(lmdb.Error):
    """An optimistic transaction lost a race on one of its keys."""


class TransactionBusyError(lmdb.Error):
    """The write lock could not be acquired within the lock timeout."""
