from dataclasses import dataclass
from enum import StrEnum
from typing import Any


DEFAULT_KEYSPACE = "default"


class DBKind(StrEnum):
    """
    Flavour of database a StoreManager was opened with. Decided once at
    open time and carried next to the database handle, so specialised
    accessors can check it without inspecting the handle's type.
    """
    plain = "plain"
    ttl = "ttl"
    transactional = "transactional"
    optimistic = "optimistic"


@dataclass(frozen=True)
class KeyspaceDescriptor:
    """
    Describes a keyspace to open. The list handed to the open calls must
    start with the descriptor of the default keyspace.
    """
    name: str
    """
    Keyspace name. Unique within a database.
    """

    options: Any = None
    """
    Engine-native per-keyspace options (merge operator, ...).
    Opaque to the core; None means engine defaults.
    """


@dataclass
class ValueHolder:
    """
    Output slot for `StoreManager.key_may_exist`. Set to the value when
    the engine already fetched it while answering, left None otherwise.
    """
    value: bytes | None = None
