from types import MappingProxyType
from typing import Iterator, Sequence

from kvspaces.core.ports.engine import KeyspaceHandle


class KeyspaceRegistry:
    """
    Read-only mapping from keyspace name to native keyspace handle.

    The registry is built once, right after the engine opened the
    database, and never changes afterwards. Lookups therefore need no
    synchronization. Iteration follows the order in which the handles
    were returned by the engine, i.e. the descriptor order.
    """
    def __init__(self, handles: Sequence[KeyspaceHandle]) -> None:
        if not handles:
            raise ValueError("At least one keyspace handle is required")

        mapping: dict[str, KeyspaceHandle] = {}
        for handle in handles:
            if handle.name in mapping:
                raise ValueError(f"Duplicate keyspace handle '{handle.name}'")
            mapping[handle.name] = handle

        self._handles = MappingProxyType(mapping)

    def resolve(self, name: str) -> KeyspaceHandle:
        handle = self._handles.get(name)
        if handle is None:
            raise KeyError(f"Keyspace '{name}' is not registered")
        return handle

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._handles)

    def __contains__(self, name: object) -> bool:
        return name in self._handles

    def __iter__(self) -> Iterator[KeyspaceHandle]:
        return iter(self._handles.values())

    def __len__(self) -> int:
        return len(self._handles)
