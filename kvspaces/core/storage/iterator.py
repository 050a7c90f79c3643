from typing import Callable, Generic, TypeVar

from kvspaces.core.ports.engine import Cursor
from kvspaces.core.ports.marshaller import Marshaller

K = TypeVar("K")
V = TypeVar("V")

KeyPredicate = Callable[[K], bool]


class EntryIterator(Generic[K, V]):
    """
    Lazy, forward-only iterator decoding the entries of a native cursor
    into (key, value) pairs.

    The iterator owns the cursor: it is the only consumer and closing the
    iterator closes the cursor. Nothing else tracks it, so callers must
    release it, preferably with a `with` block:

        with store.new_entry_iterator(TYPE_STRING, TYPE_STRING) as entries:
            for key, value in entries:
                ...

    Iteration rules:
        1. The cursor is positioned on first use, either on the first
           entry >= marshal(start_key) or on the first entry of the
           keyspace.
        2. `end_matcher(key)` returning True stops the iteration before
           that entry is produced (exclusive bound).
        3. `key_filter(key)` returning False skips the entry; filtering
           never stops the iteration.
        4. Keys are always decoded; values are decoded only when a value
           marshaller was given, raw bytes are returned otherwise.

    The iterator cannot be restarted: once exhausted or closed it keeps
    raising StopIteration.
    """
    def __init__(
        self,
        cursor: Cursor,
        key_marshaller: Marshaller[K],
        value_marshaller: Marshaller[V] | None = None,
        start_key: K | None = None,
        end_matcher: KeyPredicate | None = None,
        key_filter: KeyPredicate | None = None,
    ) -> None:
        if cursor is None:
            raise ValueError("cursor is required")
        if key_marshaller is None:
            raise ValueError("key_marshaller is required")

        self._cursor = cursor
        self._key_marshaller = key_marshaller
        self._value_marshaller = value_marshaller
        self._start = None if start_key is None else key_marshaller.marshal(start_key)
        self._end_matcher = end_matcher
        self._key_filter = key_filter

        self._positioned = False
        self._exhausted = False
        self._closed = False

    def __iter__(self) -> "EntryIterator[K, V]":
        return self

    def __next__(self) -> tuple[K, V | bytes]:
        if self._exhausted or self._closed:
            raise StopIteration

        if not self._positioned:
            self._position()
        else:
            self._cursor.next()

        while self._cursor.valid():
            key = self._key_marshaller.unmarshal(self._cursor.key())

            if self._end_matcher is not None and self._end_matcher(key):
                break

            if self._key_filter is not None and not self._key_filter(key):
                self._cursor.next()
                continue

            raw = self._cursor.value()
            if self._value_marshaller is None:
                return key, raw
            return key, self._value_marshaller.unmarshal(raw)

        self._exhausted = True
        raise StopIteration

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._cursor.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> "EntryIterator[K, V]":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _position(self) -> None:
        self._positioned = True
        if self._start is None:
            self._cursor.seek_to_first()
        else:
            self._cursor.seek(self._start)
