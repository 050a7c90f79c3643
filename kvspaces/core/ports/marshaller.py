from typing import Protocol, TypeVar

T = TypeVar("T")


class Marshaller(Protocol[T]):
    """
    Bidirectional conversion between an opaque byte sequence and a typed
    value. Keys and values cross the engine boundary as bytes; a
    marshaller gives them back their application type.

    Implementations must be:
    - stateless (instances are shared freely between consumers)
    - pure (no side effects)
    - strict: unmarshal raises on malformed input instead of guessing
    """

    def marshal(self, value: T) -> bytes:
        """Encode a typed value into the bytes stored by the engine."""

    def unmarshal(self, data: bytes) -> T:
        """Decode bytes read from the engine into a typed value."""
