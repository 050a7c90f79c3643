from kvspaces.core.ports.marshaller import Marshaller


class StringMarshaller(Marshaller[str]):
    """
    UTF-8 text. Decoding is strict: invalid UTF-8 raises
    UnicodeDecodeError, no replacement characters are produced.
    """
    def marshal(self, value: str) -> bytes:
        return value.encode("utf-8")

    def unmarshal(self, data: bytes) -> str:
        return bytes(data).decode("utf-8")


class BytesMarshaller(Marshaller[bytes]):
    def marshal(self, value: bytes) -> bytes:
        return value

    def unmarshal(self, data: bytes) -> bytes:
        return data


class IntMarshaller(Marshaller[int]):
    """
    Fixed-width big-endian integers. With signed=False the byte order
    matches numeric order, which makes it usable for keys.
    """
    def __init__(self, length: int = 8, signed: bool = False) -> None:
        if length <= 0:
            raise ValueError("length must be positive")
        self._length = length
        self._signed = signed

    def marshal(self, value: int) -> bytes:
        return value.to_bytes(self._length, "big", signed=self._signed)

    def unmarshal(self, data: bytes) -> int:
        if len(data) != self._length:
            raise ValueError(
                f"Invalid integer encoding: expected {self._length} bytes, got {len(data)}"
            )
        return int.from_bytes(data, "big", signed=self._signed)


TYPE_STRING = StringMarshaller()
TYPE_BYTES = BytesMarshaller()
