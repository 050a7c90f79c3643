from typing import Any

import msgpack

from kvspaces.core.ports.marshaller import Marshaller


class MsgPackMarshaller(Marshaller[Any]):
    """
    MsgPack-based implementation of the Marshaller interface, meant for
    structured values.

    - deterministic binary encoding
    - compact
    - fast

    The encoding does not preserve ordering, so it is not a good fit for
    keys that are iterated by range.
    """
    def marshal(self, value: Any) -> bytes:
        return msgpack.packb(value, use_bin_type=True)

    def unmarshal(self, data: bytes) -> Any:
        return msgpack.unpackb(data, raw=False)
