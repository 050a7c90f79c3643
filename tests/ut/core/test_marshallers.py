import pytest

from kvspaces.core.storage.marshallers import IntMarshaller, TYPE_BYTES, TYPE_STRING
from kvspaces.infra.msgpack_marshaller import MsgPackMarshaller


@pytest.mark.ut
def test_string_marshaller_uses_utf8():
    assert TYPE_STRING.marshal("héllo") == b"h\xc3\xa9llo"
    assert TYPE_STRING.unmarshal(b"h\xc3\xa9llo") == "héllo"


@pytest.mark.ut
def test_string_marshaller_is_strict():
    with pytest.raises(UnicodeDecodeError):
        TYPE_STRING.unmarshal(b"\xc3\x28")


@pytest.mark.ut
def test_bytes_marshaller_is_identity():
    data = b"\x00\xffraw"
    assert TYPE_BYTES.marshal(data) is data
    assert TYPE_BYTES.unmarshal(data) is data


@pytest.mark.ut
def test_unsigned_int_encoding_preserves_order():
    ints = IntMarshaller()
    numbers = [0, 1, 255, 256, 65535, 1 << 40]
    encoded = [ints.marshal(n) for n in numbers]

    assert encoded == sorted(encoded)
    assert [ints.unmarshal(e) for e in encoded] == numbers


@pytest.mark.ut
def test_int_marshaller_validates_length():
    ints = IntMarshaller(length=4, signed=True)
    assert ints.unmarshal(ints.marshal(-7)) == -7

    with pytest.raises(ValueError):
        ints.unmarshal(b"\x00\x01")
    with pytest.raises(OverflowError):
        ints.marshal(1 << 40)
    with pytest.raises(ValueError):
        IntMarshaller(length=0)


@pytest.mark.ut
def test_msgpack_marshaller_structured_values():
    marshaller = MsgPackMarshaller()
    record = {"name": "ada", "tags": ["x", "y"], "blob": b"\x00\x01", "n": 3}

    data = marshaller.marshal(record)
    assert isinstance(data, bytes)
    assert marshaller.unmarshal(data) == record
