"""Binary payload codec for model-store attributes.

Every integer count or length is unsigned big-endian, doubles are big-endian
IEEE-754, and nothing is padded or aligned. Vectors carry a 4-byte count;
strings carry a 2-byte count of UTF-16 code units.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import struct
from typing import Iterable, List, Optional, Sequence, Tuple

_COUNT = struct.Struct(">I")
_LENGTH = struct.Struct(">H")
_DOUBLE = struct.Struct(">d")
_MAX_STRING_UNITS = 0xFFFF
_SENSOR_ID_BYTES = 16


@dataclass(frozen=True)
class CodecError(ValueError):
    message: str

    def __str__(self) -> str:
        return self.message


class MalformedVector(CodecError):
    """A vector count disagrees with the payload length."""


class MalformedString(CodecError):
    """A string length prefix overruns the payload."""


class UnknownAttribute(CodecError):
    """An attribute name outside the known set."""


def encode_double(value: float) -> bytes:
    return _DOUBLE.pack(value)


def decode_double(data: bytes) -> float:
    if len(data) != _DOUBLE.size:
        raise MalformedVector(
            f"Scalar payload must be {_DOUBLE.size} bytes; received {len(data)}."
        )
    return _DOUBLE.unpack(data)[0]


def encode_doubles(values: Iterable[float]) -> bytes:
    values = [float(value) for value in values]
    return _COUNT.pack(len(values)) + struct.pack(f">{len(values)}d", *values)


def decode_doubles(data: bytes) -> List[float]:
    count = _read_count(data)
    expected = _COUNT.size + count * _DOUBLE.size
    if len(data) != expected:
        raise MalformedVector(
            f"Vector declares {count} doubles ({expected} bytes) "
            f"but payload has {len(data)} bytes."
        )
    return list(struct.unpack_from(f">{count}d", data, _COUNT.size))


def encode_sized_string(text: str) -> bytes:
    units = text.encode("utf-16-be")
    unit_count = len(units) // 2
    if unit_count > _MAX_STRING_UNITS:
        raise MalformedString(
            f"String of {unit_count} code units exceeds the {_MAX_STRING_UNITS} limit."
        )
    return _LENGTH.pack(unit_count) + units


def decode_sized_string(data: bytes, offset: int = 0) -> Tuple[str, int]:
    """Read one sized string at ``offset`` and return it with the next offset."""
    if offset + _LENGTH.size > len(data):
        raise MalformedString(
            f"String length prefix at offset {offset} overruns {len(data)}-byte payload."
        )
    (unit_count,) = _LENGTH.unpack_from(data, offset)
    start = offset + _LENGTH.size
    end = start + unit_count * 2
    if end > len(data):
        raise MalformedString(
            f"String of {unit_count} code units at offset {offset} "
            f"overruns {len(data)}-byte payload."
        )
    try:
        text = data[start:end].decode("utf-16-be")
    except UnicodeDecodeError as exc:
        raise MalformedString(f"String at offset {offset} is not valid UTF-16: {exc}") from exc
    return text, end


def encode_string_vector(strings: Sequence[str]) -> bytes:
    parts = [_COUNT.pack(len(strings))]
    parts.extend(encode_sized_string(text) for text in strings)
    return b"".join(parts)


def decode_string_vector(data: bytes) -> List[str]:
    count = _read_count(data)
    offset = _COUNT.size
    strings: List[str] = []
    for _ in range(count):
        text, offset = decode_sized_string(data, offset)
        strings.append(text)
    if offset != len(data):
        raise MalformedVector(
            f"String vector of {count} entries leaves {len(data) - offset} trailing bytes."
        )
    return strings


def encode_sensor_id(physical_layer: int, device_id: int) -> bytes:
    return bytes([physical_layer]) + device_id.to_bytes(_SENSOR_ID_BYTES, "big")


def decode_sensor_id(data: bytes) -> Tuple[int, int]:
    if len(data) != 1 + _SENSOR_ID_BYTES:
        raise MalformedVector(
            f"Sensor id payload must be {1 + _SENSOR_ID_BYTES} bytes; received {len(data)}."
        )
    return data[0], int.from_bytes(data[1:], "big")


def _read_count(data: bytes) -> int:
    if len(data) < _COUNT.size:
        raise MalformedVector(
            f"Vector payload of {len(data)} bytes is too short for a count prefix."
        )
    return _COUNT.unpack_from(data, 0)[0]


def _decode_string_payload(data: bytes) -> str:
    text, end = decode_sized_string(data, 0)
    if end != len(data):
        raise MalformedString(f"String payload leaves {len(data) - end} trailing bytes.")
    return text


class AttributeKind(Enum):
    LOCATION_XOFFSET = "location.xoffset"
    LOCATION_YOFFSET = "location.yoffset"
    LOCATION_ZOFFSET = "location.zoffset"
    RECEIVERS = "receivers.vector<sized string>"
    FINGERPRINT_RSS = "fingerprint.vector<RSS>"
    FINGERPRINT_XOFFSET = "fingerprint.vector<location.xoffset>"
    FINGERPRINT_YOFFSET = "fingerprint.vector<location.yoffset>"
    FINGERPRINT_ZOFFSET = "fingerprint.vector<location.zoffset>"
    TRANSMITTER_URI = "transmitter.uri"
    SENSOR = "sensor.*"

    @classmethod
    def from_name(cls, name: str) -> "AttributeKind":
        if name.startswith("sensor.") and len(name) > len("sensor."):
            return cls.SENSOR
        try:
            return cls(name)
        except ValueError:
            raise UnknownAttribute(f"Unrecognized attribute name {name!r}.") from None

    @classmethod
    def offset(cls, axis: int) -> "AttributeKind":
        return _OFFSET_KINDS[axis]

    @classmethod
    def fingerprint_offset(cls, axis: int) -> "AttributeKind":
        return _FINGERPRINT_OFFSET_KINDS[axis]

    @property
    def is_offset(self) -> bool:
        return self in _OFFSET_KINDS

    @property
    def is_fingerprint_offset(self) -> bool:
        return self in _FINGERPRINT_OFFSET_KINDS

    @property
    def axis(self) -> Optional[int]:
        if self in _OFFSET_KINDS:
            return _OFFSET_KINDS.index(self)
        if self in _FINGERPRINT_OFFSET_KINDS:
            return _FINGERPRINT_OFFSET_KINDS.index(self)
        return None

    def decode(self, data: bytes) -> object:
        return _DECODERS[self](data)


_OFFSET_KINDS = (
    AttributeKind.LOCATION_XOFFSET,
    AttributeKind.LOCATION_YOFFSET,
    AttributeKind.LOCATION_ZOFFSET,
)
_FINGERPRINT_OFFSET_KINDS = (
    AttributeKind.FINGERPRINT_XOFFSET,
    AttributeKind.FINGERPRINT_YOFFSET,
    AttributeKind.FINGERPRINT_ZOFFSET,
)
_DECODERS = {
    AttributeKind.LOCATION_XOFFSET: decode_double,
    AttributeKind.LOCATION_YOFFSET: decode_double,
    AttributeKind.LOCATION_ZOFFSET: decode_double,
    AttributeKind.RECEIVERS: decode_string_vector,
    AttributeKind.FINGERPRINT_RSS: decode_doubles,
    AttributeKind.FINGERPRINT_XOFFSET: decode_doubles,
    AttributeKind.FINGERPRINT_YOFFSET: decode_doubles,
    AttributeKind.FINGERPRINT_ZOFFSET: decode_doubles,
    AttributeKind.TRANSMITTER_URI: _decode_string_payload,
    AttributeKind.SENSOR: decode_sensor_id,
}


def decode_attribute(name: str, data: bytes) -> Tuple[AttributeKind, object]:
    kind = AttributeKind.from_name(name)
    return kind, kind.decode(data)
