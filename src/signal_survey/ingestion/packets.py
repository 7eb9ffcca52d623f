from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional

from ..models import Packet, validate_packet


@dataclass(frozen=True)
class PacketIngestionError(ValueError):
    message: str

    def __str__(self) -> str:
        return self.message


def parse_packets(
    raw_packets: Iterable[Mapping[str, object]],
    arrival_time: int = 0,
) -> List[Packet]:
    """Parse raw aggregator payloads into Packet objects stamped at ``arrival_time``.

    Any timestamp carried by the payload is ignored; receiver clocks are not
    trusted for grouping. Raises PacketIngestionError with the offending
    packet index and field.
    """
    return [parse_packet(raw, idx, arrival_time) for idx, raw in enumerate(raw_packets)]


def parse_packet(raw: object, idx: int, arrival_time: int = 0) -> Packet:
    if not isinstance(raw, Mapping):
        raise PacketIngestionError(f"Packet #{idx} must be an object.")
    transmitter_id = _require_int(raw, ("transmitter_id", "device_id"), idx)
    receiver_id = _require_int(raw, ("receiver_id",), idx)
    rss = _require_float(raw, ("rss", "rssi"), idx, receiver_id)
    physical_layer = _optional_int(raw.get("physical_layer"), "physical_layer", idx)
    frequency = _optional_int(raw.get("frequency"), "frequency", idx)

    packet = Packet(
        transmitter_id=transmitter_id,
        receiver_id=receiver_id,
        rss=rss,
        arrival_time=int(arrival_time),
        frequency=frequency,
        physical_layer=physical_layer or 0,
    )
    try:
        validate_packet(packet)
    except ValueError as exc:
        raise PacketIngestionError(
            _format_message(str(exc), idx, receiver_id)
        ) from exc
    return packet


def _lookup(raw: Mapping[str, object], fields: Iterable[str]) -> object:
    for field in fields:
        if field in raw:
            return raw[field]
    return None


def _require_int(raw: Mapping[str, object], fields: tuple, idx: int) -> int:
    value = _lookup(raw, fields)
    if value is None or isinstance(value, bool):
        raise PacketIngestionError(f"Packet #{idx} missing required field '{fields[0]}'.")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise PacketIngestionError(
            f"Packet #{idx} field '{fields[0]}' must be an integer; received {value!r}."
        )


def _require_float(
    raw: Mapping[str, object],
    fields: tuple,
    idx: int,
    receiver_id: Optional[int] = None,
) -> float:
    value = _lookup(raw, fields)
    try:
        return float(value)
    except (TypeError, ValueError):
        raise PacketIngestionError(
            _format_message(
                f"Invalid or missing '{fields[0]}' field; received {value!r}.",
                idx,
                receiver_id,
            )
        )


def _optional_int(value: object, field: str, idx: int) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise PacketIngestionError(
            f"Packet #{idx} field '{field}' must be an integer when provided."
        )


def _format_message(message: str, idx: int, receiver_id: object) -> str:
    return f"Packet ingestion error: {message} (packet=#{idx}, receiver_id={receiver_id})."
