from __future__ import annotations

from dataclasses import dataclass, field
import math
from typing import List, Optional, Sequence, Tuple


@dataclass(frozen=True)
class Waypoint:
    timestamp: int
    position: Tuple[float, ...]


@dataclass(frozen=True)
class PathInterval:
    t_start: int
    t_end: int
    pos_start: Tuple[float, ...]
    pos_end: Tuple[float, ...]

    @property
    def duration(self) -> int:
        return self.t_end - self.t_start

    def is_degenerate(self) -> bool:
        return self.t_start == self.t_end


@dataclass(frozen=True)
class Packet:
    transmitter_id: int
    receiver_id: int
    rss: float
    arrival_time: int
    frequency: Optional[int] = None
    physical_layer: int = 0


@dataclass(frozen=True)
class ChannelState:
    last_timestamp: int
    last_channel: int


@dataclass
class Sample:
    """Packets that arrived within one belonging window of ``anchor_time``."""

    anchor_time: int
    packets: List[Packet] = field(default_factory=list)

    def belongs(self, arrival_time: int, window_ms: int) -> bool:
        return abs(self.anchor_time - arrival_time) < window_ms

    def push(self, packet: Packet) -> None:
        self.packets.append(packet)


@dataclass(frozen=True)
class Attribute:
    name: str
    data: bytes
    creation: int
    origin: str = ""


@dataclass(frozen=True)
class WorldRecord:
    uri: str
    attributes: Tuple[Attribute, ...] = ()


@dataclass(frozen=True)
class FingerprintRecord:
    uri: str
    record_time: int
    position: Tuple[float, ...]
    observations: Tuple[Tuple[str, float], ...]
    attributes: Tuple[Attribute, ...] = ()
    trace: Tuple[Tuple[float, ...], ...] = ()

    @property
    def references(self) -> List[str]:
        return [reference for reference, _ in self.observations]

    @property
    def rss(self) -> List[float]:
        return [rss for _, rss in self.observations]

    def to_world_record(self) -> WorldRecord:
        return WorldRecord(uri=self.uri, attributes=self.attributes)


@dataclass(frozen=True)
class PathDescription:
    region: str
    device: str
    coordinates: Sequence[Tuple[float, ...]]
    frequencies: Sequence[str] = ()
    area: Optional[str] = None

    @property
    def physical_layer(self) -> int:
        return int(self.device.split(".", 1)[0])

    @property
    def device_id(self) -> int:
        return int(self.device.split(".", 1)[1])

    @property
    def dimensions(self) -> int:
        if not self.coordinates:
            return 0
        return len(self.coordinates[0])


def validate_packet(packet: Packet) -> None:
    if packet.transmitter_id < 0:
        raise ValueError("Packet transmitter_id must be non-negative.")
    if packet.receiver_id < 0:
        raise ValueError("Packet receiver_id must be non-negative.")
    if packet.arrival_time < 0:
        raise ValueError("Packet arrival_time must be non-negative.")
    if not math.isfinite(packet.rss):
        raise ValueError("Packet rss must be a finite number.")
    if packet.frequency is not None and packet.frequency < 0:
        raise ValueError("Packet frequency index must be non-negative when provided.")
