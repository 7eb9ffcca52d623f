from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Hashable, Iterable, List

from .models import Packet, Sample

DEFAULT_WINDOW_MS = 100


@dataclass
class SampleWindows:
    """Group packets into Samples, one ordered Sample list per bucket."""

    window_ms: int = DEFAULT_WINDOW_MS
    _buckets: Dict[Hashable, List[Sample]] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.window_ms <= 0:
            raise ValueError("window_ms must be positive.")

    def add(self, bucket: Hashable, packet: Packet) -> Sample:
        samples = self._buckets.setdefault(bucket, [])
        if not samples or not samples[-1].belongs(packet.arrival_time, self.window_ms):
            samples.append(Sample(anchor_time=packet.arrival_time))
        samples[-1].push(packet)
        return samples[-1]

    def extend(self, bucket: Hashable, packets: Iterable[Packet]) -> None:
        for packet in packets:
            self.add(bucket, packet)

    def samples(self, bucket: Hashable) -> List[Sample]:
        return list(self._buckets.get(bucket, ()))

    def buckets(self) -> List[Hashable]:
        return list(self._buckets)

    def sample_count(self) -> int:
        return sum(len(samples) for samples in self._buckets.values())
