from __future__ import annotations

from dataclasses import dataclass
import time
from typing import Protocol, Sequence

from ..models import Packet


@dataclass(frozen=True)
class TransportUnavailable(RuntimeError):
    message: str

    def __str__(self) -> str:
        return self.message


class PacketTransport(Protocol):
    def fetch(self) -> Sequence[Packet]: ...

    def close(self) -> None: ...


def current_millis() -> int:
    return time.time_ns() // 1_000_000
