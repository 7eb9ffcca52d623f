from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from typing import IO, Iterable, List, Mapping, Optional

from ..models import Packet
from .packets import PacketIngestionError, parse_packet
from .transport import TransportUnavailable

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class SerialPacketError(ValueError):
    message: str

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class SerialTransportConfig:
    port: str
    baudrate: int = 115200
    timeout_seconds: float = 0.05
    max_lines: int = 200
    physical_layer: Optional[int] = None
    transmitter_id: Optional[int] = None


class SerialPacketTransport:
    """Read aggregator packets from a serial-connected sniffer, one packet per line.

    Lines may be JSON objects, ``key=value`` pairs, or CSV of
    ``transmitter_id,receiver_id,rss[,physical_layer[,frequency]]``. When the
    config names a transmitter, packets from other transmitters are dropped.
    A malformed line is logged and skipped; the rest of the batch is kept.
    Packets come back unstamped, CollectionSession stamps arrival time.
    """

    def __init__(
        self,
        config: SerialTransportConfig,
        stream: Optional[IO[str]] = None,
    ) -> None:
        self._config = config
        self._stream = stream
        self._serial = None

    def fetch(self) -> List[Packet]:
        packets = self._parse_lines(self._read_lines())
        return [packet for packet in packets if self._subscribed(packet)]

    def close(self) -> None:
        if self._serial is not None:
            self._serial.close()
            self._serial = None

    def _subscribed(self, packet: Packet) -> bool:
        if (
            self._config.physical_layer is not None
            and packet.physical_layer != self._config.physical_layer
        ):
            return False
        if (
            self._config.transmitter_id is not None
            and packet.transmitter_id != self._config.transmitter_id
        ):
            return False
        return True

    def _read_lines(self) -> List[str]:
        stream = self._ensure_stream()
        lines: List[str] = []
        for _ in range(self._config.max_lines):
            line = stream.readline()
            if not line:
                break
            if isinstance(line, bytes):
                line = line.decode("utf-8", errors="replace")
            lines.append(line)
        return lines

    def _ensure_stream(self) -> IO[str]:
        if self._stream is not None:
            return self._stream
        if self._serial is None:
            import serial

            try:
                self._serial = serial.Serial(
                    self._config.port,
                    baudrate=self._config.baudrate,
                    timeout=self._config.timeout_seconds,
                )
            except serial.SerialException as exc:
                raise TransportUnavailable(
                    f"Could not open packet source {self._config.port}: {exc}"
                ) from exc
            LOGGER.info("Reading packets from %s", self._config.port)
        return self._serial

    def _parse_lines(self, lines: Iterable[str]) -> List[Packet]:
        packets: List[Packet] = []
        for idx, raw_line in enumerate(lines):
            line = raw_line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                entry = dict(self._parse_line(line, idx))
                if "physical_layer" not in entry and self._config.physical_layer is not None:
                    entry["physical_layer"] = self._config.physical_layer
                packets.append(parse_packet(entry, idx))
            except (SerialPacketError, PacketIngestionError) as exc:
                LOGGER.warning("Skipping serial packet line %r: %s", line, exc)
        return packets

    def _parse_line(self, line: str, idx: int) -> Mapping[str, object]:
        if line.startswith("{"):
            return self._parse_json_line(line, idx)
        if "=" in line:
            return self._parse_kv_line(line, idx)
        return self._parse_csv_line(line, idx)

    def _parse_json_line(self, line: str, idx: int) -> Mapping[str, object]:
        try:
            payload = json.loads(line)
        except json.JSONDecodeError as exc:
            raise SerialPacketError(f"Serial packet line #{idx} is not valid JSON: {exc}") from exc
        if not isinstance(payload, Mapping):
            raise SerialPacketError(f"Serial packet line #{idx} must be a JSON object.")
        return payload

    def _parse_csv_line(self, line: str, idx: int) -> Mapping[str, object]:
        parts = [part.strip() for part in line.split(",")]
        if len(parts) < 3:
            raise SerialPacketError(
                f"Serial packet line #{idx} must have at least 3 CSV fields."
            )
        payload: dict[str, object] = {
            "transmitter_id": parts[0],
            "receiver_id": parts[1],
            "rss": parts[2],
        }
        if len(parts) > 3 and parts[3]:
            payload["physical_layer"] = parts[3]
        if len(parts) > 4 and parts[4]:
            payload["frequency"] = parts[4]
        return payload

    def _parse_kv_line(self, line: str, idx: int) -> Mapping[str, object]:
        payload: dict[str, object] = {}
        for part in (part.strip() for part in line.split(",")):
            if not part:
                continue
            if "=" not in part:
                raise SerialPacketError(
                    f"Serial packet line #{idx} has invalid key-value segment: {part!r}."
                )
            key, value = part.split("=", 1)
            payload[key.strip()] = value.strip()
        return payload
