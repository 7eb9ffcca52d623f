from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from typing import Dict, Iterable, List, Mapping, Optional
from urllib import parse, request

from ..models import Packet
from .packets import PacketIngestionError, parse_packet
from .transport import TransportUnavailable

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class HTTPTransportConfig:
    endpoint_url: str
    physical_layer: int
    transmitter_id: Optional[int] = None
    polling_interval_ms: int = 0
    timeout_seconds: float = 2.0


class HTTPPacketTransport:
    """Poll an aggregator that serves the packets for one subscription as a JSON list.

    The subscription (physical layer, optional transmitter id, polling
    interval) travels as query parameters on every request. Invalid packets in
    a payload are logged and skipped. Packets come back unstamped,
    CollectionSession stamps arrival time.
    """

    def __init__(self, config: HTTPTransportConfig) -> None:
        self._config = config
        self._url = _subscription_url(config)

    def fetch(self) -> List[Packet]:
        packets: List[Packet] = []
        for idx, raw in enumerate(self._fetch_payload()):
            try:
                packets.append(parse_packet(raw, idx))
            except PacketIngestionError as exc:
                LOGGER.warning("Skipping aggregator packet: %s", exc)
        return packets

    def close(self) -> None:
        LOGGER.debug("Closing aggregator subscription at %s", self._config.endpoint_url)

    def _fetch_payload(self) -> Iterable[Mapping[str, object]]:
        try:
            with request.urlopen(self._url, timeout=self._config.timeout_seconds) as response:
                body = response.read().decode("utf-8")
        except Exception as exc:  # pragma: no cover - network error path
            raise TransportUnavailable(f"Aggregator request failed: {exc}") from exc

        try:
            payload = json.loads(body)
        except json.JSONDecodeError as exc:
            raise TransportUnavailable(f"Aggregator returned invalid JSON: {exc}") from exc

        if not isinstance(payload, list):
            raise TransportUnavailable("Aggregator payload must be a JSON list of packets.")
        return payload


def _subscription_url(config: HTTPTransportConfig) -> str:
    query: Dict[str, object] = {
        "physical_layer": config.physical_layer,
        "interval_ms": config.polling_interval_ms,
    }
    if config.transmitter_id is not None:
        query["transmitter_id"] = config.transmitter_id
    separator = "&" if "?" in config.endpoint_url else "?"
    return f"{config.endpoint_url}{separator}{parse.urlencode(query)}"
