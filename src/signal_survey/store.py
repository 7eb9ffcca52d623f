from __future__ import annotations

import base64
from dataclasses import dataclass
import json
import logging
from typing import Dict, Iterable, List, Mapping, Optional, Protocol, Sequence
from urllib import parse, request

from .codec import AttributeKind, CodecError
from .ingestion.transport import TransportUnavailable
from .models import Attribute, WorldRecord

LOGGER = logging.getLogger(__name__)


class ModelStore(Protocol):
    def snapshot(
        self, uri_pattern: str, attribute_patterns: Sequence[str]
    ) -> List[WorldRecord]: ...

    def push(self, records: Sequence[WorldRecord], create_uris: bool = True) -> None: ...

    def expire(self, uri: str, timestamp: int) -> None: ...

    def close(self) -> None: ...


@dataclass(frozen=True)
class ModelStoreError(RuntimeError):
    message: str

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class HTTPModelStoreConfig:
    base_url: str
    origin: str = "signal survey\nversion 1.0"
    timeout_seconds: float = 5.0


class HTTPModelStore:
    """Talk to the model store over its JSON gateway.

    Attribute payloads travel base64-encoded inside JSON. Requests are not
    retried; a failed request raises TransportUnavailable.
    """

    def __init__(self, config: HTTPModelStoreConfig) -> None:
        self._config = config
        self._base_url = config.base_url.rstrip("/")

    def snapshot(
        self, uri_pattern: str, attribute_patterns: Sequence[str]
    ) -> List[WorldRecord]:
        query = parse.urlencode(
            [("uri", uri_pattern)] + [("attribute", pattern) for pattern in attribute_patterns]
        )
        payload = self._request(f"{self._base_url}/snapshot?{query}")
        if not isinstance(payload, list):
            raise ModelStoreError("Snapshot payload must be a JSON list of records.")
        return [_record_from_json(item, idx) for idx, item in enumerate(payload)]

    def push(self, records: Sequence[WorldRecord], create_uris: bool = True) -> None:
        body = {
            "origin": self._config.origin,
            "create_uris": create_uris,
            "records": [_record_to_json(record) for record in records],
        }
        self._request(f"{self._base_url}/push", body)
        LOGGER.info("Pushed %d records", len(records))

    def expire(self, uri: str, timestamp: int) -> None:
        self._request(
            f"{self._base_url}/expire",
            {"origin": self._config.origin, "uri": uri, "timestamp": timestamp},
        )

    def close(self) -> None:
        LOGGER.debug("Closing model store session at %s", self._base_url)

    def _request(self, url: str, body: Optional[Mapping[str, object]] = None) -> object:
        data = None
        headers = {"Accept": "application/json"}
        if body is not None:
            data = json.dumps(body).encode("utf-8")
            headers["Content-Type"] = "application/json"
        req = request.Request(url, data=data, headers=headers)
        try:
            with request.urlopen(req, timeout=self._config.timeout_seconds) as response:
                text = response.read().decode("utf-8")
        except Exception as exc:  # pragma: no cover - network error path
            raise TransportUnavailable(f"Model store request to {url} failed: {exc}") from exc
        if not text:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise ModelStoreError(f"Model store returned invalid JSON: {exc}") from exc


def _record_to_json(record: WorldRecord) -> Dict[str, object]:
    return {
        "uri": record.uri,
        "attributes": [
            {
                "name": attribute.name,
                "data": base64.b64encode(attribute.data).decode("ascii"),
                "creation": attribute.creation,
                "origin": attribute.origin,
            }
            for attribute in record.attributes
        ],
    }


def _record_from_json(item: object, idx: int) -> WorldRecord:
    if not isinstance(item, Mapping):
        raise ModelStoreError(f"Snapshot record #{idx} must be an object.")
    uri = item.get("uri")
    if not isinstance(uri, str) or not uri:
        raise ModelStoreError(f"Snapshot record #{idx} missing 'uri'.")
    raw_attributes = item.get("attributes", [])
    if not isinstance(raw_attributes, list):
        raise ModelStoreError(f"Snapshot record {uri!r} attributes must be a list.")
    attributes: List[Attribute] = []
    for attribute in raw_attributes:
        if not isinstance(attribute, Mapping):
            raise ModelStoreError(f"Snapshot record {uri!r} has a non-object attribute.")
        try:
            data = base64.b64decode(str(attribute.get("data", "")), validate=True)
            attributes.append(
                Attribute(
                    name=str(attribute["name"]),
                    data=data,
                    creation=int(attribute.get("creation", 0)),
                    origin=str(attribute.get("origin", "")),
                )
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ModelStoreError(
                f"Snapshot record {uri!r} has an invalid attribute: {exc}"
            ) from exc
    return WorldRecord(uri=uri, attributes=tuple(attributes))


def resolve_sensors(
    store: ModelStore, uri_pattern: str = ".*", attribute_patterns: Iterable[str] = ("sensor.*",)
) -> Dict[int, str]:
    """Snapshot sensor attributes and map each 128-bit device id to its URI."""
    sensors: Dict[int, str] = {}
    for record in store.snapshot(uri_pattern, list(attribute_patterns)):
        for attribute in record.attributes:
            if not attribute.name.startswith("sensor."):
                continue
            try:
                _, device_id = AttributeKind.SENSOR.decode(attribute.data)
            except CodecError as exc:
                LOGGER.warning("Ignoring sensor %s on %s: %s", attribute.name, record.uri, exc)
                continue
            sensors[device_id] = record.uri
    LOGGER.info("Found %d sensors", len(sensors))
    return sensors
