"""Read stored fingerprints back out of the model store as plottable rows."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .anchors import AnchorRegistry
from .codec import AttributeKind, CodecError, MalformedVector, decode_attribute
from .models import WorldRecord

LOGGER = logging.getLogger(__name__)

TRAINING_POINT_URIS = r".*\.training point\..*"
TRAINING_POINT_ATTRIBUTES = (
    r"receivers\.vector<sized string>",
    r"fingerprint\.vector<RSS>",
    r"location\..offset",
)
SIGNAL_MAP_URIS = r".*\.signal map\..*"
SIGNAL_MAP_ATTRIBUTES = (
    "transmitter.uri",
    r"fingerprint\.vector<RSS>",
    r"fingerprint\.vector<location\..offset>",
)
ANCHOR_URIS = r".*\.anchor\..*"
ANCHOR_ATTRIBUTES = ("sensor.*", r"location\..offset")

_FREQUENCY_URI = re.compile(r".*\.training point\.(.*)\.[^.]*\.[^.]*\.[^.]*$")


@dataclass(frozen=True)
class TrainingPointRow:
    location: Tuple[float, ...]
    rss: float
    creation: int
    receiver: str
    frequency: Optional[str] = None

    def format(self) -> str:
        fields = [*(str(value) for value in self.location), str(self.rss), str(self.creation)]
        fields.append(self.receiver)
        if self.frequency is not None:
            fields.append(self.frequency)
        return " ".join(fields)


@dataclass(frozen=True)
class SignalMapRow:
    transmitter_location: Tuple[Optional[float], ...]
    location: Tuple[float, ...]
    rss: float
    delta_rss: Optional[float]
    transmitter_uri: str
    uri: str

    def format(self) -> str:
        fields = [str(value) for value in self.transmitter_location]
        fields.extend(str(value) for value in self.location)
        fields.append(str(self.rss))
        fields.append("nil" if self.delta_rss is None else str(self.delta_rss))
        fields.append(_underscored(self.transmitter_uri))
        fields.append(_underscored(self.uri))
        return " ".join(fields)


def training_point_frequency(uri: str) -> Optional[str]:
    match = _FREQUENCY_URI.match(uri)
    if match is None:
        return None
    return match.group(1)


def decode_training_point(record: WorldRecord) -> List[TrainingPointRow]:
    receivers: List[str] = []
    rss_values: List[float] = []
    location: Dict[int, float] = {}
    creation = 0
    for attribute in record.attributes:
        kind, value = decode_attribute(attribute.name, attribute.data)
        if kind is AttributeKind.RECEIVERS:
            receivers = value
        elif kind is AttributeKind.FINGERPRINT_RSS:
            rss_values = value
            creation = attribute.creation
        elif kind.is_offset:
            location[kind.axis] = value
    if len(receivers) != len(rss_values):
        raise MalformedVector(
            f"{record.uri} has {len(receivers)} receivers but {len(rss_values)} RSS values."
        )
    frequency = training_point_frequency(record.uri)
    position = tuple(location[axis] for axis in sorted(location))
    return [
        TrainingPointRow(
            location=position,
            rss=rss,
            creation=creation,
            receiver=receiver,
            frequency=frequency,
        )
        for receiver, rss in zip(receivers, rss_values)
    ]


def training_point_rows(records: Iterable[WorldRecord]) -> List[TrainingPointRow]:
    """Decode training points and group the rows by receiver, first-seen order."""
    by_receiver: Dict[str, List[TrainingPointRow]] = {}
    for record in records:
        try:
            rows = decode_training_point(record)
        except CodecError as exc:
            LOGGER.warning("Skipping training point %s: %s", record.uri, exc)
            continue
        for row in rows:
            by_receiver.setdefault(row.receiver, []).append(row)
    return [row for rows in by_receiver.values() for row in rows]


def decode_signal_map(record: WorldRecord) -> Tuple[str, List[List[float]], List[float]]:
    transmitter_uri = ""
    rss_values: List[float] = []
    locations: Dict[int, List[float]] = {}
    for attribute in record.attributes:
        kind, value = decode_attribute(attribute.name, attribute.data)
        if kind is AttributeKind.TRANSMITTER_URI:
            transmitter_uri = value
        elif kind is AttributeKind.FINGERPRINT_RSS:
            rss_values = value
        elif kind.is_fingerprint_offset:
            locations[kind.axis] = value
    axes = [locations[axis] for axis in sorted(locations)]
    for axis_values in axes:
        if len(axis_values) != len(rss_values):
            raise MalformedVector(
                f"{record.uri} has {len(rss_values)} RSS values but "
                f"{len(axis_values)} positions on an axis."
            )
    return transmitter_uri, axes, rss_values


def signal_map_rows(
    records: Iterable[WorldRecord], anchors: AnchorRegistry
) -> List[SignalMapRow]:
    """Join signal maps with their transmitter anchors; maps of unknown anchors are dropped."""
    rows: List[SignalMapRow] = []
    for record in records:
        try:
            transmitter_uri, axes, rss_values = decode_signal_map(record)
        except CodecError as exc:
            LOGGER.warning("Skipping signal map %s: %s", record.uri, exc)
            continue
        anchor = anchors.get(transmitter_uri)
        if anchor is None:
            LOGGER.debug("No anchor for transmitter %r in %s", transmitter_uri, record.uri)
            continue
        dimensions = len(axes)
        transmitter_location = tuple(anchor.offsets[:dimensions])
        previous: Optional[float] = None
        for idx, rss in enumerate(rss_values):
            rows.append(
                SignalMapRow(
                    transmitter_location=transmitter_location,
                    location=tuple(axis_values[idx] for axis_values in axes),
                    rss=rss,
                    delta_rss=None if previous is None else abs(rss - previous),
                    transmitter_uri=transmitter_uri,
                    uri=record.uri,
                )
            )
            previous = rss
    return rows


def select_expired(records: Iterable[WorldRecord], start_time: int, end_time: int) -> List[str]:
    """URIs whose first attribute was created within [start_time, end_time]."""
    uris: List[str] = []
    for record in records:
        if not record.attributes:
            continue
        creation = record.attributes[0].creation
        if start_time <= creation <= end_time:
            uris.append(record.uri)
    return uris


def _underscored(text: str) -> str:
    return "_".join(text.split(" "))


def format_rows(rows: Sequence[object]) -> List[str]:
    return [row.format() for row in rows]
