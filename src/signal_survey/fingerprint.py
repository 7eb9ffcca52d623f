from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from .codec import (
    AttributeKind,
    encode_double,
    encode_doubles,
    encode_sized_string,
    encode_string_vector,
)
from .models import Attribute, FingerprintRecord, PathInterval, Sample
from .path import DegenerateInterval, interpolate

LOGGER = logging.getLogger(__name__)

DEFAULT_MIN_SIGNAL_MAP_SAMPLES = 5


@dataclass(frozen=True)
class UnresolvedReference(LookupError):
    message: str

    def __str__(self) -> str:
        return self.message


def resolve_reference(references: Mapping[int, str], device_id: int) -> str:
    uri = references.get(device_id)
    if uri is None:
        raise UnresolvedReference(f"No URI is registered for device {device_id}.")
    return uri


def training_point_target(region: str, frequency: Optional[str] = None) -> str:
    if frequency is None:
        return f"{region}.training point"
    return f"{region}.training point.{frequency}"


def signal_map_uri(region: str, area: str, physical_layer: int, transmitter_id: int) -> str:
    return f"{region}.signal map.{area}.{physical_layer}.{transmitter_id}"


def iter_interval_samples(
    samples: Iterable[Sample], intervals: Sequence[PathInterval]
) -> Iterator[Tuple[PathInterval, List[Sample]]]:
    """Yield each interval with the Samples whose anchor time falls inside it.

    Samples are consumed in time order; a Sample claimed by one interval is
    never offered to a later one, and Samples before an interval start are
    discarded. Intervals that claim nothing are not yielded.
    """
    remaining = sorted(samples, key=lambda sample: sample.anchor_time)
    cursor = 0
    for interval in intervals:
        while cursor < len(remaining) and remaining[cursor].anchor_time < interval.t_start:
            cursor += 1
        start = cursor
        while cursor < len(remaining) and remaining[cursor].anchor_time <= interval.t_end:
            cursor += 1
        if cursor > start:
            yield interval, remaining[start:cursor]


def build_training_points(
    samples: Iterable[Sample],
    intervals: Sequence[PathInterval],
    receivers: Mapping[int, str],
    *,
    target_name: str,
    device: str,
) -> List[FingerprintRecord]:
    """Build one training point per Sample heard by at least one known receiver."""
    records: List[FingerprintRecord] = []
    for interval, current in iter_interval_samples(samples, intervals):
        if interval.is_degenerate():
            LOGGER.warning(
                "Skipping %d samples in zero-duration interval at t=%d",
                len(current),
                interval.t_start,
            )
            continue
        for sample in current:
            record = _training_point(sample, interval, receivers, target_name, device)
            if record is not None:
                records.append(record)

    LOGGER.info("Built %d training points for %s", len(records), target_name)
    return records


def _training_point(
    sample: Sample,
    interval: PathInterval,
    receivers: Mapping[int, str],
    target_name: str,
    device: str,
) -> Optional[FingerprintRecord]:
    position = interpolate(interval, sample.anchor_time)
    observations: List[Tuple[str, float]] = []
    for packet in sample.packets:
        try:
            uri = resolve_reference(receivers, packet.receiver_id)
        except UnresolvedReference as exc:
            LOGGER.debug("Dropping packet at t=%d: %s", sample.anchor_time, exc)
            continue
        observations.append((uri, packet.rss))
    if not observations:
        return None

    created = sample.anchor_time
    attributes = [
        Attribute(AttributeKind.offset(axis).value, encode_double(value), created)
        for axis, value in enumerate(position)
    ]
    attributes.append(
        Attribute(
            AttributeKind.RECEIVERS.value,
            encode_string_vector([uri for uri, _ in observations]),
            created,
        )
    )
    attributes.append(
        Attribute(
            AttributeKind.FINGERPRINT_RSS.value,
            encode_doubles(rss for _, rss in observations),
            created,
        )
    )
    return FingerprintRecord(
        uri=f"{target_name}.{device}.{sample.anchor_time}",
        record_time=created,
        position=position,
        observations=tuple(observations),
        attributes=tuple(attributes),
    )


def build_signal_maps(
    traces: Mapping[int, Sequence[Sample]],
    intervals: Sequence[PathInterval],
    transmitters: Mapping[int, str],
    *,
    region: str,
    area: str,
    physical_layer: int,
    created_at: int,
    min_samples: int = DEFAULT_MIN_SIGNAL_MAP_SAMPLES,
) -> List[FingerprintRecord]:
    """Build one signal map per transmitter covering the whole walk."""
    records: List[FingerprintRecord] = []
    for transmitter_id, trace in traces.items():
        if len(trace) <= min_samples:
            LOGGER.info(
                "Transmitter %s has only %d samples; skipping", transmitter_id, len(trace)
            )
            continue
        try:
            transmitter_uri = resolve_reference(transmitters, transmitter_id)
        except UnresolvedReference as exc:
            LOGGER.debug("Skipping signal map: %s", exc)
            continue

        locations, rss_values = _accumulate_trace(trace, intervals)
        if not rss_values:
            continue

        attributes = [
            Attribute(
                AttributeKind.TRANSMITTER_URI.value,
                encode_sized_string(transmitter_uri),
                created_at,
            ),
            Attribute(AttributeKind.FINGERPRINT_RSS.value, encode_doubles(rss_values), created_at),
        ]
        for axis, axis_values in enumerate(locations):
            attributes.append(
                Attribute(
                    AttributeKind.fingerprint_offset(axis).value,
                    encode_doubles(axis_values),
                    created_at,
                )
            )
        records.append(
            FingerprintRecord(
                uri=signal_map_uri(region, area, physical_layer, transmitter_id),
                record_time=created_at,
                position=(),
                trace=tuple(zip(*locations)),
                observations=tuple((transmitter_uri, rss) for rss in rss_values),
                attributes=tuple(attributes),
            )
        )
        LOGGER.info(
            "Signal map for %s holds %d samples", transmitter_uri, len(rss_values)
        )
    return records


def _accumulate_trace(
    trace: Sequence[Sample], intervals: Sequence[PathInterval]
) -> Tuple[List[List[float]], List[float]]:
    locations: Dict[int, List[float]] = {}
    rss_values: List[float] = []

    for interval, current in iter_interval_samples(trace, intervals):
        for sample in current:
            try:
                position = interpolate(interval, sample.anchor_time)
            except DegenerateInterval as exc:
                LOGGER.warning("Skipping sample at t=%d: %s", sample.anchor_time, exc)
                continue
            for packet in sample.packets:
                rss_values.append(float(packet.rss))
                for axis, value in enumerate(position):
                    locations.setdefault(axis, []).append(value)

    return [locations[axis] for axis in sorted(locations)], rss_values
