from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Callable, List, Mapping, Optional, Sequence

from .anchors import AnchorRegistry
from .config import CollectionConfig, StoreConfig, SurveyConfig, TransportConfig
from .fetch import (
    ANCHOR_ATTRIBUTES,
    ANCHOR_URIS,
    SIGNAL_MAP_ATTRIBUTES,
    SIGNAL_MAP_URIS,
    TRAINING_POINT_ATTRIBUTES,
    TRAINING_POINT_URIS,
    format_rows,
    select_expired,
    signal_map_rows,
    training_point_rows,
)
from .fingerprint import build_signal_maps, build_training_points, training_point_target
from .ingestion import (
    HTTPPacketTransport,
    HTTPTransportConfig,
    PacketIngestionError,
    PacketTransport,
    SerialPacketError,
    SerialPacketTransport,
    SerialTransportConfig,
    TransportUnavailable,
    current_millis,
)
from .models import FingerprintRecord, PathDescription
from .path import MalformedPath, PathFileError, build_intervals, parse_path_file
from .session import CollectionSession, SignalMapCollector, TrainingPointCollector
from .store import HTTPModelStore, HTTPModelStoreConfig, ModelStore, ModelStoreError, resolve_sensors

LOGGER = logging.getLogger(__name__)

Prompt = Callable[[str], str]


def _load_config(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def _require_mapping(value: object, label: str) -> Mapping[str, object]:
    if not isinstance(value, Mapping):
        raise ValueError(f"{label} must be an object.")
    return value


def _require_int(value: object, label: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{label} must be an integer.")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{label} must be an integer.")


def _require_float(value: object, label: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{label} must be numeric.")


def _require_str(value: object, label: str) -> str:
    if not isinstance(value, str) or not value:
        raise ValueError(f"{label} must be a non-empty string.")
    return value


def _parse_collection_config(payload: Mapping[str, object]) -> CollectionConfig:
    defaults = CollectionConfig()
    config = CollectionConfig(
        sample_window_ms=_require_int(
            payload.get("sample_window_ms", defaults.sample_window_ms),
            "collection.sample_window_ms",
        ),
        channel_gap_ms=_require_int(
            payload.get("channel_gap_ms", defaults.channel_gap_ms), "collection.channel_gap_ms"
        ),
        min_signal_map_samples=_require_int(
            payload.get("min_signal_map_samples", defaults.min_signal_map_samples),
            "collection.min_signal_map_samples",
        ),
        poll_interval_seconds=_require_float(
            payload.get("poll_interval_seconds", defaults.poll_interval_seconds),
            "collection.poll_interval_seconds",
        ),
        queue_size=_require_int(
            payload.get("queue_size", defaults.queue_size), "collection.queue_size"
        ),
        signal_map_polling_interval_ms=_require_int(
            payload.get(
                "signal_map_polling_interval_ms", defaults.signal_map_polling_interval_ms
            ),
            "collection.signal_map_polling_interval_ms",
        ),
    )
    if config.sample_window_ms <= 0:
        raise ValueError("collection.sample_window_ms must be positive.")
    if config.channel_gap_ms < 0:
        raise ValueError("collection.channel_gap_ms must be non-negative.")
    if config.queue_size <= 0:
        raise ValueError("collection.queue_size must be positive.")
    return config


def _parse_transport_config(payload: Mapping[str, object]) -> TransportConfig:
    defaults = TransportConfig()
    return TransportConfig(
        serial_baudrate=_require_int(
            payload.get("serial_baudrate", defaults.serial_baudrate), "transport.serial_baudrate"
        ),
        serial_timeout_seconds=_require_float(
            payload.get("serial_timeout_seconds", defaults.serial_timeout_seconds),
            "transport.serial_timeout_seconds",
        ),
        http_timeout_seconds=_require_float(
            payload.get("http_timeout_seconds", defaults.http_timeout_seconds),
            "transport.http_timeout_seconds",
        ),
    )


def _parse_store_config(payload: Mapping[str, object]) -> StoreConfig:
    defaults = StoreConfig()
    return StoreConfig(
        timeout_seconds=_require_float(
            payload.get("timeout_seconds", defaults.timeout_seconds), "store.timeout_seconds"
        ),
        training_point_origin=_require_str(
            payload.get("training_point_origin", defaults.training_point_origin),
            "store.training_point_origin",
        ),
        signal_map_origin=_require_str(
            payload.get("signal_map_origin", defaults.signal_map_origin),
            "store.signal_map_origin",
        ),
        weak_origin=_require_str(
            payload.get("weak_origin", defaults.weak_origin), "store.weak_origin"
        ),
    )


def _parse_survey_config(payload: Mapping[str, object]) -> SurveyConfig:
    return SurveyConfig(
        collection=_parse_collection_config(
            _require_mapping(payload.get("collection", {}), "collection")
        ),
        transport=_parse_transport_config(
            _require_mapping(payload.get("transport", {}), "transport")
        ),
        store=_parse_store_config(_require_mapping(payload.get("store", {}), "store")),
    )


def _build_transport(
    source: str,
    config: SurveyConfig,
    *,
    physical_layer: int,
    transmitter_id: Optional[int],
    polling_interval_ms: int,
) -> PacketTransport:
    if source.startswith(("http://", "https://")):
        return HTTPPacketTransport(
            HTTPTransportConfig(
                endpoint_url=source,
                physical_layer=physical_layer,
                transmitter_id=transmitter_id,
                polling_interval_ms=polling_interval_ms,
                timeout_seconds=config.transport.http_timeout_seconds,
            )
        )
    return SerialPacketTransport(
        SerialTransportConfig(
            port=source,
            baudrate=config.transport.serial_baudrate,
            timeout_seconds=config.transport.serial_timeout_seconds,
            physical_layer=physical_layer,
            transmitter_id=transmitter_id,
        )
    )


def _build_store(url: str, config: SurveyConfig, origin: str) -> HTTPModelStore:
    return HTTPModelStore(
        HTTPModelStoreConfig(
            base_url=url, origin=origin, timeout_seconds=config.store.timeout_seconds
        )
    )


def _walk_path(session: CollectionSession, description: PathDescription, prompt: Prompt) -> None:
    for coordinate in description.coordinates:
        label = " ".join(f"{value:g}" for value in coordinate)
        try:
            prompt(f"Press enter when you reach {label}")
        except EOFError:
            LOGGER.warning("Input closed before the last waypoint; ending the walk early.")
            return
        session.mark_waypoint()


def _collect(
    session: CollectionSession, description: PathDescription, prompt: Prompt
) -> List[int]:
    session.start()
    try:
        _walk_path(session, description, prompt)
    finally:
        session.stop()
    LOGGER.info("Data gathering is complete after %d packets", session.packet_count)
    return session.move_times


def _push(store: ModelStore, records: Sequence[FingerprintRecord]) -> None:
    LOGGER.info("Pushing %d new solutions", len(records))
    store.push([record.to_world_record() for record in records], create_uris=True)


def run_training_points(
    args: argparse.Namespace, config: SurveyConfig, prompt: Prompt = input
) -> int:
    description = parse_path_file(Path(args.path_file))
    store = _build_store(args.store_url, config, config.store.training_point_origin)
    try:
        receivers = resolve_sensors(store)
        frequency_count = max(len(description.frequencies), 1)
        if description.frequencies:
            LOGGER.info("Transmitter operates on frequencies %s", list(description.frequencies))
        collector = TrainingPointCollector(
            frequency_count=frequency_count,
            window_ms=config.collection.sample_window_ms,
            channel_gap_ms=config.collection.channel_gap_ms,
        )
        transport = _build_transport(
            args.packet_source,
            config,
            physical_layer=description.physical_layer,
            transmitter_id=description.device_id,
            polling_interval_ms=0,
        )
        session = CollectionSession(
            transport,
            collector,
            queue_size=config.collection.queue_size,
            poll_interval_seconds=config.collection.poll_interval_seconds,
        )
        move_times = _collect(session, description, prompt)
        intervals = build_intervals(move_times, description.coordinates)

        records: List[FingerprintRecord] = []
        if not description.frequencies:
            records.extend(
                build_training_points(
                    collector.samples(0),
                    intervals,
                    receivers,
                    target_name=training_point_target(description.region),
                    device=description.device,
                )
            )
        else:
            for channel, frequency in enumerate(description.frequencies):
                samples = collector.samples(channel)
                LOGGER.info(
                    "Processing frequency %d with %d samples", channel, len(samples)
                )
                records.extend(
                    build_training_points(
                        samples,
                        intervals,
                        receivers,
                        target_name=training_point_target(description.region, frequency),
                        device=description.device,
                    )
                )
        _push(store, records)
    finally:
        store.close()
    return 0


def run_signal_map(
    args: argparse.Namespace, config: SurveyConfig, prompt: Prompt = input
) -> int:
    description = parse_path_file(Path(args.path_file), with_area=True)
    store = _build_store(args.store_url, config, config.store.signal_map_origin)
    try:
        transmitters = resolve_sensors(store, ANCHOR_URIS, ANCHOR_ATTRIBUTES)
        collector = SignalMapCollector(
            receiver_id=description.device_id, transmitters=transmitters
        )
        transport = _build_transport(
            args.packet_source,
            config,
            physical_layer=description.physical_layer,
            transmitter_id=None,
            polling_interval_ms=config.collection.signal_map_polling_interval_ms,
        )
        session = CollectionSession(
            transport,
            collector,
            queue_size=config.collection.queue_size,
            poll_interval_seconds=config.collection.poll_interval_seconds,
        )
        move_times = _collect(session, description, prompt)
        intervals = build_intervals(move_times, description.coordinates)
        records = build_signal_maps(
            collector.traces(),
            intervals,
            transmitters,
            region=description.region,
            area=description.area or "",
            physical_layer=description.physical_layer,
            created_at=current_millis(),
            min_samples=config.collection.min_signal_map_samples,
        )
        _push(store, records)
    finally:
        store.close()
    return 0


def run_fetch_training_points(args: argparse.Namespace, config: SurveyConfig) -> int:
    store = _build_store(args.store_url, config, config.store.training_point_origin)
    try:
        records = store.snapshot(TRAINING_POINT_URIS, TRAINING_POINT_ATTRIBUTES)
    finally:
        store.close()
    for line in format_rows(training_point_rows(records)):
        print(line, flush=True)
    return 0


def run_fetch_signal_maps(args: argparse.Namespace, config: SurveyConfig) -> int:
    store = _build_store(args.store_url, config, config.store.signal_map_origin)
    try:
        anchors = AnchorRegistry.from_records(
            store.snapshot(ANCHOR_URIS, ANCHOR_ATTRIBUTES),
            weak_origin=config.store.weak_origin,
        )
        records = store.snapshot(SIGNAL_MAP_URIS, SIGNAL_MAP_ATTRIBUTES)
    finally:
        store.close()
    for line in format_rows(signal_map_rows(records, anchors)):
        print(line, flush=True)
    return 0


def run_expire_training_points(args: argparse.Namespace, config: SurveyConfig) -> int:
    store = _build_store(args.store_url, config, config.store.training_point_origin)
    try:
        records = store.snapshot(TRAINING_POINT_URIS, TRAINING_POINT_ATTRIBUTES)
        uris = select_expired(records, args.start_time, args.end_time)
        expire_time = current_millis()
        for uri in uris:
            store.expire(uri, expire_time)
        LOGGER.info("Expired %d training points", len(uris))
    finally:
        store.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="signal-survey",
        description="Collect and manage RSS fingerprints gathered along a walked path.",
    )
    parser.add_argument(
        "--config",
        help="Path to a JSON configuration file with collection thresholds.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (default: INFO).",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    path_help = (
        "Path file: region on the first line, the device as 'phy.id' on the next "
        "(optionally followed by the frequencies it cycles through), then one "
        "waypoint per line as space-separated x y [z]."
    )
    training = commands.add_parser(
        "training-points",
        help="Walk a transmitter along a path and store training points.",
        description=path_help,
    )
    training.add_argument("packet_source", help="Serial port or aggregator URL.")
    training.add_argument("store_url", help="Model store base URL.")
    training.add_argument("path_file", help="Path description file.")
    training.set_defaults(handler=run_training_points)

    signal_map = commands.add_parser(
        "signal-map",
        help="Walk a receiver along a path and store one signal map per anchor.",
        description=(
            "Path file: region, area, and the receiver as 'phy.id' on the first "
            "three lines, then one waypoint per line."
        ),
    )
    signal_map.add_argument("packet_source", help="Serial port or aggregator URL.")
    signal_map.add_argument("store_url", help="Model store base URL.")
    signal_map.add_argument("path_file", help="Path description file.")
    signal_map.set_defaults(handler=run_signal_map)

    fetch_training = commands.add_parser(
        "fetch-training-points", help="Print stored training points."
    )
    fetch_training.add_argument("store_url", help="Model store base URL.")
    fetch_training.set_defaults(handler=run_fetch_training_points)

    fetch_maps = commands.add_parser("fetch-signal-maps", help="Print stored signal maps.")
    fetch_maps.add_argument("store_url", help="Model store base URL.")
    fetch_maps.set_defaults(handler=run_fetch_signal_maps)

    expire = commands.add_parser(
        "expire-training-points",
        help="Expire training points created between two times (inclusive).",
    )
    expire.add_argument("store_url", help="Model store base URL.")
    expire.add_argument("start_time", type=int, help="Start time in milliseconds.")
    expire.add_argument("end_time", type=int, help="End time in milliseconds.")
    expire.set_defaults(handler=run_expire_training_points)
    return parser


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.log_level)

    try:
        config = SurveyConfig()
        if args.config:
            config_path = Path(args.config)
            if not config_path.exists():
                raise FileNotFoundError(f"Config not found: {config_path}")
            config = _parse_survey_config(_require_mapping(_load_config(config_path), "config"))
        return args.handler(args, config)
    except KeyboardInterrupt:
        return 0
    except (TransportUnavailable, ModelStoreError) as exc:
        LOGGER.error("%s", exc)
        return 1
    except (
        FileNotFoundError,
        PathFileError,
        MalformedPath,
        PacketIngestionError,
        SerialPacketError,
        ValueError,
    ) as exc:
        LOGGER.error("%s", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
