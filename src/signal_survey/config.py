from __future__ import annotations

from dataclasses import dataclass, field

from .anchors import DEFAULT_WEAK_ORIGIN
from .channels import DEFAULT_CHANNEL_GAP_MS
from .fingerprint import DEFAULT_MIN_SIGNAL_MAP_SAMPLES
from .windowing import DEFAULT_WINDOW_MS


@dataclass(frozen=True)
class CollectionConfig:
    """Timing thresholds for grouping packets during a walk.

    ``channel_gap_ms`` depends on the transmit cadence of the device being
    walked; raise it for transmitters that space their frequency hops wider.
    """

    sample_window_ms: int = DEFAULT_WINDOW_MS
    channel_gap_ms: int = DEFAULT_CHANNEL_GAP_MS
    min_signal_map_samples: int = DEFAULT_MIN_SIGNAL_MAP_SAMPLES
    poll_interval_seconds: float = 0.01
    queue_size: int = 64
    signal_map_polling_interval_ms: int = 500


@dataclass(frozen=True)
class TransportConfig:
    serial_baudrate: int = 115200
    serial_timeout_seconds: float = 0.05
    http_timeout_seconds: float = 2.0


@dataclass(frozen=True)
class StoreConfig:
    timeout_seconds: float = 5.0
    training_point_origin: str = "training point collector\nversion 1.0"
    signal_map_origin: str = "signal map collector\nversion 1.0"
    weak_origin: str = DEFAULT_WEAK_ORIGIN


@dataclass(frozen=True)
class SurveyConfig:
    collection: CollectionConfig = field(default_factory=CollectionConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
