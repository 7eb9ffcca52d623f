"""Collect RSS fingerprints along a walked path and encode them for the model store."""

from .anchors import Anchor, AnchorRegistry
from .channels import FrequencyChannelDemultiplexer
from .codec import (
    AttributeKind,
    CodecError,
    MalformedString,
    MalformedVector,
    UnknownAttribute,
    decode_attribute,
)
from .config import CollectionConfig, StoreConfig, SurveyConfig, TransportConfig
from .fingerprint import (
    UnresolvedReference,
    build_signal_maps,
    build_training_points,
    resolve_reference,
)
from .models import (
    Attribute,
    FingerprintRecord,
    Packet,
    PathDescription,
    PathInterval,
    Sample,
    Waypoint,
    WorldRecord,
    validate_packet,
)
from .path import DegenerateInterval, MalformedPath, build_intervals, interpolate
from .session import CollectionSession, SignalMapCollector, TrainingPointCollector
from .windowing import SampleWindows

__all__ = [
    "Anchor",
    "AnchorRegistry",
    "Attribute",
    "AttributeKind",
    "CodecError",
    "CollectionConfig",
    "CollectionSession",
    "DegenerateInterval",
    "FingerprintRecord",
    "FrequencyChannelDemultiplexer",
    "MalformedPath",
    "MalformedString",
    "MalformedVector",
    "Packet",
    "PathDescription",
    "PathInterval",
    "Sample",
    "SampleWindows",
    "SignalMapCollector",
    "StoreConfig",
    "SurveyConfig",
    "TrainingPointCollector",
    "TransportConfig",
    "UnknownAttribute",
    "UnresolvedReference",
    "Waypoint",
    "WorldRecord",
    "build_intervals",
    "build_signal_maps",
    "build_training_points",
    "decode_attribute",
    "interpolate",
    "resolve_reference",
    "validate_packet",
]
