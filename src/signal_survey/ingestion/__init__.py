"""Packet sources that feed a collection session."""

from .http_transport import HTTPPacketTransport, HTTPTransportConfig
from .packets import PacketIngestionError, parse_packet, parse_packets
from .serial_transport import SerialPacketError, SerialPacketTransport, SerialTransportConfig
from .transport import PacketTransport, TransportUnavailable, current_millis

__all__ = [
    "HTTPPacketTransport",
    "HTTPTransportConfig",
    "PacketIngestionError",
    "PacketTransport",
    "SerialPacketError",
    "SerialPacketTransport",
    "SerialTransportConfig",
    "TransportUnavailable",
    "current_millis",
    "parse_packet",
    "parse_packets",
]
