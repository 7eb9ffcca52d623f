from __future__ import annotations

from dataclasses import dataclass, field, replace
import logging
import queue
import threading
from typing import Callable, Dict, List, Mapping, Optional, Protocol, Sequence

from .channels import DEFAULT_CHANNEL_GAP_MS, FrequencyChannelDemultiplexer
from .ingestion.transport import PacketTransport, TransportUnavailable, current_millis
from .models import Packet, Sample
from .windowing import DEFAULT_WINDOW_MS, SampleWindows

LOGGER = logging.getLogger(__name__)

_END_OF_STREAM = None


class PacketCollector(Protocol):
    def ingest(self, packets: Sequence[Packet]) -> None: ...


@dataclass
class TrainingPointCollector:
    """Demultiplex packets by frequency channel and window them into Samples."""

    frequency_count: int = 1
    window_ms: int = DEFAULT_WINDOW_MS
    channel_gap_ms: int = DEFAULT_CHANNEL_GAP_MS
    demultiplexer: FrequencyChannelDemultiplexer = field(init=False)
    windows: SampleWindows = field(init=False)

    def __post_init__(self) -> None:
        self.demultiplexer = FrequencyChannelDemultiplexer(
            frequency_count=self.frequency_count, gap_ms=self.channel_gap_ms
        )
        self.windows = SampleWindows(window_ms=self.window_ms)

    def ingest(self, packets: Sequence[Packet]) -> None:
        for packet in packets:
            channel = self.demultiplexer.assign(packet.receiver_id, packet.arrival_time)
            self.windows.add(channel, packet)

    def samples(self, channel: int = 0) -> List[Sample]:
        return self.windows.samples(channel)


@dataclass
class SignalMapCollector:
    """Keep one trace of single-packet Samples per known transmitter heard by one receiver."""

    receiver_id: int
    transmitters: Mapping[int, str]
    _traces: Dict[int, List[Sample]] = field(default_factory=dict, init=False, repr=False)

    def ingest(self, packets: Sequence[Packet]) -> None:
        for packet in packets:
            if packet.receiver_id != self.receiver_id:
                continue
            if packet.transmitter_id not in self.transmitters:
                continue
            self._traces.setdefault(packet.transmitter_id, []).append(
                Sample(anchor_time=packet.arrival_time, packets=[packet])
            )

    def traces(self) -> Dict[int, List[Sample]]:
        return {transmitter: list(trace) for transmitter, trace in self._traces.items()}


class CollectionSession:
    """Drain a packet transport in the background while the walk is in progress.

    A pump thread fetches batches, stamps them with the local arrival clock
    (transports return packets unstamped, so this clock is the only one),
    and hands them over a bounded queue to an ingest thread, the only writer
    of collector state. ``stop`` makes one final fetch, waits for both threads,
    and only then returns, so every batch fetched before completion reaches the
    collector.
    """

    def __init__(
        self,
        transport: PacketTransport,
        collector: PacketCollector,
        *,
        clock: Callable[[], int] = current_millis,
        queue_size: int = 64,
        poll_interval_seconds: float = 0.01,
    ) -> None:
        self._transport = transport
        self._collector = collector
        self._clock = clock
        self._poll_interval_seconds = max(poll_interval_seconds, 0.0)
        self._queue: "queue.Queue[Optional[List[Packet]]]" = queue.Queue(
            maxsize=max(queue_size, 1)
        )
        self._stop_event = threading.Event()
        self._pump_thread: Optional[threading.Thread] = None
        self._ingest_thread: Optional[threading.Thread] = None
        self._pump_error: Optional[Exception] = None
        self._ingest_error: Optional[Exception] = None
        self._stopped = False
        self.move_times: List[int] = []
        self.packet_count = 0

    def __enter__(self) -> "CollectionSession":
        self.start()
        return self

    def __exit__(self, exc_type, exc, traceback) -> None:
        self.stop()

    @property
    def running(self) -> bool:
        return self._pump_thread is not None and self._pump_thread.is_alive()

    def start(self) -> None:
        if self._pump_thread is not None:
            return
        self._ingest_thread = threading.Thread(
            target=self._ingest, name="signal-survey-ingest", daemon=True
        )
        self._pump_thread = threading.Thread(
            target=self._pump, name="signal-survey-pump", daemon=True
        )
        self._ingest_thread.start()
        self._pump_thread.start()

    def mark_waypoint(self) -> int:
        timestamp = self._clock()
        self.move_times.append(timestamp)
        LOGGER.info("Waypoint %d marked at %d", len(self.move_times), timestamp)
        return timestamp

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._stop_event.set()
        if self._pump_thread is not None:
            self._pump_thread.join()
        if self._ingest_thread is not None:
            self._ingest_thread.join()
        self._close_transport()
        LOGGER.info("Collection stopped after %d packets", self.packet_count)
        if self._ingest_error is not None:
            raise self._ingest_error
        if self._pump_error is not None:
            if isinstance(self._pump_error, TransportUnavailable):
                raise self._pump_error
            raise TransportUnavailable(
                f"Packet transport failed: {self._pump_error}"
            ) from self._pump_error

    def _pump(self) -> None:
        try:
            while not self._stop_event.is_set():
                if not self._pump_once():
                    self._stop_event.wait(self._poll_interval_seconds)
            self._pump_once()
        except Exception as exc:
            LOGGER.error("Packet transport failed: %s", exc)
            self._pump_error = exc
        finally:
            self._queue.put(_END_OF_STREAM)

    def _pump_once(self) -> bool:
        packets = self._transport.fetch()
        if not packets:
            return False
        arrival_time = self._clock()
        LOGGER.debug("New packets at time %d", arrival_time)
        self._queue.put([replace(packet, arrival_time=arrival_time) for packet in packets])
        return True

    def _ingest(self) -> None:
        while True:
            batch = self._queue.get()
            if batch is _END_OF_STREAM:
                return
            if self._ingest_error is not None:
                continue
            try:
                self._collector.ingest(batch)
            except Exception as exc:
                LOGGER.error("Packet ingestion failed: %s", exc)
                self._ingest_error = exc
                continue
            self.packet_count += len(batch)

    def _close_transport(self) -> None:
        try:
            self._transport.close()
        except Exception as exc:
            LOGGER.warning("Failed to close packet transport: %s", exc)
