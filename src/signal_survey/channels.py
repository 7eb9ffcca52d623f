from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

from .models import ChannelState

DEFAULT_CHANNEL_GAP_MS = 10


@dataclass
class FrequencyChannelDemultiplexer:
    """Assign packets to frequency channels for a transmitter that cycles frequencies.

    The transmitter sends on each of its ``frequency_count`` frequencies in a
    fixed order with tight spacing. Per receiver, a packet arriving more than
    ``gap_ms`` after the previous one starts a new cycle on channel 0; anything
    closer is taken to be the next frequency in the cycle.
    """

    frequency_count: int
    gap_ms: int = DEFAULT_CHANNEL_GAP_MS
    _states: Dict[int, ChannelState] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.frequency_count < 1:
            raise ValueError("frequency_count must be at least 1.")
        if self.gap_ms < 0:
            raise ValueError("gap_ms must be non-negative.")

    @property
    def bypassed(self) -> bool:
        return self.frequency_count == 1

    def assign(self, receiver_id: int, arrival_time: int) -> int:
        if self.bypassed:
            return 0
        state = self._states.get(receiver_id)
        if state is None or arrival_time - state.last_timestamp > self.gap_ms:
            channel = 0
        else:
            channel = (state.last_channel + 1) % self.frequency_count
        self._states[receiver_id] = ChannelState(
            last_timestamp=arrival_time, last_channel=channel
        )
        return channel

    def state(self, receiver_id: int) -> Optional[ChannelState]:
        return self._states.get(receiver_id)
