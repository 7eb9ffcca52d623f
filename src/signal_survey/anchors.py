from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Dict, Iterable, Iterator, List, Optional

from .codec import AttributeKind, CodecError, UnknownAttribute, decode_double
from .models import WorldRecord

LOGGER = logging.getLogger(__name__)

# Offsets written by the localization solver lose to any other origin.
DEFAULT_WEAK_ORIGIN = "grail/localization_solver\nversion 1.0\nAlgorithm M2"

_AXES = 3


@dataclass
class Anchor:
    """A fixed reference point whose offsets carry the origin that wrote them."""

    name: str
    weak_origin: str = DEFAULT_WEAK_ORIGIN
    offsets: List[Optional[float]] = field(default_factory=lambda: [None] * _AXES)
    origins: List[str] = field(default_factory=lambda: [""] * _AXES)

    def set_offset(self, attribute_name: str, value: float, origin: str) -> bool:
        """Apply an offset write; return False when a stronger origin holds the axis."""
        kind = AttributeKind.from_name(attribute_name)
        if not kind.is_offset:
            raise UnknownAttribute(f"{attribute_name!r} is not an offset attribute.")
        return self.set_axis(kind.axis, value, origin)

    def set_axis(self, axis: int, value: float, origin: str) -> bool:
        current = self.origins[axis]
        if current and current != self.weak_origin:
            return False
        self.offsets[axis] = value
        self.origins[axis] = origin
        return True

    @property
    def position(self) -> List[Optional[float]]:
        return list(self.offsets)


@dataclass
class AnchorRegistry:
    weak_origin: str = DEFAULT_WEAK_ORIGIN
    _anchors: Dict[str, Anchor] = field(default_factory=dict, init=False, repr=False)

    def anchor(self, name: str) -> Anchor:
        anchor = self._anchors.get(name)
        if anchor is None:
            anchor = Anchor(name=name, weak_origin=self.weak_origin)
            self._anchors[name] = anchor
        return anchor

    def get(self, name: str) -> Optional[Anchor]:
        return self._anchors.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._anchors

    def __iter__(self) -> Iterator[Anchor]:
        return iter(self._anchors.values())

    def __len__(self) -> int:
        return len(self._anchors)

    def add_records(self, records: Iterable[WorldRecord]) -> None:
        for record in records:
            anchor = self.anchor(record.uri)
            for attribute in record.attributes:
                if not attribute.name.startswith("location."):
                    continue
                try:
                    value = decode_double(attribute.data)
                    anchor.set_offset(attribute.name, value, attribute.origin)
                except CodecError as exc:
                    LOGGER.warning(
                        "Ignoring offset %s on %s: %s", attribute.name, record.uri, exc
                    )

    @classmethod
    def from_records(
        cls, records: Iterable[WorldRecord], weak_origin: str = DEFAULT_WEAK_ORIGIN
    ) -> "AnchorRegistry":
        registry = cls(weak_origin=weak_origin)
        registry.add_records(records)
        return registry
