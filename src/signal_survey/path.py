from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
from typing import List, Sequence, Tuple

from .models import PathDescription, PathInterval, Waypoint

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class MalformedPath(ValueError):
    message: str

    def __str__(self) -> str:
        return self.message


class DegenerateInterval(MalformedPath):
    """Two consecutive waypoint markers share a timestamp."""


@dataclass(frozen=True)
class PathFileError(ValueError):
    message: str

    def __str__(self) -> str:
        return self.message


def build_waypoints(
    move_times: Sequence[int], coordinates: Sequence[Sequence[float]]
) -> List[Waypoint]:
    """Pair marker times with coordinates in visit order.

    Extra coordinates without a marker (a walk cut short) are dropped.
    """
    if not coordinates:
        return []
    dimensions = len(coordinates[0])
    if dimensions not in (2, 3):
        raise MalformedPath(f"Waypoints must have 2 or 3 coordinates; received {dimensions}.")
    waypoints: List[Waypoint] = []
    previous_time = None
    for idx, (timestamp, position) in enumerate(zip(move_times, coordinates)):
        if len(position) != dimensions:
            raise MalformedPath(
                f"Waypoint #{idx} has {len(position)} coordinates; path uses {dimensions}."
            )
        if previous_time is not None and timestamp < previous_time:
            raise MalformedPath(
                f"Waypoint #{idx} time {timestamp} precedes previous marker {previous_time}."
            )
        previous_time = timestamp
        waypoints.append(
            Waypoint(timestamp=int(timestamp), position=tuple(float(v) for v in position))
        )
    return waypoints


def build_intervals(
    move_times: Sequence[int], coordinates: Sequence[Sequence[float]]
) -> List[PathInterval]:
    waypoints = build_waypoints(move_times, coordinates)
    return [
        PathInterval(
            t_start=start.timestamp,
            t_end=stop.timestamp,
            pos_start=start.position,
            pos_end=stop.position,
        )
        for start, stop in zip(waypoints, waypoints[1:])
    ]


def interpolate(interval: PathInterval, timestamp: int) -> Tuple[float, ...]:
    """Linear position along ``interval`` at ``timestamp``.

    The caller only queries times inside the interval; nothing is clamped.
    """
    if interval.is_degenerate():
        raise DegenerateInterval(
            f"Path interval at t={interval.t_start} has zero duration."
        )
    if timestamp == interval.t_start:
        return interval.pos_start
    if timestamp == interval.t_end:
        return interval.pos_end
    progress = (timestamp - interval.t_start) / interval.duration
    return tuple(
        start + progress * (stop - start)
        for start, stop in zip(interval.pos_start, interval.pos_end)
    )


def parse_path_file(path: Path, *, with_area: bool = False) -> PathDescription:
    """Read a path description.

    Layout: region, optional area (signal maps), ``phy.id [freq ...]``, then
    one space-separated waypoint per line.
    """
    with Path(path).open("r", encoding="utf-8") as handle:
        lines = [line.strip() for line in handle]
    return parse_path_lines(lines, with_area=with_area, source=str(path))


def parse_path_lines(
    lines: Sequence[str], *, with_area: bool = False, source: str = "<path>"
) -> PathDescription:
    header_count = 3 if with_area else 2
    header = list(lines[:header_count])
    if len(header) < header_count or not all(header):
        labels = "region, area, and device" if with_area else "region and device"
        raise PathFileError(f"{source}: path file must start with {labels} lines.")

    region = header[0]
    area = header[1] if with_area else None
    device_fields = header[-1].split()
    device = device_fields[0]
    frequencies = tuple(device_fields[1:])
    _require_device(device, source)

    coordinates: List[Tuple[float, ...]] = []
    for line_number, line in enumerate(lines[header_count:], start=header_count + 1):
        if not line:
            continue
        try:
            position = tuple(float(part) for part in line.split())
        except ValueError:
            raise PathFileError(
                f"{source}:{line_number}: coordinates must be numeric; received {line!r}."
            ) from None
        if coordinates and len(position) != len(coordinates[0]):
            raise PathFileError(
                f"{source}:{line_number}: expected {len(coordinates[0])} coordinates, "
                f"received {len(position)}."
            )
        if len(position) not in (2, 3):
            raise PathFileError(
                f"{source}:{line_number}: waypoints need 2 or 3 coordinates."
            )
        coordinates.append(position)

    LOGGER.info(
        "Loaded path in %s with device %s and %d coordinates", region, device, len(coordinates)
    )
    return PathDescription(
        region=region,
        device=device,
        coordinates=coordinates,
        frequencies=frequencies,
        area=area,
    )


def _require_device(device: str, source: str) -> None:
    parts = device.split(".")
    if len(parts) != 2 or not all(part.isdigit() for part in parts):
        raise PathFileError(
            f"{source}: device must be written as 'phy.id'; received {device!r}."
        )
