from pathlib import Path

import pytest

from signal_survey.models import PathInterval
from signal_survey.path import (
    DegenerateInterval,
    MalformedPath,
    PathFileError,
    build_intervals,
    build_waypoints,
    interpolate,
    parse_path_file,
    parse_path_lines,
)


def _interval() -> PathInterval:
    return PathInterval(t_start=1000, t_end=2000, pos_start=(0.0, 0.0), pos_end=(10.0, 0.0))


def test_interpolate_returns_exact_endpoints() -> None:
    interval = _interval()

    assert interpolate(interval, 1000) == (0.0, 0.0)
    assert interpolate(interval, 2000) == (10.0, 0.0)


def test_interpolate_midpoint() -> None:
    assert interpolate(_interval(), 1500) == (5.0, 0.0)


def test_interpolate_three_dimensions() -> None:
    interval = PathInterval(
        t_start=0, t_end=100, pos_start=(0.0, 0.0, 0.0), pos_end=(4.0, 8.0, 2.0)
    )

    assert interpolate(interval, 25) == (1.0, 2.0, 0.5)


def test_interpolate_degenerate_interval_raises() -> None:
    interval = PathInterval(t_start=5, t_end=5, pos_start=(0.0, 0.0), pos_end=(1.0, 1.0))

    with pytest.raises(DegenerateInterval):
        interpolate(interval, 5)


def test_build_intervals_pairs_consecutive_waypoints() -> None:
    intervals = build_intervals([0, 100, 300], [(0, 0), (1, 0), (1, 2)])

    assert [(i.t_start, i.t_end) for i in intervals] == [(0, 100), (100, 300)]
    assert intervals[1].pos_start == (1.0, 0.0)
    assert intervals[1].pos_end == (1.0, 2.0)


def test_build_intervals_drops_unvisited_coordinates() -> None:
    intervals = build_intervals([0, 100], [(0, 0), (1, 0), (2, 0)])

    assert len(intervals) == 1


def test_build_waypoints_rejects_bad_input() -> None:
    with pytest.raises(MalformedPath):
        build_waypoints([0], [(1.0,)])
    with pytest.raises(MalformedPath):
        build_waypoints([0, 10], [(0, 0), (0, 0, 0)])
    with pytest.raises(MalformedPath):
        build_waypoints([10, 5], [(0, 0), (1, 1)])


def test_parse_training_path() -> None:
    description = parse_path_lines(
        ["winlab", "1.42 2412 2437", "0 0", "", "5 0", "5 5.5"]
    )

    assert description.region == "winlab"
    assert description.device == "1.42"
    assert description.physical_layer == 1
    assert description.device_id == 42
    assert description.frequencies == ("2412", "2437")
    assert description.area is None
    assert description.coordinates == [(0.0, 0.0), (5.0, 0.0), (5.0, 5.5)]
    assert description.dimensions == 2


def test_parse_signal_map_path_reads_area() -> None:
    description = parse_path_lines(
        ["winlab", "lobby", "1.7", "0 0 1", "3 0 1"], with_area=True
    )

    assert description.area == "lobby"
    assert description.device_id == 7
    assert description.frequencies == ()
    assert description.dimensions == 3


def test_parse_path_rejects_malformed_files() -> None:
    with pytest.raises(PathFileError):
        parse_path_lines(["winlab"])
    with pytest.raises(PathFileError):
        parse_path_lines(["winlab", "receiver"])
    with pytest.raises(PathFileError):
        parse_path_lines(["winlab", "1.1", "0 zero"])
    with pytest.raises(PathFileError):
        parse_path_lines(["winlab", "1.1", "0 0", "1 1 1"])
    with pytest.raises(PathFileError):
        parse_path_lines(["winlab", "1.1", "0"])


def test_parse_path_file(tmp_path: Path) -> None:
    path_file = tmp_path / "walk.txt"
    path_file.write_text("winlab\n1.3\n0 0\n1 0\n", encoding="utf-8")

    description = parse_path_file(path_file)

    assert description.device == "1.3"
    assert len(description.coordinates) == 2
