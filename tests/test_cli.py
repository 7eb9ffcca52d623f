import json
from pathlib import Path
import threading
import time
from typing import Dict, List, Sequence

import pytest

from signal_survey import cli
from signal_survey.codec import (
    decode_doubles,
    encode_double,
    encode_doubles,
    encode_sensor_id,
    encode_sized_string,
    encode_string_vector,
)
from signal_survey.config import SurveyConfig
from signal_survey.fetch import ANCHOR_URIS, SIGNAL_MAP_URIS, TRAINING_POINT_URIS
from signal_survey.models import Attribute, Packet, WorldRecord


def test_missing_subcommand_is_a_usage_error() -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main([])

    assert excinfo.value.code == 2


def test_parse_survey_config_overrides_defaults() -> None:
    config = cli._parse_survey_config(
        {
            "collection": {"channel_gap_ms": 25, "sample_window_ms": 80},
            "store": {"weak_origin": "solver"},
        }
    )

    assert config.collection.channel_gap_ms == 25
    assert config.collection.sample_window_ms == 80
    assert config.collection.min_signal_map_samples == 5
    assert config.store.weak_origin == "solver"
    assert config.transport == SurveyConfig().transport


def test_parse_survey_config_rejects_bad_values() -> None:
    with pytest.raises(ValueError):
        cli._parse_survey_config({"collection": {"channel_gap_ms": "soon"}})
    with pytest.raises(ValueError):
        cli._parse_survey_config({"collection": {"sample_window_ms": 0}})
    with pytest.raises(ValueError):
        cli._parse_survey_config({"store": []})


def test_invalid_config_file_exits_with_error(tmp_path: Path) -> None:
    config_path = tmp_path / "survey.json"
    config_path.write_text(json.dumps({"collection": {"queue_size": 0}}), encoding="utf-8")

    code = cli.main(["--config", str(config_path), "fetch-training-points", "http://localhost:1"])

    assert code == 1


def test_missing_path_file_exits_with_error(tmp_path: Path) -> None:
    code = cli.main(
        [
            "training-points",
            "/dev/null",
            "http://localhost:1",
            str(tmp_path / "missing.txt"),
        ]
    )

    assert code == 1


def test_build_transport_picks_by_source() -> None:
    config = SurveyConfig()

    http = cli._build_transport(
        "http://aggregator/packets",
        config,
        physical_layer=1,
        transmitter_id=None,
        polling_interval_ms=500,
    )
    serial = cli._build_transport(
        "/dev/ttyUSB0", config, physical_layer=1, transmitter_id=42, polling_interval_ms=0
    )

    assert type(http).__name__ == "HTTPPacketTransport"
    assert type(serial).__name__ == "SerialPacketTransport"


class _GatedTransport:
    def __init__(self) -> None:
        self._pending: List[List[Packet]] = []
        self._lock = threading.Lock()
        self.delivered = threading.Event()
        self.closed = False

    def release(self, batch: Sequence[Packet]) -> None:
        with self._lock:
            self.delivered.clear()
            self._pending.append(list(batch))

    def fetch(self) -> List[Packet]:
        with self._lock:
            if not self._pending:
                return []
            batch = self._pending.pop(0)
            if not self._pending:
                self.delivered.set()
            return batch

    def close(self) -> None:
        self.closed = True


class _MemoryStore:
    def __init__(self, snapshots: Dict[str, List[WorldRecord]]) -> None:
        self._snapshots = snapshots
        self.pushed: List[WorldRecord] = []
        self.expired: List[tuple] = []
        self.closed = False

    def snapshot(self, uri_pattern: str, attribute_patterns: Sequence[str]) -> List[WorldRecord]:
        return list(self._snapshots.get(uri_pattern, []))

    def push(self, records: Sequence[WorldRecord], create_uris: bool = True) -> None:
        assert create_uris
        self.pushed.extend(records)

    def expire(self, uri: str, timestamp: int) -> None:
        self.expired.append((uri, timestamp))

    def close(self) -> None:
        self.closed = True


def _sensor(uri: str, device_id: int) -> WorldRecord:
    return WorldRecord(
        uri=uri, attributes=(Attribute("sensor.pipsqueak", encode_sensor_id(1, device_id), 1),)
    )


def _scripted_walk(transport: _GatedTransport, batch: Sequence[Packet], stop_after: int = 0):
    """Release ``batch`` between the first two waypoints; EOF on prompt ``stop_after``."""
    prompts: List[str] = []

    def prompt(message: str) -> str:
        prompts.append(message)
        if stop_after and len(prompts) == stop_after:
            raise EOFError
        if len(prompts) == 2:
            time.sleep(0.02)
            transport.release(batch)
            assert transport.delivered.wait(timeout=5.0)
            time.sleep(0.02)
        return ""

    return prompt, prompts


def _install(monkeypatch: pytest.MonkeyPatch, transport, store) -> None:
    monkeypatch.setattr(cli, "_build_transport", lambda *args, **kwargs: transport)
    monkeypatch.setattr(cli, "_build_store", lambda *args, **kwargs: store)


def test_training_points_land_in_per_frequency_uris(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    path_file = tmp_path / "walk.txt"
    path_file.write_text("winlab\n1.42 2412 2437\n0 0\n10 0\n", encoding="utf-8")
    transport = _GatedTransport()
    store = _MemoryStore({".*": [_sensor("winlab.anchor.R1", 7)]})
    _install(monkeypatch, transport, store)
    prompt, prompts = _scripted_walk(
        transport,
        [
            Packet(transmitter_id=42, receiver_id=7, rss=-50.0, arrival_time=0),
            Packet(transmitter_id=42, receiver_id=7, rss=-55.0, arrival_time=0),
        ],
    )
    args = cli.build_parser().parse_args(
        ["training-points", "/dev/ttyUSB0", "http://store", str(path_file)]
    )

    code = cli.run_training_points(args, SurveyConfig(), prompt)

    assert code == 0
    assert prompts == ["Press enter when you reach 0 0", "Press enter when you reach 10 0"]
    uris = [record.uri for record in store.pushed]
    assert len(uris) == 2
    assert uris[0].startswith("winlab.training point.2412.1.42.")
    assert uris[1].startswith("winlab.training point.2437.1.42.")
    assert uris[0].rsplit(".", 1)[1] == uris[1].rsplit(".", 1)[1]
    rss = {
        record.uri.split(".")[2]: decode_doubles(
            next(a.data for a in record.attributes if a.name == "fingerprint.vector<RSS>")
        )
        for record in store.pushed
    }
    assert rss == {"2412": [-50.0], "2437": [-55.0]}
    assert transport.closed
    assert store.closed


def test_signal_map_walk_cut_short_still_pushes(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    path_file = tmp_path / "map.txt"
    path_file.write_text("winlab\nlobby\n1.3\n0 0\n10 0\n10 10\n", encoding="utf-8")
    transport = _GatedTransport()
    store = _MemoryStore({ANCHOR_URIS: [_sensor("winlab.anchor.T5", 5)]})
    _install(monkeypatch, transport, store)
    batch = [
        Packet(transmitter_id=5, receiver_id=3, rss=-40.0 - idx, arrival_time=0)
        for idx in range(6)
    ]
    batch.append(Packet(transmitter_id=5, receiver_id=4, rss=-90.0, arrival_time=0))
    prompt, prompts = _scripted_walk(transport, batch, stop_after=3)
    args = cli.build_parser().parse_args(
        ["signal-map", "/dev/ttyUSB0", "http://store", str(path_file)]
    )

    code = cli.run_signal_map(args, SurveyConfig(), prompt)

    assert code == 0
    assert len(prompts) == 3
    assert [record.uri for record in store.pushed] == ["winlab.signal map.lobby.1.5"]
    rss = next(
        a.data for a in store.pushed[0].attributes if a.name == "fingerprint.vector<RSS>"
    )
    assert decode_doubles(rss) == [-40.0, -41.0, -42.0, -43.0, -44.0, -45.0]
    assert transport.closed


def test_fetch_training_points_prints_rows(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture
) -> None:
    record = WorldRecord(
        uri="winlab.training point.1.42.500",
        attributes=(
            Attribute("location.xoffset", encode_double(5.0), 500),
            Attribute("location.yoffset", encode_double(0.0), 500),
            Attribute("receivers.vector<sized string>", encode_string_vector(["R1"]), 500),
            Attribute("fingerprint.vector<RSS>", encode_doubles([-60.0]), 500),
        ),
    )
    store = _MemoryStore({TRAINING_POINT_URIS: [record]})
    _install(monkeypatch, None, store)

    code = cli.main(["fetch-training-points", "http://store"])

    assert code == 0
    assert capsys.readouterr().out.splitlines() == ["5.0 0.0 -60.0 500 R1"]
    assert store.closed


def test_fetch_signal_maps_prints_rows(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture
) -> None:
    anchor = WorldRecord(
        uri="winlab.anchor.T5",
        attributes=(
            Attribute("location.xoffset", encode_double(7.0), 1, "surveyor"),
            Attribute("location.yoffset", encode_double(8.0), 1, "surveyor"),
        ),
    )
    signal_map = WorldRecord(
        uri="winlab.signal map.lobby.1.5",
        attributes=(
            Attribute("transmitter.uri", encode_sized_string("winlab.anchor.T5"), 9),
            Attribute("fingerprint.vector<RSS>", encode_doubles([-40.0, -43.0]), 9),
            Attribute("fingerprint.vector<location.xoffset>", encode_doubles([0.0, 1.0]), 9),
            Attribute("fingerprint.vector<location.yoffset>", encode_doubles([2.0, 2.0]), 9),
        ),
    )
    store = _MemoryStore({ANCHOR_URIS: [anchor], SIGNAL_MAP_URIS: [signal_map]})
    _install(monkeypatch, None, store)

    code = cli.main(["fetch-signal-maps", "http://store"])

    assert code == 0
    assert capsys.readouterr().out.splitlines() == [
        "7.0 8.0 0.0 2.0 -40.0 nil winlab.anchor.T5 winlab.signal_map.lobby.1.5",
        "7.0 8.0 1.0 2.0 -43.0 3.0 winlab.anchor.T5 winlab.signal_map.lobby.1.5",
    ]


def test_expire_training_points_in_range(monkeypatch: pytest.MonkeyPatch) -> None:
    records = [
        WorldRecord(uri="early", attributes=(Attribute("location.xoffset", b"", 50),)),
        WorldRecord(uri="first", attributes=(Attribute("location.xoffset", b"", 100),)),
        WorldRecord(uri="last", attributes=(Attribute("location.xoffset", b"", 200),)),
        WorldRecord(uri="late", attributes=(Attribute("location.xoffset", b"", 201),)),
    ]
    store = _MemoryStore({TRAINING_POINT_URIS: records})
    _install(monkeypatch, None, store)
    monkeypatch.setattr(cli, "current_millis", lambda: 9999)

    code = cli.main(["expire-training-points", "http://store", "100", "200"])

    assert code == 0
    assert store.expired == [("first", 9999), ("last", 9999)]
    assert store.closed
