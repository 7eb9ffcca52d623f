from signal_survey.anchors import AnchorRegistry
from signal_survey.codec import encode_double, encode_doubles, encode_sized_string
from signal_survey.fetch import (
    decode_training_point,
    format_rows,
    select_expired,
    signal_map_rows,
    training_point_frequency,
    training_point_rows,
)
from signal_survey.fingerprint import build_training_points
from signal_survey.models import Attribute, PathInterval, Sample, Packet, WorldRecord


def _training_records() -> list:
    interval = PathInterval(t_start=0, t_end=1000, pos_start=(0.0, 0.0), pos_end=(10.0, 0.0))
    samples = [
        Sample(
            anchor_time=500,
            packets=[
                Packet(transmitter_id=42, receiver_id=1, rss=-60.0, arrival_time=500),
                Packet(transmitter_id=42, receiver_id=2, rss=-70.0, arrival_time=500),
            ],
        ),
        Sample(
            anchor_time=800,
            packets=[Packet(transmitter_id=42, receiver_id=1, rss=-62.0, arrival_time=800)],
        ),
    ]
    records = build_training_points(
        samples,
        [interval],
        {1: "winlab.anchor.R1", 2: "winlab.anchor.R2"},
        target_name="winlab.training point.2437",
        device="1.42",
    )
    return [record.to_world_record() for record in records]


def test_decode_training_point_reads_builder_output() -> None:
    rows = decode_training_point(_training_records()[0])

    assert [(row.receiver, row.rss) for row in rows] == [
        ("winlab.anchor.R1", -60.0),
        ("winlab.anchor.R2", -70.0),
    ]
    assert rows[0].location == (5.0, 0.0)
    assert rows[0].creation == 500
    assert rows[0].frequency == "2437"


def test_training_point_rows_group_by_receiver() -> None:
    rows = training_point_rows(_training_records())

    assert [(row.receiver, row.creation) for row in rows] == [
        ("winlab.anchor.R1", 500),
        ("winlab.anchor.R1", 800),
        ("winlab.anchor.R2", 500),
    ]
    assert rows[0].format() == "5.0 0.0 -60.0 500 winlab.anchor.R1 2437"


def test_training_point_rows_skip_malformed_records() -> None:
    broken = WorldRecord(
        uri="winlab.training point.1.42.1",
        attributes=(Attribute("fingerprint.vector<RSS>", b"\x00\x00\x00\x05", 1),),
    )

    assert training_point_rows([broken]) == []


def test_training_point_frequency() -> None:
    assert training_point_frequency("winlab.training point.2437.1.42.500") == "2437"
    assert training_point_frequency("winlab.training point.1.42.500") is None


def _signal_map_record() -> WorldRecord:
    return WorldRecord(
        uri="winlab.signal map.lobby.1.5",
        attributes=(
            Attribute("transmitter.uri", encode_sized_string("winlab.anchor.T5"), 99),
            Attribute("fingerprint.vector<RSS>", encode_doubles([-40.0, -43.0]), 99),
            Attribute("fingerprint.vector<location.xoffset>", encode_doubles([0.0, 1.0]), 99),
            Attribute("fingerprint.vector<location.yoffset>", encode_doubles([2.0, 2.0]), 99),
        ),
    )


def test_signal_map_rows_join_anchor_location() -> None:
    anchors = AnchorRegistry.from_records(
        [
            WorldRecord(
                uri="winlab.anchor.T5",
                attributes=(
                    Attribute("location.xoffset", encode_double(7.0), 1, "surveyor"),
                    Attribute("location.yoffset", encode_double(8.0), 1, "surveyor"),
                ),
            )
        ]
    )

    rows = signal_map_rows([_signal_map_record()], anchors)

    assert len(rows) == 2
    assert rows[0].delta_rss is None
    assert rows[1].delta_rss == 3.0
    assert format_rows(rows) == [
        "7.0 8.0 0.0 2.0 -40.0 nil winlab.anchor.T5 winlab.signal_map.lobby.1.5",
        "7.0 8.0 1.0 2.0 -43.0 3.0 winlab.anchor.T5 winlab.signal_map.lobby.1.5",
    ]


def test_signal_map_rows_drop_unknown_anchor() -> None:
    assert signal_map_rows([_signal_map_record()], AnchorRegistry()) == []


def test_select_expired_uses_first_attribute_creation() -> None:
    records = [
        WorldRecord(uri="a", attributes=(Attribute("location.xoffset", b"", 100),)),
        WorldRecord(uri="b", attributes=(Attribute("location.xoffset", b"", 200),)),
        WorldRecord(uri="c", attributes=(Attribute("location.xoffset", b"", 300),)),
        WorldRecord(uri="d"),
    ]

    assert select_expired(records, 100, 200) == ["a", "b"]
