"""
Unit tests for the wire codec.
"""

from datetime import datetime, timezone

import orjson
import pytest

from live_fakes import ack_frame, deviation, error_frame, situation_frame
from trafficfeed.live.codec import decode_frame, encode_subscription, parse_situation, parse_wgs84
from trafficfeed.live.errors import MessageParseError
from trafficfeed.live.types import (
    FeedErrorRecord,
    GeoPoint,
    Severity,
    SituationBatch,
    SubscriptionAck,
)


class TestEncodeSubscription:
    """Tests for the outbound request envelope."""

    def test_one_query_per_object_type(self) -> None:
        payload = orjson.loads(
            encode_subscription("k3y", ["Situation", "RoadCondition"], "1.5", 100)
        )

        assert payload == {
            "REQUEST": {
                "LOGIN": {"authenticationkey": "k3y"},
                "QUERY": [
                    {"objecttype": "Situation", "schemaversion": "1.5", "limit": 100},
                    {"objecttype": "RoadCondition", "schemaversion": "1.5", "limit": 100},
                ],
            }
        }


class TestDecodeFrame:
    """Tests for inbound frame classification."""

    def test_ack(self) -> None:
        frame = decode_frame(ack_frame("QUERY_SUCCESSFUL"))
        assert frame == SubscriptionAck(message="QUERY_SUCCESSFUL")

    def test_error(self) -> None:
        frame = decode_frame(error_frame("Invalid key", "Authentication"))
        assert isinstance(frame, FeedErrorRecord)
        assert frame.describe() == "API Error: Invalid key (source=Authentication)"

    def test_error_wins_over_data(self) -> None:
        raw = orjson.dumps(
            {
                "RESPONSE": {
                    "RESULT": [
                        {"Situation": [{"Deviation": [deviation()]}]},
                        {"ERROR": {"MESSAGE": "Quota exceeded"}},
                    ]
                }
            }
        )
        frame = decode_frame(raw)
        assert isinstance(frame, FeedErrorRecord)
        assert frame.describe() == "API Error: Quota exceeded"

    def test_batch(self) -> None:
        frame = decode_frame(situation_frame(deviation("A"), deviation("B")))
        assert isinstance(frame, SituationBatch)
        assert [s.identity for s in frame.situations] == ["A", "B"]
        assert frame.rejected == 0

    def test_empty_batch(self) -> None:
        frame = decode_frame('{"RESPONSE": {"RESULT": [{"Situation": []}]}}')
        assert frame == SituationBatch()

    def test_bytes_input(self) -> None:
        frame = decode_frame(situation_frame(deviation("A")).encode())
        assert isinstance(frame, SituationBatch)

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            "[1, 2, 3]",
            '{"something": "else"}',
            '{"RESPONSE": {"RESULT": "nope"}}',
        ],
    )
    def test_malformed_envelope_raises(self, raw: str) -> None:
        with pytest.raises(MessageParseError):
            decode_frame(raw)

    def test_bad_records_counted_not_raised(self) -> None:
        frame = decode_frame(
            situation_frame(
                deviation("OK"),
                deviation("NO-GEO", wgs84=None),
                deviation(None, CreationTime=None),
            )
        )
        assert [s.identity for s in frame.situations] == ["OK"]
        assert frame.rejected == 2


class TestParseSituation:
    """Tests for record normalization."""

    def test_full_record(self) -> None:
        situation = parse_situation({"Deviation": [deviation("SE_STA_1", CountyNo=[1, 3])]})

        assert situation.identity == "SE_STA_1"
        assert situation.header == "Olycka"
        assert situation.severity == Severity.HIGH
        assert situation.geometry == GeoPoint(longitude=18.0686, latitude=59.3293)
        assert situation.county_codes == ("01", "03")
        assert situation.road_number == "E4"
        assert situation.creation_time is not None
        assert situation.creation_time.utcoffset().total_seconds() == 3600

    def test_identity_falls_back_to_creation_time(self) -> None:
        situation = parse_situation({"Deviation": [deviation(None)]})
        assert situation.identity == "2024-03-01T08:15:00.000+01:00"

    def test_scalar_county(self) -> None:
        situation = parse_situation({"Deviation": [deviation(CountyNo=14)]})
        assert situation.county_codes == ("14",)

    def test_only_first_deviation_used(self) -> None:
        record = {"Deviation": [deviation("FIRST"), deviation("SECOND")]}
        assert parse_situation(record).identity == "FIRST"

    def test_missing_deviation(self) -> None:
        with pytest.raises(MessageParseError):
            parse_situation({"Deviation": []})

    def test_zulu_start_time(self) -> None:
        situation = parse_situation({"Deviation": [deviation(StartTime="2024-03-01T07:00:00Z")]})
        assert situation.start_time == datetime(2024, 3, 1, 7, 0, tzinfo=timezone.utc)

    def test_unknown_severity_is_none(self) -> None:
        situation = parse_situation({"Deviation": [deviation(Severity="Catastrophic")]})
        assert situation.severity is None


class TestParseWgs84:
    """Tests for point parsing."""

    def test_plain_pair(self) -> None:
        assert parse_wgs84("11.97 57.70") == GeoPoint(longitude=11.97, latitude=57.70)

    def test_point_wrapper(self) -> None:
        assert parse_wgs84("POINT (17.1 60.6)") == GeoPoint(longitude=17.1, latitude=60.6)

    @pytest.mark.parametrize(
        "value",
        [None, "", "18.0", "abc 59.0", "18.0 91.0", "181.0 59.0", "nan 59.0", "18.0 inf", "1 2 3"],
    )
    def test_rejected(self, value: object) -> None:
        with pytest.raises(MessageParseError):
            parse_wgs84(value)

    def test_boundaries_accepted(self) -> None:
        assert parse_wgs84("-180 -90") == GeoPoint(longitude=-180.0, latitude=-90.0)
