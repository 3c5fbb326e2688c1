"""
Unit tests for consumer-side classification and filtering.
"""

import pytest

from trafficfeed.filters import EventCategory, SituationFilter, classify_event
from trafficfeed.live.errors import ConfigurationError
from trafficfeed.live.types import GeoPoint, Severity, Situation


def make_situation(
    header: str = "",
    message: str = "",
    icon_id: str | None = None,
    severity: Severity | None = Severity.MEDIUM,
    road_number: str | None = "E4",
    county_codes: tuple[str, ...] = ("01",),
    location: str | None = "E4 vid Södertälje",
) -> Situation:
    return Situation(
        identity="SE-1",
        header=header,
        message=message,
        geometry=GeoPoint(longitude=17.6, latitude=59.2),
        severity=severity,
        icon_id=icon_id,
        road_number=road_number,
        location_descriptor=location,
        county_codes=county_codes,
    )


class TestClassifyEvent:
    """Tests for classify_event."""

    @pytest.mark.parametrize(
        "icon_id, expected",
        [
            ("roadAccident", EventCategory.ACCIDENT),
            ("roadwork", EventCategory.ROADWORK),
            ("queuingTraffic", EventCategory.CONGESTION),
        ],
    )
    def test_icon_hint(self, icon_id: str, expected: EventCategory) -> None:
        assert classify_event(make_situation(icon_id=icon_id)) == expected

    @pytest.mark.parametrize(
        "header, expected",
        [
            ("Olycka", EventCategory.ACCIDENT),
            ("Vägarbete", EventCategory.ROADWORK),
            ("Kö", EventCategory.CONGESTION),
            ("Färjeläge stängt", EventCategory.OTHER),
        ],
    )
    def test_swedish_text(self, header: str, expected: EventCategory) -> None:
        assert classify_event(make_situation(header=header)) == expected

    def test_message_is_searched(self) -> None:
        situation = make_situation(header="Hinder", message="Arbete pågår i höger körfält")
        assert classify_event(situation) == EventCategory.ROADWORK


class TestSituationFilter:
    """Tests for SituationFilter."""

    def test_empty_filter_matches_everything(self) -> None:
        situation_filter = SituationFilter.build()
        assert situation_filter.is_empty
        assert situation_filter.matches(make_situation(severity=None, county_codes=()))

    def test_county_overlap(self) -> None:
        situation_filter = SituationFilter.build(counties=["1", "14"])
        assert situation_filter.counties == frozenset({"01", "14"})
        assert situation_filter.matches(make_situation(county_codes=("03", "01")))
        assert not situation_filter.matches(make_situation(county_codes=("03",)))

    def test_road_number_substring(self) -> None:
        situation_filter = SituationFilter.build(road_numbers=["e4"])
        assert situation_filter.matches(make_situation(road_number="E4.20"))
        assert not situation_filter.matches(make_situation(road_number="E18"))
        assert not situation_filter.matches(make_situation(road_number=None))

    def test_municipality_in_location(self) -> None:
        situation_filter = SituationFilter.build(municipalities=["södertälje"])
        assert situation_filter.matches(make_situation())
        assert not situation_filter.matches(make_situation(location="Riksväg 40 vid Borås"))

    def test_category(self) -> None:
        situation_filter = SituationFilter.build(categories=["accident"])
        assert situation_filter.matches(make_situation(header="Olycka"))
        assert not situation_filter.matches(make_situation(header="Vägarbete"))

    def test_min_severity(self) -> None:
        situation_filter = SituationFilter.build(min_severity="High")
        assert situation_filter.matches(make_situation(severity=Severity.VERY_HIGH))
        assert situation_filter.matches(make_situation(severity=Severity.HIGH))
        assert not situation_filter.matches(make_situation(severity=Severity.MEDIUM))
        assert not situation_filter.matches(make_situation(severity=None))

    @pytest.mark.parametrize(
        "kwargs",
        [{"counties": ["AB"]}, {"categories": ["weather"]}, {"min_severity": "extreme"}],
    )
    def test_invalid_settings(self, kwargs: dict) -> None:
        with pytest.raises(ConfigurationError):
            SituationFilter.build(**kwargs)
