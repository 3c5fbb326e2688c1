"""
Consumer-side classification and filtering of delivered Situations.

Nothing in trafficfeed.live depends on this module; it is what a consumer
(the CLI, a notifier) applies to the stream to keep the events a user cares
about.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from trafficfeed.live.errors import ConfigurationError
from trafficfeed.live.types import Severity, Situation


class EventCategory(str, Enum):
    """Coarse bucket used for map markers and notification rules."""

    ACCIDENT = "accident"
    ROADWORK = "roadwork"
    CONGESTION = "congestion"
    OTHER = "other"


# Checked in order; the first matching bucket wins
_ICON_HINTS: tuple[tuple[EventCategory, tuple[str, ...]], ...] = (
    (EventCategory.ACCIDENT, ("accident",)),
    (EventCategory.ROADWORK, ("roadwork",)),
    (EventCategory.CONGESTION, ("congestion", "queue", "trafficjam")),
)

_TEXT_HINTS: tuple[tuple[EventCategory, tuple[str, ...]], ...] = (
    (EventCategory.ACCIDENT, ("olycka", "accident")),
    (EventCategory.ROADWORK, ("vägarbete", "arbete", "roadwork")),
    (EventCategory.CONGESTION, ("kö", "congestion")),
)


def classify_event(situation: Situation) -> EventCategory:
    """Bucket a Situation from its icon id, then from its header and message text."""
    icon = (situation.icon_id or "").lower()
    if icon:
        for category, hints in _ICON_HINTS:
            if any(hint in icon for hint in hints):
                return category

    text = f"{situation.header} {situation.message}".lower()
    for category, hints in _TEXT_HINTS:
        if any(hint in text for hint in hints):
            return category
    return EventCategory.OTHER


@dataclass(frozen=True)
class SituationFilter:
    """
    A user's notification filter. Empty criteria match everything.

    - counties: two-digit county codes, any overlap matches
    - road_numbers: case-insensitive substring of the road number ("E4" matches "E4.20")
    - municipalities: case-insensitive substring of the location descriptor
    - categories: allowed EventCategory buckets
    - min_severity: Situations without a severity never pass this criterion
    """

    counties: frozenset[str] = field(default_factory=frozenset)
    road_numbers: tuple[str, ...] = ()
    municipalities: tuple[str, ...] = ()
    categories: frozenset[EventCategory] = field(default_factory=frozenset)
    min_severity: Optional[Severity] = None

    @classmethod
    def build(
        cls,
        counties: Iterable[str] = (),
        road_numbers: Iterable[str] = (),
        municipalities: Iterable[str] = (),
        categories: Iterable[str] = (),
        min_severity: Optional[str] = None,
    ) -> SituationFilter:
        """Build from loosely typed settings (config file, CLI arguments)."""
        normalized_counties = set()
        for county in counties:
            try:
                normalized_counties.add(f"{int(county):02d}")
            except (TypeError, ValueError) as e:
                raise ConfigurationError(
                    "County codes must be numeric", field="counties", value=county
                ) from e

        parsed_categories = set()
        for category in categories:
            try:
                parsed_categories.add(EventCategory(str(category).lower()))
            except ValueError as e:
                raise ConfigurationError(
                    f"Unknown event category: {category}", field="categories", value=category
                ) from e

        severity = None
        if min_severity:
            severity = Severity.parse(min_severity)
            if severity is None:
                raise ConfigurationError(
                    f"Unknown severity: {min_severity}", field="min_severity", value=min_severity
                )

        return cls(
            counties=frozenset(normalized_counties),
            road_numbers=tuple(r.strip().upper() for r in road_numbers if r.strip()),
            municipalities=tuple(m.strip().lower() for m in municipalities if m.strip()),
            categories=frozenset(parsed_categories),
            min_severity=severity,
        )

    @property
    def is_empty(self) -> bool:
        return not (
            self.counties
            or self.road_numbers
            or self.municipalities
            or self.categories
            or self.min_severity
        )

    def matches(self, situation: Situation) -> bool:
        if self.counties and not self.counties.intersection(situation.county_codes):
            return False

        if self.road_numbers:
            road = (situation.road_number or "").upper()
            if not any(wanted in road for wanted in self.road_numbers):
                return False

        if self.municipalities:
            location = (situation.location_descriptor or "").lower()
            if not any(wanted in location for wanted in self.municipalities):
                return False

        if self.categories and classify_event(situation) not in self.categories:
            return False

        if self.min_severity is not None:
            if situation.severity is None or situation.severity < self.min_severity:
                return False

        return True
