"""
Wire codec for the traffic feed protocol.

Encodes the subscription/authentication request and decodes inbound frames
into exactly one of:
- SubscriptionAck: the feed accepted the query
- FeedErrorRecord: the feed rejected the query
- SituationBatch: zero or more normalized Situations

Feed envelope format:
{
    "RESPONSE": {
        "RESULT": [
            {"INFO": {"MESSAGE": "QUERY_SUCCESSFUL"}}
            | {"ERROR": {"SOURCE": "...", "MESSAGE": "..."}}
            | {"Situation": [{"Deviation": [{...}, ...]}, ...]}
        ]
    }
}
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Union

import orjson

from trafficfeed.live.errors import MessageParseError
from trafficfeed.live.types import (
    DecodedFrame,
    FeedErrorRecord,
    GeoPoint,
    Severity,
    Situation,
    SituationBatch,
    SubscriptionAck,
)

logger = logging.getLogger(__name__)

SITUATION_OBJECT_TYPE = "Situation"


def encode_subscription(
    auth_key: str,
    object_types: Iterable[str],
    schema_version: str,
    limit: int,
) -> bytes:
    """Build the LOGIN + QUERY request envelope."""
    request = {
        "REQUEST": {
            "LOGIN": {"authenticationkey": auth_key},
            "QUERY": [
                {
                    "objecttype": object_type,
                    "schemaversion": schema_version,
                    "limit": limit,
                }
                for object_type in object_types
            ],
        }
    }
    return orjson.dumps(request)


def decode_frame(raw: Union[str, bytes]) -> DecodedFrame:
    """
    Decode one inbound frame.

    Raises:
        MessageParseError: If the frame is not JSON or lacks the RESPONSE.RESULT envelope
    """
    try:
        data = orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        raise MessageParseError(
            f"Frame is not valid JSON: {e}",
            raw_data=_preview(raw),
            expected_type="json",
        ) from e

    if not isinstance(data, dict):
        raise MessageParseError("Frame is not a JSON object", expected_type="object")

    response = data.get("RESPONSE")
    if not isinstance(response, dict):
        raise MessageParseError(
            f"Frame has no RESPONSE envelope: {list(data.keys())[:5]}",
            expected_type="RESPONSE",
        )

    results = response.get("RESULT")
    if not isinstance(results, list):
        raise MessageParseError("RESPONSE.RESULT is not a list", expected_type="RESULT")

    # Errors and acks win over data: a rejected query carries no Situations
    for result in results:
        if isinstance(result, dict) and result.get("ERROR"):
            error = result["ERROR"]
            payload = error if isinstance(error, dict) else {"MESSAGE": str(error)}
            return FeedErrorRecord(payload=payload)

    for result in results:
        if isinstance(result, dict) and "INFO" in result and SITUATION_OBJECT_TYPE not in result:
            info = result["INFO"]
            message = info.get("MESSAGE", "") if isinstance(info, dict) else str(info)
            return SubscriptionAck(message=str(message))

    situations: list[Situation] = []
    rejected = 0
    for result in results:
        if not isinstance(result, dict):
            continue
        records = result.get(SITUATION_OBJECT_TYPE) or []
        if not isinstance(records, list):
            rejected += 1
            continue
        for record in records:
            try:
                situations.append(parse_situation(record))
            except MessageParseError as e:
                rejected += 1
                logger.debug(f"Dropping malformed situation: {e}")

    return SituationBatch(situations=tuple(situations), rejected=rejected)


def parse_situation(record: Any) -> Situation:
    """
    Normalize one feed Situation record from its first Deviation.

    Raises:
        MessageParseError: If the record has no identity or no valid geometry
    """
    if not isinstance(record, dict):
        raise MessageParseError("Situation record is not an object", expected_type="object")

    deviations = record.get("Deviation")
    if not isinstance(deviations, list) or not deviations or not isinstance(deviations[0], dict):
        raise MessageParseError("Situation has no Deviation", expected_type="Deviation")
    deviation: dict[str, Any] = deviations[0]

    creation_raw = deviation.get("CreationTime")
    identity = deviation.get("Id") or creation_raw
    if not identity:
        raise MessageParseError("Deviation has neither Id nor CreationTime", expected_type="Id")

    geometry = deviation.get("Geometry")
    wgs84 = geometry.get("WGS84") if isinstance(geometry, dict) else None
    point = parse_wgs84(wgs84)

    return Situation(
        identity=str(identity),
        header=_optional_str(deviation.get("Header")) or "",
        message=_optional_str(deviation.get("Message")) or "",
        geometry=point,
        severity=Severity.parse(deviation.get("Severity")),
        icon_id=_optional_str(deviation.get("IconId")),
        road_number=_optional_str(deviation.get("RoadNumber")),
        location_descriptor=_optional_str(deviation.get("LocationDescriptor")),
        county_codes=_parse_county_codes(deviation.get("CountyNo")),
        creation_time=_parse_time(creation_raw),
        start_time=_parse_time(deviation.get("StartTime")),
    )


def parse_wgs84(value: Any) -> GeoPoint:
    """
    Parse a "<longitude> <latitude>" string (optionally wrapped as
    "POINT (<longitude> <latitude>)") into a validated GeoPoint.

    Raises:
        MessageParseError: If missing, non-numeric, or out of range
    """
    if not isinstance(value, str) or not value.strip():
        raise MessageParseError("Geometry.WGS84 is missing", expected_type="WGS84")

    text = value.strip()
    if text.upper().startswith("POINT"):
        text = text[len("POINT") :].strip().strip("()").strip()

    parts = text.split()
    if len(parts) != 2:
        raise MessageParseError(f"Invalid WGS84 point: {value!r}", expected_type="WGS84")

    longitude = _safe_float(parts[0], "longitude")
    latitude = _safe_float(parts[1], "latitude")

    if not (-180.0 <= longitude <= 180.0) or not (-90.0 <= latitude <= 90.0):
        raise MessageParseError(
            f"WGS84 point out of range: lon={longitude}, lat={latitude}",
            expected_type="WGS84",
        )
    return GeoPoint(longitude=longitude, latitude=latitude)


def _safe_float(value: Any, field_name: str) -> float:
    """Safely convert a value to a finite float."""
    try:
        result = float(value)
    except (ValueError, TypeError) as e:
        raise MessageParseError(
            f"Invalid float value for {field_name}: {value}",
            expected_type="float",
        ) from e
    if not math.isfinite(result):
        raise MessageParseError(
            f"Non-finite value for {field_name}: {value}",
            expected_type="float",
        )
    return result


def _parse_county_codes(value: Any) -> tuple[str, ...]:
    """CountyNo may be a scalar or a list; normalize to two-digit strings."""
    if value is None:
        return ()
    items = value if isinstance(value, list) else [value]

    codes: list[str] = []
    for item in items:
        try:
            codes.append(f"{int(item):02d}")
        except (ValueError, TypeError):
            logger.debug(f"Ignoring invalid CountyNo entry: {item!r}")
    return tuple(codes)


def _parse_time(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.debug(f"Ignoring unparsable timestamp: {value!r}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _preview(raw: Union[str, bytes], limit: int = 200) -> str:
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    return text[:limit]
