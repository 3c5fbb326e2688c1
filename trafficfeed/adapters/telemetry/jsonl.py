"""JSON Lines Telemetry adapter.

Implements the Telemetry port by appending structured JSON objects (one per
line) to disk. Secret-looking fields such as the feed authentication key are
redacted before anything is written.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class JsonlTelemetry:
    _REDACTION_TOKEN = "***REDACTED***"
    _DEFAULT_SECRET_KEYS = frozenset(
        {
            "authenticationkey",
            "auth_key",
            "api_key",
            "secret",
            "password",
            "token",
        }
    )

    def __init__(
        self,
        session_id: str,
        sink_path: Path,
        secret_keys: Iterable[str] = _DEFAULT_SECRET_KEYS,
        clock: Callable[[], str] = _utc_now_iso,
    ) -> None:
        self._session_id = str(session_id)
        self._sink_path = sink_path if isinstance(sink_path, Path) else Path(sink_path)
        self._secret_keys = frozenset(key.lower() for key in secret_keys)
        self._clock = clock

    @property
    def sink_path(self) -> Path:
        return self._sink_path

    def log(self, event: str, **fields: Any) -> None:
        sanitized_fields, redacted = self._sanitize_fields(fields)

        record: dict[str, Any] = {
            "event": event,
            "ts_utc": self._clock(),
            "session_id": self._session_id,
            **sanitized_fields,
        }
        if redacted:
            record["redacted_fields"] = sorted(redacted)

        self._write_record(record)

    def _sanitize_fields(self, fields: Mapping[str, Any]) -> tuple[dict[str, Any], set[str]]:
        sanitized: dict[str, Any] = {}
        redacted: set[str] = set()
        for key, value in fields.items():
            if key.lower() in self._secret_keys:
                sanitized[key] = self._REDACTION_TOKEN
                redacted.add(key)
            else:
                sanitized[key] = value

        return sanitized, redacted

    def _write_record(self, record: Mapping[str, Any]) -> None:
        payload = json.dumps(
            record, sort_keys=True, separators=(",", ":"), ensure_ascii=True, default=str
        )
        self._sink_path.parent.mkdir(parents=True, exist_ok=True)
        with self._sink_path.open("a", encoding="utf-8") as handle:
            handle.write(payload + "\n")
