"""tf CLI entrypoint.

Subcommands:
    probe   one-shot connectivity check (credentials vs. network)
    stream  stream Situations as JSON lines until --duration elapses or the
            client gives up reconnecting

The feed key is read from TRAFFICFEED_SECRET_API_KEY.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import uuid
from pathlib import Path
from typing import Callable, Optional, TextIO

import orjson

from trafficfeed.adapters.env_provider import FEED_API_KEY, EnvSecretsProvider, MissingSecretError
from trafficfeed.adapters.telemetry.jsonl import JsonlTelemetry
from trafficfeed.config.config_loader import ConfigLoader, FeedSettings
from trafficfeed.filters import SituationFilter, classify_event
from trafficfeed.live.config import FeedConfig, SubscriptionConfig
from trafficfeed.live.connection import ConnectionManager
from trafficfeed.live.diagnostics import ConnectivityProbe, ProbeOutcome
from trafficfeed.live.errors import ConfigurationError
from trafficfeed.live.types import ConnectionState, Situation
from trafficfeed.ports.secrets_provider import SecretsProvider
from trafficfeed.ports.telemetry import Telemetry

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_AUTH = 2


def build_parser() -> argparse.ArgumentParser:
    """
    Return the top-level CLI argument parser.
    """
    p = argparse.ArgumentParser(prog="tf")
    sub = p.add_subparsers(dest="command", required=True)

    def add_common(sp: argparse.ArgumentParser) -> None:
        """Add arguments shared across all subcommands."""
        sp.add_argument("--config", type=Path, required=False, help="Path to a TOML config file")
        sp.add_argument(
            "--log-level",
            default="INFO",
            choices=["DEBUG", "INFO", "WARNING", "ERROR"],
            help="Logging verbosity",
        )

    probe = sub.add_parser("probe", help="Check credentials and reachability of the feed")
    add_common(probe)

    stream = sub.add_parser("stream", help="Stream situations as JSON lines")
    add_common(stream)
    stream.add_argument(
        "--object-type",
        dest="object_types",
        action="append",
        default=[],
        help="Feed object type to subscribe to (may be repeated)",
    )
    stream.add_argument("--county", dest="counties", action="append", default=[], metavar="NN")
    stream.add_argument("--road", dest="road_numbers", action="append", default=[])
    stream.add_argument("--category", dest="categories", action="append", default=[])
    stream.add_argument("--min-severity", default=None, help="Low, Medium, High or VeryHigh")
    stream.add_argument("--duration", type=float, default=None, help="Stop after SECONDS")
    stream.add_argument("--out", type=Path, default=None, help="Append JSON lines here")
    stream.add_argument("--telemetry", type=Path, default=None, help="JSONL telemetry sink")
    return p


def _resolve_auth_key(secrets: SecretsProvider) -> Optional[str]:
    try:
        return secrets.get(FEED_API_KEY)
    except MissingSecretError as e:
        logger.error(f"{e}; set TRAFFICFEED_SECRET_API_KEY")
        return None


async def run_probe(config: FeedConfig, auth_key: Optional[str], out: TextIO) -> int:
    """Run the connectivity probe and map its outcome to an exit code."""
    probe = ConnectivityProbe(config.connection, auth_key)
    result = await probe.test_connection()
    out.write(f"{result.outcome.value}: {result.message}\n")
    if result.outcome == ProbeOutcome.OK:
        return EXIT_OK
    if result.outcome == ProbeOutcome.AUTH_FAILURE:
        return EXIT_AUTH
    return EXIT_FAILURE


async def run_stream(
    config: FeedConfig,
    settings: FeedSettings,
    situation_filter: SituationFilter,
    auth_key: Optional[str],
    out: TextIO,
    duration: Optional[float] = None,
    telemetry: Optional[Telemetry] = None,
    *,
    manager_factory: Callable[[FeedConfig, Optional[str]], ConnectionManager] = ConnectionManager,
) -> int:
    """Stream until `duration` elapses or the client stops on its own."""
    finished = asyncio.Event()
    manager = manager_factory(config, auth_key)

    def emit(event: str, **fields: object) -> None:
        if telemetry is not None:
            telemetry.log(event, **fields)

    async def on_event(situation: Situation) -> None:
        if not situation_filter.matches(situation):
            return
        record = situation.to_dict()
        record["category"] = classify_event(situation).value
        out.write(orjson.dumps(record).decode("utf-8") + "\n")
        out.flush()
        emit("situation", identity=situation.identity, category=record["category"])

    async def on_connect() -> None:
        emit("connected")

    async def on_disconnect() -> None:
        emit("disconnected")

    async def on_error(reason: str) -> None:
        emit("feed_error", reason=reason)
        logger.error(f"Feed error: {reason}")
        if manager.get_connection_state() == ConnectionState.STOPPED:
            finished.set()

    subscription = SubscriptionConfig(
        object_types=tuple(settings.subscription.object_types),
        on_event=on_event,
        on_connect=on_connect,
        on_disconnect=on_disconnect,
        on_error=on_error,
        schema_version=settings.subscription.schema_version,
        result_limit=settings.subscription.result_limit,
    )

    await manager.start(subscription)
    try:
        await asyncio.wait_for(finished.wait(), timeout=duration)
    except asyncio.TimeoutError:
        logger.info(f"Duration of {duration}s elapsed")
    finally:
        stats = manager.get_stats()
        await manager.stop()
        emit(
            "stream_finished",
            messages_received=stats.messages_received,
            frames_dropped=stats.frames_dropped,
            reconnect_attempts=stats.reconnect_attempts,
            last_error=stats.last_error,
        )

    return EXIT_FAILURE if finished.is_set() else EXIT_OK


def main(argv: list[str] | None = None, secrets: Optional[SecretsProvider] = None) -> int:
    """CLI entrypoint wrapper compatible with setuptools scripts."""
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = ConfigLoader().load_settings(str(args.config) if args.config else None)
        config = settings.to_feed_config()
    except (ConfigurationError, FileNotFoundError) as e:
        print(f"tf: {e}", file=sys.stderr)
        return EXIT_FAILURE

    auth_key = _resolve_auth_key(secrets or EnvSecretsProvider())

    if args.command == "probe":
        return asyncio.run(run_probe(config, auth_key, sys.stdout))

    if args.command == "stream":
        if auth_key is None:
            return EXIT_AUTH
        if args.object_types:
            settings.subscription.object_types = list(args.object_types)
        try:
            situation_filter = SituationFilter.build(
                counties=args.counties or settings.filter.counties,
                road_numbers=args.road_numbers or settings.filter.road_numbers,
                municipalities=settings.filter.municipalities,
                categories=args.categories or settings.filter.categories,
                min_severity=args.min_severity or settings.filter.min_severity,
            )
        except ConfigurationError as e:
            print(f"tf: {e}", file=sys.stderr)
            return EXIT_FAILURE

        telemetry = None
        if args.telemetry:
            telemetry = JsonlTelemetry(session_id=str(uuid.uuid4()), sink_path=args.telemetry)

        if args.out:
            args.out.parent.mkdir(parents=True, exist_ok=True)
            with args.out.open("a", encoding="utf-8") as handle:
                return asyncio.run(
                    run_stream(
                        config, settings, situation_filter, auth_key, handle, args.duration, telemetry
                    )
                )
        return asyncio.run(
            run_stream(
                config, settings, situation_filter, auth_key, sys.stdout, args.duration, telemetry
            )
        )

    parser.error(f"unknown command {args.command}")
    return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
