from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from voice_note_relay.app.wiring import (
    close_clients,
    create_batch_runner,
    create_stream_runner,
    create_usage_recorder,
    get_clients,
)
from voice_note_relay.config.paths import default_settings_path
from voice_note_relay.config.settings import AppSettings, LoggingSettings, load_settings
from voice_note_relay.domain.errors import RelayPipelineError
from voice_note_relay.domain.models import AudioJob, BlobLocation, JobId, Scope

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def configure_logging(settings: LoggingSettings, *, level: str | None = None) -> None:
    resolved = (level or settings.level).upper()
    logging.basicConfig(level=resolved, format=LOG_FORMAT, datefmt="%H:%M:%S")
    logging.getLogger().setLevel(resolved)
    if settings.file:
        path = Path(settings.file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            path,
            maxBytes=settings.max_bytes,
            backupCount=settings.backup_count,
            encoding="utf-8",
        )
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(handler)
    # Third-party request logs would otherwise include the bot token in URLs.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="voice-note-relay")
    parser.add_argument("--version", action="store_true", help="Print version and exit")
    parser.add_argument(
        "--config",
        type=Path,
        default=default_settings_path(),
        help="Path to settings JSON (default: user config dir)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override the configured log level",
    )

    sub = parser.add_subparsers(dest="command")

    run_job = sub.add_parser("run-job", help="Transcribe one voice note and relay it to the chat")
    run_job.add_argument("--event", help="Dispatch event JSON file, or '-' for stdin")
    run_job.add_argument("--bucket")
    run_job.add_argument("--key")
    run_job.add_argument("--chat-id")
    run_job.add_argument("--message-id", type=int)
    run_job.add_argument("--user-id")
    run_job.add_argument("--artifact-id")

    batch = sub.add_parser("complete-batch", help="Deliver a finished batch transcript")
    batch.add_argument("--bucket", required=True)
    batch.add_argument("--transcript-key", required=True)
    batch.add_argument("--source-key", required=True)
    batch.add_argument("--user-id", required=True)
    batch.add_argument("--artifact-id", required=True)
    batch.add_argument("--chat-id", help="Defaults to the user id (private chats)")

    stats = sub.add_parser("stats", help="Print a usage counter row as JSON")
    stats.add_argument("--user-id", help="User to show (default: global totals)")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        from . import __version__

        print(__version__)
        return EXIT_OK

    if args.command is None:
        parser.print_help()
        return EXIT_CONFIG

    try:
        settings = _load_settings_or_default(args.config)
    except (OSError, ValueError) as exc:
        print(f"Error: invalid settings file {args.config}: {exc}", file=sys.stderr, flush=True)
        return EXIT_CONFIG

    configure_logging(settings.logging, level=args.log_level)

    try:
        return asyncio.run(_dispatch(args, settings))
    except (OSError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr, flush=True)
        return EXIT_CONFIG
    except RelayPipelineError as exc:
        print(f"Error: {exc}", file=sys.stderr, flush=True)
        return EXIT_FAILED


async def _dispatch(args: argparse.Namespace, settings: AppSettings) -> int:
    clients = get_clients(settings)
    try:
        if args.command == "run-job":
            job = AudioJob.from_event(_job_event(args))
            report = await create_stream_runner(settings, clients).run(job)
            _print_json(dataclasses.asdict(report))
            return EXIT_OK if report.succeeded else EXIT_FAILED

        if args.command == "complete-batch":
            report = await create_batch_runner(settings, clients).run(
                job_id=JobId(user_id=args.user_id, artifact_id=args.artifact_id),
                chat_id=args.chat_id or args.user_id,
                transcript_location=BlobLocation(args.bucket, args.transcript_key),
                source_location=BlobLocation(args.bucket, args.source_key),
            )
            _print_json(dataclasses.asdict(report))
            return EXIT_OK if report.succeeded else EXIT_FAILED

        if args.command == "stats":
            recorder = create_usage_recorder(clients)
            if recorder is None:
                raise ValueError("usage.redis_url is not configured")
            scope = Scope.for_user(args.user_id) if args.user_id else Scope.global_scope()
            counter = await recorder.snapshot(scope)
            _print_json({"scope": scope.key, **counter.to_dict()})
            return EXIT_OK

        raise ValueError(f"Unknown command: {args.command}")
    finally:
        await close_clients()


def _job_event(args: argparse.Namespace) -> dict[str, Any]:
    if args.event:
        if args.event == "-":
            raw = sys.stdin.read()
        else:
            raw = Path(args.event).read_text(encoding="utf-8")
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("event must be a JSON object")
        return data

    event: dict[str, Any] = {
        "bucket": args.bucket,
        "key": args.key,
        "chatId": args.chat_id,
        "messageId": args.message_id,
    }
    if args.user_id:
        event["userId"] = args.user_id
    if args.artifact_id:
        event["artifactId"] = args.artifact_id
    return event


def _print_json(data: dict[str, Any]) -> None:
    print(json.dumps(data, ensure_ascii=False), flush=True)


def _load_settings_or_default(path: Path) -> AppSettings:
    if path.exists():
        return load_settings(path)
    return AppSettings()


if __name__ == "__main__":
    raise SystemExit(main())
