#!/usr/bin/env python3
"""
Whisper Docker provider command-line interface.

Usage:
    whisper-docker [options] COMMAND

Commands:
    init                 Write a default settings file
    models               List the models declared by the provider
    info                 Show provider information and configuration
    status               Show the service state
    start                Start the transcription service
    stop                 Stop the transcription service
    transcribe FILE      Transcribe an audio file (starts the service if needed)

Options:
    --config PATH        Settings file (default: <config dir>/whisper-docker.yaml)
    --base-url URL       Use an already running service instead of Docker
    --timeout MS         Request timeout in milliseconds
    --retries N          Additional attempts after a failed request
    --verbose, -v        Enable verbose debug logging
"""

import argparse
import asyncio
import json
import logging
import subprocess
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any

from whisper_docker import __version__
from whisper_docker.config import (
    CONFIG_FILENAME,
    get_config_dir,
    get_default_config,
    load_settings,
    save_settings,
)
from whisper_docker.errors import LifecycleError, WhisperProviderError
from whisper_docker.logging_config import setup_logging
from whisper_docker.models import ServiceState
from whisper_docker.provider import WhisperDockerProvider

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="whisper-docker",
        description="Whisper speech-to-text via a Docker-managed service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", type=Path, help="Path to settings file")
    parser.add_argument("--base-url", help="Base URL of an already running service")
    parser.add_argument("--timeout", type=int, help="Request timeout in milliseconds")
    parser.add_argument("--retries", type=int, help="Additional attempts after a failure")
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable verbose debug logging"
    )

    sub = parser.add_subparsers(dest="command", required=True)

    init = sub.add_parser("init", help="Write a default settings file")
    init.add_argument("--force", action="store_true", help="Overwrite an existing file")

    sub.add_parser("models", help="List available models")
    sub.add_parser("info", help="Show provider information")
    sub.add_parser("status", help="Show service status")
    sub.add_parser("start", help="Start the service")
    sub.add_parser("stop", help="Stop the service")

    transcribe = sub.add_parser("transcribe", help="Transcribe an audio file")
    transcribe.add_argument("file", type=Path, help="Audio file")
    transcribe.add_argument("--model", default="whisper-stt", help="Model id")
    transcribe.add_argument("--language", help="Language code (default: auto)")
    transcribe.add_argument(
        "--task", choices=("transcribe", "translate"), help="Task (default: transcribe)"
    )
    transcribe.add_argument(
        "--word-timestamps", action="store_true", help="Include word-level timestamps"
    )
    transcribe.add_argument(
        "--keep-running",
        action="store_true",
        help="Leave the service running after transcribing",
    )

    return parser.parse_args(argv)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def init_settings(path: Path | None, force: bool = False) -> int:
    """Write the default settings to path (or the default settings file)."""
    target = path or get_config_dir() / CONFIG_FILENAME
    if target.exists() and not force:
        print(f"Settings file already exists: {target} (use --force)", file=sys.stderr)
        return 1
    save_settings(get_default_config(), target)
    print(f"Settings written to: {target}")
    return 0


async def run_command(args: argparse.Namespace) -> int:
    settings = load_settings(args.config)
    provider = WhisperDockerProvider(settings)

    overrides = {
        key: value
        for key, value in (
            ("base_url", args.base_url),
            ("timeout", args.timeout),
            ("retries", args.retries),
        )
        if value is not None
    }
    if overrides:
        await provider.configure({**asdict(settings.provider), **overrides})

    async with provider:
        if args.command == "models":
            _print_json([m.to_dict() for m in provider.get_available_models()])
            return 0

        if args.command == "info":
            _print_json(provider.get_info())
            return 0

        if args.command == "status":
            # A fresh process has no state of its own; ask the backend
            status = await provider.get_service_status()
            if status.state is ServiceState.UNKNOWN:
                try:
                    backend_status = await asyncio.to_thread(
                        provider.backend.get_service_status
                    )
                except (OSError, subprocess.SubprocessError) as e:
                    raise LifecycleError(f"Could not query service status: {e}", cause=e) from e
                _print_json(
                    {
                        "running": backend_status.running,
                        "health": backend_status.health,
                        "error": backend_status.error,
                    }
                )
            else:
                _print_json(status.to_dict())
            return 0

        if args.command == "start":
            result = await provider.start_service()
            if not result.success:
                raise result.error
            _print_json({"message": result.message, **result.status.to_dict()})
            return 0

        if args.command == "stop":
            result = await provider.stop_service()
            if not result.success:
                raise result.error
            _print_json({"message": result.message, **result.status.to_dict()})
            return 0

        if args.command == "transcribe":
            model = provider.get_model(args.model)
            options = {
                "language": args.language,
                "task": args.task,
                "word_timestamps": args.word_timestamps,
            }
            # Fail on bad options before paying for a container start
            model.resolve_options(options)

            result = await provider.start_service()
            if not result.success:
                raise result.error
            try:
                transcription = await model.transform(args.file, options)
            finally:
                if not args.keep_running:
                    await provider.stop_service()
            _print_json(transcription.to_dict())
            return 0

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    if args.command == "init":
        return init_settings(args.config, force=args.force)

    setup_logging(verbose=args.verbose)

    try:
        return asyncio.run(run_command(args))
    except WhisperProviderError as e:
        logger.debug("Full traceback:", exc_info=True)
        print(f"Error [{e.kind}]: {e.message}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
