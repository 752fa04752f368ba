# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Main voiceprompter application.
Builds the session, speech credentials, recognition source and web UI, and
runs them until shutdown.
"""

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from pathlib import Path

from . import models
from .config import (
    Config,
    get_config_path,
    get_display_settings,
    get_matching_settings,
    get_watchdog_settings,
    load_config,
    load_script,
    save_config,
)
from .credentials import SpeechTokenError, SpeechTokenManager
from .matcher import MatcherSettings
from .recognition import LocalSpeechSource
from .replay import TranscriptRecorder
from .server import SourceFactory, WebServer
from .session import PrompterSession

logger = logging.getLogger(__name__)


class PrompterApp:
    """
    Composition root: owns every long-lived service and their lifecycles.
    """

    def __init__(
        self,
        config: Config,
        script_text: str | None = None,
        save_transcript: bool = False,
        config_path: Path | None = None
    ) -> None:
        self.config: Config = config
        self.config_path: Path | None = config_path

        recognition = config["recognition"]
        self.use_browser_recognition: bool = recognition.get("source", "browser") == "browser"

        if script_text is None:
            script_text = load_script(config.get("script_file"))

        watchdog_settings = get_watchdog_settings(config)
        self.session: PrompterSession = PrompterSession(
            script_text,
            matcher_settings=MatcherSettings.from_config(dict(get_matching_settings(config))),
            display_settings=get_display_settings(config),
            inactivity_timeout=float(watchdog_settings["inactivity_timeout"]),
            warning_duration=int(watchdog_settings["warning_duration"]),
            script_file=config.get("script_file"),
            recorder=TranscriptRecorder() if save_transcript else None,
        )

        self.token_manager: SpeechTokenManager | None = None
        source_factory: SourceFactory | None = None
        if self.use_browser_recognition:
            self.token_manager = SpeechTokenManager.from_config(dict(config["speech_service"]))
        else:
            source_factory = self._make_local_source

        self.server: WebServer = WebServer(
            self.session,
            host=config["host"],
            port=config["port"],
            token_manager=self.token_manager,
            source_factory=source_factory,
            config_path=config_path,
        )
        self.running: bool = False

    def _make_local_source(self) -> LocalSpeechSource:
        recognition = self.config["recognition"]
        return LocalSpeechSource(
            model_id=recognition["model_id"],
            device=self.config.get("audio_device"),
            chunk_ms=self.config.get("chunk_ms", 100),
        )

    async def start(self) -> None:
        """Start credentials and the web server."""
        print("Starting Voiceprompter...")
        if self.token_manager is not None:
            try:
                await self.token_manager.start()
            except SpeechTokenError as e:
                # Not fatal: the browser asks again when prompting starts
                logger.warning("Could not fetch initial speech token: %s", e)
        elif self.use_browser_recognition:
            print("Speech service key/region not set: browser recognition will be unavailable")

        await self.server.start()
        self.running = True
        print("\nVoiceprompter is running!")
        print(f"Open http://{self.server.host}:{self.server.port} in your browser")
        print("Press Ctrl+C to stop\n")

    async def stop(self) -> None:
        """Stop all services."""
        print("\nStopping Voiceprompter...")
        self.running = False
        await self.session.close()
        await self.server.stop()
        if self.token_manager is not None:
            await self.token_manager.stop()
        print("Voiceprompter stopped.")


def build_parser(config: Config) -> argparse.ArgumentParser:
    recognition = config["recognition"]
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Voiceprompter - teleprompter that follows your voice"
    )
    parser.add_argument(
        "--host",
        default=config.get("host", "127.0.0.1"),
        help="Web server host (default: from config or 127.0.0.1)"
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        default=config.get("port", 8000),
        help="Web server port (default: from config or 8000)"
    )
    parser.add_argument(
        "--recognizer",
        choices=["browser", "vosk"],
        default="vosk" if recognition.get("source") == "local" else "browser",
        help="Recognize speech in the browser (speech service) or locally with Vosk"
    )
    parser.add_argument(
        "--model-id",
        default=recognition.get("model_id"),
        help="Local model identifier (e.g., 'vosk-en-us-small')"
    )
    parser.add_argument(
        "--device", "-d",
        type=int,
        default=config.get("audio_device"),
        help="Audio input device index for local recognition"
    )
    parser.add_argument(
        "--script",
        type=Path,
        default=None,
        help="Load the script from this file"
    )
    parser.add_argument(
        "--list-devices",
        action="store_true",
        help="List available audio input devices and exit"
    )
    parser.add_argument(
        "--list-models",
        action="store_true",
        help="List all available local transcription models and exit"
    )
    parser.add_argument(
        "--download-model",
        action="store_true",
        help="Download the selected local model and exit"
    )
    parser.add_argument(
        "--save-config",
        action="store_true",
        help="Save current CLI options to config file and exit"
    )
    parser.add_argument(
        "--save-transcript",
        action="store_true",
        help="Save a transcript of all recognized speech to ./transcripts/"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show debug logging"
    )
    return parser


def apply_args(config: Config, args: argparse.Namespace) -> None:
    """Fold CLI options into the loaded config."""
    config["host"] = args.host
    config["port"] = args.port
    config["audio_device"] = args.device
    config["recognition"]["source"] = "local" if args.recognizer == "vosk" else "browser"
    if args.model_id:
        config["recognition"]["model_id"] = args.model_id


def list_devices() -> None:
    from .audio import list_input_devices

    print("\nAvailable audio input devices:")
    print("-" * 50)
    for device in list_input_devices():
        default = " (default)" if device["default"] else ""
        print(f"  [{device['index']}] {device['name']} (channels: {device['channels']}){default}")
    print()


def list_models() -> None:
    print("\nAvailable Vosk models:")
    print("-" * 80)
    for model in sorted(models.VOSK_MODELS.values(), key=lambda m: m.name):
        downloaded = " (downloaded)" if models.is_model_downloaded(model.id) else ""
        print(f"  {model.id}{downloaded}")
        print(f"    Name: {model.name}")
        print(f"    Size: {model.size_mb}MB")
        print()


def download_model(model_id: str) -> None:
    def progress(stage: str, percent: int) -> None:
        print(f"\r  {stage}: {percent:3d}%", end="", flush=True)

    print(f"Downloading model: {model_id}")
    try:
        path = models.download_model(model_id, progress=progress)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    print(f"\nModel ready at {path}")


def main() -> None:
    """Main entry point."""
    config: Config = load_config()
    args: argparse.Namespace = build_parser(config).parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S"
    )
    # aiohttp access logs are noisy even in verbose mode
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

    if args.list_devices:
        list_devices()
        return

    if args.list_models:
        list_models()
        return

    apply_args(config, args)

    if args.download_model:
        download_model(config["recognition"]["model_id"])
        return

    if args.save_config:
        if save_config(config):
            print(f"Configuration saved to {get_config_path()}")
        return

    script_text: str | None = None
    if args.script:
        try:
            script_text = args.script.read_text(encoding="utf-8")
        except OSError as e:
            print(f"Error loading script: {e}", file=sys.stderr)
            sys.exit(1)

    app: PrompterApp = PrompterApp(
        config,
        script_text=script_text,
        save_transcript=args.save_transcript,
    )

    # Handle shutdown gracefully
    loop: asyncio.AbstractEventLoop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    shutdown_event: asyncio.Event = asyncio.Event()

    def shutdown(sig: int, frame: object) -> None:
        """Handle shutdown signals (SIGINT, SIGTERM) gracefully."""
        print("\nReceived shutdown signal...")
        app.running = False
        loop.call_soon_threadsafe(shutdown_event.set)

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    try:
        loop.run_until_complete(app.start())
        loop.run_until_complete(shutdown_event.wait())
    except KeyboardInterrupt:
        app.running = False
    finally:
        with contextlib.suppress(Exception):
            loop.run_until_complete(app.stop())
        # Cancel any remaining tasks
        pending: set[asyncio.Task[object]] = asyncio.all_tasks(loop)
        for task in pending:
            task.cancel()
        if pending:
            loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        loop.close()


if __name__ == "__main__":
    main()
