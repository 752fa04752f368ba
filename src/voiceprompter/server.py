# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Web server for the voiceprompter interface.
Serves the HTML UI, relays session state to browsers over WebSocket, and
issues speech service tokens for the in-browser recognizer.
"""

import asyncio
import contextlib
import html
import json
import logging
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

from aiohttp import web

from .config import load_config, save_config, update_config_display
from .credentials import SpeechTokenError, SpeechTokenManager
from .recognition import QueueSource, RecognitionEvent, RecognitionSource
from .session import PrompterSession
from .tokenizer import TextUnit

logger = logging.getLogger(__name__)

SourceFactory = Callable[[], RecognitionSource]


def render_script_html(units: Sequence[TextUnit]) -> str:
    """Render units as one indexed span each; newlines become line breaks."""
    parts: list[str] = []
    for unit in units:
        text: str = html.escape(unit.value).replace("\n", "<br>")
        css_class: str = "word" if unit.is_word else "gap"
        parts.append(f'<span class="{css_class}" data-index="{unit.index}">{text}</span>')
    return "".join(parts)


class WebServer:
    """
    Serves the voiceprompter web interface and manages WebSocket connections.

    Transcripts come either from the browser (``transcript`` messages pushed
    into a QueueSource) or from a local source built by ``source_factory``.
    """

    def __init__(
        self,
        session: PrompterSession,
        host: str = "127.0.0.1",
        port: int = 8000,
        token_manager: SpeechTokenManager | None = None,
        source_factory: SourceFactory | None = None,
        config_path: Path | None = None
    ) -> None:
        self.session: PrompterSession = session
        self.host: str = host
        self.port: int = port
        self.token_manager: SpeechTokenManager | None = token_manager
        self.source_factory: SourceFactory | None = source_factory
        self.config_path: Path | None = config_path
        self.app: web.Application = web.Application()
        self.websockets: set[web.WebSocketResponse] = set()
        self.runner: web.AppRunner | None = None

        # Browser transcripts go here while prompting
        self.browser_source: QueueSource | None = None

        self.session.add_listener(self.broadcast)
        self._setup_routes()

    def _setup_routes(self) -> None:
        """Set up HTTP routes."""
        self.app.router.add_get('/', self._handle_index)
        self.app.router.add_get('/ws', self._handle_websocket)
        self.app.router.add_post('/script', self._handle_script_upload)
        self.app.router.add_post('/settings', self._handle_settings)
        self.app.router.add_get('/settings', self._handle_get_settings)
        self.app.router.add_post('/save-config', self._handle_save_config)
        self.app.router.add_get('/api/get-speech-token', self._handle_get_speech_token)
        self.app.router.add_get('/audio-devices', self._handle_get_audio_devices)

    @property
    def uses_browser_recognition(self) -> bool:
        return self.source_factory is None

    async def _handle_index(self, request: web.Request) -> web.Response:
        """Serve the main HTML page."""
        return web.Response(text=self._get_html(), content_type='text/html')

    def _init_message(self) -> dict[str, Any]:
        message = self.session.snapshot()
        message["scriptHtml"] = render_script_html(self.session.units)
        message["recognizer"] = "browser" if self.uses_browser_recognition else "local"
        return message

    async def _handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        """Handle WebSocket connections for real-time updates."""
        ws = web.WebSocketResponse()
        await ws.prepare(request)

        self.websockets.add(ws)
        logger.info("WebSocket connected. Total: %d", len(self.websockets))

        try:
            await ws.send_json(self._init_message())

            async for msg in ws:
                if msg.type == web.WSMsgType.TEXT:
                    try:
                        data = json.loads(msg.data)
                    except json.JSONDecodeError:
                        logger.warning("Ignoring malformed WebSocket message")
                        continue
                    if isinstance(data, dict):
                        await self._handle_ws_message(ws, data)
                elif msg.type == web.WSMsgType.ERROR:
                    logger.warning("WebSocket error: %s", ws.exception())
        finally:
            self.websockets.discard(ws)
            logger.info("WebSocket disconnected. Total: %d", len(self.websockets))

        return ws

    async def _handle_ws_message(self, ws: web.WebSocketResponse, data: dict[str, Any]) -> None:
        """Handle incoming WebSocket messages using dispatch pattern."""
        msg_type: object | None = data.get("type")
        if not msg_type:
            return

        handlers: dict[str, Callable[[web.WebSocketResponse, dict[str, Any]], Any]] = {
            "script": self._on_script_message,
            "clear": self._on_clear_message,
            "toggle_quick_edit": self._on_toggle_quick_edit_message,
            "toggle_editor": self._on_toggle_editor_message,
            "start": self._on_start_message,
            "stop": self._on_stop_message,
            "restart": self._on_restart_message,
            "extend_timeout": self._on_extend_timeout_message,
            "jump_to": self._on_jump_to_message,
            "transcript": self._on_transcript_message,
            "settings": self._on_settings_message,
            "save_config": self._on_save_config_message,
        }

        handler = handlers.get(str(msg_type))
        if handler:
            await handler(ws, data)
        else:
            logger.warning("Unhandled WebSocket message: %s", msg_type)

    async def _on_script_message(self, _ws: web.WebSocketResponse, data: dict[str, Any]) -> None:
        await self.session.set_content(str(data.get("text", "")))

    async def _on_clear_message(self, _ws: web.WebSocketResponse, _data: dict[str, Any]) -> None:
        await self.session.clear_content()

    async def _on_toggle_quick_edit_message(
        self,
        _ws: web.WebSocketResponse,
        _data: dict[str, Any]
    ) -> None:
        await self.session.toggle_quick_edit()

    async def _on_toggle_editor_message(
        self,
        _ws: web.WebSocketResponse,
        _data: dict[str, Any]
    ) -> None:
        await self.session.toggle_editor()

    async def _on_start_message(self, _ws: web.WebSocketResponse, data: dict[str, Any]) -> None:
        """Start prompting from the browser or the local recognizer."""
        source: RecognitionSource
        if self.source_factory is not None:
            source = self.source_factory()
        else:
            self.browser_source = QueueSource()
            source = self.browser_source
        await self.session.start(source, resume=bool(data.get("resume", False)))

    async def _on_stop_message(self, _ws: web.WebSocketResponse, _data: dict[str, Any]) -> None:
        await self.session.stop()
        self.browser_source = None

    async def _on_restart_message(self, _ws: web.WebSocketResponse, _data: dict[str, Any]) -> None:
        await self.session.restart()

    async def _on_extend_timeout_message(
        self,
        _ws: web.WebSocketResponse,
        _data: dict[str, Any]
    ) -> None:
        await self.session.extend_timeout()

    async def _on_jump_to_message(self, _ws: web.WebSocketResponse, data: dict[str, Any]) -> None:
        """Handle a click on a unit."""
        index_raw: object = data.get("index", -1)
        try:
            index: int = int(index_raw)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            logger.warning("Ignoring jump_to with bad index: %r", index_raw)
            return
        await self.session.jump_to(index)

    async def _on_transcript_message(
        self,
        _ws: web.WebSocketResponse,
        data: dict[str, Any]
    ) -> None:
        """Recognized text from the in-browser recognizer."""
        text: str = str(data.get("text", ""))
        if data.get("kind") == "final":
            event = RecognitionEvent.final(text)
        else:
            event = RecognitionEvent.interim(text)

        if self.browser_source is not None and not self.browser_source.closed:
            self.browser_source.push(event)
        elif event.is_final:
            # Late final results still count after prompting stopped
            await self.session.handle_event(event)

    async def _on_settings_message(self, _ws: web.WebSocketResponse, data: dict[str, Any]) -> None:
        settings_update = data.get("settings", {})
        if isinstance(settings_update, dict):
            await self.session.update_display(settings_update)

    async def _on_save_config_message(
        self,
        ws: web.WebSocketResponse,
        _data: dict[str, Any]
    ) -> None:
        success: bool = self._save_display_config()
        await ws.send_json({"type": "config_saved", "success": success})

    def _save_display_config(self) -> bool:
        config = load_config(self.config_path)
        config = update_config_display(config, self.session.display)  # type: ignore[arg-type]
        return save_config(config, self.config_path)

    async def _handle_script_upload(self, request: web.Request) -> web.Response:
        """Handle script upload via POST."""
        try:
            data = await request.json()
        except json.JSONDecodeError:
            return web.json_response(
                {"status": "error", "message": "Invalid JSON"}, status=400)
        if not isinstance(data, dict):
            return web.json_response(
                {"status": "error", "message": "Script must be an object"}, status=400)
        await self.session.set_content(str(data.get("text", "")))
        return web.json_response({"status": "ok", "units": len(self.session.units)})

    async def _handle_settings(self, request: web.Request) -> web.Response:
        """Handle settings update via POST."""
        try:
            data = await request.json()
        except json.JSONDecodeError:
            return web.json_response(
                {"status": "error", "message": "Invalid JSON"}, status=400)
        if not isinstance(data, dict):
            return web.json_response(
                {"status": "error", "message": "Settings must be an object"}, status=400)
        await self.session.update_display(data)
        return web.json_response({"status": "ok", "settings": self.session.display})

    async def _handle_get_settings(self, request: web.Request) -> web.Response:
        """Get current settings."""
        return web.json_response(self.session.display)

    async def _handle_save_config(self, request: web.Request) -> web.Response:
        """Save current display settings to the config file."""
        if self._save_display_config():
            return web.json_response({"status": "ok", "message": "Settings saved"})
        return web.json_response(
            {"status": "error", "message": "Failed to save config"},
            status=500
        )

    async def _handle_get_speech_token(self, request: web.Request) -> web.Response:
        """Issue a short-lived speech token for the browser recognizer."""
        if self.token_manager is None:
            return web.json_response(
                {"error": "Speech service credentials are not configured"},
                status=500
            )
        try:
            token = await self.token_manager.get_token()
        except SpeechTokenError as e:
            logger.error("Error issuing speech token: %s", e)
            return web.json_response({"error": str(e)}, status=500)
        return web.json_response(token.to_dict())

    async def _handle_get_audio_devices(self, request: web.Request) -> web.Response:
        """Get list of available audio input devices."""
        try:
            # Imported here so the server runs without PortAudio installed
            from .audio import list_input_devices
            devices = list_input_devices()
        except Exception as e:
            return web.json_response(
                {"status": "error", "message": str(e)},
                status=500
            )
        return web.json_response({"status": "ok", "devices": devices})

    async def broadcast(self, message: dict[str, Any]) -> None:
        """Send a message to all connected WebSocket clients."""
        if not self.websockets:
            return

        if message.get("type") == "script_updated":
            message = {**message, "scriptHtml": render_script_html(self.session.units)}

        dead: set[web.WebSocketResponse] = set()
        for ws in list(self.websockets):
            try:
                await ws.send_json(message)
            except (ConnectionError, RuntimeError) as e:
                logger.warning("Error sending to WebSocket: %s", e)
                dead.add(ws)

        self.websockets -= dead

    async def start(self) -> None:
        """Start the web server."""
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site: web.TCPSite = web.TCPSite(self.runner, self.host, self.port)
        await site.start()
        print(f"Web server running at http://{self.host}:{self.port}")

        # Give event loop a moment to start accepting connections
        await asyncio.sleep(0.1)

    async def stop(self) -> None:
        """Stop the web server."""
        self.session.remove_listener(self.broadcast)
        for ws in list(self.websockets):
            with contextlib.suppress(ConnectionError, RuntimeError):
                await ws.close()
        self.websockets.clear()

        if self.runner:
            await self.runner.cleanup()
            self.runner = None

    def _get_html(self) -> str:
        """Load the HTML for the interface from static/index.html."""
        static_dir: Path = Path(__file__).parent / "static"
        html_path: Path = static_dir / "index.html"
        return html_path.read_text(encoding="utf-8")
