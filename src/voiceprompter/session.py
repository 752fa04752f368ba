# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Prompting session.

Owns everything that changes while the prompter is in use: the script text
and its units, the final/interim progress pair, the UI mode, the inactivity
watchdog and the active recognition source. All state is changed on the
event loop only, and every change is announced to listeners (the web
server) as a JSON-ready message.
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Literal

from .config import DEFAULT_CONFIG, DEFAULT_SCRIPT_TEXT, DisplaySettings, save_script
from .matcher import DEFAULT_MATCHER_SETTINGS, NO_PROGRESS, MatcherSettings, match
from .progress import ProgressState
from .recognition import RecognitionEvent, RecognitionSource
from .replay import TranscriptRecorder
from .tokenizer import TextUnit, tokenize
from .watchdog import DEFAULT_INACTIVITY_TIMEOUT, DEFAULT_WARNING_DURATION, InactivityWatchdog

logger = logging.getLogger(__name__)

Status = Literal["stopped", "started", "editing", "editorMode"]
Listener = Callable[[dict[str, Any]], Awaitable[None]]

# Display settings applied while the full editor is open
EDITOR_DISPLAY: dict[str, int] = {"fontSize": 25, "margin": 370, "readLinePosition": 10}


class PrompterSession:
    """
    State and control flow of one prompter.

    Usage:
        session = PrompterSession(script_text)
        session.add_listener(server.broadcast)
        await session.start(QueueSource())
        ...
        await session.stop()
    """

    def __init__(
        self,
        script_text: str = DEFAULT_SCRIPT_TEXT,
        matcher_settings: MatcherSettings = DEFAULT_MATCHER_SETTINGS,
        display_settings: DisplaySettings | None = None,
        inactivity_timeout: float = DEFAULT_INACTIVITY_TIMEOUT,
        warning_duration: int = DEFAULT_WARNING_DURATION,
        script_file: str | None = None,
        recorder: TranscriptRecorder | None = None,
        stop_grace: float = 0.5
    ) -> None:
        """
        Args:
            script_text: Initial script
            matcher_settings: Window and fuzziness parameters
            display_settings: Initial display settings (merged over defaults)
            inactivity_timeout: Seconds without progress before the warning
            warning_duration: Countdown ticks before an automatic stop
            script_file: Where to save the script on edit (None disables)
            recorder: Optional transcript recorder
            stop_grace: Seconds to keep handling final results after stop
        """
        self.raw_text: str = script_text
        self.units: list[TextUnit] = tokenize(script_text)
        self.matcher_settings: MatcherSettings = matcher_settings
        self.progress: ProgressState = ProgressState()
        self.status: Status = "stopped"
        self.script_file: str | None = script_file
        self.recorder: TranscriptRecorder | None = recorder
        self.stop_grace: float = stop_grace

        self.display: dict[str, Any] = dict(DEFAULT_CONFIG["display"])
        if display_settings:
            self.display.update(display_settings)
        self.default_display: dict[str, Any] = dict(self.display)
        self._saved_display: dict[str, Any] | None = None

        self.watchdog: InactivityWatchdog = InactivityWatchdog(
            on_timeout=self._on_inactivity_timeout,
            on_warning=self._on_timeout_warning,
            inactivity_timeout=inactivity_timeout,
            warning_duration=warning_duration,
        )

        self.source: RecognitionSource | None = None
        self._source_task: asyncio.Task[None] | None = None
        self._listeners: list[Listener] = []

    # Listeners

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _notify(self, message: dict[str, Any]) -> None:
        for listener in list(self._listeners):
            await listener(message)

    async def _notify_position(self) -> None:
        await self._notify({"type": "position", **self.progress.to_dict()})

    async def _notify_script(self) -> None:
        await self._notify({
            "type": "script_updated",
            "script": self.raw_text,
            "units": [unit.to_dict() for unit in self.units],
        })

    async def _notify_status(self) -> None:
        await self._notify({"type": "status", "status": self.status})

    def snapshot(self) -> dict[str, Any]:
        """Full state for a newly connected client."""
        return {
            "type": "init",
            "script": self.raw_text,
            "units": [unit.to_dict() for unit in self.units],
            "status": self.status,
            "settings": self.display,
            "showTimeoutWarning": self.watchdog.showing_warning,
            "timeoutCountdown": self.watchdog.countdown,
            **self.progress.to_dict(),
        }

    # Content

    def _retokenize(self) -> None:
        self.units = tokenize(self.raw_text)

    async def set_content(self, text: str) -> None:
        """Replace the script; progress starts over."""
        self.raw_text = text
        self._retokenize()
        self.progress.reset()
        save_script(self.script_file, text)
        await self._notify_script()
        await self._notify_position()

    async def clear_content(self) -> None:
        """Back to the placeholder script and startup display; the saved script is removed."""
        self.raw_text = DEFAULT_SCRIPT_TEXT
        self._retokenize()
        self.progress.reset()
        save_script(self.script_file, None)
        await self._notify_script()
        await self._notify_position()
        self.display = dict(self.default_display)
        self._saved_display = None
        await self._notify({"type": "settings_updated", "settings": self.display})

    async def toggle_quick_edit(self) -> None:
        """Switch in or out of in-place editing; units are rebuilt either way."""
        if self.status == "started":
            await self.stop()
        self.status = "stopped" if self.status == "editing" else "editing"
        self._retokenize()
        await self._notify_status()
        await self._notify_script()

    async def toggle_editor(self) -> None:
        """Switch in or out of the full editor, swapping display settings."""
        if self.status == "started":
            await self.stop()
        if self.status == "editorMode":
            if self._saved_display:
                self.display.update(self._saved_display)
                self._saved_display = None
            self.status = "stopped"
        else:
            self._saved_display = {name: self.display[name] for name in EDITOR_DISPLAY}
            self.display.update(EDITOR_DISPLAY)
            self.status = "editorMode"
        self._retokenize()
        await self._notify_status()
        await self._notify_script()
        await self._notify({"type": "settings_updated", "settings": self.display})

    async def update_display(self, settings: dict[str, Any]) -> None:
        self.display.update(settings)
        await self._notify({"type": "settings_updated", "settings": self.display})

    async def jump_to(self, index: int) -> None:
        """Move both positions to a unit the user picked."""
        index = max(NO_PROGRESS, min(index, len(self.units)))
        self.progress.jump_to(index)
        await self.watchdog.progress()
        await self._notify_position()

    async def restart(self) -> bool:
        """Back to the start of the script. Only allowed while stopped."""
        if self.status != "stopped":
            return False
        self.progress.reset()
        await self._notify_position()
        return True

    # Recognition

    async def handle_event(self, event: RecognitionEvent) -> bool:
        """
        Match a recognition event against the script and update progress.

        Final results are handled even after the session stopped so nothing
        said just before stopping is lost; interim results only while started.

        Returns:
            True if the displayed progress changed
        """
        if not event.text.strip():
            return False
        if not event.is_final and self.status != "started":
            return False

        if self.recorder:
            self.recorder.record(event)

        previous_final: int = self.progress.final_index
        previous_interim: int = self.progress.interim_index
        computed: int = match(event.text, self.units, previous_final, self.matcher_settings)

        if event.is_final:
            self.progress.apply_final(computed)
        else:
            self.progress.apply_interim(computed)

        advanced: bool = (self.progress.final_index > previous_final
                          or self.progress.interim_index > previous_interim)
        changed: bool = (self.progress.final_index != previous_final
                         or self.progress.interim_index != previous_interim)

        if advanced:
            logger.debug("%s '%s' -> final=%d interim=%d", event.kind, event.text,
                         self.progress.final_index, self.progress.interim_index)
            await self.watchdog.progress()
        if changed:
            await self._notify_position()
        return changed

    async def start(self, source: RecognitionSource, resume: bool = False) -> bool:
        """
        Start prompting from a recognition source.

        Args:
            source: Where recognition events come from
            resume: Keep the current progress instead of starting over

        Returns:
            True if the source started
        """
        if self.status == "started":
            await self.stop()

        if not resume:
            self.progress.reset()
        if self.recorder:
            self.recorder.start()

        try:
            await source.start()
        except Exception as e:
            logger.error("Failed to start recognition: %s", e)
            await self._notify({"type": "error", "message": f"Failed to start recognition: {e}"})
            await source.close()
            return False

        self.source = source
        self.status = "started"
        self._source_task = asyncio.create_task(self._consume(source), name="recognition")
        await self.watchdog.start()
        await self._notify_status()
        await self._notify_position()
        logger.info("Prompting started")
        return True

    async def _consume(self, source: RecognitionSource) -> None:
        try:
            async for event in source:
                await self.handle_event(event)
        except Exception:
            logger.exception("Recognition source failed")
            self._source_task = None
            await self.stop()

    async def wait(self) -> None:
        """Wait until the current source has no more events."""
        task = self._source_task
        if task is not None:
            await asyncio.shield(task)

    async def stop(self) -> None:
        """Stop prompting: disarm the watchdog and close the source."""
        if self.status != "started":
            return
        self.status = "stopped"
        await self.watchdog.stop()

        source, self.source = self.source, None
        task, self._source_task = self._source_task, None
        if source is not None:
            await source.close()
        if task is not None and task is not asyncio.current_task():
            # Let the source deliver its last final results
            try:
                await asyncio.wait_for(task, timeout=self.stop_grace)
            except asyncio.TimeoutError:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        if self.recorder:
            self.recorder.stop()
        await self._notify_status()
        logger.info("Prompting stopped")

    async def extend_timeout(self) -> None:
        """The user is still there: dismiss the warning and restart the timer."""
        if self.status == "started":
            await self.watchdog.extend()
        else:
            await self.watchdog.stop()

    async def close(self) -> None:
        """Stop and drop all listeners."""
        await self.stop()
        self._listeners.clear()

    async def _on_inactivity_timeout(self) -> None:
        logger.info("Stopping after inactivity")
        await self.stop()

    async def _on_timeout_warning(self, countdown: int | None) -> None:
        await self._notify({"type": "timeout_warning", "countdown": countdown})
