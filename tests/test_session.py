"""
Tests for PrompterSession: content, modes, recognition and lifecycle.
"""

import asyncio
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import pytest

from voiceprompter.config import DEFAULT_SCRIPT_TEXT
from voiceprompter.matcher import NO_PROGRESS
from voiceprompter.recognition import QueueSource, RecognitionEvent, RecognitionSource, ScriptedSource
from voiceprompter.replay import TranscriptRecorder
from voiceprompter.session import EDITOR_DISPLAY, PrompterSession

SCRIPT = "The quick brown fox jumps over the lazy dog."


class MessageLog:
    """Session listener that keeps every message."""

    def __init__(self) -> None:
        self.messages: list[dict[str, Any]] = []

    async def __call__(self, message: dict[str, Any]) -> None:
        self.messages.append(message)

    def of_type(self, msg_type: str) -> list[dict[str, Any]]:
        return [m for m in self.messages if m["type"] == msg_type]


class FailingSource(RecognitionSource):
    """Yields one event and then fails."""

    async def close(self) -> None:
        pass

    async def __aiter__(self) -> AsyncIterator[RecognitionEvent]:
        yield RecognitionEvent.final("the quick")
        raise RuntimeError("microphone unplugged")


class UnavailableSource(RecognitionSource):

    def __init__(self) -> None:
        self.closed = False

    async def start(self) -> None:
        raise RuntimeError("no model")

    async def close(self) -> None:
        self.closed = True

    async def __aiter__(self) -> AsyncIterator[RecognitionEvent]:
        return
        yield


def make_session(**kwargs: Any) -> tuple[PrompterSession, MessageLog]:
    session = PrompterSession(SCRIPT, **kwargs)
    log = MessageLog()
    session.add_listener(log)
    return session, log


class TestContent:

    @pytest.mark.asyncio
    async def test_set_content_retokenizes_and_resets(self) -> None:
        session, log = make_session()
        session.progress.jump_to(5)

        await session.set_content("Hello there, world")

        assert [u.value for u in session.units] == ["Hello", " ", "there", ", ", "world"]
        assert session.progress.final_index == NO_PROGRESS
        updated = log.of_type("script_updated")[-1]
        assert updated["script"] == "Hello there, world"
        assert updated["units"][0] == {"index": 0, "value": "Hello"}

    @pytest.mark.asyncio
    async def test_set_content_saves_script(self, tmp_path: Path) -> None:
        script_file = tmp_path / "script.txt"
        session, _log = make_session(script_file=str(script_file))
        await session.set_content("Saved text")
        assert script_file.read_text(encoding="utf-8") == "Saved text"

    @pytest.mark.asyncio
    async def test_clear_content(self, tmp_path: Path) -> None:
        script_file = tmp_path / "script.txt"
        script_file.write_text("old", encoding="utf-8")
        session, _log = make_session(script_file=str(script_file))

        await session.clear_content()

        assert session.raw_text == DEFAULT_SCRIPT_TEXT
        assert not script_file.exists()

    @pytest.mark.asyncio
    async def test_clear_content_restores_display(self) -> None:
        session, log = make_session(display_settings={"fontSize": 60})
        await session.update_display({"fontSize": 20, "margin": 10})

        await session.clear_content()

        assert session.display["fontSize"] == 60
        assert session.display["margin"] == session.default_display["margin"]
        assert log.of_type("settings_updated")[-1]["settings"]["fontSize"] == 60

    @pytest.mark.asyncio
    async def test_restart_resets_progress(self) -> None:
        session, log = make_session()
        await session.jump_to(6)

        assert await session.restart()

        assert session.progress.final_index == NO_PROGRESS
        assert session.progress.interim_index == NO_PROGRESS
        assert log.of_type("position")[-1]["finalIndex"] == NO_PROGRESS

    @pytest.mark.asyncio
    async def test_restart_refused_while_prompting(self) -> None:
        session, _log = make_session()
        await session.jump_to(6)
        await session.start(QueueSource(), resume=True)

        assert not await session.restart()
        assert session.progress.final_index == 6
        await session.stop()

    @pytest.mark.asyncio
    async def test_jump_to_is_clamped(self) -> None:
        session, log = make_session()
        await session.jump_to(4)
        assert session.progress.final_index == 4
        assert session.progress.interim_index == 4

        await session.jump_to(10_000)
        assert session.progress.final_index == len(session.units)
        assert log.of_type("position")[-1]["finalIndex"] == len(session.units)

    def test_snapshot(self) -> None:
        session, _log = make_session()
        snapshot = session.snapshot()
        assert snapshot["type"] == "init"
        assert snapshot["status"] == "stopped"
        assert snapshot["finalIndex"] == NO_PROGRESS
        assert len(snapshot["units"]) == len(session.units)
        assert snapshot["showTimeoutWarning"] is False


class TestModes:

    @pytest.mark.asyncio
    async def test_quick_edit_toggles(self) -> None:
        session, log = make_session()
        await session.toggle_quick_edit()
        assert session.status == "editing"
        await session.toggle_quick_edit()
        assert session.status == "stopped"
        assert [m["status"] for m in log.of_type("status")] == ["editing", "stopped"]

    @pytest.mark.asyncio
    async def test_editor_swaps_display_settings(self) -> None:
        session, _log = make_session(display_settings={"fontSize": 60, "margin": 100})
        await session.toggle_editor()
        assert session.status == "editorMode"
        for name, value in EDITOR_DISPLAY.items():
            assert session.display[name] == value

        await session.toggle_editor()
        assert session.status == "stopped"
        assert session.display["fontSize"] == 60
        assert session.display["margin"] == 100

    @pytest.mark.asyncio
    async def test_entering_edit_mode_stops_prompting(self) -> None:
        session, _log = make_session()
        await session.start(QueueSource())
        await session.toggle_quick_edit()
        assert session.status == "editing"
        assert session.source is None


class TestRecognitionEvents:

    @pytest.mark.asyncio
    async def test_final_event_processed_when_stopped(self) -> None:
        session, log = make_session()
        changed = await session.handle_event(RecognitionEvent.final("the quick brown"))
        assert changed
        assert session.progress.final_index == 5
        assert log.of_type("position")[-1] == {"type": "position", "finalIndex": 5, "interimIndex": 5}

    @pytest.mark.asyncio
    async def test_interim_event_ignored_when_stopped(self) -> None:
        session, log = make_session()
        changed = await session.handle_event(RecognitionEvent.interim("the quick brown"))
        assert not changed
        assert session.progress.interim_index == NO_PROGRESS
        assert log.of_type("position") == []

    @pytest.mark.asyncio
    async def test_interim_then_final(self) -> None:
        session, _log = make_session()
        await session.start(QueueSource())

        await session.handle_event(RecognitionEvent.interim("the quick brown"))
        assert session.progress.final_index == NO_PROGRESS
        assert session.progress.interim_index == 5

        await session.handle_event(RecognitionEvent.final("the quick"))
        # Interim progress ahead of the final result is confirmed too
        assert session.progress.final_index == 5
        await session.stop()

    @pytest.mark.asyncio
    async def test_unmatched_final_keeps_position(self) -> None:
        session, log = make_session()
        await session.handle_event(RecognitionEvent.final("the quick"))
        count = len(log.of_type("position"))
        assert not await session.handle_event(RecognitionEvent.final("xyzzy nonsense"))
        assert session.progress.final_index == 3
        assert len(log.of_type("position")) == count


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_scripted_source(self) -> None:
        session, log = make_session()
        source = ScriptedSource([
            RecognitionEvent.interim("the quick"),
            RecognitionEvent.final("the quick brown fox"),
            RecognitionEvent.interim("jumps over"),
        ])
        assert await session.start(source)
        assert session.status == "started"
        await session.wait()

        assert session.progress.final_index == 7
        assert session.progress.interim_index == 11
        await session.stop()
        assert session.status == "stopped"
        assert [m["status"] for m in log.of_type("status")] == ["started", "stopped"]

    @pytest.mark.asyncio
    async def test_start_resets_progress_unless_resuming(self) -> None:
        session, _log = make_session()
        await session.jump_to(6)
        await session.start(QueueSource(), resume=True)
        assert session.progress.final_index == 6
        await session.stop()

        await session.start(QueueSource())
        assert session.progress.final_index == NO_PROGRESS
        await session.stop()

    @pytest.mark.asyncio
    async def test_final_results_pushed_before_stop_still_count(self) -> None:
        session, _log = make_session()
        source = QueueSource()
        await session.start(source)
        source.push(RecognitionEvent.final("the quick brown"))
        await session.stop()
        assert session.progress.final_index == 5

    @pytest.mark.asyncio
    async def test_source_failure_stops_session(self) -> None:
        session, log = make_session()
        await session.start(FailingSource())
        await session.wait()
        assert session.status == "stopped"
        assert session.progress.final_index == 3
        assert log.of_type("status")[-1]["status"] == "stopped"

    @pytest.mark.asyncio
    async def test_source_that_cannot_start(self) -> None:
        session, log = make_session()
        source = UnavailableSource()
        assert not await session.start(source)
        assert session.status == "stopped"
        assert source.closed
        assert "no model" in log.of_type("error")[0]["message"]

    @pytest.mark.asyncio
    async def test_stop_when_not_started_is_noop(self) -> None:
        session, log = make_session()
        await session.stop()
        assert log.messages == []


class TestInactivity:

    @pytest.mark.asyncio
    async def test_inactivity_stops_session(self) -> None:
        session, log = make_session(inactivity_timeout=0.05, warning_duration=2)
        session.watchdog.tick = 0.01
        await session.start(QueueSource())
        await asyncio.sleep(0.3)

        assert session.status == "stopped"
        countdowns = [m["countdown"] for m in log.of_type("timeout_warning")]
        assert countdowns == [2, 1, None]

    @pytest.mark.asyncio
    async def test_progress_keeps_session_alive(self) -> None:
        session, _log = make_session(inactivity_timeout=0.15, warning_duration=1)
        session.watchdog.tick = 0.01
        source = QueueSource()
        await session.start(source)
        for text in ["the quick", "the quick brown", "the quick brown fox", "jumps over"]:
            await asyncio.sleep(0.08)
            source.push(RecognitionEvent.interim(text))
        await asyncio.sleep(0.02)

        assert session.status == "started"
        await session.stop()

    @pytest.mark.asyncio
    async def test_extend_timeout(self) -> None:
        session, log = make_session(inactivity_timeout=0.05, warning_duration=3)
        session.watchdog.tick = 0.1
        await session.start(QueueSource())
        await asyncio.sleep(0.08)
        await session.extend_timeout()

        assert session.status == "started"
        assert log.of_type("timeout_warning")[-1]["countdown"] is None
        await session.stop()


class TestTranscriptRecording:

    @pytest.mark.asyncio
    async def test_records_final_results(self, tmp_path: Path) -> None:
        recorder = TranscriptRecorder(tmp_path)
        session, _log = make_session(recorder=recorder)
        source = ScriptedSource([
            RecognitionEvent.interim("the quick"),
            RecognitionEvent.final("the quick brown"),
        ])
        await session.start(source)
        path = recorder.path
        await session.wait()
        await session.stop()

        assert path is not None
        lines = path.read_text(encoding="utf-8").splitlines()
        assert lines[0].startswith("=== Transcript started")
        assert "final: the quick brown" in lines
        assert "interim: the quick" not in lines
        assert lines[-1].startswith("=== Transcript ended")
