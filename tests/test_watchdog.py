"""
Tests for the inactivity watchdog.
"""

import asyncio

import pytest

from voiceprompter.watchdog import InactivityWatchdog


class WatchdogRecorder:
    """Collects watchdog callbacks."""

    def __init__(self) -> None:
        self.warnings: list[int | None] = []
        self.timeouts: int = 0

    async def on_warning(self, countdown: int | None) -> None:
        self.warnings.append(countdown)

    async def on_timeout(self) -> None:
        self.timeouts += 1


def make_watchdog(recorder: WatchdogRecorder, timeout: float = 0.05,
                  warnings: int = 2, tick: float = 0.01) -> InactivityWatchdog:
    return InactivityWatchdog(
        on_timeout=recorder.on_timeout,
        on_warning=recorder.on_warning,
        inactivity_timeout=timeout,
        warning_duration=warnings,
        tick=tick,
    )


class TestTimeout:

    @pytest.mark.asyncio
    async def test_counts_down_then_times_out(self) -> None:
        recorder = WatchdogRecorder()
        watchdog = make_watchdog(recorder)
        await watchdog.start()
        await asyncio.sleep(0.3)

        assert recorder.warnings == [2, 1, None]
        assert recorder.timeouts == 1
        assert not watchdog.running
        assert not watchdog.showing_warning

    @pytest.mark.asyncio
    async def test_stop_disarms(self) -> None:
        recorder = WatchdogRecorder()
        watchdog = make_watchdog(recorder)
        await watchdog.start()
        await watchdog.stop()
        await asyncio.sleep(0.2)

        assert recorder.timeouts == 0
        assert recorder.warnings == []


class TestRearming:

    @pytest.mark.asyncio
    async def test_progress_rearms(self) -> None:
        recorder = WatchdogRecorder()
        watchdog = make_watchdog(recorder, timeout=0.1)
        await watchdog.start()
        for _ in range(4):
            await asyncio.sleep(0.05)
            await watchdog.progress()

        assert recorder.timeouts == 0
        assert recorder.warnings == []
        assert watchdog.running
        await watchdog.stop()

    @pytest.mark.asyncio
    async def test_progress_when_not_running_is_ignored(self) -> None:
        recorder = WatchdogRecorder()
        watchdog = make_watchdog(recorder)
        await watchdog.progress()
        assert not watchdog.running

    @pytest.mark.asyncio
    async def test_extend_dismisses_warning(self) -> None:
        recorder = WatchdogRecorder()
        watchdog = make_watchdog(recorder, timeout=0.05, warnings=3, tick=0.1)
        await watchdog.start()
        await asyncio.sleep(0.08)
        assert watchdog.showing_warning
        assert watchdog.countdown == 3

        await watchdog.extend()

        assert recorder.warnings == [3, None]
        assert not watchdog.showing_warning
        assert watchdog.running
        assert recorder.timeouts == 0
        await watchdog.stop()
