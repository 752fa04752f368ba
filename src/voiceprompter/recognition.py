# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Recognition event sources.

A recognition source produces a stream of tagged text events: "interim"
hypotheses that may still be revised, and "final" results that won't be.
The session consumes any source the same way, so tests and the replay tool
can feed scripted events while the app feeds events from the browser or
from a local recognizer.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass
from typing import Literal

logger = logging.getLogger(__name__)

RecognitionKind = Literal["interim", "final"]


@dataclass(frozen=True)
class RecognitionEvent:
    """A piece of recognized text."""
    kind: RecognitionKind
    text: str

    @property
    def is_final(self) -> bool:
        return self.kind == "final"

    @classmethod
    def interim(cls, text: str) -> 'RecognitionEvent':
        return cls("interim", text.lower())

    @classmethod
    def final(cls, text: str) -> 'RecognitionEvent':
        return cls("final", text.lower())

    def __repr__(self) -> str:
        return f"RecognitionEvent({self.kind}: '{self.text}')"


class RecognitionSource(ABC):
    """Base interface for anything that yields recognition events.

    Usage:
        await source.start()
        async for event in source:
            ...
        await source.close()

    ``close()`` may be called from another task at any time; iteration then
    ends after the event in flight.
    """

    async def start(self) -> None:
        """Acquire whatever the source needs (microphone, models, ...)."""

    @abstractmethod
    async def close(self) -> None:
        """Stop producing events and release resources."""

    @abstractmethod
    def __aiter__(self) -> AsyncIterator[RecognitionEvent]:
        """Iterate over events until the source is exhausted or closed."""


class ScriptedSource(RecognitionSource):
    """Replays a fixed sequence of events, optionally with a delay between them."""

    def __init__(self, events: Iterable[RecognitionEvent], delay: float = 0.0) -> None:
        self.events: list[RecognitionEvent] = list(events)
        self.delay: float = delay
        self.closed: bool = False

    async def close(self) -> None:
        self.closed = True

    async def __aiter__(self) -> AsyncIterator[RecognitionEvent]:
        for event in self.events:
            if self.closed:
                return
            if self.delay:
                await asyncio.sleep(self.delay)
            yield event


class QueueSource(RecognitionSource):
    """Yields events pushed in by another component (e.g. the browser over WebSocket)."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[RecognitionEvent | None] = asyncio.Queue()
        self.closed: bool = False

    def push(self, event: RecognitionEvent) -> None:
        """Queue an event; ignored once the source is closed."""
        if self.closed:
            logger.debug("Dropping %r pushed after close", event)
            return
        self._queue.put_nowait(event)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(None)

    async def __aiter__(self) -> AsyncIterator[RecognitionEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event


class LocalSpeechSource(RecognitionSource):
    """
    Recognizes speech from a local microphone with Vosk.

    Microphone blocks arrive on the event loop; recognition is blocking, so
    each block is fed to the recognizer in the default executor.
    """

    def __init__(
        self,
        model_id: str = "vosk-en-us-small",
        device: int | None = None,
        chunk_ms: int = 100,
        sample_rate: int = 16000
    ) -> None:
        self.model_id: str = model_id
        self.device: int | None = device
        self.chunk_ms: int = chunk_ms
        self.sample_rate: int = sample_rate
        self.closed: bool = False
        self._microphone = None
        self._recognizer = None

    async def start(self) -> None:
        # Imported here so the rest of the app works without audio libraries
        from .audio import Microphone
        from .vosk_recognizer import VoskRecognizer

        loop = asyncio.get_running_loop()
        logger.info("Loading Vosk model: %s", self.model_id)
        self._recognizer = await loop.run_in_executor(
            None, VoskRecognizer, self.model_id, self.sample_rate)

        self._microphone = Microphone(
            device=self.device,
            block_ms=self.chunk_ms,
            sample_rate=self.sample_rate,
        )
        self._microphone.open()

    async def close(self) -> None:
        self.closed = True
        if self._microphone is not None:
            self._microphone.close()
            self._microphone = None

    async def __aiter__(self) -> AsyncIterator[RecognitionEvent]:
        if self._recognizer is None:
            raise RuntimeError("LocalSpeechSource.start() must be awaited before iterating")
        loop = asyncio.get_running_loop()
        recognizer = self._recognizer

        while not self.closed and self._microphone is not None:
            block: bytes | None = await self._microphone.read(timeout=0.1)
            if not block:
                continue
            event: RecognitionEvent | None = await loop.run_in_executor(
                None, recognizer.accept, block)
            if event is not None:
                yield event

        # Whatever the recognizer still holds is the end of the last utterance
        remaining: RecognitionEvent | None = recognizer.flush()
        if remaining is not None:
            yield remaining
