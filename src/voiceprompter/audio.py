# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Microphone input for the local recognizer.

sounddevice calls back on its own audio thread; blocks are handed over to
the event loop so the recognizer can simply await the next one.
"""

import asyncio
import logging
from typing import Any

import numpy as np
import numpy.typing as npt
import sounddevice as sd

logger = logging.getLogger(__name__)


class Microphone:
    """
    16-bit mono input stream delivering fixed-length blocks.

    At most ``max_backlog`` blocks are buffered; if the reader falls behind,
    the oldest blocks are dropped so recognition stays close to live speech.
    """

    def __init__(
        self,
        device: int | None = None,
        block_ms: int = 100,
        sample_rate: int = 16000,
        max_backlog: int = 50
    ) -> None:
        self.device: int | None = device
        self.sample_rate: int = sample_rate
        self.block_frames: int = sample_rate * block_ms // 1000
        self.dropped: int = 0
        self._blocks: asyncio.Queue[bytes] = asyncio.Queue(maxsize=max_backlog)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stream: sd.InputStream | None = None

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    def open(self) -> None:
        """Start recording. Must be called from the event loop."""
        if self._stream is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._stream = sd.InputStream(
            samplerate=self.sample_rate,
            blocksize=self.block_frames,
            device=self.device,
            channels=1,
            dtype=np.int16,
            callback=self._on_block,
        )
        self._stream.start()
        logger.info("Microphone open (device=%s, %d frames per block)",
                    self.device, self.block_frames)

    def close(self) -> None:
        if self._stream is None:
            return
        self._stream.stop()
        self._stream.close()
        self._stream = None
        logger.info("Microphone closed (%d blocks dropped)", self.dropped)

    async def read(self, timeout: float | None = None) -> bytes | None:
        """Next block, or None if none arrived within ``timeout`` seconds."""
        try:
            return await asyncio.wait_for(self._blocks.get(), timeout)
        except asyncio.TimeoutError:
            return None

    def _on_block(
        self,
        indata: npt.NDArray[np.int16],
        frames: int,
        time: Any,
        status: sd.CallbackFlags
    ) -> None:
        # Audio thread
        if status:
            logger.warning("Microphone status: %s", status)
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._deliver, indata.tobytes())

    def _deliver(self, block: bytes) -> None:
        if self._blocks.full():
            self._blocks.get_nowait()
            self.dropped += 1
        self._blocks.put_nowait(block)


def list_input_devices() -> list[dict[str, Any]]:
    """Devices with at least one input channel, flagging the default one."""
    default_input = sd.default.device[0]
    return [
        {
            "index": index,
            "name": info["name"],
            "channels": info["max_input_channels"],
            "default": index == default_input,
        }
        for index, info in enumerate(sd.query_devices())  # type: ignore[arg-type]
        if info["max_input_channels"] > 0
    ]
