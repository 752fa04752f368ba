# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Vosk speech recognizer: 16-bit mono PCM blocks in, recognition events out.
"""

import json
import logging

from vosk import KaldiRecognizer, Model, SetLogLevel

from .models import resolve_model_path
from .recognition import RecognitionEvent, RecognitionKind

logger = logging.getLogger(__name__)

# Vosk logs every model load at length
SetLogLevel(-1)


def is_silence_artifact(text: str) -> bool:
    """Vosk sometimes hears a lone "the" when there is no speech."""
    return text.lower() == "the"


def _to_event(kind: RecognitionKind, text: str) -> RecognitionEvent | None:
    text = text.strip()
    if not text or is_silence_artifact(text):
        return None
    return RecognitionEvent.final(text) if kind == "final" else RecognitionEvent.interim(text)


class VoskRecognizer:
    """
    Streaming recognition with one KaldiRecognizer.

    Partial hypotheses become interim events. When Vosk closes an utterance
    the full text becomes a final event.
    """

    def __init__(self, model_id: str, sample_rate: int = 16000) -> None:
        path = resolve_model_path(model_id)
        if not path.exists():
            raise RuntimeError(
                f"Vosk model not found at {path}. "
                f"Download it with: voiceprompter --download-model --model-id {model_id}"
            )
        logger.info("Loading Vosk model from %s", path)
        self._recognizer: KaldiRecognizer = KaldiRecognizer(Model(str(path)), sample_rate)

    def accept(self, block: bytes) -> RecognitionEvent | None:
        if self._recognizer.AcceptWaveform(block):
            return _to_event("final", json.loads(self._recognizer.Result()).get("text", ""))
        return _to_event("interim", json.loads(self._recognizer.PartialResult()).get("partial", ""))

    def flush(self) -> RecognitionEvent | None:
        """Close the current utterance, returning whatever it held."""
        return _to_event("final", json.loads(self._recognizer.FinalResult()).get("text", ""))
