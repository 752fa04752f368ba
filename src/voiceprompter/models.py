# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Vosk models for local recognition and their download cache.

Models are unpacked under ~/.cache/voiceprompter/models, one directory per
archive. Anything that isn't a known model id is treated as a path to a
custom model directory.
"""

import logging
import tempfile
import urllib.request
import zipfile
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

MODEL_BASE_URL: str = "https://alphacephei.com/vosk/models"
MODEL_CACHE_DIR: Path = Path.home() / ".cache" / "voiceprompter" / "models"

# Called with (stage, percent); stage is "downloading", "extracting" or "complete"
ProgressCallback = Callable[[str, int], None]


@dataclass(frozen=True)
class VoskModel:
    id: str
    name: str
    archive: str  # Archive name without ".zip"; also the unpacked directory
    size_mb: int

    @property
    def url(self) -> str:
        return f"{MODEL_BASE_URL}/{self.archive}.zip"

    def path(self, cache_dir: Path | None = None) -> Path:
        return (cache_dir or MODEL_CACHE_DIR) / self.archive


VOSK_MODELS: dict[str, VoskModel] = {
    model.id: model for model in (
        VoskModel("vosk-en-us-small", "English US - Small", "vosk-model-small-en-us-0.15", 40),
        VoskModel("vosk-en-us-medium", "English US - Medium", "vosk-model-en-us-0.22", 1800),
        VoskModel("vosk-en-gb-small", "English GB - Small", "vosk-model-small-en-gb-0.15", 40),
    )
}


def get_model(model_id: str) -> VoskModel:
    """Look up a catalogue entry; raises ValueError for unknown ids."""
    try:
        return VOSK_MODELS[model_id]
    except KeyError:
        raise ValueError(
            f"Unknown Vosk model: {model_id}. Choose from: {', '.join(VOSK_MODELS)}"
        ) from None


def resolve_model_path(model_id: str, cache_dir: Path | None = None) -> Path:
    """Where the model lives: the cache for known ids, otherwise the id itself."""
    model = VOSK_MODELS.get(model_id)
    if model is None:
        return Path(model_id)
    return model.path(cache_dir)


def is_model_downloaded(model_id: str, cache_dir: Path | None = None) -> bool:
    model = VOSK_MODELS.get(model_id)
    return model is not None and model.path(cache_dir).exists()


def download_model(
    model_id: str,
    cache_dir: Path | None = None,
    progress: ProgressCallback | None = None
) -> Path:
    """
    Download and unpack a model into the cache, unless it is already there.

    Returns:
        The model directory.

    Raises:
        ValueError: If the model id is unknown
    """
    def report(stage: str, percent: int) -> None:
        if progress:
            progress(stage, percent)

    model = get_model(model_id)
    target = model.path(cache_dir)
    if target.exists():
        logger.info("Model already present at %s", target)
        report("complete", 100)
        return target

    target.parent.mkdir(parents=True, exist_ok=True)
    logger.info("Downloading %s from %s", model.id, model.url)

    def download_hook(block_count: int, block_size: int, total_size: int) -> None:
        if total_size > 0:
            report("downloading", min(100, block_count * block_size * 100 // total_size))

    # The archive is fetched next to the cache so extraction never crosses filesystems
    with tempfile.TemporaryDirectory(dir=target.parent) as tmp:
        archive = Path(tmp) / f"{model.archive}.zip"
        report("downloading", 0)
        urllib.request.urlretrieve(model.url, archive, download_hook)
        report("extracting", 0)
        with zipfile.ZipFile(archive) as zf:
            zf.extractall(target.parent)

    report("complete", 100)
    return target
