# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Configuration management for voiceprompter.
Handles loading and saving settings from a YAML config file, and the
optional saved copy of the current script.
"""

import copy
import logging
from pathlib import Path
from typing import Any, TypedDict

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILENAME: str = ".voiceprompter.yaml"

DEFAULT_SCRIPT_TEXT: str = "Click on the Editor button and paste your content here..."


class DisplaySettings(TypedDict):
    """Display settings shared with the browser UI."""
    fontSize: int
    margin: int
    opacity: int
    readLinePosition: int
    horizontallyFlipped: bool
    verticallyFlipped: bool


class MatchingSettings(TypedDict):
    """Tunables for the speech-to-script matcher."""
    lookbehind_words: int
    window_multiplier: int
    min_window_words: int
    max_skipped_words: int
    skip_penalty: float
    fuzzy_threshold: float
    min_fuzzy_length: int
    fuzzy_weight: float
    min_score: float
    max_transcript_words: int


class WatchdogSettings(TypedDict):
    """Inactivity watchdog timings."""
    inactivity_timeout: float  # Seconds without progress before warning
    warning_duration: int  # Countdown ticks before the session stops


class RecognitionConfig(TypedDict):
    """Where transcripts come from."""
    source: str  # "browser" or "local"
    model_id: str  # Local model identifier


class SpeechServiceConfig(TypedDict):
    """Speech service credentials for the browser recognizer."""
    key_env: str  # Environment variable holding the subscription key
    region_env: str  # Environment variable holding the service region
    issue_url: str | None  # Override for the token endpoint
    token_lifetime: float  # Seconds a token is treated as valid


class Config(TypedDict):
    """Type definition for the complete configuration."""
    host: str
    port: int
    audio_device: int | None
    chunk_ms: int
    # Where the current script is saved between runs (None disables saving)
    script_file: str | None
    recognition: RecognitionConfig
    speech_service: SpeechServiceConfig
    display: DisplaySettings
    matching: MatchingSettings
    watchdog: WatchdogSettings


# Default configuration values
DEFAULT_CONFIG: Config = {
    "host": "127.0.0.1",
    "port": 8000,
    "audio_device": None,
    "chunk_ms": 100,
    "script_file": None,

    "recognition": {
        "source": "browser",
        "model_id": "vosk-en-us-small",
    },

    "speech_service": {
        "key_env": "AZURE_SPEECH_KEY",
        "region_env": "AZURE_SPEECH_REGION",
        "issue_url": None,
        "token_lifetime": 540.0,
    },

    "display": {
        "fontSize": 80,
        "margin": 290,
        "opacity": 100,
        "readLinePosition": 90,
        "horizontallyFlipped": False,
        "verticallyFlipped": False,
    },

    "matching": {
        "lookbehind_words": 2,
        "window_multiplier": 4,
        "min_window_words": 8,
        "max_skipped_words": 1,
        "skip_penalty": 0.25,
        "fuzzy_threshold": 80.0,
        "min_fuzzy_length": 4,
        "fuzzy_weight": 0.75,
        "min_score": 1.0,
        "max_transcript_words": 32,
    },

    "watchdog": {
        "inactivity_timeout": 15.0,
        "warning_duration": 5,
    },
}


def get_config_path() -> Path:
    """Get the path to the config file in the current working directory."""
    return Path.cwd() / CONFIG_FILENAME


def _deep_merge(base, override):
    """
    Deep merge two dictionaries, with override taking precedence.
    Returns a new dictionary without modifying the originals.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file, merged with defaults.

    A missing file gives the defaults; an unreadable one is logged and
    ignored.
    """
    if config_path is None:
        config_path = get_config_path()

    config: dict[str, Any] = copy.deepcopy(DEFAULT_CONFIG)  # type: ignore[arg-type]

    if config_path.exists():
        try:
            with open(config_path, encoding='utf-8') as f:
                file_config: dict[str, Any] | None = yaml.safe_load(f)
                if isinstance(file_config, dict):
                    config = _deep_merge(config, file_config)
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Could not load config from %s: %s", config_path, e)

    return config  # type: ignore[return-value]


def save_config(config: Config, config_path: Path | None = None) -> bool:
    """
    Save configuration to file.

    Returns:
        True if save was successful, False otherwise.
    """
    if config_path is None:
        config_path = get_config_path()

    try:
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(dict(config), f, default_flow_style=False, sort_keys=False)
        return True
    except (OSError, yaml.YAMLError) as e:
        logger.error("Error saving config to %s: %s", config_path, e)
        return False


def get_display_settings(config: Config) -> DisplaySettings:
    return config.get("display", DEFAULT_CONFIG["display"]).copy()  # type: ignore[return-value]


def get_matching_settings(config: Config) -> MatchingSettings:
    return config.get("matching", DEFAULT_CONFIG["matching"]).copy()  # type: ignore[return-value]


def get_watchdog_settings(config: Config) -> WatchdogSettings:
    return config.get("watchdog", DEFAULT_CONFIG["watchdog"]).copy()  # type: ignore[return-value]


def update_config_display(config: Config, display_settings: DisplaySettings) -> Config:
    """Return a new config with the display section updated."""
    new_config: dict[str, Any] = copy.deepcopy(config)  # type: ignore[arg-type]
    new_config["display"] = _deep_merge(
        new_config.get("display", {}),
        display_settings
    )
    return new_config  # type: ignore[return-value]


def load_script(script_file: str | Path | None) -> str:
    """Load the saved script, or the placeholder text if there is none."""
    if not script_file:
        return DEFAULT_SCRIPT_TEXT
    path = Path(script_file)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return DEFAULT_SCRIPT_TEXT
    except OSError as e:
        logger.warning("Could not read saved script %s: %s", path, e)
        return DEFAULT_SCRIPT_TEXT
    return text or DEFAULT_SCRIPT_TEXT


def save_script(script_file: str | Path | None, text: str | None) -> bool:
    """Save the script text; ``None`` removes the saved copy.

    Returns:
        True if the file was written or removed, False otherwise.
    """
    if not script_file:
        return False
    path = Path(script_file)
    try:
        if text is None:
            path.unlink(missing_ok=True)
        else:
            path.write_text(text, encoding="utf-8")
        return True
    except OSError as e:
        logger.error("Error saving script to %s: %s", path, e)
        return False
