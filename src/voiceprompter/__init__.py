"""
Voiceprompter - teleprompter that scrolls by following your voice.

Recognized speech is aligned against the script with a bounded, fuzzy
in-order matcher, and the confirmed and provisional positions are pushed to
the browser UI in real time.
"""

__version__ = "0.1.0"

from .main import PrompterApp
from .matcher import MatcherSettings, match
from .progress import ProgressState
from .recognition import QueueSource, RecognitionEvent, ScriptedSource
from .server import WebServer
from .session import PrompterSession
from .tokenizer import TextUnit, tokenize

__all__ = [
    "TextUnit",
    "tokenize",
    "MatcherSettings",
    "match",
    "ProgressState",
    "RecognitionEvent",
    "ScriptedSource",
    "QueueSource",
    "PrompterSession",
    "WebServer",
    "PrompterApp",
]
