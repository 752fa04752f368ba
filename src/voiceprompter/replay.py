# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Transcript recording and replay.

TranscriptRecorder saves what the recognizer heard during a session, one
event per line. The replay tool feeds such a transcript back through the
matcher against a script and logs how the position moves, to help debug
tracking problems without a microphone.

Transcript format:

    === Transcript started at 2025-01-01T10:00:00 ===

    interim: the quick
    final: the quick brown fox

    === Transcript ended at 2025-01-01T10:01:00 ===

Lines without a kind prefix are read as final results.
"""

import argparse
import logging
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Literal, TextIO

from .matcher import DEFAULT_MATCHER_SETTINGS, MatcherSettings, match
from .progress import ProgressState
from .recognition import RecognitionEvent
from .tokenizer import tokenize

logger = logging.getLogger(__name__)

# Transcript files location (in the working directory)
TRANSCRIPT_DIR: Path = Path.cwd() / "transcripts"

StepType = Literal["advance", "FORWARD_JUMP", "no_change", "ignored"]

# Advances larger than this many units are flagged in the log
FORWARD_JUMP_UNITS: int = 20


class TranscriptRecorder:
    """Appends recognition events to a timestamped transcript file."""

    def __init__(self, directory: Path | None = None, include_interim: bool = False) -> None:
        self.directory: Path = directory or TRANSCRIPT_DIR
        self.include_interim: bool = include_interim
        self.path: Path | None = None

    @property
    def recording(self) -> bool:
        return self.path is not None

    def start(self) -> Path:
        """Open a new transcript file, unless one is already being recorded."""
        if self.path is not None:
            return self.path
        self.directory.mkdir(parents=True, exist_ok=True)
        timestamp: str = datetime.now().strftime("%Y%m%d_%H%M%S")
        self.path = self.directory / f"transcript_{timestamp}.txt"
        with open(self.path, 'w', encoding='utf-8') as f:
            f.write(f"=== Transcript started at {datetime.now().isoformat()} ===\n\n")
        print(f"Transcript recording started: {self.path}")
        return self.path

    def record(self, event: RecognitionEvent) -> None:
        if self.path is None or not event.text.strip():
            return
        if not event.is_final and not self.include_interim:
            return
        with open(self.path, 'a', encoding='utf-8') as f:
            f.write(f"{event.kind}: {event.text}\n")

    def stop(self) -> None:
        if self.path is None:
            return
        with open(self.path, 'a', encoding='utf-8') as f:
            f.write(f"\n=== Transcript ended at {datetime.now().isoformat()} ===\n")
        print(f"Transcript recording stopped: {self.path}")
        self.path = None


def parse_transcript_line(line: str) -> RecognitionEvent | None:
    """Parse one transcript line; metadata and blank lines give None."""
    stripped: str = line.strip()
    if not stripped or stripped.startswith('==='):
        return None
    kind, sep, text = stripped.partition(':')
    if sep and kind in ("final", "interim"):
        text = text.strip()
        if not text:
            return None
        return RecognitionEvent.final(text) if kind == "final" else RecognitionEvent.interim(text)
    return RecognitionEvent.final(stripped)


def load_transcript(path: Path) -> list[RecognitionEvent]:
    """Load a transcript file as recognition events."""
    events: list[RecognitionEvent] = []
    with open(path, encoding='utf-8') as f:
        for line in f:
            event = parse_transcript_line(line)
            if event is not None:
                events.append(event)
    return events


@dataclass
class ReplayStep:
    """What one transcript event did to the position."""
    line: int
    event: RecognitionEvent
    final_before: int
    final_after: int
    interim_after: int
    step_type: StepType


def replay_transcript(
    events: list[RecognitionEvent],
    script_text: str,
    output: TextIO,
    settings: MatcherSettings = DEFAULT_MATCHER_SETTINGS,
    verbose: bool = False
) -> list[ReplayStep]:
    """Replay transcript events through the matcher and log the results.

    Args:
        events: Recognition events in the order they were heard
        script_text: The script content
        output: File handle to write log output
        settings: Matcher settings to replay with
        verbose: If True, log every event. If False, only jumps and stalls.

    Returns:
        One step per event
    """
    units = tokenize(script_text)
    words = [unit for unit in units if unit.is_word]
    progress = ProgressState()
    steps: list[ReplayStep] = []

    output.write("=" * 80 + "\n")
    output.write("TRANSCRIPT REPLAY LOG\n")
    output.write(f"Generated: {datetime.now().isoformat()}\n")
    output.write(f"Script units: {len(units)} ({len(words)} words)\n")
    output.write(f"Transcript events: {len(events)}\n")
    output.write("=" * 80 + "\n\n")

    output.write("SCRIPT WORDS:\n")
    output.write("-" * 40 + "\n")
    for unit in words:
        output.write(f"  [{unit.index:4d}] {unit.value}\n")
    output.write("\n" + "=" * 80 + "\n\n")

    output.write("TRACKING LOG:\n")
    output.write("-" * 40 + "\n")

    for line_num, event in enumerate(events, start=1):
        final_before: int = progress.final_index
        computed: int = match(event.text, units, final_before, settings)

        accepted: bool
        if event.is_final:
            accepted = progress.apply_final(computed)
        else:
            accepted = progress.apply_interim(computed)

        position: int = progress.final_index if event.is_final else progress.interim_index
        step_type: StepType
        if not accepted and computed <= final_before:
            step_type = "no_change"
        elif not accepted:
            step_type = "ignored"
        elif position - max(final_before, 0) > FORWARD_JUMP_UNITS:
            step_type = "FORWARD_JUMP"
        else:
            step_type = "advance"

        step = ReplayStep(
            line=line_num,
            event=event,
            final_before=final_before,
            final_after=progress.final_index,
            interim_after=progress.interim_index,
            step_type=step_type,
        )
        steps.append(step)

        if verbose or step_type == "FORWARD_JUMP":
            last_word: str = units[position - 1].value if 0 < position <= len(units) else "<START>"
            marker: str = "***" if step_type == "FORWARD_JUMP" else " *" if step_type == "advance" else "  "
            output.write(
                f"{marker} {line_num:4d} {event.kind:7s} \"{event.text[:60]}\" "
                f"-> final={progress.final_index} interim={progress.interim_index} "
                f"after \"{last_word}\" ({step_type})\n"
            )

    output.write("\n" + "=" * 80 + "\n")
    output.write("SUMMARY:\n")
    output.write("-" * 40 + "\n")

    advances = [s for s in steps if s.step_type == "advance"]
    forward_jumps = [s for s in steps if s.step_type == "FORWARD_JUMP"]
    stalls = [s for s in steps if s.step_type == "no_change" and s.event.is_final]

    output.write(f"Total events processed: {len(events)}\n")
    output.write(f"Final position: {progress.final_index} / {len(units)}\n")
    output.write(f"Advances: {len(advances)}\n")
    output.write(f"Forward jumps: {len(forward_jumps)}\n")
    output.write(f"Final results with no progress: {len(stalls)}\n")

    if forward_jumps:
        output.write("\nForward jump events:\n")
        for s in forward_jumps:
            output.write(f"  Line {s.line}: {s.final_before} -> {s.final_after}\n")
    if stalls:
        output.write("\nFinal results that matched nothing:\n")
        for s in stalls:
            output.write(f"  Line {s.line}: \"{s.event.text[:60]}\"\n")

    return steps


def main() -> None:
    """CLI entry point for the transcript replay tool."""
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Replay a recorded transcript against a script to debug tracking"
    )
    parser.add_argument(
        "script",
        type=Path,
        help="Path to script file"
    )
    parser.add_argument(
        "transcript",
        type=Path,
        help="Path to transcript file"
    )
    parser.add_argument(
        "-o", "--output",
        type=Path,
        default=None,
        help="Output log file path (default: stdout)"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log every event, not just forward jumps"
    )

    args: argparse.Namespace = parser.parse_args()

    if not args.transcript.exists():
        print(f"Error: Transcript file not found: {args.transcript}", file=sys.stderr)
        sys.exit(1)
    if not args.script.exists():
        print(f"Error: Script file not found: {args.script}", file=sys.stderr)
        sys.exit(1)

    try:
        events: list[RecognitionEvent] = load_transcript(args.transcript)
        script_text: str = args.script.read_text(encoding='utf-8')
    except OSError as e:
        print(f"Error loading files: {e}", file=sys.stderr)
        sys.exit(1)

    if not events:
        print("Error: No transcript lines found", file=sys.stderr)
        sys.exit(1)

    if args.output:
        with open(args.output, 'w', encoding='utf-8') as f:
            replay_transcript(events, script_text, f, verbose=args.verbose)
        print(f"Replay log written to: {args.output}")
    else:
        replay_transcript(events, script_text, sys.stdout, verbose=args.verbose)


if __name__ == "__main__":
    main()
