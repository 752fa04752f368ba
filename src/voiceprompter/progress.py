# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Caller-side progress state: the confirmed (final) and provisional (interim)
positions in the tokenized script, and the rules for adopting new matcher
results into them.
"""

from dataclasses import dataclass
from typing import Literal

from .matcher import NO_PROGRESS

UnitStatus = Literal["confirmed", "provisional", "pending"]


@dataclass
class ProgressState:
    """Final and interim positions (unit indices, -1 for no progress)."""
    final_index: int = NO_PROGRESS
    interim_index: int = NO_PROGRESS

    def apply_final(self, computed_index: int) -> bool:
        """Adopt a matcher result computed from a final transcript.

        Confirmed progress never regresses. Any interim text shown ahead of
        the new final position is finalized along with it.

        Returns:
            True if the final index moved forward
        """
        if computed_index < self.final_index:
            return False
        previous: int = self.final_index
        self.final_index = max(computed_index, self.interim_index)
        self.interim_index = max(self.interim_index, self.final_index)
        return self.final_index > previous

    def apply_interim(self, computed_index: int) -> bool:
        """Adopt a matcher result computed from an interim transcript.

        The interim marker only moves when it is ahead of confirmed progress.
        It may move back between calls as the recognizer revises itself.

        Returns:
            True if the interim index changed
        """
        if computed_index <= self.final_index:
            return False
        previous: int = self.interim_index
        self.interim_index = computed_index
        return self.interim_index != previous

    def jump_to(self, index: int) -> None:
        """Move both positions to a unit chosen by the user."""
        self.final_index = index
        self.interim_index = index

    def reset(self) -> None:
        """Back to no progress."""
        self.final_index = NO_PROGRESS
        self.interim_index = NO_PROGRESS

    def status_of(self, index: int) -> UnitStatus:
        """How the rendering layer should show the unit at ``index``."""
        if index < self.final_index:
            return "confirmed"
        if index < self.interim_index:
            return "provisional"
        return "pending"

    def to_dict(self) -> dict[str, int]:
        return {"finalIndex": self.final_index, "interimIndex": self.interim_index}
