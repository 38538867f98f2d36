"""
Identity keys and default colors for imported records.

Both generators are plain instances handed to the normalizer (and to the
executor for keep-both rows), so two pipelines never share a palette cursor.
"""

from __future__ import annotations

import random
import time
from typing import Callable, Optional


ID_ALPHABET = "abcdefghijklmnopqrstuvwxyz0123456789"
ID_SUFFIX_LENGTH = 6
ID_TIMESTAMP_WIDTH = 13
DEFAULT_ID_PREFIX = "sub"

DEFAULT_COLOR_PALETTE = (
    "bg-blue-100",
    "bg-blue-150",
    "bg-blue-200",
    "bg-blue-250",
    "bg-blue-300",
)


class IdentifierGenerator:
    """
    prefix + zero-padded millisecond timestamp + random suffix.

    Uniqueness is probabilistic: nothing is checked against existing ids.
    Example: sub1754835936957zbskor
    """

    def __init__(
        self,
        prefix: str = DEFAULT_ID_PREFIX,
        *,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.prefix = prefix
        self._rng = rng or random.SystemRandom()
        self._clock = clock

    def __call__(self) -> str:
        return self.generate()

    def generate(self) -> str:
        millis = int(self._clock() * 1000)
        suffix = "".join(self._rng.choice(ID_ALPHABET) for _ in range(ID_SUFFIX_LENGTH))
        return f"{self.prefix}{millis:0{ID_TIMESTAMP_WIDTH}d}{suffix}"


class ColorPalette:
    """Cycles through a fixed palette; the cursor advances on every call."""

    def __init__(self, colors: tuple[str, ...] = DEFAULT_COLOR_PALETTE) -> None:
        if not colors:
            raise ValueError("Color palette cannot be empty")
        self.colors = tuple(colors)
        self._cursor = 0

    def next_color(self) -> str:
        color = self.colors[self._cursor]
        self._cursor = (self._cursor + 1) % len(self.colors)
        return color

    def assign(self, color: object = None) -> str:
        if isinstance(color, str) and color.strip():
            return color.strip()
        return self.next_color()

    def reset(self) -> None:
        self._cursor = 0
