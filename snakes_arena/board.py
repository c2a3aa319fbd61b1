"""Board table, dice and movement rules for Snake & Ladder."""

from __future__ import annotations

import random
from dataclasses import dataclass
from types import MappingProxyType
from typing import Literal, Mapping

BOARD_SIZE = 100

EventType = Literal["snake", "ladder"]


@dataclass(frozen=True)
class BoardConfig:
    """Fixed board: snake heads map down to tails, ladder bottoms map up to tops."""

    snakes: Mapping[int, int]
    ladders: Mapping[int, int]
    size: int = BOARD_SIZE

    def __post_init__(self) -> None:
        # Freeze the tables so a shared config can't be edited by one game
        object.__setattr__(self, "snakes", MappingProxyType(dict(self.snakes)))
        object.__setattr__(self, "ladders", MappingProxyType(dict(self.ladders)))

        for head, tail in self.snakes.items():
            self._check_square(head)
            self._check_square(tail)
            if tail >= head:
                raise ValueError(f"snake {head} → {tail} must go down")
        for bottom, top in self.ladders.items():
            self._check_square(bottom)
            self._check_square(top)
            if top <= bottom:
                raise ValueError(f"ladder {bottom} → {top} must go up")

        both = set(self.snakes) & set(self.ladders)
        if both:
            raise ValueError(f"squares {sorted(both)} are both a snake and a ladder")
        for sq in (1, self.size):
            if sq in self.snakes or sq in self.ladders:
                raise ValueError(f"square {sq} cannot hold a snake or ladder")

    def _check_square(self, square: int) -> None:
        if not 1 <= square <= self.size:
            raise ValueError(f"square {square} is off the board (1–{self.size})")


# fmt: off
BOARD_CONFIG = BoardConfig(
    # Snakes (go DOWN)
    snakes={
        99: 41,  95: 75,  92: 88,  89: 68,  74: 53,
        64: 60,  62: 19,  49: 11,  46: 25,  16:  6,
    },
    # Ladders (go UP)
    ladders={
         2: 38,   7: 14,   8: 31,  15: 26,  21: 42,  28: 84,
        36: 44,  51: 67,  71: 91,  78: 98,  87: 94,
    },
)
# fmt: on


@dataclass(frozen=True)
class SnakeLadderEvent:
    """A board effect that moved a pawn after it landed."""

    type: EventType
    from_square: int
    to_square: int

    def to_dict(self) -> dict:
        return {"type": self.type, "from": self.from_square, "to": self.to_square}


def is_snake(square: int, config: BoardConfig = BOARD_CONFIG) -> bool:
    return square in config.snakes


def is_ladder(square: int, config: BoardConfig = BOARD_CONFIG) -> bool:
    return square in config.ladders


def resolve_position(
    square: int,
    config: BoardConfig = BOARD_CONFIG,
) -> tuple[int, SnakeLadderEvent | None]:
    """Apply any snake or ladder at *square*.

    Returns ``(final_position, event)``; *event* is ``None`` for a plain square.
    """
    tail = config.snakes.get(square)
    if tail is not None:
        return tail, SnakeLadderEvent("snake", square, tail)

    top = config.ladders.get(square)
    if top is not None:
        return top, SnakeLadderEvent("ladder", square, top)

    return square, None


def roll_dice(rng: random.Random | None = None) -> int:
    """Uniform roll over 1–6. Not suitable for anything security related."""
    return (rng or random).randint(1, 6)


def calculate_new_position(position: int, roll: int, size: int = BOARD_SIZE) -> int:
    """Position after moving *roll* squares.

    You must land exactly on the last square. Overshoot → stay put
    (the roll is forfeited, never clamped).
    """
    target = position + roll
    if target > size:
        return position
    return target


def has_won(position: int, size: int = BOARD_SIZE) -> bool:
    return position == size
