"""Prompt templates, commentary contexts, and the canned fallback lines."""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Literal

CommentaryKind = Literal["pre_roll", "post_roll", "trash_talk"]

# ── Contexts ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class TurnSummary:
    player_number: int
    dice_roll: int
    from_pos: int
    to_pos: int
    event: str | None  # "snake" | "ladder" | None


@dataclass(frozen=True)
class GameContext:
    """What a player knows before rolling."""

    player_name: str
    player_number: int
    opponent_name: str
    opponent_model: str
    current_position: int
    opponent_position: int
    turn_number: int
    last_turn: TurnSummary | None
    history: tuple[TurnSummary, ...]


@dataclass(frozen=True)
class PostRollContext(GameContext):
    """GameContext plus the outcome of the roll."""

    dice_roll: int
    new_position: int
    event: str | None
    is_winning_move: bool
    event_from: int | None = None
    event_to: int | None = None


# ── System prompt ────────────────────────────────────────────────────

SYSTEM_PROMPT = """\
You are an AI player in a Snake and Ladder game. You have a competitive but fun personality. Your responses should be:
- Entertaining and engaging
- In character as a game player
- Brief (1-2 sentences max)
- Playful trash talk is encouraged but keep it friendly

You are playing against another AI model. Make references to your model/provider when relevant for humor."""


def pre_roll_prompt(ctx: GameContext) -> str:
    return (
        f"You are {ctx.player_name} at position {ctx.current_position}. "
        f"Your opponent {ctx.opponent_name} is at position {ctx.opponent_position}. "
        f"This is turn {ctx.turn_number}.\n\n"
        "Generate a brief, exciting pre-roll comment showing your anticipation before "
        "rolling the dice. Consider nearby snakes or ladders. Keep it to 1-2 sentences."
    )


def post_roll_prompt(ctx: PostRollContext) -> str:
    event_text = ""
    if ctx.event == "snake":
        event_text = (
            f" Unfortunately, you landed on a snake at {ctx.event_from} "
            f"and slid down to {ctx.event_to}!"
        )
    elif ctx.event == "ladder":
        event_text = (
            f" Lucky! You found a ladder at {ctx.event_from} "
            f"and climbed up to {ctx.event_to}!"
        )
    win_text = " YOU WON THE GAME!" if ctx.is_winning_move else ""

    return (
        f"You rolled a {ctx.dice_roll} and moved from position {ctx.current_position} "
        f"to {ctx.new_position}.{event_text}{win_text}\n\n"
        "Generate a brief reaction to this dice roll result. Show excitement, "
        "disappointment, or dramatic flair as appropriate. Keep it to 1-2 sentences."
    )


def trash_talk_prompt(ctx: PostRollContext, player_model: str) -> str:
    leading_by = ctx.new_position - ctx.opponent_position
    if leading_by > 0:
        standing = f"You are leading by {leading_by} squares."
    elif leading_by < 0:
        standing = f"You are behind by {-leading_by} squares."
    else:
        standing = "You are tied!"

    return (
        f"You are {ctx.player_name} ({player_model}). "
        f"Your opponent is {ctx.opponent_name} ({ctx.opponent_model}). {standing}\n\n"
        "Generate a playful trash talk comment directed at your opponent. You can "
        "reference their AI model/provider for humor. Keep it competitive but "
        "friendly. 1 sentence max."
    )


# ── Fallbacks ────────────────────────────────────────────────────────

FALLBACK_RESPONSES: dict[str, tuple[str, ...]] = {
    "pre_roll": (
        "Let's see what fate has in store...",
        "Come on, lucky dice!",
        "Here goes nothing!",
        "Time to make my move!",
    ),
    "post_roll": (
        "Interesting move!",
        "The game continues...",
        "That's how it goes!",
        "Onward!",
    ),
    "trash_talk": (
        "May the best AI win!",
        "This is getting exciting!",
        "Game on!",
        "Watch and learn!",
    ),
}


def random_fallback(kind: CommentaryKind, rng: random.Random | None = None) -> str:
    return (rng or random).choice(FALLBACK_RESPONSES[kind])
