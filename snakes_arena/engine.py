"""Turn engine — game creation and the one-move state transition.

Every function here is pure over its inputs: a new ``GameState`` is returned,
the one passed in is never touched.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Literal

from snakes_arena.board import (
    SnakeLadderEvent,
    calculate_new_position,
    has_won,
    resolve_position,
    roll_dice,
)
from snakes_arena.config import PlayerConfig
from snakes_arena.errors import InvalidGameStateError

if TYPE_CHECKING:
    from snakes_arena.commentary import Commentary

log = logging.getLogger(__name__)

PlayerNum = Literal[1, 2]
GameStatus = Literal["pending", "active", "completed"]


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ── Structured types ────────────────────────────────────────────────

@dataclass(frozen=True)
class Player:
    number: PlayerNum
    provider: str
    model: str
    name: str
    position: int = 0
    api_key: str = field(default="", repr=False)


@dataclass(frozen=True)
class Turn:
    """Record of one move. Movement fields are fixed once created."""

    id: str
    turn_number: int
    player_num: PlayerNum
    provider: str
    model: str
    dice_roll: int
    from_pos: int
    to_pos: int  # before any snake/ladder
    final_pos: int  # after it
    event: SnakeLadderEvent | None = None
    pre_roll_commentary: str | None = None
    post_roll_commentary: str | None = None
    trash_talk: str | None = None
    timestamp: datetime = field(default_factory=_now)

    @property
    def bust(self) -> bool:
        """The roll would have overshot the last square, so the pawn stayed put."""
        return self.to_pos == self.from_pos

    def with_commentary(
        self,
        pre_roll: str | None,
        post_roll: str | None,
        trash_talk: str | None,
    ) -> Turn:
        return replace(
            self,
            pre_roll_commentary=pre_roll,
            post_roll_commentary=post_roll,
            trash_talk=trash_talk,
        )


@dataclass(frozen=True)
class GameState:
    id: str
    player1: Player
    player2: Player
    status: GameStatus = "active"
    current_player: PlayerNum = 1
    turns: tuple[Turn, ...] = ()
    winner: PlayerNum | None = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    def player(self, number: int) -> Player:
        return self.player1 if number == 1 else self.player2


@dataclass(frozen=True)
class TurnResult:
    turn: Turn
    game_state: GameState
    is_game_over: bool
    winner: PlayerNum | None


# ── Game creation ───────────────────────────────────────────────────

def _make_player(number: PlayerNum, cfg: PlayerConfig) -> Player:
    return Player(
        number=number,
        provider=cfg.provider,
        model=cfg.model,
        name=cfg.name,
        position=0,
        api_key=cfg.api_key,
    )


def create_game(player1: PlayerConfig, player2: PlayerConfig) -> GameState:
    """Fresh active game: both pawns off the board, player 1 to move."""
    now = _now()
    return GameState(
        id=str(uuid.uuid4()),
        player1=_make_player(1, player1),
        player2=_make_player(2, player2),
        status="active",
        current_player=1,
        turns=(),
        winner=None,
        created_at=now,
        updated_at=now,
    )


def current_player(game: GameState) -> Player:
    return game.player(game.current_player)


def opponent(game: GameState) -> Player:
    return game.player(2 if game.current_player == 1 else 1)


# ── Turn transition ─────────────────────────────────────────────────

def execute_turn(
    game: GameState,
    dice: Callable[[], int] = roll_dice,
) -> TurnResult:
    """Roll, move, apply the board, and hand back the next state.

    Raises InvalidGameStateError if *game* is not active; a finished game
    is never advanced.
    """
    if game.status != "active":
        raise InvalidGameStateError(
            f"game {game.id} is {game.status}; only active games can take a turn"
        )

    mover = current_player(game)
    roll = dice()
    log.debug("Player %d rolled %d", mover.number, roll)

    from_pos = mover.position
    to_pos = calculate_new_position(from_pos, roll)
    if to_pos == from_pos:
        # A bust never touches the board
        log.debug("Player %d overshoots from %d, stays put", mover.number, from_pos)
        final_pos, event = from_pos, None
    else:
        log.debug("Player %d moves %d → %d", mover.number, from_pos, to_pos)
        final_pos, event = resolve_position(to_pos)
        if event is not None:
            log.debug("%s %d → %d", event.type.upper(), event.from_square, event.to_square)

    now = _now()
    turn = Turn(
        id=str(uuid.uuid4()),
        turn_number=len(game.turns) + 1,
        player_num=mover.number,
        provider=mover.provider,
        model=mover.model,
        dice_roll=roll,
        from_pos=from_pos,
        to_pos=to_pos,
        final_pos=final_pos,
        event=event,
        timestamp=now,
    )

    is_game_over = has_won(final_pos)
    winner = mover.number if is_game_over else None
    if is_game_over:
        log.info("Player %d (%s) wins on turn %d", mover.number, mover.name, turn.turn_number)

    moved = replace(mover, position=final_pos)
    new_state = replace(
        game,
        player1=moved if mover.number == 1 else game.player1,
        player2=moved if mover.number == 2 else game.player2,
        current_player=mover.number if is_game_over else (2 if mover.number == 1 else 1),
        turns=game.turns + (turn,),
        status="completed" if is_game_over else "active",
        winner=winner,
        updated_at=now,
    )

    return TurnResult(
        turn=turn,
        game_state=new_state,
        is_game_over=is_game_over,
        winner=winner,
    )


def attach_commentary(
    game: GameState,
    turn_number: int,
    commentary: Commentary,
) -> GameState:
    """Return *game* with commentary filled in on one turn. Nothing else changes."""
    idx = turn_number - 1
    if not 0 <= idx < len(game.turns):
        raise InvalidGameStateError(f"game {game.id} has no turn {turn_number}")
    turn = game.turns[idx].with_commentary(
        commentary.pre_roll, commentary.post_roll, commentary.trash_talk,
    )
    turns = game.turns[:idx] + (turn,) + game.turns[idx + 1:]
    return replace(game, turns=turns)


# ── Display helpers ─────────────────────────────────────────────────

def game_summary(game: GameState) -> str:
    p1, p2 = game.player1, game.player2
    if game.status == "completed" and game.winner is not None:
        w = game.player(game.winner)
        return f"{w.name} ({w.model}) wins after {len(game.turns)} turns!"
    mover = current_player(game)
    return (
        f"Turn {len(game.turns) + 1}: {mover.name}'s turn. "
        f"Positions: {p1.name} @ {p1.position}, {p2.name} @ {p2.position}"
    )


def event_description(event: SnakeLadderEvent | None) -> str | None:
    if event is None:
        return None
    if event.type == "snake":
        return f"Oh no! Slid down a snake from {event.from_square} to {event.to_square}!"
    return f"Climbed a ladder from {event.from_square} to {event.to_square}!"
