"""Game driver — plays one game turn by turn on a timer.

States::

    idle ──start──▶ running ◀──resume── paused
                       │ ──pause──▶
                       └──game over──▶ finished

``reset()`` returns to idle from anywhere. Only one turn is ever in flight;
the next one is scheduled ``turn_delay`` seconds after the previous one has
fully finished (dice, board, and all three commentary requests).

The driver must be used from inside a running asyncio event loop.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, Literal, Protocol

from snakes_arena.commentary import CommentaryRequester
from snakes_arena.engine import (
    GameState,
    TurnResult,
    attach_commentary,
    event_description,
    execute_turn,
)
from snakes_arena.errors import InvalidGameStateError
from snakes_arena.providers import LLMInvocation

log = logging.getLogger(__name__)

DEFAULT_TURN_DELAY = 2.0

DriverState = Literal["idle", "running", "paused", "finished"]


# ── Observer ────────────────────────────────────────────────────────

@dataclass
class DriverEvent:
    kind: str  # game_started | turn_complete | paused | resumed | reset | game_over | game_saved | save_failed | turn_failed
    game_id: str | None
    data: dict = field(default_factory=dict)


class DriverObserver(Protocol):
    """Receives structured events as the driver runs a game."""

    def on_event(self, event: DriverEvent) -> None: ...


@dataclass
class ListObserver:
    """Default observer — collects events into a list."""

    events: list[DriverEvent] = field(default_factory=list)

    def on_event(self, event: DriverEvent) -> None:
        self.events.append(event)

    def kinds(self) -> list[str]:
        return [e.kind for e in self.events]


class GameStore(Protocol):
    def save_game(
        self,
        game: GameState,
        invocations: dict[int, Iterable[LLMInvocation]] | None = None,
    ) -> str: ...


# ── Driver ───────────────────────────────────────────────────────────

class GameDriver:
    """Run a game to completion with pause/resume/reset control."""

    def __init__(
        self,
        requester: CommentaryRequester | None = None,
        store: GameStore | None = None,
        turn_delay: float = DEFAULT_TURN_DELAY,
        observer: DriverObserver | None = None,
        turn_fn: Callable[[GameState], TurnResult] = execute_turn,
    ):
        self.requester = requester or CommentaryRequester()
        self.store = store
        self.turn_delay = turn_delay
        self.observer = observer or ListObserver()
        self._turn_fn = turn_fn

        self._state: DriverState = "idle"
        self._game: GameState | None = None
        self._invocations: dict[int, tuple[LLMInvocation, ...]] = {}
        self.error: Exception | None = None

        self._timer: asyncio.TimerHandle | None = None
        self._turn_task: asyncio.Task | None = None
        self._executing = False
        self._epoch = 0  # bumped on reset; stale turns compare against it
        self._saved = False
        self._done = asyncio.Event()

    @property
    def state(self) -> DriverState:
        return self._state

    @property
    def game(self) -> GameState | None:
        """Latest game state. Still readable after a failed turn."""
        return self._game

    @property
    def busy(self) -> bool:
        return self._executing

    # ── Controls ─────────────────────────────────────────────────────

    def start(self, game: GameState) -> None:
        if self._state != "idle":
            raise InvalidGameStateError(f"driver is {self._state}; reset before starting a new game")
        if game.status != "active":
            raise InvalidGameStateError(f"game {game.id} is {game.status}, not active")

        self._game = game
        self._invocations = {}
        self._saved = False
        self.error = None
        self._done = asyncio.Event()
        self._state = "running"
        log.info("Game %s started: %s vs %s", game.id, game.player1.name, game.player2.name)
        self._emit("game_started")
        self._schedule(0)

    def pause(self) -> None:
        if self._state != "running":
            raise InvalidGameStateError(f"cannot pause while {self._state}")
        self._state = "paused"
        self._cancel_timer()
        log.info("Game paused")
        self._emit("paused")

    def resume(self) -> None:
        """Continue a paused game. Also retries after a failed turn."""
        if self._state != "paused":
            raise InvalidGameStateError(f"cannot resume while {self._state}")
        self.error = None
        self._done.clear()
        self._state = "running"
        log.info("Game resumed")
        self._emit("resumed")
        # A turn still in flight schedules the next one itself
        if not self._executing:
            self._schedule(0)

    def toggle_pause(self) -> None:
        if self._state == "paused":
            self.resume()
        else:
            self.pause()

    def reset(self) -> None:
        """Drop the current game. An in-flight turn finishes and is discarded."""
        self._cancel_timer()
        game_id = self._game.id if self._game else None
        self._epoch += 1
        self._executing = False
        self._game = None
        self._invocations = {}
        self.error = None
        self._state = "idle"
        log.info("Game reset")
        self.observer.on_event(DriverEvent("reset", game_id))
        self._done.set()

    async def wait(self) -> GameState | None:
        """Block until the game finishes, fails a turn, or is reset."""
        await self._done.wait()
        return self._game

    # ── Turn execution ───────────────────────────────────────────────

    async def play_turn(self) -> GameState | None:
        """Run one full turn and return the new state.

        Returns ``None`` without doing anything if a turn is already in
        flight or there is no active game, and ``None`` if the turn failed
        or the game was reset while it ran. Any exception raised while the
        turn runs or lands stops the loop through the fault path.
        """
        if self._executing:
            log.debug("Turn already in flight, ignoring request")
            return None
        game = self._game
        if game is None:
            log.debug("No game to advance")
            return None

        epoch = self._epoch
        self._executing = True
        try:
            if game.status == "completed":
                # Landing failed after the winning move; finish again
                await self._finish(game, epoch)
                return game
            if game.status != "active":
                log.debug("Game %s is %s, nothing to advance", game.id, game.status)
                return None
            return await self._run_turn(game, epoch)
        except Exception as e:
            if epoch == self._epoch:
                self._fail(e)
            return None
        finally:
            if epoch == self._epoch:
                self._executing = False

    async def _run_turn(self, game: GameState, epoch: int) -> GameState | None:
        log.debug("Starting turn %d (player %d)", len(game.turns) + 1, game.current_player)
        result = self._turn_fn(game)
        commentary = await self.requester.request(game, result)

        if epoch != self._epoch:
            log.debug("Game was reset mid-turn, discarding turn %d", result.turn.turn_number)
            return None

        turn = result.turn
        new_state = attach_commentary(result.game_state, turn.turn_number, commentary)
        self._game = new_state
        if commentary.invocations:
            self._invocations[turn.turn_number] = commentary.invocations

        log.info(
            "Turn %d: player %d rolled %d, %d → %d%s",
            turn.turn_number, turn.player_num, turn.dice_roll, turn.from_pos, turn.final_pos,
            f" ({event_description(turn.event)})" if turn.event else "",
        )
        self._emit(
            "turn_complete",
            turn_number=turn.turn_number,
            player=turn.player_num,
            dice_roll=turn.dice_roll,
            from_pos=turn.from_pos,
            to_pos=turn.to_pos,
            final_pos=turn.final_pos,
            event=turn.event.to_dict() if turn.event else None,
        )

        if result.is_game_over:
            await self._finish(new_state, epoch)
        elif self._state == "running":
            self._schedule(self.turn_delay)
        return new_state

    def _schedule(self, delay: float) -> None:
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay, self._fire)

    def _fire(self) -> None:
        self._timer = None
        # A turn already in flight schedules its successor when it lands
        if self._state == "running" and not self._executing:
            self._turn_task = asyncio.get_running_loop().create_task(self.play_turn())

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    # ── Outcomes ─────────────────────────────────────────────────────

    def _fail(self, error: Exception) -> None:
        log.error("Turn execution failed; stopping the game loop", exc_info=error)
        self.error = error
        self._state = "paused"
        self._cancel_timer()
        self._done.set()
        try:
            self._emit("turn_failed", error=str(error))
        except Exception:
            log.exception("Observer failed while reporting a turn fault")

    async def _finish(self, game: GameState, epoch: int) -> None:
        self._state = "finished"
        self._cancel_timer()
        winner = game.player(game.winner) if game.winner else None
        log.info("Game over: %s wins after %d turns", winner.name if winner else "nobody", len(game.turns))
        self._emit("game_over", winner=game.winner, turns=len(game.turns))
        await self._persist(game, epoch)
        # A reset during the save owns _done now
        if epoch == self._epoch:
            self._done.set()

    async def _persist(self, game: GameState, epoch: int) -> None:
        if self.store is None or self._saved:
            return
        self._saved = True
        try:
            await asyncio.to_thread(self.store.save_game, game, dict(self._invocations))
        except Exception as e:
            log.exception("Failed to save game %s", game.id)
            if epoch == self._epoch:
                self._emit("save_failed", error=str(e))
        else:
            log.info("Game %s saved", game.id)
            if epoch == self._epoch:
                self._emit("game_saved")

    def _emit(self, kind: str, **data) -> None:
        game_id = self._game.id if self._game else None
        self.observer.on_event(DriverEvent(kind, game_id, data))
