"""Tests for snakes_arena.driver (game loop state machine)."""

from __future__ import annotations

import asyncio
import threading
from dataclasses import replace
from unittest.mock import MagicMock

import pytest

from snakes_arena.commentary import Commentary
from snakes_arena.config import PlayerConfig
from snakes_arena.driver import GameDriver, ListObserver
from snakes_arena.engine import GameState, create_game, execute_turn
from snakes_arena.errors import InvalidGameStateError
from snakes_arena.providers import LLMInvocation


def _game(p1_pos: int = 0, p2_pos: int = 0) -> GameState:
    game = create_game(
        PlayerConfig("openai", "gpt-4o", "Alice", api_key="sk-a"),
        PlayerConfig("anthropic", "claude-sonnet-4-5", "Bob", api_key="sk-b"),
    )
    return replace(
        game,
        player1=replace(game.player1, position=p1_pos),
        player2=replace(game.player2, position=p2_pos),
    )


def scripted_turns(*rolls):
    """Turn function that feeds the engine a fixed sequence of rolls."""
    it = iter(rolls)
    return lambda game: execute_turn(game, dice=lambda: next(it))


class FakeRequester:
    """Returns canned commentary; optionally blocks until released."""

    def __init__(self, gate: asyncio.Event | None = None):
        self.gate = gate
        self.calls = 0
        self.started = asyncio.Event()

    async def request(self, game_before, result):
        self.calls += 1
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        return Commentary(
            pre_roll=f"pre {result.turn.turn_number}",
            post_roll=f"post {result.turn.turn_number}",
            trash_talk=f"trash {result.turn.turn_number}",
            invocations=(LLMInvocation(kind="pre_roll", model_api_id=result.turn.model),),
        )


# ── full game ───────────────────────────────────────────────────────

def test_plays_game_to_completion_and_saves_once():
    async def scenario():
        store = MagicMock()
        observer = ListObserver()
        driver = GameDriver(
            requester=FakeRequester(),
            store=store,
            turn_delay=0,
            observer=observer,
            turn_fn=scripted_turns(6, 3, 6),  # Alice 88→94, Bob 10→13, Alice 94→100
        )
        driver.start(_game(88, 10))
        final = await driver.wait()
        return driver, store, observer, final

    driver, store, observer, final = asyncio.run(scenario())

    assert driver.state == "finished"
    assert final.status == "completed"
    assert final.winner == 1
    assert [t.turn_number for t in final.turns] == [1, 2, 3]
    assert final.turns[1].pre_roll_commentary == "pre 2"
    assert final.turns[2].trash_talk == "trash 3"

    store.save_game.assert_called_once()
    saved_game, invocations = store.save_game.call_args.args
    assert saved_game == final
    assert set(invocations) == {1, 2, 3}

    assert observer.kinds() == [
        "game_started", "turn_complete", "turn_complete", "turn_complete",
        "game_over", "game_saved",
    ]


def test_start_requires_idle_and_active_game():
    async def scenario():
        driver = GameDriver(requester=FakeRequester(), turn_delay=10)
        finished = execute_turn(_game(94, 0), dice=lambda: 6).game_state
        with pytest.raises(InvalidGameStateError):
            driver.start(finished)

        driver.start(_game())
        with pytest.raises(InvalidGameStateError):
            driver.start(_game())
        driver.reset()

    asyncio.run(scenario())


# ── pause / resume ──────────────────────────────────────────────────

def test_pause_cancels_next_turn_and_resume_continues():
    async def scenario():
        requester = FakeRequester()
        driver = GameDriver(requester=requester, turn_delay=0.05, turn_fn=scripted_turns(1, 1, 1, 1))
        driver.start(_game())

        await requester.started.wait()
        await asyncio.sleep(0)  # let the first turn land
        assert len(driver.game.turns) == 1
        driver.pause()
        assert driver.state == "paused"

        await asyncio.sleep(0.15)
        assert len(driver.game.turns) == 1

        driver.resume()
        assert driver.state == "running"
        await asyncio.sleep(0.02)
        assert len(driver.game.turns) == 2
        driver.reset()

    asyncio.run(scenario())


def test_pause_during_turn_lets_it_finish_without_scheduling():
    async def scenario():
        gate = asyncio.Event()
        requester = FakeRequester(gate)
        driver = GameDriver(requester=requester, turn_delay=0, turn_fn=scripted_turns(3, 4))
        driver.start(_game())

        await requester.started.wait()
        driver.pause()
        gate.set()
        await asyncio.sleep(0.05)

        assert len(driver.game.turns) == 1
        assert driver.game.turns[0].pre_roll_commentary == "pre 1"
        assert requester.calls == 1
        assert driver.state == "paused"

    asyncio.run(scenario())


def test_invalid_transitions():
    async def scenario():
        driver = GameDriver(requester=FakeRequester(), turn_delay=10)
        with pytest.raises(InvalidGameStateError):
            driver.pause()
        with pytest.raises(InvalidGameStateError):
            driver.resume()
        driver.start(_game())
        with pytest.raises(InvalidGameStateError):
            driver.resume()
        driver.toggle_pause()
        assert driver.state == "paused"
        driver.toggle_pause()
        assert driver.state == "running"
        driver.reset()

    asyncio.run(scenario())


# ── reset ───────────────────────────────────────────────────────────

def test_reset_discards_in_flight_turn():
    async def scenario():
        gate = asyncio.Event()
        requester = FakeRequester(gate)
        observer = ListObserver()
        driver = GameDriver(
            requester=requester, turn_delay=0, observer=observer,
            turn_fn=scripted_turns(3),
        )
        driver.start(_game())
        await requester.started.wait()

        driver.reset()
        assert driver.state == "idle"
        assert driver.game is None
        assert await driver.wait() is None

        gate.set()
        await asyncio.sleep(0.02)
        return driver, observer

    driver, observer = asyncio.run(scenario())
    assert driver.game is None
    assert driver.state == "idle"
    assert "turn_complete" not in observer.kinds()


def test_reset_then_new_game():
    async def scenario():
        driver = GameDriver(requester=FakeRequester(), turn_delay=0, turn_fn=scripted_turns(6, 6))
        driver.start(_game(10, 10))
        driver.reset()
        driver.start(_game(94, 0))
        return await driver.wait()

    final = asyncio.run(scenario())
    assert final.winner == 1
    assert len(final.turns) == 1


# ── in-flight guard ─────────────────────────────────────────────────

def test_second_turn_request_is_rejected_while_one_is_outstanding():
    async def scenario():
        gate = asyncio.Event()
        requester = FakeRequester(gate)
        driver = GameDriver(requester=requester, turn_delay=10, turn_fn=scripted_turns(2, 3))
        driver._game = _game()  # drive turns by hand

        first = asyncio.ensure_future(driver.play_turn())
        await requester.started.wait()
        assert driver.busy
        second = await driver.play_turn()
        gate.set()
        return await first, second, requester

    first, second, requester = asyncio.run(scenario())
    assert second is None
    assert first is not None
    assert len(first.turns) == 1
    assert requester.calls == 1


def test_play_turn_without_game_is_noop():
    driver = GameDriver(requester=FakeRequester())
    assert asyncio.run(driver.play_turn()) is None


# ── failures ────────────────────────────────────────────────────────

def test_turn_fault_stops_loop_and_keeps_last_state():
    calls = {"n": 0}

    def flaky(game):
        calls["n"] += 1
        if calls["n"] == 2:
            raise RuntimeError("dice fell off the table")
        return execute_turn(game, dice=lambda: 4)

    async def scenario():
        observer = ListObserver()
        driver = GameDriver(requester=FakeRequester(), turn_delay=0, observer=observer, turn_fn=flaky)
        driver.start(_game())
        game = await driver.wait()
        return driver, observer, game

    driver, observer, game = asyncio.run(scenario())
    assert driver.state == "paused"
    assert isinstance(driver.error, RuntimeError)
    assert len(game.turns) == 1
    assert game.player1.position == 4
    assert observer.kinds()[-1] == "turn_failed"


def test_resume_after_fault_retries():
    calls = {"n": 0}

    def flaky(game):
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("transient")
        return execute_turn(game, dice=lambda: 6)

    async def scenario():
        driver = GameDriver(requester=FakeRequester(), turn_delay=0, turn_fn=flaky)
        driver.start(_game(94, 0))
        await driver.wait()
        assert driver.error is not None
        driver.resume()
        assert driver.error is None
        return driver, await driver.wait()

    driver, final = asyncio.run(scenario())
    assert driver.state == "finished"
    assert final.winner == 1


def test_save_failure_is_logged_not_raised():
    async def scenario():
        store = MagicMock()
        store.save_game.side_effect = RuntimeError("disk full")
        observer = ListObserver()
        driver = GameDriver(
            requester=FakeRequester(), store=store, turn_delay=0,
            observer=observer, turn_fn=scripted_turns(6),
        )
        driver.start(_game(94, 0))
        return driver, observer, await driver.wait()

    driver, observer, final = asyncio.run(scenario())
    assert driver.state == "finished"
    assert driver.error is None
    assert final.status == "completed"
    assert observer.kinds()[-2:] == ["game_over", "save_failed"]
    assert observer.events[-1].data["error"] == "disk full"


def test_reset_during_save_leaves_the_next_game_running():
    save_started = threading.Event()
    release_save = threading.Event()

    def slow_save(game, invocations):
        save_started.set()
        release_save.wait(5)
        return game.id

    async def scenario():
        store = MagicMock()
        store.save_game.side_effect = slow_save
        observer = ListObserver()
        requester = FakeRequester()
        driver = GameDriver(
            requester=requester, store=store, turn_delay=0,
            observer=observer, turn_fn=scripted_turns(6, 3),
        )
        driver.start(_game(94, 0))
        while not save_started.is_set():
            await asyncio.sleep(0.01)

        driver.reset()
        requester.gate = asyncio.Event()  # hold the new game's first turn
        requester.started.clear()
        driver.start(_game())
        release_save.set()
        await requester.started.wait()

        waiter = asyncio.ensure_future(driver.wait())
        await asyncio.sleep(0.1)  # first game's save lands meanwhile
        still_waiting = not waiter.done()
        state = driver.state

        driver.reset()
        requester.gate.set()
        await waiter
        return still_waiting, state, store, observer

    still_waiting, state, store, observer = asyncio.run(scenario())
    assert still_waiting
    assert state == "running"
    store.save_game.assert_called_once()
    assert "game_saved" not in observer.kinds()
    assert observer.kinds().count("game_started") == 2


class BrokenObserver(ListObserver):
    """Raises on the chosen event kind, a limited number of times."""

    def __init__(self, fail_on: str, times: int = 1):
        super().__init__()
        self.fail_on = fail_on
        self.times = times

    def on_event(self, event):
        super().on_event(event)
        if event.kind == self.fail_on and self.times > 0:
            self.times -= 1
            raise RuntimeError(f"observer broke on {event.kind}")


def test_observer_fault_after_turn_stops_the_loop():
    async def scenario():
        observer = BrokenObserver("turn_complete")
        driver = GameDriver(
            requester=FakeRequester(), turn_delay=0, observer=observer,
            turn_fn=scripted_turns(4, 5),
        )
        driver.start(_game())
        game = await asyncio.wait_for(driver.wait(), timeout=1)
        return driver, observer, game

    driver, observer, game = asyncio.run(scenario())
    assert driver.state == "paused"
    assert str(driver.error) == "observer broke on turn_complete"
    assert not driver.busy
    assert len(game.turns) == 1
    assert observer.kinds()[-1] == "turn_failed"


def test_fault_while_finishing_is_retried_on_resume():
    async def scenario():
        store = MagicMock()
        observer = BrokenObserver("game_over")
        driver = GameDriver(
            requester=FakeRequester(), store=store, turn_delay=0,
            observer=observer, turn_fn=scripted_turns(6),
        )
        driver.start(_game(94, 0))
        await asyncio.wait_for(driver.wait(), timeout=1)
        faulted = (driver.state, store.save_game.called)

        driver.resume()
        final = await asyncio.wait_for(driver.wait(), timeout=1)
        return driver, store, faulted, final

    driver, store, faulted, final = asyncio.run(scenario())
    assert faulted == ("paused", False)
    assert driver.state == "finished"
    assert final.winner == 1
    store.save_game.assert_called_once()
