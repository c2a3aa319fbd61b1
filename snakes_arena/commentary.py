"""Commentary requester — asks the mover's model for three short lines per turn.

Commentary is cosmetic. Nothing here can fail a turn: every provider error,
timeout or empty reply is swapped for a canned line from the fallback pool.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable

from snakes_arena.engine import GameState, Player, Turn, TurnResult
from snakes_arena.prompts import (
    CommentaryKind,
    GameContext,
    PostRollContext,
    TurnSummary,
    random_fallback,
)
from snakes_arena.providers import CommentaryProvider, LLMInvocation, create_provider

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0

ProviderFactory = Callable[..., CommentaryProvider]


@dataclass(frozen=True)
class Commentary:
    pre_roll: str
    post_roll: str
    trash_talk: str
    invocations: tuple[LLMInvocation, ...] = ()


def fallback_commentary(rng: random.Random | None = None) -> Commentary:
    return Commentary(
        pre_roll=random_fallback("pre_roll", rng),
        post_roll=random_fallback("post_roll", rng),
        trash_talk=random_fallback("trash_talk", rng),
    )


def _summarize(turn: Turn, final: bool = False) -> TurnSummary:
    return TurnSummary(
        player_number=turn.player_num,
        dice_roll=turn.dice_roll,
        from_pos=turn.from_pos,
        to_pos=turn.final_pos if final else turn.to_pos,
        event=turn.event.type if turn.event else None,
    )


def build_contexts(
    game_before: GameState,
    result: TurnResult,
) -> tuple[GameContext, PostRollContext]:
    """Pre- and post-roll contexts for the player who just moved.

    *game_before* is the state the turn was executed against, so positions
    and history reflect what the player saw before rolling.
    """
    turn = result.turn
    me = game_before.player(turn.player_num)
    them = game_before.player(2 if turn.player_num == 1 else 1)

    base = dict(
        player_name=me.name,
        player_number=me.number,
        opponent_name=them.name,
        opponent_model=them.model,
        current_position=me.position,
        opponent_position=them.position,
        turn_number=len(game_before.turns) + 1,
        last_turn=_summarize(game_before.turns[-1], final=True) if game_before.turns else None,
        history=tuple(_summarize(t) for t in game_before.turns),
    )
    pre = GameContext(**base)
    post = PostRollContext(
        **base,
        dice_roll=turn.dice_roll,
        new_position=turn.final_pos,
        event=turn.event.type if turn.event else None,
        event_from=turn.event.from_square if turn.event else None,
        event_to=turn.event.to_square if turn.event else None,
        is_winning_move=result.is_game_over,
    )
    return pre, post


class CommentaryRequester:
    """Fetch pre-roll, post-roll and trash-talk lines for a finished turn.

    One provider is built per ``(provider, model, api_key)`` and reused for
    every turn that player takes. Call :meth:`aclose` when done to release
    the SDK clients' connection pools.
    """

    def __init__(
        self,
        provider_factory: ProviderFactory = create_provider,
        timeout: float = DEFAULT_TIMEOUT,
        rng: random.Random | None = None,
    ):
        self.provider_factory = provider_factory
        self.timeout = timeout
        self._rng = rng
        self._providers: dict[tuple[str, str, str], CommentaryProvider] = {}

    def _provider_for(self, player: Player) -> CommentaryProvider:
        key = (player.provider, player.model, player.api_key)
        provider = self._providers.get(key)
        if provider is None:
            provider = self.provider_factory(
                player.provider, player.api_key, player.model, timeout=self.timeout,
            )
            self._providers[key] = provider
        return provider

    async def aclose(self) -> None:
        """Close every cached provider. The requester stays usable afterwards."""
        providers, self._providers = list(self._providers.values()), {}
        for provider in providers:
            try:
                await provider.close()
            except Exception:
                log.warning("Closing %s provider failed", getattr(provider, "provider", "?"), exc_info=True)

    async def request(self, game_before: GameState, result: TurnResult) -> Commentary:
        mover = game_before.player(result.turn.player_num)
        pre_ctx, post_ctx = build_contexts(game_before, result)

        try:
            provider = self._provider_for(mover)
        except Exception:
            log.exception("Could not create %s provider, using fallback commentary", mover.provider)
            return fallback_commentary(self._rng)

        log.debug("Requesting commentary from %s/%s", mover.provider, mover.model)
        invocations: list[LLMInvocation] = []

        pre_roll = await self._ask("pre_roll", provider.generate_pre_roll(pre_ctx), provider, invocations)
        post_roll = await self._ask("post_roll", provider.generate_post_roll(post_ctx), provider, invocations)
        trash_talk = await self._ask("trash_talk", provider.generate_trash_talk(post_ctx), provider, invocations)

        return Commentary(
            pre_roll=pre_roll,
            post_roll=post_roll,
            trash_talk=trash_talk,
            invocations=tuple(invocations),
        )

    async def _ask(
        self,
        kind: CommentaryKind,
        call: Awaitable[str],
        provider: CommentaryProvider,
        invocations: list[LLMInvocation],
    ) -> str:
        before = getattr(provider, "last_invocation", None)
        try:
            text = await asyncio.wait_for(call, timeout=self.timeout)
        except asyncio.TimeoutError:
            log.warning("%s commentary timed out after %.1fs", kind, self.timeout)
            text = ""
        except Exception:
            log.exception("%s commentary failed", kind)
            text = ""

        inv = getattr(provider, "last_invocation", None)
        if inv is not None and inv is not before:
            invocations.append(inv)

        text = (text or "").strip()
        if not text:
            return random_fallback(kind, self._rng)
        return text
