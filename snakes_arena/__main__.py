"""CLI entry point: python -m snakes_arena {play,set-key,games,show,models}."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from snakes_arena.commentary import DEFAULT_TIMEOUT, CommentaryRequester
from snakes_arena.config import (
    CredentialStore,
    EnvCredentialStore,
    JsonCredentialStore,
    PROVIDERS,
    make_player_config,
    validate_player_configs,
)
from snakes_arena.driver import DEFAULT_TURN_DELAY, DriverEvent, GameDriver
from snakes_arena.engine import create_game, game_summary
from snakes_arena.errors import ConfigurationError
from snakes_arena.persistence import ResultsDB
from snakes_arena.providers import AVAILABLE_MODELS, PROVIDER_INFO


RESULTS_DIR = Path("results")
DB_PATH = RESULTS_DIR / "games.db"


def _open_db(path: Path | str | None) -> ResultsDB:
    return ResultsDB(path or DB_PATH)


class ConsoleObserver:
    """Print a line per turn as the game is played."""

    def __init__(self, get_game):
        self._game = get_game

    def on_event(self, event: DriverEvent) -> None:
        if event.kind == "turn_complete":
            game = self._game()
            turn = game.turns[event.data["turn_number"] - 1]
            player = game.player(turn.player_num)
            line = (
                f"[{turn.turn_number:3d}] {player.name}: rolled {turn.dice_roll}, "
                f"{turn.from_pos} → {turn.final_pos}"
            )
            if turn.bust:
                line += " (overshoot, stays put)"
            elif turn.event is not None:
                line += f" ({turn.event.type} {turn.event.from_square} → {turn.event.to_square})"
            print(line)
            print(f"      \"{turn.pre_roll_commentary}\"")
            print(f"      \"{turn.post_roll_commentary}\"")
            print(f"      \"{turn.trash_talk}\"")
        elif event.kind == "save_failed":
            print(f"Warning: could not save game ({event.data.get('error')})", file=sys.stderr)
        elif event.kind == "turn_failed":
            print(f"Error: {event.data.get('error')}", file=sys.stderr)


# ── play ─────────────────────────────────────────────────────────────

def _credential_store(args: argparse.Namespace) -> CredentialStore:
    if args.credentials:
        return JsonCredentialStore(args.credentials)
    return EnvCredentialStore()


async def _play(args: argparse.Namespace) -> int:
    store = _credential_store(args)
    p1 = make_player_config(args.p1, store, args.p1_name)
    p2 = make_player_config(args.p2, store, args.p2_name)
    validate_player_configs(p1, p2)

    db = _open_db(args.db)
    requester = CommentaryRequester(timeout=args.timeout)
    try:
        driver = GameDriver(
            requester=requester,
            store=db,
            turn_delay=args.delay,
        )
        driver.observer = ConsoleObserver(lambda: driver.game)
        game = create_game(p1, p2)
        print(f"{p1.name} ({p1.provider}/{p1.model}) vs {p2.name} ({p2.provider}/{p2.model})")
        driver.start(game)
        final = await driver.wait()
    finally:
        await requester.aclose()
        db.close()

    if driver.error is not None:
        print(f"Game stopped after {len(final.turns) if final else 0} turns.", file=sys.stderr)
        return 1
    if final is not None:
        print(game_summary(final))
    return 0


def cmd_play(args: argparse.Namespace) -> None:
    """Play one game between two configured models."""
    try:
        code = asyncio.run(_play(args))
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    sys.exit(code)


def cmd_set_key(args: argparse.Namespace) -> None:
    """Store an API key in the JSON credential file."""
    store = JsonCredentialStore(args.credentials)
    store.set(args.provider, args.api_key)
    print(f"Saved {args.provider} key to {store.path}")


# ── games / show ─────────────────────────────────────────────────────

def cmd_games(args: argparse.Namespace) -> None:
    """List recently saved games."""
    db = _open_db(args.db)
    games = db.list_games(limit=args.limit, offset=args.offset)
    total = db.count_games()
    db.close()

    if not games:
        print("No saved games yet.", file=sys.stderr)
        return

    for g in games:
        winner = g[f"player{g['winner']}_name"] if g["winner"] else "-"
        print(
            f"{g['id']}  {g['player1_name']} vs {g['player2_name']}  "
            f"winner={winner}  turns={g['total_turns']}  {g['created_at']}"
        )
    print(f"\n{len(games)} of {total} games")


def cmd_show(args: argparse.Namespace) -> None:
    """Print every turn of one saved game."""
    db = _open_db(args.db)
    game = db.get_game(args.game_id)
    db.close()

    if game is None:
        print(f"Game {args.game_id} not found.", file=sys.stderr)
        sys.exit(1)

    print(f"{game['player1_name']} ({game['player1_model']}) vs "
          f"{game['player2_name']} ({game['player2_model']})")
    for t in game["turns"]:
        event = f" ({t['event']} {t['event_from']} → {t['event_to']})" if t["event"] else ""
        print(f"[{t['turn_number']:3d}] P{t['player_num']} rolled {t['dice_roll']}: "
              f"{t['from_pos']} → {t['final_pos']}{event}")
        for key in ("pre_roll_commentary", "post_roll_commentary", "trash_talk"):
            if t[key]:
                print(f"      \"{t[key]}\"")


def cmd_models(args: argparse.Namespace) -> None:
    """List the known models per provider."""
    for provider, label in PROVIDER_INFO.items():
        print(f"{label} ({provider})")
        for m in AVAILABLE_MODELS:
            if m.provider == provider:
                print(f"  {m.id:40s} {m.description}")


# ── main ─────────────────────────────────────────────────────────────

def main() -> None:
    parser = argparse.ArgumentParser(
        prog="snakes_arena",
        description="AI vs AI Snake & Ladder",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--db", help=f"SQLite path (default {DB_PATH})")
    sub = parser.add_subparsers(dest="command")

    p_play = sub.add_parser("play", help="Play one game")
    p_play.add_argument("--p1", required=True, help="Player 1 as provider:model")
    p_play.add_argument("--p2", required=True, help="Player 2 as provider:model")
    p_play.add_argument("--p1-name", default="Player 1")
    p_play.add_argument("--p2-name", default="Player 2")
    p_play.add_argument("--delay", type=float, default=DEFAULT_TURN_DELAY,
                        help=f"Seconds between turns (default {DEFAULT_TURN_DELAY})")
    p_play.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT,
                        help=f"Per-request commentary timeout (default {DEFAULT_TIMEOUT})")
    p_play.add_argument("--credentials", help="JSON file of API keys (default: environment)")

    p_key = sub.add_parser("set-key", help="Save an API key to a credentials file")
    p_key.add_argument("provider", choices=PROVIDERS)
    p_key.add_argument("api_key")
    p_key.add_argument("--credentials", required=True, help="JSON file of API keys")

    p_games = sub.add_parser("games", help="List saved games")
    p_games.add_argument("--limit", type=int, default=10)
    p_games.add_argument("--offset", type=int, default=0)

    p_show = sub.add_parser("show", help="Show one saved game")
    p_show.add_argument("game_id")

    sub.add_parser("models", help="List known models")

    args = parser.parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "play":
        cmd_play(args)
    elif args.command == "set-key":
        cmd_set_key(args)
    elif args.command == "games":
        cmd_games(args)
    elif args.command == "show":
        cmd_show(args)
    elif args.command == "models":
        cmd_models(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
