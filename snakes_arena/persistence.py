"""SQLite persistence for finished games and the per-model tally.

A game is written once, after it completes: the game row, every turn with
its commentary, any captured LLM invocations, and a bump of both players'
``(provider, model)`` leaderboard rows. Credentials are never stored.
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from snakes_arena.engine import GameState
from snakes_arena.providers import LLMInvocation


@dataclass
class LeaderboardEntry:
    provider: str
    model: str
    games_played: int
    wins: int
    losses: int

    @property
    def win_rate(self) -> int:
        """Whole-number percentage, halves rounded up, 0 when nothing has been played."""
        if self.games_played == 0:
            return 0
        return int(self.wins / self.games_played * 100 + 0.5)


class ResultsDB:
    """Thin wrapper around a SQLite database for game results."""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Driver saves from a worker thread
        self._conn = sqlite3.connect(self.path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._create_tables()

    def _create_tables(self) -> None:
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS games (
                id               TEXT PRIMARY KEY,
                status           TEXT NOT NULL,
                winner           INTEGER,
                player1_provider TEXT NOT NULL,
                player1_model    TEXT NOT NULL,
                player1_name     TEXT NOT NULL,
                player1_position INTEGER NOT NULL,
                player2_provider TEXT NOT NULL,
                player2_model    TEXT NOT NULL,
                player2_name     TEXT NOT NULL,
                player2_position INTEGER NOT NULL,
                current_player   INTEGER NOT NULL,
                total_turns      INTEGER NOT NULL,
                created_at       TIMESTAMP NOT NULL,
                updated_at       TIMESTAMP NOT NULL,
                completed_at     TIMESTAMP
            );
            CREATE TABLE IF NOT EXISTS turns (
                id                   TEXT PRIMARY KEY,
                game_id              TEXT NOT NULL REFERENCES games(id),
                turn_number          INTEGER NOT NULL,
                player_num           INTEGER NOT NULL,
                provider             TEXT NOT NULL,
                model                TEXT NOT NULL,
                dice_roll            INTEGER NOT NULL,
                from_pos             INTEGER NOT NULL,
                to_pos               INTEGER NOT NULL,
                final_pos            INTEGER NOT NULL,
                event                TEXT,
                event_from           INTEGER,
                event_to             INTEGER,
                pre_roll_commentary  TEXT,
                post_roll_commentary TEXT,
                trash_talk           TEXT,
                created_at           TIMESTAMP NOT NULL,
                UNIQUE(game_id, turn_number)
            );
            CREATE TABLE IF NOT EXISTS llm_invocations (
                id               INTEGER PRIMARY KEY AUTOINCREMENT,
                game_id          TEXT NOT NULL REFERENCES games(id),
                turn_number      INTEGER NOT NULL,
                player_num       INTEGER NOT NULL,
                sequence_in_turn INTEGER NOT NULL,
                kind             TEXT NOT NULL,
                model_api_id     TEXT NOT NULL,
                request_messages TEXT NOT NULL,
                response_raw     TEXT NOT NULL,
                input_tokens     INTEGER,
                output_tokens    INTEGER,
                latency_ms       INTEGER,
                UNIQUE(game_id, turn_number, sequence_in_turn)
            );
            CREATE TABLE IF NOT EXISTS leaderboard (
                id            INTEGER PRIMARY KEY AUTOINCREMENT,
                provider      TEXT NOT NULL,
                model         TEXT NOT NULL,
                games_played  INTEGER NOT NULL DEFAULT 0,
                wins          INTEGER NOT NULL DEFAULT 0,
                losses        INTEGER NOT NULL DEFAULT 0,
                UNIQUE(provider, model)
            );
        """)
        self._conn.commit()

    # ── Writes ───────────────────────────────────────────────────────

    def save_game(
        self,
        game: GameState,
        invocations: dict[int, Iterable[LLMInvocation]] | None = None,
    ) -> str:
        """Record a completed game and update both players' tallies.

        *invocations* maps turn number → the LLM calls made for that turn.
        Everything is written in one transaction. Returns the game id.
        """
        if game.status != "completed":
            raise ValueError(f"only completed games are saved (game {game.id} is {game.status})")

        with self._conn:
            self._insert_game(game)
            for turn in game.turns:
                self._conn.execute(
                    "INSERT INTO turns (id, game_id, turn_number, player_num, provider, "
                    "model, dice_roll, from_pos, to_pos, final_pos, event, event_from, "
                    "event_to, pre_roll_commentary, post_roll_commentary, trash_talk, "
                    "created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (turn.id, game.id, turn.turn_number, turn.player_num,
                     turn.provider, turn.model, turn.dice_roll,
                     turn.from_pos, turn.to_pos, turn.final_pos,
                     turn.event.type if turn.event else None,
                     turn.event.from_square if turn.event else None,
                     turn.event.to_square if turn.event else None,
                     turn.pre_roll_commentary, turn.post_roll_commentary,
                     turn.trash_talk, turn.timestamp.isoformat()),
                )

            for turn_number, invs in sorted((invocations or {}).items()):
                player_num = game.turns[turn_number - 1].player_num
                for seq, inv in enumerate(invs):
                    self._insert_invocation(game.id, turn_number, player_num, seq, inv)

            for player in (game.player1, game.player2):
                won = game.winner == player.number
                lost = game.winner is not None and not won
                self._conn.execute(
                    "INSERT INTO leaderboard (provider, model, games_played, wins, losses) "
                    "VALUES (?, ?, 1, ?, ?) "
                    "ON CONFLICT(provider, model) DO UPDATE SET "
                    "games_played = games_played + 1, "
                    "wins = wins + excluded.wins, "
                    "losses = losses + excluded.losses",
                    (player.provider, player.model, int(won), int(lost)),
                )
        return game.id

    def _insert_game(self, game: GameState) -> None:
        p1, p2 = game.player1, game.player2
        self._conn.execute(
            "INSERT INTO games (id, status, winner, "
            "player1_provider, player1_model, player1_name, player1_position, "
            "player2_provider, player2_model, player2_name, player2_position, "
            "current_player, total_turns, created_at, updated_at, completed_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (game.id, game.status, game.winner,
             p1.provider, p1.model, p1.name, p1.position,
             p2.provider, p2.model, p2.name, p2.position,
             game.current_player, len(game.turns),
             game.created_at.isoformat(), game.updated_at.isoformat(),
             datetime.now(timezone.utc).isoformat()),
        )

    def _insert_invocation(
        self,
        game_id: str,
        turn_number: int,
        player_num: int,
        sequence_in_turn: int,
        inv: LLMInvocation,
    ) -> None:
        self._conn.execute(
            "INSERT INTO llm_invocations (game_id, turn_number, player_num, "
            "sequence_in_turn, kind, model_api_id, request_messages, response_raw, "
            "input_tokens, output_tokens, latency_ms) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (game_id, turn_number, player_num, sequence_in_turn, inv.kind,
             inv.model_api_id, json.dumps(inv.request_messages),
             json.dumps(inv.response_raw, default=str),
             inv.input_tokens, inv.output_tokens, inv.latency_ms),
        )

    # ── Reads ────────────────────────────────────────────────────────

    def count_games(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM games").fetchone()[0]

    def list_games(self, limit: int = 10, offset: int = 0) -> list[dict]:
        """Most recent games first, each with its ordered turns."""
        rows = self._conn.execute(
            "SELECT * FROM games ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?",
            (limit, offset),
        ).fetchall()
        return [self._game_with_turns(r) for r in rows]

    def get_game(self, game_id: str) -> dict | None:
        """One game with its ordered turns, or ``None`` if unknown."""
        row = self._conn.execute(
            "SELECT * FROM games WHERE id = ?", (game_id,)
        ).fetchone()
        if row is None:
            return None
        return self._game_with_turns(row)

    def _game_with_turns(self, row: sqlite3.Row) -> dict:
        game = dict(row)
        turn_rows = self._conn.execute(
            "SELECT * FROM turns WHERE game_id = ? ORDER BY turn_number",
            (game["id"],),
        ).fetchall()
        game["turns"] = [dict(t) for t in turn_rows]
        return game

    def invocations_for(self, game_id: str) -> list[dict]:
        rows = self._conn.execute(
            "SELECT * FROM llm_invocations WHERE game_id = ? "
            "ORDER BY turn_number, sequence_in_turn",
            (game_id,),
        ).fetchall()
        result = []
        for r in rows:
            d = dict(r)
            d["request_messages"] = json.loads(d["request_messages"])
            d["response_raw"] = json.loads(d["response_raw"])
            result.append(d)
        return result

    def leaderboard(self, limit: int = 20) -> list[LeaderboardEntry]:
        """Tallies ordered by wins, then games played."""
        rows = self._conn.execute(
            "SELECT provider, model, games_played, wins, losses FROM leaderboard "
            "ORDER BY wins DESC, games_played DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [
            LeaderboardEntry(
                provider=r["provider"], model=r["model"],
                games_played=r["games_played"], wins=r["wins"], losses=r["losses"],
            )
            for r in rows
        ]

    def close(self) -> None:
        self._conn.close()
