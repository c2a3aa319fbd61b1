"""Exception types raised by snakes_arena."""

from __future__ import annotations


class SnakesArenaError(Exception):
    """Base class for every error this package raises on purpose."""


class ConfigurationError(SnakesArenaError):
    """Player configuration is missing or unusable. Raised before a game exists."""


class InvalidGameStateError(SnakesArenaError):
    """An operation was attempted on a game that is not in the right status."""
