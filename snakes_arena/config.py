"""Player configuration and credential storage."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Protocol, get_args

from snakes_arena.errors import ConfigurationError

log = logging.getLogger(__name__)

Provider = Literal["openai", "anthropic", "gemini", "openrouter", "groq", "grok"]
PROVIDERS: tuple[str, ...] = get_args(Provider)

# provider → env var holding its API key
ENV_KEYS: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "groq": "GROQ_API_KEY",
    "grok": "XAI_API_KEY",
}


@dataclass(frozen=True)
class PlayerConfig:
    """What the user picked for one seat. The credential is opaque to the engine."""

    provider: str
    model: str
    name: str
    api_key: str = field(default="", repr=False)


def parse_player_spec(spec: str) -> tuple[str, str]:
    """Split ``provider:model`` on the first colon.

    Everything after it is the model id, so OpenRouter ids such as
    ``deepseek/deepseek-r1:free`` survive intact.
    """
    provider, sep, model = spec.partition(":")
    if not sep or not model.strip():
        raise ConfigurationError(f"expected provider:model, got {spec!r}")
    return provider.strip().lower(), model.strip()


def validate_player_configs(
    player1: PlayerConfig | None,
    player2: PlayerConfig | None,
) -> None:
    """Raise ConfigurationError unless both seats are fully configured."""
    if player1 is None or player2 is None:
        raise ConfigurationError("Please configure both players")
    for num, cfg in ((1, player1), (2, player2)):
        if cfg.provider not in PROVIDERS:
            raise ConfigurationError(
                f"Player {num}: unsupported provider {cfg.provider!r} "
                f"(choose from {', '.join(PROVIDERS)})"
            )
        if not cfg.model:
            raise ConfigurationError(f"Player {num}: no model selected")
        if not cfg.api_key:
            raise ConfigurationError(f"Player {num}: missing API key for {cfg.provider}")


# ── Credential stores ───────────────────────────────────────────────

class CredentialStore(Protocol):
    """Where API keys live between runs."""

    def get(self, provider: str) -> str | None: ...

    def set(self, provider: str, api_key: str) -> None: ...


@dataclass
class EnvCredentialStore:
    """Read-only view over the process environment."""

    environ: dict[str, str] | None = None

    def get(self, provider: str) -> str | None:
        env = os.environ if self.environ is None else self.environ
        var = ENV_KEYS.get(provider)
        return env.get(var) if var else None

    def set(self, provider: str, api_key: str) -> None:
        raise ConfigurationError(
            f"environment credentials are read-only; export {ENV_KEYS.get(provider, '?')} instead"
        )


class JsonCredentialStore:
    """Keys kept in a JSON file. Loaded once on init, written on every change."""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._keys: dict[str, str] = {}
        if self.path.exists():
            try:
                data = json.loads(self.path.read_text())
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"{self.path} is not valid JSON: {e}") from e
            if not isinstance(data, dict):
                raise ConfigurationError(f"{self.path} must hold a JSON object of provider keys")
            self._keys = {k: v for k, v in data.items() if isinstance(v, str)}
            log.debug("Loaded %d credential(s) from %s", len(self._keys), self.path)

    def get(self, provider: str) -> str | None:
        return self._keys.get(provider)

    def set(self, provider: str, api_key: str) -> None:
        if self._keys.get(provider) == api_key:
            return
        self._keys[provider] = api_key
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._keys, indent=2))
        # Owner-only, the file holds secrets
        os.chmod(self.path, 0o600)
        log.debug("Saved credential for %s to %s", provider, self.path)


def make_player_config(
    spec: str,
    store: CredentialStore,
    name: str,
) -> PlayerConfig:
    """Build a PlayerConfig from a CLI spec, pulling the key from *store*."""
    provider, model = parse_player_spec(spec)
    return PlayerConfig(
        provider=provider,
        model=model,
        name=name,
        api_key=store.get(provider) or "",
    )
