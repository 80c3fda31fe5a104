"""Configuration system for the Solanize client.

Loads client config from `.solanize/config.yaml`, supports environment
variable expansion, and validates the values the orchestration layer
depends on (API endpoints, timing, Solana network).
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Environment-variable expansion helper
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)\}")


def _expand_env_vars(value: str) -> str:
    """Replace ``${VAR_NAME}`` placeholders with their environment values.

    If the variable is not set the placeholder is left as-is so that
    validation can catch it later.
    """

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))

    return _ENV_VAR_RE.sub(_replace, value)


def _expand_env_recursive(obj: object) -> object:
    """Walk an arbitrary nested structure and expand env vars in strings."""
    if isinstance(obj, str):
        return _expand_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _expand_env_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env_recursive(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# Pydantic v2 models
# ---------------------------------------------------------------------------


class SiteConfig(BaseModel):
    """Branding shown by the CLI."""

    name: str = "Solanize"


class ApiConfig(BaseModel):
    """Backend gateway location."""

    chat_api_url: str = "http://127.0.0.1:5000"
    api_prefix: str = "/api/v1"
    timeout_seconds: float = 30.0

    @property
    def base_url(self) -> str:
        return self.chat_api_url.rstrip("/") + self.api_prefix


class SolanaConfig(BaseModel):
    """Solana network and local keypair settings."""

    network: str = "devnet"
    rpc_url: Optional[str] = None  # overrides the network's default RPC
    explorer_url: str = "https://solscan.io"
    keypair_path: str = "~/.config/solana/id.json"


class LoggingConfig(BaseModel):
    level: str = "INFO"


class TransactionsConfig(BaseModel):
    """Transaction timing."""

    confirmation_delay_seconds: float = 2.0  # wait before refreshing balances


class AuthConfig(BaseModel):
    auto_authenticate: bool = True
    refresh_leeway_seconds: int = 60


class ClientConfig(BaseModel):
    """Root configuration object for the client."""

    site: SiteConfig = Field(default_factory=SiteConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    solana: SolanaConfig = Field(default_factory=SolanaConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    transactions: TransactionsConfig = Field(default_factory=TransactionsConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------


def get_home_dir(base: Path | None = None, *, create: bool = True) -> Path:
    """Return the ``.solanize/`` directory holding config and the auth token.

    ``SOLANIZE_HOME`` wins over *base*; *base* defaults to the current
    working directory.
    """
    env_home = os.environ.get("SOLANIZE_HOME")
    if env_home:
        home = Path(env_home).expanduser()
    else:
        home = (base or Path.cwd()) / ".solanize"
    if create:
        home.mkdir(parents=True, exist_ok=True)
    return home


def load_config(path: Path) -> ClientConfig:
    """Load and validate a client configuration from a YAML file.

    Environment variable placeholders (``${VAR}``) are expanded before
    validation. ``SOLANIZE_CHAT_API_URL`` overrides ``api.chat_api_url``.
    A missing file yields the defaults.
    """
    raw_data: dict = {}
    if path.exists():
        raw_data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    expanded = _expand_env_recursive(raw_data)
    config = ClientConfig.model_validate(expanded)

    override = os.environ.get("SOLANIZE_CHAT_API_URL")
    if override:
        config.api.chat_api_url = override
    return config


def save_config(config: ClientConfig, path: Path) -> None:
    """Serialize a :class:`ClientConfig` to a YAML file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="python", exclude_none=True)
    with open(path, "w", encoding="utf-8") as fh:
        yaml.dump(data, fh, default_flow_style=False, sort_keys=False)


def validate_config(config: ClientConfig) -> list[str]:
    """Return a list of human-readable problems; empty means valid."""
    from solanize.wallet.networks import NETWORKS

    errors: list[str] = []
    if not config.api.chat_api_url:
        errors.append("Missing Chat API URL")

    if config.api.timeout_seconds <= 0:
        errors.append("API timeout must be positive")
    if config.transactions.confirmation_delay_seconds < 0:
        errors.append("Confirmation delay must not be negative")

    if config.solana.network not in NETWORKS and not config.solana.rpc_url:
        errors.append(
            f"Unknown Solana network '{config.solana.network}' and no rpc_url set"
        )
    return errors
