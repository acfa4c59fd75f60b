from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv

from fk_copy.exceptions import ConfigError

log = logging.getLogger(__name__)

DEFAULT_SOURCE_DB = "exim_invoicing"
DEFAULT_TARGET_DB = "leo_munimji"
DEFAULT_BATCH_SIZE = 100

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off", ""}

# ------------------------ Env helpers ------------------------

def _env_get(env: Mapping[str, str], *keys: str, default: Optional[str] = None) -> Optional[str]:
    """First non-empty value among keys (side-specific key first, then the shared one)."""
    for k in keys:
        v = env.get(k)
        if v is not None and v.strip() != "":
            return v.strip()
    return default

def _as_int(name: str, raw: Optional[str], default: int) -> int:
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e

def _as_bool(name: str, raw: Optional[str], default: bool) -> bool:
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in _TRUTHY:
        return True
    if v in _FALSY:
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")

# ============================== Config models ===============================

@dataclass(frozen=True)
class DatabaseSettings:
    host: str
    port: int
    user: str
    password: str
    dbname: str
    schema: str = "public"

    def connect_kwargs(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": self.password,
            "dbname": self.dbname,
        }

    def describe(self) -> str:
        return f"{self.user}@{self.host}:{self.port}/{self.dbname} (schema={self.schema})"


@dataclass(frozen=True)
class CopyConfig:
    source: DatabaseSettings
    target: DatabaseSettings
    batch_size: int = DEFAULT_BATCH_SIZE
    validate_fks: bool = True
    catalog_path: Optional[str] = None
    discord_webhook: Optional[str] = None

    def __post_init__(self):
        if self.batch_size < 1:
            raise ConfigError(f"batch_size must be >= 1, got {self.batch_size}")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, load_dotenv_file: bool = True) -> "CopyConfig":
        if env is None:
            if load_dotenv_file:
                load_dotenv()
            env = os.environ

        def side(prefix: str, default_db: str) -> DatabaseSettings:
            return DatabaseSettings(
                host=_env_get(env, f"{prefix}_DB_HOST", "DB_HOST", default="localhost"),
                port=_as_int(f"{prefix}_DB_PORT", _env_get(env, f"{prefix}_DB_PORT", "DB_PORT"), 5432),
                user=_env_get(env, f"{prefix}_DB_USER", "DB_USER", default="postgres"),
                password=_env_get(env, f"{prefix}_DB_PASSWORD", "DB_PASSWORD", default=""),
                dbname=_env_get(env, f"{prefix}_DB", default=default_db),
                schema=_env_get(env, f"{prefix}_SCHEMA", default="public"),
            )

        cfg = cls(
            source=side("SOURCE", DEFAULT_SOURCE_DB),
            target=side("TARGET", DEFAULT_TARGET_DB),
            batch_size=_as_int("COPY_BATCH_SIZE", _env_get(env, "COPY_BATCH_SIZE"), DEFAULT_BATCH_SIZE),
            validate_fks=_as_bool("COPY_VALIDATE_FKS", _env_get(env, "COPY_VALIDATE_FKS"), True),
            catalog_path=_env_get(env, "TABLE_CATALOG_PATH"),
            discord_webhook=_env_get(env, "DISCORD_WEBHOOK"),
        )
        log.debug("Loaded copy config: source=%s target=%s batch_size=%d",
                  cfg.source.describe(), cfg.target.describe(), cfg.batch_size)
        return cfg

    def with_overrides(self, **changes: Any) -> "CopyConfig":
        """Return a copy with the non-None overrides applied (CLI flags win over env)."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})
