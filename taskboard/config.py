# taskboard: configuration
# Defaults, overridden by a YAML file, overridden by environment variables.

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

import yaml

from .backends import BoardBackend, RestBoardBackend, SqliteBoardBackend
from .generator import GeminiGenerator, TextGenerator

logger = logging.getLogger(__name__)

CONFIG_PATH = Path("~/.config/taskboard/config.yaml")

# field name -> environment variable
ENV_OVERRIDES = {
    "backend": "TASKBOARD_BACKEND",
    "db_path": "TASKBOARD_DB",
    "rest_url": "TASKBOARD_REST_URL",
    "rest_key": "TASKBOARD_REST_KEY",
    "gemini_api_key": "GEMINI_API_KEY",
    "log_level": "TASKBOARD_LOG_LEVEL",
    "api_secret": "TASKBOARD_API_SECRET",
}


class ConfigError(Exception):
    """Raised when configuration is invalid or incomplete."""
    pass


@dataclass
class BoardConfig:
    """Runtime configuration for the board service."""

    # Persistence
    backend: str = "sqlite"          # "sqlite" | "rest"
    db_path: str = "~/.local/share/taskboard/board.db"
    rest_url: str = ""
    rest_key: str = ""

    # Text generation (empty key = AI features disabled)
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"

    # Behavior
    request_timeout: float = 15
    sync_workers: int = 4            # 0 = run sync calls inline
    log_level: str = "INFO"

    # HTTP API
    api_secret: str = ""

    def validate(self) -> "BoardConfig":
        if self.backend not in ("sqlite", "rest"):
            raise ConfigError(f"Unknown backend '{self.backend}'. Use 'sqlite' or 'rest'.")
        if self.backend == "rest" and not self.rest_url:
            raise ConfigError(
                "backend 'rest' needs rest_url.\n"
                "Set it in the config file or export TASKBOARD_REST_URL=..."
            )
        if self.sync_workers < 0:
            raise ConfigError("sync_workers must be >= 0")
        return self

    @classmethod
    def load(cls, path: Optional[str] = None) -> "BoardConfig":
        """Load config from YAML (if present), apply env overrides, validate."""
        cfg_path = Path(path).expanduser() if path else CONFIG_PATH.expanduser()
        data = {}
        if cfg_path.exists():
            with open(cfg_path, "r") as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ConfigError(f"{cfg_path} must contain a mapping")
        elif path:
            raise ConfigError(f"Config file not found: {cfg_path}")

        known = {f.name: f.type for f in fields(cls)}
        unknown = sorted(set(data) - set(known))
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(unknown)}")
        cfg = cls(**{k: v for k, v in data.items() if k in known})

        for name, env in ENV_OVERRIDES.items():
            value = os.environ.get(env)
            if value:
                setattr(cfg, name, value)

        cfg.sync_workers = int(cfg.sync_workers)
        cfg.request_timeout = float(cfg.request_timeout)
        return cfg.validate()


def build_backend(cfg: BoardConfig, access_token: Optional[str] = None) -> BoardBackend:
    if cfg.backend == "rest":
        return RestBoardBackend(
            cfg.rest_url, cfg.rest_key, access_token=access_token, timeout=cfg.request_timeout
        )
    return SqliteBoardBackend(cfg.db_path)


def build_generator(cfg: BoardConfig) -> Optional[TextGenerator]:
    """Return a generator, or None when no API key is configured."""
    if not cfg.gemini_api_key:
        logger.info("No GEMINI_API_KEY set, AI features disabled")
        return None
    return GeminiGenerator(cfg.gemini_api_key, cfg.gemini_model, timeout=cfg.request_timeout)
