from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Core
    db_path: str = os.getenv("GRR_DB_PATH", "grr.db")
    service_name: str = os.getenv("GRR_SERVICE_NAME", "grr")

    # Logging
    log_level: str = os.getenv("GRR_LOG_LEVEL", "INFO")
    log_json: bool = _env_bool("GRR_LOG_JSON", False)

    # Rollouts: percent of traffic moved to a new revision per pass.
    rollout_step_percent: int = _env_int("GRR_ROLLOUT_STEP_PERCENT", 25)


settings = Settings()
