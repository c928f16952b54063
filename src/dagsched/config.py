from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dagsched.domain.models import ResourceSet, parse_quantity


def _get_env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"Environment variable {name} must be an int, got: {raw!r}") from e
    return value


def _get_env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw


def _get_env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Environment variable {name} must be a boolean, got: {raw!r}")


def _get_env_quantity(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = parse_quantity(raw)
    except ValueError as e:
        raise ValueError(f"Environment variable {name} must be a quantity, got: {raw!r}") from e
    if value < 0:
        raise ValueError(f"{name} must be >= 0")
    return value


@dataclass(frozen=True)
class Settings:
    # Capacity
    cores: float
    memory: float
    disk: float

    # Scheduler / execution
    sleep_ms: int
    fail_fast: bool
    max_workers: int
    scripts_dir: Optional[Path]

    # Status display
    report_interval_ms: int

    log_level: str

    @property
    def resources(self) -> ResourceSet:
        return ResourceSet(cores=self.cores, memory=self.memory, disk=self.disk)


def load_settings() -> Settings:
    """
    Loads settings from env vars with sane defaults.

    Env vars:
      - DAGSCHED_CORES (default: inf)
      - DAGSCHED_MEMORY (default: inf; accepts suffixes like 512m, 4g)
      - DAGSCHED_DISK (default: inf; accepts suffixes like 100g, 1t)
      - DAGSCHED_SLEEP_MS (default: 100)
      - DAGSCHED_FAIL_FAST (default: false)
      - DAGSCHED_MAX_WORKERS (default: 8)
      - DAGSCHED_SCRIPTS_DIR (default: unset)
      - DAGSCHED_REPORT_INTERVAL_MS (default: 1000)
      - DAGSCHED_LOG_LEVEL (default: info)
    """
    inf = float("inf")
    cores = _get_env_quantity("DAGSCHED_CORES", inf)
    memory = _get_env_quantity("DAGSCHED_MEMORY", inf)
    disk = _get_env_quantity("DAGSCHED_DISK", inf)

    sleep_ms = _get_env_int("DAGSCHED_SLEEP_MS", 100)
    if sleep_ms <= 0:
        raise ValueError("DAGSCHED_SLEEP_MS must be > 0")

    fail_fast = _get_env_bool("DAGSCHED_FAIL_FAST", False)

    max_workers = _get_env_int("DAGSCHED_MAX_WORKERS", 8)
    if max_workers <= 0:
        raise ValueError("DAGSCHED_MAX_WORKERS must be > 0")

    raw_scripts_dir = _get_env_str("DAGSCHED_SCRIPTS_DIR", "")
    scripts_dir = Path(raw_scripts_dir).expanduser() if raw_scripts_dir else None

    report_interval_ms = _get_env_int("DAGSCHED_REPORT_INTERVAL_MS", 1000)
    if report_interval_ms <= 0:
        raise ValueError("DAGSCHED_REPORT_INTERVAL_MS must be > 0")

    log_level = _get_env_str("DAGSCHED_LOG_LEVEL", "info").lower()

    return Settings(
        cores=cores,
        memory=memory,
        disk=disk,
        sleep_ms=sleep_ms,
        fail_fast=fail_fast,
        max_workers=max_workers,
        scripts_dir=scripts_dir,
        report_interval_ms=report_interval_ms,
        log_level=log_level,
    )
