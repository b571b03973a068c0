"""Runtime settings resolved from the environment (and an optional ``.env``)."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv
from loguru import logger

load_dotenv()

DEFAULT_MODELS = ("gpt-4o-mini", "gpt-4o")
DEFAULT_GOAL = "Perform a deep experience audit and find friction"
DEFAULT_MAX_STEPS = 3
TRUTHY = {"1", "true", "yes", "on", "debug"}
FALSY = {"0", "false", "no", "off"}


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"⚠️ Unrecognized {name} value '{raw}', using {default}.")
        return default
    if value <= 0:
        logger.warning(f"⚠️ {name} must be positive, using {default}.")
        return default
    return value


def _env_int(name: str, default: int) -> int:
    return int(_env_float(name, float(default)))


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in TRUTHY:
        return True
    if normalized in FALSY:
        return False
    logger.warning(f"⚠️ Unrecognized {name} value '{raw}', defaulting to {default}.")
    return default


def _env_models(name: str) -> Tuple[str, ...]:
    raw = os.environ.get(name, "")
    models = tuple(item.strip() for item in raw.split(",") if item.strip())
    return models or DEFAULT_MODELS


@dataclass(frozen=True)
class Settings:
    models: Tuple[str, ...] = DEFAULT_MODELS
    call_timeout: float = 30.0  # seconds per vision call
    run_budget: float = 300.0  # seconds for a whole run
    settle_timeout_ms: int = 5000
    animation_delay_ms: int = 1500
    navigation_timeout_ms: int = 60000
    headless: bool = True
    reports_dir: Path = field(default_factory=lambda: Path("usersense-reports"))
    debug: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            models=_env_models("USERSENSE_MODELS"),
            call_timeout=_env_float("USERSENSE_CALL_TIMEOUT", 30.0),
            run_budget=_env_float("USERSENSE_RUN_BUDGET", 300.0),
            settle_timeout_ms=_env_int("USERSENSE_SETTLE_TIMEOUT_MS", 5000),
            animation_delay_ms=_env_int("USERSENSE_ANIMATION_DELAY_MS", 1500),
            navigation_timeout_ms=_env_int("USERSENSE_NAV_TIMEOUT_MS", 60000),
            headless=_env_bool("USERSENSE_HEADLESS", True),
            reports_dir=Path(os.environ.get("USERSENSE_REPORTS_DIR") or "usersense-reports"),
            debug=_env_bool("USERSENSE_DEBUG", False),
        )


def configure_logging(level: Optional[str] = None, settings: Optional[Settings] = None) -> None:
    """Install a single stderr sink. ``USERSENSE_DEBUG`` switches the default to DEBUG."""
    if level is None:
        debug = settings.debug if settings else _env_bool("USERSENSE_DEBUG", False)
        level = "DEBUG" if debug else "INFO"
    logger.remove()
    logger.add(sys.stderr, level=level, format="<green>{time:HH:mm:ss}</green> | <level>{level: <7}</level> | {message}")
