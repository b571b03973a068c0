# main.py
import os
import sys

from loguru import logger

from usersense.agent import run_goal
from usersense.config import DEFAULT_GOAL, DEFAULT_MAX_STEPS, Settings, configure_logging
from usersense.errors import SessionError
from usersense.reporter import ReportStore, friction_score, health_score, health_status, save_html


def _resolve_env(name: str, default: str = "") -> str:
    value = os.environ.get(name, "").strip()
    return value or default


def main() -> int:
    settings = Settings.from_env()
    configure_logging(settings=settings)

    # 👇 set USERSENSE_URL / USERSENSE_GOAL / USERSENSE_PERSONA to scan something else
    url = _resolve_env("USERSENSE_URL")
    if not url:
        logger.error("❌ USERSENSE_URL is required")
        return 2
    goal = _resolve_env("USERSENSE_GOAL", DEFAULT_GOAL)
    persona = _resolve_env("USERSENSE_PERSONA", "Default")
    try:
        max_steps = int(_resolve_env("USERSENSE_MAX_STEPS", str(DEFAULT_MAX_STEPS)))
    except ValueError:
        max_steps = DEFAULT_MAX_STEPS
    if max_steps < 1:
        logger.warning(f"⚠️ USERSENSE_MAX_STEPS must be at least 1, using {DEFAULT_MAX_STEPS}.")
        max_steps = DEFAULT_MAX_STEPS

    try:
        result = run_goal(url, goal, persona, max_steps, settings=settings)
    except SessionError as exc:
        logger.error(f"❌ Scan failed: {exc.reason}")
        return 1

    store = ReportStore(settings.reports_dir)
    store.save(result)
    save_html(result, settings.reports_dir)

    score = health_score(result.friction_points)
    logger.info(
        f"📊 Friction score {friction_score(result)}/100, health {score} ({health_status(score)}) "
        f"after {result.total_steps} steps"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
