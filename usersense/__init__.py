"""Simulate first-time users on a web page and report where they hit friction."""

from usersense.agent import Session, check_page, run_goal
from usersense.analyzer import VisionAnalyzer
from usersense.config import Settings, configure_logging
from usersense.errors import SessionError
from usersense.models import SimulationResult, StepRecord
from usersense.personas import Persona
from usersense.reporter import ReportStore, friction_score, health_score, health_status

__all__ = [
    "Persona",
    "ReportStore",
    "Session",
    "SessionError",
    "Settings",
    "SimulationResult",
    "StepRecord",
    "VisionAnalyzer",
    "check_page",
    "configure_logging",
    "friction_score",
    "health_score",
    "health_status",
    "run_goal",
]
