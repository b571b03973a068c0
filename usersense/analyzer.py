# analyzer.py
"""
Vision Analysis Gateway: the only place that talks to the multimodal model.

Each operation builds a persona-conditioned instruction, sends one screenshot,
and validates the reply. Failures of any kind (network, timeout, unparsable
text) come back as an empty / null / negative answer, never as an exception.
"""

from __future__ import annotations

import json
import textwrap
from typing import Any, Dict, List, Optional, Union

from loguru import logger

from usersense.config import Settings
from usersense.errors import VisionError
from usersense.models import (
    ANALYSIS_ERROR,
    VIEWPORT_HEIGHT,
    VIEWPORT_WIDTH,
    ActionDecision,
    Finding,
    GoalCheck,
)
from usersense.parsing import (
    MAX_FINDINGS,
    parse_action_decision,
    parse_findings,
    parse_goal_check,
    parse_json_payload,
)
from usersense.personas import Persona, audit_lens, navigation_behavior
from usersense.vision import OpenAIVisionClient, VisionClient

VIEWPORT_LABEL = f"{VIEWPORT_WIDTH}x{VIEWPORT_HEIGHT}"
MIN_FINDINGS = 3


def _serialize(obj: Any, limit: int = 1200) -> str:
    if not obj:
        return "{}"
    try:
        payload = json.dumps(obj, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        payload = str(obj)
    if len(payload) > limit:
        return payload[:limit] + "... [truncated]"
    return payload


def build_audit_instruction(persona: Persona) -> str:
    return textwrap.dedent(
        f"""
        You are an expert UX Auditor and Product Experience Intelligence agent simulating the persona: "{persona.label}".
        {audit_lens(persona)}

        Your goal is to "experience" the product through this specific lens and identify friction points.

        Friction points include:
        - Confusing terminology or labels.
        - Visual hierarchy issues (e.g., hard to find primary action).
        - Annoying overlays or popups.
        - Bad contrast or accessibility issues.
        - "Cognitive Load" (too many choices).
        - Misleading UI patterns.

        Return your findings strictly in the following JSON format:
        {{
          "issues": [
            {{
              "issue": "Description of the issue",
              "impact": "How it affects the user (frustration, drop-off, confusion)",
              "suggestion": "How to fix it",
              "coordinates": {{ "x": 100, "y": 200, "width": 50, "height": 30 }}
            }}
          ]
        }}
        Use null for "coordinates" when you cannot locate the issue.
        """
    ).strip()


def build_navigation_instruction(persona: Persona) -> str:
    return textwrap.dedent(
        f"""
        You are a real user simulating the persona: "{persona.label}".
        {navigation_behavior(persona)}

        Identify the single most important action (button/link) you would click to advance your journey toward the goal.

        Return ONLY a JSON object:
        {{
          "actionName": "Name of the button",
          "reason": "Why a user would click this to reach the goal",
          "selector_hint": "Text on the button or its role",
          "coordinates": {{ "x": 400, "y": 300 }},
          "confidence": 0.95
        }}
        Coordinates are the center point on a {VIEWPORT_LABEL} screen. Confidence is a number from 0.0 to 1.0.
        """
    ).strip()


GOAL_CHECK_INSTRUCTION = textwrap.dedent(
    """
    Determine if the user's goal has been reached based on the screenshot.

    Return ONLY a JSON object:
    {
      "completed": true,
      "reason": "Why you think it's completed or not"
    }
    """
).strip()


class VisionAnalyzer:
    def __init__(self, client: Optional[VisionClient] = None, call_timeout: float = 30.0):
        self.client = client or OpenAIVisionClient()
        self.call_timeout = call_timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "VisionAnalyzer":
        return cls(OpenAIVisionClient(settings.models), call_timeout=settings.call_timeout)

    def _timeout(self, remaining: Optional[float]) -> float:
        if remaining is None:
            return self.call_timeout
        return max(0.0, min(self.call_timeout, remaining))

    def _ask(self, operation: str, system: str, prompt: str, screenshot: bytes, remaining: Optional[float]) -> Optional[Any]:
        try:
            raw = self.client.complete(system, prompt, screenshot, self._timeout(remaining))
        except VisionError as exc:
            logger.warning(f"⚠️ Vision {operation} failed: {exc}")
            return None
        except Exception as exc:
            logger.warning(f"⚠️ Vision {operation} failed unexpectedly: {exc}")
            return None
        parsed = parse_json_payload(raw, expect="any")
        if not parsed.ok:
            logger.warning(f"⚠️ Vision {operation} returned unparsable content: {parsed.error}")
            return None
        return parsed.value

    def audit_friction(
        self,
        screenshot: bytes,
        url: str,
        persona: Union[Persona, str, None] = Persona.DEFAULT,
        metadata: Optional[Dict[str, Any]] = None,
        *,
        remaining: Optional[float] = None,
    ) -> List[Finding]:
        persona = Persona.parse(persona)
        prompt = textwrap.dedent(
            f"""
            Please analyze the provided screenshot of the page: {url}.
            Context metadata: {_serialize(metadata)}.
            Identify the top {MIN_FINDINGS}-{MAX_FINDINGS} friction points. For each, provide the estimated pixel coordinates (center point, width/height) of where the issue is visually located on the {VIEWPORT_LABEL} screenshot.
            """
        ).strip()
        payload = self._ask("friction audit", build_audit_instruction(persona), prompt, screenshot, remaining)
        if payload is None:
            return []
        findings = parse_findings(payload)
        logger.info(f"🔎 Vision audit found {len(findings)} friction points")
        return findings

    def identify_next_action(
        self,
        screenshot: bytes,
        goal: str,
        persona: Union[Persona, str, None] = Persona.DEFAULT,
        page_metadata: Optional[Dict[str, Any]] = None,
        *,
        remaining: Optional[float] = None,
    ) -> Optional[ActionDecision]:
        persona = Persona.parse(persona)
        page_metadata = page_metadata or {}
        goal_line = f"Current goal: {goal}." if goal else "No explicit goal: explore the product like a first visit."
        prompt = textwrap.dedent(
            f"""
            {goal_line} Page: {page_metadata.get("url", "Unknown")}. Viewport: {VIEWPORT_LABEL}.
            Page metadata: {_serialize(page_metadata)}.
            What is the single most important action to take to get closer to the goal?
            """
        ).strip()
        payload = self._ask("next action", build_navigation_instruction(persona), prompt, screenshot, remaining)
        if payload is None:
            return None
        decision = parse_action_decision(payload)
        if decision is None:
            logger.warning("⚠️ Vision next action did not match the expected shape")
        return decision

    def check_goal_completion(
        self,
        screenshot: bytes,
        goal: str,
        url: str,
        *,
        remaining: Optional[float] = None,
    ) -> GoalCheck:
        prompt = f"Target goal: {goal}. Current URL: {url}. Is the goal reached?"
        payload = self._ask("goal check", GOAL_CHECK_INSTRUCTION, prompt, screenshot, remaining)
        if payload is None:
            return ANALYSIS_ERROR
        check = parse_goal_check(payload)
        if check is None:
            logger.warning("⚠️ Vision goal check did not match the expected shape")
            return ANALYSIS_ERROR
        return check
