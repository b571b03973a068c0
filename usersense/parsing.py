"""Parse-and-validate step for free-form vision model responses."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, List, Optional

from usersense.models import ActionDecision, Coordinates, Finding, GoalCheck

MAX_FINDINGS = 5

_FENCE_PATTERN = re.compile(r"```(?:json)?|```", flags=re.IGNORECASE)


@dataclass(frozen=True)
class ParseResult:
    value: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _strip_fences(text: str) -> str:
    return _FENCE_PATTERN.sub("", text).strip()


def parse_json_payload(text: Optional[str], expect: str = "any") -> ParseResult:
    """
    Pull the first JSON value out of ``text``, tolerating markdown fences and prose
    around it. ``expect`` is "object", "array" or "any". Never raises.
    """
    if not text or not text.strip():
        return ParseResult(error="empty response")
    cleaned = _strip_fences(text)

    try:
        value = json.loads(cleaned)
    except ValueError:
        value = None
        openers = {"object": "{", "array": "["}.get(expect, "{[")
        decoder = json.JSONDecoder()
        for index, char in enumerate(cleaned):
            if char not in openers:
                continue
            try:
                value, _ = decoder.raw_decode(cleaned[index:])
                break
            except ValueError:
                continue
        if value is None:
            return ParseResult(error="no JSON value found in response")

    if expect == "object" and not isinstance(value, dict):
        return ParseResult(error=f"expected a JSON object, got {type(value).__name__}")
    if expect == "array" and not isinstance(value, list):
        return ParseResult(error=f"expected a JSON array, got {type(value).__name__}")
    return ParseResult(value=value)


def _clean_text(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return " ".join(value.split())


def _clamp_confidence(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return None
    if confidence != confidence:  # NaN
        return None
    return max(0.0, min(1.0, confidence))


def parse_findings(payload: Any, limit: int = MAX_FINDINGS) -> List[Finding]:
    """Accept ``{"issues": [...]}`` or a bare list; malformed entries are dropped."""
    if isinstance(payload, dict):
        entries = payload.get("issues", payload.get("findings"))
    else:
        entries = payload
    if not isinstance(entries, list):
        return []

    findings: List[Finding] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        issue = _clean_text(entry.get("issue"))
        if not issue:
            continue
        findings.append(
            Finding(
                issue=issue,
                impact=_clean_text(entry.get("impact")),
                suggestion=_clean_text(entry.get("suggestion")),
                coordinates=Coordinates.from_payload(entry.get("coordinates")),
            )
        )
        if len(findings) >= limit:
            break
    return findings


def parse_action_decision(payload: Any) -> Optional[ActionDecision]:
    if not isinstance(payload, dict):
        return None
    confidence = _clamp_confidence(payload.get("confidence"))
    if confidence is None:
        return None
    return ActionDecision(
        action_name=_clean_text(payload.get("actionName") or payload.get("action_name")),
        reason=_clean_text(payload.get("reason")),
        confidence=confidence,
        coordinates=Coordinates.from_payload(payload.get("coordinates")),
        selector_hint=_clean_text(payload.get("selector_hint")),
    )


def parse_goal_check(payload: Any) -> Optional[GoalCheck]:
    if not isinstance(payload, dict):
        return None
    completed = payload.get("completed")
    if isinstance(completed, str):
        lowered = completed.strip().lower()
        if lowered not in ("true", "false"):
            return None
        completed = lowered == "true"
    if not isinstance(completed, bool):
        return None
    return GoalCheck(completed=completed, reason=_clean_text(payload.get("reason")))
