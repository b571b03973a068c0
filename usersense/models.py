from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Tuple

# all coordinates exchanged with the vision model live in this logical viewport
VIEWPORT_WIDTH = 1280
VIEWPORT_HEIGHT = 800

STATUS_OK = "ok"
STATUS_FRICTION = "friction_detected"
STATUSES = (STATUS_OK, STATUS_FRICTION)


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


@dataclass(frozen=True)
class Coordinates:
    """Center point (and optional size) of a region on the 1280x800 viewport."""

    x: float
    y: float
    width: Optional[float] = None
    height: Optional[float] = None

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["Coordinates"]:
        if not isinstance(payload, dict):
            return None
        x = _as_number(payload.get("x"))
        y = _as_number(payload.get("y"))
        if x is None or y is None:
            return None
        width = _as_number(payload.get("width"))
        height = _as_number(payload.get("height"))
        return cls(
            x=min(max(x, 0.0), float(VIEWPORT_WIDTH)),
            y=min(max(y, 0.0), float(VIEWPORT_HEIGHT)),
            width=width if width and width > 0 else None,
            height=height if height and height > 0 else None,
        )

    def scaled_to(self, viewport: Optional[Dict[str, Any]]) -> Tuple[float, float]:
        """Map the logical point onto the real viewport (identity when it is 1280x800)."""
        if not viewport:
            return self.x, self.y
        width = _as_number(viewport.get("width")) or VIEWPORT_WIDTH
        height = _as_number(viewport.get("height")) or VIEWPORT_HEIGHT
        return self.x * width / VIEWPORT_WIDTH, self.y * height / VIEWPORT_HEIGHT

    def to_dict(self) -> Dict[str, float]:
        data = {"x": self.x, "y": self.y}
        if self.width is not None:
            data["width"] = self.width
        if self.height is not None:
            data["height"] = self.height
        return data


@dataclass(frozen=True)
class PerformanceMetrics:
    dom_loaded: float = 0.0
    load_time: float = 0.0
    fcp: float = 0.0

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["PerformanceMetrics"]:
        if not isinstance(payload, dict):
            return None
        return cls(
            dom_loaded=_as_number(payload.get("domLoaded")) or 0.0,
            load_time=_as_number(payload.get("loadTime")) or 0.0,
            fcp=_as_number(payload.get("fcp")) or 0.0,
        )

    def to_dict(self) -> Dict[str, float]:
        return {"domLoaded": self.dom_loaded, "loadTime": self.load_time, "fcp": self.fcp}


@dataclass(frozen=True)
class StepRecord:
    step: int
    status: str
    issue: str = ""
    impact: str = ""
    suggestion: str = ""
    screenshot: Optional[str] = None
    metrics: Optional[PerformanceMetrics] = None
    coordinates: Optional[Coordinates] = None

    @property
    def is_friction(self) -> bool:
        return self.status == STATUS_FRICTION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "status": self.status,
            "issue": self.issue,
            "impact": self.impact,
            "suggestion": self.suggestion,
            "screenshot": self.screenshot,
            "metrics": self.metrics.to_dict() if self.metrics else None,
            "coordinates": self.coordinates.to_dict() if self.coordinates else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StepRecord":
        status = data.get("status")
        if status not in STATUSES:
            raise ValueError(f"unknown step status: {status!r}")
        return cls(
            step=int(data["step"]),
            status=status,
            issue=str(data.get("issue") or ""),
            impact=str(data.get("impact") or ""),
            suggestion=str(data.get("suggestion") or ""),
            screenshot=data.get("screenshot") or None,
            metrics=PerformanceMetrics.from_payload(data.get("metrics")),
            coordinates=Coordinates.from_payload(data.get("coordinates")),
        )


@dataclass(frozen=True)
class SimulationResult:
    goal: str
    url: str
    total_steps: int
    friction_points: int
    report: Tuple[StepRecord, ...]
    persona: str
    date: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "goal": self.goal,
            "persona": self.persona,
            "totalSteps": self.total_steps,
            "frictionPoints": self.friction_points,
            "date": self.date,
            "report": [record.to_dict() for record in self.report],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SimulationResult":
        report = tuple(StepRecord.from_dict(item) for item in data.get("report") or [])
        return cls(
            goal=str(data.get("goal") or ""),
            url=str(data.get("url") or ""),
            total_steps=int(data.get("totalSteps") or len(report)),
            friction_points=int(
                data.get("frictionPoints") or sum(1 for record in report if record.is_friction)
            ),
            report=report,
            persona=str(data.get("persona") or "Default"),
            date=str(data.get("date") or ""),
        )


@dataclass(frozen=True)
class DetectionResult:
    detected: bool
    issue: str = ""
    impact: str = ""
    suggestion: str = ""
    count: Optional[int] = None
    measurement: Optional[float] = None


NOT_DETECTED = DetectionResult(detected=False)


@dataclass(frozen=True)
class Finding:
    issue: str
    impact: str
    suggestion: str
    coordinates: Optional[Coordinates] = None


@dataclass(frozen=True)
class ActionDecision:
    action_name: str
    reason: str
    confidence: float
    coordinates: Optional[Coordinates] = None
    selector_hint: str = ""


@dataclass(frozen=True)
class GoalCheck:
    completed: bool
    reason: str


ANALYSIS_ERROR = GoalCheck(completed=False, reason="analysis error")


@dataclass
class PageMetadata:
    title: str = ""
    url: str = ""
    viewport: Dict[str, int] = field(
        default_factory=lambda: {"width": VIEWPORT_WIDTH, "height": VIEWPORT_HEIGHT}
    )
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"title": self.title, "url": self.url, "viewport": self.viewport}
        data.update(self.extra)
        return data


def count_friction(records: Iterable[StepRecord]) -> int:
    return sum(1 for record in records if record.is_friction)
