"""
Report aggregation: numbered step records, evidence screenshots, scoring,
JSON persistence and the summaries the dashboard listing consumes.
"""

from __future__ import annotations

import html
import json
import time
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from loguru import logger

from usersense.models import (
    STATUS_FRICTION,
    STATUS_OK,
    Coordinates,
    PerformanceMetrics,
    SimulationResult,
    StepRecord,
    count_friction,
)

HIGHLIGHT_ID = "usersense-highlight"
HIGHLIGHT_BORDER_COLOR = "#EF4444"
CRITICAL_ISSUE_MARKERS = ("load took", "missing loading state")
CRITICAL_ISSUE_PENALTY = 15
LEGACY_PENALTY_PER_FRICTION = 12

METRICS_SCRIPT = """
() => {
    const perf = window.performance.getEntriesByType('navigation')[0];
    const paint = window.performance.getEntriesByName('first-contentful-paint')[0];
    return {
        domLoaded: perf ? perf.domContentLoadedEventEnd : 0,
        loadTime: perf ? perf.loadEventEnd : 0,
        fcp: paint ? paint.startTime : 0,
    };
}
"""

DRAW_HIGHLIGHT_SCRIPT = """
(c) => {
    const width = c.width || 80;
    const height = c.height || 80;
    const div = document.createElement('div');
    div.id = c.id;
    div.style.position = 'fixed';
    div.style.left = `${c.x - width / 2}px`;
    div.style.top = `${c.y - height / 2}px`;
    div.style.width = `${width}px`;
    div.style.height = `${height}px`;
    div.style.border = `4px solid ${c.color}`;
    div.style.backgroundColor = 'rgba(239, 68, 68, 0.15)';
    div.style.borderRadius = '8px';
    div.style.zIndex = '2147483647';
    div.style.pointerEvents = 'none';
    div.style.boxShadow = '0 0 20px rgba(239, 68, 68, 0.6)';
    document.body.appendChild(div);
}
"""

CLEAR_HIGHLIGHT_SCRIPT = """
(id) => document.querySelectorAll('#' + id).forEach((node) => node.remove())
"""


class Reporter:
    """
    Owns the ordered step records of one session.

    Step numbers are handed out here and nowhere else, so they stay gapless
    regardless of which detector or vision call produced the finding.
    """

    def __init__(self, evidence_dir: Path, page=None):
        self.evidence_dir = Path(evidence_dir)
        self.page = page
        self._records: List[StepRecord] = []
        self._step_counter = 0

    @property
    def step_counter(self) -> int:
        return self._step_counter

    @property
    def records(self) -> Tuple[StepRecord, ...]:
        return tuple(self._records)

    def add(
        self,
        status: str,
        issue: str = "",
        impact: str = "",
        suggestion: str = "",
        coordinates: Optional[Coordinates] = None,
    ) -> StepRecord:
        if status not in (STATUS_OK, STATUS_FRICTION):
            raise ValueError(f"unknown step status: {status!r}")
        self._step_counter += 1
        step = self._step_counter

        screenshot = None
        if status == STATUS_FRICTION and coordinates is not None:
            screenshot = self._capture_evidence(step, coordinates)

        record = StepRecord(
            step=step,
            status=status,
            issue=issue,
            impact=impact,
            suggestion=suggestion,
            screenshot=screenshot,
            metrics=self._read_metrics(),
            coordinates=coordinates,
        )
        self._records.append(record)
        icon = "⚠️" if status == STATUS_FRICTION else "✅"
        logger.debug(f"    {icon} Step {step}: {issue or status}")
        return record

    def _capture_evidence(self, step: int, coordinates: Coordinates) -> Optional[str]:
        if self.page is None:
            return None
        filename = f"step-{step}-{int(time.time() * 1000)}.png"
        highlighted = False
        try:
            self.evidence_dir.mkdir(parents=True, exist_ok=True)
            x, y = coordinates.scaled_to(self.page.viewport_size)
            payload = {
                "id": HIGHLIGHT_ID,
                "color": HIGHLIGHT_BORDER_COLOR,
                "x": x,
                "y": y,
                "width": coordinates.width,
                "height": coordinates.height,
            }
            self.page.evaluate(DRAW_HIGHLIGHT_SCRIPT, payload)
            highlighted = True
            self.page.screenshot(path=str(self.evidence_dir / filename))
            logger.debug(f"    📸 Evidence saved: {filename}")
            return filename
        except Exception as exc:
            logger.warning(f"  • Evidence capture failed for step {step}: {exc}")
            return None
        finally:
            if highlighted:
                try:
                    self.page.evaluate(CLEAR_HIGHLIGHT_SCRIPT, HIGHLIGHT_ID)
                except Exception:
                    pass

    def _read_metrics(self) -> Optional[PerformanceMetrics]:
        if self.page is None:
            return None
        try:
            return PerformanceMetrics.from_payload(self.page.evaluate(METRICS_SCRIPT))
        except Exception:
            return None

    def result(self, goal: str, url: str, persona: str, completed_on: Optional[date] = None) -> SimulationResult:
        records = self.records
        return SimulationResult(
            goal=goal,
            url=url,
            total_steps=self._step_counter,
            friction_points=count_friction(records),
            report=records,
            persona=persona,
            date=(completed_on or datetime.now(timezone.utc).date()).isoformat(),
        )


#### scoring ####

def is_critical(record: StepRecord) -> bool:
    issue = record.issue.lower()
    return any(marker in issue for marker in CRITICAL_ISSUE_MARKERS)


def friction_score(result: SimulationResult) -> int:
    """Primary score: 0 is frictionless, 100 is critical. Zero steps scores 0."""
    if result.total_steps <= 0:
        return 0
    critical = sum(1 for record in result.report if is_critical(record))
    ratio = result.friction_points / result.total_steps * 100
    return max(0, min(100, round(ratio + CRITICAL_ISSUE_PENALTY * critical)))


def health_score(friction_points: int) -> int:
    """Legacy display score (100 is healthy) used when only the friction count is known."""
    return max(0, min(100, 100 - LEGACY_PENALTY_PER_FRICTION * max(0, friction_points)))


def health_status(score: int) -> str:
    if score > 85:
        return "Healthy"
    if score > 60:
        return "Warning"
    return "Critical"


#### persistence ####

def to_json(result: SimulationResult, include_score: bool = True) -> str:
    data = result.to_dict()
    if include_score:
        data["score"] = health_score(result.friction_points)
        data["frictionScore"] = friction_score(result)
    return json.dumps(data, indent=2, ensure_ascii=False)


def from_json(text: str) -> SimulationResult:
    return SimulationResult.from_dict(json.loads(text))


def summarize_report(record: Dict[str, Any], report_id: str = "", fallback_date: str = "") -> Dict[str, Any]:
    friction = int(record.get("frictionPoints") or 0)
    score = record.get("score")
    # a stored 0 counts as missing
    if not isinstance(score, (int, float)) or isinstance(score, bool) or not score:
        score = health_score(friction)
    journey = []
    for step in record.get("report") or []:
        if not isinstance(step, dict):
            continue
        entry = dict(step)
        if entry.get("screenshot"):
            entry["screenshot"] = Path(str(entry["screenshot"])).name
        journey.append(entry)
    return {
        "id": report_id,
        "url": record.get("url", ""),
        "goal": record.get("goal") or "Deep Audit",
        "score": int(score),
        "date": record.get("date") or fallback_date,
        "friction": friction,
        "steps": int(record.get("totalSteps") or 0),
        "status": health_status(int(score)),
        "journey": journey,
    }


def summarize_reports(records: Iterable[Tuple[str, Dict[str, Any]]]) -> List[Dict[str, Any]]:
    return [summarize_report(record, report_id) for report_id, record in records]


class ReportStore:
    """JSON reports and evidence screenshots side by side in one directory."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def save(self, result: SimulationResult) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.directory / f"report-{int(time.time() * 1000)}.json"
        path.write_text(to_json(result), encoding="utf-8")
        logger.info(f"🗂️ Report saved: {path}")
        return path

    def load_all(self) -> List[Tuple[str, Dict[str, Any]]]:
        if not self.directory.exists():
            return []
        files = sorted(self.directory.glob("*.json"), key=lambda p: p.stat().st_mtime, reverse=True)
        loaded: List[Tuple[str, Dict[str, Any]]] = []
        for path in files:
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                logger.warning(f"  • Skipping unreadable report {path.name}: {exc}")
                continue
            if isinstance(data, dict):
                if not data.get("date"):
                    data["date"] = datetime.fromtimestamp(path.stat().st_mtime, timezone.utc).date().isoformat()
                loaded.append((path.name, data))
        return loaded

    def summaries(self) -> List[Dict[str, Any]]:
        return summarize_reports(self.load_all())


#### html ####

def _score_class(score: int) -> str:
    if score < 20:
        return "good"
    if score < 50:
        return "warning"
    return "critical"


def _render_step(record: StepRecord) -> str:
    if record.is_friction:
        evidence = ""
        if record.screenshot:
            evidence = (
                '<div class="shot"><img src="%s" alt="Friction evidence"></div>'
                % html.escape(Path(record.screenshot).name)
            )
        body = (
            f"<h3>{html.escape(record.issue)}</h3>"
            f"<p><strong>Impact:</strong> {html.escape(record.impact)}</p>"
            f"<p><strong>Fix:</strong> {html.escape(record.suggestion)}</p>{evidence}"
        )
    else:
        body = f"<p>{html.escape(record.issue or 'User flow proceeded without significant friction.')}</p>"
    metrics = ""
    if record.metrics and record.metrics.fcp:
        metrics = f'<div class="metric">FCP: {round(record.metrics.fcp)}ms</div>'
    label = record.status.replace("_", " ")
    return (
        f'<div class="item {record.status}"><div class="head"><span>Step {record.step}</span>'
        f'<span class="badge {record.status}">{label}</span></div>{body}{metrics}</div>'
    )


def render_html(result: SimulationResult) -> str:
    score = friction_score(result)
    steps = "\n".join(_render_step(record) for record in result.report)
    generated = datetime.now().strftime("%Y-%m-%d %H:%M")
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<title>Friction Report - {html.escape(result.url)}</title>
<style>
body {{ font-family: Inter, sans-serif; background: #FAFAFA; color: #171717; padding: 40px 20px; }}
.container {{ max-width: 800px; margin: 0 auto; }}
.summary {{ display: flex; gap: 40px; align-items: center; background: #fff; border-radius: 16px; padding: 32px; margin-bottom: 40px; }}
.score {{ width: 120px; height: 120px; border-radius: 50%; border: 8px solid #ddd; display: flex; align-items: center; justify-content: center; font-size: 32px; font-weight: 700; }}
.score.good {{ border-color: #10B981; color: #10B981; }}
.score.warning {{ border-color: #F59E0B; color: #F59E0B; }}
.score.critical {{ border-color: #EF4444; color: #EF4444; }}
.item {{ background: #fff; border-radius: 12px; padding: 24px; margin-bottom: 24px; }}
.head {{ display: flex; justify-content: space-between; margin-bottom: 16px; }}
.badge {{ font-size: 12px; text-transform: uppercase; padding: 4px 12px; border-radius: 100px; }}
.badge.ok {{ background: rgba(16, 185, 129, 0.1); color: #10B981; }}
.badge.friction_detected {{ background: rgba(239, 68, 68, 0.1); color: #EF4444; }}
.shot img {{ width: 100%; margin-top: 20px; }}
.metric {{ font-family: monospace; font-size: 12px; color: #666; margin-top: 16px; }}
</style>
</head>
<body>
<div class="container">
<p>Generated on {generated}</p>
<div class="summary">
<div class="score {_score_class(score)}">{score}</div>
<div>
<h1>Friction Analysis: {html.escape(result.goal)}</h1>
<p>URL: {html.escape(result.url)}</p>
<p>Persona: {html.escape(result.persona)}</p>
<p>Total Steps Simulated: {result.total_steps} | Friction Points: {result.friction_points}</p>
</div>
</div>
{steps}
</div>
</body>
</html>
"""


def save_html(result: SimulationResult, directory: Path) -> Path:
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / "index.html"
    path.write_text(render_html(result), encoding="utf-8")
    logger.info(f"🗂️ HTML report generated: {path}")
    return path
