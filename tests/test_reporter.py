"""Tests for step records, evidence capture, scoring and report persistence."""

import json
import os

import pytest

from conftest import FakePage

from usersense.models import STATUS_FRICTION, STATUS_OK, Coordinates, SimulationResult, StepRecord
from usersense.reporter import (
    CLEAR_HIGHLIGHT_SCRIPT,
    DRAW_HIGHLIGHT_SCRIPT,
    ReportStore,
    Reporter,
    friction_score,
    from_json,
    health_score,
    health_status,
    render_html,
    save_html,
    summarize_report,
    to_json,
)


def _result(*records, goal="Sign up"):
    return SimulationResult(
        goal=goal,
        url="https://example.com",
        total_steps=len(records),
        friction_points=sum(1 for r in records if r.is_friction),
        report=tuple(records),
        persona="The First-Timer",
        date="2025-01-31",
    )


def _friction(step, issue="Confusing label"):
    return StepRecord(step=step, status=STATUS_FRICTION, issue=issue, impact="confusion", suggestion="Rename it")


def _ok(step):
    return StepRecord(step=step, status=STATUS_OK)


def test_steps_are_numbered_without_gaps(tmp_path):
    reporter = Reporter(tmp_path)

    first = reporter.add(STATUS_FRICTION, "a")
    second = reporter.add(STATUS_OK)
    third = reporter.add(STATUS_FRICTION, "b")

    assert [first.step, second.step, third.step] == [1, 2, 3]
    assert reporter.step_counter == 3
    assert len(reporter.records) == 3


def test_unknown_status_is_rejected(tmp_path):
    reporter = Reporter(tmp_path)
    with pytest.raises(ValueError):
        reporter.add("warning", "not a real status")
    assert reporter.step_counter == 0


def test_evidence_only_for_friction_with_coordinates(tmp_path):
    page = FakePage()
    reporter = Reporter(tmp_path, page=page)

    located = reporter.add(STATUS_FRICTION, "Popup", coordinates=Coordinates(300, 200, 120, 60))
    unlocated = reporter.add(STATUS_FRICTION, "Jargon")
    fine = reporter.add(STATUS_OK, coordinates=Coordinates(10, 10))

    assert located.screenshot.startswith("step-1-")
    assert (tmp_path / located.screenshot).exists()
    assert unlocated.screenshot is None
    assert fine.screenshot is None
    scripts = [script for script, _ in page.evaluated]
    assert scripts.count(DRAW_HIGHLIGHT_SCRIPT) == 1
    assert scripts.count(CLEAR_HIGHLIGHT_SCRIPT) == 1
    assert page.highlight_calls[0]["x"] == 300


def test_failed_evidence_capture_still_records_step(tmp_path):
    page = FakePage()
    page.screenshot_error = RuntimeError("target closed")
    reporter = Reporter(tmp_path, page=page)

    record = reporter.add(STATUS_FRICTION, "Popup", coordinates=Coordinates(300, 200))

    assert record.screenshot is None
    assert record.step == 1
    # highlight is removed even though the screenshot failed
    assert [script for script, _ in page.evaluated].count(CLEAR_HIGHLIGHT_SCRIPT) == 1


def test_records_carry_page_metrics(tmp_path):
    record = Reporter(tmp_path, page=FakePage()).add(STATUS_OK)
    assert record.metrics.fcp == 95.0
    assert record.metrics.to_dict()["domLoaded"] == 120.0


def test_reporter_result_counts_friction(tmp_path):
    reporter = Reporter(tmp_path)
    reporter.add(STATUS_FRICTION, "a")
    reporter.add(STATUS_OK)

    result = reporter.result("Sign up", "https://example.com", "Default")

    assert result.total_steps == 2
    assert result.friction_points == 1
    assert result.report[0].issue == "a"


def test_friction_score_for_empty_report_is_zero():
    assert friction_score(_result()) == 0


def test_friction_score_adds_critical_penalty():
    result = _result(_friction(1, "Page load took 3200ms"), _friction(2), _ok(3), _ok(4))
    assert friction_score(result) == 65


def test_friction_score_is_capped():
    result = _result(
        _friction(1, "Missing loading state: no loading feedback during 4000ms wait"),
        _friction(2, "PAGE LOAD TOOK 5000ms"),
        _friction(3, "Missing Loading State again"),
    )
    assert friction_score(result) == 100


def test_health_score_and_banding():
    assert health_score(0) == 100
    assert health_score(3) == 64
    assert health_score(20) == 0
    assert health_status(86) == "Healthy"
    assert health_status(85) == "Warning"
    assert health_status(61) == "Warning"
    assert health_status(60) == "Critical"


def test_json_round_trip():
    result = _result(
        StepRecord(step=1, status=STATUS_FRICTION, issue="AI Insight: Popup", screenshot="step-1-1.png",
                   coordinates=Coordinates(10.0, 20.0, 30.0, 40.0)),
        _ok(2),
    )

    text = to_json(result)
    data = json.loads(text)

    assert data["totalSteps"] == 2
    assert data["frictionPoints"] == 1
    assert data["score"] == 88
    assert data["frictionScore"] == 50
    assert from_json(text) == result


def test_summary_defaults():
    summary = summarize_report(
        {
            "url": "https://example.com",
            "frictionPoints": 2,
            "totalSteps": 5,
            "report": [{"step": 1, "status": "friction_detected", "screenshot": "/tmp/reports/step-1-99.png"}],
        },
        report_id="report-1.json",
        fallback_date="2025-02-01",
    )

    assert summary["goal"] == "Deep Audit"
    assert summary["score"] == 76
    assert summary["status"] == "Warning"
    assert summary["date"] == "2025-02-01"
    assert summary["journey"][0]["screenshot"] == "step-1-99.png"


def test_store_lists_newest_first_and_skips_broken_files(tmp_path):
    older = tmp_path / "report-1.json"
    newer = tmp_path / "report-2.json"
    older.write_text(json.dumps({"url": "https://old.example", "frictionPoints": 0, "totalSteps": 1}))
    newer.write_text(json.dumps({"url": "https://new.example", "frictionPoints": 5, "score": 40}))
    (tmp_path / "report-3.json").write_text("{not json")
    os.utime(older, (1_000_000, 1_000_000))
    os.utime(newer, (2_000_000, 2_000_000))

    summaries = ReportStore(tmp_path).summaries()

    assert [s["url"] for s in summaries] == ["https://new.example", "https://old.example"]
    assert summaries[0]["score"] == 40
    assert summaries[0]["status"] == "Critical"
    assert summaries[1]["score"] == 100
    assert summaries[1]["date"]


def test_store_save_writes_scored_report(tmp_path):
    path = ReportStore(tmp_path / "reports").save(_result(_friction(1)))

    data = json.loads(path.read_text(encoding="utf-8"))
    assert path.name.startswith("report-")
    assert data["score"] == 88
    assert data["frictionScore"] == 100


def test_missing_store_directory_is_empty(tmp_path):
    assert ReportStore(tmp_path / "nothing-here").summaries() == []


def test_html_report(tmp_path):
    result = _result(
        StepRecord(step=1, status=STATUS_FRICTION, issue="<b>Popup</b>", impact="blocks", suggestion="Delay",
                   screenshot="step-1-5.png"),
        _ok(2),
    )

    page = render_html(result)
    path = save_html(result, tmp_path)

    assert "&lt;b&gt;Popup&lt;/b&gt;" in page
    assert 'src="step-1-5.png"' in page
    assert 'class="score critical">50<' in page
    assert path.read_text(encoding="utf-8").startswith("<!DOCTYPE html>")


def test_stored_zero_score_is_recomputed():
    summary = summarize_report({"url": "https://example.com", "frictionPoints": 1, "score": 0})
    assert summary["score"] == 88
    assert summary["status"] == "Healthy"
