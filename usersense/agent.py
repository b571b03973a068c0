"""
Goal-execution agent.

A ``Session`` owns one browser page for its whole life and walks an explicit
state machine: audit the page with the heuristic bank, ask the vision model
whether the goal is met, deep-audit the screen, decide the next click, act,
and loop until the goal is reached, the agent hits a dead end, or the step /
time budget runs out. Recoverable problems become report steps; only a
session that cannot be started (or breaks beyond repair) raises.
"""

from __future__ import annotations

import time
from contextlib import AbstractContextManager
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from loguru import logger
from playwright.sync_api import TimeoutError as PWTimeoutError

from usersense.analyzer import VisionAnalyzer
from usersense.browser import open_page
from usersense.config import DEFAULT_GOAL, DEFAULT_MAX_STEPS, Settings
from usersense.detectors import (
    SLOW_RESPONSE_MS,
    ActionTiming,
    PageState,
    RageClickCounter,
    detect_missing_loading_feedback,
    install_rage_click_tracker,
    loader_visible,
    probe_page,
    run_detector_bank,
)
from usersense.errors import SessionError
from usersense.models import (
    STATUS_FRICTION,
    STATUS_OK,
    ActionDecision,
    PageMetadata,
    SimulationResult,
)
from usersense.personas import Persona
from usersense.reporter import Reporter

MIN_DECISION_CONFIDENCE = 0.5
PAGE_CHECK_GOAL = "Page friction check"

NAVIGATION_TIMING_SCRIPT = """
() => {
    const nav = window.performance.getEntriesByType('navigation')[0];
    return nav ? nav.domContentLoadedEventEnd : null;
}
"""


class AgentState(Enum):
    INIT = "init"
    AUDITING = "auditing"
    DEEP_AUDIT = "deep_audit"
    DECIDE = "decide"
    ACT = "act"
    DONE = "done"


class RunBudget:
    """Single wall-clock budget shared by every suspension point of one run."""

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        self.seconds = seconds
        self._clock = clock
        self._deadline = clock() + seconds

    def remaining(self) -> float:
        return max(0.0, self._deadline - self._clock())

    @property
    def exhausted(self) -> bool:
        return self.remaining() <= 0


def decision_is_usable(decision: Optional[ActionDecision]) -> bool:
    return (
        decision is not None
        and decision.coordinates is not None
        and decision.confidence >= MIN_DECISION_CONFIDENCE
    )


class Session:
    def __init__(
        self,
        page,
        analyzer: VisionAnalyzer,
        persona: Union[Persona, str, None] = Persona.DEFAULT,
        settings: Optional[Settings] = None,
        *,
        project: str = "default",
        environment: str = "production",
        evidence_dir: Optional[Path] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.page = page
        self.analyzer = analyzer
        self.persona = Persona.parse(persona)
        self.settings = settings or Settings()
        self.project = project
        self.environment = environment
        self.evidence_dir = Path(evidence_dir or self.settings.reports_dir)
        self.reporter = Reporter(self.evidence_dir, page=page)
        self.rage_clicks = RageClickCounter()
        self.budget = RunBudget(self.settings.run_budget, clock=clock)
        self.state = AgentState.INIT
        self.start_url = ""
        self._clock = clock
        self._pending_navigation_ms: Optional[float] = None
        self._pending_action: Optional[ActionTiming] = None

    @property
    def step_counter(self) -> int:
        return self.reporter.step_counter

    def _elapsed_ms(self, started: float) -> float:
        return (self._clock() - started) * 1000.0

    #### init ####

    def start(self, url: str) -> float:
        """Install passive instrumentation and load the start URL (fatal on failure). Returns load ms."""
        try:
            install_rage_click_tracker(self.page, self.rage_clicks)
        except Exception as exc:
            logger.warning(f"  • Rage click tracker unavailable: {exc}")
        elapsed = self.navigate(url)
        self.start_url = url
        logger.info(f"[{self.project}/{self.environment}] Session ready on {url} as {self.persona.label}")
        return elapsed

    def navigate(self, url: str) -> float:
        logger.info(f"🌐 Navigating to: {url}")
        started = self._clock()
        try:
            self.page.goto(url, wait_until="domcontentloaded", timeout=self.settings.navigation_timeout_ms)
        except Exception as exc:
            raise SessionError(f"Navigation to {url} failed: {exc}") from exc
        elapsed = self._elapsed_ms(started)
        self._pending_navigation_ms = elapsed
        return elapsed

    #### observation ####

    def screenshot(self) -> bytes:
        return self.page.screenshot()

    def current_url(self) -> str:
        try:
            return self.page.url
        except Exception:
            return self.start_url

    def metadata(self) -> Dict[str, Any]:
        meta = PageMetadata(url=self.current_url())
        try:
            meta.title = self.page.title()
        except Exception:
            pass
        viewport = getattr(self.page, "viewport_size", None)
        if viewport:
            meta.viewport = dict(viewport)
        return meta.to_dict()

    def probe(self) -> PageState:
        state = probe_page(
            self.page,
            navigation_ms=self._pending_navigation_ms,
            action_timing=self._pending_action,
            rage_clicks=self.rage_clicks.count,
        )
        # timings describe one navigation / one action and are reported once
        self._pending_navigation_ms = None
        self._pending_action = None
        return state

    def audit_heuristics(self) -> int:
        positives = run_detector_bank(self.probe())
        for name, detection in positives:
            logger.debug(f"  • Heuristic {name}: {detection.issue}")
            self.reporter.add(STATUS_FRICTION, detection.issue, detection.impact, detection.suggestion)
        return len(positives)

    def deep_audit(self, screenshot: Optional[bytes] = None) -> int:
        logger.info("🔎 Starting deep visual audit...")
        shot = screenshot if screenshot is not None else self.screenshot()
        findings = self.analyzer.audit_friction(
            shot,
            self.current_url(),
            self.persona,
            self.metadata(),
            remaining=self.budget.remaining(),
        )
        for finding in findings:
            self.reporter.add(
                STATUS_FRICTION,
                f"AI Insight: {finding.issue}",
                finding.impact,
                finding.suggestion,
                finding.coordinates,
            )
        return len(findings)

    #### action ####

    def _settle(self) -> None:
        timeout = min(float(self.settings.settle_timeout_ms), self.budget.remaining() * 1000.0)
        if timeout <= 0:
            return
        try:
            self.page.wait_for_load_state("networkidle", timeout=timeout)
        except PWTimeoutError:
            pass
        except Exception as exc:
            logger.debug(f"  • Settle wait interrupted: {exc}")

    def _animation_delay(self) -> None:
        try:
            self.page.wait_for_timeout(self.settings.animation_delay_ms)
        except Exception:
            pass

    def _timed(self, action: Callable[[], None]) -> ActionTiming:
        started = self._clock()
        action()
        loader_seen = loader_visible(self.page)
        self._settle()
        loader_seen = loader_seen or loader_visible(self.page)
        return ActionTiming(elapsed_ms=self._elapsed_ms(started), loader_seen=loader_seen)

    def _read_navigation_ms(self) -> Optional[float]:
        try:
            value = self.page.evaluate(NAVIGATION_TIMING_SCRIPT)
        except Exception:
            return None
        return float(value) if isinstance(value, (int, float)) and value > 0 else None

    def act(self, decision: ActionDecision) -> bool:
        """Move the pointer to the decided point and click; failures become report steps."""
        x, y = decision.coordinates.scaled_to(getattr(self.page, "viewport_size", None))
        url_before = self.current_url()

        def click() -> None:
            self.page.mouse.move(x, y)
            self.page.mouse.click(x, y)

        try:
            timing = self._timed(click)
        except Exception as exc:
            logger.warning(f"⚠️ Click on '{decision.action_name}' failed: {exc}")
            self.reporter.add(
                STATUS_FRICTION,
                f"Could not interact with {decision.action_name or 'the chosen element'}",
                "users cannot complete this action",
                "Ensure the element is visible, reachable and responds to clicks",
                decision.coordinates,
            )
            return False

        self._animation_delay()
        self._pending_action = timing
        if self.current_url() != url_before:
            self._pending_navigation_ms = self._read_navigation_ms()
        return True

    #### goal execution ####

    def execute_goal(self, goal: str, max_steps: int = DEFAULT_MAX_STEPS) -> SimulationResult:
        logger.info(f"🎯 Executing target goal: \"{goal}\" ({max_steps} steps max)")
        iteration = 0
        screenshot: Optional[bytes] = None
        decision: Optional[ActionDecision] = None
        self.state = AgentState.AUDITING

        while self.state is not AgentState.DONE:
            logger.debug(f"  ↳ state: {self.state.name} (iteration {iteration})")

            if self.state is AgentState.AUDITING and iteration >= max_steps:
                logger.info("⚠️ Reached maximum steps without reaching the goal.")
                self.state = AgentState.DONE
                continue
            # running out of time ends the run quietly, never as a dead end
            if self.state is not AgentState.ACT and self.budget.exhausted:
                logger.info(f"⚠️ Run budget exhausted during {self.state.name}; stopping.")
                self.state = AgentState.DONE
                continue

            if self.state is AgentState.AUDITING:
                self.audit_heuristics()
                check = self.analyzer.check_goal_completion(
                    self.screenshot(), goal, self.current_url(), remaining=self.budget.remaining()
                )
                if check.completed:
                    logger.info(f"🏁 Goal accomplished: {check.reason}")
                    self.reporter.add(STATUS_OK, f"Goal Accomplished: {goal}", check.reason, "No further action needed.")
                    self.state = AgentState.DONE
                else:
                    self.state = AgentState.DEEP_AUDIT

            elif self.state is AgentState.DEEP_AUDIT:
                screenshot = self.screenshot()
                self.deep_audit(screenshot)
                self.state = AgentState.DECIDE

            elif self.state is AgentState.DECIDE:
                decision = self.analyzer.identify_next_action(
                    screenshot,
                    goal,
                    self.persona,
                    self.metadata(),
                    remaining=self.budget.remaining(),
                )
                if not decision_is_usable(decision) and self.budget.exhausted:
                    logger.info("⚠️ Run budget exhausted while deciding; stopping.")
                    self.state = AgentState.DONE
                elif not decision_is_usable(decision):
                    logger.info("⚠️ No high-confidence next step found. Ending simulation.")
                    self.reporter.add(
                        STATUS_FRICTION,
                        "Journey Dead-end",
                        "Agent cannot find the way to the goal.",
                        "Check if the navigation is intuitive or if buttons are clearly labeled.",
                    )
                    self.state = AgentState.DONE
                else:
                    logger.info(f"🧭 Decision: {decision.action_name} (confidence {decision.confidence:.2f})")
                    logger.debug(f"    ↳ Reason: {decision.reason}")
                    self.state = AgentState.ACT

            elif self.state is AgentState.ACT:
                self.act(decision)
                iteration += 1
                self.state = AgentState.AUDITING

        result = self.result(goal)
        logger.info(
            f"✅ Goal execution finished: {result.total_steps} steps, {result.friction_points} friction points"
        )
        return result

    def explore(self, max_steps: int = DEFAULT_MAX_STEPS) -> int:
        """Goal-less journey: audit, follow the model's pick, repeat. Returns clicks made."""
        clicks = 0
        for index in range(max_steps):
            if self.budget.exhausted:
                break
            logger.info(f"🧭 Exploration step {index + 1}/{max_steps}")
            screenshot = self.screenshot()
            self.deep_audit(screenshot)
            decision = self.analyzer.identify_next_action(
                screenshot, "", self.persona, self.metadata(), remaining=self.budget.remaining()
            )
            if decision is None or decision.coordinates is None:
                logger.info("  • No clear next step identified. Ending journey.")
                break
            logger.info(f"  • Clicking \"{decision.action_name}\": {decision.reason}")
            if self.act(decision):
                clicks += 1
        return clicks

    #### scripted actions ####

    def click_selector(self, selector: str, description: str = "element") -> bool:
        logger.info(f"🖱️ Clicking: {description}")
        try:
            element = self.page.query_selector(selector)
            if element is None:
                self.reporter.add(
                    STATUS_FRICTION,
                    f"Could not find {description}",
                    "users cannot complete this action",
                    f"Ensure {description} is visible and accessible",
                )
                return False
            if not element.is_visible():
                self.reporter.add(
                    STATUS_FRICTION,
                    f"{description} is not visible",
                    "users cannot see or click this element",
                    "Make sure the element is visible without scrolling",
                )
                return False
            timing = self._timed(element.click)
        except Exception as exc:
            self.reporter.add(
                STATUS_FRICTION,
                f"Error clicking {description}: {exc}",
                "action failed unexpectedly",
                "Check element accessibility and event handlers",
            )
            return False

        detection = detect_missing_loading_feedback(PageState(action_timing=timing))
        if detection.detected:
            self.reporter.add(STATUS_FRICTION, detection.issue, detection.impact, detection.suggestion)
        else:
            self.reporter.add(STATUS_OK)
        return True

    def fill_field(self, selector: str, value: str, field_name: str = "field") -> bool:
        logger.info(f"⌨️ Filling: {field_name}")
        try:
            element = self.page.query_selector(selector)
            if element is None:
                self.reporter.add(
                    STATUS_FRICTION,
                    f"Could not find {field_name}",
                    "users cannot complete this form",
                    f"Ensure {field_name} input is present and accessible",
                )
                return False
            element.fill(value)
        except Exception as exc:
            self.reporter.add(
                STATUS_FRICTION,
                f"Error filling {field_name}: {exc}",
                "form submission may fail",
                "Check input field configuration",
            )
            return False
        self.reporter.add(STATUS_OK)
        return True

    def result(self, goal: str) -> SimulationResult:
        return self.reporter.result(goal, self.current_url() or self.start_url, self.persona.label)


#### entry points ####

BrowserFactory = Callable[[], AbstractContextManager]


def _validate(url: str, max_steps: int) -> None:
    if not url or not url.strip():
        raise ValueError("url is required")
    if not isinstance(max_steps, int) or isinstance(max_steps, bool) or max_steps < 1:
        raise ValueError("max_steps must be a positive integer")


def _default_factory(settings: Settings) -> BrowserFactory:
    return lambda: open_page(headless=settings.headless)


def run_goal(
    url: str,
    goal: Optional[str] = None,
    persona: Union[Persona, str, None] = Persona.DEFAULT,
    max_steps: int = DEFAULT_MAX_STEPS,
    *,
    settings: Optional[Settings] = None,
    analyzer: Optional[VisionAnalyzer] = None,
    browser_factory: Optional[BrowserFactory] = None,
) -> SimulationResult:
    """Simulate a user pursuing ``goal`` on ``url`` and return the friction report."""
    _validate(url, max_steps)
    settings = settings or Settings.from_env()
    analyzer = analyzer or VisionAnalyzer.from_settings(settings)
    factory = browser_factory or _default_factory(settings)
    goal = (goal or "").strip() or DEFAULT_GOAL

    with factory() as page:
        session = Session(page, analyzer, persona, settings, project="web-live-check")
        try:
            session.start(url)
            return session.execute_goal(goal, max_steps)
        except SessionError:
            raise
        except Exception as exc:
            logger.error(f"❌ Goal simulation failed: {exc}")
            raise SessionError(f"Goal simulation failed: {exc}") from exc


def check_page(
    url: str,
    persona: Union[Persona, str, None] = Persona.DEFAULT,
    *,
    ai: bool = False,
    settings: Optional[Settings] = None,
    analyzer: Optional[VisionAnalyzer] = None,
    browser_factory: Optional[BrowserFactory] = None,
) -> SimulationResult:
    """One-shot page audit: load time, the heuristic bank and (optionally) the deep visual audit."""
    _validate(url, 1)
    settings = settings or Settings.from_env()
    if ai and analyzer is None:
        analyzer = VisionAnalyzer.from_settings(settings)
    factory = browser_factory or _default_factory(settings)

    with factory() as page:
        session = Session(page, analyzer, persona, settings, project="cli-check")
        try:
            load_ms = session.start(url)
            if load_ms <= SLOW_RESPONSE_MS:
                session.reporter.add(STATUS_OK, f"Page loaded in {round(load_ms)}ms")
            session.audit_heuristics()
            if ai:
                session.deep_audit()
            return session.result(PAGE_CHECK_GOAL)
        except SessionError:
            raise
        except Exception as exc:
            logger.error(f"❌ Page check failed: {exc}")
            raise SessionError(f"Page check failed: {exc}") from exc
