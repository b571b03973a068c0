"""Shared fakes: a scripted Playwright page, analyzer and vision client."""

from contextlib import contextmanager
from pathlib import Path

import pytest

from usersense.config import Settings
from usersense.detectors import PROBE_SCRIPT
from usersense.errors import VisionError
from usersense.models import ANALYSIS_ERROR
from usersense.reporter import METRICS_SCRIPT

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-screenshot"


class FakeClock:
    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeMouse:
    def __init__(self, page):
        self.page = page
        self.moves = []
        self.clicks = []
        self.fail_with = None

    def move(self, x, y):
        self.moves.append((x, y))

    def click(self, x, y):
        if self.fail_with is not None:
            raise self.fail_with
        self.clicks.append((x, y))
        self.page.handle_click()


class FakeElement:
    def __init__(self, page=None, visible=True, click_seconds=0.0, fail_with=None):
        self.page = page
        self.visible = visible
        self.click_seconds = click_seconds
        self.fail_with = fail_with
        self.clicked = 0
        self.filled = []

    def is_visible(self):
        return self.visible

    def click(self):
        if self.fail_with is not None:
            raise self.fail_with
        self.clicked += 1
        if self.page is not None and self.page.clock is not None:
            self.page.clock.advance(self.click_seconds)

    def fill(self, value):
        if self.fail_with is not None:
            raise self.fail_with
        self.filled.append(value)


class FakePage:
    """
    Just enough of ``playwright.sync_api.Page`` for a session.

    ``probes`` maps a URL to the payload the page probe returns while the page
    sits on that URL; ``click_targets`` maps a URL to where a mouse click leads.
    """

    def __init__(self, probes=None, click_targets=None, clock=None):
        self.url = "about:blank"
        self.probes = dict(probes or {})
        self.click_targets = dict(click_targets or {})
        self.clock = clock
        self.goto_seconds = 0.0
        self.goto_error = None
        self.screenshot_error = None
        self.elements = {}
        self.mouse = FakeMouse(self)
        self.viewport_size = {"width": 1280, "height": 800}
        self.visited = []
        self.evaluated = []
        self.screenshots = []
        self.init_scripts = []
        self.exposed = {}
        self.load_state_waits = []
        self.timeouts = []

    def handle_click(self):
        target = self.click_targets.get(self.url)
        if target:
            self.url = target

    def goto(self, url, wait_until=None, timeout=None):
        if self.goto_error is not None:
            raise self.goto_error
        if self.clock is not None:
            self.clock.advance(self.goto_seconds)
        self.visited.append(url)
        self.url = url

    def title(self):
        return f"Title of {self.url}"

    def evaluate(self, script, arg=None):
        self.evaluated.append((script, arg))
        if script == PROBE_SCRIPT:
            return self.probes.get(self.url, {})
        if script == METRICS_SCRIPT:
            return {"domLoaded": 120.0, "loadTime": 340.0, "fcp": 95.0}
        return None

    def screenshot(self, path=None):
        if self.screenshot_error is not None:
            raise self.screenshot_error
        if path:
            Path(path).write_bytes(PNG_BYTES)
        self.screenshots.append(path)
        return PNG_BYTES

    def query_selector(self, selector):
        return self.elements.get(selector)

    def wait_for_load_state(self, state, timeout=None):
        self.load_state_waits.append((state, timeout))

    def wait_for_timeout(self, ms):
        self.timeouts.append(ms)

    def add_init_script(self, script):
        self.init_scripts.append(script)

    def expose_function(self, name, fn):
        self.exposed[name] = fn

    @property
    def highlight_calls(self):
        return [arg for script, arg in self.evaluated if isinstance(arg, dict) and "color" in arg]


class FakeAnalyzer:
    """Scripted stand-in for ``VisionAnalyzer``; the last scripted answer repeats."""

    def __init__(self, findings=None, decisions=None, goal_checks=None, error=None):
        self.findings = list(findings or [])
        self.decisions = list(decisions or [None])
        self.goal_checks = list(goal_checks or [ANALYSIS_ERROR])
        self.error = error
        self.calls = []

    @staticmethod
    def _next(queue):
        return queue.pop(0) if len(queue) > 1 else queue[0]

    def audit_friction(self, screenshot, url, persona=None, metadata=None, *, remaining=None):
        self.calls.append(("audit", url, remaining))
        return list(self.findings)

    def identify_next_action(self, screenshot, goal, persona=None, page_metadata=None, *, remaining=None):
        self.calls.append(("decide", goal, remaining))
        return self._next(self.decisions)

    def check_goal_completion(self, screenshot, goal, url, *, remaining=None):
        self.calls.append(("goal", goal, remaining))
        if self.error is not None:
            raise self.error
        return self._next(self.goal_checks)

    def count(self, kind):
        return sum(1 for call in self.calls if call[0] == kind)


class FakeVisionClient:
    def __init__(self, responses=None, error=None):
        self.responses = list(responses or [])
        self.error = error
        self.calls = []

    def complete(self, system, prompt, image_png, timeout):
        self.calls.append({"system": system, "prompt": prompt, "timeout": timeout})
        if self.error is not None:
            raise self.error
        if not self.responses:
            raise VisionError("no scripted response left")
        return self.responses.pop(0)


class PageFactory:
    """Browser factory handing out one fake page and remembering that it closed."""

    def __init__(self, page):
        self.page = page
        self.opened = 0
        self.closed = 0

    @contextmanager
    def _scope(self):
        self.opened += 1
        try:
            yield self.page
        finally:
            self.closed += 1

    def __call__(self):
        return self._scope()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        call_timeout=5.0,
        run_budget=60.0,
        settle_timeout_ms=0,
        animation_delay_ms=0,
        reports_dir=tmp_path,
    )


@pytest.fixture
def fake_page():
    return FakePage()


@pytest.fixture
def clock():
    return FakeClock()
