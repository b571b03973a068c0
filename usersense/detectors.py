"""
Rule-based friction checks.

The page is probed once per audit (``probe_page``) into a ``PageState``; every
detector is then a pure function of that snapshot so the bank can run without
touching the browser again and can be exercised in tests with hand-built states.
"""

from __future__ import annotations

import math
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from loguru import logger

from usersense.models import NOT_DETECTED, DetectionResult

MAX_COMPETING_CTAS = 2
MIN_TOUCH_TARGET_PX = 44
MAX_FORM_FIELDS = 5
MIN_CONTRAST_RATIO = 4.5
MAX_CONTRAST_OFFENDERS = 3
SLOW_RESPONSE_MS = 2000
RAGE_CLICK_THRESHOLD = 4
RAGE_CLICK_WINDOW_MS = 500
RAGE_CLICK_RADIUS_PX = 30

CTA_SELECTOR = 'button, [role="button"], a.btn, a.button, .cta'
TOUCH_TARGET_SELECTOR = 'button, [role="button"], a.btn'
PRIMARY_ACTION_SELECTOR = 'button[type="submit"], .btn-primary, .primary-btn, button.primary'
LOADER_SELECTOR = '.loading, .spinner, .loader, [aria-busy="true"], [role="progressbar"]'
TEXT_SELECTOR = "p, span, button, a, h1, h2, h3, label, li"

RAGE_CLICK_BINDING = "__usersenseMouseDown"


@dataclass(frozen=True)
class ElementBox:
    text: str
    width: float
    height: float


@dataclass(frozen=True)
class ColorSample:
    text: str
    color: str
    background: str


@dataclass(frozen=True)
class ActionTiming:
    elapsed_ms: float
    loader_seen: bool


@dataclass
class PageState:
    url: str = ""
    title: str = ""
    cta_elements: List[ElementBox] = field(default_factory=list)
    touch_targets: List[ElementBox] = field(default_factory=list)
    generic_button_count: int = 0
    primary_action_count: int = 0
    form_field_count: int = 0
    image_count: int = 0
    images_missing_label: int = 0
    color_samples: List[ColorSample] = field(default_factory=list)
    navigation_ms: Optional[float] = None
    action_timing: Optional[ActionTiming] = None
    rage_clicks: int = 0


#### colour maths ####

_RGB_PATTERN = re.compile(r"rgba?\(\s*([\d.]+)[,\s]+([\d.]+)[,\s]+([\d.]+)(?:\s*[,/]\s*([\d.]+%?))?\s*\)")


def parse_css_color(value: str) -> Optional[Tuple[float, float, float, float]]:
    """Parse a computed ``rgb()``/``rgba()`` string into (r, g, b, alpha)."""
    if not value:
        return None
    text = value.strip().lower()
    if text == "transparent":
        return (0.0, 0.0, 0.0, 0.0)
    match = _RGB_PATTERN.match(text)
    if not match:
        return None
    r, g, b = (float(match.group(i)) for i in range(1, 4))
    alpha_raw = match.group(4)
    if alpha_raw is None:
        alpha = 1.0
    elif alpha_raw.endswith("%"):
        alpha = float(alpha_raw[:-1]) / 100.0
    else:
        alpha = float(alpha_raw)
    return (r, g, b, alpha)


def _linear_channel(value: float) -> float:
    channel = value / 255.0
    if channel <= 0.03928:
        return channel / 12.92
    return math.pow((channel + 0.055) / 1.055, 2.4)


def relative_luminance(rgb: Sequence[float]) -> float:
    r, g, b = (_linear_channel(v) for v in rgb[:3])
    return 0.2126 * r + 0.7152 * g + 0.0722 * b


def contrast_ratio(foreground: Sequence[float], background: Sequence[float]) -> float:
    l1 = relative_luminance(foreground) + 0.05
    l2 = relative_luminance(background) + 0.05
    return max(l1, l2) / min(l1, l2)


#### detectors ####

def detect_competing_ctas(state: PageState) -> DetectionResult:
    visible = [box for box in state.cta_elements if box.width > 0 and box.height > 0]
    if len(visible) > MAX_COMPETING_CTAS:
        return DetectionResult(
            detected=True,
            count=len(visible),
            issue=f"{len(visible)} competing CTAs detected on page",
            impact="users may feel overwhelmed and abandon",
            suggestion="Reduce to a single primary action per section",
        )
    return NOT_DETECTED


def detect_small_touch_targets(state: PageState) -> DetectionResult:
    for box in state.touch_targets:
        if box.width <= 0 or box.height <= 0:
            continue
        if box.width < MIN_TOUCH_TARGET_PX or box.height < MIN_TOUCH_TARGET_PX:
            return DetectionResult(
                detected=True,
                issue=f'Button "{box.text.strip()}" is too small ({round(box.width)}x{round(box.height)}px)',
                impact="users may have difficulty clicking on mobile",
                suggestion=f"Increase button size to at least {MIN_TOUCH_TARGET_PX}px",
                measurement=min(box.width, box.height),
            )
    return NOT_DETECTED


def detect_form_complexity(state: PageState) -> DetectionResult:
    if state.form_field_count > MAX_FORM_FIELDS:
        return DetectionResult(
            detected=True,
            count=state.form_field_count,
            issue=f"Form has {state.form_field_count} fields (threshold: {MAX_FORM_FIELDS})",
            impact="users likely abandon long forms",
            suggestion="Split into multiple steps or remove optional fields",
        )
    return NOT_DETECTED


def detect_unclear_primary_action(state: PageState) -> DetectionResult:
    if state.primary_action_count == 0 and state.generic_button_count > 0:
        return DetectionResult(
            detected=True,
            issue="No clearly styled primary action button",
            impact="users may not know what to do next",
            suggestion="Style the main action button distinctly (color, size)",
        )
    return NOT_DETECTED


def detect_missing_image_labels(state: PageState) -> DetectionResult:
    if state.images_missing_label > 0:
        return DetectionResult(
            detected=True,
            count=state.images_missing_label,
            issue=f"{state.images_missing_label} images missing alt text",
            impact="users with screen readers cannot understand the content",
            suggestion="Add descriptive alt text to all informative images",
        )
    return NOT_DETECTED


def find_low_contrast(samples: Sequence[ColorSample], limit: int = MAX_CONTRAST_OFFENDERS) -> List[Tuple[ColorSample, float]]:
    offenders: List[Tuple[ColorSample, float]] = []
    for sample in samples:
        if len(sample.text.strip()) < 2:
            continue
        background = parse_css_color(sample.background)
        foreground = parse_css_color(sample.color)
        # only opaque backgrounds give a trustworthy ratio
        if background is None or foreground is None or background[3] < 1.0:
            continue
        ratio = contrast_ratio(foreground, background)
        if ratio < MIN_CONTRAST_RATIO:
            offenders.append((sample, ratio))
            if len(offenders) >= limit:
                break
    return offenders


def detect_low_contrast(state: PageState) -> DetectionResult:
    offenders = find_low_contrast(state.color_samples)
    if not offenders:
        return NOT_DETECTED
    worst = min(ratio for _, ratio in offenders)
    return DetectionResult(
        detected=True,
        count=len(offenders),
        measurement=round(worst, 2),
        issue=f"Multiple elements have poor text contrast (below {MIN_CONTRAST_RATIO}:1)",
        impact="users with visual impairments or in bright light will struggle to read",
        suggestion="Increase contrast ratio between text and background to at least 4.5:1",
    )


def detect_slow_navigation(state: PageState) -> DetectionResult:
    if state.navigation_ms is not None and state.navigation_ms > SLOW_RESPONSE_MS:
        elapsed = round(state.navigation_ms)
        return DetectionResult(
            detected=True,
            measurement=float(elapsed),
            issue=f"Page load took {elapsed}ms",
            impact="users may abandon slow-loading pages",
            suggestion="Optimize page load time to under 2 seconds",
        )
    return NOT_DETECTED


def detect_missing_loading_feedback(state: PageState) -> DetectionResult:
    timing = state.action_timing
    if timing is None or timing.elapsed_ms <= SLOW_RESPONSE_MS or timing.loader_seen:
        return NOT_DETECTED
    elapsed = round(timing.elapsed_ms)
    return DetectionResult(
        detected=True,
        measurement=float(elapsed),
        issue=f"Missing loading state: no loading feedback during {elapsed}ms wait",
        impact="users may think the action failed and retry",
        suggestion="Add a loading indicator for actions taking > 500ms",
    )


def detect_rage_clicks(state: PageState) -> DetectionResult:
    if state.rage_clicks > 0:
        return DetectionResult(
            detected=True,
            count=state.rage_clicks,
            issue="Rage clicks detected",
            impact="users are clicking frantically in frustration",
            suggestion="Check if elements are responsive or if the UI is misleading",
        )
    return NOT_DETECTED


Detector = Callable[[PageState], DetectionResult]

# declaration order is report order
DETECTOR_BANK: Tuple[Tuple[str, Detector], ...] = (
    ("competing_ctas", detect_competing_ctas),
    ("small_touch_targets", detect_small_touch_targets),
    ("form_complexity", detect_form_complexity),
    ("unclear_primary_action", detect_unclear_primary_action),
    ("missing_image_labels", detect_missing_image_labels),
    ("low_contrast", detect_low_contrast),
    ("slow_navigation", detect_slow_navigation),
    ("missing_loading_feedback", detect_missing_loading_feedback),
    ("rage_clicks", detect_rage_clicks),
)


def run_detector_bank(
    state: PageState, bank: Sequence[Tuple[str, Detector]] = DETECTOR_BANK
) -> List[Tuple[str, DetectionResult]]:
    """Run every detector; return the positive results in bank order."""
    positives: List[Tuple[str, DetectionResult]] = []
    for name, detector in bank:
        try:
            result = detector(state)
        except Exception as exc:
            logger.debug(f"  • Detector {name} failed, treating as not detected: {exc}")
            continue
        if result.detected:
            positives.append((name, result))
    return positives


#### rage clicks ####

class RageClickCounter:
    """
    Session-scoped rage click tally fed by the page's pointer-down binding.

    A burst is ``RAGE_CLICK_THRESHOLD`` pointer-downs where each lands within
    ``RAGE_CLICK_WINDOW_MS`` and ``RAGE_CLICK_RADIUS_PX`` of the previous one.
    Reading ``count`` never resets it.
    """

    def __init__(
        self,
        threshold: int = RAGE_CLICK_THRESHOLD,
        window_ms: float = RAGE_CLICK_WINDOW_MS,
        radius_px: float = RAGE_CLICK_RADIUS_PX,
    ):
        self.threshold = threshold
        self.window_ms = window_ms
        self.radius_px = radius_px
        self._count = 0
        self._streak = 0
        self._last: Optional[Tuple[float, float, float]] = None

    @property
    def count(self) -> int:
        return self._count

    def record(self, x: float, y: float, timestamp_ms: Optional[float] = None) -> None:
        now = float(timestamp_ms) if timestamp_ms is not None else time.time() * 1000.0
        if self._last is not None:
            last_x, last_y, last_t = self._last
            close_in_time = now - last_t < self.window_ms
            close_in_space = math.hypot(x - last_x, y - last_y) < self.radius_px
            self._streak = self._streak + 1 if close_in_time and close_in_space else 1
        else:
            self._streak = 1
        self._last = (float(x), float(y), now)
        if self._streak >= self.threshold:
            self._count += 1
            self._streak = 0


RAGE_CLICK_LISTENER = """
(() => {
    if (window.__usersenseRageListener) {
        return;
    }
    window.__usersenseRageListener = true;
    document.addEventListener('mousedown', (e) => {
        const report = window.%s;
        if (typeof report === 'function') {
            report(e.clientX, e.clientY, Date.now());
        }
    }, true);
})();
""" % RAGE_CLICK_BINDING


def install_rage_click_tracker(page, counter: RageClickCounter) -> None:
    """Expose the session counter to the page and register the listener for every document."""
    page.expose_function(RAGE_CLICK_BINDING, counter.record)
    page.add_init_script(RAGE_CLICK_LISTENER)


#### page probe ####

PROBE_SCRIPT = """
(cfg) => {
    const isVisible = (el) => {
        const style = window.getComputedStyle(el);
        if (style.display === 'none' || style.visibility === 'hidden' || style.opacity === '0') {
            return false;
        }
        const rect = el.getBoundingClientRect();
        return rect.width > 0 && rect.height > 0;
    };
    const label = (el) => ((el.innerText || el.textContent || el.getAttribute('aria-label') || el.value || '') + '').trim().slice(0, 80);
    const boxes = (selector) => Array.from(document.querySelectorAll(selector))
        .filter(isVisible)
        .map((el) => {
            const rect = el.getBoundingClientRect();
            return { text: label(el), width: rect.width, height: rect.height };
        });

    const images = Array.from(document.querySelectorAll('img')).filter(isVisible);
    const missingLabel = images.filter((img) => {
        const alt = (img.getAttribute('alt') || '').trim();
        const aria = (img.getAttribute('aria-label') || '').trim();
        return !alt && !aria;
    }).length;

    const colors = [];
    for (const el of document.querySelectorAll(cfg.textSelector)) {
        if (colors.length >= cfg.colorLimit) break;
        if (!isVisible(el)) continue;
        const text = (el.innerText || '').trim();
        if (text.length < 2) continue;
        const style = window.getComputedStyle(el);
        const bg = style.backgroundColor;
        if (!bg || bg === 'transparent' || bg === 'rgba(0, 0, 0, 0)') continue;
        colors.push({ text: text.slice(0, 80), color: style.color, background: bg });
    }

    const fields = Array.from(document.querySelectorAll('input, select, textarea'))
        .filter((el) => el.type !== 'hidden' && isVisible(el)).length;

    return {
        url: window.location.href,
        title: document.title || '',
        cta: boxes(cfg.ctaSelector),
        touch: boxes(cfg.touchSelector),
        genericButtons: boxes('button').length,
        primaryActions: boxes(cfg.primarySelector).length,
        formFields: fields,
        images: images.length,
        imagesMissingLabel: missingLabel,
        colors: colors,
    };
}
"""


def _boxes(raw: Any) -> List[ElementBox]:
    items: List[ElementBox] = []
    for item in raw or []:
        if not isinstance(item, dict):
            continue
        try:
            items.append(
                ElementBox(
                    text=str(item.get("text") or ""),
                    width=float(item.get("width") or 0),
                    height=float(item.get("height") or 0),
                )
            )
        except (TypeError, ValueError):
            continue
    return items


def page_state_from_probe(
    payload: Dict[str, Any],
    *,
    navigation_ms: Optional[float] = None,
    action_timing: Optional[ActionTiming] = None,
    rage_clicks: int = 0,
) -> PageState:
    samples = [
        ColorSample(
            text=str(item.get("text") or ""),
            color=str(item.get("color") or ""),
            background=str(item.get("background") or ""),
        )
        for item in payload.get("colors") or []
        if isinstance(item, dict)
    ]
    return PageState(
        url=str(payload.get("url") or ""),
        title=str(payload.get("title") or ""),
        cta_elements=_boxes(payload.get("cta")),
        touch_targets=_boxes(payload.get("touch")),
        generic_button_count=int(payload.get("genericButtons") or 0),
        primary_action_count=int(payload.get("primaryActions") or 0),
        form_field_count=int(payload.get("formFields") or 0),
        image_count=int(payload.get("images") or 0),
        images_missing_label=int(payload.get("imagesMissingLabel") or 0),
        color_samples=samples,
        navigation_ms=navigation_ms,
        action_timing=action_timing,
        rage_clicks=rage_clicks,
    )


def probe_page(
    page,
    *,
    navigation_ms: Optional[float] = None,
    action_timing: Optional[ActionTiming] = None,
    rage_clicks: int = 0,
    color_limit: int = 200,
) -> PageState:
    """Snapshot the observable page state. A failed probe yields an empty state."""
    payload: Dict[str, Any] = {}
    try:
        raw = page.evaluate(
            PROBE_SCRIPT,
            {
                "ctaSelector": CTA_SELECTOR,
                "touchSelector": TOUCH_TARGET_SELECTOR,
                "primarySelector": PRIMARY_ACTION_SELECTOR,
                "textSelector": TEXT_SELECTOR,
                "colorLimit": color_limit,
            },
        )
        if isinstance(raw, dict):
            payload = raw
    except Exception as exc:
        logger.debug(f"  • Page probe failed: {exc}")
    return page_state_from_probe(
        payload, navigation_ms=navigation_ms, action_timing=action_timing, rage_clicks=rage_clicks
    )


def loader_visible(page) -> bool:
    try:
        handle = page.query_selector(LOADER_SELECTOR)
        return bool(handle and handle.is_visible())
    except Exception:
        return False
