"""Utilities for launching a Playwright page that belongs to exactly one session.

The helpers return both the page and the objects required for shutdown so
callers can ensure resources are released on every exit path.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional, Tuple

from loguru import logger
from playwright.sync_api import Browser, Page, Playwright, sync_playwright

from usersense.errors import SessionError
from usersense.models import VIEWPORT_HEIGHT, VIEWPORT_WIDTH

DESKTOP_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def launch_page(*, headless: bool = True) -> Tuple[Playwright, Browser, Page]:
    """Launch Chromium with a fresh context sized to the logical viewport.

    Parameters
    ----------
    headless:
        Whether to launch Chromium in headless mode. Scans default to
        headless; set ``USERSENSE_HEADLESS=0`` to watch the agent work.
    """

    playwright = sync_playwright().start()
    browser: Optional[Browser] = None
    try:
        browser = playwright.chromium.launch(headless=headless)
        context = browser.new_context(
            user_agent=DESKTOP_USER_AGENT,
            viewport={"width": VIEWPORT_WIDTH, "height": VIEWPORT_HEIGHT},
        )
        page = context.new_page()
    except Exception:
        shutdown(playwright, browser)
        raise
    return playwright, browser, page


def shutdown(playwright: Optional[Playwright], browser: Optional[Browser]) -> None:
    """Gracefully dispose of Playwright resources used by ``launch_page``."""

    try:
        if browser:
            browser.close()
    finally:
        if playwright:
            playwright.stop()


@contextmanager
def open_page(*, headless: bool = True) -> Iterator[Page]:
    """Scoped page: launch failures become ``SessionError``; the browser always closes."""
    try:
        playwright, browser, page = launch_page(headless=headless)
    except Exception as exc:
        raise SessionError(f"Could not start the browsing session: {exc}") from exc
    try:
        yield page
    finally:
        try:
            shutdown(playwright, browser)
            logger.debug("🧹 Browser session closed")
        except Exception as exc:
            logger.warning(f"  • Browser shutdown failed: {exc}")
