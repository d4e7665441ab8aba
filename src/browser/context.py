"""
Playwright-backed tab.

Wraps a Playwright page with navigation error codes, page-context script
evaluation and the automation overlay.
"""

import re
from typing import Any

import structlog
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from browser.host import BrowserTab
from core.errors import NavigationError

logger = structlog.get_logger()

_NET_ERROR = re.compile(r"net::(ERR_[A-Z_]+)")

_OVERLAY_ID = "__pattern_pilot_overlay__"

_SHOW_OVERLAY = """(id) => {
  if (document.getElementById(id)) return;
  const el = document.createElement('div');
  el.id = id;
  el.textContent = 'Automation running';
  el.style.cssText = 'position:fixed;top:8px;right:8px;z-index:2147483647;' +
    'padding:6px 10px;border-radius:6px;background:#1d4ed8;color:#fff;' +
    'font:12px sans-serif;pointer-events:none;';
  (document.body || document.documentElement).appendChild(el);
}"""

_HIDE_OVERLAY = """(id) => {
  const el = document.getElementById(id);
  if (el) el.remove();
}"""


class PlaywrightTab(BrowserTab):
    """Tab backed by a Playwright page."""

    def __init__(self, tab_id: str, page: Page):
        self.tab_id = tab_id
        self.page = page
        self._automation_mode = False

    @property
    def url(self) -> str:
        return self.page.url

    @property
    def automation_mode(self) -> bool:
        return self._automation_mode

    async def navigate(self, url: str) -> None:
        try:
            await self.page.goto(url, wait_until="domcontentloaded")
        except PlaywrightTimeoutError as e:
            raise NavigationError(str(e), url=url, code="ERR_CONNECTION_TIMED_OUT")
        except PlaywrightError as e:
            match = _NET_ERROR.search(e.message)
            raise NavigationError(
                e.message, url=url, code=match.group(1) if match else "ERR_FAILED"
            )

        if self._automation_mode:
            await self._show_overlay()

    async def set_automation_mode(self, enabled: bool) -> None:
        self._automation_mode = enabled
        if self.page.is_closed():
            return
        try:
            if enabled:
                await self._show_overlay()
            else:
                await self.page.evaluate(_HIDE_OVERLAY, _OVERLAY_ID)
        except PlaywrightError as e:
            logger.debug("overlay_toggle_failed", tab_id=self.tab_id, error=e.message)

    async def run_script(self, script: str, arg: Any = None) -> Any:
        return await self.page.evaluate(script, arg)

    async def screenshot(self) -> bytes:
        return await self.page.screenshot(type="jpeg", quality=40, scale="css")

    async def title(self) -> str:
        return await self.page.title()

    async def close(self) -> None:
        if not self.page.is_closed():
            await self.page.close()

    async def _show_overlay(self) -> None:
        await self.page.evaluate(_SHOW_OVERLAY, _OVERLAY_ID)
