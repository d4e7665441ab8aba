"""
Browser Manager - single persistent Chromium instance serving replay tabs.
"""

import asyncio
import os
import uuid
from pathlib import Path
from typing import Optional

import structlog
from playwright.async_api import async_playwright, Browser, BrowserContext, Playwright

from browser.context import PlaywrightTab
from browser.host import TabHost
from core.config import BrowserConfig

logger = structlog.get_logger()


class BrowserManager(TabHost):
    """
    Tab host over one persistent browser.

    Features:
    - Single browser context (cookies and storage persist across runs)
    - Lazy start on first tab request
    - Tabs addressed by stable ids
    """

    def __init__(self, config: Optional[BrowserConfig] = None):
        self.config = config or BrowserConfig()
        self.viewport = {
            "width": self.config.viewport_width,
            "height": self.config.viewport_height,
        }

        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._tabs: dict[str, PlaywrightTab] = {}
        self._lock = asyncio.Lock()
        self._initialized = False

    async def initialize(self) -> None:
        """Start Playwright and open the shared context."""
        async with self._lock:
            if self._initialized:
                return

            logger.info("browser_initializing", headless=self.config.headless)
            Path(self.config.user_data_dir).mkdir(parents=True, exist_ok=True)

            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.config.headless,
                args=[
                    "--disable-dev-shm-usage",
                    "--no-first-run",
                    "--disable-default-apps",
                    "--disable-sync",
                    "--mute-audio",
                    f"--window-size={self.viewport['width']},{self.viewport['height']}",
                ],
            )

            storage_path = self._get_storage_path()
            self._context = await self._browser.new_context(
                viewport=self.viewport,
                storage_state=storage_path if Path(storage_path).exists() else None,
                locale="en-US",
            )
            self._context.set_default_navigation_timeout(self.config.navigation_timeout_ms)

            self._initialized = True
            logger.info("browser_initialized")

    async def shutdown(self) -> None:
        """Save session state and close everything."""
        async with self._lock:
            if not self._initialized:
                return

            logger.info("browser_shutting_down")
            try:
                await self._context.storage_state(path=self._get_storage_path())
            except Exception as e:
                logger.warning("storage_state_save_failed", error=str(e))

            for tab in list(self._tabs.values()):
                await tab.close()
            self._tabs.clear()

            await self._context.close()
            await self._browser.close()
            await self._playwright.stop()
            self._context = None
            self._browser = None
            self._playwright = None

            self._initialized = False
            logger.info("browser_shutdown_complete")

    async def create_tab(self, url: Optional[str] = None) -> PlaywrightTab:
        if not self._initialized:
            await self.initialize()

        page = await self._context.new_page()
        tab = PlaywrightTab(tab_id=f"tab-{uuid.uuid4().hex[:8]}", page=page)
        self._tabs[tab.tab_id] = tab
        page.on("close", lambda _: self._tabs.pop(tab.tab_id, None))
        logger.debug("tab_created", tab_id=tab.tab_id)

        if url:
            await tab.navigate(url)
        return tab

    def get_tab(self, tab_id: str) -> Optional[PlaywrightTab]:
        return self._tabs.get(tab_id)

    def _get_storage_path(self) -> str:
        return os.path.join(self.config.user_data_dir, "storage_state.json")

    @property
    def is_initialized(self) -> bool:
        return self._initialized
