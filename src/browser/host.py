"""
Tab collaborator interface.

The engines never touch a browser directly; they drive tabs through this
narrow capability set.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional


class BrowserTab(ABC):
    """
    A single controllable tab.

    Implementations raise core.errors.NavigationError from ``navigate``
    with ``code`` set to the browser's error code (e.g.
    ``ERR_NAME_NOT_RESOLVED``).
    """

    tab_id: str

    @property
    @abstractmethod
    def url(self) -> str:
        """Current document URL."""

    @property
    @abstractmethod
    def automation_mode(self) -> bool:
        """Whether the tab is currently owned by a replay."""

    @abstractmethod
    async def navigate(self, url: str) -> None:
        """Load ``url`` in this tab."""

    @abstractmethod
    async def set_automation_mode(self, enabled: bool) -> None:
        """Toggle tracking suppression and the visible control overlay."""

    @abstractmethod
    async def run_script(self, script: str, arg: Any = None) -> Any:
        """Evaluate a ``(arg) => ...`` function in page context."""

    @abstractmethod
    async def screenshot(self) -> bytes:
        """Capture a lightweight image of the viewport."""

    @abstractmethod
    async def title(self) -> str:
        """Current document title."""


class TabHost(ABC):
    """Creates and looks up tabs."""

    @abstractmethod
    async def create_tab(self, url: Optional[str] = None) -> BrowserTab:
        """Open a new tab, optionally loading ``url``."""

    @abstractmethod
    def get_tab(self, tab_id: str) -> Optional[BrowserTab]:
        """Return an open tab by id."""

    def is_tracking_suppressed(self, tab_id: str) -> bool:
        """Automation-controlled tabs are excluded from pattern tracking."""
        tab = self.get_tab(tab_id)
        return bool(tab and tab.automation_mode)
