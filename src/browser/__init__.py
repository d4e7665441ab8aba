"""Tab collaborator interface and its Playwright implementation."""

from .host import BrowserTab, TabHost

__all__ = ["BrowserTab", "TabHost"]
