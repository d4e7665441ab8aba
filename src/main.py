"""
Main entry point for pattern-pilot.

Wires the store, oracle, browser host, recognition sweep and replay
services, then runs until a shutdown signal arrives.
"""

import asyncio
import os
import signal
import sys
from typing import Optional

import structlog
from dotenv import load_dotenv

from browser.manager import BrowserManager
from core.config import ConfigLoader, PilotConfig
from core.events import Event, EventBus
from core.store import PatternStore
from execution.adaptive import AdaptiveReplayEngine
from execution.deterministic import DeterministicReplayEngine
from execution.service import AutomationService
from execution.state import ExecutionRegistry
from oracle.client import HttpOracle
from recognition.confidence import ConfidenceEngine
from recognition.detector import MidWorkflowDetector
from recognition.notifications import NotificationCenter
from recognition.scheduler import PatternRecognitionScheduler
from recognition.summarizer import IntentSummarizer
from recognition.tracker import PatternTracker
from recording.manager import RecordingManager


def configure_logging() -> None:
    """Configure structured logging; JSON output when LOG_FORMAT=json."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if os.getenv("LOG_FORMAT") == "json"
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger()


class Application:
    """Main application container. One instance per process."""

    def __init__(self, config: Optional[PilotConfig] = None):
        self.config = config
        self.events = EventBus()
        self.registry = ExecutionRegistry()
        self.store: Optional[PatternStore] = None
        self.oracle: Optional[HttpOracle] = None
        self.browser: Optional[BrowserManager] = None
        self.tracker: Optional[PatternTracker] = None
        self.scheduler: Optional[PatternRecognitionScheduler] = None
        self.automations: Optional[AutomationService] = None
        self.recordings: Optional[RecordingManager] = None
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Start all components."""
        logger.info("application_starting")

        if self.config is None:
            loader = ConfigLoader(os.getenv("CONFIG_DIR", "./config"))
            self.config = loader.load(os.getenv("CONFIG_PATH"))
        config = self.config

        db_path = os.getenv("PILOT_DB_PATH", config.store.db_path)
        self.store = PatternStore(db_path)
        await self.store.initialize()

        self.oracle = HttpOracle(config.oracle, api_key=os.getenv("ORACLE_API_KEY"))
        self.browser = BrowserManager(config.browser)
        self.events.subscribe(self._log_event)

        detector = MidWorkflowDetector(self.store, self.events, config.detector)
        self.tracker = PatternTracker(
            self.store,
            detector,
            host=self.browser,
            oracle=self.oracle,
            store_config=config.store,
            oracle_config=config.oracle,
        )

        summarizer = IntentSummarizer(
            self.store,
            self.oracle,
            config.summary,
            oracle_timeout=config.oracle.timeout_seconds,
        )
        self.scheduler = PatternRecognitionScheduler(
            self.store,
            ConfidenceEngine(config.recognition),
            NotificationCenter(self.store, self.events),
            summarizer=summarizer,
            config=config.recognition,
        )

        self.automations = AutomationService(
            self.store,
            self.browser,
            self.registry,
            DeterministicReplayEngine(self.browser, self.events, self.registry, config.replay),
            AdaptiveReplayEngine(self.oracle, self.events, self.registry, config.adaptive),
        )
        self.recordings = RecordingManager(self.browser, self.events, config.recording)

        await self.scheduler.start()
        logger.info("application_started", config_hash=config.config_hash(), db_path=db_path)

    async def stop(self) -> None:
        """Stop all components."""
        logger.info("application_stopping")

        for state in self.registry.active():
            self.registry.cancel(state.execution_id)

        if self.recordings:
            self.recordings.clear_stale()

        if self.scheduler:
            await self.scheduler.stop()

        await self.events.drain()

        if self.browser:
            await self.browser.shutdown()

        if self.oracle:
            await self.oracle.close()

        if self.store:
            await self.store.close()

        logger.info("application_stopped")

    async def run(self) -> None:
        """Run until shutdown signal."""
        await self._shutdown_event.wait()

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()

    @staticmethod
    def _log_event(event: Event) -> None:
        logger.debug("event_emitted", event_type=event.type.value, **event.data)


async def main() -> None:
    """Main entry point."""
    load_dotenv()
    configure_logging()
    app = Application()

    # Setup signal handlers
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("shutdown_signal_received")
        app.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await app.start()
        await app.run()
    except Exception:
        logger.exception("application_error")
        sys.exit(1)
    finally:
        await app.stop()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
