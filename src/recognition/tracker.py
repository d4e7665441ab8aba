"""Turns observed user actions into stored patterns."""

import asyncio
import time
import uuid
from typing import Any, Awaitable, Callable, Optional

import structlog
from pydantic import ValidationError as SchemaError

from browser.host import TabHost
from core.config import OracleConfig, StoreConfig
from core.errors import ValidationError
from core.models import (
    CopyPasteAction,
    CopyPastePayload,
    FormAction,
    FormPayload,
    NavigationAction,
    NavigationPayload,
    NavigationStep,
    Pattern,
    PatternType,
    is_sensitive_field,
)
from core.store import PatternStore
from oracle.base import DecisionOracle, JudgmentRequest, PatternJudgment, call_with_retries
from recognition.detector import MidWorkflowDetector

logger = structlog.get_logger()


class PatternTracker:
    """
    Records navigation, form and copy/paste activity.

    - Navigations are grouped per tab into sessions split by an idle gap
    - Form submissions with the same domain, selector and field names
      increment one pattern
    - Password-like fields are dropped before anything is stored
    - Tabs under automation control are not tracked
    """

    def __init__(
        self,
        store: PatternStore,
        detector: MidWorkflowDetector,
        host: Optional[TabHost] = None,
        oracle: Optional[DecisionOracle] = None,
        store_config: Optional[StoreConfig] = None,
        oracle_config: Optional[OracleConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.detector = detector
        self.host = host
        self.oracle = oracle
        self.store_config = store_config or StoreConfig()
        self.oracle_config = oracle_config or OracleConfig()
        self._sleep = sleep
        # find-or-insert spans several store calls
        self._lock = asyncio.Lock()

    def _suppressed(self, tab_id: Optional[str]) -> bool:
        return bool(self.host and tab_id and self.host.is_tracking_suppressed(tab_id))

    async def track_navigation(
        self,
        url: str,
        tab_id: str,
        timestamp: Optional[float] = None,
        title: Optional[str] = None,
    ) -> Optional[str]:
        """
        Append a navigation to the tab's current session.

        Returns:
            Pattern id the navigation was stored under, or None if suppressed
        """
        if self._suppressed(tab_id):
            logger.debug("navigation_not_tracked", tab_id=tab_id, reason="automation_mode")
            return None

        timestamp = timestamp or time.time()
        action = self._validated(NavigationAction, url=url, tab_id=tab_id, timestamp=timestamp, title=title)
        step = NavigationStep(url=url, timestamp=timestamp, tab_id=tab_id)

        async with self._lock:
            session = await self._latest_session(tab_id)
            gap = self.store_config.session_gap_seconds
            if session is not None and timestamp - session.last_seen <= gap:
                payload = session.payload.model_copy(
                    update={"sequence": [*session.payload.sequence, step]}
                )
                session = session.model_copy(update={"payload": payload, "last_seen": timestamp})
                logger.debug("navigation_appended", pattern_id=session.id, length=len(payload.sequence))
            else:
                session = Pattern(
                    id=str(uuid.uuid4()),
                    type=PatternType.NAVIGATION,
                    payload=NavigationPayload(sequence=[step], session_gap_seconds=gap),
                    first_seen=timestamp,
                    last_seen=timestamp,
                )
                logger.info("navigation_session_started", pattern_id=session.id, tab_id=tab_id)

            await self.store.put_pattern(session)
        await self._after_write(action)
        return session.id

    async def track_form_submission(
        self,
        domain: str,
        form_selector: str,
        fields: list[dict[str, Any]],
        timestamp: Optional[float] = None,
        tab_id: Optional[str] = None,
    ) -> Optional[str]:
        """Increment a matching form pattern or create one."""
        if self._suppressed(tab_id):
            return None

        timestamp = timestamp or time.time()
        kept = [f for f in fields if not is_sensitive_field(f.get("name", ""))]
        if len(kept) != len(fields):
            logger.debug("sensitive_fields_dropped", count=len(fields) - len(kept))

        action = self._validated(
            FormAction,
            domain=domain,
            form_selector=form_selector,
            fields=kept,
            timestamp=timestamp,
            tab_id=tab_id,
        )
        names = sorted(f.name for f in action.fields)

        async with self._lock:
            pattern_id = await self._increment_form(domain, form_selector, names, timestamp)
            if pattern_id is None:
                pattern = Pattern(
                    id=f"form-{uuid.uuid4().hex}",
                    type=PatternType.FORM,
                    payload=FormPayload(domain=domain, form_selector=form_selector, fields=action.fields),
                    first_seen=timestamp,
                    last_seen=timestamp,
                )
                await self.store.put_pattern(pattern)
                pattern_id = pattern.id
                logger.info("form_pattern_created", pattern_id=pattern_id, domain=domain, field_count=len(names))

        await self._after_write(action)
        return pattern_id

    async def _increment_form(
        self,
        domain: str,
        form_selector: str,
        names: list[str],
        timestamp: float,
    ) -> Optional[str]:
        for pattern in await self.store.list_patterns(pattern_type=PatternType.FORM):
            payload = pattern.payload
            if (
                payload.domain == domain
                and payload.form_selector == form_selector
                and sorted(payload.field_names()) == names
            ):
                count = await self.store.increment_occurrence(pattern.id, timestamp)
                logger.info("form_pattern_incremented", pattern_id=pattern.id, occurrence_count=count)
                return pattern.id
        return None

    async def track_copy_paste(
        self,
        pair: dict[str, Any],
        tab_id: Optional[str] = None,
    ) -> Optional[str]:
        """Increment a matching copy/paste pattern or create one."""
        if self._suppressed(tab_id):
            return None

        action = self._validated(CopyPasteAction, pair=pair, tab_id=tab_id)
        signature = action.pair.signature()
        timestamp = action.pair.timestamp or action.timestamp

        async with self._lock:
            pattern_id = None
            for pattern in await self.store.list_patterns(pattern_type=PatternType.COPY_PASTE):
                pairs = pattern.payload.pairs
                if pairs and pairs[0].signature() == signature:
                    await self.store.increment_occurrence(pattern.id, timestamp)
                    pattern_id = pattern.id
                    break
            else:
                pattern = Pattern(
                    id=f"copy-paste-{uuid.uuid4().hex}",
                    type=PatternType.COPY_PASTE,
                    payload=CopyPastePayload(pairs=[action.pair]),
                    first_seen=timestamp,
                    last_seen=timestamp,
                )
                await self.store.put_pattern(pattern)
                pattern_id = pattern.id
                logger.info("copy_paste_pattern_created", pattern_id=pattern_id)

        await self._after_write(action)
        return pattern_id

    async def judge_actions(self, actions: list[dict[str, Any]]) -> PatternJudgment:
        """
        Ask the oracle whether 2-3 recent actions form a pattern.

        Raises:
            ValidationError: malformed request or response
            OracleUnavailableError: after retries are exhausted
        """
        if self.oracle is None:
            raise ValidationError("No oracle configured", field="oracle")
        request = self._validated(JudgmentRequest, actions=actions)
        delays = [self.oracle_config.retry_delay_seconds] * (self.oracle_config.max_attempts - 1)
        return await call_with_retries(
            lambda: self.oracle.judge_pattern(request),
            delays=delays,
            timeout=self.oracle_config.timeout_seconds,
            call="judge_pattern",
            unavailable_message="Pattern analysis temporarily unavailable. Will retry automatically.",
            sleep=self._sleep,
        )

    async def _latest_session(self, tab_id: str) -> Optional[Pattern]:
        for pattern in await self.store.list_patterns(pattern_type=PatternType.NAVIGATION):
            sequence = pattern.payload.sequence
            if sequence and sequence[-1].tab_id == tab_id:
                return pattern
        return None

    async def _after_write(self, action) -> None:
        await self.store.prune(self.store_config.retention_days, self.store_config.max_patterns)
        await self.detector.track(action)

    @staticmethod
    def _validated(model, **data):
        try:
            return model(**data)
        except SchemaError as e:
            raise ValidationError(
                f"Invalid {model.__name__}: {e.error_count()} error(s)",
                field=model.__name__,
                context={"errors": e.errors(include_url=False)},
            )
