"""Decide when a ChatGPT reply is finished, from UI signals alone.

The UI never says "done". The detector walks a small state machine::

    AWAITING_START -> GENERATING -> STABILIZING -> DONE
    any non-terminal state -> ERROR | TIMEOUT

AWAITING_START waits briefly for the busy indicator (the stop button). Fast
replies can finish before it renders, so a missing indicator is not a failure.
GENERATING waits for the indicator to go away. STABILIZING re-reads the reply
until it has stayed identical for ``stable_polls`` poll intervals, clicking
"Continue generating" whenever it shows up.

When the overall timeout passes, a final read is taken. Non-empty text is
returned as a partial success; an empty read raises ResponseTimeoutError.
"""

from __future__ import annotations

import logging

from playwright.async_api import Error as PlaywrightError

from relay.config import DetectorSettings
from relay.errors import ResponseTimeoutError, SessionExpired, UpstreamError
from relay.locators import LocatorResolver, Role
from relay.models import DetectionResult, DetectionState
from relay.polling import Deadline, Poller

logger = logging.getLogger(__name__)

AUTH_URL_MARKERS = ("/auth", "login.openai.com", "auth.openai.com")


async def check_error_states(page, resolver: LocatorResolver) -> None:
    """Raise SessionExpired or UpstreamError if the page shows either."""
    url = page.url or ""
    if any(marker in url for marker in AUTH_URL_MARKERS):
        raise SessionExpired()

    if await resolver.resolve(page, Role.LOGIN_BUTTON) is not None:
        raise SessionExpired()

    banner = await resolver.resolve(page, Role.ERROR_BANNER)
    if banner is not None:
        try:
            detail = (await banner.inner_text(timeout=1_000)).strip()
        except PlaywrightError:
            detail = ""
        raise UpstreamError(detail or "Unknown error")


class CompletionDetector:
    def __init__(
        self,
        page,
        resolver: LocatorResolver,
        before_count: int,
        timeout_ms: int,
        settings: DetectorSettings | None = None,
        poller: Poller | None = None,
        request_id: str = "-",
    ) -> None:
        self.page = page
        self.resolver = resolver
        self.before_count = before_count
        self.timeout_ms = timeout_ms
        self.settings = settings or DetectorSettings()
        self.poller = poller or Poller(self.settings.poll_interval_ms)
        self.request_id = request_id

        self.state = DetectionState.AWAITING_START
        self.last_text = ""
        self.stable_ms = 0.0
        self.continuations = 0
        self.history: list[DetectionState] = [self.state]
        self._target = None

    async def run(self) -> DetectionResult:
        deadline = self.poller.deadline(self.timeout_ms)
        self._target = await self._select_target()

        try:
            text = await self._detect(deadline)
        except (SessionExpired, UpstreamError) as exc:
            self._transition(DetectionState.ERROR)
            logger.info("[%s] detection failed: %s", self.request_id, exc)
            raise

        if text is None:
            return await self._on_timeout()
        self._transition(DetectionState.DONE)
        return DetectionResult(DetectionState.DONE, text)

    async def _detect(self, deadline: Deadline) -> str | None:
        await self._await_start(deadline)
        if deadline.expired():
            return None

        self._transition(DetectionState.GENERATING)
        if not await self._await_generation_end(deadline):
            return None

        self._transition(DetectionState.STABILIZING)
        return await self._stabilize(deadline)

    def _transition(self, state: DetectionState) -> None:
        if self.state.terminal:
            raise RuntimeError(f"detector already finished in state {self.state.value}")
        logger.debug("[%s] %s -> %s", self.request_id, self.state.value, state.value)
        self.state = state
        self.history.append(state)

    async def _select_target(self):
        messages = await self.resolver.collection(self.page, Role.ASSISTANT_MESSAGE)
        if self.settings.track_by_index:
            return messages.nth(self.before_count)
        return messages.last

    async def _busy(self) -> bool:
        return await self.resolver.resolve(self.page, Role.STOP_BUTTON) is not None

    async def _await_start(self, deadline: Deadline) -> None:
        start_deadline = self.poller.deadline(self.settings.start_timeout_ms(self.timeout_ms))

        async def started() -> bool:
            await check_error_states(self.page, self.resolver)
            return await self._busy()

        if not await self.poller.until(started, start_deadline.earliest(deadline)):
            logger.debug("[%s] busy indicator never appeared, continuing", self.request_id)

    async def _await_generation_end(self, deadline: Deadline) -> bool:
        async def finished() -> bool:
            await check_error_states(self.page, self.resolver)
            return not await self._busy()

        return await self.poller.until(finished, deadline)

    async def _stabilize(self, deadline: Deadline) -> str | None:
        threshold_ms = self.settings.stable_threshold_ms
        previous_at = self.poller.now_ms()

        while not deadline.expired():
            await check_error_states(self.page, self.resolver)
            now = self.poller.now_ms()

            if await self._continue_generation():
                self.stable_ms = 0.0
                previous_at = now
                await self.poller.tick(deadline)
                continue

            text = await self._read_text()
            if text and text == self.last_text:
                self.stable_ms += now - previous_at
                if self.stable_ms >= threshold_ms:
                    return text
            else:
                self.stable_ms = 0.0
                self.last_text = text
            previous_at = now
            await self.poller.tick(deadline)

        return None

    async def _continue_generation(self) -> bool:
        button = await self.resolver.resolve(self.page, Role.CONTINUE_BUTTON)
        if button is None:
            return False
        self.continuations += 1
        logger.info("[%s] clicking continue generating (%d)", self.request_id, self.continuations)
        try:
            await button.click()
        except PlaywrightError as exc:
            logger.debug("[%s] continue click failed: %s", self.request_id, exc)
        return True

    async def _read_text(self) -> str:
        try:
            text = await self._target.inner_text(timeout=self.settings.read_timeout_ms)
        except PlaywrightError:
            return ""
        return (text or "").strip()

    async def _on_timeout(self) -> DetectionResult:
        self._transition(DetectionState.TIMEOUT)
        text = await self._read_text()
        if text:
            logger.warning(
                "[%s] timed out after %dms, returning partial text (%d chars)",
                self.request_id,
                self.timeout_ms,
                len(text),
            )
            return DetectionResult(DetectionState.TIMEOUT, text, partial=True)
        raise ResponseTimeoutError(self.timeout_ms)
