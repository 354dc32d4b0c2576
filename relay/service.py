from __future__ import annotations

import logging

from playwright.async_api import Error as PlaywrightError

from relay.config import RelayConfig
from relay.detector import CompletionDetector
from relay.errors import RelayError
from relay.locators import LocatorResolver
from relay.models import Request
from relay.polling import Poller
from relay.request_queue import RequestQueue
from relay.session import BrowserSession
from relay.submission import submit_prompt

logger = logging.getLogger(__name__)


class ChatRelay:
    """Relays prompts to ChatGPT one at a time over a shared browser session."""

    def __init__(
        self,
        session: BrowserSession,
        config: RelayConfig,
        resolver: LocatorResolver | None = None,
        poller: Poller | None = None,
    ) -> None:
        self.session = session
        self.config = config
        self.resolver = resolver or LocatorResolver.from_file(config.selectors_path)
        self.poller = poller or Poller(config.detector.poll_interval_ms)
        self.queue = RequestQueue(self.process)

    async def start(self) -> None:
        self.queue.start()

    async def close(self) -> None:
        await self.queue.stop()
        await self.session.close()

    async def ask(self, prompt: str, timeout_ms: int | None = None, new_chat: bool = False) -> str:
        request = Request.create(prompt, self.config.clamp_timeout(timeout_ms), new_chat=new_chat)
        logger.info("[%s] processing prompt (%d chars)", request.id, len(prompt))
        return await self.queue.enqueue(request)

    async def process(self, request: Request) -> str:
        try:
            page = await self.session.get_page()
            if request.new_chat:
                await self.session.start_new_conversation()

            before_count = await submit_prompt(
                page,
                request.prompt,
                self.resolver,
                poller=self.poller,
                composer_timeout_ms=self.config.composer_timeout_ms,
                send_ready_timeout_ms=self.config.send_ready_timeout_ms,
            )
            detector = CompletionDetector(
                page,
                self.resolver,
                before_count,
                request.timeout_ms,
                settings=self.config.detector,
                poller=self.poller,
                request_id=request.id,
            )
            result = await detector.run()
        except RelayError as exc:
            logger.error("[%s] %s: %s", request.id, exc.kind, exc)
            raise
        except PlaywrightError as exc:
            logger.error("[%s] browser automation failed: %s", request.id, exc)
            raise RelayError(f"Browser automation failed: {exc}") from exc

        if result.partial:
            logger.warning("[%s] returning partial response (%d chars)", request.id, len(result.text))
        else:
            logger.info("[%s] response received (%d chars)", request.id, len(result.text))
        return result.text
