from __future__ import annotations

import logging

from relay.config import RelayConfig
from relay.errors import SessionStateMissing

logger = logging.getLogger(__name__)

# Keep timers and rendering running at full speed in a headless, unfocused tab.
BROWSER_ARGS = (
    "--disable-blink-features=AutomationControlled",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
)


def _same_location(url: str, base_url: str) -> bool:
    return url.rstrip("/") == base_url.rstrip("/")


class BrowserSession:
    """The one browser page shared by every relayed request.

    Only ``create``, ``get_page`` (recreate when closed) and ``close`` change
    the page. The request queue guarantees a single user at a time.
    """

    def __init__(self, context, base_url: str, browser=None, navigation_timeout_ms: int = 45_000) -> None:
        self.browser = browser
        self.context = context
        self.base_url = base_url
        self.navigation_timeout_ms = navigation_timeout_ms
        self.page = None

    @classmethod
    async def create(cls, playwright, config: RelayConfig) -> "BrowserSession":
        storage_state_path = config.storage_state_path
        if not storage_state_path.exists():
            raise SessionStateMissing(storage_state_path)

        logger.info("Starting %s browser with session %s", "headless" if config.headless else "headed", storage_state_path)
        browser = await playwright.chromium.launch(headless=config.headless, args=list(BROWSER_ARGS))
        context = await browser.new_context(storage_state=str(storage_state_path))
        session = cls(context, config.chatgpt_url, browser=browser)
        await session.get_page()
        logger.info("ChatGPT page opened at %s", config.chatgpt_url)
        return session

    async def get_page(self):
        if self.page is not None and not self.page.is_closed():
            return self.page

        for page in self.context.pages:
            if not page.is_closed() and page.url.startswith(self.base_url.rstrip("/")):
                logger.info("Reusing open ChatGPT tab")
                self.page = page
                return page

        if self.page is not None:
            logger.warning("ChatGPT page was closed, opening a new one")
        page = await self.context.new_page()
        await page.goto(self.base_url, wait_until="domcontentloaded", timeout=self.navigation_timeout_ms)
        self.page = page
        return page

    async def start_new_conversation(self) -> None:
        page = await self.get_page()
        if _same_location(page.url, self.base_url):
            return
        logger.info("Starting a new conversation")
        await page.goto(self.base_url, wait_until="domcontentloaded", timeout=self.navigation_timeout_ms)

    async def close(self) -> None:
        if self.browser is not None:
            await self.browser.close()
            self.browser = None
        elif self.context is not None:
            await self.context.close()
        self.context = None
        self.page = None
