from __future__ import annotations

import logging

from playwright.async_api import Error as PlaywrightError

from relay.errors import ComposerNotFound, SubmissionFailed
from relay.locators import LocatorResolver, Role
from relay.polling import Poller

logger = logging.getLogger(__name__)


async def submit_prompt(
    page,
    prompt: str,
    resolver: LocatorResolver,
    *,
    poller: Poller,
    composer_timeout_ms: int = 15_000,
    send_ready_timeout_ms: int = 5_000,
) -> int:
    """Type ``prompt`` into the composer and send it.

    Returns the number of assistant messages on the page before sending, which
    anchors the reply to this request. Sending is only issued here; the
    completion detector verifies that a reply actually arrives.
    """
    composer = await resolver.wait_for(page, Role.COMPOSER, composer_timeout_ms, poller)
    if composer is None:
        candidates = ", ".join(str(s) for s in resolver.strategies(Role.COMPOSER))
        raise ComposerNotFound(f"Could not find ChatGPT composer using known selectors: {candidates}")

    await _fill_composer(composer, prompt)

    messages = await resolver.collection(page, Role.ASSISTANT_MESSAGE)
    before_count = await messages.count()

    send_button = await _wait_for_send_button(page, resolver, poller, send_ready_timeout_ms)
    if send_button is not None:
        try:
            await send_button.click(timeout=3_000)
            logger.debug("Prompt sent with send button")
            return before_count
        except PlaywrightError as exc:
            logger.debug("Send button click failed, falling back to Enter: %s", exc)

    try:
        await composer.press("Enter")
    except PlaywrightError as exc:
        raise SubmissionFailed(f"Could not submit prompt: {exc}") from exc
    logger.debug("Prompt sent with Enter key")
    return before_count


async def _fill_composer(composer, prompt: str) -> None:
    # fill() covers textarea, input and contenteditable; typing is the fallback
    # for editors that reject programmatic fills.
    try:
        await composer.fill(prompt)
    except PlaywrightError as exc:
        logger.debug("Composer fill failed, typing instead: %s", exc)
        try:
            await composer.click()
            await composer.type(prompt)
        except PlaywrightError as type_exc:
            raise SubmissionFailed(f"Could not enter prompt into composer: {type_exc}") from type_exc


async def _wait_for_send_button(page, resolver: LocatorResolver, poller: Poller, timeout_ms: int):
    ready = None

    async def probe() -> bool:
        nonlocal ready
        button = await resolver.resolve(page, Role.SEND_BUTTON)
        if button is None:
            return False
        try:
            enabled = await button.is_enabled()
            aria_disabled = await button.get_attribute("aria-disabled")
        except PlaywrightError:
            return False
        if enabled and aria_disabled != "true":
            ready = button
            return True
        return False

    await poller.until(probe, poller.deadline(timeout_ms))
    return ready
