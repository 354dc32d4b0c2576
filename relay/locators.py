"""Semantic UI roles and the selector candidates used to find them.

Each role maps to an ordered tuple of strategies. Structural selectors
(test ids, ids, attributes) come first, text matches last, and the first
candidate with a visible element wins.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from playwright.async_api import Error as PlaywrightError

from relay.polling import Poller

logger = logging.getLogger(__name__)


class Role(str, Enum):
    COMPOSER = "composer"
    SEND_BUTTON = "send_button"
    STOP_BUTTON = "stop_button"
    CONTINUE_BUTTON = "continue_button"
    ASSISTANT_MESSAGE = "assistant_message"
    ERROR_BANNER = "error_banner"
    LOGIN_BUTTON = "login_button"


STRATEGY_KINDS = ("testid", "css", "button_text")


@dataclass(frozen=True)
class LocatorStrategy:
    kind: str
    value: str

    def __post_init__(self) -> None:
        if self.kind not in STRATEGY_KINDS:
            raise ValueError(f"Unknown locator strategy kind: {self.kind!r}")

    def locate(self, page):
        if self.kind == "testid":
            return page.get_by_test_id(self.value)
        if self.kind == "button_text":
            return page.locator("button").filter(has_text=self.value)
        return page.locator(self.value)

    def __str__(self) -> str:
        return f"{self.kind}={self.value}"


def css(value: str) -> LocatorStrategy:
    return LocatorStrategy("css", value)


def by_test_id(value: str) -> LocatorStrategy:
    return LocatorStrategy("testid", value)


def button_text(value: str) -> LocatorStrategy:
    return LocatorStrategy("button_text", value)


# The contenteditable composer comes before #prompt-textarea because ChatGPT
# keeps a hidden fallback textarea with that id.
DEFAULT_CANDIDATES: dict[Role, tuple[LocatorStrategy, ...]] = {
    Role.COMPOSER: (
        css('div[contenteditable="true"][data-placeholder]'),
        css('div#prompt-textarea[contenteditable="true"]'),
        css('#prompt-textarea:not([class*="fallback"])'),
        css('div.ProseMirror[contenteditable="true"]'),
        css('textarea[data-id="root"]'),
        css('div[contenteditable="true"][role="textbox"]'),
        css('textarea[aria-label*="Message"]'),
        css('textarea[placeholder*="Message"]'),
    ),
    Role.SEND_BUTTON: (
        by_test_id("send-button"),
        css('form button[type="submit"]'),
        css('button[aria-label*="Send"]'),
    ),
    Role.STOP_BUTTON: (
        by_test_id("stop-button"),
        css('button[aria-label*="Stop"]'),
        button_text("Stop generating"),
    ),
    Role.CONTINUE_BUTTON: (
        by_test_id("continue-button"),
        button_text("Continue generating"),
        button_text("Continue"),
    ),
    Role.ASSISTANT_MESSAGE: (
        css('[data-message-author-role="assistant"]'),
    ),
    Role.ERROR_BANNER: (
        by_test_id("error-toast"),
        css('[role="alert"]'),
        css(".toast-error"),
        css('[class*="toast"]:has-text("Something went wrong")'),
    ),
    Role.LOGIN_BUTTON: (
        by_test_id("login-button"),
        css('a[href*="/auth"]'),
        button_text("Log in"),
        button_text("Sign in"),
    ),
}


def load_candidates(path: Path) -> dict[Role, tuple[LocatorStrategy, ...]]:
    """Read per-role overrides from a JSON file.

    Entries are either plain CSS strings or ``{"kind": ..., "value": ...}``
    objects, listed in priority order.
    """
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError(f"Selectors file {path} must contain a JSON object")

    overrides: dict[Role, tuple[LocatorStrategy, ...]] = {}
    for name, entries in raw.items():
        try:
            role = Role(name)
        except ValueError as exc:
            raise ValueError(f"Unknown role {name!r} in selectors file {path}") from exc
        strategies = []
        for entry in entries:
            if isinstance(entry, str):
                strategies.append(css(entry))
            else:
                strategies.append(LocatorStrategy(entry["kind"], entry["value"]))
        if not strategies:
            raise ValueError(f"Role {name!r} in selectors file {path} has no candidates")
        overrides[role] = tuple(strategies)
    return overrides


class LocatorResolver:
    def __init__(self, candidates: dict[Role, tuple[LocatorStrategy, ...]] | None = None) -> None:
        self.candidates = dict(DEFAULT_CANDIDATES)
        if candidates:
            self.candidates.update(candidates)

    @classmethod
    def from_file(cls, path: Path | None) -> "LocatorResolver":
        if path is None:
            return cls()
        logger.info("Loading selector overrides from %s", path)
        return cls(load_candidates(path))

    def strategies(self, role: Role) -> tuple[LocatorStrategy, ...]:
        return self.candidates[role]

    async def resolve(self, page, role: Role):
        """Return the first candidate with a visible element, or None."""
        for strategy in self.strategies(role):
            candidate = strategy.locate(page).filter(visible=True).first
            try:
                if await candidate.is_visible():
                    return candidate
            except PlaywrightError as exc:
                logger.debug("Probe for %s via %s failed: %s", role.value, strategy, exc)
        return None

    async def wait_for(self, page, role: Role, timeout_ms: int, poller: Poller):
        found = None

        async def probe() -> bool:
            nonlocal found
            found = await self.resolve(page, role)
            return found is not None

        await poller.until(probe, poller.deadline(timeout_ms))
        return found

    async def collection(self, page, role: Role):
        """Return every element of the first candidate that matches anything."""
        strategies = self.strategies(role)
        for strategy in strategies:
            candidate = strategy.locate(page)
            try:
                if await candidate.count() > 0:
                    return candidate
            except PlaywrightError as exc:
                logger.debug("Count for %s via %s failed: %s", role.value, strategy, exc)
        return strategies[0].locate(page)
