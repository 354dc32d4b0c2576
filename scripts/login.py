#!/usr/bin/env python3
"""One-time ChatGPT login.

Opens a headed browser, waits until you are logged in, then saves cookies and
localStorage to the storage state file the relay daemon loads at startup.
"""
import os
import subprocess
import sys
import time
from pathlib import Path

from relay.config import DEFAULT_CHATGPT_URL, DEFAULT_STORAGE_STATE_FILE

LOGIN_TIMEOUT_S = 300
LOGGED_OUT_SELECTORS = (
    'button:has-text("Log in")',
    'button:has-text("Sign up")',
    'a:has-text("Log in")',
    'a:has-text("Sign up")',
    '[data-testid="login-button"]',
    '[data-testid="signup-button"]',
)
LOGGED_IN_SELECTORS = (
    '[data-testid="profile-button"]',
    'button[aria-label*="profile" i]',
    'button[aria-label*="account" i]',
    'nav button:has(img[alt])',
    'header button:has(img[alt])',
)
AUTH_URL_MARKERS = ("/auth", "login.", "auth0")


def _log(msg: str) -> None:
    print(f"[relay-login] {msg}", file=sys.stderr)


def _run_checked(cmd: list[str], label: str) -> None:
    """Run a command and raise RuntimeError with stderr when it fails."""
    result = subprocess.run(cmd, capture_output=True, text=True, check=False)
    if result.returncode != 0:
        stderr = result.stderr.strip() or result.stdout.strip() or "unknown error"
        raise RuntimeError(f"{label} failed: {stderr}")


def _run_best_effort(cmd: list[str], label: str) -> None:
    """Run a command and continue when it fails, printing a warning."""
    result = subprocess.run(cmd, capture_output=True, text=True, check=False)
    if result.returncode != 0:
        stderr = result.stderr.strip() or result.stdout.strip() or "unknown error"
        print(f"warning: {label} failed: {stderr}", file=sys.stderr)


def _ensure_playwright_ready():
    """Return sync_playwright, attempting one-time bootstrap when needed."""
    try:
        from playwright.sync_api import sync_playwright

        return sync_playwright
    except ImportError:
        python = sys.executable or "python3"
        _run_checked([python, "-m", "pip", "install", "playwright"], "pip install playwright")
        _run_checked([python, "-m", "playwright", "install", "chromium"], "playwright install chromium")

    from playwright.sync_api import sync_playwright

    return sync_playwright


def _launch_chromium(p):
    """Launch headed Chromium, installing the browser or its deps on the known failures."""
    def launch():
        return p.chromium.launch(headless=False, args=["--disable-blink-features=AutomationControlled"])

    try:
        return launch()
    except Exception as exc:  # noqa: BLE001
        msg = str(exc)
        python = sys.executable or "python3"

        if "Host system is missing dependencies" in msg:
            _run_best_effort(
                [python, "-m", "playwright", "install-deps", "chromium"],
                "playwright install-deps chromium",
            )
            return launch()
        if "Executable doesn't exist" in msg:
            _run_checked([python, "-m", "playwright", "install", "chromium"], "playwright install chromium")
            return launch()
        raise


def _any_visible(page, selectors) -> bool:
    try:
        return page.locator(", ".join(selectors)).first.is_visible(timeout=500)
    except Exception:  # noqa: BLE001
        return False


def wait_for_login(page, timeout_s: float = LOGIN_TIMEOUT_S, settle_ms: int = 3000) -> bool:
    """Poll until the page looks logged in.

    A visible profile control is definitive. Otherwise the absence of every
    login control for ``settle_ms`` counts as logged in.
    """
    deadline = time.monotonic() + timeout_s

    while time.monotonic() < deadline:
        if any(marker in page.url for marker in AUTH_URL_MARKERS):
            page.wait_for_timeout(1000)
            continue

        if _any_visible(page, LOGGED_IN_SELECTORS):
            _log("Login detected! (user menu visible)")
            return True

        if not _any_visible(page, LOGGED_OUT_SELECTORS):
            page.wait_for_timeout(settle_ms)
            if not _any_visible(page, LOGGED_OUT_SELECTORS):
                _log("Login detected! (no login buttons)")
                return True

        page.wait_for_timeout(1000)

    return False


def main() -> int:
    storage_state_file = Path(
        os.environ.get("ASK_QUESTION_STORAGE_STATE_FILE", str(DEFAULT_STORAGE_STATE_FILE))
    ).expanduser()
    chatgpt_url = os.environ.get("CHATGPT_URL", DEFAULT_CHATGPT_URL)
    storage_state_file.parent.mkdir(parents=True, exist_ok=True)

    try:
        sync_playwright = _ensure_playwright_ready()
    except Exception as exc:  # noqa: BLE001
        reason = str(exc).strip() or "unknown import error"
        _log(f"playwright import failed: {reason}")
        return 3

    _log("Launching browser for login...")
    _log("Log into ChatGPT. The session is saved automatically once login is detected.")

    try:
        with sync_playwright() as p:
            browser = _launch_chromium(p)
            context = browser.new_context()
            page = context.new_page()
            page.goto(chatgpt_url, wait_until="domcontentloaded", timeout=45000)

            _log("Waiting for login...")
            if not wait_for_login(page):
                _log("Timeout waiting for login. Please try again.")
                browser.close()
                return 1

            # cookies can land a moment after the UI switches
            page.wait_for_timeout(2000)
            context.storage_state(path=str(storage_state_file))
            _log(f"Session saved to: {storage_state_file}")
            browser.close()
    except Exception as exc:  # noqa: BLE001
        _log(f"browser automation failed: {exc}")
        return 5

    _log("Done! You can now start the relay daemon (it runs headless).")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
