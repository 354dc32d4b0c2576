#!/usr/bin/env python3
"""Send a prompt to the relay daemon and print ChatGPT's reply.

Examples:
    ask-question "What is the capital of France?"
    ask-question -f question.md -o answer.md
    echo "Explain async/await" | ask-question
"""
import argparse
import os
import shutil
import subprocess
import sys
from pathlib import Path

import httpx

from relay.config import DEFAULT_TIMEOUT_MS

DEFAULT_SERVER_URL = "http://127.0.0.1:3033"
HTTP_OVERHEAD_S = 10.0
CLIPBOARD_COMMANDS = (
    ["pbcopy"],
    ["wl-copy"],
    ["xclip", "-selection", "clipboard"],
)


def _log(msg: str) -> None:
    print(f"[ask-question] {msg}", file=sys.stderr)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="ask-question",
        description="Send a prompt to ChatGPT and get the response.",
    )
    parser.add_argument("prompt", nargs="*", help="prompt text (read from stdin when omitted)")
    parser.add_argument("-f", "--file", type=Path, help="read prompt from file")
    parser.add_argument("-o", "--output", type=Path, help="write response to file")
    parser.add_argument("-t", "--timeout", type=int, default=DEFAULT_TIMEOUT_MS, help="response timeout in ms")
    parser.add_argument("--new-chat", action="store_true", help="start a new chat instead of continuing")
    parser.add_argument("--no-copy", action="store_true", help="do not copy the response to the clipboard")
    return parser.parse_args(argv)


def read_prompt(args: argparse.Namespace, stdin=None) -> str:
    stdin = stdin or sys.stdin
    if args.file:
        return args.file.read_text(encoding="utf-8").strip()
    if args.prompt:
        return " ".join(args.prompt).strip()
    if stdin.isatty():
        return ""
    return stdin.read().strip()


def check_server_health(client: httpx.Client) -> bool:
    try:
        response = client.get("/health", timeout=2.0)
        return response.json().get("ok") is True
    except (httpx.HTTPError, ValueError):
        return False


def ask_server(client: httpx.Client, prompt: str, timeout_ms: int, new_chat: bool) -> str:
    response = client.post(
        "/ask",
        json={"prompt": prompt, "timeout": timeout_ms, "newChat": new_chat},
        timeout=timeout_ms / 1000 + HTTP_OVERHEAD_S,
    )
    data = response.json()
    if not data.get("ok"):
        raise RuntimeError(data.get("error") or "Unknown server error")
    return data["text"]


def copy_to_clipboard(text: str) -> bool:
    for cmd in CLIPBOARD_COMMANDS:
        if shutil.which(cmd[0]) is None:
            continue
        result = subprocess.run(cmd, input=text, text=True, capture_output=True, check=False)
        if result.returncode == 0:
            return True
        stderr = result.stderr.strip() or "unknown error"
        print(f"warning: {cmd[0]} failed: {stderr}", file=sys.stderr)
    return False


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    prompt = read_prompt(args)
    if not prompt:
        _log("Error: No prompt provided")
        return 2

    server_url = os.environ.get("ASK_QUESTION_SERVER_URL", DEFAULT_SERVER_URL)
    with httpx.Client(base_url=server_url) as client:
        if not check_server_health(client):
            _log("Error: Server not running or not responding.")
            _log("Start it with: chatgpt-relay")
            return 1

        _log(f"Sending prompt ({len(prompt)} chars)...")
        try:
            text = ask_server(client, prompt, args.timeout, args.new_chat)
        except (RuntimeError, httpx.HTTPError, ValueError) as exc:
            _log(f"Error: {exc}")
            return 1

    print(text)

    if args.output:
        args.output.write_text(text, encoding="utf-8")
        _log(f"Response saved to: {args.output}")

    if not args.no_copy and copy_to_clipboard(text):
        _log("Response copied to clipboard")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
