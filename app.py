from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from relay.config import RelayConfig, relay_config_from_env
from relay.service import ChatRelay
from relay.session import BrowserSession

logger = logging.getLogger("relay.server")


class AskRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prompt: str | None = None
    timeout: float | None = Field(default=None, allow_inf_nan=False)
    new_chat: bool = Field(default=False, alias="newChat")


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "error": message})


@asynccontextmanager
async def lifespan(app: FastAPI):
    if app.state.relay is not None:
        yield
        return

    from playwright.async_api import async_playwright

    config: RelayConfig = app.state.config
    playwright = await async_playwright().start()
    try:
        session = await BrowserSession.create(playwright, config)
        relay = ChatRelay(session, config)
        await relay.start()
        app.state.relay = relay
        logger.info("Relay ready on http://%s:%d", config.host, config.port)
        try:
            yield
        finally:
            logger.info("Shutting down relay")
            app.state.relay = None
            await relay.close()
    finally:
        await playwright.stop()


def create_app(config: RelayConfig | None = None, relay: ChatRelay | None = None) -> FastAPI:
    app = FastAPI(lifespan=lifespan)
    app.state.config = config or relay_config_from_env()
    app.state.relay = relay

    @app.post("/ask")
    async def ask(payload: AskRequest):
        prompt = (payload.prompt or "").strip()
        if not prompt:
            return _error(400, "Missing prompt")

        timeout_ms = int(payload.timeout) if payload.timeout is not None else None
        try:
            text = await app.state.relay.ask(prompt, timeout_ms=timeout_ms, new_chat=payload.new_chat)
        except RuntimeError as exc:
            return _error(500, str(exc))
        return {"ok": True, "text": text}

    @app.get("/health")
    async def health():
        return {"ok": True, "status": "ready"}

    @app.exception_handler(RequestValidationError)
    async def invalid_body(_, exc: RequestValidationError):
        if any(error.get("type") == "json_invalid" for error in exc.errors()):
            return _error(400, "Invalid JSON")
        return _error(400, "Invalid request body")

    @app.exception_handler(404)
    async def not_found(_, __):
        return _error(404, "Not found")

    @app.exception_handler(405)
    async def method_not_allowed(_, __):
        return _error(405, "Method not allowed")

    return app


app = create_app()


def main() -> int:
    config = relay_config_from_env()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    if not config.storage_state_path.exists():
        logger.error("No session found at %s", config.storage_state_path)
        logger.error("Run `python3 scripts/login.py` first to log into ChatGPT.")
        return 1

    import uvicorn

    uvicorn.run(create_app(config), host=config.host, port=config.port, log_level=config.log_level.lower())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
