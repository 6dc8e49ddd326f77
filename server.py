import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from dewey.app_context import AppContext
from dewey.config import Settings, configure_logging
from dewey.interactions import verify_signature

configure_logging()
logger = logging.getLogger("dewey_bot")


def create_app(context: Optional[AppContext] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "context", None) is None:
            app.state.context = AppContext.from_settings(Settings.from_env())
        yield
        await app.state.context.aclose()

    app = FastAPI(lifespan=lifespan)
    app.state.context = context

    @app.get("/")
    async def health():
        ctx: AppContext = app.state.context
        return {
            "status": "ok",
            "service": "dewey-bot",
            "message": "Dewey interactions endpoint is running",
            "provider": ctx.selection.current(),
            "available_providers": ctx.selection.available(),
        }

    @app.post("/interactions")
    async def interactions(request: Request):
        ctx: AppContext = app.state.context
        public_key = ctx.settings.discord_public_key
        if not public_key:
            logger.error("DISCORD_BOT_PUBLIC_KEY not set")
            return JSONResponse(status_code=500, content={"error": "Server configuration error"})

        signature = request.headers.get("x-signature-ed25519")
        timestamp = request.headers.get("x-signature-timestamp")
        if not signature or not timestamp:
            logger.error("Missing signature or timestamp")
            return JSONResponse(status_code=401, content={"error": "Missing signature or timestamp"})

        raw_body = await request.body()
        if not verify_signature(public_key, signature, timestamp, raw_body):
            logger.error("Invalid request signature")
            return JSONResponse(status_code=401, content={"error": "Invalid request signature"})

        try:
            interaction = json.loads(raw_body)
        except ValueError:
            return JSONResponse(status_code=400, content={"error": "Invalid JSON body"})

        try:
            ack = ctx.orchestrator.acknowledge(interaction)
            if ack.deferred:
                # hand off before answering; phase 2 must not be awaited here
                await ctx.dispatcher.dispatch(ack.job)
            return JSONResponse(status_code=200, content=ack.response)
        except Exception as e:
            logger.exception(f"Error handling interaction: {e}")
            return JSONResponse(status_code=500, content={"error": "Internal server error"})

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = Settings.from_env()
    logger.info(f"Dewey local server on http://localhost:{settings.port}/interactions")
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
