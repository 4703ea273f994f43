"""
NightShift Console - FastAPI application entry point.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from nightshift.scheduler.scheduler import NightShiftScheduler

from server.config import ConsoleConfig
from server.dependencies import set_scheduler
from server.routers import nightshift


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = ConsoleConfig()

    scheduler = NightShiftScheduler.from_settings()
    set_scheduler(scheduler)
    if config.run_tick_loop:
        await scheduler.start()

    yield

    await scheduler.stop()


def create_app() -> FastAPI:
    app = FastAPI(
        title="NightShift Console",
        description="State and task queue dashboard for the NightShift scheduler",
        version="0.1.0",
        lifespan=lifespan,
    )

    config = ConsoleConfig()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(nightshift.router)

    @app.get("/api/health")
    async def health():
        return {"status": "ok", "service": "nightshift-console"}

    return app


app = create_app()
