from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from backend.app.config import settings
from backend.app.logging_config import setup_logging

setup_logging(settings.log_dir)

app = FastAPI(title="Tradecast Image Manager")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

from backend.app.renders.router import router as renders_router  # noqa: E402

app.include_router(renders_router, tags=["renders"])

logger = logging.getLogger("tradecast.core")
logger.info("Tradecast backend starting")


@app.on_event("startup")
async def startup_event() -> None:
    logger.info("Running application startup tasks")
    from .renders.service import start_render_service

    try:
        start_render_service(app)
        svc = app.state.render_service
        workers = svc.registry.all()
        logger.info("Connected to %d workers: %s", len(workers), ", ".join(workers))
    except Exception:
        logger.exception("Application startup failed")
        raise


@app.on_event("shutdown")
async def shutdown_event() -> None:
    logger.info("Running application shutdown tasks")
    from .renders.service import stop_render_service

    try:
        await stop_render_service(app)
    except Exception:
        logger.exception("Error stopping render service")


def run() -> None:
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    run()
