from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from scrape_governor.config import settings
from scrape_governor.database import SessionLocal, init_db
from scrape_governor.services.business_hours import BusinessHoursGate
from scrape_governor.services.rate_limiter import get_rate_limiter
from scrape_governor.services.trace import get_trace_buffer
from scrape_governor.utils.logging_config import setup_logging

# Initialize Logging
setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: create tables and pick up hub overrides from the database
    init_db()
    db = SessionLocal()
    try:
        app.state.gate.refresh(db)
    finally:
        db.close()
    yield
    await app.state.trace.flush()


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        debug=settings.debug,
        lifespan=lifespan,
    )

    app.state.gate = BusinessHoursGate()
    app.state.rate_limiter = get_rate_limiter()
    app.state.trace = get_trace_buffer()

    # Register routes
    from scrape_governor.routes.api_sources import router as sources_router
    from scrape_governor.routes.api_ops import router as ops_router

    app.include_router(sources_router, prefix="/api/sources", tags=["sources"])
    app.include_router(ops_router, prefix="/api", tags=["ops"])

    @app.middleware("http")
    async def add_cache_headers(request: Request, call_next):
        response = await call_next(request)
        # Status feed must always be fresh.
        if request.url.path.startswith("/api/"):
            response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
            response.headers["Pragma"] = "no-cache"
            response.headers["Expires"] = "0"
        return response

    return app
