import logging
import uvicorn
from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from favorqueue.core.config import get_settings
from favorqueue.core.logging import setup_logging
from favorqueue.core.database import db_manager, initialize_database
from favorqueue.api.tickets import router as tickets_router

settings = get_settings()
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    setup_logging(level=settings.LOG_LEVEL, log_file=settings.LOG_FILE)

    app = FastAPI(
        title=settings.APP_NAME,
        description="""
        ## Favor Queue API

        Creators receive favor requests in two lanes: **priority** (paid) and
        **personal** (free). Approved requests are served in a fixed
        interleaving of the two lanes.

        ### Features
        - **Ticket lifecycle**: submission, payment confirmation, approval, rejection, expiry, finish
        - **Numbering**: a creator-wide ticket number and a per-lane queue number, assigned on approval
        - **Workflow tags**: `current`, `next-up`, `pending` and `awaiting-feedback` kept in sync with the serving order
        - **Queue metrics** per lane for trackers and dashboards
        """,
        version="1.0.0",
        openapi_tags=[
            {
                "name": "tickets",
                "description": "Favor tickets, queue positions and creator queues"
            },
            {
                "name": "infra",
                "description": "Infrastructure and health check endpoints"
            }
        ]
    )

    # CORS
    allowed_origins = settings.CORS_ORIGINS or ["http://localhost:3000"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(tickets_router)

    # Healthcheck
    @app.get("/health", tags=["infra"])
    async def health():
        return {"status": "ok", "env": settings.ENV}

    @app.get("/health/db", tags=["infra"])
    async def health_db():
        health = await db_manager.check_database_health()
        status_code = 200 if health["status"] in ("healthy", "degraded") else 503
        return JSONResponse(status_code=status_code, content=health)

    # Global exception handler so unexpected failures land in the logs
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception(
            "Unhandled exception", extra={
                "method": request.method,
                "path": request.url.path,
            }
        )
        return JSONResponse(
            status_code=500,
            content={
                "detail": f"{exc.__class__.__name__}: {str(exc)}",
                "path": request.url.path,
            },
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        status_code = exc.status_code or 500
        if status_code >= 500:
            logger.error(
                "HTTP %s at %s %s: %s",
                status_code,
                request.method,
                request.url.path,
                exc.detail,
            )
        return JSONResponse(
            status_code=status_code,
            content={
                "detail": exc.detail,
                "path": request.url.path,
            },
            headers=getattr(exc, "headers", None),
        )

    @app.on_event("startup")
    async def startup_event():
        if settings.RUN_MIGRATIONS_ON_STARTUP:
            await initialize_database()
        else:
            logger.info("Skipping migrations on startup")

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run("favorqueue.main:app", host=settings.APP_HOST, port=settings.APP_PORT, reload=True)
