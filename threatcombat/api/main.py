"""
Threat Combat API - Main Application Entry Point

FastAPI backend for the Threat Combat membership platform.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from threatcombat.api.config import settings
from threatcombat.api.db.session import close_db, init_db
from threatcombat.api.errors import ThreatCombatError, ValidationError
from threatcombat.api.rate_limit import limiter, rate_limit_exceeded_handler

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    """Setup logging configuration."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    await init_db()
    logger.info("%s %s started", settings.APP_NAME, settings.APP_VERSION)
    yield
    # Shutdown
    await close_db()


async def threatcombat_error_handler(request: Request, exc: ThreatCombatError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed or missing input is a 400 like every other validation error."""
    fields = [".".join(str(p) for p in err.get("loc", ()) if p != "body") for err in exc.errors()]
    error = ValidationError(
        "Invalid request data",
        details={"fields": [f for f in fields if f]},
    )
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Threat Combat - Cybersecurity community membership API",
        docs_url="/api/docs" if settings.DEBUG else None,
        redoc_url="/api/redoc" if settings.DEBUG else None,
        lifespan=lifespan,
    )

    # Error handling
    app.add_exception_handler(ThreatCombatError, threatcombat_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    # Rate limiting
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    from threatcombat.api.auth.routes import router as auth_router
    from threatcombat.api.users.routes import router as users_router
    from threatcombat.api.chapters.routes import router as chapters_router
    from threatcombat.api.research.routes import router as research_router
    from threatcombat.api.events.routes import router as events_router
    from threatcombat.api.courses.routes import router as courses_router
    from threatcombat.api.admin.routes import router as audit_router

    app.include_router(auth_router, prefix="/api/v1/auth", tags=["Authentication"])
    app.include_router(users_router, prefix="/api/v1/users", tags=["Users"])
    app.include_router(chapters_router, prefix="/api/v1/chapters", tags=["Chapters"])
    app.include_router(research_router, prefix="/api/v1/research", tags=["Research"])
    app.include_router(events_router, prefix="/api/v1/events", tags=["Events"])
    app.include_router(courses_router, prefix="/api/v1/courses", tags=["Courses"])
    app.include_router(audit_router, prefix="/api/v1/audit", tags=["Audit"])

    # Health check endpoint
    @app.get("/api/health", tags=["Health"])
    async def health_check():
        return {
            "status": "healthy",
            "version": settings.APP_VERSION,
            "service": settings.APP_NAME,
        }

    return app


setup_logging(settings.LOG_LEVEL)
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "threatcombat.api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )
