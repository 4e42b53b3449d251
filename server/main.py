# Application entry point: wires settings, cache, HTTP pool, aggregator and sessions

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.config import settings
from core.exceptions import (
    ConfigurationError,
    HealthbotException,
    SessionNotFoundError,
    ValidationError
)
from routers.medical_router import router as medical_router
from services.cache import CacheManager
from services.medical_apis import RateLimiterFactory, build_aggregator
from services.session import SessionStorage

# Configure logging
logging.basicConfig(level=settings.log_level, format=settings.log_format)
logger = logging.getLogger(__name__)


def create_app(transport: Optional[httpx.AsyncBaseTransport] = None,
               rate_limiter_factory: Optional[RateLimiterFactory] = None) -> FastAPI:
    """Build the API; ``transport`` swaps the outbound HTTP layer (tests use httpx.MockTransport)"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"🚀 {settings.app_name} starting up ({settings.environment})...")

        cache = CacheManager(
            max_entries=settings.cache_max_entries,
            sweep_interval_seconds=settings.cache_sweep_interval_seconds
        )
        cache.start()
        http_client = httpx.AsyncClient(transport=transport, follow_redirects=True)

        app.state.cache = cache
        app.state.http_client = http_client
        app.state.aggregator = build_aggregator(settings, cache, http_client, rate_limiter_factory)
        app.state.sessions = SessionStorage(history_limit=settings.session_history_limit)

        logger.info("✅ All systems operational!")
        try:
            yield
        finally:
            await http_client.aclose()
            await cache.close()
            logger.info("👋 Shutdown complete")

    app = FastAPI(
        title=settings.app_name,
        description="Multi-source medical information aggregation with confidence scoring",
        version=settings.app_version,
        lifespan=lifespan
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # =========================================================================
    # EXCEPTION HANDLERS
    # =========================================================================

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(status_code=422, content={"success": False, "error": exc.message,
                                                      "error_code": exc.error_code})

    @app.exception_handler(SessionNotFoundError)
    async def session_not_found_handler(request: Request, exc: SessionNotFoundError):
        return JSONResponse(status_code=404, content={"success": False, "error": exc.message,
                                                      "error_code": exc.error_code})

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError):
        logger.error(f"❌ Configuration error: {exc.message}")
        return JSONResponse(status_code=500, content={"success": False, "error": exc.message,
                                                      "error_code": exc.error_code})

    @app.exception_handler(HealthbotException)
    async def healthbot_error_handler(request: Request, exc: HealthbotException):
        logger.error(f"❌ Unhandled service error: {exc.message}")
        return JSONResponse(status_code=500, content={"success": False, "error": exc.message,
                                                      "error_code": exc.error_code})

    # =========================================================================
    # CORE ENDPOINTS
    # =========================================================================

    @app.get("/")
    async def root():
        return {
            "message": settings.app_name,
            "version": settings.app_version,
            "status": "running",
            "sources": ["RxNorm", "FHIR", "ClinicalTrials.gov", "MedlinePlus", "OpenFDA", "MyHealthfinder"],
            "endpoints": {
                "analysis": ["/api/analyze"],
                "lookups": ["/api/medication-lookup", "/api/clinical-trials", "/api/health-info"],
                "sessions": ["/api/session/{session_id}/context", "/api/session/{session_id}"],
                "cache": ["/api/cache/stats", "/api/cache"],
                "health": ["/health"]
            }
        }

    @app.get("/health")
    async def health_check(request: Request):
        api_status = await request.app.state.aggregator.get_api_status()
        return {
            "status": api_status["overall"],
            "timestamp": datetime.now().isoformat(),
            "medical_apis": api_status,
            "cache": request.app.state.cache.stats(),
            "sessions": await request.app.state.sessions.get_all_sessions()
        }

    app.include_router(medical_router)
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host=settings.host, port=settings.port, reload=settings.reload)
