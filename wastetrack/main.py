import os

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from .config import settings
from .db import Base, SessionLocal, engine
from .logging import RequestIdMiddleware, setup_logging
from .auth.router import router as auth_router
from .routes.admin import router as admin_router
from .routes.companies import router as companies_router
from .routes.dashboard import router as dashboard_router
from .routes.drivers import router as drivers_router
from .routes.files import router as files_router
from .routes.notifications import router as notifications_router
from .routes.realtime import router as realtime_router
from .routes.rpc import router as rpc_router
from .routes.shipments import router as shipments_router
from .routes.terms import router as terms_router
from .routes.waste_types import router as waste_types_router
from .seed import seed_defaults
from .services.errors import ServiceError

logger = structlog.get_logger(__name__)


async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[settings.rate_limit],
        enabled=settings.rate_limit_enabled,
    )
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    app.add_exception_handler(ServiceError, service_error_handler)

    # Routers
    app.include_router(auth_router)
    app.include_router(companies_router)
    app.include_router(shipments_router)
    app.include_router(drivers_router)
    app.include_router(waste_types_router)
    app.include_router(notifications_router)
    app.include_router(terms_router)
    app.include_router(files_router)
    app.include_router(admin_router)
    app.include_router(dashboard_router)
    app.include_router(rpc_router)
    app.include_router(realtime_router)

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.on_event("startup")
    def _startup():
        logger.info("startup", environment=settings.environment)
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs(os.path.dirname(settings.database_url[len("sqlite:///"):]) or ".", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
            db = SessionLocal()
            try:
                seed_defaults(db)
            finally:
                db.close()

    return app


app = create_app()
