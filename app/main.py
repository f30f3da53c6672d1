import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from app.config.settings import settings
from app.core.exceptions import (
    PolicyDenied, ProvisioningPartialFailure, ReservedSlugConflict,
    ResolutionFailed, SlugValidationError, TenantNotFound
)
from app.core.tenant_middleware import tenant_resolution_middleware
from app.modules.auth import routes as auth_routes
from app.modules.session_bridge import routes as session_routes
from app.modules.tenancy import routes as tenancy_routes

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
app = FastAPI(
    title=settings.app_name,
    debug=settings.debug,
    redirect_slashes=False,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

NOT_FOUND = {"detail": "Not found"}


@app.exception_handler(TenantNotFound)
async def tenant_not_found_handler(request: Request, exc: TenantNotFound):
    return JSONResponse(status_code=404, content=NOT_FOUND)


@app.exception_handler(PolicyDenied)
async def policy_denied_handler(request: Request, exc: PolicyDenied):
    # Same body as a missing row, so denial does not reveal that the row exists
    logger.debug(f"Policy denied: {exc}")
    return JSONResponse(status_code=404, content=NOT_FOUND)


@app.exception_handler(ResolutionFailed)
async def resolution_failed_handler(request: Request, exc: ResolutionFailed):
    return JSONResponse(
        status_code=503,
        content={"detail": "Tenant directory unavailable, try again shortly"},
    )


@app.exception_handler(SlugValidationError)
async def slug_validation_handler(request: Request, exc: SlugValidationError):
    return JSONResponse(status_code=422, content={"detail": str(exc), "slug": exc.slug})


@app.exception_handler(ReservedSlugConflict)
async def slug_conflict_handler(request: Request, exc: ReservedSlugConflict):
    return JSONResponse(
        status_code=409,
        content={"detail": str(exc), "slug": exc.slug, "reason": exc.reason},
    )


@app.exception_handler(ProvisioningPartialFailure)
async def provisioning_failure_handler(request: Request, exc: ProvisioningPartialFailure):
    content = {"detail": f"Library creation failed at step '{exc.step}'", "step": exc.step}
    if not settings.is_production:
        content["error"] = str(exc.cause)
    return JSONResponse(status_code=500, content=content)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception: %s", exc)
    if settings.is_production:
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})
    return JSONResponse(status_code=500, content={"detail": str(exc)})


class SecurityHeadersMiddleware:
    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_with_headers(message):
            if message["type"] == "http.response.start":
                message.setdefault("headers", [])
                message["headers"].extend([
                    (b"X-Content-Type-Options", b"nosniff"),
                    (b"X-Frame-Options", b"DENY"),
                    (b"X-XSS-Protection", b"1; mode=block"),
                ])
            await send(message)

        await self.app(scope, receive, send_with_headers)


app.middleware("http")(tenant_resolution_middleware)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include module routes
app.include_router(auth_routes.router, prefix="/api/v1")
app.include_router(session_routes.router, prefix="/api/v1")
app.include_router(tenancy_routes.router, prefix="/api/v1")


@app.on_event("startup")
async def startup_event():
    logger.info(
        f"Application startup (root domain {settings.canonical_domain}, "
        f"isolation mode {settings.isolation_mode})"
    )


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Application shutdown")
    if settings.isolation_mode == "schema":
        from app.database.sql_engine import dispose_engine
        dispose_engine()


@app.get("/")
async def root(request: Request):
    tenant = getattr(request.state, "tenant", None)
    if tenant is not None:
        return {"message": f"Welcome to {tenant.name}", "library": tenant.slug, "status": "healthy"}
    return {"message": "Welcome to GameTaverns", "status": "healthy"}


@app.get("/health")
@limiter.exempt
async def health():
    return {"status": "healthy"}


@app.get("/ready")
@limiter.exempt
async def ready():
    """Readiness probe: extend here with directory checks if needed."""
    return {"status": "ready"}
