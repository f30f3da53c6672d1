"""
Tenant resolution for every inbound request.

The Host header is resolved once per request and the result stored on
request.state.tenant (a TenantRef, or None for platform hosts). A directory outage
answers 503 instead of pretending the host has no tenant.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from app.config.settings import settings
from app.core.exceptions import ResolutionFailed
from app.modules.isolation.strategies import TenantIsolationStrategy, get_isolation_strategy

logger = logging.getLogger(__name__)

# Probes must answer even when the directory is down
EXEMPT_PATHS = {"/health", "/ready"}


def get_strategy(app: FastAPI) -> TenantIsolationStrategy:
    strategy = getattr(app.state, "isolation_strategy", None)
    if strategy is None:
        strategy = get_isolation_strategy(settings)
        app.state.isolation_strategy = strategy
        logger.info(f"Tenant isolation mode: {strategy.mode}")
    return strategy


async def tenant_resolution_middleware(request: Request, call_next):
    request.state.tenant = None
    if request.url.path in EXEMPT_PATHS:
        return await call_next(request)

    host = request.headers.get("host", "")
    try:
        strategy = get_strategy(request.app)
        request.state.tenant = await run_in_threadpool(strategy.resolve, host)
    except ResolutionFailed:
        return JSONResponse(
            status_code=503,
            content={"detail": "Tenant directory unavailable, try again shortly"},
        )
    return await call_next(request)
