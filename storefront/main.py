from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from storefront.api.routes_checkout import router as checkout_router
from storefront.api.routes_orders import router as orders_router
from storefront.core.config import get_settings
from storefront.core.logging import configure_logging
from storefront.core.ratelimit import RateLimiter
from storefront.domain.errors import StorefrontError
from storefront.persistence.pg import init_db

configure_logging()
logger = logging.getLogger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    app.state.checkout_limiter = RateLimiter(
        limit=settings.checkout_rate_limit,
        interval_seconds=settings.checkout_rate_window_seconds,
        max_keys=settings.rate_limit_max_keys,
    )
    logger.info("storefront ready: env=%s", settings.env)
    try:
        yield
    finally:
        app.state.checkout_limiter.close()


app = FastAPI(title=settings.app_name, lifespan=lifespan)


@app.middleware("http")
async def request_logging(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = int((time.perf_counter() - started) * 1000)
    response.headers["x-request-id"] = request_id
    logger.info(
        "request complete method=%s path=%s status=%s ms=%s",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
        extra={"rid": request_id},
    )
    return response


@app.exception_handler(StorefrontError)
async def storefront_error_handler(_: Request, exc: StorefrontError):
    logger.info("request rejected code=%s: %s", exc.code, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.get("/healthz")
def healthz() -> dict:
    return {"status": "ok"}


app.include_router(checkout_router)
app.include_router(orders_router)
