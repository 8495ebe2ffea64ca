from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from creatorpay.core.errors import CommerceError, error_kind_status
from creatorpay.core.logs import configure_logging
from creatorpay.core.settings import S
from creatorpay.metrics import METRICS_ENABLED, metrics_endpoint, metrics_middleware, set_app_info
from creatorpay.routers.checkout import router as checkout_router
from creatorpay.routers.paypal import router as paypal_router

logger = logging.getLogger(__name__)


async def commerce_error_handler(request: Request, exc: CommerceError) -> JSONResponse:
    status_code = error_kind_status(exc)
    logger.error("%s %s failed (%s): %s", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def create_app() -> FastAPI:
    configure_logging(S.log_level)
    app = FastAPI(title="creatorpay", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    if METRICS_ENABLED:
        app.middleware("http")(metrics_middleware)
        set_app_info(app.title, app.version)
        app.get("/metrics")(metrics_endpoint)

    app.add_exception_handler(CommerceError, commerce_error_handler)

    app.include_router(paypal_router)
    app.include_router(checkout_router)

    return app


app = create_app()
