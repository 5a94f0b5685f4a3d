"""Ricotta pre-order API service entrypoint."""

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from services.api.app.config import get_settings
from services.api.app.db.init_db import init_db
from services.api.app.logging_config import configure_logging
from services.api.app.routers.admin import router as admin_router
from services.api.app.routers.checkout import router as checkout_router
from services.api.app.routers.webhooks import router as webhooks_router

configure_logging(get_settings().log_level)

app = FastAPI(title="Ricotta Pre-order API")

app.include_router(checkout_router)
app.include_router(webhooks_router)
app.include_router(admin_router)


@app.exception_handler(StarletteHTTPException)
async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # The storefront reads {"error": ...}; structured details pass through as-is.
    content = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail}
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request body", "details": jsonable_encoder(exc.errors())},
    )


@app.on_event("startup")
def _startup() -> None:
    init_db()


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}
