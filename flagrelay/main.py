"""FastAPI application entrypoint."""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from flagrelay.config import get_settings
from flagrelay.db.dependencies import get_remote_executor
from flagrelay.routers import lookup, queue
from flagrelay.schemas.common import error_response
from flagrelay.services.remote_schema import init_remote_schema

logger = logging.getLogger(__name__)


def _bootstrap_remote_schema() -> None:
    """Ensure remote tables exist at process start."""

    try:
        init_remote_schema(get_remote_executor())
    except Exception:
        logger.exception("Remote schema bootstrap failed; continuing without it.")


@asynccontextmanager
async def lifespan(_: FastAPI):
    _bootstrap_remote_schema()
    yield


app = FastAPI(title=get_settings().app_name, version="0.1.0", lifespan=lifespan)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(_: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=error_response(str(exc.detail)))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("request.unhandled_error path=%s", request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content=error_response("Internal server error"))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    logger.debug("request.invalid_body errors=%s", exc.errors())
    return JSONResponse(status_code=400, content=error_response("Invalid request body"))


app.include_router(lookup.router, tags=["lookup"])
app.include_router(queue.router, tags=["queue"])


@app.get("/health")
def health() -> dict[str, str]:
    """Simple health check endpoint."""

    return {"status": "ok"}
