"""FastAPI application entry point."""

import logging

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S")

# Apply the same format to Uvicorn's loggers so they also show timestamps.
for _uvicorn_logger in ("uvicorn", "uvicorn.error", "uvicorn.access"):
    _log = logging.getLogger(_uvicorn_logger)
    _log.handlers.clear()
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S"))
    _log.addHandler(_handler)
    _log.propagate = False

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.db import create_tables
from src.schemas.job import ErrorResponse
from src.services.job_store import JobNotFoundError

app = FastAPI(title="Tech Pack Jobs")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET"],
    allow_headers=["*"],
)


@app.on_event("startup")
def startup() -> None:
    create_tables()


@app.exception_handler(JobNotFoundError)
async def _job_not_found_handler(request: Request, exc: JobNotFoundError) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content=ErrorResponse(error="not_found", detail=str(exc)).model_dump(),
    )


@app.exception_handler(Exception)
async def _global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(error="internal_error", detail=str(exc)).model_dump(),
    )


# Import and register routers after app is defined to avoid circular imports.
from src.api import jobs  # noqa: E402

app.include_router(jobs.router, prefix="/jobs", tags=["jobs"])
