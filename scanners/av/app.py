import logging
import time
from functools import lru_cache

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.datastructures import UploadFile

from .config import Settings, configure_logging, get_settings
from .engine import ClamScanner, ScanInvocation, Scanner, resolve_scanner_path
from .outcome import Failure, Infected, interpret
from .storage import UploadTooLarge, harden, scoped_upload, store_upload

logger = logging.getLogger(__name__)

app = FastAPI(title="AV Scan API", version="1.0.0", docs_url="/api-docs")


class ScanResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    clean: bool
    raw_output: str = Field(alias="rawOutput")


class ErrorResponse(BaseModel):
    error: str
    details: str


# The form is read by hand in scan(), so the upload field is described here for /api-docs.
SCAN_REQUEST_BODY = {
    "requestBody": {
        "required": True,
        "content": {
            "multipart/form-data": {
                "schema": {
                    "type": "object",
                    "properties": {"file": {"type": "string", "format": "binary"}},
                    "required": ["file"],
                }
            }
        },
    }
}


@lru_cache
def _default_scanner() -> ClamScanner:
    settings = get_settings()
    return ClamScanner(
        executable=resolve_scanner_path(override=settings.scanner_path),
        timeout=settings.scan_timeout,
        max_concurrency=settings.max_concurrent_scans,
    )


def get_scanner() -> Scanner:
    return _default_scanner()


def _error(status_code: int, error: str, details: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"error": error, "details": details})


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):  # noqa: ARG001
    content = exc.detail if isinstance(exc.detail, dict) else {"detail": exc.detail}
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):  # noqa: ARG001
    return JSONResponse(
        status_code=422,
        content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
    )


@app.get("/")
def info(settings: Settings = Depends(get_settings)):
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "description": "A FastAPI service that provides antivirus scanning capabilities using ClamAV",
        "endpoints": {
            "scan": "POST /scan - Scan uploaded file for viruses",
            "docs": "GET /api-docs - API documentation",
        },
        "scanner": {
            "name": "ClamAV",
            "type": "Open Source Antivirus Engine",
        },
    }


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post(
    "/scan",
    response_model=ScanResult,
    responses={400: {"model": ErrorResponse}, 413: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    openapi_extra=SCAN_REQUEST_BODY,
)
async def scan(
    request: Request,
    settings: Settings = Depends(get_settings),
    scanner: Scanner = Depends(get_scanner),
):
    # A plain text "file" field carries no payload, same as a missing one.
    async with request.form() as form:
        file = form.get("file")
        if not isinstance(file, UploadFile):
            raise _error(400, "No file provided", "Please upload a file to scan")

        try:
            upload = await store_upload(file, settings.upload_dir, settings.max_upload_bytes)
        except UploadTooLarge as exc:
            raise _error(413, "File too large", str(exc)) from exc

    started = time.monotonic()
    # The stored copy is removed on every exit path before a response is built.
    with scoped_upload(upload) as path:
        harden(path)
        try:
            invocation = await scanner.invoke(path)
        except Exception as exc:
            logger.exception("Scanner raised while scanning %r", upload.original_name)
            invocation = ScanInvocation(
                command_line="", exit_code=None, error=str(exc) or type(exc).__name__
            )
    elapsed = time.monotonic() - started

    outcome = interpret(invocation)
    if isinstance(outcome, Failure):
        logger.error(
            "Scan of %r failed (exit code %s): %s",
            upload.original_name, invocation.exit_code, outcome.details,
        )
        raise _error(500, outcome.message, outcome.details)

    if isinstance(outcome, Infected):
        logger.warning("Threat detected in %r: %s", upload.original_name, outcome.raw_output.strip())
    logger.info(
        "Scanned %r (%d bytes) in %.2fs: %s (exit code %s)",
        upload.original_name, upload.size, elapsed,
        "infected" if isinstance(outcome, Infected) else "clean", invocation.exit_code,
    )
    return ScanResult(clean=not isinstance(outcome, Infected), raw_output=outcome.raw_output)


def serve() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info(
        "Starting %s on %s:%s (scanner=%s)",
        settings.app_name, settings.host, settings.port,
        resolve_scanner_path(override=settings.scanner_path),
    )
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    serve()
