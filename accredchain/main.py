"""AccredChain FastAPI application."""
import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from accredchain import __version__, config
from accredchain.api import admin, auth, credential, health, institution, verify
from accredchain.exceptions import AccredError, validation_error_from_pydantic
from accredchain.logging_config import configure_logging
from accredchain.store import get_storage, reset_storage

configure_logging()
log = logging.getLogger("accredchain")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    log.info("Starting AccredChain service...")

    try:
        storage = get_storage()
        log.info(f"AccredChain service started (backend={storage.backend})")
    except Exception as e:
        log.error(f"Failed to initialize storage: {e}")
        raise

    yield

    log.info("Shutting down AccredChain service...")
    await storage.close()
    reset_storage()
    log.info("AccredChain service stopped")


app = FastAPI(
    title=config.APP_NAME,
    version=__version__,
    description="Academic credential issuance and verification service",
    lifespan=lifespan,
)


# -----------------------------------------------------------------------------
# Error Handlers
# -----------------------------------------------------------------------------

@app.exception_handler(AccredError)
async def accred_error_handler(request: Request, exc: AccredError):
    """Map domain errors to ``{success: false, error, message[, errors]}``."""
    if exc.status_code >= 500:
        log.error(
            f"{exc.code}: {exc.message}",
            extra={"route": request.url.path, "method": request.method, "status": exc.status_code},
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Report malformed requests as field-level 400s, like domain validation errors."""
    error = validation_error_from_pydantic(exc)
    # FastAPI prefixes locations with "body"/"query"/"path"
    for item in error.errors:
        head, _, rest = item["field"].partition(".")
        if head in ("body", "query", "path"):
            item["field"] = rest or "payload"
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


# -----------------------------------------------------------------------------
# Version
# -----------------------------------------------------------------------------

@app.get("/version")
def version():
    """Return service version and build commit."""
    git_sha = os.getenv("GIT_SHA", "unknown")

    result = {"version": __version__, "git_sha": git_sha}
    if git_sha != "unknown":
        result["short_sha"] = git_sha[:7]

    return result


app.include_router(health.router)
app.include_router(auth.router)
app.include_router(admin.router)
app.include_router(institution.router)
app.include_router(credential.router)
app.include_router(verify.router)


@app.middleware("http")
async def request_logging(request: Request, call_next):
    """Log all requests with timing."""
    start = time.time()
    response = await call_next(request)
    duration_ms = int((time.time() - start) * 1000)

    log.info(
        f"request_complete status={response.status_code} duration_ms={duration_ms}",
        extra={
            "route": request.url.path,
            "method": request.method,
            "status": response.status_code,
        },
    )
    return response
