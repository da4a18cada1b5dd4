from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError

from db_models import FinalResponse, IdentifyRequest
from db_setup import init_db
from exceptions import InternalConsistencyViolation, InvalidRequest, ReconciliationError
from log_setup import configure_logging
from reconciliation import identify
from settings import get_settings

configure_logging(get_settings())

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings = get_settings()
    logger.info("Starting contact reconciliation API", database_path=settings.database_path)
    init_db(settings.database_path)
    yield
    logger.info("Contact reconciliation API stopped")


app = FastAPI(
    title="Bitespeed Contact Reconciliation API",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def malformed_request_handler(request: Request, exc: RequestValidationError) -> Response:
    logger.info("Rejected malformed request", path=request.url.path, errors=len(exc.errors()))
    return Response(status_code=400)


@app.exception_handler(InvalidRequest)
async def invalid_request_handler(request: Request, exc: InvalidRequest) -> Response:
    logger.info("Rejected request without identifiers", path=request.url.path)
    return Response(status_code=400)


@app.exception_handler(ReconciliationError)
async def reconciliation_error_handler(request: Request, exc: ReconciliationError) -> Response:
    context = exc.context if isinstance(exc, InternalConsistencyViolation) else {}
    logger.error(
        "Request failed",
        path=request.url.path,
        error_type=type(exc).__name__,
        error=str(exc),
        context=context,
    )
    return Response(status_code=500)


@app.get("/")
async def root():
    return {"message": "Bitespeed API is up"}


@app.post("/identify", response_model=FinalResponse)
def identify_contact(request: IdentifyRequest):
    contact = identify(request.email, request.phoneNumber)
    return FinalResponse(contact=contact)


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
