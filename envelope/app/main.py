import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, OperationalError

from envelope.app import config
from envelope.app.api.routes.accounts import router as accounts_router
from envelope.app.api.routes.audit import router as audit_router
from envelope.app.api.routes.auto_assign import router as auto_assign_router
from envelope.app.api.routes.budgets import router as budgets_router
from envelope.app.api.routes.categories import router as categories_router
from envelope.app.api.routes.main_data import router as main_data_router
from envelope.app.api.routes.transactions import router as transactions_router
from envelope.app.domain.errors import BudgetEngineError


logging.basicConfig(level=config.log_level())
logger = logging.getLogger(__name__)


app = FastAPI(title="Envelope Budget API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins(),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BudgetEngineError)
async def _budget_engine_error(request: Request, exc: BudgetEngineError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(RequestValidationError)
async def _request_validation_error(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "invalid request")
    return JSONResponse(
        status_code=400,
        content={"kind": "validation", "message": f"{location}: {message}" if location else message},
    )


@app.exception_handler(IntegrityError)
async def _integrity_error(request: Request, exc: IntegrityError):
    logger.info("integrity error on %s %s: %s", request.method, request.url.path, exc.orig)
    return JSONResponse(
        status_code=409,
        content={"kind": "conflict", "message": "the change conflicts with existing data"},
    )


@app.exception_handler(OperationalError)
async def _operational_error(request: Request, exc: OperationalError):
    logger.error("store unavailable on %s %s: %s", request.method, request.url.path, exc.orig)
    return JSONResponse(
        status_code=503,
        content={"kind": "transient_store", "message": "the data store is temporarily unavailable"},
    )


@app.exception_handler(Exception)
async def _unexpected_error(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"kind": "internal", "message": "unexpected error"})

app.include_router(budgets_router)
app.include_router(accounts_router)
app.include_router(categories_router)
app.include_router(transactions_router)
app.include_router(main_data_router)
app.include_router(auto_assign_router)
app.include_router(audit_router)
