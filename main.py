from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

import logging
import os
import time

from db import Base, SessionLocal, engine
from dependencies import get_db
from errors import AppError, conflict
from routers import ALL_ROUTERS

import orm  # noqa: F401  registers tables on Base.metadata

app = FastAPI(title="Equipment Loan API")

Base.metadata.create_all(bind=engine)

# -----------------------
# Logging
# -----------------------
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("app")

@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    elapsed_ms = int((time.time() - start) * 1000)
    logger.info(
        "method=%s path=%s status=%s elapsed_ms=%s",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
    )
    return response

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    logger.info(
        "app_error kind=%s path=%s message=%s",
        exc.kind.value,
        request.url.path,
        exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    # flushes outside crud.persist; the request session is rolled back on close
    logger.warning("integrity_error path=%s error=%s", request.url.path, exc.orig)
    err = conflict("conflicts with existing data")
    return JSONResponse(status_code=err.status_code, content=err.to_dict())

for router in ALL_ROUTERS:
    app.include_router(router)

@app.get("/")
def root():
    return {"message": "Equipment Loan API", "docs": "/docs"}

__all__ = ["app", "get_db", "SessionLocal"]
