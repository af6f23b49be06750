from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio.session import AsyncSession

from jobqueue.api.v1 import api_v1_router
from jobqueue.core import settings
from jobqueue.core.exceptions import StoreUnavailable
from jobqueue.core.logger import info, error
from jobqueue.core.setup_logger import api_logger
from jobqueue.db import get_db, close_database


@asynccontextmanager
async def lifespan(_app: FastAPI):
    info(api_logger, "FastAPI application starting...")
    yield
    await close_database()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.ALLOW_CREDENTIALS,
    allow_methods=settings.CORS_METHODS,
    allow_headers=settings.CORS_HEADERS,
)

app.include_router(api_v1_router, prefix=settings.API_V1_STR)


@app.get("/")
def health_check():
    return {"status": "ok", "message": "Application running"}


@app.get("/db-health")
async def db_health_check(db: AsyncSession = Depends(get_db)):
    try:
        result = await db.execute(text('SELECT 1'))
        _ = result.scalar()
        return {"status": "ok", "message": "Database running"}
    except SQLAlchemyError as e:
        return {"status": "error", "message": str(e)}


@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(_request: Request, exc: StoreUnavailable):
    error(api_logger, "Job store unavailable", context={"error": str(exc)})
    return JSONResponse(status_code=503, content={"detail": "Job store unavailable"})
