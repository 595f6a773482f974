# /backend/abby/main.py

from __future__ import annotations
import logging

from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from contextlib import asynccontextmanager

from abby.config import get_settings
from abby.db import get_db
from abby.errors import DomainError
from abby.api.routers import client, doctor, admin
from abby.kafka import start_kafka, stop_kafka

settings = get_settings()

logging.basicConfig(
    level=settings.app.log_level,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # 앱 시작 시 (KAFKA_ENABLED=false 면 프로듀서 없이 동작)
    await start_kafka()
    try:
        yield
    finally:
        # 앱 종료 시
        await stop_kafka()

app = FastAPI(
    title="Abby Therapy API",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.app.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    logger.info("%s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app.include_router(client.router)
app.include_router(doctor.router)
app.include_router(admin.router)


@app.get("/health")
async def health():
    return {"ok": True}

@app.get("/db-health")
async def db_health(db: AsyncSession = Depends(get_db)):
    # 간단한 ping
    result = await db.execute(text("SELECT 1"))
    return {"db": "ok", "result": result.scalar_one()}
