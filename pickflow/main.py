# pickflow/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pickflow.api.http_problem_handlers import register_exception_handlers
from pickflow.api.routers.health import router as health_router
from pickflow.api.routers.orders import router as orders_router
from pickflow.api.routers.pick_lists import router as pick_lists_router
from pickflow.core.config import get_settings
from pickflow.core.logging import setup_logging
from pickflow.db.base import init_models
from pickflow.db.session import close_engines
from pickflow.obs.metrics import PrometheusMiddleware

settings = get_settings()
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger("pickflow")

init_models()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    logger.info("pickflow starting (env=%s)", settings.ENV)
    yield
    await close_engines()


app = FastAPI(
    title="PickFlow",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://127.0.0.1:5173",
        "http://localhost:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(PrometheusMiddleware)

register_exception_handlers(app)

app.include_router(pick_lists_router)
app.include_router(orders_router)
app.include_router(health_router)


@app.get("/")
async def root():
    return {"name": "PickFlow", "version": "1.0.0"}
