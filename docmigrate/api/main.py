"""FastAPI application factory.

Assembles the health and conversion routers.  This module is the
authoritative app object — docmigrate/main.py re-exports it.
"""
from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from docmigrate.api.routes.conversions import router as conversions_router
from docmigrate.api.routes.health import router as health_router
from docmigrate.core.logging import setup_logging
from docmigrate.core.settings import get_settings


@asynccontextmanager
async def lifespan(_: FastAPI):
    setup_logging()
    yield


settings = get_settings()

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)

app.include_router(health_router)
app.include_router(conversions_router)
