"""Guardrails API application entry point."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from aegis_guardrails.config import settings
from aegis_guardrails.db import close_db, init_db
from aegis_guardrails.routes import guardrails, health, policies
from aegis_guardrails.runtime import close_engine, init_engine

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage startup / shutdown lifecycle."""
    await init_db()
    await init_engine()
    yield
    await close_engine()
    await close_db()


app = FastAPI(
    title="Aegis Guardrails API",
    description="Policy evaluation for AI agent inputs",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(guardrails.router)
app.include_router(policies.router)
