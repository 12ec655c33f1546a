# src/nearmatch/api/app.py
"""
FastAPI application wiring.

This file creates the `FastAPI` instance and registers routes. Engine logic lives
in `nearmatch.engine`; routes only translate HTTP to engine calls.

Run with: `uvicorn nearmatch.api.app:app`
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from nearmatch import __version__
from nearmatch.core.logging import configure_logging

from . import routes

configure_logging()


@asynccontextmanager
async def lifespan(_: FastAPI):
    yield
    # Cancel pending partner replies so timer threads do not outlive the server.
    routes._registry().close_all()


app = FastAPI(title="NearMatch API", version=__version__, lifespan=lifespan)

# CORS (dev-friendly): allow local frontends to call this API.
# Configure via env:
# - NEARMATCH_CORS_ORIGINS="http://localhost:5173,http://127.0.0.1:5173"
# - NEARMATCH_CORS_ALLOW_LOCAL=0 to disable the default localhost allowance
cors_origins = [s.strip() for s in os.getenv("NEARMATCH_CORS_ORIGINS", "").split(",") if s.strip()]
cors_allow_local = os.getenv("NEARMATCH_CORS_ALLOW_LOCAL", "1").strip().lower() in {"1", "true", "yes", "y"}
cors_origin_regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$" if cors_allow_local and not cors_origins else ""
if cors_origins or cors_origin_regex:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_origin_regex=cors_origin_regex or None,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(routes.router)


@app.get("/healthz")
def healthz() -> dict:
    return {"status": "ok", "sessions": len(routes._registry())}
