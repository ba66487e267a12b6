"""
FastAPI application wiring.

This file creates the `FastAPI` instance and configures CORS for a map frontend.
Business logic lives in `gapscout.api.routes`, `gapscout.coverage` and `gapscout.recommender`.
"""

from __future__ import annotations

import os

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from gapscout.core.logging import configure_logging

from .routes import router

configure_logging()

app = FastAPI(title="GapScout API", version="0.1.0")

# CORS (dev-friendly): allow a local map frontend to call this API.
# Configure via env:
# - GAPSCOUT_CORS_ORIGINS="http://localhost:5173,http://127.0.0.1:5173"
# - GAPSCOUT_CORS_ALLOW_LOCAL=0 to disable the default localhost allowance
cors_origins = [s.strip() for s in os.getenv("GAPSCOUT_CORS_ORIGINS", "").split(",") if s.strip()]
cors_allow_local = os.getenv("GAPSCOUT_CORS_ALLOW_LOCAL", "1").strip().lower() in {"1", "true", "yes", "y"}
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

app.include_router(router)


@app.get("/healthz", include_in_schema=False)
def healthz() -> dict:
    return {"status": "ok"}
