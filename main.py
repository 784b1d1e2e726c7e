from __future__ import annotations
"""
Phangan Companion: FastAPI Backend
==================================
Main application entry point. Defines app, lifespan, CORS, error handlers
and includes route modules. All route handlers live in companion/routes/.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from contextlib import asynccontextmanager

from companion.config import CORS_ORIGINS, DATABASE_PATH, LOG_LEVEL, MAX_STEPS, MODELS
from companion.delivery import cors_headers, error_response

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("phangan-companion")

# Database setup
import companion.database as database

database.set_db_path(DATABASE_PATH)


# ---------------------------------------------------------------------------
# Lifespan (startup / shutdown)
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await database.init_db()
    print(f"Database initialized at: {DATABASE_PATH}")
    print(f"[startup] Models: {[m.id for m in MODELS]}")
    print(f"[startup] Step budget: {MAX_STEPS}")
    yield
    # Shutdown (nothing to clean up)


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Phangan Companion",
    description="Conversational travel assistant for Koh Phangan",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials="*" not in CORS_ORIGINS,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "User-Agent"],
)


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------

@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError):
    issues = []
    for issue in exc.errors():
        loc = ".".join(str(part) for part in issue.get("loc", []) if part != "body")
        msg = issue.get("msg", "Invalid request")
        issues.append(f"{loc}: {msg}" if loc else msg)
    return error_response(400, "Invalid request body: " + "; ".join(issues))


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=True)
    return error_response(500, "Internal server error")


# ---------------------------------------------------------------------------
# Health check & CORS preflight (inline, too small for their own module)
# ---------------------------------------------------------------------------

@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "phangan-companion"}


@app.options("/api/{path:path}")
async def preflight(path: str):
    return Response(status_code=204, headers=cors_headers())


# ---------------------------------------------------------------------------
# Include route modules
# ---------------------------------------------------------------------------

from companion.routes.chat import router as chat_router
from companion.routes.mobile import router as mobile_router

app.include_router(chat_router, tags=["Chat"])
app.include_router(mobile_router, tags=["Mobile"])
