"""
main.py
-------
FastAPI application entrypoint.

Registers all routers and configures CORS and logging. The lifespan runs the
periodic metrics flush.

Run with:
    uvicorn citebot.main:app --reload --port 8000

Swagger UI: http://localhost:8000/docs
ReDoc:      http://localhost:8000/redoc
"""
from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

import dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

dotenv.load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
)
logger = logging.getLogger(__name__)

from citebot.dependencies import get_metrics
from citebot.routers.admin_router import router as admin_router
from citebot.routers.chat_router import router as chat_router
from citebot.routers.escalate_router import router as escalate_router
from citebot.routers.session_router import router as session_router
from citebot.services.metrics_buffer import periodic_flush


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Age-triggered metric flushes while idle; pending entries are flushed on shutdown.
    async with periodic_flush(get_metrics()):
        yield


app = FastAPI(
    title="SIA Citation API",
    description=(
        "Answer questions with exact, referenced passages from a fixed corpus "
        "of Coran, Hadith and Imam sources. Streams answers, tracks "
        "conversations, enforces daily quotas and hands off to humans."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# ── CORS ─────────────────────────────────────────────────────────────────────
# Tighten allowed_origins in production
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.environ.get("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ───────────────────────────────────────────────────────────────────
app.include_router(chat_router)        # POST /chat (SSE)
app.include_router(session_router)     # GET/PATCH/DELETE /session, POST /session/cleanup
app.include_router(escalate_router)    # POST/GET /escalate
app.include_router(admin_router)       # GET /admin/health, /admin/quota, /admin/quota-stats

@app.get("/", tags=["root"])
def root():
    return {
        "service": "SIA Citation API",
        "docs": "/docs",
        "health": "/admin/health",
    }

if __name__ == "__main__":
    import uvicorn
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
