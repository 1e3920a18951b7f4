from __future__ import annotations

from datetime import UTC, datetime
from dotenv import load_dotenv
import logging
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from .routers.chat import router as chat_router
from .routers.download import router as download_router
from ..infrastructure.message_store import get_message_store
from ..observability.metrics import metrics_middleware_factory

load_dotenv()  # Load HF_API_KEY, SUPABASE_URL, etc. from .env if present

app = FastAPI(title="MegaChat API", version="0.1.0")

logging.basicConfig(level=logging.INFO)

# Observability: request latency histogram
app.middleware("http")(metrics_middleware_factory())

# Routers
app.include_router(chat_router, prefix="/api")
app.include_router(download_router, prefix="/api")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition"],
)


@app.get("/")
def root():
    return {"name": "MegaChat API", "version": "0.1.0"}


@app.get("/health")
def health():
    store = type(get_message_store()).__name__
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        "components": {
            "api": "ok",
            "store": store,
        },
    }


@app.get("/metrics")
def metrics() -> Response:
    # Expose Prometheus metrics
    data = generate_latest(REGISTRY)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
