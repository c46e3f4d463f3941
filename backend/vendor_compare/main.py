"""
VendorCompare API - FastAPI Main Entry

✅ LOCAL:
    cd backend
    source .venv/bin/activate
    python -m uvicorn vendor_compare.main:app --reload --host 0.0.0.0 --port 3001

✅ TEST:
    curl -i http://127.0.0.1:3001/health
    curl -i http://127.0.0.1:3001/version
    curl -i -F "files=@quote_a.pdf" -F "files=@quote_b.png" http://127.0.0.1:3001/v1/upload

✅ PRODUCTION (Render):
    Build Command:
        pip install .

    Start Command:
        python -m uvicorn vendor_compare.main:app --host 0.0.0.0 --port $PORT
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from vendor_compare.core.config import settings

# ✅ Routers
from vendor_compare.api.routes_meta import router as meta_router
from vendor_compare.api.routes_quotes import router as quotes_router


def create_app() -> FastAPI:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    app = FastAPI(
        title="VendorCompare API",
        version=settings.APP_VERSION,
        description="Upload vendor quotes, extract pricing with Gemini, find the best deal",
    )

    # ✅ CORS
    # NOTE: the web frontend is served from a different origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ✅ Root (GET /)
    @app.get("/")
    def root():
        return {
            "name": "VendorCompare API",
            "status": "ok",
            "docs": "/docs",
            "health": "/health",
            "version": "/version",
        }

    # ✅ Health Check (GET /health)
    @app.get("/health")
    def health():
        return {"status": "OK", "message": "VendorCompare backend running"}

    # ✅ Mount routers
    app.include_router(meta_router)
    app.include_router(quotes_router)

    return app


app = create_app()
