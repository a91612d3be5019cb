# backend/stockdb/main.py
import os
from typing import List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .apps.audit.router import router as audit_router
from .apps.catalog.router import router as catalog_router
from .apps.inventory.router import router as inventory_router

DEV_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:5173",
    "http://localhost:5173",
]


def _cors_origins() -> List[str]:
    """Comma-separated CORS_ALLOWED_ORIGINS, or the frontend dev servers."""
    configured = [
        origin.strip()
        for origin in os.getenv("CORS_ALLOWED_ORIGINS", "").split(",")
        if origin.strip()
    ]
    return configured or list(DEV_ORIGINS)


app = FastAPI(title="Stock Ledger API", version="1.0.0")

cors_origins = _cors_origins()
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials="*" not in cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/", tags=["health"])
def read_root():
    return {"status": "ok", "message": "Stock ledger backend is running"}


@app.get("/health", tags=["health"])
def health():
    return {"status": "ok"}


app.include_router(catalog_router)
app.include_router(inventory_router)
app.include_router(audit_router)
