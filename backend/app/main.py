import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.middleware.exceptions import register_exception_handlers
from app.routers import batches, harvests, health, reports, transactions

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="KopiTrace",
    description="Coffee Cooperative Inventory Ledger & Batch Traceability",
    version="0.1.0",
)

# ── Exception Handlers ───────────────────────────────────────
register_exception_handlers(app)

# ── Middleware ───────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ──────────────────────────────────────────────────
app.include_router(health.router)
app.include_router(batches.router, prefix="/api/batches", tags=["batches"])
app.include_router(transactions.router, prefix="/api/transactions", tags=["transactions"])
app.include_router(harvests.router, prefix="/api/harvests", tags=["harvests"])
app.include_router(reports.router, prefix="/api/reports", tags=["reports"])
