from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import os

from core.config import logger, APP_NAME  # type: ignore

# Routers
from routers import webhooks, purchases, accounts  # type: ignore

app = FastAPI(title=APP_NAME)

# ---- CORS setup ----
_default_origins = ",".join([
    "http://localhost:3000",
    "http://127.0.0.1:3000",
])
_origins_env = os.getenv("ALLOWED_ORIGINS") or os.getenv("CORS_ORIGINS") or os.getenv("FRONTEND_ORIGIN") or _default_origins
ALLOWED_ORIGINS = [o.strip() for o in _origins_env.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Payment-provider webhook (subscriptions, checkout reconciliation)
app.include_router(webhooks.router)

# Checkout success-page lookup
app.include_router(purchases.router)

# Account records (signup hook, dashboard reads)
app.include_router(accounts.router)


@app.on_event("startup")
async def _init_database():
    try:
        from core.database import init_db
        init_db()
    except Exception as _ex:
        logger.warning(f"init_db failed: {_ex}")


@app.get("/health")
async def health():
    return {"ok": True}
