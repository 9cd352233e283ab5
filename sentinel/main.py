from __future__ import annotations

import logging
import sys

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pythonjsonlogger import jsonlogger
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .config import settings
from .database import Base, engine
from .rate_limit import limiter
from .api import routes_admin, routes_audit, routes_relay, routes_vaults
from .auth.routes_auth import router as auth_router
from .auth.seed import seed_admin
from .policies.bootstrap import apply_policy_seeds, load_policy_seeds
from .services import get_services

# ---------------------------------------------------------------------------
# Structured logging
# ---------------------------------------------------------------------------

def _configure_logging() -> None:
    """Configure structured JSON logging when log_format=json (default)."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    if settings.log_format == "json":
        handler.setFormatter(
            jsonlogger.JsonFormatter(
                "%(asctime)s %(name)s %(levelname)s %(message)s",
                rename_fields={"asctime": "timestamp", "levelname": "level"},
            )
        )
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
    root.addHandler(handler)


_configure_logging()

# Initialise database tables on startup
Base.metadata.create_all(bind=engine)

# Seed default admin if no users exist
seed_admin()

# Seed vault policies from YAML (no-op for vaults that already have one)
_services = get_services()
_seeded = apply_policy_seeds(
    _services.policies, _services.vaults, load_policy_seeds(), settings.executor_identity,
)
if _seeded:
    logging.getLogger("sentinel.policies").info("Bootstrapped %d vault policies", _seeded)

app = FastAPI(
    title="Vault Sentinel",
    version="0.1.0",
    description=(
        "Policy-gated execution for agent-managed vaults. Verifies signed "
        "proposals (deadline, signature, replay, policy) before executing them "
        "and writes an immutable audit record."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allow_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(routes_relay.router)
app.include_router(routes_vaults.router)
app.include_router(routes_audit.router)
app.include_router(routes_admin.router)


@app.get("/", tags=["meta"])
def root() -> dict:
    return {"status": "ok", "service": "vault-sentinel", "version": "0.1.0"}


@app.get("/health", tags=["meta"])
def health() -> dict:
    executor = get_services().executor
    return {"status": "healthy", "paused": executor.is_paused()}
