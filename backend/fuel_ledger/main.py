from contextlib import asynccontextmanager
import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles


# ---- load .env files (backend/.env then repo .env) ----------------------
CURRENT_FILE = Path(__file__).resolve()
BACKEND_DIR = CURRENT_FILE.parents[1]
REPO_ROOT = CURRENT_FILE.parents[2]

_env_candidates = [
    BACKEND_DIR / ".env.local",
    BACKEND_DIR / ".env",
    REPO_ROOT / ".env.local",
    REPO_ROOT / ".env",
]
_loaded = []
for env_path in _env_candidates:
    if env_path.exists():
        # Do not override already-set env vars; load in priority order
        load_dotenv(env_path, override=False)
        _loaded.append(str(env_path))

if _loaded:
    print(f"[main] Loaded env files: {', '.join(_loaded)}")
else:
    print("[main] No .env file found next to backend/ or repo root.")

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# routers / database read env vars at import time, so import after dotenv
from fuel_ledger.core.celery_app import init_celery  # noqa: E402
from fuel_ledger.core.database import init_db  # noqa: E402
from fuel_ledger.core.errors import (  # noqa: E402
    ConcurrencyConflict,
    NotFound,
    RollbackError,
    ValidationError,
)
from fuel_ledger.routers import ledger, reports, upload  # noqa: E402

logger = logging.getLogger("fuel_ledger")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if os.getenv("AUTO_CREATE_TABLES", "true").lower() in {"1", "true", "yes"}:
        init_db()
    init_celery()
    yield


app = FastAPI(title="Fuel Ledger API", lifespan=lifespan)


# ---- CORS (dev-friendly) ----------------------------------------------
_default_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]
_env = os.getenv("FRONTEND_ORIGINS") or os.getenv("FRONTEND_ORIGIN") or ""
_env_list = [o.strip() for o in _env.split(",") if o and o.strip()]
origins = sorted(set(_default_origins + _env_list))

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=86400,
)

# ---- serve generated error CSVs ------------------------------------------
app.mount("/files", StaticFiles(directory=str(upload.ERROR_DIR)), name="files")


# ---- domain errors → HTTP --------------------------------------------------
@app.exception_handler(ValidationError)
async def _validation_error(request: Request, exc: ValidationError):
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": str(exc), "issues": [i.to_dict() for i in exc.issues]},
    )


@app.exception_handler(NotFound)
async def _not_found(request: Request, exc: NotFound):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(ConcurrencyConflict)
async def _conflict(request: Request, exc: ConcurrencyConflict):
    logger.warning("%s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


@app.exception_handler(RollbackError)
async def _rollback_failed(request: Request, exc: RollbackError):
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": str(exc), "issues": [i.to_dict() for i in exc.issues]},
    )


# ---- register routers ------------------------------------------------------
app.include_router(ledger.router)
app.include_router(reports.router)
app.include_router(upload.router)


# ---- simple health check ---------------------------------------------------
@app.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe."""
    return {"status": "ok"}
