import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .errors import LedgerError
from .logging_config import setup_logging
from .routers import accounts, admin, budgets, checkpoints, imports, transactions
from .sentry_integration import init_sentry

settings = get_settings()

setup_logging(level=settings.log_level, json_format=settings.is_production)
init_sentry(settings.sentry_dsn, environment=settings.app_env)

logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name)

# CORS: allow web origin for dev
allowed_origins = {str(settings.app_url), "http://localhost:3000", "http://127.0.0.1:3000"}
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(allowed_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", f"req-{int(start_time * 1000)}")
    try:
        response = await call_next(request)
    except Exception:
        logger.error("[%s] %s %s failed", request_id, request.method, request.url.path, exc_info=True)
        raise

    process_time = time.time() - start_time
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))
    if response.status_code >= 400:
        logger.info(
            "[%s] %s %s -> %d (%.3fs)",
            request_id, request.method, request.url.path, response.status_code, process_time,
            extra={"request_id": request_id, "status_code": response.status_code},
        )
    return response


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.error, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "service": settings.app_name,
        "env": settings.app_env,
    }

# Routers
app.include_router(budgets.router)
app.include_router(accounts.router)
app.include_router(checkpoints.router)
app.include_router(imports.router)
app.include_router(transactions.router)
app.include_router(admin.router)
