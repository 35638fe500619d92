import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from config import settings
from core.dependencies import limiter
from core.exceptions import CourierError, ValidationError
from database import connect_db, close_db

# Routers
from routers import auth, parcels, tracking, wallets, ledger, admin

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await connect_db()
    logger.info("CourierPWA API started")
    yield
    # Shutdown
    await close_db()
    logger.info("CourierPWA API stopped")


app = FastAPI(
    title="CourierPWA API",
    description="Console d'opérations colis : suivi, ledger et notifications SMS (Kenya)",
    version="1.0.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(CourierError)
async def courier_error_handler(request: Request, exc: CourierError):
    content = {"detail": exc.detail}
    if isinstance(exc, ValidationError):
        content["errors"] = exc.errors
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} : {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content=content)


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.DEBUG else ["https://courier-pwa.vercel.app"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers — publics (sans auth)
app.include_router(tracking.router, prefix="/api/tracking", tags=["Tracking"])

# Routers — avec auth
app.include_router(auth.router, prefix="/api/auth", tags=["Auth"])
app.include_router(parcels.router, prefix="/api/parcels", tags=["Parcels"])
app.include_router(wallets.router, prefix="/api/wallets", tags=["Wallets"])
app.include_router(ledger.router, prefix="/api/ledger", tags=["Ledger"])
app.include_router(admin.router, prefix="/api/admin", tags=["Admin"])


@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok", "app": "courier-pwa", "version": "1.0.0"}
