"""FastAPI application."""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from .auth import resolve_principal_from_request
from .config import settings
from .database import Base, engine
from .domain_errors import DomainError
from .gateway import GatewayMiddleware
from .problem_details import domain_error_handler, request_validation_handler
from .routers import activity, admin_users, auth, batch, factories, products, qr, stats, verify
from .services.rate_limit import build_rate_limiter

# Production safety checks (fail closed on insecure config).
if settings.is_production and settings.SECRET_KEY == "dev-secret-key-change-me":
    raise RuntimeError("SECRET_KEY must be set in production.")
if settings.is_production and settings.JWT_SECRET_KEY == "dev-jwt-secret-change-me":
    raise RuntimeError("JWT_SECRET_KEY must be set in production.")
if settings.is_production and not settings.cors_origins:
    raise RuntimeError("ALLOWED_ORIGINS must be set in production (explicit frontend origin required).")
if settings.is_production and any(origin.strip() == "*" for origin in settings.cors_origins):
    raise RuntimeError("ALLOWED_ORIGINS must be explicit in production (no wildcard when using credentials).")
if settings.is_production and any(
    origin.startswith("http://localhost") or origin.startswith("http://127.0.0.1") for origin in settings.cors_origins
):
    raise RuntimeError("ALLOWED_ORIGINS contains localhost in production; set it to your real frontend origin.")
if settings.is_production and settings.RATE_LIMIT_BACKEND != "redis":
    raise RuntimeError("RATE_LIMIT_BACKEND must be 'redis' in production (in-memory windows are per-process).")


@asynccontextmanager
async def lifespan(_: FastAPI):
    Base.metadata.create_all(bind=engine)
    yield


# Create app
app = FastAPI(
    title="ConfirmSure",
    version="1.0.0",
    description="Product authentication API",
    lifespan=lifespan,
)

app.add_exception_handler(DomainError, domain_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)

app.state.rate_limiter = build_rate_limiter()
app.add_middleware(
    GatewayMiddleware,
    limiter=app.state.rate_limiter,
    resolver=resolve_principal_from_request,
)

# CORS
cors_methods = ["GET", "POST", "PATCH", "OPTIONS"]
cors_headers = ["Authorization", "Content-Type"]
if not settings.is_production:
    cors_headers = ["*"]

# Outermost, so preflight requests are answered before the gateway.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=cors_methods,
    allow_headers=cors_headers,
)

# Include routers
app.include_router(auth.router, prefix="/api")
app.include_router(admin_users.router, prefix="/api")
app.include_router(activity.router, prefix="/api")
app.include_router(factories.router, prefix="/api")
app.include_router(products.router, prefix="/api")
app.include_router(batch.router, prefix="/api")
app.include_router(stats.router, prefix="/api")
app.include_router(stats.analytics_router, prefix="/api")
app.include_router(qr.router, prefix="/api")
app.include_router(verify.router)


@app.get("/api/system/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok", "version": "1.0.0"}


@app.get("/")
def root():
    return {"message": "ConfirmSure API", "version": "1.0.0", "docs": "/docs"}
