from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import text
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
import logging

from app.core import clock
from app.core.config import settings
from app.core.database import engine
from app.core.exceptions import KeywardException
from app.core.log_sanitizer import install_redacting_filter, sanitize_error_message
from app.core.rate_limit import limiter
from app.core.middleware import SecurityHeadersMiddleware
from app.api.routes.auth import router as auth_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
install_redacting_filter()
logger = logging.getLogger(__name__)

# Determine if running in production
IS_PRODUCTION = settings.ENVIRONMENT == "production"


def check_secrets():
    """Refuse to start in production with missing or weak secrets."""
    errors = settings.validate_required_secrets()
    if not errors:
        return
    for error in errors:
        logger.error(f"Configuration error: {error}")
    if IS_PRODUCTION:
        raise RuntimeError("Invalid security configuration: " + "; ".join(errors))


def run_migrations():
    """Run database migrations on startup."""
    try:
        from alembic.config import Config
        from alembic import command

        logger.info("Running database migrations...")
        alembic_cfg = Config("alembic.ini")
        command.upgrade(alembic_cfg, "head")
        logger.info("Database migrations completed successfully")
    except Exception as e:
        logger.error(f"Failed to run migrations: {sanitize_error_message(e)}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    # uvicorn may configure its own handlers after this module is imported
    install_redacting_filter()
    logger.info("Starting Keyward API...")
    check_secrets()

    # Run migrations in production
    if IS_PRODUCTION:
        run_migrations()

    # Start expired token sweep
    from app.core.scheduler import start_scheduler, shutdown_scheduler
    if settings.ENABLE_TOKEN_SWEEP:
        start_scheduler()

    logger.info("Keyward API started successfully")
    yield
    # Shutdown
    shutdown_scheduler()
    logger.info("Shutting down Keyward API...")


app = FastAPI(
    title="Keyward API",
    description="Credential and session security service",
    version="1.0.0",
    lifespan=lifespan,
    # Disable docs in production
    docs_url=None if IS_PRODUCTION else "/docs",
    redoc_url=None if IS_PRODUCTION else "/redoc",
)

# Add rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# Exception handlers
@app.exception_handler(KeywardException)
async def keyward_exception_handler(request: Request, exc: KeywardException):
    """Handle custom Keyward exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "error_code": exc.error_code,
            **exc.extra_content(),
        },
        headers=exc.headers,
    )


@app.exception_handler(SQLAlchemyError)
async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError):
    """Handle database errors."""
    logger.error(f"Database error: {sanitize_error_message(exc)}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": "A database error occurred",
            "error_code": "DATABASE_ERROR",
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors."""
    logger.error(f"Unexpected error: {sanitize_error_message(exc)}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "detail": "An unexpected error occurred",
            "error_code": "INTERNAL_ERROR",
        },
    )

# Security middleware
app.add_middleware(SecurityHeadersMiddleware)

# Configure CORS with tightened settings
allowed_origins = [settings.FRONTEND_URL]
if not IS_PRODUCTION:
    # Allow localhost variations in development
    allowed_origins.extend([
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
    ])

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=[
        "Authorization",
        "Content-Type",
        "Accept",
        "Origin",
        "X-Requested-With",
    ],
    expose_headers=["Retry-After", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
    max_age=600,  # Cache preflight requests for 10 minutes
)

# Include routers
app.include_router(auth_router, prefix="/api")


@app.get("/")
def root():
    return {"message": "Welcome to Keyward API"}


@app.get("/health")
def health_check():
    """Health check endpoint for load balancers and monitoring."""
    health_status = {
        "status": "healthy",
        "timestamp": clock.utcnow().isoformat(),
        "version": "1.0.0",
    }

    # Check database connectivity
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {sanitize_error_message(e)}")
        health_status["status"] = "unhealthy"
        health_status["database"] = "disconnected"

    return health_status
