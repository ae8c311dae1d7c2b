"""Token Ledger API - Main Application"""
import math

import structlog
from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tokenledger.config import get_settings
from tokenledger.api.deps import get_ledger_session
from tokenledger.api.v1.router import api_router
from tokenledger.exceptions import LedgerError, SourceUnavailable, user_message
from tokenledger.services.ledger_session import LedgerSession
from tokenledger.services.provider import close_ledger_provider, get_ledger_provider

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.dev.ConsoleRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()
settings = get_settings()

ERROR_STATUS_CODES = {
    "validation": 422,
    "future": 422,
    "before_origin": 422,
    "not_found": 404,
    "network": 503,
    "superseded": 409,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    logger.info("Starting Token Ledger API", version=settings.app_version)

    provider = await get_ledger_provider()
    app.state.ledger_session = LedgerSession(provider, settings.token_address, settings)
    logger.info("Ledger session ready", token=settings.token_address, rpc_url=settings.rpc_url)

    yield

    # Cleanup
    await close_ledger_provider()
    logger.info("Token Ledger API shutdown complete")


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    """Render engine errors as plain-language messages"""
    status_code = ERROR_STATUS_CODES.get(exc.category, 500)
    headers = {}
    if isinstance(exc, SourceUnavailable):
        headers["Retry-After"] = str(math.ceil(exc.retry_after or settings.retry_base_delay))

    log = logger.warning if status_code < 500 else logger.error
    log(
        "Request failed",
        path=request.url.path,
        category=exc.category,
        error=exc.message,
        cause=str(exc.__cause__) if exc.__cause__ else None,
    )
    return JSONResponse(
        status_code=status_code,
        content={
            "error": exc.category,
            "detail": user_message(exc),
            "retryable": exc.retryable,
        },
        headers=headers,
    )


def create_app() -> FastAPI:
    """Create FastAPI application"""
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Cap table reconstruction and transaction history for an ERC-20 style token",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(LedgerError, ledger_error_handler)

    # Include routers
    app.include_router(api_router, prefix=settings.api_prefix)

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "version": settings.app_version,
            "token": settings.token_address,
        }

    @app.get("/tip")
    async def get_current_tip(session: LedgerSession = Depends(get_ledger_session)):
        """Get the latest block number and timestamp"""
        try:
            tip = await session.get_tip()
            return {
                "block_number": tip.index,
                "timestamp": tip.timestamp,
            }
        except Exception as e:
            logger.error("Failed to get current block", error=str(e))
            return {
                "block_number": None,
                "timestamp": None,
                "error": user_message(e),
            }

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "tokenledger.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
