"""School Access Core: application entry point."""

import asyncio
import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request

from src.api.access import router as access_router
from src.api.auth import router as auth_router
from src.api.middleware.audit import AuditMiddleware
from src.api.middleware.security_headers import SecurityHeadersMiddleware
from src.config import Settings, get_settings
from src.logging.structured_logger import setup_logging
from src.permissions.runtime import AccessRuntime, build_runtime

logger = logging.getLogger(__name__)

_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the access runtime unless one was installed beforehand."""
    runtime: AccessRuntime | None = getattr(app.state, "access", None)
    if runtime is None:
        runtime = build_runtime(get_settings())
        app.state.access = runtime
    await runtime.start()
    logger.info("Access runtime started")
    try:
        yield
    finally:
        await runtime.stop()
        logger.info("Access runtime stopped")


app = FastAPI(
    title="School Access Core",
    description="Role and permission resolution for the school management platform",
    version=_VERSION,
    lifespan=lifespan,
)
app.include_router(auth_router)
app.include_router(access_router)
# Middleware order (last added = outermost = runs first):
# SecurityHeaders → Audit
app.add_middleware(AuditMiddleware)
app.add_middleware(SecurityHeadersMiddleware)


@app.get("/health")
async def health_check(request: Request) -> dict[str, object]:
    """Health check endpoint.

    "degraded" while the catalog has never loaded: every guarded route
    answers 503 until it does.
    """
    runtime: AccessRuntime | None = getattr(request.app.state, "access", None)
    if runtime is None:
        return {"status": "starting"}

    return {
        "status": "ok" if runtime.catalog.is_loaded else "degraded",
        "catalog_version": runtime.catalog.version,
        "active_sessions": len(runtime.sessions.active()),
        "resources": runtime.refresh.snapshot(),
    }


async def start_api_server(settings: Settings) -> None:
    """Serve the API until interrupted."""
    config = uvicorn.Config(
        app,
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.logging.level.lower(),
    )
    server = uvicorn.Server(config)
    await server.serve()


async def main() -> None:
    """Main application entry point."""
    settings = get_settings()

    # Validate configuration before anything else
    validation = settings.validate_required()
    if not validation.ok:
        for err in validation.errors:
            hint = f" Hint: {err.hint}" if err.hint else ""
            print(f"❌ {err.field}: {err.message}.{hint}")
        print(f"\n{len(validation.errors)} configuration error(s). Fix them and restart.")
        sys.exit(1)

    # Configure structured logging
    setup_logging(level=settings.logging.level, format_type=settings.logging.format)

    logger.info("Starting School Access Core v%s", _VERSION)
    app.state.access = build_runtime(settings)

    await start_api_server(settings)
    logger.info("School Access Core stopped")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        sys.exit(0)
