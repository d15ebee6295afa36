from contextlib import asynccontextmanager
from typing import Optional
import logging
import sys

from fastapi import FastAPI

from signserver.config import Settings, get_settings
from signserver.core.errors import ConfigError, ResourceError
from signserver.core.registry import JobRegistry
from signserver.services.gateway import JobGateway
from signserver.services.jobs import JobOrchestrator
from signserver.services.signers import Signer, get_signer
from signserver.services.workdirs import WorkDirs

from .middleware_logging import configure_logging, register_request_logging
from .error_handlers import register_error_handlers

logger = logging.getLogger("signserver.main")

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("work_dir=%s signer=%s startup", app.state.workdirs.root, getattr(app.state.orchestrator.signer, "name", "?"))
    try:
        yield
    finally:
        app.state.orchestrator.shutdown()
        app.state.workdirs.destroy_root()
        logger.info("shutdown complete")


# =========================
# ---- App Init ----
# =========================
def create_app(settings: Optional[Settings] = None, signer: Optional[Signer] = None) -> FastAPI:
    settings = settings or get_settings()
    signer = signer or get_signer(settings)

    workdirs = WorkDirs(settings.WORK_DIR)
    workdirs.ensure_root()
    registry = JobRegistry()
    orchestrator = JobOrchestrator(
        registry,
        workdirs,
        signer,
        cleanup_delay=settings.JOB_CLEANUP_DELAY,
        max_workers=settings.MAX_CONCURRENT_SIGNS,
        max_upload_bytes=settings.max_upload_bytes,
    )

    app = FastAPI(title="Signing Server", version=VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.workdirs = workdirs
    app.state.registry = registry
    app.state.orchestrator = orchestrator
    app.state.gateway = JobGateway(orchestrator)

    register_request_logging(app)
    register_error_handlers(app)

    from signserver.routers.signing import router as signing_router
    app.include_router(signing_router)

    from signserver.routers.health import router as health_router
    app.include_router(health_router)

    return app


def run() -> None:
    import uvicorn

    try:
        settings = get_settings()
    except ValueError as e:
        configure_logging()
        logger.critical("invalid configuration: %s", e)
        sys.exit(1)

    configure_logging(settings.LOG_LEVEL)
    try:
        settings.validate()
        app = create_app(settings)
    except (ConfigError, ResourceError) as e:
        logger.critical("invalid configuration: %s", e)
        sys.exit(1)

    logger.info("starting server on %s:%s", settings.HOST, settings.PORT)
    uvicorn.run(
        app,
        host=settings.HOST,
        port=settings.PORT,
        proxy_headers=True,
        forwarded_allow_ips=settings.TRUSTED_PROXIES,
        log_config=None,
    )


if __name__ == "__main__":
    run()
