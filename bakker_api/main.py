import os
from typing import Optional

from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from .config import Settings, load_settings
from .context import AppContext
from .crontab import write_crontab
from .errors import ConfigValidationError
from .logger import setup_logging, get_logger
from .routers import backups, config, passwords, system
from .scheduler import create_scheduler

logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None, context: Optional[AppContext] = None) -> FastAPI:
    """
    Builds the API around one AppContext. The context is the only holder of
    the vault, the ID registry and the job coordinator.
    """
    if context is None:
        context = AppContext.from_settings(settings or load_settings())
    settings = context.settings

    app = FastAPI(title="bakker")
    Instrumentator().instrument(app).expose(app)
    app.state.context = context
    app.state.scheduler = None

    @app.on_event("startup")
    def startup_event():
        setup_logging(settings.log_path, settings.log_level)
        for directory in (settings.backup_dir, os.path.dirname(settings.config_path), settings.run_dir):
            os.makedirs(directory, exist_ok=True)

        vault_status = context.vault.status()
        if not vault_status.enabled:
            logger.warning("BAKKER_ENCRYPTION_SECRET is not set, password storage is disabled.")
        elif vault_status.decryption_failing:
            logger.error("Stored passwords cannot be decrypted with the current secret.")

        try:
            write_crontab(context.load_config(), settings)
        except ConfigValidationError as e:
            logger.error(f"Config is invalid, crontab not regenerated: {e}")
        except OSError as e:
            logger.error(f"Could not write crontab to {settings.crontab_path}: {e}")

        # Clears status records left behind by jobs that died with the last server
        context.coordinator.list_running()

        if settings.scheduler_enabled:
            app.state.scheduler = create_scheduler(context)
            app.state.scheduler.start()
        logger.info(f"bakker API started, data dir {settings.data_dir}")

    @app.on_event("shutdown")
    def shutdown_event():
        if app.state.scheduler is not None:
            app.state.scheduler.shutdown(wait=False)
            app.state.scheduler = None
        context.close()

    app.include_router(passwords.router, prefix="/api/passwords", tags=["passwords"])
    app.include_router(backups.router, prefix="/api/backups", tags=["backups"])
    app.include_router(config.router, prefix="/api/config", tags=["config"])
    app.include_router(system.router, prefix="/api", tags=["system"])
    return app


def serve() -> None:
    import uvicorn

    settings = load_settings()
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    serve()
