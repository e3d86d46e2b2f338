"""Flask application factory for SLURM Manager."""
from __future__ import annotations

import atexit
import logging
from typing import Optional

from flask import Flask

from slurm_manager.config import Config
from slurm_manager.routes.api import api
from slurm_manager.services.cache import KeyValueStore
from slurm_manager.services.context import SlurmContext
from slurm_manager.services.executor import CommandExecutor

logger = logging.getLogger(__name__)

EXTENSION_KEY = "slurm_manager"


def validate_config(config: Config) -> list[str]:
    """
    Validate configuration and return list of warnings.

    Fatal errors are raised as exceptions.
    """
    errors = config.validate()
    if errors:
        raise ValueError(f"Invalid configuration: {'; '.join(errors)}")

    warnings = []
    if config.cache_dir.exists() and not config.cache_dir.is_dir():
        raise ValueError(f"Cache path is not a directory: {config.cache_dir}")
    if not config.cache_dir.exists():
        warnings.append(f"Cache directory does not exist, creating: {config.cache_dir}")
    return warnings


def create_app(
    config: Config,
    executor: Optional[CommandExecutor] = None,
    store: Optional[KeyValueStore] = None,
) -> Flask:
    """Create and configure the Flask application."""
    warnings = validate_config(config)
    for warning in warnings:
        logger.warning(warning)

    config.cache_dir.mkdir(parents=True, exist_ok=True)

    app = Flask(__name__)
    app.extensions[EXTENSION_KEY] = SlurmContext.create(config, executor=executor, store=store)
    app.register_blueprint(api)
    return app


def get_context(app: Flask) -> SlurmContext:
    return app.extensions[EXTENSION_KEY]


def run_app(config: Config) -> None:
    """Create and run the application."""
    app = create_app(config)
    context = get_context(app)
    atexit.register(context.close)

    if not context.service.is_available():
        logger.warning("squeue not found; job lists will be empty on this host")

    logger.info("Starting SLURM Manager on http://%s:%s", config.host, config.port)
    logger.info("Cache dir: %s", config.cache_dir)
    logger.info("User: %s", config.user)
    app.run(host=config.host, port=config.port, debug=False)
