"""
schemabase Core Module.

This module provides the main entry point for schemabase, a service that
turns a directory of JSON Schema files into validated, persisted entity
types and serves them over HTTP.

Startup runs in a fixed order:
1. Configure logging (rotating file + console)
2. Load config.yml and apply environment overrides
3. Load every schema into the model registry (any failure is fatal)
4. Open the entity store and bind every model to its collection
5. Serve the Flask API with an embedded Gunicorn

Functions:
    configure_logging(debug) -> None:
        Installs the rotating file and console handlers on the root logger.
    build_application(config) -> Flask:
        Loads models and storage and returns the configured Flask app.
    main() -> None:
        Entry point for the console script.

Example:
    Run via console script:
        $ schemabase
        Loading 3 schema file(s) from /srv/schemas
        Gunicorn server is ready to accept connections
"""
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional

from api import create_app
from config import get_database_path, get_schema_settings, load_config
from schema import SchemaError, SchemaLoader
from storage import EntityStore

logger = logging.getLogger(__name__)

LOG_FILE = "schemabase.log"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def debug_requested(debug: bool = False) -> bool:
    """Return True if debug mode is enabled by argument, SCHEMABASE_DEBUG or --debug."""
    if debug:
        return True
    if os.environ.get("SCHEMABASE_DEBUG", "").lower() in ("true", "1", "yes"):
        return True
    return "--debug" in sys.argv[1:]


def configure_logging(debug: bool = False, log_file: str = LOG_FILE) -> None:
    """Configure the root logger with a 10MB rotating file and stdout."""
    log_level = logging.DEBUG if debug else logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Clear any existing handlers to avoid duplicates (e.g., from gunicorn)
    root_logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT)

    log_handler = RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=3
    )
    log_handler.setLevel(log_level)
    log_handler.setFormatter(formatter)
    root_logger.addHandler(log_handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)


def build_application(config: Optional[Dict[str, Any]] = None):
    """Load the model registry and entity store, and create the Flask app.

    Raises:
        SchemaError: If the schema directory cannot be loaded
    """
    if config is None:
        config = load_config()

    settings = get_schema_settings(config)
    logger.info(f"Schema directory: {settings.directory} "
                f"(default collection: {settings.default_collection}, "
                f"circular references: {settings.replace_circular_ref}"
                f"{', replacing all references' if settings.replace_all_refs else ''})")

    registry = SchemaLoader.from_settings(settings).load()
    logger.info(f"Loaded {len(registry)} model(s) in {len(registry.collections)} collection(s)")

    store = EntityStore(get_database_path(config))
    return create_app(registry, store, config=config)


def main(debug: bool = False) -> None:
    """Main entry point for the schemabase application.

    Args:
        debug: Enable debug mode with infinite worker timeout for breakpoint debugging.
               Can be set via --debug flag or SCHEMABASE_DEBUG environment variable.

    Exits with status 1 if the schemas cannot be loaded.
    """
    from gunicorn.app.base import BaseApplication

    debug = debug_requested(debug)
    configure_logging(debug)
    if debug:
        logger.info("Debug mode enabled: verbose logging and worker timeout disabled for breakpoint debugging")

    logger.info("Loading configuration from config.yml")
    config = load_config()

    try:
        app = build_application(config)
    except SchemaError as e:
        logger.error(f"Unable to load schemas: {e}")
        sys.exit(1)

    config_path = os.path.join(os.path.dirname(__file__), "..", "api", "gunicorn_config.py")

    class StandaloneApplication(BaseApplication):
        """Custom Gunicorn application for embedding within the schemabase entry point."""

        def __init__(self, app, options=None):
            self.options = options or {}
            self.application = app
            super().__init__()

        def load_config(self):
            config_file = self.options.get("config")
            if config_file:
                self.cfg.set("config", config_file)
                with open(config_file, "r") as f:
                    config_code = f.read()
                config_namespace = {}
                exec(config_code, config_namespace)
                for key, value in config_namespace.items():
                    if key in self.cfg.settings and value is not None:
                        self.cfg.set(key.lower(), value)

            if self.options.get("debug"):
                self.cfg.set("timeout", 0)

        def load(self):
            return self.application

    options = {
        "config": config_path,
        "debug": debug,
    }
    StandaloneApplication(app, options).run()


# Allow running as a script for development/testing
if __name__ == "__main__":
    main()
