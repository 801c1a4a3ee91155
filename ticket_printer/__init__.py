"""
Ticket Printer package

This module provides an application factory with minimal wiring:
- Configures logging via ticket_printer.core.logging
- Creates a Flask app serving the JSON API and health endpoint
- Initializes CSRF protection (the JSON API blueprint is exempt)
- Registers blueprints, skipping ones that fail to import
- Optionally starts the background printer worker
"""

from __future__ import annotations

import importlib
import os
import uuid
from collections.abc import Sequence
from typing import Optional

from flask import Flask, g
from flask_wtf import CSRFProtect

csrf = CSRFProtect()


def _default_secret_key() -> str:
    return os.environ.get("TICKETPRINTER_SECRET_KEY", "ticketprinter_dev_secret_key")


def _maybe_register_blueprint(app: Flask, import_path: str, attr: str) -> None:
    """
    Import a blueprint from import_path and register it if found.
    Import failures are logged and skipped so one broken surface does not take down the app.
    """
    try:
        mod = importlib.import_module(import_path)
        bp = getattr(mod, attr, None)
        if bp is not None:
            app.register_blueprint(bp)
            app.logger.info(f"Registered blueprint: {import_path}.{attr}")
    except Exception as e:
        app.logger.error(f"Blueprint not registered ({import_path}.{attr}): {e}")


def create_app(
    config_overrides: Optional[dict] = None,
    blueprints: Optional[Sequence[tuple[str, str]]] = None,
    register_worker: bool = True,
) -> Flask:
    """
    Application factory.

    Parameters:
    - config_overrides: values to inject into app.config after defaults
    - blueprints: optional list of (import_path, attribute) tuples to register
      If None, the API and health blueprints are registered.
    - register_worker: if True, starts the background printer worker

    Returns:
    - Flask app instance
    """
    from ticket_printer.core.logging import configure_logging

    configure_logging()

    app = Flask("ticket_printer")
    app.secret_key = _default_secret_key()
    app.config["MAX_CONTENT_LENGTH"] = int(os.environ.get("TICKETPRINTER_MAX_CONTENT_LENGTH", 64 * 1024))
    app.url_map.strict_slashes = False

    csrf.init_app(app)
    app.logger.info("Ticket Printer app created")

    @app.before_request
    def _before_request():
        g.request_id = getattr(g, "request_id", uuid.uuid4().hex)

    default_blueprints = [
        ("ticket_printer.web.api", "api_bp"),  # versioned JSON API
        ("ticket_printer.web.health", "health_bp"),  # health endpoint
    ]
    for import_path, attr in blueprints or default_blueprints:
        _maybe_register_blueprint(app, import_path, attr)

    if register_worker:
        from ticket_printer.printing.worker import ensure_worker

        ensure_worker()
        app.logger.info("Background worker ensured")

    if config_overrides:
        app.config.update(config_overrides)

    return app


__all__ = ["create_app", "csrf"]
