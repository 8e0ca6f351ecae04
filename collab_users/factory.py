"""Application factory for the identity core."""

from typing import Any, Mapping, Optional

from flask import Flask

from . import events, ratelimit, strategies
from .events import celery_app
from .services import util


def create_app(config: Optional[Mapping[str, Any]] = None) -> Flask:
    """
    Initialize an application with the identity services.

    ``config`` overrides values from :mod:`.config`.
    """
    app = Flask('collab_users')
    app.config.from_object('collab_users.config')
    if config:
        app.config.update(config)

    util.init_app(app)
    ratelimit.init_app(app)
    events.init_app(app)
    strategies.init_app(app)
    return app


def create_worker_app() -> Flask:
    """Initialize an application for the Celery worker."""
    app = create_app()
    celery_app.conf.update(worker_hijack_root_logger=False)
    return app
