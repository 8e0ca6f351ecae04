"""
Access to the active application configuration.

:func:`get_application_config` and :func:`get_application_global` keep the
names and behavior of the ``arxiv.base.globals`` helpers that the arXiv auth
services call, so code written against that API reads the same here. The
typed readers below build on them.
"""

import os
from typing import Any, Mapping, Optional

from flask import current_app, g, has_app_context


def get_application_config(app: Optional[Any] = None) -> Mapping[str, Any]:
    """
    Get the configuration of ``app``, or of the current application.

    Falls back to ``os.environ`` when there is no application context, so
    that the library can be used from scripts and workers.
    """
    if app is not None:
        return app.config   # type: ignore
    if has_app_context():
        return current_app.config
    return os.environ


def get_application_global() -> Optional[Any]:
    """Get the application-context globals, if there is a context."""
    if has_app_context():
        return g
    return None


def get_bool(key: str, default: bool = False,
             app: Optional[Any] = None) -> bool:
    """Read a boolean flag from the config; accepts ``'1'``, ``'true'``."""
    value = get_application_config(app).get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


def get_int(key: str, default: int, app: Optional[Any] = None) -> int:
    """Read an integer value from the config."""
    value = get_application_config(app).get(key)
    if value is None or value == '':
        return default
    return int(value)


def get_str(key: str, default: Optional[str] = None,
            app: Optional[Any] = None) -> Optional[str]:
    """Read a string value from the config; empty strings count as unset."""
    value = get_application_config(app).get(key)
    if value is None or value == '':
        return default
    return str(value)
