"""
Process-wide event channel, carried by Celery.

Publishers call :func:`emit` once their transaction has committed; it never
blocks on, or fails because of, the subscribers. Subscribers register with
:func:`subscribe` and run in the worker. Tasks are acknowledged late, so a
subscriber may see the same event more than once.
"""

from collections import defaultdict
from typing import Any, Callable, Dict, List

from celery import Celery
from flask import Flask
from kombu.exceptions import OperationalError

from . import app_logging
from .context import get_bool, get_str

logger = app_logging.getLogger(__name__)

celery_app = Celery('collab_users')

Payload = Dict[str, Any]
Listener = Callable[[Payload], Any]

_listeners: Dict[str, List[Listener]] = defaultdict(list)


class UsersEvents(object):
    """Events about users."""

    CREATED = 'users.created'
    """A user was created. Payload has ``user_id``, ``email`` and ``name``."""


def subscribe(event: str) -> Callable[[Listener], Listener]:
    """Register the decorated function as a listener for ``event``."""
    def decorator(listener: Listener) -> Listener:
        _listeners[event].append(listener)
        return listener
    return decorator


def unsubscribe(event: str, listener: Listener) -> None:
    """Remove a listener registered with :func:`subscribe`."""
    if listener in _listeners[event]:
        _listeners[event].remove(listener)


@celery_app.task(name='collab_users.events.dispatch', acks_late=True)
def dispatch(event: str, payload: Payload) -> int:
    """Call the listeners of ``event``. Returns how many were called."""
    listeners = list(_listeners.get(event, []))
    for listener in listeners:
        listener(payload)
    logger.debug('Dispatched %s to %i listeners', event, len(listeners))
    return len(listeners)


def emit(event: str, payload: Payload) -> None:
    """Publish an event. Failure to reach the broker is logged only."""
    try:
        dispatch.delay(event, payload)
    except OperationalError as e:
        logger.error('Could not publish %s: %s', event, e)


def init_app(app: Flask) -> None:
    """Configure the Celery application from the Flask config."""
    celery_app.conf.update(
        broker_url=get_str('CELERY_BROKER_URL', 'redis://localhost:6379/0',
                           app=app),
        task_always_eager=get_bool('CELERY_ALWAYS_EAGER', app=app),
        task_acks_late=True,
        worker_prefetch_multiplier=1,
    )
