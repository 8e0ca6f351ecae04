"""Testing helpers."""

import os
import tempfile
import threading
from contextlib import contextmanager
from typing import Any, Callable, Generator, List

from flask import Flask
from sqlalchemy.orm.session import Session

from ... import factory
from .. import util
from ..models import db

TEST_CONFIG = {
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'CELERY_ALWAYS_EAGER': True,
    'PASSWORD_HASH_ITERATIONS': 1000,
    'MIN_PASSWORD_LENGTH': 8,
    'MAX_PAGE_SIZE': 200,
    'DEFAULT_PAGE_SIZE': 25,
    'GUEST_MODE_ENABLED': False,
    'INVITE_ONLY': False,
    'JWT_SECRET': 'foosecret',
    'STRATEGY_LOCAL': True,
    'GITHUB_CLIENT_ID': None,
    'GOOGLE_CLIENT_ID': None,
    'AZURE_AD_CLIENT_ID': None,
    'OIDC_CLIENT_ID': None,
}


@contextmanager
def temporary_db(**config: Any) -> Generator[Session, None, None]:
    """Provide an app with an in-memory sqlite database for testing."""
    app = factory.create_app({**TEST_CONFIG, **config})
    with app.app_context():
        util.create_all()
        try:
            yield util.current_session()
        finally:
            db.session.remove()
            util.drop_all()


@contextmanager
def file_backed_db(**config: Any) -> Generator[Flask, None, None]:
    """
    Provide an app with a sqlite database file, shared by several threads.

    Each thread must push its own app context, so that it gets its own
    session and connection.
    """
    with tempfile.TemporaryDirectory() as directory:
        path = os.path.join(directory, 'users.db')
        app = factory.create_app({
            **TEST_CONFIG,
            'SQLALCHEMY_DATABASE_URI': f'sqlite:///{path}',
            'SQLALCHEMY_ENGINE_OPTIONS': {
                'connect_args': {'check_same_thread': False, 'timeout': 30}
            },
            **config
        })
        with app.app_context():
            util.create_all()
        try:
            yield app
        finally:
            with app.app_context():
                db.session.remove()
                util.drop_all()
                db.engine.dispose()


def run_concurrently(app: Flask, *calls: Callable[[], Any]) -> List[Any]:
    """
    Run each call in a thread of its own, inside its own app context.

    Returns, in order, what each call returned or the exception it raised.
    """
    outcomes: List[Any] = [None] * len(calls)

    def run(index: int, call: Callable[[], Any]) -> None:
        with app.app_context():
            try:
                outcomes[index] = call()
            except Exception as e:
                outcomes[index] = e
            finally:
                db.session.remove()

    threads = [threading.Thread(target=run, args=(index, call))
               for index, call in enumerate(calls)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return outcomes
