"""Helpers and Flask application integration."""

import secrets
from contextlib import contextmanager
from datetime import datetime
from typing import Generator, Optional

from flask import Flask
from pytz import UTC
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.session import Session

from .. import app_logging
from ..context import get_int
from ..exceptions import Unavailable, ValidationError
from .models import db

logger = app_logging.getLogger(__name__)

DEFAULT_MAX_PAGE_SIZE = 200


def now() -> datetime:
    """Get the current time, in UTC."""
    return datetime.now(tz=UTC)


def new_id(length: int = 10) -> str:
    """Generate an opaque, random identifier of ``length`` hex characters."""
    return secrets.token_hex(length // 2)


def normalize_email(email: str) -> str:
    """Canonical form of an e-mail address; used for storage and lookups."""
    if not isinstance(email, str) or not email.strip():
        raise ValidationError('E-mail address is required')
    return email.strip().lower()


def clamp_limit(limit: Optional[int], default: int) -> int:
    """Fall back to ``default`` for empty limits, cap at ``MAX_PAGE_SIZE``."""
    max_limit = get_int('MAX_PAGE_SIZE', DEFAULT_MAX_PAGE_SIZE)
    if not limit or limit < 0:
        limit = default
    return min(limit, max_limit)


@contextmanager
def transaction() -> Generator[Session, None, None]:
    """
    Context manager for database transaction.

    Commits when the block exits cleanly. Any exception rolls the whole
    transaction back and propagates; database connectivity problems are
    raised as :class:`.Unavailable`.
    """
    session = db.session
    try:
        yield session
        session.commit()
    except OperationalError as e:
        logger.warning('Database unavailable, rolling back: %s', str(e))
        session.rollback()
        raise Unavailable('Database is temporarily unavailable') from e
    except Exception as e:
        logger.debug('Transaction failed, rolling back: %s', str(e))
        session.rollback()
        raise


def init_app(app: Flask) -> None:
    """Set configuration defaults and attach session to the application."""
    app.config.setdefault('SQLALCHEMY_DATABASE_URI',
                          'sqlite:///collab_users.db')
    app.config.setdefault('SQLALCHEMY_TRACK_MODIFICATIONS', False)
    db.init_app(app)


def current_session() -> Session:
    """Get/create database session for this context."""
    return db.session   # type: ignore


def create_all() -> None:
    """Create all tables in the database."""
    db.create_all()


def drop_all() -> None:
    """Drop all tables in the database."""
    db.drop_all()


def is_available() -> bool:
    """Check our connection to the database."""
    try:
        db.session.execute(text('SELECT 1'))
    except Exception as e:
        logger.error('Encountered an error talking to database: %s', e)
        return False
    return True
