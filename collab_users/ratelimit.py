"""
Rate limiter for authentication attempts, backed by Redis.

Each action has a limit of ``n`` attempts per ``period`` seconds and per key
(an e-mail address, an IP address), configured as ``RATELIMIT_<ACTION>`` =
``"<n>/<period>"``. Windows are fixed: the first attempt opens a window that
expires after ``period`` seconds.
"""

from functools import wraps
from typing import Any, Dict, Optional, Tuple

import redis

from . import app_logging
from .context import get_application_config, get_application_global
from .domain import RateLimitResult
from .exceptions import RateLimited, Unavailable, ValidationError

logger = app_logging.getLogger(__name__)

Limit = Tuple[int, int]


class RateLimitAction(object):
    """Actions subject to rate limits."""

    USER_CREATE = 'USER_CREATE'
    """Registrations, keyed by source IP."""

    LOCAL_LOGIN = 'LOCAL_LOGIN'
    """Password logins, keyed by e-mail address."""

    ALL = [USER_CREATE, LOCAL_LOGIN]  # type: ignore


def parse_limit(value: str) -> Limit:
    """Parse ``"<n>/<period in seconds>"``."""
    try:
        count, period = (int(part) for part in value.split('/'))
    except (AttributeError, ValueError) as e:
        raise ValidationError(f'Invalid rate limit: {value}') from e
    if count < 0 or period < 1:
        raise ValidationError(f'Invalid rate limit: {value}')
    return count, period


class RateLimiter(object):
    """
    Counts attempts in Redis.

    The StrictRedis instance is thread safe, and only connects when a command
    is executed. Actions without a configured limit are never limited.
    """

    def __init__(self, host: str, port: int, db: int,
                 limits: Dict[str, Limit], prefix: str = 'ratelimit') -> None:
        """Set up the connection to Redis."""
        logger.debug('New Redis connection at %s, port %s', host, port)
        self.r = redis.StrictRedis(host=host, port=port, db=db)
        self._limits = limits
        self._prefix = prefix

    def check_limit(self, action: str, key: str) -> RateLimitResult:
        """
        Count an attempt at ``action`` by ``key``.

        Returns
        -------
        :class:`.RateLimitResult`
            Not within limits if this attempt exceeds the limit;
            ``ms_before_next`` tells when the window closes.

        Raises
        ------
        :class:`.Unavailable`
            If Redis cannot be reached.

        """
        if action not in self._limits:
            return RateLimitResult(action=action, is_within_limits=True)
        limit, period = self._limits[action]
        bucket = f'{self._prefix}:{action}:{key}'
        try:
            pipe = self.r.pipeline()
            pipe.set(bucket, 0, nx=True, ex=period)
            pipe.incr(bucket)
            pipe.pttl(bucket)
            _, count, ttl = pipe.execute()
        except redis.exceptions.ConnectionError as e:
            raise Unavailable(f'Rate limiter unavailable: {e}') from e
        if int(count) > limit:
            return RateLimitResult(action=action, is_within_limits=False,
                                   ms_before_next=max(int(ttl), 0))
        return RateLimitResult(action=action, is_within_limits=True)


def init_app(app: Optional[Any] = None) -> None:
    """Set default configuration parameters for an application instance."""
    config = get_application_config(app)
    config.setdefault('REDIS_HOST', 'localhost')    # type: ignore
    config.setdefault('REDIS_PORT', '6379')     # type: ignore
    config.setdefault('REDIS_DATABASE', '0')    # type: ignore


def get_rate_limiter(app: Optional[Any] = None) -> RateLimiter:
    """Get a new rate limiter configured for ``app``."""
    config = get_application_config(app)
    limits = {}
    for action in RateLimitAction.ALL:
        value = config.get(f'RATELIMIT_{action}')
        if value:
            limits[action] = parse_limit(value)
    return RateLimiter(config.get('REDIS_HOST', 'localhost'),
                       int(config.get('REDIS_PORT', '6379')),
                       int(config.get('REDIS_DATABASE', '0')),
                       limits)


def current_limiter() -> RateLimiter:
    """Get/create :class:`.RateLimiter` for this context."""
    g = get_application_global()
    if not g:
        return get_rate_limiter()
    if 'rate_limiter' not in g:
        g.rate_limiter = get_rate_limiter()
    return g.rate_limiter      # type: ignore


@wraps(RateLimiter.check_limit)
def check_limit(action: str, key: str) -> RateLimitResult:
    """Count an attempt at ``action`` by ``key``."""
    return current_limiter().check_limit(action, key)


def enforce(action: str, key: str) -> None:
    """
    Count an attempt, and refuse it if it is over the limit.

    Raises
    ------
    :class:`.RateLimited`
    :class:`.Unavailable`

    """
    result = check_limit(action, key)
    if not result.is_within_limits:
        logger.warning('Rate limit exceeded for %s', action)
        raise RateLimited(action, result.ms_before_next)
