"""Flask configuration."""

import os
import secrets

#################### Database ####################
SQLALCHEMY_DATABASE_URI = os.environ.get('SQLALCHEMY_DATABASE_URI',
                                         'sqlite:///collab_users.db')
SQLALCHEMY_TRACK_MODIFICATIONS = False

#################### Server policy ####################
GUEST_MODE_ENABLED = os.environ.get('GUEST_MODE_ENABLED', '0')
"""Whether the guest server role may be assigned."""

INVITE_ONLY = os.environ.get('INVITE_ONLY', '0')
"""If set, new users may only register with a valid server invite."""

MIN_PASSWORD_LENGTH = os.environ.get('MIN_PASSWORD_LENGTH', '8')

MAX_PAGE_SIZE = os.environ.get('MAX_PAGE_SIZE', '200')
"""Upper bound for ``limit`` on user listings and search."""

DEFAULT_PAGE_SIZE = os.environ.get('DEFAULT_PAGE_SIZE', '25')

#################### Redis (rate limiter, Celery) ####################
REDIS_HOST = os.environ.get('REDIS_HOST', 'localhost')
REDIS_PORT = os.environ.get('REDIS_PORT', '6379')
REDIS_DATABASE = os.environ.get('REDIS_DATABASE', '0')

RATELIMIT_USER_CREATE = os.environ.get('RATELIMIT_USER_CREATE', '1000/86400')
"""Registrations per source IP, as ``<limit>/<period in seconds>``."""

RATELIMIT_LOCAL_LOGIN = os.environ.get('RATELIMIT_LOCAL_LOGIN', '10/60')
"""Password login attempts per e-mail address."""

CELERY_BROKER_URL = os.environ.get(
    'CELERY_BROKER_URL',
    f'redis://{REDIS_HOST}:{REDIS_PORT}/{REDIS_DATABASE}'
)
CELERY_ALWAYS_EAGER = os.environ.get('CELERY_ALWAYS_EAGER', '0')
"""Run event dispatch in-process instead of publishing to the broker."""

#################### Authentication strategies ####################
JWT_SECRET = os.environ.get('JWT_SECRET', secrets.token_urlsafe(16))
"""Secret used to sign the OAuth ``state`` parameter."""

OAUTH_STATE_TTL = os.environ.get('OAUTH_STATE_TTL', '600')

STRATEGY_LOCAL = os.environ.get('STRATEGY_LOCAL', '1')

GITHUB_CLIENT_ID = os.environ.get('GITHUB_CLIENT_ID')
GITHUB_CLIENT_SECRET = os.environ.get('GITHUB_CLIENT_SECRET')

GOOGLE_CLIENT_ID = os.environ.get('GOOGLE_CLIENT_ID')
GOOGLE_CLIENT_SECRET = os.environ.get('GOOGLE_CLIENT_SECRET')

AZURE_AD_CLIENT_ID = os.environ.get('AZURE_AD_CLIENT_ID')
AZURE_AD_CLIENT_SECRET = os.environ.get('AZURE_AD_CLIENT_SECRET')
AZURE_AD_TENANT = os.environ.get('AZURE_AD_TENANT', 'common')

OIDC_CLIENT_ID = os.environ.get('OIDC_CLIENT_ID')
OIDC_CLIENT_SECRET = os.environ.get('OIDC_CLIENT_SECRET')
OIDC_DISCOVERY_URL = os.environ.get('OIDC_DISCOVERY_URL')
OIDC_NAME = os.environ.get('OIDC_NAME', 'OpenID Connect')

#################### Logging ####################
LOGLEVEL = os.environ.get('LOGLEVEL', 'INFO')
LOGFORMAT = os.environ.get('LOGFORMAT', 'json')
