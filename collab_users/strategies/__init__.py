"""
Authentication strategies.

The set of enabled strategies is built once, from the application config,
when the app is initialized (see :func:`init_app`). It cannot change while
the process runs.
"""

from collections import OrderedDict
from typing import Any, Iterable, Iterator, List, Optional

from flask import Flask, current_app

from .. import app_logging
from ..context import get_application_config, get_bool, get_int, get_str
from ..domain import AuthStrategyMetadata
from ..exceptions import NotFoundError
from .base import AuthStrategy
from .local import LocalStrategy
from .oauth import AzureADStrategy, GitHubStrategy, GoogleStrategy, \
    OAuth2Strategy, OIDCStrategy

logger = app_logging.getLogger(__name__)

EXTENSION = 'collab_users.strategies'


class StrategyRegistry(object):
    """Read-only mapping of strategy ids to strategies."""

    def __init__(self, strategies: Iterable[AuthStrategy]) -> None:
        self._strategies = OrderedDict(
            (strategy.strategy_id, strategy) for strategy in strategies
        )

    def get(self, strategy_id: str) -> AuthStrategy:
        """Get an enabled strategy, or raise :class:`.NotFoundError`."""
        try:
            return self._strategies[strategy_id]
        except KeyError as e:
            raise NotFoundError(f'No such strategy: {strategy_id}') from e

    def metadata(self) -> List[AuthStrategyMetadata]:
        """Display metadata of the enabled strategies, in order."""
        return [strategy.metadata() for strategy in self._strategies.values()]

    def __contains__(self, strategy_id: object) -> bool:
        return strategy_id in self._strategies

    def __iter__(self) -> Iterator[AuthStrategy]:
        return iter(self._strategies.values())

    def __len__(self) -> int:
        return len(self._strategies)


def setup_strategies(app: Optional[Any] = None) -> StrategyRegistry:
    """Build the strategies enabled in the config of ``app``."""
    config = get_application_config(app)
    secret = config['JWT_SECRET']
    common = {
        'state_ttl': get_int('OAUTH_STATE_TTL', 600, app=app),
        'invite_only': get_bool('INVITE_ONLY', app=app),
    }
    strategies: List[AuthStrategy] = []
    if get_bool('STRATEGY_LOCAL', True, app=app):
        strategies.append(LocalStrategy(secret, **common))

    def credentials(prefix: str) -> Optional[List[str]]:
        client_id = get_str(f'{prefix}_CLIENT_ID', app=app)
        if not client_id:
            return None
        return [client_id, get_str(f'{prefix}_CLIENT_SECRET', '', app=app)]

    github = credentials('GITHUB')
    if github:
        strategies.append(GitHubStrategy(*github, secret, **common))
    google = credentials('GOOGLE')
    if google:
        strategies.append(GoogleStrategy(*google, secret, **common))
    azure = credentials('AZURE_AD')
    if azure:
        strategies.append(AzureADStrategy(
            *azure, secret,
            tenant=get_str('AZURE_AD_TENANT', 'common', app=app),
            **common
        ))
    oidc = credentials('OIDC')
    if oidc:
        discovery_url = get_str('OIDC_DISCOVERY_URL', app=app)
        if not discovery_url:
            raise RuntimeError('OIDC_DISCOVERY_URL must be set to enable'
                               ' OpenID Connect')
        strategies.append(OIDCStrategy(
            *oidc, secret,
            discovery_url=discovery_url,
            name=get_str('OIDC_NAME', 'OpenID Connect', app=app),
            **common
        ))

    logger.info('Enabled authentication strategies: %s',
                ', '.join(s.strategy_id for s in strategies) or 'none')
    return StrategyRegistry(strategies)


def init_app(app: Flask) -> None:
    """Build the strategy registry for ``app``."""
    app.extensions[EXTENSION] = setup_strategies(app)


def current_registry() -> StrategyRegistry:
    """Get the strategy registry of the current application."""
    registry: StrategyRegistry = current_app.extensions[EXTENSION]
    return registry


def get_auth_strategies() -> List[AuthStrategyMetadata]:
    """Display metadata of the enabled strategies."""
    return current_registry().metadata()
