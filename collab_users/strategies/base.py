"""Base class for authentication strategies."""

import secrets
from datetime import timedelta
from typing import Any, Dict, List, Mapping, Optional

import jwt

from .. import app_logging
from ..domain import AuthRequest, AuthStrategyMetadata, ExternalIdentity, \
    ResolvedUser, ServerInvite
from ..exceptions import AuthenticationFailed, NotFoundError
from ..services import emails, identity, invites, util

logger = app_logging.getLogger(__name__)

INVITE_ONLY = 'This server is invite only. Please authenticate yourself' \
    ' through a valid invite link.'


class AuthStrategy(object):
    """
    An authentication method that turns credentials into a user.

    Subclasses set the class attributes and implement :meth:`begin_auth` and
    :meth:`complete_auth`. A failed attempt raises
    :class:`.AuthenticationFailed` and leaves no trace in the database.
    """

    strategy_id: str = ''
    name: str = ''
    icon: Optional[str] = None
    color: Optional[str] = None
    capabilities: List[str] = []

    def __init__(self, secret: str, state_ttl: int = 600,
                 invite_only: bool = False) -> None:
        """Configure the strategy; ``secret`` signs the ``state``."""
        self._secret = secret
        self._state_ttl = state_ttl
        self.invite_only = invite_only

    def metadata(self) -> AuthStrategyMetadata:
        """Display metadata for this strategy."""
        return AuthStrategyMetadata(
            strategy_id=self.strategy_id,
            name=self.name,
            capabilities=list(self.capabilities),
            icon=self.icon,
            color=self.color,
            url=f'/auth/{self.strategy_id}'
        )

    def begin_auth(self, redirect_uri: str,
                   invite_token: Optional[str] = None) -> AuthRequest:
        """
        Start an authentication attempt.

        Parameters
        ----------
        redirect_uri : str
            Where the user agent returns to complete the attempt.
        invite_token : str
            Token of the server invite being accepted, if any.

        Returns
        -------
        :class:`.AuthRequest`

        """
        raise NotImplementedError('Implement in a subclass')

    def complete_auth(self, params: Mapping[str, Any],
                      ip: Optional[str] = None) -> ResolvedUser:
        """
        Finish an attempt started with :meth:`begin_auth`.

        Raises
        ------
        :class:`.AuthenticationFailed`

        """
        raise NotImplementedError('Implement in a subclass')

    def _make_state(self, redirect_uri: str,
                    invite_token: Optional[str] = None) -> str:
        claims = {
            'strategy': self.strategy_id,
            'nonce': secrets.token_urlsafe(8),
            'redirect_uri': redirect_uri,
            'invite_token': invite_token,
            'exp': util.now() + timedelta(seconds=self._state_ttl)
        }
        return jwt.encode(claims, self._secret, algorithm='HS256')

    def _check_state(self, state: Optional[str]) -> Dict[str, Any]:
        if not state:
            raise AuthenticationFailed('Missing state')
        try:
            claims = dict(jwt.decode(state, self._secret,
                                     algorithms=['HS256']))
        except jwt.exceptions.InvalidTokenError as e:
            raise AuthenticationFailed('Invalid or expired state') from e
        if claims.get('strategy') != self.strategy_id:
            raise AuthenticationFailed('State issued for another strategy')
        return claims

    def _check_invite(self, email: str, invite_token: Optional[str],
                      new_user: bool) -> Optional[ServerInvite]:
        """Validate the invite, and refuse uninvited new users if needed."""
        if invite_token:
            try:
                return invites.validate_invite(email, invite_token)
            except NotFoundError as e:
                raise AuthenticationFailed(str(e)) from e
        if new_user and self.invite_only:
            raise AuthenticationFailed(INVITE_ONLY)
        return None

    def _finalize(self, external: ExternalIdentity,
                  invite_token: Optional[str] = None) -> ResolvedUser:
        """Hand a verified identity over to the identity resolver."""
        known = emails.find_primary(external.email, verified=True)
        self._check_invite(external.email, invite_token,
                           new_user=known is None)
        resolved = identity.find_or_create_user(external)
        if resolved.is_new_user:
            invites.finalize_invited_registration(resolved.email,
                                                  resolved.user_id)
        logger.info('User %s authenticated with %s', resolved.user_id,
                    self.strategy_id)
        return resolved
