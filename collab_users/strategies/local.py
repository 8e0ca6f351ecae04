"""Log in or register with an e-mail address and a password."""

from typing import Any, Mapping, Optional

from .. import app_logging
from ..domain import AuthRequest, ResolvedUser
from ..exceptions import AuthenticationFailed
from ..ratelimit import RateLimitAction, enforce
from ..services import emails, invites, users, util
from .base import AuthStrategy

logger = app_logging.getLogger(__name__)


class LocalStrategy(AuthStrategy):
    """Password login and self-registration, both rate limited."""

    strategy_id = 'local'
    name = 'Local'
    color = 'accent'
    capabilities = ['login', 'register']

    def begin_auth(self, redirect_uri: str,
                   invite_token: Optional[str] = None) -> AuthRequest:
        """The login form posts back to ``redirect_uri`` with the state."""
        return AuthRequest(url=redirect_uri,
                           state=self._make_state(redirect_uri, invite_token))

    def complete_auth(self, params: Mapping[str, Any],
                      ip: Optional[str] = None) -> ResolvedUser:
        """
        Log in, or register if ``params['action']`` is ``'register'``.

        ``params`` carries ``email`` and ``password``, plus ``name`` (and
        optionally ``bio``, ``company``) for registration. The invite token
        comes from the ``state``, if any, or from ``invite_token``.
        """
        invite_token = params.get('invite_token')
        if params.get('state'):
            invite_token = self._check_state(params['state']) \
                .get('invite_token') or invite_token
        if params.get('action') == 'register':
            return self.register(params.get('email'), params.get('password'),
                                 params.get('name'), ip=ip,
                                 invite_token=invite_token,
                                 bio=params.get('bio'),
                                 company=params.get('company'))
        return self.login(params.get('email'), params.get('password'))

    def login(self, email: Optional[str],
              password: Optional[str]) -> ResolvedUser:
        """
        Check a password against the user with primary address ``email``.

        Raises
        ------
        :class:`.RateLimited`
            Before the password is even checked, if there were too many
            attempts for ``email``.
        :class:`.AuthenticationFailed`

        """
        if not email or not password:
            raise AuthenticationFailed('Invalid credentials')
        address = util.normalize_email(email)
        enforce(RateLimitAction.LOCAL_LOGIN, address)
        if not users.validate_password(address, password):
            logger.info('Password login failed')
            raise AuthenticationFailed('Invalid credentials')
        primary = emails.find_primary(address)
        if primary is None:
            raise AuthenticationFailed('Invalid credentials')
        return ResolvedUser(user_id=primary.user_id, email=address)

    def register(self, email: Optional[str], password: Optional[str],
                 name: Optional[str], ip: Optional[str] = None,
                 invite_token: Optional[str] = None,
                 bio: Optional[str] = None,
                 company: Optional[str] = None) -> ResolvedUser:
        """
        Create a user with a password.

        An accepted invite proves control of the address, so it starts out
        verified.

        Raises
        ------
        :class:`.RateLimited`
            If there were too many registrations from ``ip``.
        :class:`.AuthenticationFailed`
            If the invite is not valid for ``email``, or the server is invite
            only and there is no invite.
        :class:`.ValidationError`
        :class:`.WeakCredentialError`
        :class:`.ConflictError`

        """
        enforce(RateLimitAction.USER_CREATE, ip or 'unknown')
        address = util.normalize_email(email or '')
        invite = self._check_invite(address, invite_token, new_user=True)
        user_id = users.create_user(email=address, name=name,
                                    password=password or '', bio=bio,
                                    company=company,
                                    verified=invite is not None)
        invites.finalize_invited_registration(address, user_id)
        return ResolvedUser(user_id=user_id, email=address, is_new_user=True)
