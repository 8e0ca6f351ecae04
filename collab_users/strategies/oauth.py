"""
Strategies for external identity providers speaking OAuth 2.0.

The authorization code flow is carried out with :mod:`authlib`'s requests
integration. The ``state`` parameter is a short-lived JWT that carries the
redirect URI and the invite token, if any, across the round trip.
"""

from typing import Any, Dict, Mapping, Optional

import requests
from authlib.common.errors import AuthlibBaseError
from authlib.integrations.requests_client import OAuth2Session

from .. import app_logging
from ..domain import AuthRequest, ExternalIdentity, ResolvedUser
from ..exceptions import AuthenticationFailed, Unavailable
from .base import AuthStrategy

logger = app_logging.getLogger(__name__)

TIMEOUT = 10


class OAuth2Strategy(AuthStrategy):
    """Authorization code flow, ending in :meth:`fetch_identity`."""

    capabilities = ['redirect']
    scope = 'openid email profile'

    def __init__(self, client_id: str, client_secret: str, secret: str,
                 state_ttl: int = 600, invite_only: bool = False) -> None:
        """Configure the client registered with the provider."""
        super(OAuth2Strategy, self).__init__(secret, state_ttl=state_ttl,
                                             invite_only=invite_only)
        self.client_id = client_id
        self.client_secret = client_secret

    @property
    def authorize_url(self) -> str:
        raise NotImplementedError('Implement in a subclass')

    @property
    def token_url(self) -> str:
        raise NotImplementedError('Implement in a subclass')

    def fetch_identity(self, client: OAuth2Session) -> ExternalIdentity:
        """Ask the provider who the user is, with an authorized client."""
        raise NotImplementedError('Implement in a subclass')

    def _client(self, redirect_uri: str) -> OAuth2Session:
        return OAuth2Session(self.client_id, self.client_secret,
                             scope=self.scope, redirect_uri=redirect_uri)

    def begin_auth(self, redirect_uri: str,
                   invite_token: Optional[str] = None) -> AuthRequest:
        """Build the URL of the provider's consent page."""
        state = self._make_state(redirect_uri, invite_token)
        url, _ = self._client(redirect_uri) \
            .create_authorization_url(self.authorize_url, state=state)
        return AuthRequest(url=url, state=state)

    def complete_auth(self, params: Mapping[str, Any],
                      ip: Optional[str] = None) -> ResolvedUser:
        """
        Exchange the ``code`` from the callback, and resolve the identity.

        Parameters
        ----------
        params : dict
            Query parameters of the callback: ``state``, and ``code`` or
            ``error``.

        Raises
        ------
        :class:`.AuthenticationFailed`
            If the state is forged or expired, the provider refuses, or the
            provider did not verify the user's e-mail address.

        """
        claims = self._check_state(params.get('state'))
        if params.get('error') or not params.get('code'):
            logger.info('%s denied authorization: %s', self.strategy_id,
                        params.get('error'))
            raise AuthenticationFailed('Authorization denied')
        client = self._client(claims['redirect_uri'])
        try:
            client.fetch_token(self.token_url, code=params['code'])
            external = self.fetch_identity(client)
        except (AuthlibBaseError, requests.RequestException) as e:
            logger.warning('%s authentication failed: %s', self.strategy_id,
                           e)
            raise AuthenticationFailed('Could not authenticate with'
                                       f' {self.name}') from e
        return self._finalize(external, claims.get('invite_token'))

    def _get_json(self, client: OAuth2Session, url: str) -> Any:
        response = client.get(url, timeout=TIMEOUT)
        response.raise_for_status()
        return response.json()


class GitHubStrategy(OAuth2Strategy):
    """Sign in with GitHub."""

    strategy_id = 'github'
    name = 'GitHub'
    icon = 'mdi-github'
    color = 'grey darken-3'
    scope = 'read:user user:email'

    authorize_url = 'https://github.com/login/oauth/authorize'
    token_url = 'https://github.com/login/oauth/access_token'
    api_url = 'https://api.github.com'

    def fetch_identity(self, client: OAuth2Session) -> ExternalIdentity:
        """Use the primary, verified address of the GitHub account."""
        profile = self._get_json(client, f'{self.api_url}/user')
        addresses = self._get_json(client, f'{self.api_url}/user/emails')
        email = next((item['email'] for item in addresses
                      if item.get('primary') and item.get('verified')), None)
        if email is None:
            raise AuthenticationFailed('No verified primary e-mail address'
                                       ' on the GitHub account')
        return ExternalIdentity(
            email=email,
            name=profile.get('name') or profile.get('login'),
            bio=profile.get('bio'),
            company=profile.get('company'),
            avatar=profile.get('avatar_url'),
            provider=self.strategy_id
        )


class OpenIDStrategy(OAuth2Strategy):
    """Providers that expose the OpenID Connect userinfo endpoint."""

    userinfo_url = ''

    require_email_verified = True
    """Refuse identities whose ``email_verified`` claim is not true."""

    @property
    def userinfo_endpoint(self) -> str:
        return self.userinfo_url

    def fetch_identity(self, client: OAuth2Session) -> ExternalIdentity:
        """Read the standard claims from the userinfo endpoint."""
        info = self._get_json(client, self.userinfo_endpoint)
        return self._identity_from_claims(info)

    def _email_from_claims(self, info: Dict[str, Any]) -> Optional[str]:
        return info.get('email')

    def _identity_from_claims(self, info: Dict[str, Any]) \
            -> ExternalIdentity:
        email = self._email_from_claims(info)
        if not email:
            raise AuthenticationFailed(f'{self.name} did not provide an'
                                       ' e-mail address')
        verified = info.get('email_verified')
        if self.require_email_verified and verified not in (True, 'true'):
            raise AuthenticationFailed(f'{self.name} has not verified the'
                                       ' e-mail address')
        return ExternalIdentity(
            email=email,
            name=info.get('name'),
            avatar=info.get('picture'),
            provider=self.strategy_id
        )


class GoogleStrategy(OpenIDStrategy):
    """Sign in with Google."""

    strategy_id = 'google'
    name = 'Google'
    icon = 'mdi-google'
    color = 'red darken-2'

    authorize_url = 'https://accounts.google.com/o/oauth2/v2/auth'
    token_url = 'https://oauth2.googleapis.com/token'
    userinfo_url = 'https://openidconnect.googleapis.com/v1/userinfo'


class AzureADStrategy(OpenIDStrategy):
    """Sign in with a Microsoft Entra ID (Azure AD) tenant."""

    strategy_id = 'azuread'
    name = 'Microsoft'
    icon = 'mdi-microsoft'
    color = 'blue darken-3'
    userinfo_url = 'https://graph.microsoft.com/oidc/userinfo'

    # The tenant vouches for the addresses of its accounts.
    require_email_verified = False

    def __init__(self, client_id: str, client_secret: str, secret: str,
                 tenant: str = 'common', state_ttl: int = 600,
                 invite_only: bool = False) -> None:
        """Configure the client, for one tenant or ``common``."""
        super(AzureADStrategy, self).__init__(client_id, client_secret,
                                              secret, state_ttl=state_ttl,
                                              invite_only=invite_only)
        self.tenant = tenant

    @property
    def authorize_url(self) -> str:
        return f'https://login.microsoftonline.com/{self.tenant}' \
            '/oauth2/v2.0/authorize'

    @property
    def token_url(self) -> str:
        return f'https://login.microsoftonline.com/{self.tenant}' \
            '/oauth2/v2.0/token'

    def _email_from_claims(self, info: Dict[str, Any]) -> Optional[str]:
        return info.get('email') or info.get('preferred_username')


class OIDCStrategy(OpenIDStrategy):
    """Any OpenID Connect provider, configured by its discovery document."""

    strategy_id = 'oidc'
    icon = 'mdi-badge-account-horizontal'
    color = 'grey darken-1'

    def __init__(self, client_id: str, client_secret: str, secret: str,
                 discovery_url: str, name: str = 'OpenID Connect',
                 state_ttl: int = 600, invite_only: bool = False) -> None:
        """Configure the client; discovery happens on first use."""
        super(OIDCStrategy, self).__init__(client_id, client_secret, secret,
                                           state_ttl=state_ttl,
                                           invite_only=invite_only)
        self.discovery_url = discovery_url
        self.name = name
        self._discovered: Optional[Dict[str, Any]] = None

    def discover(self) -> Dict[str, Any]:
        """
        Load the provider metadata, once.

        Raises
        ------
        :class:`.Unavailable`
            If the discovery document cannot be loaded.

        """
        if self._discovered is None:
            try:
                response = requests.get(self.discovery_url, timeout=TIMEOUT)
                response.raise_for_status()
                self._discovered = dict(response.json())
            except (requests.RequestException, ValueError) as e:
                raise Unavailable(f'OIDC discovery failed: {e}') from e
        return self._discovered

    @property
    def authorize_url(self) -> str:
        return str(self.discover()['authorization_endpoint'])

    @property
    def token_url(self) -> str:
        return str(self.discover()['token_endpoint'])

    @property
    def userinfo_endpoint(self) -> str:
        return str(self.discover()['userinfo_endpoint'])
