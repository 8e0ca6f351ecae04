"""Tests for :mod:`collab_users.strategies`."""

from contextlib import ExitStack
from unittest import TestCase, mock
from urllib.parse import parse_qs, urlparse

import jwt
import requests
from authlib.common.errors import AuthlibBaseError
from flask import Flask

from ... import strategies
from ...exceptions import AuthenticationFailed, ConflictError, \
    NotFoundError, RateLimited, Unavailable
from ...services import invites, users
from ...services.tests.util import TEST_CONFIG, temporary_db
from .. import local, oauth

REDIRECT = 'https://collab.example.com/auth/callback'


def _response(data):
    response = mock.MagicMock()
    response.json.return_value = data
    return response


class TestRegistry(TestCase):
    """The strategies are set up from the config."""

    def _app(self, **config):
        app = Flask('test')
        app.config.update({**TEST_CONFIG, **config})
        return app

    def test_local_only(self):
        """Only local login is enabled by default."""
        registry = strategies.setup_strategies(self._app())
        self.assertEqual(len(registry), 1)
        self.assertIn('local', registry)
        meta = registry.metadata()[0]
        self.assertEqual(meta.strategy_id, 'local')
        self.assertEqual(meta.capabilities, ['login', 'register'])
        self.assertEqual(meta.url, '/auth/local')

    def test_providers(self):
        """Providers are enabled by their client ids."""
        registry = strategies.setup_strategies(self._app(
            STRATEGY_LOCAL=False,
            GITHUB_CLIENT_ID='gh', GITHUB_CLIENT_SECRET='ghs',
            AZURE_AD_CLIENT_ID='az', AZURE_AD_TENANT='contoso',
            OIDC_CLIENT_ID='oi', OIDC_DISCOVERY_URL='https://idp/.well-known',
            OIDC_NAME='Corporate SSO'
        ))
        self.assertEqual([s.strategy_id for s in registry],
                         ['github', 'azuread', 'oidc'])
        self.assertEqual(registry.get('oidc').name, 'Corporate SSO')
        self.assertIn('/contoso/', registry.get('azuread').authorize_url)
        for meta in registry.metadata():
            self.assertEqual(meta.capabilities, ['redirect'])

    def test_oidc_needs_discovery(self):
        """OpenID Connect cannot be set up without discovery."""
        with self.assertRaises(RuntimeError):
            strategies.setup_strategies(self._app(OIDC_CLIENT_ID='oi'))

    def test_unknown(self):
        """Strategies that are not enabled are not found."""
        registry = strategies.setup_strategies(self._app())
        with self.assertRaises(NotFoundError):
            registry.get('github')

    def test_get_auth_strategies(self):
        """The registry is built when the app is created."""
        with temporary_db(GOOGLE_CLIENT_ID='g'):
            self.assertEqual(
                [m.strategy_id for m in strategies.get_auth_strategies()],
                ['local', 'google']
            )


class StrategyTestCase(TestCase):
    """Runs against a fresh database, without a rate limiter."""

    config = {}

    def setUp(self):
        """Create the database and mock the rate limiter."""
        stack = ExitStack()
        self.addCleanup(stack.close)
        stack.enter_context(temporary_db(**self.config))
        self.enforce = stack.enter_context(
            mock.patch(f'{local.__name__}.enforce')
        )
        self.admin = users.create_user(name='Admin', email='admin@y.com',
                                       password='longenough123')
        self.strategy = strategies.current_registry().get('local')


class TestLocalStrategy(StrategyTestCase):
    """E-mail and password."""

    def test_login(self):
        """The right password logs in, in any case of the address."""
        resolved = self.strategy.login('ADMIN@y.com', 'longenough123')
        self.assertEqual(resolved.user_id, self.admin)
        self.assertFalse(resolved.is_new_user)
        self.enforce.assert_called_once_with('LOCAL_LOGIN', 'admin@y.com')

    def test_wrong_password(self):
        """Anything else fails."""
        for email, password in [('admin@y.com', 'wrongpassword'),
                                ('nobody@y.com', 'longenough123'),
                                ('admin@y.com', ''), (None, 'x')]:
            with self.assertRaises(AuthenticationFailed):
                self.strategy.login(email, password)

    def test_rate_limited(self):
        """The password is not even checked once limited."""
        self.enforce.side_effect = RateLimited('LOCAL_LOGIN', 1000)
        with mock.patch(f'{local.__name__}.users') as mock_users:
            with self.assertRaises(RateLimited):
                self.strategy.login('admin@y.com', 'longenough123')
            self.assertEqual(mock_users.validate_password.call_count, 0)

    def test_register(self):
        """New users register with a password."""
        resolved = self.strategy.complete_auth(
            {'action': 'register', 'email': 'New@y.com',
             'password': 'longenough123', 'name': 'New'},
            ip='10.0.0.1'
        )
        self.assertTrue(resolved.is_new_user)
        self.assertEqual(resolved.email, 'new@y.com')
        self.enforce.assert_called_once_with('USER_CREATE', '10.0.0.1')
        self.assertFalse(users.get_user_by_id(resolved.user_id).verified)
        again = self.strategy.complete_auth(
            {'email': 'new@y.com', 'password': 'longenough123'}
        )
        self.assertEqual(again.user_id, resolved.user_id)

    def test_register_taken(self):
        """Existing addresses cannot register again."""
        with self.assertRaises(ConflictError):
            self.strategy.register('admin@y.com', 'longenough123', 'Again')

    def test_register_rate_limited(self):
        """No user is created once limited."""
        self.enforce.side_effect = RateLimited('USER_CREATE', 1000)
        with self.assertRaises(RateLimited):
            self.strategy.register('new@y.com', 'longenough123', 'New',
                                   ip='10.0.0.1')
        self.assertEqual(users.count_users(), 1)

    def test_register_with_invite(self):
        """An invite verifies the address, and is consumed."""
        invite = invites.create_invite('new@y.com', self.admin)
        request = self.strategy.begin_auth(REDIRECT, invite.token)
        resolved = self.strategy.complete_auth(
            {'action': 'register', 'email': 'new@y.com',
             'password': 'longenough123', 'name': 'New',
             'state': request.state}
        )
        self.assertTrue(users.get_user_by_id(resolved.user_id).verified)
        with self.assertRaises(NotFoundError):
            invites.validate_invite('new@y.com', invite.token)

    def test_invite_for_someone_else(self):
        """Invites only work for the address they were sent to."""
        invite = invites.create_invite('new@y.com', self.admin)
        with self.assertRaises(AuthenticationFailed):
            self.strategy.register('other@y.com', 'longenough123', 'Other',
                                   invite_token=invite.token)
        self.assertEqual(users.count_users(), 1)


class TestInviteOnly(StrategyTestCase):
    """Servers that only take invited users."""

    config = {'INVITE_ONLY': True}

    def test_uninvited(self):
        """Registration without an invite fails."""
        with self.assertRaises(AuthenticationFailed):
            self.strategy.register('new@y.com', 'longenough123', 'New')
        self.assertEqual(users.count_users(), 1)

    def test_invited(self):
        """Registration with an invite works."""
        invite = invites.create_invite('new@y.com', self.admin)
        resolved = self.strategy.register('new@y.com', 'longenough123',
                                          'New', invite_token=invite.token)
        self.assertTrue(resolved.is_new_user)

    def test_login(self):
        """Existing users log in as usual."""
        resolved = self.strategy.login('admin@y.com', 'longenough123')
        self.assertEqual(resolved.user_id, self.admin)


class OAuthTestCase(StrategyTestCase):
    """GitHub is enabled, with its API mocked."""

    config = {'GITHUB_CLIENT_ID': 'ghclient', 'GITHUB_CLIENT_SECRET': 'ghs',
              'GOOGLE_CLIENT_ID': 'gclient', 'GOOGLE_CLIENT_SECRET': 'gs'}

    profile = {'login': 'ada', 'name': 'Ada Lovelace', 'bio': 'Engines',
               'company': None,
               'avatar_url': 'https://avatars.example.com/ada'}
    addresses = [{'email': 'old@y.com', 'primary': False, 'verified': True},
                 {'email': 'Ada@y.com', 'primary': True, 'verified': True}]

    def setUp(self):
        """Mock the OAuth client."""
        super(OAuthTestCase, self).setUp()
        patcher = mock.patch(f'{oauth.__name__}.OAuth2Session')
        self.session_class = patcher.start()
        self.addCleanup(patcher.stop)
        self.client = self.session_class.return_value
        self.github = strategies.current_registry().get('github')

        def get(url, timeout=None):
            if url.endswith('/user/emails'):
                return _response(self.addresses)
            return _response(self.profile)

        self.client.get.side_effect = get

    def callback(self, strategy=None, invite_token=None, **params):
        strategy = strategy or self.github
        state = strategy._make_state(REDIRECT, invite_token)
        return strategy.complete_auth({'state': state, 'code': 'c0de',
                                       **params})


class TestOAuthStrategy(OAuthTestCase):
    """The authorization code flow."""

    def test_begin_auth(self):
        """The user is sent to the provider with a signed state."""
        self.client.create_authorization_url.return_value = (
            'https://github.com/login/oauth/authorize?state=s', 's'
        )
        request = self.github.begin_auth(REDIRECT, invite_token='t0ken')
        self.session_class.assert_called_with('ghclient', 'ghs',
                                              scope='read:user user:email',
                                              redirect_uri=REDIRECT)
        self.client.create_authorization_url.assert_called_once_with(
            'https://github.com/login/oauth/authorize', state=request.state
        )
        claims = jwt.decode(request.state, 'foosecret',
                            algorithms=['HS256'])
        self.assertEqual(claims['strategy'], 'github')
        self.assertEqual(claims['invite_token'], 't0ken')
        self.assertEqual(claims['redirect_uri'], REDIRECT)

    def test_new_user(self):
        """The first login creates a verified user from the profile."""
        resolved = self.callback()
        self.assertTrue(resolved.is_new_user)
        self.assertEqual(resolved.email, 'ada@y.com')
        self.client.fetch_token.assert_called_once_with(
            'https://github.com/login/oauth/access_token', code='c0de'
        )
        user = users.get_user_by_id(resolved.user_id)
        self.assertTrue(user.verified)
        self.assertEqual(user.name, 'Ada Lovelace')
        self.assertEqual(user.bio, 'Engines')
        self.assertEqual(user.avatar, 'https://avatars.example.com/ada')

        again = self.callback()
        self.assertFalse(again.is_new_user)
        self.assertEqual(again.user_id, resolved.user_id)

    def test_forged_state(self):
        """States not signed by us are refused."""
        forged = jwt.encode({'strategy': 'github',
                             'redirect_uri': REDIRECT}, 'othersecret',
                            algorithm='HS256')
        for state in [forged, '', 'garbage']:
            with self.assertRaises(AuthenticationFailed):
                self.github.complete_auth({'state': state, 'code': 'c0de'})
        self.assertEqual(self.client.fetch_token.call_count, 0)

    def test_state_of_other_strategy(self):
        """States are bound to their strategy."""
        google = strategies.current_registry().get('google')
        state = google._make_state(REDIRECT)
        with self.assertRaises(AuthenticationFailed):
            self.github.complete_auth({'state': state, 'code': 'c0de'})

    def test_denied(self):
        """The user said no at the provider."""
        with self.assertRaises(AuthenticationFailed):
            self.callback(error='access_denied')
        self.assertEqual(users.count_users(), 1)

    def test_provider_error(self):
        """Failures of the provider fail the attempt, and change nothing."""
        for error in [AuthlibBaseError(error='invalid_grant'),
                      requests.ConnectionError('down')]:
            self.client.fetch_token.side_effect = error
            with self.assertRaises(AuthenticationFailed):
                self.callback()
        self.assertEqual(users.count_users(), 1)

    def test_no_verified_address(self):
        """Accounts without a verified primary address are refused."""
        self.addresses = [{'email': 'ada@y.com', 'primary': True,
                           'verified': False}]
        with self.assertRaises(AuthenticationFailed):
            self.callback()
        self.assertEqual(users.count_users(), 1)

    def test_invite(self):
        """Invites travel in the state, and are consumed."""
        invite = invites.create_invite('ada@y.com', self.admin)
        resolved = self.callback(invite_token=invite.token)
        self.assertTrue(resolved.is_new_user)
        with self.assertRaises(NotFoundError):
            invites.validate_invite('ada@y.com', invite.token)

    def test_google(self):
        """Google must have verified the address."""
        google = strategies.current_registry().get('google')
        self.client.get.side_effect = None
        self.client.get.return_value = _response(
            {'email': 'ada@gmail.com', 'email_verified': False}
        )
        with self.assertRaises(AuthenticationFailed):
            self.callback(google)
        self.client.get.return_value = _response(
            {'email': 'ada@gmail.com', 'email_verified': True,
             'name': 'Ada', 'picture': 'https://pics.example.com/ada'}
        )
        resolved = self.callback(google)
        self.assertEqual(resolved.email, 'ada@gmail.com')
        self.assertTrue(resolved.is_new_user)


class TestOAuthInviteOnly(OAuthTestCase):
    """Invite-only servers and external identities."""

    config = {**OAuthTestCase.config, 'INVITE_ONLY': True}

    def test_uninvited(self):
        """New users need an invite."""
        with self.assertRaises(AuthenticationFailed):
            self.callback()
        self.assertEqual(users.count_users(), 1)

    def test_invited(self):
        """With an invite they get in."""
        invite = invites.create_invite('ada@y.com', self.admin)
        self.assertTrue(self.callback(invite_token=invite.token).is_new_user)

    def test_existing_user(self):
        """Known users need no invite."""
        users.create_user(name='Ada', email='ada@y.com', verified=True)
        self.assertFalse(self.callback().is_new_user)


class TestOIDCStrategy(TestCase):
    """Generic OpenID Connect providers."""

    discovery = {
        'authorization_endpoint': 'https://idp.example.com/authorize',
        'token_endpoint': 'https://idp.example.com/token',
        'userinfo_endpoint': 'https://idp.example.com/userinfo',
    }

    def setUp(self):
        """Configure a provider."""
        self.strategy = oauth.OIDCStrategy(
            'client', 'secret', 'foosecret',
            discovery_url='https://idp.example.com/.well-known',
            name='Corporate SSO'
        )

    @mock.patch(f'{oauth.__name__}.requests.get')
    def test_discover_once(self, mock_get):
        """Endpoints come from the discovery document, loaded once."""
        mock_get.return_value = _response(self.discovery)
        self.assertEqual(self.strategy.authorize_url,
                         'https://idp.example.com/authorize')
        self.assertEqual(self.strategy.token_url,
                         'https://idp.example.com/token')
        self.assertEqual(self.strategy.userinfo_endpoint,
                         'https://idp.example.com/userinfo')
        mock_get.assert_called_once_with(
            'https://idp.example.com/.well-known', timeout=oauth.TIMEOUT
        )

    @mock.patch(f'{oauth.__name__}.requests.get')
    def test_discovery_fails(self, mock_get):
        """The provider is unavailable without its discovery document."""
        mock_get.side_effect = requests.ConnectionError('down')
        with self.assertRaises(Unavailable):
            self.strategy.begin_auth(REDIRECT)

    @mock.patch(f'{oauth.__name__}.requests.get')
    def test_authorization_url(self, mock_get):
        """The consent page URL carries the client and the state."""
        mock_get.return_value = _response(self.discovery)
        request = self.strategy.begin_auth(REDIRECT)
        url = urlparse(request.url)
        query = parse_qs(url.query)
        self.assertEqual(f'{url.scheme}://{url.netloc}{url.path}',
                         'https://idp.example.com/authorize')
        self.assertEqual(query['client_id'], ['client'])
        self.assertEqual(query['state'], [request.state])
        self.assertEqual(query['redirect_uri'], [REDIRECT])
        self.assertEqual(query['response_type'], ['code'])
