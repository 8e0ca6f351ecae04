"""Tests for :mod:`collab_users.passwords`."""

from unittest import TestCase

from flask import Flask
from hypothesis import given, settings
from hypothesis import strategies as st

from .. import passwords
from ..exceptions import ValidationError, WeakCredentialError


class PasswordTestCase(TestCase):
    """Runs in an app context with cheap hashing."""

    def setUp(self):
        """Push an app context."""
        app = Flask('test')
        app.config['PASSWORD_HASH_ITERATIONS'] = 100
        app.config['MIN_PASSWORD_LENGTH'] = 8
        context = app.app_context()
        context.push()
        self.addCleanup(context.pop)


class TestHashPassword(PasswordTestCase):
    """Hashing and checking passwords."""

    @settings(max_examples=50, deadline=None)
    @given(st.text(min_size=8, max_size=64))
    def test_check_password(self, password):
        """Any long enough password checks against its own digest."""
        digest = passwords.hash_password(password)
        self.assertTrue(passwords.check_password(password, digest))

    @settings(max_examples=50, deadline=None)
    @given(st.text(min_size=8, max_size=64), st.text(max_size=64))
    def test_wrong_password(self, password, other):
        """Other passwords do not check."""
        digest = passwords.hash_password(password)
        self.assertEqual(passwords.check_password(other, digest),
                         other == password)

    @settings(max_examples=20, deadline=None)
    @given(st.text(max_size=7))
    def test_short_password(self, password):
        """Passwords under the minimum length are refused."""
        with self.assertRaises(WeakCredentialError) as ctx:
            passwords.hash_password(password)
        self.assertEqual(ctx.exception.min_length, 8)
        self.assertIsInstance(ctx.exception, ValidationError)

    def test_salted(self):
        """The same password gives different digests."""
        self.assertNotEqual(passwords.hash_password('longenough123'),
                            passwords.hash_password('longenough123'))

    def test_malformed_digest(self):
        """Digests we did not produce are an error, not a mismatch."""
        for digest in ['', 'foo', 'md5$1$abc', 'pbkdf2_sha256$x$abc',
                       'pbkdf2_sha256$100$not base64!']:
            with self.assertRaises(ValueError):
                passwords.check_password('longenough123', digest)


class TestGeneratePassword(PasswordTestCase):
    """Random passwords."""

    def test_generate(self):
        """Generated passwords are long enough and unique."""
        generated = {passwords.generate_password() for _ in range(20)}
        self.assertEqual(len(generated), 20)
        for password in generated:
            self.assertEqual(len(password), 20)
            passwords.check_strength(password)

    def test_minimum(self):
        """Requests for short passwords get the minimum length."""
        self.assertEqual(len(passwords.generate_password(4)), 8)
