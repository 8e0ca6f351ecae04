"""Concurrent calls into the services, against a shared database file."""

import threading
from contextlib import ExitStack
from unittest import TestCase, mock

from ... import passwords
from ...domain import ExternalIdentity, ServerRole
from ...exceptions import ConflictError, InvariantViolation
from .. import acl, emails, identity, users
from .util import file_backed_db, run_concurrently


def wait_after(function, barrier):
    """Call ``function``, then wait for the other threads to get there."""
    def wrapper(*args, **kwargs):
        result = function(*args, **kwargs)
        barrier.wait()
        return result
    return wrapper


class ConcurrencyTestCase(TestCase):
    """Each test gets a fresh database file."""

    def setUp(self):
        """Create the database."""
        stack = ExitStack()
        self.addCleanup(stack.close)
        self.app = stack.enter_context(file_backed_db())
        self.barrier = threading.Barrier(2, timeout=10)


class TestConcurrentDemotions(ConcurrencyTestCase):
    """Two admins losing their role at the same time."""

    def setUp(self):
        """Create two admins."""
        super(TestConcurrentDemotions, self).setUp()
        with self.app.app_context():
            self.first = users.create_user(name='Ada', email='ada@y.com')
            self.second = users.create_user(name='Bob', email='bob@y.com')
            users.change_user_role(self.second, ServerRole.ADMIN)
            self.assertEqual(acl.count_admins(), 2)

    def test_both_demoted(self):
        """Both read two admins before writing; one of them is refused."""
        lock_admins = wait_after(acl._lock_admins, self.barrier)
        with mock.patch.object(acl, '_lock_admins', lock_admins):
            outcomes = run_concurrently(
                self.app,
                lambda: users.change_user_role(self.first, ServerRole.USER),
                lambda: users.change_user_role(self.second, ServerRole.USER)
            )
        errors = [o for o in outcomes if isinstance(o, Exception)]
        self.assertEqual(len(errors), 1, outcomes)
        self.assertIsInstance(errors[0], InvariantViolation)
        with self.app.app_context():
            self.assertEqual(acl.count_admins(), 1)

    def test_deleted_and_demoted(self):
        """Deleting one admin while demoting the other keeps an admin."""
        lock_admins = wait_after(acl._lock_admins, self.barrier)
        with mock.patch.object(acl, '_lock_admins', lock_admins):
            outcomes = run_concurrently(
                self.app,
                lambda: users.delete_user(self.first),
                lambda: users.change_user_role(self.second, ServerRole.USER)
            )
        errors = [o for o in outcomes if isinstance(o, Exception)]
        self.assertEqual(len(errors), 1, outcomes)
        self.assertIsInstance(errors[0], InvariantViolation)
        with self.app.app_context():
            self.assertEqual(acl.count_admins(), 1)


class TestConcurrentRegistration(ConcurrencyTestCase):
    """Two registrations of the same address, in different case."""

    def test_same_address(self):
        """Exactly one user gets the address."""
        hash_password = wait_after(passwords.hash_password, self.barrier)
        with mock.patch.object(passwords, 'hash_password', hash_password):
            outcomes = run_concurrently(
                self.app,
                lambda: users.create_user(name='Ada', email='ada@y.com',
                                          password='longenough123'),
                lambda: users.create_user(name='Ada', email='ADA@Y.COM',
                                          password='longenough123')
            )
        created = [o for o in outcomes if isinstance(o, str)]
        errors = [o for o in outcomes if isinstance(o, Exception)]
        self.assertEqual(len(created), 1, outcomes)
        self.assertEqual(len(errors), 1, outcomes)
        self.assertIsInstance(errors[0], ConflictError)
        with self.app.app_context():
            self.assertEqual(users.count_users(), 1)
            self.assertEqual(emails.find(email='ada@y.com').user_id,
                             created[0])
            self.assertEqual(len(emails.list_for_user(created[0])), 1)


class TestConcurrentResolution(ConcurrencyTestCase):
    """Two external logins of a person who has no user yet."""

    def test_same_address(self):
        """Both resolve to the one user that was created."""
        generate = wait_after(passwords.generate_password, self.barrier)
        with mock.patch.object(passwords, 'generate_password', generate):
            outcomes = run_concurrently(
                self.app,
                lambda: identity.find_or_create_user(ExternalIdentity(
                    email='ada@y.com', name='Ada', provider='github'
                )),
                lambda: identity.find_or_create_user(ExternalIdentity(
                    email='Ada@Y.com', name='Ada', provider='google'
                ))
            )
        for outcome in outcomes:
            self.assertNotIsInstance(outcome, Exception)
        self.assertEqual(outcomes[0].user_id, outcomes[1].user_id)
        self.assertEqual(sorted(o.is_new_user for o in outcomes),
                         [False, True])
        with self.app.app_context():
            self.assertEqual(users.count_users(), 1)
