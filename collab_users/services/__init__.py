"""
Database integration for users, e-mail records, roles and invites.

Each public function runs in exactly one transaction (see
:func:`.util.transaction`). Module-private helpers take the session as their
first argument, so that a public function can compose several of them in
its own transaction.
"""

from . import acl, emails, identity, invites, models, projects, users, util
from .util import create_all, current_session, drop_all, init_app, \
    transaction
