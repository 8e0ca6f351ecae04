"""
User identity and email-ownership core for the collaboration server.

This package owns the rules that keep a person's account, their set of email
addresses and their server role consistent, no matter which entry point
reaches them: self-registration, invited registration, external identity
providers ("find or create"), or admin management.

The components are layered leaf-first:

1. :mod:`.passwords` hashes and verifies passwords.
2. :mod:`.services.emails` owns the email records of each user.
3. :mod:`.services.users` owns the user records.
4. :mod:`.services.acl` owns server roles, and keeps at least one admin.
5. :mod:`.services.identity` turns an external identity into a user.
6. :mod:`.strategies` holds the authentication strategies.

Quick start
-----------

.. code-block:: python

   from collab_users import factory
   from collab_users.services import users

   app = factory.create_app()
   with app.app_context():
       user_id = users.create_user(email='ada@example.com', name='Ada',
                                   password='correct horse battery')

"""

from .domain import User, UserEmail, ServerRole, ExternalIdentity, \
    ResolvedUser, UserSearchResult, ServerInvite, AuthStrategyMetadata
