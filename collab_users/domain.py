"""Defines the user identity concepts shared by the services and strategies."""

from typing import NamedTuple, Optional, List
from datetime import datetime


class ServerRole(object):
    """Server-wide roles, ordered from most to least privileged."""

    ADMIN = 'server:admin'
    """Unrestricted management capability. At least one must exist."""

    USER = 'server:user'
    """A regular user of the server."""

    GUEST = 'server:guest'
    """Limited access. Only assignable when guest mode is enabled."""

    ARCHIVED_USER = 'server:archived-user'
    """A user that has been archived; hidden from search by default."""

    ALL = [ADMIN, USER, GUEST, ARCHIVED_USER]  # type: ignore


class StreamRole(object):
    """Roles a user can hold on a stream."""

    OWNER = 'stream:owner'
    CONTRIBUTOR = 'stream:contributor'
    REVIEWER = 'stream:reviewer'

    ALL = [OWNER, CONTRIBUTOR, REVIEWER]  # type: ignore


class User(NamedTuple):
    """A user of the server, as exposed outside of the registry."""

    user_id: str
    """Opaque unique identifier, generated at creation."""

    name: str
    """Display name."""

    email: Optional[str] = None
    """The user's primary e-mail address (lowercase)."""

    verified: bool = False
    """Whether the primary e-mail address has been verified."""

    bio: Optional[str] = None
    company: Optional[str] = None

    avatar: Optional[str] = None
    """Sanitized avatar URL."""

    created_at: Optional[datetime] = None

    role: Optional[str] = None
    """One of :attr:`ServerRole.ALL`, if loaded."""


class UserEmail(NamedTuple):
    """A claim that a user controls an e-mail address."""

    email_id: str
    user_id: str

    email: str
    """Stored lowercase, compared case-insensitively."""

    primary: bool = False
    verified: bool = False
    created_at: Optional[datetime] = None


class ExternalIdentity(NamedTuple):
    """An identity asserted by an authentication strategy."""

    email: str
    """The e-mail address whose control the strategy has verified."""

    name: Optional[str] = None
    bio: Optional[str] = None
    company: Optional[str] = None
    avatar: Optional[str] = None

    provider: Optional[str] = None
    """Identifier of the strategy that produced the assertion."""


class ResolvedUser(NamedTuple):
    """The outcome of resolving an identity to a user."""

    user_id: str
    email: str
    is_new_user: bool = False


class UserSearchResult(NamedTuple):
    """A page of :func:`.services.users.search_users` results."""

    users: List[User] = []

    cursor: Optional[str] = None
    """Opaque cursor for the next page. ``None`` when there are no rows."""


class ServerInvite(NamedTuple):
    """An invitation to join the server (and optionally a stream)."""

    invite_id: str

    target: str
    """Lowercase e-mail address, or ``@<user id>`` once registered."""

    inviter_id: str
    token: str
    resource_id: Optional[str] = None
    message: Optional[str] = None
    created_at: Optional[datetime] = None


class AuthStrategyMetadata(NamedTuple):
    """Display metadata for an enabled authentication strategy."""

    strategy_id: str
    name: str

    capabilities: List[str] = []
    """E.g. ``['login', 'register']`` or ``['redirect']``."""

    icon: Optional[str] = None
    color: Optional[str] = None

    url: Optional[str] = None
    """Path at which the strategy begins authentication."""


class AuthRequest(NamedTuple):
    """Where to send the user agent to begin a redirect-based flow."""

    url: str
    """Authorization URL at the identity provider."""

    state: str
    """Signed state; must come back unchanged to :meth:`complete_auth`."""


class RateLimitResult(NamedTuple):
    """Outcome of a rate limit check."""

    action: str
    is_within_limits: bool
    ms_before_next: int = 0
