"""
The user registry.

Creating a user writes the user row, its first (primary) e-mail record and
its server role in one transaction; either all of them exist afterwards or
none do. The password digest stays inside this module.
"""

import re
from base64 import urlsafe_b64decode, urlsafe_b64encode
from binascii import Error as BinasciiError
from typing import Any, List, Optional, Tuple

from dateutil.parser import isoparse
from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Query
from sqlalchemy.orm.session import Session

from .. import app_logging, domain, passwords
from ..context import get_int
from ..domain import ServerRole
from ..events import UsersEvents, emit
from ..exceptions import ConflictError, NotFoundError, ValidationError
from . import acl, emails, invites, projects, util
from .models import DBServerAcl, DBUser, DBUserEmail

logger = app_logging.getLogger(__name__)

DEFAULT_SEARCH_LIMIT = 25
DEFAULT_LIST_LIMIT = 10
AVATAR_PATTERN = re.compile(r'^(https?://\S+|data:image/[a-z0-9.+-]+;\S+)$',
                            re.IGNORECASE)


def create_user(email: str, name: Optional[str] = None,
                password: Optional[str] = None, role: Optional[str] = None,
                bio: Optional[str] = None, company: Optional[str] = None,
                avatar: Optional[str] = None, verified: bool = False,
                skip_validation: bool = False) -> str:
    """
    Create a new user, with ``email`` as its primary address.

    The first user of the server becomes admin; see
    :func:`.acl._assign_initial_role` for everybody else.

    Parameters
    ----------
    email : str
        Required. Stored lowercase.
    name : str
        Required, unless ``skip_validation`` is set (only meant for tests).
    password : str
        Optional. Users of external identity providers may have none.
    role : str
        Requested server role. Ignored if it cannot be assigned.
    verified : bool
        Whether control of ``email`` has already been proven.

    Returns
    -------
    str
        The id of the new user.

    Raises
    ------
    :class:`.ValidationError`
        If the e-mail address or the name is missing.
    :class:`.WeakCredentialError`
        If the password is too short.
    :class:`.ConflictError`
        If the e-mail address is already taken.

    """
    address = util.normalize_email(email)
    name = (name or '').strip()
    if not name:
        if not skip_validation:
            raise ValidationError('User name is required')
        logger.warning('Creating user without a name')

    digest = passwords.hash_password(password) \
        if password is not None else None

    with util.transaction() as session:
        if emails._query(session, email=address).first() is not None:
            raise ConflictError(emails.EMAIL_TAKEN)
        user_id = util.new_id()
        session.add(DBUser(
            id=user_id,
            name=name,
            bio=bio,
            company=company,
            avatar=_sanitize_avatar(avatar),
            password_digest=digest,
            created_at=util.now()
        ))
        session.flush()
        assigned = acl._assign_initial_role(session, user_id, role)
        emails._create(session, user_id, address, primary=True,
                       verified=verified)

    logger.info('Created user %s with role %s', user_id, assigned)
    emit(UsersEvents.CREATED,
         {'user_id': user_id, 'email': address, 'name': name})
    return user_id


def get_user_by_id(user_id: str) -> Optional[domain.User]:
    """Get a user, with its primary e-mail address and its role."""
    with util.transaction() as session:
        row = _user_query(session).filter(DBUser.id == user_id).first()
        return _to_domain(*row) if row else None


def get_user_by_email(email: str) -> Optional[domain.User]:
    """Get the user whose primary address is ``email`` (any case)."""
    address = util.normalize_email(email)
    with util.transaction() as session:
        row = _user_query(session) \
            .filter(func.lower(DBUserEmail.email) == address) \
            .first()
        return _to_domain(*row) if row else None


def get_user_role(user_id: str) -> Optional[str]:
    """Get the server role of a user."""
    return acl.get_role(user_id)


def update_user(user_id: str, name: Optional[str] = None,
                bio: Optional[str] = None, company: Optional[str] = None,
                avatar: Optional[str] = None) -> domain.User:
    """
    Edit the profile of a user. Fields left as ``None`` are unchanged.

    Raises
    ------
    :class:`.ValidationError`
        If ``name`` is given but blank.
    :class:`.NotFoundError`
        If there is no such user.

    """
    with util.transaction() as session:
        db_user = session.get(DBUser, user_id)
        if db_user is None:
            raise NotFoundError('User not found')
        if name is not None:
            if not name.strip():
                raise ValidationError('User name is required')
            db_user.name = name.strip()
        if bio is not None:
            db_user.bio = bio
        if company is not None:
            db_user.company = company
        if avatar is not None:
            db_user.avatar = _sanitize_avatar(avatar)
        session.flush()
        row = _user_query(session).filter(DBUser.id == user_id).one()
        return _to_domain(*row)


def update_user_password(user_id: str, password: str) -> None:
    """
    Replace the password of a user.

    Raises
    ------
    :class:`.WeakCredentialError`
    :class:`.NotFoundError`

    """
    digest = passwords.hash_password(password)
    with util.transaction() as session:
        db_user = session.get(DBUser, user_id)
        if db_user is None:
            raise NotFoundError('User not found')
        db_user.password_digest = digest
    logger.info('Updated password of user %s', user_id)


def validate_password(email: str, password: str) -> bool:
    """Check a password against the user with primary address ``email``."""
    address = util.normalize_email(email)
    with util.transaction() as session:
        digest = session.query(DBUser.password_digest) \
            .join(DBUserEmail, DBUserEmail.user_id == DBUser.id) \
            .filter(DBUserEmail.primary.is_(True)) \
            .filter(func.lower(DBUserEmail.email) == address) \
            .scalar()
    if not digest or password is None:
        return False
    return passwords.check_password(password, digest)


def mark_user_as_verified(email: str) -> bool:
    """Mark ``email`` as verified; see :func:`.emails.mark_verified`."""
    return emails.mark_verified(email)


def search_users(query: str, limit: Optional[int] = None,
                 cursor: Optional[str] = None, archived: bool = False,
                 email_only: bool = False) -> domain.UserSearchResult:
    """
    Search users by exact e-mail address or by name.

    Results are ordered newest first. Addresses are never part of the
    results, so a match on e-mail only tells that the address is in use.

    Parameters
    ----------
    query : str
        An e-mail address (full match, any case), or part of a name.
    limit : int
        Page size; defaults to ``DEFAULT_PAGE_SIZE`` and is capped at
        ``MAX_PAGE_SIZE``.
    cursor : str
        The ``cursor`` of the previous page.
    archived : bool
        Include archived users.
    email_only : bool
        Do not match names.

    Returns
    -------
    :class:`.domain.UserSearchResult`

    Raises
    ------
    :class:`.ValidationError`
        If the query is blank or the cursor is not one we issued.

    """
    query = (query or '').strip()
    if not query:
        raise ValidationError('Search query is required')
    limit = util.clamp_limit(
        limit, get_int('DEFAULT_PAGE_SIZE', DEFAULT_SEARCH_LIMIT)
    )
    email_match = DBUser.id.in_(
        select(DBUserEmail.user_id)
        .where(func.lower(DBUserEmail.email) == query.lower())
    )
    with util.transaction() as session:
        users = session.query(DBUser, DBServerAcl.role) \
            .outerjoin(DBServerAcl, DBServerAcl.user_id == DBUser.id)
        if email_only:
            users = users.filter(email_match)
        else:
            users = users.filter(or_(
                email_match,
                DBUser.name.ilike(f'%{_escape_like(query)}%', escape='\\')
            ))
        if not archived:
            users = users.filter(or_(
                DBServerAcl.role.is_(None),
                DBServerAcl.role != ServerRole.ARCHIVED_USER
            ))
        if cursor:
            created_at, last_id = _decode_cursor(cursor)
            users = users.filter(or_(
                DBUser.created_at < created_at,
                and_(DBUser.created_at == created_at, DBUser.id < last_id)
            ))
        rows = users.order_by(DBUser.created_at.desc(), DBUser.id.desc()) \
            .limit(limit) \
            .all()
        results = [_to_domain(db_user, None, role, with_email=False)
                   for db_user, role in rows]
        next_cursor = _encode_cursor(rows[-1][0]) if rows else None
    return domain.UserSearchResult(users=results, cursor=next_cursor)


def get_users(limit: int = DEFAULT_LIST_LIMIT, offset: int = 0,
              search_query: Optional[str] = None) -> List[domain.User]:
    """
    List users for administration, newest first.

    ``search_query`` matches part of the name or of any e-mail address,
    case-insensitively.
    """
    limit = util.clamp_limit(limit, DEFAULT_LIST_LIMIT)
    with util.transaction() as session:
        rows = _filter_listing(_user_query(session), search_query) \
            .order_by(DBUser.created_at.desc(), DBUser.id.desc()) \
            .offset(max(offset or 0, 0)) \
            .limit(limit) \
            .all()
        return [_to_domain(*row) for row in rows]


def count_users(search_query: Optional[str] = None) -> int:
    """Count users, matching ``search_query`` as :func:`get_users` does."""
    with util.transaction() as session:
        return _filter_listing(session.query(DBUser), search_query).count()


def change_user_role(user_id: str, role: str,
                     guest_mode_enabled: Optional[bool] = None) -> None:
    """Change the server role of a user; see :func:`.acl.set_role`."""
    acl.set_role(user_id, role, guest_mode_enabled=guest_mode_enabled)


def delete_user(user_id: str) -> bool:
    """
    Delete a user, and everything only that user could reach.

    Streams that the user owns alone are deleted, the invites sent by or
    retargeted to the user are purged, then the roles, e-mail records and
    the user row are removed. Returns ``False`` if there is no such user.

    Raises
    ------
    :class:`.InvariantViolation`
        If the user is the only admin.

    """
    with util.transaction() as session:
        db_user = session.get(DBUser, user_id)
        if db_user is None:
            return False
        role = session.query(DBServerAcl.role) \
            .filter(DBServerAcl.user_id == user_id) \
            .scalar()
        if role == ServerRole.ADMIN:
            acl._lock_admins(session)
        owned = projects._solely_owned(session, user_id)
        for stream_id in owned:
            projects._delete_stream(session, stream_id)
        invites._delete_all_for_user(session, user_id)
        projects._delete_all_acl_for_user(session, user_id)
        acl._delete(session, user_id)
        if role == ServerRole.ADMIN:
            acl._ensure_admin_remains(session)
        emails._delete_all_for_user(session, user_id)
        session.delete(db_user)
    logger.info('Deleted user %s and %i streams', user_id, len(owned))
    return True


def _user_query(session: Session) -> Query:
    return session.query(DBUser, DBUserEmail, DBServerAcl.role) \
        .outerjoin(DBUserEmail, and_(DBUserEmail.user_id == DBUser.id,
                                     DBUserEmail.primary.is_(True))) \
        .outerjoin(DBServerAcl, DBServerAcl.user_id == DBUser.id)


def _filter_listing(users: Query, search_query: Optional[str]) -> Query:
    if not search_query or not search_query.strip():
        return users
    pattern = f'%{_escape_like(search_query.strip())}%'
    return users.filter(or_(
        DBUser.name.ilike(pattern, escape='\\'),
        DBUser.id.in_(
            select(DBUserEmail.user_id)
            .where(DBUserEmail.email.ilike(pattern, escape='\\'))
        )
    ))


def _escape_like(value: str) -> str:
    return value.replace('\\', '\\\\').replace('%', '\\%') \
        .replace('_', '\\_')


def _encode_cursor(db_user: DBUser) -> str:
    raw = f'{db_user.created_at.isoformat()}|{db_user.id}'
    return urlsafe_b64encode(raw.encode('utf-8')).decode('ascii')


def _decode_cursor(cursor: str) -> Tuple[Any, str]:
    try:
        raw = urlsafe_b64decode(cursor.encode('ascii')).decode('utf-8')
        created_at, user_id = raw.split('|', 1)
        return isoparse(created_at), user_id
    except (UnicodeError, BinasciiError, ValueError) as e:
        raise ValidationError('Invalid cursor') from e


def _sanitize_avatar(avatar: Optional[str]) -> Optional[str]:
    """Keep only http(s) URLs and inline images."""
    if not avatar:
        return None
    avatar = avatar.strip()
    if AVATAR_PATTERN.match(avatar):
        return avatar
    logger.debug('Dropped unsupported avatar URL')
    return None


def _to_domain(db_user: DBUser, db_email: Optional[DBUserEmail],
               role: Optional[str], with_email: bool = True) -> domain.User:
    return domain.User(
        user_id=db_user.id,
        name=db_user.name,
        email=db_email.email if with_email and db_email else None,
        verified=bool(db_email.verified) if db_email else False,
        bio=db_user.bio,
        company=db_user.company,
        avatar=db_user.avatar,
        created_at=db_user.created_at,
        role=role
    )
