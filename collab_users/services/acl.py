"""Server roles, and the rule that the server always keeps an admin."""

from typing import List, Optional

from sqlalchemy.orm.session import Session

from .. import app_logging
from ..context import get_bool
from ..domain import ServerRole
from ..exceptions import InvariantViolation, NotFoundError, ValidationError
from . import util
from .models import DBServerAcl

logger = app_logging.getLogger(__name__)

LAST_ADMIN = 'Cannot remove the last admin role from the server'


def get_role(user_id: str) -> Optional[str]:
    """Get the server role of a user, or ``None`` if there is none."""
    with util.transaction() as session:
        acl = session.get(DBServerAcl, user_id)
        return acl.role if acl else None


def count_admins() -> int:
    """Count the users holding :attr:`.ServerRole.ADMIN`."""
    with util.transaction() as session:
        return (
            session.query(DBServerAcl)
            .filter(DBServerAcl.role == ServerRole.ADMIN)
            .count()
        )


def set_role(user_id: str, role: str,
             guest_mode_enabled: Optional[bool] = None) -> None:
    """
    Change the server role of a user.

    Parameters
    ----------
    user_id : str
    role : str
        One of :attr:`.ServerRole.ALL`.
    guest_mode_enabled : bool
        Overrides the ``GUEST_MODE_ENABLED`` setting.

    Raises
    ------
    :class:`.ValidationError`
        If the role is unknown, or is guest while guest mode is off.
    :class:`.InvariantViolation`
        If the user is the only admin and would lose that role.
    :class:`.NotFoundError`
        If the user has no role assignment, i.e. does not exist.

    """
    validate_role(role, guest_mode_enabled)
    with util.transaction() as session:
        acl = _lock(session, user_id)
        if acl is None:
            raise NotFoundError('User not found')
        if acl.role == role:
            return
        if acl.role == ServerRole.ADMIN:
            _lock_admins(session)
        previous, acl.role = acl.role, role
        session.flush()
        if previous == ServerRole.ADMIN:
            _ensure_admin_remains(session)
    logger.info('Changed server role of %s from %s to %s', user_id, previous,
                role)


def validate_role(role: str, guest_mode_enabled: Optional[bool] = None) \
        -> None:
    """Raise :class:`.ValidationError` if ``role`` cannot be assigned."""
    if role not in ServerRole.ALL:
        raise ValidationError(f'Invalid role specified: {role}')
    if guest_mode_enabled is None:
        guest_mode_enabled = get_bool('GUEST_MODE_ENABLED')
    if role == ServerRole.GUEST and not guest_mode_enabled:
        raise ValidationError('Guest role is not enabled on this server')


def _lock(session: Session, user_id: str) -> Optional[DBServerAcl]:
    return session.query(DBServerAcl) \
        .filter(DBServerAcl.user_id == user_id) \
        .with_for_update() \
        .first()


def _lock_admins(session: Session) -> List[DBServerAcl]:
    """Lock the admin rows, on backends that have row locks."""
    return session.query(DBServerAcl) \
        .filter(DBServerAcl.role == ServerRole.ADMIN) \
        .with_for_update() \
        .all()


def _ensure_admin_remains(session: Session) -> None:
    """
    Fail if no admin is left, once an admin role has been written away.

    Runs after the write, in the same transaction: concurrent writers are
    serialized by the row locks of :func:`_lock_admins`, or by the database
    write lock where there are no row locks (SQLite), so the count includes
    any demotion committed first. Raising rolls the write back.
    """
    remaining = session.query(DBServerAcl) \
        .filter(DBServerAcl.role == ServerRole.ADMIN) \
        .count()
    if remaining < 1:
        raise InvariantViolation(LAST_ADMIN)


def _assign_initial_role(session: Session, user_id: str,
                         requested: Optional[str] = None) -> str:
    """
    Give a new user its first role.

    The first user of the server becomes admin. Anybody else gets the
    requested role if it is assignable right now, and the user role if not.
    """
    has_admin = session.query(DBServerAcl) \
        .filter(DBServerAcl.role == ServerRole.ADMIN) \
        .with_for_update() \
        .first() is not None
    if not has_admin:
        role = ServerRole.ADMIN
    elif requested is not None and _is_assignable(requested):
        role = requested
    else:
        role = ServerRole.USER
    session.add(DBServerAcl(user_id=user_id, role=role))
    return role


def _is_assignable(role: str) -> bool:
    try:
        validate_role(role)
    except ValidationError:
        return False
    return True


def _delete(session: Session, user_id: str) -> None:
    session.query(DBServerAcl) \
        .filter(DBServerAcl.user_id == user_id) \
        .delete(synchronize_session=False)
