"""
The e-mail ledger: which addresses each user controls.

Every address is normalized to lowercase before it is written or compared,
and the database enforces both global uniqueness of ``lower(email)`` and at
most one primary record per user. The checks here give callers a precise
error; the indexes close the race between check and write.
"""

from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query
from sqlalchemy.orm.session import Session

from .. import app_logging, domain
from ..exceptions import ConflictError, InvariantViolation, NotFoundError
from . import util
from .models import DBUser, DBUserEmail, PRIMARY_UNIQUE_INDEX

logger = app_logging.getLogger(__name__)

EMAIL_TAKEN = 'Email taken. Try logging in?'
PRIMARY_EXISTS = 'A primary email already exists for this user'
LAST_EMAIL = 'Cannot delete last user email'
PRIMARY_EMAIL = 'Cannot delete primary email'


def find(email: Optional[str] = None, user_id: Optional[str] = None,
         primary: Optional[bool] = None,
         verified: Optional[bool] = None) -> Optional[domain.UserEmail]:
    """
    Find the first e-mail record that matches all of the given criteria.

    Criteria that are ``None`` are ignored. The ``email`` criterion is
    compared case-insensitively.

    Parameters
    ----------
    email : str
    user_id : str
    primary : bool
    verified : bool

    Returns
    -------
    :class:`.domain.UserEmail` or None

    """
    with util.transaction() as session:
        db_email = _query(session, email, user_id, primary, verified).first()
        return _to_domain(db_email) if db_email else None


def find_primary(email: str, user_id: Optional[str] = None,
                 verified: Optional[bool] = None) \
        -> Optional[domain.UserEmail]:
    """Find a primary record for ``email``, optionally for one user."""
    return find(email=email, user_id=user_id, primary=True, verified=verified)


def list_for_user(user_id: str) -> List[domain.UserEmail]:
    """All e-mail records of a user, primary first."""
    with util.transaction() as session:
        rows = (
            _query(session, user_id=user_id)
            .order_by(DBUserEmail.primary.desc(), DBUserEmail.created_at)
            .all()
        )
        return [_to_domain(row) for row in rows]


def create(user_id: str, email: str, primary: bool = False,
           verified: bool = False) -> domain.UserEmail:
    """
    Add an e-mail address to a user.

    Raises
    ------
    :class:`.ConflictError`
        If the address belongs to any user already, or ``primary`` is
        requested and the user already has a primary address.
    :class:`.NotFoundError`
        If there is no such user.

    """
    with util.transaction() as session:
        return _to_domain(_create(session, user_id, email, primary=primary,
                                  verified=verified))


def set_primary(email_id: str, user_id: str) -> bool:
    """
    Make a record the primary address of its user.

    The current primary (if any) is demoted in the same transaction, so that
    no reader ever sees zero or two primary records.

    Raises
    ------
    :class:`.NotFoundError`
        If the record does not exist or does not belong to ``user_id``.

    """
    with util.transaction() as session:
        records = _lock_user_emails(session, user_id)
        target = _pick(records, email_id)
        if target.primary:
            return True
        for record in records:
            if record.primary:
                record.primary = False
                record.updated_at = util.now()
        _flush(session)
        target.primary = True
        target.updated_at = util.now()
        _flush(session)
    logger.debug('Set primary email %s for user %s', email_id, user_id)
    return True


def update(email_id: str, user_id: str, email: Optional[str] = None,
           primary: Optional[bool] = None) -> domain.UserEmail:
    """
    Change the address of a record, or promote it to primary.

    A changed address must be verified again. Promoting through this
    function only works while the user has no other primary; use
    :func:`set_primary` to switch primaries.

    Raises
    ------
    :class:`.ConflictError`
        If the new address is taken, or another primary exists.
    :class:`.InvariantViolation`
        If ``primary=False`` is requested for the primary record.
    :class:`.NotFoundError`
        If the record does not exist or does not belong to ``user_id``.

    """
    with util.transaction() as session:
        records = _lock_user_emails(session, user_id)
        target = _pick(records, email_id)
        if email is not None:
            address = util.normalize_email(email)
            if address != target.email.lower():
                if _query(session, email=address).first() is not None:
                    raise ConflictError(EMAIL_TAKEN)
                target.verified = False
            target.email = address
        if primary is True and not target.primary:
            if any(record.primary for record in records):
                raise ConflictError(PRIMARY_EXISTS)
            target.primary = True
        elif primary is False and target.primary:
            raise InvariantViolation('Cannot demote primary email; set'
                                     ' another email as primary instead')
        target.updated_at = util.now()
        _flush(session)
        return _to_domain(target)


def delete(email_id: str, user_id: str) -> bool:
    """
    Remove an e-mail address from a user.

    The remaining records are checked again after the delete, in the same
    transaction, so that a concurrent :func:`set_primary` cannot leave the
    user without a primary address.

    Raises
    ------
    :class:`.InvariantViolation`
        If it is the user's only address, or the primary one.
    :class:`.NotFoundError`
        If the record does not exist or does not belong to ``user_id``.

    """
    with util.transaction() as session:
        records = _lock_user_emails(session, user_id)
        target = _pick(records, email_id)
        if len(records) == 1:
            raise InvariantViolation(LAST_EMAIL)
        if target.primary:
            raise InvariantViolation(PRIMARY_EMAIL)
        session.delete(target)
        session.flush()
        remaining = _query(session, user_id=user_id).all()
        if not remaining:
            raise InvariantViolation(LAST_EMAIL)
        if not any(record.primary for record in remaining):
            raise InvariantViolation(PRIMARY_EMAIL)
    logger.debug('Deleted email %s of user %s', email_id, user_id)
    return True


def mark_verified(email: str) -> bool:
    """
    Mark an address as verified. Already verified addresses are fine.

    Returns ``False`` if no record has that address.
    """
    address = util.normalize_email(email)
    with util.transaction() as session:
        updated = (
            session.query(DBUserEmail)
            .filter(func.lower(DBUserEmail.email) == address)
            .update({DBUserEmail.verified: True,
                     DBUserEmail.updated_at: util.now()},
                    synchronize_session=False)
        )
    return bool(updated)


def _query(session: Session, email: Optional[str] = None,
           user_id: Optional[str] = None, primary: Optional[bool] = None,
           verified: Optional[bool] = None) -> Query:
    query = session.query(DBUserEmail)
    if email is not None:
        query = query.filter(
            func.lower(DBUserEmail.email) == util.normalize_email(email)
        )
    if user_id is not None:
        query = query.filter(DBUserEmail.user_id == user_id)
    if primary is not None:
        query = query.filter(DBUserEmail.primary.is_(primary))
    if verified is not None:
        query = query.filter(DBUserEmail.verified.is_(verified))
    return query


def _create(session: Session, user_id: str, email: str,
            primary: bool = False, verified: bool = False) -> DBUserEmail:
    address = util.normalize_email(email)
    if session.get(DBUser, user_id) is None:
        raise NotFoundError('No such user')
    if _query(session, email=address).first() is not None:
        raise ConflictError(EMAIL_TAKEN)
    if primary and _query(session, user_id=user_id, primary=True) \
            .with_for_update().first() is not None:
        raise ConflictError(PRIMARY_EXISTS)
    created = util.now()
    db_email = DBUserEmail(
        id=util.new_id(),
        user_id=user_id,
        email=address,
        primary=primary,
        verified=verified,
        created_at=created,
        updated_at=created
    )
    session.add(db_email)
    _flush(session)
    return db_email


def _flush(session: Session) -> None:
    try:
        session.flush()
    except IntegrityError as e:
        if PRIMARY_UNIQUE_INDEX in str(e) or 'user_emails.user_id' in str(e):
            raise ConflictError(PRIMARY_EXISTS) from e
        raise ConflictError(EMAIL_TAKEN) from e


def _lock_user_emails(session: Session, user_id: str) -> List[DBUserEmail]:
    return _query(session, user_id=user_id).with_for_update().all()


def _pick(records: List[DBUserEmail], email_id: str) -> DBUserEmail:
    for record in records:
        if record.id == email_id:
            return record
    raise NotFoundError('Email not found')


def _delete_all_for_user(session: Session, user_id: str) -> None:
    _query(session, user_id=user_id).delete(synchronize_session=False)


def _to_domain(db_email: DBUserEmail) -> domain.UserEmail:
    return domain.UserEmail(
        email_id=db_email.id,
        user_id=db_email.user_id,
        email=db_email.email,
        primary=bool(db_email.primary),
        verified=bool(db_email.verified),
        created_at=db_email.created_at
    )
