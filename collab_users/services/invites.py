"""
Server invites, as far as registration and user deletion need them.

An invite targets an e-mail address until the invitee registers; from then
on it targets the user, stored as ``@<user id>``. Invites without a
``resource_id`` only grant access to the server and are consumed by
registration. Stream invites stay around, retargeted to the new user.
"""

import secrets
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm.session import Session

from .. import app_logging, domain
from ..exceptions import NotFoundError
from . import util
from .models import DBServerInvite

logger = app_logging.getLogger(__name__)


def user_target(user_id: str) -> str:
    """The invite target that refers to a registered user."""
    return f'@{user_id}'


def create_invite(email: str, inviter_id: str,
                  resource_id: Optional[str] = None,
                  message: Optional[str] = None) -> domain.ServerInvite:
    """Invite an e-mail address to the server, or to a stream on it."""
    with util.transaction() as session:
        db_invite = DBServerInvite(
            id=util.new_id(),
            target=util.normalize_email(email),
            inviter_id=inviter_id,
            resource_id=resource_id,
            token=secrets.token_urlsafe(32),
            message=message,
            created_at=util.now()
        )
        session.add(db_invite)
        session.flush()
        logger.debug('Created invite %s from %s', db_invite.id, inviter_id)
        return _to_domain(db_invite)


def validate_invite(email: str, token: str) -> domain.ServerInvite:
    """
    Check that ``token`` is an invite for ``email``.

    Raises
    ------
    :class:`.NotFoundError`
        If there is no such invite, or it was issued to a different address.

    """
    with util.transaction() as session:
        db_invite = session.query(DBServerInvite) \
            .filter(DBServerInvite.token == token) \
            .first()
        if db_invite is None \
                or db_invite.target.lower() != util.normalize_email(email):
            raise NotFoundError('Wrong e-mail address or invite token. Make'
                                ' sure you use the same e-mail address that'
                                ' received the invite.')
        return _to_domain(db_invite)


def finalize_invited_registration(email: str, user_id: str) -> None:
    """
    Settle the invites of an address once it belongs to a registered user.

    Server-only invites are consumed. Stream invites are retargeted to the
    user so that they can still be accepted.
    """
    with util.transaction() as session:
        _finalize(session, email, user_id)


def delete_all_user_invites(user_id: str) -> None:
    """Delete the invites sent by, or retargeted to, a user."""
    with util.transaction() as session:
        _delete_all_for_user(session, user_id)


def _finalize(session: Session, email: str, user_id: str) -> None:
    address = util.normalize_email(email)
    session.query(DBServerInvite) \
        .filter(func.lower(DBServerInvite.target) == address) \
        .filter(DBServerInvite.resource_id.is_(None)) \
        .delete(synchronize_session=False)
    session.query(DBServerInvite) \
        .filter(func.lower(DBServerInvite.target) == address) \
        .update({DBServerInvite.target: user_target(user_id)},
                synchronize_session=False)


def _delete_all_for_user(session: Session, user_id: str) -> None:
    session.query(DBServerInvite) \
        .filter(or_(DBServerInvite.inviter_id == user_id,
                    DBServerInvite.target == user_target(user_id))) \
        .delete(synchronize_session=False)


def _to_domain(db_invite: DBServerInvite) -> domain.ServerInvite:
    return domain.ServerInvite(
        invite_id=db_invite.id,
        target=db_invite.target,
        inviter_id=db_invite.inviter_id,
        token=db_invite.token,
        resource_id=db_invite.resource_id,
        message=db_invite.message,
        created_at=db_invite.created_at
    )
