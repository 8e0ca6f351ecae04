"""Resolve identities asserted by external providers to users."""

from .. import app_logging, passwords
from ..domain import ExternalIdentity, ResolvedUser
from ..exceptions import ConflictError
from . import emails, users, util

logger = app_logging.getLogger(__name__)


def find_or_create_user(identity: ExternalIdentity) -> ResolvedUser:
    """
    Get the user owning a verified e-mail address, or create one.

    The caller vouches that the person controls ``identity.email``, so a new
    user starts with that address verified, and with a random password it
    never learns.

    Two concurrent calls for the same new address create one user; the call
    that loses the race returns the winner's user.

    Parameters
    ----------
    identity : :class:`.ExternalIdentity`

    Returns
    -------
    :class:`.ResolvedUser`

    Raises
    ------
    :class:`.ConflictError`
        If the address belongs to a user, but is not that user's verified
        primary address.

    """
    address = util.normalize_email(identity.email)
    existing = emails.find_primary(address, verified=True)
    if existing is not None:
        return ResolvedUser(user_id=existing.user_id, email=address)

    name = (identity.name or '').strip() or address.split('@')[0]
    try:
        user_id = users.create_user(
            email=address,
            name=name,
            password=passwords.generate_password(),
            bio=identity.bio,
            company=identity.company,
            avatar=identity.avatar,
            verified=True
        )
    except ConflictError:
        winner = emails.find_primary(address, verified=True)
        if winner is None:
            raise
        logger.info('Lost creation race for %s to user %s', identity.provider,
                    winner.user_id)
        return ResolvedUser(user_id=winner.user_id, email=address)
    return ResolvedUser(user_id=user_id, email=address, is_new_user=True)
