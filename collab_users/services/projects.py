"""The parts of the stream subsystem that user deletion relies on."""

from typing import List

from sqlalchemy import func
from sqlalchemy.orm.session import Session

from .. import app_logging
from ..domain import StreamRole
from . import util
from .models import DBStream, DBStreamAcl

logger = app_logging.getLogger(__name__)


def get_streams_solely_owned_by(user_id: str) -> List[str]:
    """Ids of the streams on which ``user_id`` is the only owner."""
    with util.transaction() as session:
        return _solely_owned(session, user_id)


def count_streams_solely_owned_by(user_id: str) -> int:
    """Count the streams on which ``user_id`` is the only owner."""
    return len(get_streams_solely_owned_by(user_id))


def create_stream(name: str, owner_id: str) -> str:
    """Create a stream owned by ``owner_id``, and return its id."""
    with util.transaction() as session:
        stream_id = util.new_id()
        session.add(DBStream(id=stream_id, name=name, created_at=util.now()))
        session.add(DBStreamAcl(user_id=owner_id, resource_id=stream_id,
                                role=StreamRole.OWNER))
        return stream_id


def grant_stream_role(stream_id: str, user_id: str, role: str) -> None:
    """Give ``user_id`` a role on a stream, replacing any previous one."""
    with util.transaction() as session:
        session.merge(DBStreamAcl(user_id=user_id, resource_id=stream_id,
                                  role=role))


def delete_stream(stream_id: str) -> bool:
    """Delete a stream with all of its role assignments."""
    with util.transaction() as session:
        return _delete_stream(session, stream_id)


def _solely_owned(session: Session, user_id: str) -> List[str]:
    owner_counts = session.query(
        DBStreamAcl.resource_id,
        func.count(DBStreamAcl.user_id).label('owners')
    ) \
        .filter(DBStreamAcl.role == StreamRole.OWNER) \
        .group_by(DBStreamAcl.resource_id) \
        .subquery()
    rows = session.query(DBStreamAcl.resource_id) \
        .join(owner_counts,
              owner_counts.c.resource_id == DBStreamAcl.resource_id) \
        .filter(DBStreamAcl.user_id == user_id) \
        .filter(DBStreamAcl.role == StreamRole.OWNER) \
        .filter(owner_counts.c.owners == 1) \
        .all()
    return [row.resource_id for row in rows]


def _delete_stream(session: Session, stream_id: str) -> bool:
    session.query(DBStreamAcl) \
        .filter(DBStreamAcl.resource_id == stream_id) \
        .delete(synchronize_session=False)
    deleted = session.query(DBStream) \
        .filter(DBStream.id == stream_id) \
        .delete(synchronize_session=False)
    if deleted:
        logger.info('Deleted stream %s', stream_id)
    return bool(deleted)


def _delete_all_acl_for_user(session: Session, user_id: str) -> None:
    session.query(DBStreamAcl) \
        .filter(DBStreamAcl.user_id == user_id) \
        .delete(synchronize_session=False)
