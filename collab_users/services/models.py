"""SQLAlchemy models for users, their e-mails, roles, streams and invites."""

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, \
    String, Text, func
from sqlalchemy.orm import relationship

db: SQLAlchemy = SQLAlchemy()

EMAIL_UNIQUE_INDEX = 'user_emails_email_lower_uq'
PRIMARY_UNIQUE_INDEX = 'user_emails_user_primary_uq'


class DBUser(db.Model):  # type: ignore
    """
    User identity record.

    The password digest only exists for users with local credentials, and
    never leaves :mod:`.services.users`.
    """

    __tablename__ = 'users'

    id = Column(String(10), primary_key=True)
    name = Column(String(512), nullable=False)
    bio = Column(Text)
    company = Column(String(512))
    avatar = Column(Text)
    password_digest = Column(String(255))
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)

    emails = relationship('DBUserEmail', back_populates='user',
                          passive_deletes=True)


class DBUserEmail(db.Model):  # type: ignore
    """
    A claim that a user controls an e-mail address.

    Addresses are stored lowercase. Uniqueness (global, case-insensitive) and
    the single primary address per user are both enforced by unique indexes,
    declared below the class.
    """

    __tablename__ = 'user_emails'

    id = Column(String(10), primary_key=True)
    user_id = Column(ForeignKey('users.id', ondelete='CASCADE'),
                     nullable=False, index=True)
    email = Column(String(255), nullable=False)
    primary = Column(Boolean, nullable=False, default=False)
    verified = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    user = relationship('DBUser', back_populates='emails')


Index(EMAIL_UNIQUE_INDEX, func.lower(DBUserEmail.email), unique=True)
Index(PRIMARY_UNIQUE_INDEX, DBUserEmail.user_id, unique=True,
      sqlite_where=DBUserEmail.primary.is_(True),
      postgresql_where=DBUserEmail.primary.is_(True))


class DBServerAcl(db.Model):  # type: ignore
    """Server role of a user. One row per user."""

    __tablename__ = 'server_acl'

    user_id = Column(ForeignKey('users.id', ondelete='CASCADE'),
                     primary_key=True)
    role = Column(String(64), nullable=False, index=True)


class DBStream(db.Model):  # type: ignore
    """A project ("stream"). Only what user deletion needs is mapped."""

    __tablename__ = 'streams'

    id = Column(String(10), primary_key=True)
    name = Column(String(512), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class DBStreamAcl(db.Model):  # type: ignore
    """Role of a user on a stream."""

    __tablename__ = 'stream_acl'

    user_id = Column(ForeignKey('users.id', ondelete='CASCADE'),
                     primary_key=True)
    resource_id = Column(ForeignKey('streams.id', ondelete='CASCADE'),
                         primary_key=True)
    role = Column(String(64), nullable=False, index=True)


class DBServerInvite(db.Model):  # type: ignore
    """
    Invitation to join the server, optionally to a stream as well.

    ``target`` holds the invited (lowercase) e-mail address until the invitee
    registers, and ``@<user id>`` afterwards. There is no foreign key on it.
    """

    __tablename__ = 'server_invites'

    id = Column(String(10), primary_key=True)
    target = Column(String(256), nullable=False, index=True)
    inviter_id = Column(String(10), nullable=False, index=True)
    resource_id = Column(String(10))
    token = Column(String(256), nullable=False, unique=True)
    message = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False)
