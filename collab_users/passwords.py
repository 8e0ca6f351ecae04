"""Hashing and verification of user passwords."""

import hashlib
import hmac
import secrets
from base64 import b64encode, b64decode
from binascii import Error as BinasciiError

from . import app_logging
from .context import get_int
from .exceptions import WeakCredentialError

logger = app_logging.getLogger(__name__)

ALGORITHM = 'pbkdf2_sha256'
DEFAULT_ITERATIONS = 260000
DEFAULT_MIN_LENGTH = 8
SALT_BYTES = 16


def min_password_length() -> int:
    """The configured minimum password length."""
    return get_int('MIN_PASSWORD_LENGTH', DEFAULT_MIN_LENGTH)


def check_strength(password: str) -> None:
    """Raise :class:`.WeakCredentialError` if ``password`` is too short."""
    min_length = min_password_length()
    if password is None or len(password) < min_length:
        raise WeakCredentialError(min_length)


def _hash_salt_and_password(salt: bytes, password: str,
                            iterations: int) -> bytes:
    return hashlib.pbkdf2_hmac('sha256', password.encode('utf-8'), salt,
                               iterations)


def hash_password(password: str) -> str:
    """
    Generate a slow, salted hash of a password.

    The digest has the form ``pbkdf2_sha256$<iterations>$<base64>``, where the
    base64 payload is the salt followed by the derived key.

    Raises
    ------
    :class:`.WeakCredentialError`
        If the password is shorter than ``MIN_PASSWORD_LENGTH``.

    """
    check_strength(password)
    iterations = get_int('PASSWORD_HASH_ITERATIONS', DEFAULT_ITERATIONS)
    salt = secrets.token_bytes(SALT_BYTES)
    hashed = _hash_salt_and_password(salt, password, iterations)
    payload = b64encode(salt + hashed).decode('ascii')
    return f'{ALGORITHM}${iterations}${payload}'


def check_password(password: str, digest: str) -> bool:
    """
    Check a password against a digest produced by :func:`hash_password`.

    Returns ``False`` on mismatch; the comparison is constant-time.

    Raises
    ------
    ValueError
        If ``digest`` is not a digest produced by :func:`hash_password`.

    """
    try:
        algorithm, iterations, payload = digest.split('$')
        decoded = b64decode(payload.encode('ascii'), validate=True)
        rounds = int(iterations)
    except (AttributeError, ValueError, BinasciiError) as e:
        raise ValueError('Malformed password digest') from e
    if algorithm != ALGORITHM or len(decoded) <= SALT_BYTES or rounds < 1:
        raise ValueError('Malformed password digest')
    salt, expected = decoded[:SALT_BYTES], decoded[SALT_BYTES:]
    return hmac.compare_digest(
        _hash_salt_and_password(salt, password, rounds),
        expected
    )


def generate_password(length: int = 20) -> str:
    """Generate a random, unguessable password."""
    length = max(length, min_password_length())
    return secrets.token_urlsafe(length)[:length]
