"""
Utility functions for the Feed API.
"""

import logging

import bcrypt
from starlette.concurrency import run_in_threadpool

logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 10

# bcrypt only looks at the first 72 bytes of input
BCRYPT_MAX_PASSWORD_BYTES = 72


class PasswordTooLongError(ValueError):
    pass


def hash_password(password: str) -> str:
    """
    Derive a salted bcrypt hash of password.

    Args:
        password: Plain-text password

    Returns:
        The bcrypt hash as text, salt and cost included

    Raises:
        PasswordTooLongError: password exceeds bcrypt's input limit
    """
    encoded = password.encode("utf-8")
    if len(encoded) > BCRYPT_MAX_PASSWORD_BYTES:
        raise PasswordTooLongError(f"password exceeds {BCRYPT_MAX_PASSWORD_BYTES} bytes")
    return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """
    Check password against a stored bcrypt hash.

    Returns:
        True if the password matches, False otherwise
    """
    encoded = password.encode("utf-8")
    if len(encoded) > BCRYPT_MAX_PASSWORD_BYTES:
        return False

    is_valid = bcrypt.checkpw(encoded, password_hash.encode("utf-8"))
    logger.debug(f"Password verification: {'valid' if is_valid else 'invalid'}")
    return is_valid


# bcrypt is deliberately slow; keep it off the event loop
async def hash_password_async(password: str) -> str:
    return await run_in_threadpool(hash_password, password)


async def verify_password_async(password: str, password_hash: str) -> bool:
    return await run_in_threadpool(verify_password, password, password_hash)
