from functools import lru_cache
from typing import Optional

from werkzeug.security import check_password_hash, generate_password_hash

from config import get_settings


def hash_password(password: str, method: Optional[str] = None) -> str:
    method = method or get_settings().password_hash_method
    return generate_password_hash(password, method=method)


def check_password(password_hash: str, password: str) -> bool:
    return check_password_hash(password_hash, password)


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    return hash_password("not-a-real-password")


def verify_password_hash(password_hash: Optional[str], password: str) -> bool:
    """Check ``password`` against a stored hash, or against a dummy one if absent.

    A login naming an unknown email therefore costs about as much as a wrong
    password for an existing account, and still fails.
    """
    if password_hash is None:
        check_password_hash(_dummy_hash(), password)
        return False
    return check_password_hash(password_hash, password)
