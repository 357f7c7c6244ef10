"""Credential hashing."""

from passlib.context import CryptContext

# pbkdf2 keeps us clear of the bcrypt backend's 72-byte input limit
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Check a plain password against a stored hash.

    passlib compares digests in constant time; malformed hashes count as
    a mismatch rather than an error.
    """
    if not password_hash:
        return False
    try:
        return pwd_context.verify(password, password_hash)
    except ValueError:
        return False
