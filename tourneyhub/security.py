import hashlib
import hmac

from passlib.context import CryptContext


pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")

# Hashes imported from the original datastore look like "<hex key>.<salt>",
# produced by Node's crypto.scrypt with its defaults and a 64 byte key.
_LEGACY_SCRYPT_N = 16384
_LEGACY_SCRYPT_R = 8
_LEGACY_SCRYPT_P = 1
_LEGACY_KEY_LEN = 64


def hash_password(password: str) -> str:
    """Hash a plaintext password using the shared CryptContext."""
    return pwd_context.hash(password)


def is_legacy_hash(hashed_password: str) -> bool:
    if not hashed_password or hashed_password.startswith("$"):
        return False
    key, sep, salt = hashed_password.partition(".")
    if not sep or not salt or len(key) != _LEGACY_KEY_LEN * 2:
        return False
    try:
        bytes.fromhex(key)
    except ValueError:
        return False
    return True


def _verify_legacy(plain_password: str, hashed_password: str) -> bool:
    key, _, salt = hashed_password.partition(".")
    derived = hashlib.scrypt(
        plain_password.encode("utf-8"),
        salt=salt.encode("utf-8"),
        n=_LEGACY_SCRYPT_N,
        r=_LEGACY_SCRYPT_R,
        p=_LEGACY_SCRYPT_P,
        dklen=_LEGACY_KEY_LEN,
    )
    return hmac.compare_digest(derived, bytes.fromhex(key))


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify that ``plain_password`` matches ``hashed_password``."""
    if is_legacy_hash(hashed_password):
        return _verify_legacy(plain_password, hashed_password)
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        # Unrecognized hash format (e.g. a placeholder row from a migration).
        return False


def needs_rehash(hashed_password: str) -> bool:
    if is_legacy_hash(hashed_password):
        return True
    try:
        return pwd_context.needs_update(hashed_password)
    except ValueError:
        return True
