import hashlib

from tourneyhub.security import hash_password, is_legacy_hash, needs_rehash, verify_password


def _legacy_hash(password: str, salt: str) -> str:
    key = hashlib.scrypt(password.encode(), salt=salt.encode(), n=16384, r=8, p=1, dklen=64)
    return f"{key.hex()}.{salt}"


def test_argon2_round_trip():
    hashed = hash_password("correct horse")
    assert hashed.startswith("$argon2")
    assert verify_password("correct horse", hashed)
    assert not verify_password("wrong horse", hashed)
    assert not needs_rehash(hashed)


def test_legacy_scrypt_hash_verifies_and_needs_upgrade():
    hashed = _legacy_hash("hunter22", "a1b2c3d4e5f6")
    assert is_legacy_hash(hashed)
    assert verify_password("hunter22", hashed)
    assert not verify_password("hunter23", hashed)
    assert needs_rehash(hashed)


def test_placeholder_hash_never_verifies():
    assert not is_legacy_hash("!")
    assert not verify_password("anything", "!")
    assert needs_rehash("!")
