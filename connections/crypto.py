"""Symmetric encryption for connection secrets stored in the database."""
import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken
from django.conf import settings


class SecretDecryptionError(Exception):
    pass


def get_fernet() -> Fernet:
    """Returns a Fernet built from FIELD_ENCRYPTION_KEY, or derived from SECRET_KEY."""
    key = getattr(settings, "FIELD_ENCRYPTION_KEY", "")
    if key:
        return Fernet(key.encode("utf-8"))
    digest = hashlib.sha256(settings.SECRET_KEY.encode("utf-8")).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


def encrypt_value(value: str) -> str:
    return get_fernet().encrypt(value.encode("utf-8")).decode("utf-8")


def decrypt_value(token: str) -> str:
    try:
        return get_fernet().decrypt(token.encode("utf-8")).decode("utf-8")
    except InvalidToken as e:
        raise SecretDecryptionError("Stored secret cannot be decrypted with the current key") from e
