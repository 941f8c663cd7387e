"""Fernet encryption for device credentials stored on assets."""
import base64
import hashlib
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from flask import current_app, abort


def _fernet() -> Fernet:
    key = current_app.config.get('ASSET_ENCRYPTION_KEY')
    if not key:
        # Development fallback: stable key derived from the JWT secret
        digest = hashlib.sha256(current_app.config['JWT_SECRET_KEY'].encode()).digest()
        key = base64.urlsafe_b64encode(digest)
    if isinstance(key, str):
        key = key.encode()
    return Fernet(key)


def encrypt_secret(plain: Optional[str]) -> Optional[str]:
    if not plain:
        return None
    return _fernet().encrypt(plain.encode()).decode()


def decrypt_secret(token: Optional[str]) -> Optional[str]:
    if not token:
        return None
    try:
        return _fernet().decrypt(token.encode()).decode()
    except InvalidToken:
        current_app.logger.error('Stored asset credential could not be decrypted (key rotated?)')
        abort(500, description='Credential decryption failed')
