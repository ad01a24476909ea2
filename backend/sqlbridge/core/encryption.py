"""
암호화 유틸리티
- Fernet 대칭 암호화 (DB 비밀번호, TLS 인증서/키)
- ENCRYPTION_KEY(미설정 시 SECRET_KEY)에서 PBKDF2로 Fernet 키 파생
"""
import base64
import logging
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from sqlbridge.core.config import settings
from sqlbridge.core.errors import DecryptionError

logger = logging.getLogger(__name__)

_KDF_SALT = b"sqlbridge-credential-salt"


@lru_cache()
def derive_fernet(secret: str) -> Fernet:
    """비밀값에서 Fernet 인스턴스를 파생합니다 (같은 비밀값이면 같은 키)."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=_KDF_SALT,
        iterations=100_000,
    )
    key = base64.urlsafe_b64encode(kdf.derive(secret.encode()))
    return Fernet(key)


def get_fernet() -> Fernet:
    """설정된 암호화 키로 파생된 Fernet을 반환합니다."""
    return derive_fernet(settings.encryption_secret)


def encrypt_value(plaintext: str) -> str:
    """문자열을 Fernet으로 암호화하여 base64 문자열로 반환합니다."""
    f = get_fernet()
    return f.encrypt(plaintext.encode()).decode()


def decrypt_value(ciphertext: str) -> str:
    """
    Fernet 암호화된 base64 문자열을 복호화합니다.

    Raises:
        DecryptionError: 다른 키로 암호화되었거나 형식이 잘못된 경우
    """
    f = get_fernet()
    try:
        return f.decrypt(ciphertext.encode()).decode()
    except (InvalidToken, ValueError, UnicodeError) as e:
        # 암호문/평문은 로그에 남기지 않음
        logger.warning(f"[Cipher] decryption failed: {type(e).__name__}")
        raise DecryptionError("저장된 자격 증명을 복호화할 수 없습니다.") from e
