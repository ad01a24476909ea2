"""
security.py / encryption.py 단위 테스트
- 비밀번호 해싱/검증
- JWT 토큰 생성/검증
- 자격 증명 암호화
"""
import pytest
from datetime import timedelta
from jose import jwt

from sqlbridge.core.security import (
    verify_password,
    get_password_hash,
    create_access_token,
    decode_access_token,
    get_dummy_hash,
)
from sqlbridge.core.config import settings
from sqlbridge.core.encryption import decrypt_value, derive_fernet, encrypt_value
from sqlbridge.core.errors import DecryptionError


class TestPasswordHashing:
    """비밀번호 해싱 테스트"""

    def test_hash_and_verify(self):
        hashed = get_password_hash("MyPassword123")
        assert hashed != "MyPassword123"
        assert hashed.startswith("$2b$")
        assert verify_password("MyPassword123", hashed) is True
        assert verify_password("WrongPass123", hashed) is False

    def test_different_hashes_for_same_password(self):
        """같은 비밀번호라도 다른 해시 생성 (salt)"""
        assert get_password_hash("SamePassword123") != get_password_hash("SamePassword123")

    def test_dummy_hash_verifiable(self):
        """더미 해시에 대해 비밀번호 검증이 동작하는지 확인 (타이밍 공격 방지)"""
        assert get_dummy_hash().startswith("$2b$")
        assert verify_password("random_password", get_dummy_hash()) is False


class TestJWTToken:
    """JWT 토큰 테스트"""

    def test_token_has_subject_exp_and_iat(self):
        token = create_access_token(data={"sub": "test@example.com"})
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        assert payload["sub"] == "test@example.com"
        assert "exp" in payload
        assert "iat" in payload

    def test_custom_expiration(self):
        """커스텀 만료 시간"""
        token = create_access_token(data={"sub": "test@example.com"}, expires_delta=timedelta(minutes=5))
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        assert 290 <= payload["exp"] - payload["iat"] <= 310

    def test_decode_access_token(self):
        token = create_access_token(data={"sub": "test@example.com"})
        assert decode_access_token(token) == "test@example.com"

    def test_decode_invalid_tokens(self):
        """서명 불일치/만료/형식 오류는 None"""
        forged = jwt.encode({"sub": "x@example.com"}, "wrong-key-that-is-incorrect", algorithm=settings.ALGORITHM)
        expired = create_access_token(data={"sub": "x@example.com"}, expires_delta=timedelta(minutes=-1))
        assert decode_access_token(forged) is None
        assert decode_access_token(expired) is None
        assert decode_access_token("not-a-token") is None


class TestCredentialCipher:
    """자격 증명 암호화"""

    def test_round_trip(self):
        ciphertext = encrypt_value("p@ss wörd")
        assert ciphertext != "p@ss wörd"
        assert decrypt_value(ciphertext) == "p@ss wörd"

    def test_ciphertexts_differ(self):
        """같은 평문이라도 암호문은 매번 다름"""
        assert encrypt_value("same") != encrypt_value("same")

    def test_same_secret_same_key(self):
        """같은 비밀값에서 파생된 키는 서로 복호화 가능"""
        token = derive_fernet("shared-secret-value-of-enough-length").encrypt(b"data")
        assert derive_fernet("shared-secret-value-of-enough-length").decrypt(token) == b"data"

    def test_foreign_key_fails(self):
        """다른 키로 암호화된 값은 DecryptionError"""
        foreign = derive_fernet("some-other-secret-that-is-long-enough").encrypt(b"secret").decode()
        with pytest.raises(DecryptionError):
            decrypt_value(foreign)

    def test_malformed_ciphertext_fails(self):
        with pytest.raises(DecryptionError):
            decrypt_value("definitely-not-fernet")
