import time

import pytest
from jose import jwt

from practice_messaging.auth.jwt_handler import JWTValidationError, extract_user_from_token

from tests.conftest import CLIENT_ID, LAWYER_ID, TEST_JWT_SECRET, make_token


def raw_token(**claims):
    now = int(time.time())
    payload = {"sub": LAWYER_ID, "email": "ana@silva.adv.br", "aud": "authenticated", "iat": now, "exp": now + 3600}
    payload.update(claims)
    return jwt.encode({k: v for k, v in payload.items() if v is not None}, TEST_JWT_SECRET, algorithm="HS256")


class TestExtractUser:
    def test_staff_caller(self, auth_settings):
        user = extract_user_from_token(make_token(LAWYER_ID))

        assert user.user_id == LAWYER_ID
        assert user.user_type == "lawyer"
        assert user.law_firm_id == "firm-1"
        assert user.is_client is False

    def test_client_needs_no_law_firm(self, auth_settings):
        user = extract_user_from_token(make_token(CLIENT_ID, "client", law_firm_id=None))
        assert user.is_client is True

    def test_missing_type_means_staff(self, auth_settings):
        user = extract_user_from_token(raw_token(app_metadata={"law_firm_id": "firm-1"}))
        assert user.user_type == "staff"

    def test_unknown_caller_type(self, auth_settings):
        with pytest.raises(JWTValidationError, match="Unknown caller type"):
            extract_user_from_token(make_token(LAWYER_ID, "superuser"))

    def test_staff_without_law_firm(self, auth_settings):
        with pytest.raises(JWTValidationError, match="law_firm_id"):
            extract_user_from_token(make_token(LAWYER_ID, "lawyer", law_firm_id=None))

    def test_expired(self, auth_settings):
        with pytest.raises(JWTValidationError, match="expired"):
            extract_user_from_token(raw_token(exp=int(time.time()) - 60, app_metadata={"law_firm_id": "firm-1"}))

    def test_token_without_expiry(self, auth_settings):
        with pytest.raises(JWTValidationError):
            extract_user_from_token(raw_token(exp=None, app_metadata={"law_firm_id": "firm-1"}))

    def test_wrong_secret(self, auth_settings):
        token = jwt.encode({"sub": LAWYER_ID, "aud": "authenticated", "exp": int(time.time()) + 60}, "other", algorithm="HS256")
        with pytest.raises(JWTValidationError, match="Invalid token"):
            extract_user_from_token(token)

    def test_unconfigured(self, auth_settings, monkeypatch):
        monkeypatch.setattr(auth_settings, "SUPABASE_JWT_SECRET", "")
        with pytest.raises(JWTValidationError, match="not configured"):
            extract_user_from_token(make_token(LAWYER_ID))
