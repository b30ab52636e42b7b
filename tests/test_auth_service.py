import time
from datetime import timedelta

import pytest

from app.core.exceptions import (
    EmailAlreadyExists,
    InvalidCredentials,
    InvalidResetToken,
    InvalidToken,
    ValidationError,
    WeakPassword,
)
from app.core.security import fingerprint, verify_password
from app.core.tokens import TokenKind, create_token, decode_token
from app.models.user import User
from app.services.auth_service import AuthService
from app.services.revocation_ledger import RevocationLedger
from app.services.user_service import UserService

PASSWORD = "StrongPass1!"
NEW_PASSWORD = "NewStrong2$"


def _reset_token(outbox):
    return [message["token"] for message in outbox if message["kind"] == "password_reset"][-1]


def test_register_creates_user_and_issues_tokens(db_session, outbox):
    result = AuthService.register(db_session, email="  New@Example.com ", password=PASSWORD, name="New User")

    assert result.user.id is not None
    assert result.user.email == "new@example.com"
    assert result.user.password_hash != PASSWORD
    assert AuthService.authenticate(db_session, result.tokens.access_token).id == result.user.id
    assert outbox == [{"kind": "welcome", "to": "new@example.com", "name": "New User"}]


def test_register_rejects_duplicate_email_case_insensitively(db_session, user):
    original_hash = user.password_hash

    with pytest.raises(EmailAlreadyExists):
        AuthService.register(db_session, email="JANE@example.com", password=NEW_PASSWORD, name="Jane Again")

    assert db_session.query(User).count() == 1
    db_session.refresh(user)
    assert user.name == "Jane Doe"
    assert user.password_hash == original_hash
    assert AuthService.login(db_session, email=user.email, password=PASSWORD).user.id == user.id


def test_register_rejects_weak_password(db_session):
    with pytest.raises(WeakPassword) as exc_info:
        AuthService.register(db_session, email="weak@example.com", password="weakpass", name="Weak")

    assert "Password must contain at least one uppercase letter" in exc_info.value.errors
    assert db_session.query(User).count() == 0


def test_register_survives_email_dispatch_failure(db_session, monkeypatch):
    def broken(*args, **kwargs):
        raise ConnectionError("broker down")

    monkeypatch.setattr("app.services.auth_service.queue_welcome_email", broken)

    result = AuthService.register(db_session, email="mailless@example.com", password=PASSWORD, name="Mailless")
    assert result.user.id is not None


def test_login_failures_are_indistinguishable(db_session, user):
    with pytest.raises(InvalidCredentials) as unknown:
        AuthService.login(db_session, email="nobody@example.com", password=PASSWORD)
    with pytest.raises(InvalidCredentials) as wrong:
        AuthService.login(db_session, email=user.email, password="WrongPass1!")

    assert unknown.value.message == wrong.value.message
    assert unknown.value.status_code == wrong.value.status_code == 401


def test_login_normalizes_email(db_session, user):
    result = AuthService.login(db_session, email="Jane@Example.COM", password=PASSWORD)
    assert result.user.id == user.id


def test_authenticate_rejects_refresh_token(db_session, user):
    result = AuthService.login(db_session, email=user.email, password=PASSWORD)

    with pytest.raises(InvalidToken):
        AuthService.authenticate(db_session, result.tokens.refresh_token)


def test_refresh_rejects_access_token(db_session, user):
    result = AuthService.login(db_session, email=user.email, password=PASSWORD)

    with pytest.raises(InvalidToken):
        AuthService.refresh(db_session, result.tokens.access_token)


def test_authenticate_rejects_token_for_deleted_user(db_session, user):
    token = create_token(user, TokenKind.ACCESS)
    db_session.delete(user)
    db_session.commit()

    with pytest.raises(InvalidToken):
        AuthService.authenticate(db_session, token)


def test_refresh_rotates_and_spends_old_token(db_session, user):
    first = AuthService.login(db_session, email=user.email, password=PASSWORD)

    second = AuthService.refresh(db_session, first.tokens.refresh_token)

    assert second.tokens.refresh_token != first.tokens.refresh_token
    assert RevocationLedger.is_blacklisted(db_session, first.tokens.refresh_token)
    with pytest.raises(InvalidToken):
        AuthService.refresh(db_session, first.tokens.refresh_token)
    assert AuthService.refresh(db_session, second.tokens.refresh_token).user.id == user.id


def test_logout_revokes_access_and_refresh(db_session, user):
    result = AuthService.login(db_session, email=user.email, password=PASSWORD)

    revoked = AuthService.logout(db_session, result.tokens.access_token, result.tokens.refresh_token)

    assert revoked == 2
    with pytest.raises(InvalidToken):
        AuthService.authenticate(db_session, result.tokens.access_token)
    with pytest.raises(InvalidToken):
        AuthService.refresh(db_session, result.tokens.refresh_token)


def test_logout_ignores_missing_or_invalid_tokens(db_session):
    assert AuthService.logout(db_session, None, None) == 0
    assert AuthService.logout(db_session, "garbage", "more-garbage") == 0


def test_logout_all_invalidates_existing_sessions_only(db_session, user):
    before = AuthService.login(db_session, email=user.email, password=PASSWORD)

    AuthService.logout_all(db_session, user.id)
    time.sleep(0.002)  # cutoffs have millisecond resolution
    after = AuthService.login(db_session, email=user.email, password=PASSWORD)

    with pytest.raises(InvalidToken):
        AuthService.authenticate(db_session, before.tokens.access_token)
    with pytest.raises(InvalidToken):
        AuthService.refresh(db_session, before.tokens.refresh_token)
    assert AuthService.authenticate(db_session, after.tokens.access_token).id == user.id


def test_password_reset_request_for_unknown_email_is_silent(db_session, outbox):
    AuthService.request_password_reset(db_session, "ghost@example.com")

    assert outbox == []


def test_password_reset_stores_only_digest(db_session, user, outbox):
    AuthService.request_password_reset(db_session, user.email)
    token = _reset_token(outbox)

    db_session.refresh(user)
    assert user.password_reset_token_hash == fingerprint(token)
    assert user.password_reset_token_hash != token
    assert user.password_reset_expires_at is not None


def test_password_reset_is_single_use_and_revokes_sessions(db_session, user, outbox):
    session = AuthService.login(db_session, email=user.email, password=PASSWORD)
    AuthService.request_password_reset(db_session, user.email)
    token = _reset_token(outbox)

    AuthService.reset_password(db_session, token=token, new_password=NEW_PASSWORD)
    time.sleep(0.002)

    with pytest.raises(InvalidResetToken):
        AuthService.reset_password(db_session, token=token, new_password="Another3&pass")
    with pytest.raises(InvalidToken):
        AuthService.authenticate(db_session, session.tokens.access_token)
    with pytest.raises(InvalidCredentials):
        AuthService.login(db_session, email=user.email, password=PASSWORD)
    assert AuthService.login(db_session, email=user.email, password=NEW_PASSWORD).user.id == user.id


def test_newer_reset_request_replaces_older_token(db_session, user, outbox):
    AuthService.request_password_reset(db_session, user.email)
    first = _reset_token(outbox)
    AuthService.request_password_reset(db_session, user.email)
    second = _reset_token(outbox)

    with pytest.raises(InvalidResetToken):
        AuthService.reset_password(db_session, token=first, new_password=NEW_PASSWORD)
    AuthService.reset_password(db_session, token=second, new_password=NEW_PASSWORD)


def test_expired_reset_token_is_rejected(db_session, user, outbox):
    AuthService.request_password_reset(db_session, user.email)
    token = _reset_token(outbox)
    user.password_reset_expires_at = user.password_reset_expires_at - timedelta(hours=2)
    db_session.commit()

    with pytest.raises(InvalidResetToken):
        AuthService.reset_password(db_session, token=token, new_password=NEW_PASSWORD)

    db_session.refresh(user)
    assert verify_password(PASSWORD, user.password_hash)


def test_reset_with_weak_password_keeps_token_usable(db_session, user, outbox):
    AuthService.request_password_reset(db_session, user.email)
    token = _reset_token(outbox)

    with pytest.raises(WeakPassword):
        AuthService.reset_password(db_session, token=token, new_password="short")

    AuthService.reset_password(db_session, token=token, new_password=NEW_PASSWORD)


def test_change_password_requires_current_password(db_session, user):
    with pytest.raises(ValidationError) as exc_info:
        AuthService.change_password(db_session, user, current_password="WrongPass1!", new_password=NEW_PASSWORD)
    assert exc_info.value.message == "Current password is incorrect"

    AuthService.change_password(db_session, user, current_password=PASSWORD, new_password=NEW_PASSWORD)
    assert verify_password(NEW_PASSWORD, user.password_hash)


def test_validate_password_reports_every_violation():
    errors = AuthService.validate_password("abc")

    assert "Password must be at least 8 characters long" in errors
    assert "Password must contain at least one uppercase letter" in errors
    assert "Password must contain at least one number" in errors
    assert "Password must contain at least one special character (@$!%*?&)" in errors
    assert AuthService.validate_password(PASSWORD) == []


def test_issued_tokens_carry_user_identity(db_session, user):
    result = AuthService.login(db_session, email=user.email, password=PASSWORD)
    payload = decode_token(result.tokens.access_token, expected_kind=TokenKind.ACCESS)

    assert payload.user_id == user.id
    assert payload.email == user.email


def test_update_profile_keeps_verification_when_email_unchanged(db_session, user):
    user.email_verified = True
    db_session.commit()

    UserService.update_profile(db_session, user, name="Jane Q", email=" JANE@example.com ")

    db_session.refresh(user)
    assert user.name == "Jane Q"
    assert user.email == "jane@example.com"
    assert user.email_verified is True


def test_update_profile_email_conflict_leaves_user_unchanged(db_session, user):
    other = UserService.create_user(db_session, email="other@example.com", password=PASSWORD, name="Other")

    with pytest.raises(EmailAlreadyExists) as exc_info:
        UserService.update_profile(db_session, other, name="Renamed", email=user.email)

    assert exc_info.value.message == "Email is already in use"
    db_session.refresh(other)
    assert other.email == "other@example.com"
    assert other.name == "Other"
