from datetime import timedelta

import pytest

from storefront import auth, models
from storefront.db import utcnow
from storefront.errors import (
    DuplicateEmail,
    DuplicateUsername,
    Forbidden,
    InvalidCredentials,
    Unauthenticated,
)


def test_password_is_hashed_with_random_salt(db_session):
    a = auth.create_user(db_session, "alice", "alice@example.com", "secret123")
    b = auth.create_user(db_session, "bob", "bob@example.com", "secret123")
    assert a.password_hash.startswith("$pbkdf2-sha512$")
    assert "secret123" not in a.password_hash
    # Same password, different salts
    assert a.password_hash != b.password_hash
    assert a.is_admin is False


def test_duplicate_username_creates_no_row(db_session, make_user):
    make_user("alice")
    with pytest.raises(DuplicateUsername):
        auth.create_user(db_session, "alice", "other@example.com", "another1")
    assert db_session.query(models.User).count() == 1


def test_duplicate_email(db_session, make_user):
    make_user("alice", email="shared@example.com")
    with pytest.raises(DuplicateEmail):
        auth.create_user(db_session, "alice2", "shared@example.com", "another1")


def test_verify_credentials(db_session, make_user):
    user = make_user("carol", password="hunter22")
    assert auth.verify_credentials(db_session, "carol", "hunter22").id == user.id
    with pytest.raises(InvalidCredentials):
        auth.verify_credentials(db_session, "carol", "wrong-pass")
    with pytest.raises(InvalidCredentials):
        auth.verify_credentials(db_session, "nobody", "hunter22")


def test_outdated_hash_is_upgraded_on_login(db_session, make_user, monkeypatch):
    user = make_user("dave", password="pw123456")
    old = auth.pwd_context.handler("pbkdf2_sha512").using(rounds=1000).hash("pw123456")
    user.password_hash = old
    db_session.commit()
    stronger = auth.pwd_context.copy(pbkdf2_sha512__rounds=2000, pbkdf2_sha512__min_rounds=2000)
    monkeypatch.setattr(auth, "pwd_context", stronger)

    auth.verify_credentials(db_session, "dave", "pw123456")
    db_session.refresh(user)
    assert user.password_hash != old
    assert "$2000$" in user.password_hash


def test_session_roundtrip_and_logout(db_session, make_user):
    make_user("erin", password="secret123")
    user, token = auth.login(db_session, "erin", "secret123")
    principal = auth.resolve_principal(db_session, token)
    assert principal == auth.Principal(id=user.id, username="erin", is_admin=False)
    # The token is opaque: nothing about the user is stored or encoded in it
    row = db_session.query(models.AuthSession).one()
    assert row.token_hash != token
    assert "erin" not in token

    auth.logout(db_session, token)
    assert auth.resolve_principal(db_session, token) is None
    assert db_session.query(models.AuthSession).count() == 0


def test_expired_session_resolves_to_none(db_session, make_user):
    user = make_user("frank")
    token = auth.create_session(db_session, user)
    row = db_session.query(models.AuthSession).one()
    row.expires_at = utcnow() - timedelta(seconds=1)
    db_session.commit()

    assert auth.resolve_principal(db_session, token) is None
    assert db_session.query(models.AuthSession).count() == 0


def test_unknown_token(db_session):
    assert auth.resolve_principal(db_session, "not-a-token") is None
    assert auth.resolve_principal(db_session, None) is None


def test_admin_gate():
    with pytest.raises(Unauthenticated):
        auth.require_admin(None)
    with pytest.raises(Forbidden):
        auth.require_admin(auth.Principal(id=1, username="u", is_admin=False))
    admin = auth.Principal(id=2, username="root", is_admin=True)
    assert auth.require_admin(admin) is admin
