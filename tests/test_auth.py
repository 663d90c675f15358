import pytest

from storefront.auth import (LOGGED_OUT, AuthContext, AuthService, LoggedIn, LoggedOut, create_token,
                             decode_token)
from storefront.errors import AuthError, ValidationError
from storefront.schemas import USERS

from conftest import run

SECRET = "test-secret"


@pytest.fixture
def auth(gateway):
    return AuthService(gateway, SECRET)


def test_sign_up_stores_hashed_password(auth, gateway):
    user = run(auth.sign_up("Buyer@Example.com", "hunter22"))
    assert user == LoggedIn(user.user_id, "buyer@example.com", False)
    (row,) = gateway.rows(USERS)
    assert row["password_hash"] != "hunter22"
    assert row["password_hash"].startswith("$2")


def test_sign_up_rejects_duplicate(auth):
    run(auth.sign_up("buyer@example.com", "hunter22"))
    with pytest.raises(AuthError):
        run(auth.sign_up("buyer@example.com", "other-pass"))


def test_sign_up_validates_credentials(auth):
    with pytest.raises(ValidationError) as exc:
        run(auth.sign_up("nope", "123"))
    assert set(exc.value.errors) == {"email", "password"}


def test_sign_in_returns_token_that_decodes_to_session(auth):
    run(auth.sign_up("buyer@example.com", "hunter22"))
    token, session = run(auth.sign_in("buyer@example.com", "hunter22"))
    assert auth.get_current_user(token) == session
    assert session.email == "buyer@example.com"


def test_sign_in_wrong_password(auth):
    run(auth.sign_up("buyer@example.com", "hunter22"))
    with pytest.raises(AuthError):
        run(auth.sign_in("buyer@example.com", "wrong-pass"))
    with pytest.raises(AuthError):
        run(auth.sign_in("nobody@example.com", "hunter22"))


def test_current_user_without_token_is_logged_out(auth):
    assert auth.get_current_user(None) is LOGGED_OUT
    assert isinstance(auth.get_current_user(""), LoggedOut)


def test_expired_and_forged_tokens_are_rejected():
    session = LoggedIn("u-1", "a@example.com")
    with pytest.raises(AuthError, match="expired"):
        decode_token(create_token(session, SECRET, expires_min=-1), SECRET)
    with pytest.raises(AuthError, match="Invalid"):
        decode_token(create_token(session, "another-secret", 10), SECRET)


def test_auth_change_listeners(auth):
    seen = []
    unsubscribe = auth.on_auth_change(seen.append)
    run(auth.sign_up("buyer@example.com", "hunter22"))
    _, session = run(auth.sign_in("buyer@example.com", "hunter22"))
    auth.sign_out()
    unsubscribe()
    auth.sign_out()
    assert seen == [session, LOGGED_OUT]


def test_context_derives_admin_flag_from_session(auth):
    run(auth.sign_up("boss@example.com", "hunter22", is_admin=True))
    ctx = AuthContext(auth)
    assert not ctx.is_logged_in and not ctx.is_admin_logged_in
    run(ctx.login("boss@example.com", "hunter22"))
    assert ctx.is_admin_logged_in
    assert ctx.token
    ctx.logout()
    assert ctx.session is LOGGED_OUT
    assert ctx.token is None
    assert not ctx.is_admin_logged_in


def test_context_adopt_bad_token_logs_out(auth):
    run(auth.sign_up("buyer@example.com", "hunter22"))
    ctx = AuthContext(auth)
    run(ctx.login("buyer@example.com", "hunter22"))
    ctx.adopt("garbage")
    assert ctx.session is LOGGED_OUT
