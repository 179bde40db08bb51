import pytest

from services.auth import AuthService
from services.errors import AuthError, ConflictError, StorageError, ValidationError

SECRET = "unit-test-secret-0123456789-abcdefghijkl"


@pytest.fixture
def auth(json_store):
    return AuthService(json_store, SECRET, admin_emails=["Boss@Example.com"])


def test_register_and_login(auth):
    user = auth.register("steve", "Steve@Example.com", "diamonds")
    assert user.email == "steve@example.com"
    assert user.is_admin is False
    assert auth.login("steve@example.com", "diamonds").id == user.id


def test_admin_role_comes_from_admin_emails(auth):
    assert auth.register("boss", "boss@example.com", "diamonds").is_admin is True
    # an "admin@" address is not special
    assert auth.register("admin", "admin@example.com", "diamonds").is_admin is False


def test_register_validation(auth):
    with pytest.raises(ValidationError) as exc:
        auth.register("", "not-an-email", "abc")
    assert set(exc.value.errors) == {"username", "email", "password"}


def test_register_duplicate_email(auth):
    auth.register("steve", "steve@example.com", "diamonds")
    with pytest.raises(ConflictError):
        auth.register("steve2", "STEVE@example.com", "emeralds")


def test_wrong_password(auth):
    auth.register("steve", "steve@example.com", "diamonds")
    with pytest.raises(AuthError):
        auth.login("steve@example.com", "gravel")
    with pytest.raises(AuthError):
        auth.login("nobody@example.com", "diamonds")


def test_token_round_trip(auth):
    user = auth.register("boss", "boss@example.com", "diamonds")
    token = auth.issue_token(user)
    assert auth.user_from_token(token).id == user.id


def test_expired_token(json_store):
    auth = AuthService(json_store, SECRET, token_ttl_minutes=-1)
    user = auth.register("steve", "steve@example.com", "diamonds")
    with pytest.raises(AuthError, match="expired"):
        auth.user_from_token(auth.issue_token(user))


def test_token_signed_with_other_secret(auth, json_store):
    user = auth.register("steve", "steve@example.com", "diamonds")
    forged = AuthService(json_store, "another-secret-0123456789-abcdefghijkl").issue_token(user)
    with pytest.raises(AuthError):
        auth.user_from_token(forged)


def test_password_change_requires_current_password(auth):
    user = auth.register("steve", "steve@example.com", "diamonds")
    with pytest.raises(AuthError):
        auth.update_profile(user.id, current_password="wrong", new_password="emeralds")
    auth.update_profile(user.id, username="Steve", current_password="diamonds", new_password="emeralds")
    assert auth.login("steve@example.com", "emeralds").username == "Steve"


def test_profile_email_must_stay_unique(auth):
    auth.register("steve", "steve@example.com", "diamonds")
    alex = auth.register("alex", "alex@example.com", "diamonds")
    with pytest.raises(ConflictError):
        auth.update_profile(alex.id, email="steve@example.com")


def test_set_admin(auth):
    auth.register("steve", "steve@example.com", "diamonds")
    assert auth.set_admin("steve@example.com").is_admin is True
    assert auth.set_admin("steve@example.com", False).is_admin is False


def test_promote_admin_command(app, user_client):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["promote-admin", "steve@example.com"])
    assert result.exit_code == 0
    assert "admin=True" in result.output
    assert user_client.get("/admin").status_code == 200

    result = runner.invoke(args=["promote-admin", "steve@example.com", "--revoke"])
    assert "admin=False" in result.output
    assert user_client.get("/admin").status_code == 302


def test_promote_admin_unknown_email(app):
    result = app.test_cli_runner().invoke(args=["promote-admin", "ghost@example.com"])
    assert result.exit_code != 0
    assert "No user" in result.output


def test_update_me_endpoint(user_client):
    r = user_client.patch("/api/auth/me", json={"username": "Steve the Builder"})
    assert r.status_code == 200
    assert r.get_json()["user"]["username"] == "Steve the Builder"
    r = user_client.patch("/api/auth/me", json={"new_password": "emeralds", "current_password": "nope"})
    assert r.status_code == 401


def test_storage_failure_becomes_storage_error(auth, json_store, monkeypatch):
    def boom(row):
        raise OSError("read-only file system")
    monkeypatch.setattr(json_store, "insert_user", boom)
    with pytest.raises(StorageError):
        auth.register("steve", "steve@example.com", "diamonds")
