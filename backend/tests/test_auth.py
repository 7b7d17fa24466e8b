import pytest

import entityforge.dependencies.auth as auth_mod
from entityforge.auth.strategy import issue_token
from entityforge.config import get_settings
from entityforge.crud import crud
from entityforge.dependencies.auth import has_capability
from entityforge.models.enums import Capability
from entityforge.models.enums import UserRole


@pytest.fixture
def jwt_mode(monkeypatch):
    """Run the request through the JWT strategy instead of the dev bypass."""

    monkeypatch.setattr(auth_mod, "AUTH_DISABLED", False)
    yield


@pytest.fixture
def plain_user(db_session):
    return crud.create_user(db_session, email="user@example.com", display_name="Plain User")


@pytest.fixture
def admin_user(db_session):
    return crud.create_user(db_session, email="admin@example.com", role=UserRole.ADMIN.value)


def _bearer(user):
    return {"Authorization": f"Bearer {issue_token(user.id)}"}


def test_admin_holds_every_capability(admin_user):
    assert all(has_capability(admin_user, capability) for capability in Capability)


def test_plain_user_holds_configured_capabilities(plain_user):
    assert has_capability(plain_user, Capability.VIEW_ENTITIES)
    assert has_capability(plain_user, "view_entity_records")
    assert not has_capability(plain_user, Capability.CREATE_ENTITY)


def test_capability_set_comes_from_settings(plain_user):
    settings = get_settings()
    original = settings.user_capabilities
    settings.override(user_capabilities="view_entities,create_entity")
    try:
        assert has_capability(plain_user, Capability.CREATE_ENTITY)
        assert not has_capability(plain_user, Capability.VIEW_ENTITY_RECORDS)
    finally:
        settings.override(user_capabilities=original)


def test_inactive_user_has_nothing(db_session, admin_user):
    admin_user.is_active = False
    db_session.commit()

    assert not has_capability(admin_user, Capability.VIEW_ENTITIES)


def test_missing_token_is_unauthorized(client, jwt_mode):
    assert client.get("/api/entities/").status_code == 401


def test_garbage_token_is_unauthorized(client, jwt_mode):
    response = client.get("/api/entities/", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401


def test_token_for_unknown_user_is_unauthorized(client, jwt_mode):
    response = client.get("/api/entities/", headers={"Authorization": f"Bearer {issue_token(4242)}"})

    assert response.status_code == 401


def test_plain_user_can_read_but_not_write(client, jwt_mode, plain_user):
    assert client.get("/api/entities/", headers=_bearer(plain_user)).status_code == 200

    response = client.post(
        "/api/entities/",
        headers=_bearer(plain_user),
        json={"code": "X", "name": "X"},
    )
    assert response.status_code == 403


def test_admin_can_write_and_is_stamped(client, jwt_mode, admin_user):
    response = client.post(
        "/api/entities/",
        headers=_bearer(admin_user),
        json={"code": "X", "name": "X"},
    )

    assert response.status_code == 201
    assert response.json()["data"]["createdBy"] == str(admin_user.id)


def test_health_is_public(client, jwt_mode):
    assert client.get("/api/system/health").status_code == 200
