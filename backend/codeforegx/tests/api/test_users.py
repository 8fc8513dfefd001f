from sqlmodel import select

from codeforegx.core.config import settings
from codeforegx.models import AuditAction, AuditLog

API = settings.API_V1_STR


def test_get_access_token(client):
    response = client.post(
        f"{API}/login/access-token",
        data={"username": settings.FIRST_SUPERUSER, "password": settings.FIRST_SUPERUSER_PASSWORD},
    )
    tokens = response.json()
    assert response.status_code == 200
    assert tokens["access_token"]

    me = client.post(f"{API}/login/test-token", headers={"Authorization": f"Bearer {tokens['access_token']}"})
    assert me.json()["email"] == settings.FIRST_SUPERUSER
    assert me.json()["role"] == "admin"


def test_invalid_token_is_rejected(client):
    response = client.get(f"{API}/users/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 403


def test_signup_then_read_me(client):
    response = client.post(
        f"{API}/users/signup",
        json={"email": "quant@codeforegx.dev", "password": "longpassword", "full_name": "Quant"},
    )
    assert response.status_code == 200
    assert response.json()["role"] == "user"

    login = client.post(f"{API}/login/access-token", data={"username": "quant@codeforegx.dev", "password": "longpassword"})
    headers = {"Authorization": f"Bearer {login.json()['access_token']}"}
    assert client.get(f"{API}/users/me", headers=headers).json()["full_name"] == "Quant"


def test_logout_is_recorded_once(client, db, user_headers, normal_user):
    response = client.post(f"{API}/logout", headers=user_headers)
    assert response.status_code == 200
    assert response.json() == {"message": "Logged out"}

    logs = db.exec(select(AuditLog)).all()
    assert [log.action for log in logs] == [AuditAction.logout]
    assert logs[0].user_id == normal_user.id


def test_admin_manages_roles(client, superuser_headers, normal_user, user_headers):
    assert client.get(f"{API}/users/", headers=user_headers).status_code == 403

    listing = client.get(f"{API}/users/", headers=superuser_headers).json()
    assert listing["count"] == 2

    response = client.patch(
        f"{API}/users/{normal_user.id}", headers=superuser_headers, json={"role": "developer"}
    )
    assert response.status_code == 200
    assert response.json()["role"] == "developer"


def test_admin_cannot_delete_self(client, superuser_headers, superuser):
    response = client.delete(f"{API}/users/{superuser.id}", headers=superuser_headers)
    assert response.status_code == 403


def test_dashboard_summary(client, user_headers, developer_headers):
    client.post(f"{API}/prompts/", headers=developer_headers, json={"name": "p", "content": "a"})
    client.post(f"{API}/prompts/", headers=developer_headers, json={"name": "p", "content": "b"})
    client.post(f"{API}/chat/sessions", headers=user_headers, json={})

    summary = client.get(f"{API}/dashboard/summary", headers=user_headers).json()

    assert summary["prompts"] == 1
    assert summary["chat_sessions"] == 1
    assert summary["users"] == 3
    assert summary["templates"] == 0
    assert summary["audit_events_24h"] == 3


def test_health_check(client):
    response = client.get(f"{API}/utils/health-check/")
    assert response.json() == {"status": "ok", "database": "ok", "cache": "ok"}
