from datetime import datetime, timedelta, timezone

from sqlmodel import select

from codeforegx.core.config import settings
from codeforegx.models import AuditAction, AuditLog

API = settings.API_V1_STR
AUDIT = f"{API}/audit"


def _logs(db):
    db.expire_all()
    return db.exec(select(AuditLog).order_by(AuditLog.timestamp)).all()


def test_middleware_records_mutations(client, db, developer_headers, developer):
    response = client.post(
        f"{API}/prompts/",
        headers={**developer_headers, "User-Agent": "pytest-agent", "X-Forwarded-For": "203.0.113.9"},
        json={"name": "support", "content": "Help {{user_name}}"},
    )
    assert response.status_code == 201

    logs = _logs(db)
    assert len(logs) == 1
    entry = logs[0]
    assert entry.action == AuditAction.create
    assert entry.user_id == developer.id
    assert entry.entity_type == "prompts"
    assert entry.ip_address == "203.0.113.9"
    assert entry.user_agent == "pytest-agent"
    assert entry.changes["request"]["method"] == "POST"
    assert entry.changes["request"]["body"]["name"] == "support"
    assert entry.changes["response"]["status"] == 201
    assert entry.error is None


def test_middleware_records_failures_and_skips_reads(client, db, user_headers):
    client.get(f"{API}/prompts/", headers=user_headers)
    client.delete(f"{API}/prompts/none/1", headers=user_headers)

    logs = _logs(db)
    assert len(logs) == 1
    assert logs[0].action == AuditAction.delete
    assert logs[0].entity_id == "none"
    assert logs[0].error == "HTTP 403"


def test_login_attempts_are_recorded_once(client, db):
    response = client.post(
        f"{API}/login/access-token",
        data={"username": settings.FIRST_SUPERUSER, "password": settings.FIRST_SUPERUSER_PASSWORD},
    )
    assert response.status_code == 200

    bad = client.post(f"{API}/login/access-token", data={"username": settings.FIRST_SUPERUSER, "password": "nope"})
    assert bad.status_code == 400

    logs = _logs(db)
    assert [log.action for log in logs] == [AuditAction.login, AuditAction.login]
    assert logs[0].error is None
    assert logs[1].error == "Incorrect email or password"
    assert logs[1].user_id is None


def test_audit_endpoints_are_admin_only(client, user_headers):
    assert client.get(f"{AUDIT}/logs", headers=user_headers).status_code == 403
    assert client.get(f"{AUDIT}/statistics", headers=user_headers).status_code == 403


def test_list_statistics_and_lookup(client, db, superuser_headers):
    now = datetime.now(timezone.utc)
    for minutes, action in ((1, AuditAction.create), (2, AuditAction.update), (3, AuditAction.update)):
        db.add(AuditLog(action=action, entity_type="templates", timestamp=now - timedelta(minutes=minutes)))
    db.commit()

    listing = client.get(f"{AUDIT}/logs", headers=superuser_headers, params={"action": "update", "limit": 1}).json()
    assert listing["total"] == 2
    assert listing["total_pages"] == 2
    assert listing["page"] == 1
    assert len(listing["logs"]) == 1

    stats = client.get(f"{AUDIT}/statistics", headers=superuser_headers).json()
    assert stats["total_logs"] == 3
    assert {a["action"]: a["count"] for a in stats["actions"]} == {"create": 1, "update": 2}

    log_id = listing["logs"][0]["id"]
    assert client.get(f"{AUDIT}/logs/{log_id}", headers=superuser_headers).json()["id"] == log_id
    assert client.get(
        f"{AUDIT}/logs/00000000-0000-0000-0000-000000000000", headers=superuser_headers
    ).status_code == 404


def test_export_writes_csv_and_records_itself(client, db, superuser_headers):
    db.add(AuditLog(action=AuditAction.delete, entity_type="prompts"))
    db.commit()

    response = client.get(f"{AUDIT}/export", headers=superuser_headers)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert response.text.splitlines()[0].startswith("Timestamp,Action,User ID")
    assert AuditAction.export in [log.action for log in _logs(db)]


def test_cleanup_uses_retention_days(client, db, superuser_headers):
    now = datetime.now(timezone.utc)
    db.add(AuditLog(action=AuditAction.create, timestamp=now - timedelta(days=40)))
    db.add(AuditLog(action=AuditAction.create, timestamp=now - timedelta(days=5)))
    db.commit()

    result = client.post(f"{AUDIT}/cleanup", headers=superuser_headers).json()
    assert result["deleted"] == 1

    result = client.post(f"{AUDIT}/cleanup", headers=superuser_headers, params={"days": 1}).json()
    assert result["deleted"] == 1
    assert _logs(db) == []
