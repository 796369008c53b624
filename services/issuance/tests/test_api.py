import uuid

from fastapi.testclient import TestClient

from issuance.main import create_app
from issuance.models.enums import AccessCodeRejection


def _create_template(client, headers) -> dict:
    response = client.post(
        "/api/v1/templates",
        json={"course_name": "Data Structures", "organization_name": "Shahadati Academy"},
        headers=headers,
    )
    assert response.status_code == 201
    return response.json()


def _create_code(client, template_id: str, headers, usage_limit: int = 1) -> dict:
    response = client.post(
        f"/api/v1/templates/{template_id}/access-codes",
        json={"usage_limit": usage_limit},
        headers=headers,
    )
    assert response.status_code == 201
    return response.json()


def test_health(client) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "issuance"}


def test_redeem_and_verify(client, auth_headers) -> None:
    instructor = auth_headers(uuid.uuid4(), "instructor")
    template = _create_template(client, instructor)
    code = _create_code(client, template["template_id"], instructor)
    assert code["status"] == "active"
    assert code["remaining_uses"] == 1

    resolved = client.post(
        "/api/v1/access-codes/resolve",
        json={"link": code["unique_link"], "code": code["code"].lower()},
    )
    assert resolved.status_code == 200
    assert resolved.json()["valid"] is True
    assert resolved.json()["access_code_id"] == code["code_id"]
    assert resolved.json()["course_name"] == "Data Structures"

    body = {
        "template_id": template["template_id"],
        "access_code_id": code["code_id"],
        "student_name": "Layla Haddad",
        "student_email": "layla@example.com",
        "custom_fields": {"Grade": "A"},
    }
    issued = client.post("/api/v1/certificates/redeem", json=body)
    assert issued.status_code == 201
    issued = issued.json()
    assert issued["certificate_number"].startswith("CERT-")
    assert len(issued["verification_hash"]) == 64

    again = client.post("/api/v1/certificates/redeem", json=body)
    assert again.status_code == 409
    assert again.json()["detail"] == AccessCodeRejection.EXHAUSTED.value

    verified = client.get(
        f"/api/v1/certificates/verify/{issued['certificate_number']}",
        params={"hash": issued["verification_hash"]},
    )
    assert verified.status_code == 200
    assert verified.json()["is_valid"] is True
    assert verified.json()["student_name"] == "Layla Haddad"

    forged = client.get(
        f"/api/v1/certificates/verify/{issued['certificate_number']}",
        params={"hash": "0" * 64},
    )
    assert forged.json()["is_valid"] is False

    cert = client.get(f"/api/v1/certificates/{issued['certificate_id']}")
    assert cert.status_code == 200
    assert cert.json()["certificate_number"] == issued["certificate_number"]
    assert cert.json()["verification_url"].endswith(issued["verification_hash"])
    assert "issue_method" not in cert.json()
    assert "supersedes_id" not in cert.json()


def test_redeem_rejections(client, auth_headers) -> None:
    instructor = auth_headers(uuid.uuid4(), "instructor")
    template = _create_template(client, instructor)
    code = _create_code(client, template["template_id"], instructor, usage_limit=3)

    disabled = client.post(f"/api/v1/access-codes/{code['code_id']}/disable", headers=instructor)
    assert disabled.status_code == 200
    assert disabled.json()["status"] == "disabled"

    body = {
        "template_id": template["template_id"],
        "access_code_id": code["code_id"],
        "student_name": "Layla Haddad",
    }
    response = client.post("/api/v1/certificates/redeem", json=body)
    assert response.status_code == 403
    assert response.json()["detail"] == "disabled"

    unknown = client.post(
        "/api/v1/certificates/redeem", json={**body, "access_code_id": str(uuid.uuid4())}
    )
    assert unknown.status_code == 404
    assert unknown.json()["detail"] == "not_found"

    too_short = client.post("/api/v1/certificates/redeem", json={**body, "student_name": "A"})
    assert too_short.status_code == 422

    expire = client.post(f"/api/v1/access-codes/{code['code_id']}/expire", headers=instructor)
    assert expire.status_code == 409


def test_access_code_ownership(client, auth_headers) -> None:
    owner = auth_headers(uuid.uuid4(), "instructor")
    stranger = auth_headers(uuid.uuid4(), "instructor")
    template = _create_template(client, owner)
    code = _create_code(client, template["template_id"], owner)

    assert (
        client.post(
            f"/api/v1/templates/{template['template_id']}/access-codes",
            json={},
            headers=stranger,
        ).status_code
        == 403
    )
    assert (
        client.post(f"/api/v1/access-codes/{code['code_id']}/disable", headers=stranger).status_code
        == 403
    )

    validation = client.get(f"/api/v1/access-codes/{code['code_id']}/validation", headers=owner)
    assert validation.status_code == 200
    assert validation.json()["valid"] is True

    student = auth_headers(uuid.uuid4(), "student")
    assert client.post("/api/v1/templates", json={"course_name": "X"}, headers=student).status_code == 403
    assert client.post("/api/v1/templates", json={"course_name": "X"}).status_code == 401


def test_redeem_is_rate_limited(client) -> None:
    body = {
        "template_id": str(uuid.uuid4()),
        "access_code_id": str(uuid.uuid4()),
        "student_name": "Layla Haddad",
    }
    statuses = [
        client.post("/api/v1/certificates/redeem", json=body).status_code for _ in range(11)
    ]
    assert statuses[:10] == [404] * 10
    assert statuses[10] == 429


def test_redeem_limit_follows_app_settings(settings) -> None:
    tight = settings.model_copy(update={"redeem_rate_limit": "2/hour"})
    body = {
        "template_id": str(uuid.uuid4()),
        "access_code_id": str(uuid.uuid4()),
        "student_name": "Layla Haddad",
    }
    with TestClient(create_app(tight)) as client:
        statuses = [
            client.post("/api/v1/certificates/redeem", json=body).status_code for _ in range(3)
        ]
    assert statuses == [404, 404, 429]


def test_backup_endpoints(client, auth_headers) -> None:
    instructor = auth_headers(uuid.uuid4(), "instructor")
    _create_template(client, instructor)

    assert client.post("/api/v1/backups/full", headers=instructor).status_code == 403
    assert client.get("/api/v1/backups").status_code == 401

    admin = auth_headers(uuid.uuid4(), "admin")
    created = client.post("/api/v1/backups/full", headers=admin)
    assert created.status_code == 201
    op = created.json()
    assert op["status"] == "completed"
    assert op["entity_count"] >= 1

    history = client.get("/api/v1/backups", headers=admin)
    assert [b["operation_id"] for b in history.json()] == [op["operation_id"]]
    assert client.get(f"/api/v1/backups/{op['operation_id']}", headers=admin).status_code == 200
    assert client.get("/api/v1/backups/unknown", headers=admin).status_code == 404

    stats = client.get("/api/v1/backups/stats", headers=admin).json()
    assert stats["completed_backups"] == 1
    assert stats["total_size_bytes"] == op["size_bytes"]

    restored = client.post(f"/api/v1/backups/{op['operation_id']}/restore", json={}, headers=admin)
    assert restored.status_code == 200
    assert restored.json() == {"restored_count": op["entity_count"], "errors": []}
    record = client.get(f"/api/v1/backups/{op['operation_id']}", headers=admin).json()
    assert record["restore_count"] == 1
    assert record["last_restore_errors"] is None

    incremental = client.post(
        "/api/v1/backups/incremental",
        json={"since": op["timestamp"]},
        headers=admin,
    )
    assert incremental.status_code == 201
    assert incremental.json()["type"] == "incremental"

    cleanup = client.post("/api/v1/backups/cleanup", json={}, headers=admin)
    assert cleanup.status_code == 200
    assert cleanup.json() == {"deleted_count": 0, "errors": []}


def test_template_listing(client, auth_headers) -> None:
    owner = auth_headers(uuid.uuid4(), "instructor")
    created = _create_template(client, owner)
    _create_template(client, auth_headers(uuid.uuid4(), "instructor"))

    mine = client.get("/api/v1/templates/me", headers=owner)
    assert [t["template_id"] for t in mine.json()] == [created["template_id"]]

    fetched = client.get(f"/api/v1/templates/{created['template_id']}", headers=owner)
    assert fetched.status_code == 200
    assert fetched.json()["orientation"] == "landscape"
    missing = client.get(f"/api/v1/templates/{uuid.uuid4()}", headers=owner)
    assert missing.status_code == 404
