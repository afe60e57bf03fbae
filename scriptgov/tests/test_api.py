"""HTTP-level tests through the FastAPI app."""

from scriptgov.core.middleware import RequestIdFilter
from scriptgov.tests.conftest import SELECT_SQL, auth_headers


def submit(client, script_id="orders-report", user_id="u-dev", sql=SELECT_SQL):
    return client.post(
        "/api/scripts",
        json={
            "scriptId": script_id,
            "name": "Orders report",
            "cnName": "订单报表",
            "hashtags": ["finance", "daily"],
            "sqlContent": sql,
        },
        headers=auth_headers(user_id),
    )


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json()["database"] == "ok"
    assert resp.json()["redis"] == "disabled"
    assert "X-Request-Id" in resp.headers


def test_request_id_is_echoed(client):
    resp = client.get("/api/health", headers={"X-Request-Id": "trace-42"})
    assert resp.headers["X-Request-Id"] == "trace-42"
    assert float(resp.headers["X-Response-Time-Ms"]) >= 0


def test_service_logs_carry_request_id(client, users, caplog):
    caplog.handler.addFilter(RequestIdFilter())
    with caplog.at_level("INFO", logger="script_governance"):
        submit(client, user_id="u-dev")
        client.post(
            "/api/scripts",
            json={"scriptId": "orders-report", "name": "Again", "sqlContent": SELECT_SQL},
            headers={**auth_headers("u-dev"), "X-Request-Id": "dup-create"},
        )
    refused = [r for r in caplog.records if "refused" in r.getMessage()]
    assert refused and refused[-1].request_id == "dup-create"


def test_requires_token(client):
    assert client.get("/api/scripts").status_code == 401
    resp = client.get("/api/scripts", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


def test_me_provisions_viewer(client):
    resp = client.get("/api/users/me", headers=auth_headers("first-timer"))
    assert resp.status_code == 200
    body = resp.json()
    assert body["userId"] == "first-timer"
    assert body["role"] == "viewer"
    assert body["permissions"] == ["history:read", "script:read"]


def test_viewer_cannot_create(client, users):
    resp = submit(client, user_id="u-view")
    assert resp.status_code == 403
    assert "viewer" in resp.json()["detail"]


def test_create_and_read_script(client, users):
    resp = submit(client)
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["data"]["version"] == 1
    assert body["data"]["approvalStatus"] == "pending"

    script = client.get("/api/scripts/orders-report", headers=auth_headers("u-view")).json()
    assert script["scriptId"] == "orders-report"
    assert script["cnName"] == "订单报表"
    assert script["hashtags"] == ["finance", "daily"]
    assert script["approvalStatus"] == "pending"
    assert script["currentVersion"] == 1

    listing = client.get("/api/scripts", headers=auth_headers("u-view")).json()
    assert listing["pagination"]["total"] == 1
    assert listing["data"][0]["scriptId"] == "orders-report"


def test_invalid_slug_rejected(client, users):
    resp = submit(client, script_id="Orders Report")
    assert resp.status_code == 400
    assert resp.json()["reason"] == "invalid_state"


def test_duplicate_script_conflicts(client, users):
    submit(client)
    resp = submit(client)
    assert resp.status_code == 409


def test_missing_script_is_404(client, users):
    resp = client.get("/api/scripts/nope", headers=auth_headers("u-view"))
    assert resp.status_code == 404
    assert resp.json() == {
        "success": False, "reason": "not_found", "message": "Script 'nope' not found",
    }


def test_approval_flow(client, users):
    request_id = submit(client).json()["data"]["approvalRequestId"]

    pending = client.get("/api/approvals", headers=auth_headers("u-mgr")).json()
    assert [r["requestId"] for r in pending["data"]] == [request_id]
    assert pending["data"][0]["requiredApprovers"] == ["manager", "admin"]

    resp = client.get("/api/approvals", headers=auth_headers("u-dev"))
    assert resp.status_code == 403

    resp = client.post(
        f"/api/approvals/{request_id}/approve",
        json={"comment": "ok"},
        headers=auth_headers("u-mgr"),
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["version"] == 2
    assert resp.json()["data"]["reviewedVersion"] == 1

    resp = client.post(f"/api/approvals/{request_id}/approve", headers=auth_headers("u-mgr2"))
    assert resp.status_code == 409
    assert resp.json()["reason"] == "conflict"

    request = client.get(f"/api/approvals/{request_id}", headers=auth_headers("u-view")).json()
    assert request["status"] == "approved"
    assert request["currentApprovers"][0]["userId"] == "u-mgr"

    completed = client.get("/api/approvals/completed", headers=auth_headers("u-view")).json()
    assert completed["pagination"]["total"] == 1

    history = client.get(
        "/api/approvals/history", params={"scriptId": "orders-report"},
        headers=auth_headers("u-view"),
    ).json()
    assert [h["action"] for h in history["data"]] == ["approve", "submit"]


def test_reject_without_comment_is_400(client, users):
    request_id = submit(client).json()["data"]["approvalRequestId"]
    resp = client.post(
        f"/api/approvals/{request_id}/reject", json={}, headers=auth_headers("u-mgr"),
    )
    assert resp.status_code == 400


def test_withdraw_by_requester(client, users):
    request_id = submit(client).json()["data"]["approvalRequestId"]
    resp = client.post(f"/api/approvals/{request_id}/withdraw", headers=auth_headers("u-dev"))
    assert resp.status_code == 200
    script = client.get("/api/scripts/orders-report", headers=auth_headers("u-dev")).json()
    assert script["approvalStatus"] == "draft"


def test_update_versions_and_rollback(client, users):
    request_id = submit(client).json()["data"]["approvalRequestId"]
    client.post(f"/api/approvals/{request_id}/approve", headers=auth_headers("u-mgr"))

    resp = client.put(
        "/api/scripts/orders-report",
        json={"sqlContent": "SELECT id FROM orders", "changeDescription": "narrow columns"},
        headers=auth_headers("u-dev"),
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["version"] == 3

    resp = client.post(
        "/api/scripts/orders-report/versions/rollback",
        json={"targetVersion": 1},
        headers=auth_headers("u-dev"),
    )
    assert resp.status_code == 409

    new_request = client.get(
        "/api/scripts/orders-report", headers=auth_headers("u-dev"),
    ).json()["approvalRequestId"]
    client.post(f"/api/approvals/{new_request}/approve", headers=auth_headers("u-admin"))

    resp = client.post(
        "/api/scripts/orders-report/versions/rollback",
        json={"targetVersion": 1, "reason": "revert"},
        headers=auth_headers("u-dev"),
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["newVersion"] == 5

    audit = client.get(
        "/api/admin/audit", params={"action": "script.rolled_back"},
        headers=auth_headers("u-admin"),
    ).json()["logs"]
    assert len(audit) == 1
    assert audit[0]["resourceId"] == "orders-report"
    assert audit[0]["actorId"] == "u-dev"
    assert audit[0]["ipAddress"] == "testclient"
    assert audit[0]["userAgent"] == "testclient"

    versions = client.get(
        "/api/scripts/orders-report/versions", headers=auth_headers("u-view"),
    ).json()["data"]
    assert [v["version"] for v in versions] == [5, 4, 3, 2, 1]
    assert versions[0]["changeType"] == "rollback"
    assert versions[0]["rolledBackFrom"] == 1

    v3 = client.get("/api/scripts/orders-report/versions/3", headers=auth_headers("u-view")).json()
    assert v3["changeDescription"] == "narrow columns"

    report = client.get(
        "/api/scripts/orders-report/versions/compare",
        params={"from": 1, "to": 3},
        headers=auth_headers("u-view"),
    ).json()
    assert report["changedFields"] == ["sqlContent"]

    stats = client.get(
        "/api/scripts/orders-report/versions/stats", headers=auth_headers("u-view"),
    ).json()
    assert stats["totalVersions"] == 5
    assert stats["totalRollbacks"] == 1


def test_role_management_endpoints(client, users):
    resp = client.post(
        "/api/users/roles",
        json={"targetUserId": "new-hire", "targetEmail": "new@example.com", "role": "developer"},
        headers=auth_headers("u-mgr"),
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["role"] == "developer"

    resp = client.post(
        "/api/users/roles",
        json={"targetUserId": "new-hire", "targetEmail": "new@example.com", "role": "admin"},
        headers=auth_headers("u-mgr"),
    )
    assert resp.status_code == 403

    roles = client.get("/api/users/roles", headers=auth_headers("u-mgr")).json()["data"]
    assert roles[0]["userId"] == "new-hire"

    assert client.get("/api/users/roles", headers=auth_headers("u-dev")).status_code == 403

    resp = client.delete(
        "/api/users/roles", params={"targetUserId": "new-hire"}, headers=auth_headers("u-admin"),
    )
    assert resp.status_code == 200

    audit = client.get("/api/admin/audit", headers=auth_headers("u-admin")).json()
    assert [log["action"] for log in audit["logs"]] == ["role.removed", "role.assigned"]
    assert client.get("/api/admin/audit", headers=auth_headers("u-mgr")).status_code == 403


def test_admin_sync_and_cache(client, users):
    submit(client)
    resp = client.post("/api/admin/scripts/orders-report/sync", headers=auth_headers("u-admin"))
    assert resp.json() == {"scriptId": "orders-report", "approvalStatus": "pending"}
    assert client.delete("/api/admin/cache", headers=auth_headers("u-admin")).status_code == 200
