"""Tests for script versioning, compare, statistics and rollback."""

import pytest

from scriptgov.core.exceptions import FailureReason, ResourceConflictError, ResourceNotFoundError
from scriptgov.models.approval import ApprovalStatus
from scriptgov.models.script import Script
from scriptgov.models.script_version import ChangeType, ScriptVersion
from scriptgov.services.approval_service import approval_service
from scriptgov.services.script_service import script_service
from scriptgov.services.version_service import VersionService, sql_diff, version_service
from scriptgov.tests.conftest import USERS, email_of


V3_SQL = "SELECT id, name, tier\nFROM customers\nWHERE active = 1"


@pytest.fixture
def s1_at_v4(db, create_script):
    """s1: v1 create, v2 approve, v3 update, v4 approve; nothing pending."""
    first = create_script(description="first cut")
    approval_service.approve_script(db, first.data["approvalRequestId"], "u-mgr", email_of("u-mgr"))
    updated = script_service.update_script(
        db, "s1", {"sql_content": V3_SQL, "description": "adds tier"},
        "u-dev", email_of("u-dev"), USERS["u-dev"],
    )
    approval_service.approve_script(db, updated.data["approvalRequestId"], "u-mgr", email_of("u-mgr"))
    assert version_service.latest_version(db, "s1") == 4
    return "s1"


def snapshot_rows(db, script_id):
    db.expire_all()
    rows = (
        db.query(ScriptVersion)
        .filter_by(script_id=script_id)
        .order_by(ScriptVersion.version)
        .all()
    )
    return [
        {c.key: getattr(r, c.key) for c in ScriptVersion.__table__.columns}
        for r in rows
    ]


def test_versions_are_gap_free(db, s1_at_v4):
    versions = version_service.get_script_versions(db, "s1")
    assert [v.version for v in versions] == [4, 3, 2, 1]
    assert [v.change_type for v in versions] == [
        ChangeType.approve, ChangeType.update, ChangeType.approve, ChangeType.create,
    ]
    assert version_service.get_current_version(db, "s1").version == 4


def test_version_limit_is_clamped(db, s1_at_v4):
    assert len(version_service.get_script_versions(db, "s1", limit=2)) == 2
    assert len(version_service.get_script_versions(db, "s1", limit=0)) == 1
    assert len(version_service.get_script_versions(db, "s1", limit=1000)) == 4


def test_get_missing_version(db, s1_at_v4):
    with pytest.raises(ResourceNotFoundError):
        version_service.get_script_version(db, "s1", 9)
    with pytest.raises(ResourceNotFoundError):
        version_service.get_current_version(db, "ghost")


def test_rollback_appends_new_version(db, s1_at_v4):
    before = snapshot_rows(db, "s1")
    v2 = version_service.get_script_version(db, "s1", 2)

    result = version_service.rollback_to_version(
        db, "s1", 2, "u-dev", email_of("u-dev"), "tier column broke reports",
    )
    assert result.success, result.message
    assert result.data["newVersion"] == 5
    assert result.data["targetVersion"] == 2

    after = snapshot_rows(db, "s1")
    assert after[:4] == before

    v5 = version_service.get_script_version(db, "s1", 5)
    assert v5.change_type == ChangeType.rollback
    assert v5.rolled_back_from == 2
    assert v5.version_id == result.data["newVersionId"]
    assert "version 2" in v5.change_description
    assert "tier column broke reports" in v5.change_description
    assert v5.sql_content == v2.sql_content
    assert v5.description == v2.description

    db.expire_all()
    script = db.query(Script).filter_by(script_id="s1").one()
    assert script.current_version == 5
    assert script.sql_content == v2.sql_content
    assert script.description == "first cut"


def test_rollback_refused_while_pending(db, s1_at_v4):
    script_service.update_script(
        db, "s1", {"name": "pending rename"}, "u-dev", email_of("u-dev"), USERS["u-dev"],
    )
    result = version_service.rollback_to_version(db, "s1", 2, "u-dev", email_of("u-dev"))
    assert result.reason == FailureReason.conflict
    assert version_service.latest_version(db, "s1") == 5


def test_rollback_not_found(db, s1_at_v4):
    missing_version = version_service.rollback_to_version(db, "s1", 42, "u-dev", email_of("u-dev"))
    assert missing_version.reason == FailureReason.not_found
    missing_script = version_service.rollback_to_version(db, "ghost", 1, "u-dev", email_of("u-dev"))
    assert missing_script.reason == FailureReason.not_found


def test_stale_writer_gets_conflict(db, s1_at_v4, monkeypatch):
    script = db.query(Script).filter_by(script_id="s1").one()
    monkeypatch.setattr(VersionService, "latest_version", staticmethod(lambda db, script_id: 2))

    with pytest.raises(ResourceConflictError):
        version_service.append_version(
            db, script, ChangeType.update, "u-dev", email_of("u-dev"),
        )

    monkeypatch.undo()
    assert version_service.latest_version(db, "s1") == 4
    assert db.query(ScriptVersion).filter_by(script_id="s1", version=3).count() == 1


def test_slow_writer_does_not_overwrite_newer_mirror(db, s1_at_v4):
    script = db.query(Script).filter_by(script_id="s1").one()
    db.query(Script).filter_by(script_id="s1").update({"current_version": 9})
    db.commit()

    version_service.append_version(
        db, script, ChangeType.update, "u-dev", email_of("u-dev"),
        fields=dict(script.snapshot(), name="late write"),
    )
    db.expire_all()
    script = db.query(Script).filter_by(script_id="s1").one()
    assert script.current_version == 9
    assert script.name != "late write"


def test_compare_versions(db, s1_at_v4):
    report = version_service.compare_versions(db, "s1", 1, 3)
    assert report["fromVersion"] == 1
    assert report["toVersion"] == 3
    assert report["changedFields"] == ["description", "sqlContent"]

    by_field = {d["field"]: d for d in report["differences"]}
    assert by_field["name"]["changeType"] == "unchanged"
    assert by_field["description"]["oldValue"] == "first cut"
    assert by_field["description"]["newValue"] == "adds tier"
    assert report["sqlDiff"]["additions"] == ["SELECT id, name, tier"]
    assert report["sqlDiff"]["deletions"] == ["SELECT id, name"]


def test_compare_in_reverse_order(db, s1_at_v4):
    report = version_service.compare_versions(db, "s1", 3, 1)
    assert report["sqlDiff"]["additions"] == ["SELECT id, name"]


def test_compare_missing_version(db, s1_at_v4):
    with pytest.raises(ResourceNotFoundError):
        version_service.compare_versions(db, "s1", 1, 12)


def test_sql_diff_added_and_removed():
    diff = sql_diff("SELECT 1\nFROM a", "SELECT 1\nFROM b\nLIMIT 5")
    assert diff["additions"] == ["FROM b", "LIMIT 5"]
    assert diff["deletions"] == ["FROM a"]
    assert diff["unified"].startswith("--- from")


def test_version_statistics(db, s1_at_v4):
    version_service.rollback_to_version(db, "s1", 2, "u-admin", email_of("u-admin"))
    stats = version_service.get_version_statistics(db, "s1")

    assert stats["totalVersions"] == 5
    assert stats["currentVersion"] == 5
    assert stats["authors"] == [email_of("u-admin"), email_of("u-dev"), email_of("u-mgr")]
    assert stats["operationCounts"] == {"create": 1, "update": 1, "approve": 2, "rollback": 1}
    assert stats["totalRollbacks"] == 1
    assert stats["rollbackTargets"] == {"2": 1}
    assert stats["firstCreatedAt"] <= stats["latestChange"]


def test_statistics_unknown_script(db, users):
    with pytest.raises(ResourceNotFoundError):
        version_service.get_version_statistics(db, "ghost")


def test_approval_snapshot_carries_request(db, s1_at_v4):
    v4 = version_service.get_script_version(db, "s1", 4)
    assert v4.approval_status == ApprovalStatus.approved
    assert v4.sql_content == V3_SQL
