"""Integration tests for audit API endpoints."""


def test_list_entries(client, audit_entry):
    response = client.get("/api/audit")

    assert response.status_code == 200
    entries = response.json()
    assert len(entries) == 1
    assert entries[0]["action"] == "user_created"
    assert entries[0]["source"] == "sync"
    assert entries[0]["changes"] == {"mail": "alice@example.com"}


def test_filters(client, audit_entry):
    assert client.get("/api/audit?action=user_deleted").json() == []
    assert len(client.get("/api/audit?actor=system&entity_type=user").json()) == 1


def test_approval_is_audited(client, pending_change):
    client.post(f"/api/changes/{pending_change.id}/approve", json={"approved_by": "alice"})

    entries = client.get("/api/audit?entity_type=change").json()

    assert [e["action"] for e in entries] == ["change_applied", "change_approved"]
    assert all(e["entity_id"] == pending_change.id for e in entries)


def test_stats(client, audit_entry):
    stats = client.get("/api/audit/stats").json()

    assert stats["total"] == 1
    assert stats["by_action"] == [{"action": "user_created", "count": 1}]
    assert stats["by_entity"] == [{"entity_type": "user", "count": 1}]
    assert len(stats["recent"]) == 1
