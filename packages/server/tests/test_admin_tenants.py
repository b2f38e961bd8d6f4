"""
Tests for tenant administration (admin key) and tenant-key endpoints.

Covers:
- Tenant create/list/get/update/delete
- Initial API key issued once at creation
- API key provisioning (tenant-level and user-bound), expiry, revocation
- Deactivated tenants stop accepting keys
- Per-tenant stats, computed under isolation
"""

from __future__ import annotations

import uuid
from datetime import timedelta

from app.models.base import utcnow

from conftest import bearer, seed_tenant


async def _create(client, admin_headers, name="Initech", slug=None):
    payload = {"name": name}
    if slug:
        payload["slug"] = slug
    response = await client.post("/api/v1/admin/tenants", json=payload, headers=admin_headers)
    assert response.status_code == 201, response.text
    return response.json()


class TestTenantAdmin:
    async def test_create_returns_working_key(self, client, admin_headers):
        created = await _create(client, admin_headers, "Initech")
        assert created["tenant"]["slug"] == "initech"
        assert created["api_key"].startswith("tk_")

        me = await client.get("/api/v1/tenant", headers=bearer(created["api_key"]))
        assert me.status_code == 200
        assert me.json()["id"] == created["tenant"]["id"]

        detail = await client.get(
            f"/api/v1/admin/tenants/{created['tenant']['id']}", headers=admin_headers
        )
        keys = detail.json()["api_keys"]
        assert [k["name"] for k in keys] == ["Initial API Key"]
        assert "key_hash" not in keys[0] and "api_key" not in keys[0]
        assert keys[0]["last_used_at"] is not None

    async def test_explicit_slug_conflict(self, client, admin_headers):
        await _create(client, admin_headers, "Initech", slug="initech")
        response = await client.post(
            "/api/v1/admin/tenants", json={"name": "Other", "slug": "initech"}, headers=admin_headers
        )
        assert response.status_code == 409

    async def test_generated_slug_is_unique(self, client, admin_headers):
        first = await _create(client, admin_headers, "Initech")
        second = await _create(client, admin_headers, "Initech")
        assert first["tenant"]["slug"] == "initech"
        assert second["tenant"]["slug"] == "initech-1"

    async def test_list(self, client, admin_headers):
        await _create(client, admin_headers, "One")
        await _create(client, admin_headers, "Two")
        response = await client.get("/api/v1/admin/tenants", headers=admin_headers)
        assert {t["name"] for t in response.json()["data"]} == {"One", "Two"}

    async def test_update_requires_a_field(self, client, admin_headers):
        created = await _create(client, admin_headers)
        response = await client.patch(
            f"/api/v1/admin/tenants/{created['tenant']['id']}", json={}, headers=admin_headers
        )
        assert response.status_code == 400
        assert response.json()["error"]["message"] == "No fields to update"

    async def test_deactivation_disables_keys(self, client, admin_headers):
        created = await _create(client, admin_headers)
        tenant_id = created["tenant"]["id"]
        response = await client.patch(
            f"/api/v1/admin/tenants/{tenant_id}",
            json={"is_active": False, "name": "Initech (closed)"},
            headers=admin_headers,
        )
        assert response.status_code == 200
        assert response.json()["is_active"] is False
        assert response.json()["name"] == "Initech (closed)"

        denied = await client.get("/api/v1/tenant", headers=bearer(created["api_key"]))
        assert denied.status_code == 401

    async def test_delete(self, client, admin_headers):
        created = await _create(client, admin_headers)
        tenant_id = created["tenant"]["id"]
        assert (await client.delete(f"/api/v1/admin/tenants/{tenant_id}", headers=admin_headers)).status_code == 200
        assert (await client.get(f"/api/v1/admin/tenants/{tenant_id}", headers=admin_headers)).status_code == 404
        assert (await client.delete(f"/api/v1/admin/tenants/{tenant_id}", headers=admin_headers)).status_code == 404
        assert (await client.get("/api/v1/tenant", headers=bearer(created["api_key"]))).status_code == 401


class TestApiKeyAdmin:
    async def test_user_bound_key(self, client, admin_headers):
        seeded = await seed_tenant("Acme")
        response = await client.post(
            f"/api/v1/admin/tenants/{seeded.tenant_id}/api-keys",
            json={"name": "ci", "user_id": str(seeded.owner_id)},
            headers=admin_headers,
        )
        assert response.status_code == 201
        body = response.json()
        assert body["record"]["user_id"] == str(seeded.owner_id)

        orgs = await client.get("/api/v1/organizations", headers=bearer(body["api_key"]))
        assert orgs.status_code == 200

    async def test_user_must_be_member(self, client, admin_headers):
        acme = await seed_tenant("Acme")
        globex = await seed_tenant("Globex")
        response = await client.post(
            f"/api/v1/admin/tenants/{acme.tenant_id}/api-keys",
            json={"user_id": str(globex.owner_id)},
            headers=admin_headers,
        )
        assert response.status_code == 400

    async def test_expired_key(self, client, admin_headers):
        seeded = await seed_tenant("Acme")
        response = await client.post(
            f"/api/v1/admin/tenants/{seeded.tenant_id}/api-keys",
            json={"expires_at": (utcnow() - timedelta(minutes=5)).isoformat()},
            headers=admin_headers,
        )
        assert response.status_code == 201
        denied = await client.get("/api/v1/tenant", headers=bearer(response.json()["api_key"]))
        assert denied.status_code == 401

    async def test_revoke(self, client, admin_headers):
        created = await _create(client, admin_headers)
        tenant_id = created["tenant"]["id"]
        detail = await client.get(f"/api/v1/admin/tenants/{tenant_id}", headers=admin_headers)
        key_id = detail.json()["api_keys"][0]["id"]

        revoked = await client.post(
            f"/api/v1/admin/tenants/{tenant_id}/api-keys/{key_id}/revoke", headers=admin_headers
        )
        assert revoked.status_code == 200
        assert (await client.get("/api/v1/tenant", headers=bearer(created["api_key"]))).status_code == 401

    async def test_revoke_key_of_other_tenant(self, client, admin_headers):
        one = await _create(client, admin_headers, "One")
        two = await _create(client, admin_headers, "Two")
        detail = await client.get(f"/api/v1/admin/tenants/{two['tenant']['id']}", headers=admin_headers)
        key_id = detail.json()["api_keys"][0]["id"]

        response = await client.post(
            f"/api/v1/admin/tenants/{one['tenant']['id']}/api-keys/{key_id}/revoke",
            headers=admin_headers,
        )
        assert response.status_code == 404
        assert (await client.get("/api/v1/tenant", headers=bearer(two["api_key"]))).status_code == 200


class TestStats:
    async def test_stats_are_per_tenant(self, client, admin_headers, signup):
        alice = await signup("alice")
        bob = await signup("bob")
        for title in ("a", "b"):
            await alice.http.post("/api/v1/todos", json={"title": title})
        await alice.http.post("/api/v1/todos", json={"title": "c", "status": "completed"})
        await alice.http.post("/api/v1/tags", json={"name": "t"})
        await bob.http.post("/api/v1/todos", json={"title": "bob's"})

        response = await client.get(f"/api/v1/admin/tenants/{alice.tenant_id}/stats", headers=admin_headers)
        assert response.status_code == 200
        assert response.json() == {
            "todos_total": 3,
            "todos_pending": 2,
            "todos_completed": 1,
            "tags": 1,
            "active_api_keys": 0,
        }

    async def test_tenant_key_stats(self, client, admin_headers):
        created = await _create(client, admin_headers)
        response = await client.get("/api/v1/tenant/stats", headers=bearer(created["api_key"]))
        assert response.status_code == 200
        assert response.json()["active_api_keys"] == 1
        assert response.json()["todos_total"] == 0

    async def test_stats_unknown_tenant(self, client, admin_headers):
        response = await client.get(f"/api/v1/admin/tenants/{uuid.uuid4()}/stats", headers=admin_headers)
        assert response.status_code == 404
