"""
Integration tests for todo assignments.

Tests cover:
- Assigning members; non-members rejected; repeat assignment is a no-op
- Filtering the todo list by assignee
- Who may unassign: the assignee, the assigner, owners and admins
- The cross-organization "assigned to me" view and its ordering
- Former members drop out of assignee lists and their own view
"""

from __future__ import annotations

import uuid

import pytest
from sqlmodel import select

from app.core.database import system_session
from app.models.todo import TodoAssignment
from app.services import memberships as membership_service

from taskhub_shared.schemas.common import AssignableRole


async def _join(user_id: str, tenant_id: str, role: str = "member") -> None:
    async with system_session() as session:
        await membership_service.add_member(
            uuid.UUID(user_id), uuid.UUID(tenant_id), AssignableRole(role), session
        )


async def _todo(http, **fields):
    response = await http.post("/api/v1/todos", json={"title": "untitled", **fields})
    assert response.status_code == 201, response.text
    return response.json()


async def _assign(http, todo_id, *user_ids):
    return await http.post(f"/api/v1/todos/{todo_id}/assignees", json={"user_ids": list(user_ids)})


async def _switch(member, tenant_id):
    response = await member.http.post("/api/v1/organizations/switch", json={"tenant_id": tenant_id})
    assert response.status_code == 200, response.text


@pytest.fixture
async def team(signup):
    """alice owns the organization; bob and carol are plain members working in it."""
    alice = await signup("alice")
    bob = await signup("bob")
    carol = await signup("carol")
    for member in (bob, carol):
        await _join(member.user_id, alice.tenant_id)
        await _switch(member, alice.tenant_id)
    return alice, bob, carol


class TestAssign:
    async def test_assign_member(self, team):
        alice, bob, _ = team
        todo = await _todo(alice.http, title="Ship it")

        response = await _assign(alice.http, todo["id"], bob.user_id)
        assert response.status_code == 200
        body = response.json()
        assert [a["username"] for a in body["assignees"]] == ["bob"]
        assert body["assignees"][0]["assigned_by"] == alice.user_id
        assert body["assigned_to_me"] is False

        seen_by_bob = await bob.http.get(f"/api/v1/todos/{todo['id']}")
        assert seen_by_bob.json()["assigned_to_me"] is True

    async def test_repeat_assignment_keeps_original(self, team):
        alice, bob, carol = team
        todo = await _todo(alice.http)
        await _assign(alice.http, todo["id"], bob.user_id)

        response = await _assign(carol.http, todo["id"], bob.user_id, carol.user_id, carol.user_id)
        assert response.status_code == 200
        assignees = {a["username"]: a["assigned_by"] for a in response.json()["assignees"]}
        assert assignees == {"bob": alice.user_id, "carol": carol.user_id}

    async def test_non_member_rejected(self, team, signup):
        alice, bob, _ = team
        outsider = await signup("dave")
        todo = await _todo(alice.http)

        response = await _assign(alice.http, todo["id"], bob.user_id, outsider.user_id)
        assert response.status_code == 400
        assert response.json()["error"]["message"] == (
            "One or more users are not members of this organization"
        )
        async with system_session() as session:
            assert (await session.execute(select(TodoAssignment))).first() is None

    async def test_todo_in_other_organization(self, team, signup):
        alice, _, _ = team
        dave = await signup("dave")
        foreign = await _todo(dave.http)
        response = await _assign(alice.http, foreign["id"], alice.user_id)
        assert response.status_code == 404

    async def test_empty_user_list(self, team):
        alice, _, _ = team
        todo = await _todo(alice.http)
        assert (await _assign(alice.http, todo["id"])).status_code == 422


class TestAssigneeFilter:
    async def test_filter_by_assignee(self, team):
        alice, bob, _ = team
        mine = await _todo(alice.http, title="mine")
        bobs = await _todo(alice.http, title="bobs")
        await _todo(alice.http, title="nobody")
        await _assign(alice.http, mine["id"], alice.user_id)
        await _assign(alice.http, bobs["id"], bob.user_id)

        async def titles(http, assigned_to):
            response = await http.get("/api/v1/todos", params={"assigned_to": assigned_to})
            assert response.status_code == 200
            return sorted(t["title"] for t in response.json()["data"])

        assert await titles(alice.http, "me") == ["mine"]
        assert await titles(bob.http, "me") == ["bobs"]
        assert await titles(alice.http, bob.user_id) == ["bobs"]
        assert await titles(alice.http, "unassigned") == ["nobody"]

    async def test_invalid_filter(self, team):
        alice, _, _ = team
        response = await alice.http.get("/api/v1/todos", params={"assigned_to": "someone"})
        assert response.status_code == 400


class TestUnassign:
    async def test_assignee_unassigns_self(self, team):
        alice, bob, _ = team
        todo = await _todo(alice.http)
        await _assign(alice.http, todo["id"], bob.user_id)

        response = await bob.http.delete(f"/api/v1/todos/{todo['id']}/assignees/{bob.user_id}")
        assert response.status_code == 200
        assert response.json()["assignees"] == []

    async def test_assigner_unassigns(self, team):
        alice, bob, carol = team
        todo = await _todo(alice.http)
        await _assign(carol.http, todo["id"], bob.user_id)
        response = await carol.http.delete(f"/api/v1/todos/{todo['id']}/assignees/{bob.user_id}")
        assert response.status_code == 200

    async def test_other_member_cannot_unassign(self, team):
        alice, bob, carol = team
        todo = await _todo(alice.http)
        await _assign(alice.http, todo["id"], bob.user_id)

        response = await carol.http.delete(f"/api/v1/todos/{todo['id']}/assignees/{bob.user_id}")
        assert response.status_code == 403
        assert response.json()["error"]["message"] == "You don't have permission to unassign this user"

    async def test_owner_unassigns_anyone(self, team):
        alice, bob, carol = team
        todo = await _todo(alice.http)
        await _assign(carol.http, todo["id"], bob.user_id)
        response = await alice.http.delete(f"/api/v1/todos/{todo['id']}/assignees/{bob.user_id}")
        assert response.status_code == 200

    async def test_missing_assignment(self, team):
        alice, bob, _ = team
        todo = await _todo(alice.http)
        response = await alice.http.delete(f"/api/v1/todos/{todo['id']}/assignees/{bob.user_id}")
        assert response.status_code == 404
        assert response.json()["error"]["message"] == "Assignment not found"


class TestAssignedToMe:
    async def test_spans_organizations_in_priority_order(self, team):
        alice, bob, _ = team
        low = await _todo(alice.http, title="low", priority="low")
        high_undated = await _todo(alice.http, title="high undated", priority="high")
        high_dated = await _todo(
            alice.http, title="high dated", priority="high", due_date="2030-01-01T00:00:00Z"
        )
        await _todo(alice.http, title="not bob's", priority="high")
        for todo in (low, high_undated, high_dated):
            await _assign(alice.http, todo["id"], bob.user_id)

        # bob's own organization
        await _switch(bob, bob.tenant_id)
        own = await _todo(bob.http, title="own", priority="medium")
        await _assign(bob.http, own["id"], bob.user_id)

        response = await bob.http.get("/api/v1/todos/assigned-to-me")
        assert response.status_code == 200
        body = response.json()
        assert [t["title"] for t in body["data"]] == ["high dated", "high undated", "own", "low"]
        assert body["pagination"]["total"] == 4
        organizations = {t["title"]: t["organization"]["id"] for t in body["data"]}
        assert organizations["own"] == bob.tenant_id
        assert organizations["low"] == alice.tenant_id
        assert all(t["assigned_to_me"] for t in body["data"])

    async def test_filters(self, team):
        alice, bob, _ = team
        done = await _todo(alice.http, title="done report", status="completed")
        open_ = await _todo(alice.http, title="open task")
        for todo in (done, open_):
            await _assign(alice.http, todo["id"], bob.user_id)

        by_status = await bob.http.get("/api/v1/todos/assigned-to-me", params={"status": "completed"})
        assert [t["title"] for t in by_status.json()["data"]] == ["done report"]
        by_search = await bob.http.get("/api/v1/todos/assigned-to-me", params={"search": "open"})
        assert [t["title"] for t in by_search.json()["data"]] == ["open task"]

    async def test_former_member_drops_out(self, team):
        alice, bob, _ = team
        todo = await _todo(alice.http, title="shared")
        await _assign(alice.http, todo["id"], bob.user_id, alice.user_id)

        removed = await alice.http.delete(f"/api/v1/members/{bob.user_id}")
        assert removed.status_code == 200

        mine = await bob.http.get("/api/v1/todos/assigned-to-me")
        assert mine.json()["data"] == []
        fetched = await alice.http.get(f"/api/v1/todos/{todo['id']}")
        assert [a["username"] for a in fetched.json()["assignees"]] == ["alice"]

    async def test_requires_user(self, client):
        response = await client.get("/api/v1/todos/assigned-to-me")
        assert response.status_code == 401
