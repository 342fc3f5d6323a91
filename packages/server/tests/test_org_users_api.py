"""
Org user endpoint tests.

Covers:
- Adding users by login or email, duplicates, bad roles, unknown orgs
- Listing, lookup and paged search with hidden-user filtering
- Role updates and the last-admin rule
- Removal, active org handover and orphaned account deletion
"""

from __future__ import annotations

import hashlib

import pytest
from httpx import AsyncClient
from sqlmodel import select

from orgusers.models.org_user import OrgUser
from orgusers.models.user import User


def _avatar(email: str) -> str:
    return "/avatar/" + hashlib.md5(email.encode()).hexdigest()


async def _role_of(session_factory, org_id: int, user_id: int):
    async with session_factory() as session:
        result = await session.execute(
            select(OrgUser.role).where(OrgUser.org_id == org_id, OrgUser.user_id == user_id)
        )
        return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Add
# ---------------------------------------------------------------------------

class TestAddOrgUser:
    @pytest.mark.asyncio
    async def test_add_by_login(self, client: AsyncClient, seed, headers_for, session_factory):
        response = await client.post(
            "/api/org/users",
            json={"loginOrEmail": "outsider", "role": "Editor"},
            headers=headers_for(seed.admin),
        )
        assert response.status_code == 200
        assert response.json() == {"message": "User added to organization", "userId": seed.outsider}

        assert await _role_of(session_factory, seed.main_org, seed.outsider) == "Editor"
        async with session_factory() as session:
            outsider = await session.get(User, seed.outsider)
            assert outsider.org_id == seed.main_org

    @pytest.mark.asyncio
    async def test_add_by_email(self, client: AsyncClient, seed, headers_for, session_factory):
        response = await client.post(
            "/api/org/users",
            json={"loginOrEmail": "outsider@example.com", "role": "Viewer"},
            headers=headers_for(seed.admin),
        )
        assert response.status_code == 200
        assert await _role_of(session_factory, seed.main_org, seed.outsider) == "Viewer"

    @pytest.mark.asyncio
    async def test_existing_member_conflicts(self, client: AsyncClient, seed, headers_for, session_factory):
        response = await client.post(
            "/api/org/users",
            json={"loginOrEmail": "editor", "role": "Admin"},
            headers=headers_for(seed.admin),
        )
        assert response.status_code == 409
        assert response.json() == {
            "message": "User is already member of this organization",
            "userId": seed.editor,
        }
        assert await _role_of(session_factory, seed.main_org, seed.editor) == "Editor"

    @pytest.mark.asyncio
    async def test_invalid_role(self, client: AsyncClient, seed, headers_for, session_factory):
        response = await client.post(
            "/api/org/users",
            json={"loginOrEmail": "outsider", "role": "Owner"},
            headers=headers_for(seed.admin),
        )
        assert response.status_code == 400
        assert response.json() == {"message": "Invalid role specified"}
        assert await _role_of(session_factory, seed.main_org, seed.outsider) is None

    @pytest.mark.asyncio
    async def test_unknown_user(self, client: AsyncClient, seed, headers_for):
        response = await client.post(
            "/api/org/users",
            json={"loginOrEmail": "nobody", "role": "Viewer"},
            headers=headers_for(seed.admin),
        )
        assert response.status_code == 404
        assert response.json() == {"message": "User not found"}

    @pytest.mark.asyncio
    async def test_malformed_body(self, client: AsyncClient, seed, headers_for):
        response = await client.post(
            "/api/org/users",
            json={"loginOrEmail": "outsider"},
            headers=headers_for(seed.admin),
        )
        assert response.status_code == 400
        assert response.json() == {"message": "bad request data"}

    @pytest.mark.asyncio
    async def test_requires_org_admin(self, client: AsyncClient, seed, headers_for):
        response = await client.post(
            "/api/org/users",
            json={"loginOrEmail": "outsider", "role": "Viewer"},
            headers=headers_for(seed.editor),
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_server_admin_adds_to_any_org(
        self, client: AsyncClient, seed, headers_for, session_factory
    ):
        response = await client.post(
            f"/api/orgs/{seed.main_org}/users",
            json={"loginOrEmail": "outsider", "role": "Admin"},
            headers=headers_for(seed.root),
        )
        assert response.status_code == 200
        assert await _role_of(session_factory, seed.main_org, seed.outsider) == "Admin"

    @pytest.mark.asyncio
    async def test_server_admin_unknown_org(self, client: AsyncClient, seed, headers_for):
        response = await client.post(
            "/api/orgs/9999/users",
            json={"loginOrEmail": "outsider", "role": "Viewer"},
            headers=headers_for(seed.root),
        )
        assert response.status_code == 404
        assert response.json() == {"message": "Organization not found"}


# ---------------------------------------------------------------------------
# List / lookup / search
# ---------------------------------------------------------------------------

class TestListOrgUsers:
    @pytest.mark.asyncio
    async def test_lists_visible_members_sorted_by_email(self, client: AsyncClient, seed, headers_for):
        response = await client.get("/api/org/users", headers=headers_for(seed.admin))
        assert response.status_code == 200
        users = response.json()
        assert [u["login"] for u in users] == ["admin", "editor", "loner", "viewer"]

        editor = users[1]
        assert editor["orgId"] == seed.main_org
        assert editor["userId"] == seed.editor
        assert editor["email"] == "editor@example.com"
        assert editor["name"] == "Ed Editor"
        assert editor["role"] == "Editor"
        assert editor["avatarUrl"] == _avatar("editor@example.com")
        assert "accessControl" not in editor

    @pytest.mark.asyncio
    async def test_query_filters_members(self, client: AsyncClient, seed, headers_for):
        response = await client.get(
            "/api/org/users", params={"query": "ed"}, headers=headers_for(seed.admin)
        )
        assert [u["login"] for u in response.json()] == ["editor"]

    @pytest.mark.asyncio
    async def test_limit(self, client: AsyncClient, seed, headers_for):
        response = await client.get(
            "/api/org/users", params={"limit": 2}, headers=headers_for(seed.admin)
        )
        assert [u["login"] for u in response.json()] == ["admin", "editor"]

    @pytest.mark.asyncio
    async def test_viewer_cannot_list(self, client: AsyncClient, seed, headers_for):
        response = await client.get("/api/org/users", headers=headers_for(seed.viewer))
        assert response.status_code == 403
        assert response.json() == {"message": "Permission denied"}

    @pytest.mark.asyncio
    async def test_server_admin_sees_hidden_users(self, client: AsyncClient, seed, headers_for):
        response = await client.get(
            f"/api/orgs/{seed.main_org}/users", headers=headers_for(seed.root)
        )
        assert response.status_code == 200
        assert "svc-hidden" in [u["login"] for u in response.json()]


class TestLookupOrgUsers:
    @pytest.mark.asyncio
    async def test_lookup_returns_minimal_identity(self, client: AsyncClient, seed, headers_for):
        response = await client.get("/api/org/users/lookup", headers=headers_for(seed.loner))
        assert response.status_code == 200
        users = response.json()
        assert [u["login"] for u in users] == ["admin", "editor", "loner", "viewer"]
        assert set(users[0]) == {"userId", "login", "avatarUrl"}
        assert users[0]["avatarUrl"] == _avatar("admin@example.com")

    @pytest.mark.asyncio
    async def test_hidden_user_sees_self(self, client: AsyncClient, seed, headers_for):
        response = await client.get("/api/org/users/lookup", headers=headers_for(seed.hidden))
        assert "svc-hidden" in [u["login"] for u in response.json()]


class TestSearchOrgUsers:
    @pytest.mark.asyncio
    async def test_paging(self, client: AsyncClient, seed, headers_for):
        first = await client.get(
            "/api/org/users/search",
            params={"perpage": 2, "page": 1},
            headers=headers_for(seed.admin),
        )
        assert first.status_code == 200
        body = first.json()
        assert body["totalCount"] == 5
        assert body["page"] == 1
        assert body["perPage"] == 2
        assert [u["login"] for u in body["orgUsers"]] == ["admin", "editor"]

        # Page two holds loner and svc-hidden; the hidden user is dropped.
        second = await client.get(
            "/api/org/users/search",
            params={"perpage": 2, "page": 2},
            headers=headers_for(seed.admin),
        )
        assert [u["login"] for u in second.json()["orgUsers"]] == ["loner"]

    @pytest.mark.asyncio
    async def test_defaults(self, client: AsyncClient, seed, headers_for):
        response = await client.get(
            "/api/org/users/search",
            params={"perpage": 0, "page": 0},
            headers=headers_for(seed.admin),
        )
        body = response.json()
        assert body["page"] == 1
        assert body["perPage"] == 1000
        assert len(body["orgUsers"]) == 4

    @pytest.mark.asyncio
    async def test_query(self, client: AsyncClient, seed, headers_for):
        response = await client.get(
            "/api/org/users/search", params={"query": "VIEW"}, headers=headers_for(seed.admin)
        )
        body = response.json()
        assert body["totalCount"] == 1
        assert body["orgUsers"][0]["login"] == "viewer"


# ---------------------------------------------------------------------------
# Update role
# ---------------------------------------------------------------------------

class TestUpdateOrgUser:
    @pytest.mark.asyncio
    async def test_change_role(self, client: AsyncClient, seed, headers_for, session_factory):
        response = await client.patch(
            f"/api/org/users/{seed.editor}",
            json={"role": "Viewer"},
            headers=headers_for(seed.admin),
        )
        assert response.status_code == 200
        assert response.json() == {"message": "Organization user updated"}
        assert await _role_of(session_factory, seed.main_org, seed.editor) == "Viewer"

    @pytest.mark.asyncio
    async def test_invalid_role(self, client: AsyncClient, seed, headers_for, session_factory):
        response = await client.patch(
            f"/api/org/users/{seed.editor}",
            json={"role": "Superuser"},
            headers=headers_for(seed.admin),
        )
        assert response.status_code == 400
        assert response.json() == {"message": "Invalid role specified"}
        assert await _role_of(session_factory, seed.main_org, seed.editor) == "Editor"

    @pytest.mark.asyncio
    async def test_cannot_demote_last_admin(
        self, client: AsyncClient, seed, headers_for, session_factory
    ):
        response = await client.patch(
            f"/api/org/users/{seed.admin}",
            json={"role": "Editor"},
            headers=headers_for(seed.admin),
        )
        assert response.status_code == 400
        assert response.json() == {
            "message": "Cannot change role so that there is no organization admin left"
        }
        assert await _role_of(session_factory, seed.main_org, seed.admin) == "Admin"

    @pytest.mark.asyncio
    async def test_demote_admin_when_another_admin_exists(
        self, client: AsyncClient, seed, headers_for, session_factory
    ):
        promote = await client.patch(
            f"/api/org/users/{seed.editor}", json={"role": "Admin"}, headers=headers_for(seed.admin)
        )
        assert promote.status_code == 200
        demote = await client.patch(
            f"/api/org/users/{seed.admin}", json={"role": "Viewer"}, headers=headers_for(seed.admin)
        )
        assert demote.status_code == 200
        assert await _role_of(session_factory, seed.main_org, seed.admin) == "Viewer"

    @pytest.mark.asyncio
    async def test_non_member(self, client: AsyncClient, seed, headers_for):
        response = await client.patch(
            f"/api/org/users/{seed.outsider}", json={"role": "Viewer"}, headers=headers_for(seed.admin)
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_server_admin_updates_any_org(
        self, client: AsyncClient, seed, headers_for, session_factory
    ):
        response = await client.patch(
            f"/api/orgs/{seed.main_org}/users/{seed.loner}",
            json={"role": "Editor"},
            headers=headers_for(seed.root),
        )
        assert response.status_code == 200
        assert await _role_of(session_factory, seed.main_org, seed.loner) == "Editor"


# ---------------------------------------------------------------------------
# Remove
# ---------------------------------------------------------------------------

class TestRemoveOrgUser:
    @pytest.mark.asyncio
    async def test_orphaned_user_is_deleted(
        self, client: AsyncClient, seed, headers_for, session_factory
    ):
        response = await client.delete(f"/api/org/users/{seed.loner}", headers=headers_for(seed.admin))
        assert response.status_code == 200
        assert response.json() == {"message": "User deleted"}

        async with session_factory() as session:
            assert await session.get(User, seed.loner) is None

    @pytest.mark.asyncio
    async def test_user_with_other_orgs_is_kept(
        self, client: AsyncClient, seed, headers_for, session_factory
    ):
        response = await client.delete(f"/api/org/users/{seed.viewer}", headers=headers_for(seed.admin))
        assert response.status_code == 200
        assert response.json() == {"message": "User removed from organization"}

        assert await _role_of(session_factory, seed.main_org, seed.viewer) is None
        async with session_factory() as session:
            viewer = await session.get(User, seed.viewer)
            assert viewer.org_id == seed.other_org

    @pytest.mark.asyncio
    async def test_server_admin_removal_keeps_account(
        self, client: AsyncClient, seed, headers_for, session_factory
    ):
        response = await client.delete(
            f"/api/orgs/{seed.main_org}/users/{seed.loner}", headers=headers_for(seed.root)
        )
        assert response.status_code == 200
        assert response.json() == {"message": "User removed from organization"}

        async with session_factory() as session:
            loner = await session.get(User, seed.loner)
            assert loner is not None
            assert loner.org_id is None

    @pytest.mark.asyncio
    async def test_cannot_remove_last_admin(
        self, client: AsyncClient, seed, headers_for, session_factory
    ):
        response = await client.delete(f"/api/org/users/{seed.admin}", headers=headers_for(seed.admin))
        assert response.status_code == 400
        assert response.json() == {"message": "Cannot remove last organization admin"}
        assert await _role_of(session_factory, seed.main_org, seed.admin) == "Admin"

    @pytest.mark.asyncio
    async def test_non_member(self, client: AsyncClient, seed, headers_for):
        response = await client.delete(f"/api/org/users/{seed.outsider}", headers=headers_for(seed.admin))
        assert response.status_code == 404
        assert response.json() == {"message": "User not found in organization"}

    @pytest.mark.asyncio
    async def test_unknown_user(self, client: AsyncClient, seed, headers_for):
        response = await client.delete("/api/org/users/9999", headers=headers_for(seed.admin))
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_requires_org_admin(self, client: AsyncClient, seed, headers_for):
        response = await client.delete(f"/api/org/users/{seed.loner}", headers=headers_for(seed.editor))
        assert response.status_code == 403
