"""
Role option fetching for the users table role picker.

``AccessControlClient`` talks to the access-control role endpoints of the
org users API. Any object with the same two coroutines satisfies
``RoleOptionsSource``.
"""

from __future__ import annotations

from typing import Optional, Protocol

import httpx
from pydantic import TypeAdapter

from orgusers_shared.schemas.access_control import BuiltinRoles, RoleDTO

_roles_adapter = TypeAdapter(list[RoleDTO])
_builtin_roles_adapter = TypeAdapter(BuiltinRoles)


class RoleOptionsSource(Protocol):
    async def fetch_role_options(self, org_id: Optional[int]) -> list[RoleDTO]: ...

    async def fetch_builtin_roles(self, org_id: Optional[int]) -> BuiltinRoles: ...


class AccessControlClient:
    """
    HTTP client for ``/api/access-control/*``.

    Either pass a ready ``httpx.AsyncClient`` or call ``open()`` /
    ``close()`` (or use ``async with``) to manage one internally.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        token: Optional[str] = None,
        verify_tls: bool = True,
        request_timeout: int = 30,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._verify_tls = verify_tls
        self._request_timeout = request_timeout
        self._client = client
        self._owns_client = client is None

    async def open(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=httpx.Timeout(self._request_timeout),
                verify=self._verify_tls,
            )

    async def close(self) -> None:
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "AccessControlClient":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _headers(self) -> dict[str, str]:
        if self._token:
            return {"Authorization": f"Bearer {self._token}"}
        return {}

    async def _get(self, path: str, org_id: Optional[int]) -> bytes:
        if self._client is None:
            raise RuntimeError("AccessControlClient is not open")
        params = {"targetOrgId": org_id} if org_id is not None else None
        resp = await self._client.get(path, params=params, headers=self._headers())
        resp.raise_for_status()
        return resp.content

    async def fetch_role_options(self, org_id: Optional[int]) -> list[RoleDTO]:
        raw = await self._get("/api/access-control/roles", org_id)
        return _roles_adapter.validate_json(raw)

    async def fetch_builtin_roles(self, org_id: Optional[int]) -> BuiltinRoles:
        raw = await self._get("/api/access-control/builtin-roles", org_id)
        return _builtin_roles_adapter.validate_json(raw)
