"""
groupguard.services.directory_client — Remote directory adapter
================================================================

Thin httpx wrapper around the community platform's REST directory: user
profiles, group memberships, pending join requests and member listings.

Every transport failure, timeout, non-2xx status or unparseable body is
raised as :class:`UpstreamFetchError`, so callers only ever handle one
exception type and can fall back to partial data.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from groupguard.errors import UpstreamFetchError

logger = logging.getLogger(__name__)


class Directory(Protocol):
    """What the gatekeeper and scanner need from a directory."""

    async def fetch_candidate_profile(self, user_id: str) -> dict[str, Any]: ...

    async def fetch_group_membership(self, user_id: str) -> frozenset[str]: ...

    async def list_join_requests(self, group_id: str) -> list[dict[str, Any]]: ...

    async def respond_to_join_request(self, group_id: str, user_id: str, action: str) -> None: ...

    async def list_members(self, group_id: str, offset: int, n: int) -> list[dict[str, Any]]: ...

    async def unban_member(self, group_id: str, user_id: str) -> None: ...


class DirectoryClient:
    """Async directory client.  Call :meth:`aclose` on shutdown."""

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"User-Agent": "GroupGuard"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport or httpx.AsyncHTTPTransport(retries=1),
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, resource: str, **kwargs: Any) -> Any:
        try:
            resp = await self._client.request(method, path, **kwargs)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise UpstreamFetchError(
                resource, f"HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise UpstreamFetchError(resource, f"{type(exc).__name__}: {exc}") from exc

        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise UpstreamFetchError(resource, "response body is not JSON") from exc

    # -- profiles ------------------------------------------------------------
    async def fetch_candidate_profile(self, user_id: str) -> dict[str, Any]:
        data = await self._request("GET", f"/users/{user_id}", f"profile {user_id}")
        if not isinstance(data, dict):
            raise UpstreamFetchError(f"profile {user_id}", "expected a JSON object")
        return data

    async def fetch_group_membership(self, user_id: str) -> frozenset[str]:
        data = await self._request("GET", f"/users/{user_id}/groups", f"groups {user_id}")
        if not isinstance(data, list):
            raise UpstreamFetchError(f"groups {user_id}", "expected a JSON list")
        ids: set[str] = set()
        for item in data:
            gid = (item.get("groupId") or item.get("id")) if isinstance(item, dict) else item
            if gid:
                ids.add(str(gid))
        return frozenset(ids)

    # -- groups --------------------------------------------------------------
    async def list_join_requests(self, group_id: str) -> list[dict[str, Any]]:
        data = await self._request(
            "GET", f"/groups/{group_id}/requests", f"join requests {group_id}"
        )
        return list(data or [])

    async def respond_to_join_request(self, group_id: str, user_id: str, action: str) -> None:
        await self._request(
            "PUT",
            f"/groups/{group_id}/requests/{user_id}",
            f"join request {group_id}/{user_id}",
            json={"action": action},
        )
        logger.info("Responded %s to join request %s in %s", action, user_id, group_id)

    async def list_members(self, group_id: str, offset: int = 0, n: int = 100) -> list[dict[str, Any]]:
        data = await self._request(
            "GET",
            f"/groups/{group_id}/members",
            f"members {group_id}",
            params={"offset": offset, "n": n},
        )
        return list(data or [])

    async def unban_member(self, group_id: str, user_id: str) -> None:
        await self._request(
            "DELETE", f"/groups/{group_id}/bans/{user_id}", f"ban {group_id}/{user_id}"
        )
        logger.info("Unbanned %s from %s", user_id, group_id)
