"""HTTP client for the contacts API.

Learn: Thin async wrapper over httpx. The dashboard uses the same
list/stats calls for the initial load, manual refresh, the polling
fallback, and the re-fetch after a realtime reconnect, so there is one
way to get authoritative state.

Errors propagate as httpx exceptions (HTTPStatusError for 4xx/5xx,
TransportError when the server is unreachable); the reconciler decides
what to do with them.
"""

from typing import Any, Optional

import httpx

DEFAULT_API_URL = "http://localhost:8000"


class ContactApiClient:
    def __init__(
        self,
        base_url: str = DEFAULT_API_URL,
        token: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        admin: bool = False,
    ):
        # Admin tokens can read every contact through /admin/contacts.
        self.contacts_path = "/admin/contacts" if admin else "/contacts"
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "ContactApiClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        resp = await self._client.request(method, f"/api/v1{path}", **kwargs)
        resp.raise_for_status()
        return resp

    async def get_me(self) -> dict[str, Any]:
        return (await self._request("GET", "/auth/me")).json()

    # ─── Dashboard ──────────────────────────────────────

    async def list_contacts(
        self,
        page: int = 1,
        limit: int = 50,
        status: Optional[str] = None,
        search: Optional[str] = None,
    ) -> dict[str, Any]:
        """Returns {"data": [...], "pagination": {...}}."""
        params: dict[str, Any] = {"page": page, "limit": limit}
        if status:
            params["status"] = status
        if search:
            params["search"] = search
        return (await self._request("GET", self.contacts_path, params=params)).json()

    async def get_stats(self) -> dict[str, int]:
        return (await self._request("GET", f"{self.contacts_path}/stats")).json()

    async def update_status(self, contact_id: str, status: str) -> dict[str, Any]:
        resp = await self._request(
            "PATCH", f"{self.contacts_path}/{contact_id}/status", json={"status": status}
        )
        return resp.json()

    async def delete_contact(self, contact_id: str) -> None:
        await self._request("DELETE", f"{self.contacts_path}/{contact_id}")

    async def export_csv(self) -> str:
        return (await self._request("GET", f"{self.contacts_path}/export")).text

    # ─── Contact form ───────────────────────────────────

    async def submit_contact(
        self,
        name: str,
        email: str,
        message: str,
        subject: str = "general",
    ) -> dict[str, Any]:
        resp = await self._request(
            "POST",
            "/contacts",
            json={"name": name, "email": email, "subject": subject, "message": message},
        )
        return resp.json()
