"""Minimal async Supabase client (PostgREST tables + Storage buckets).

Only the handful of calls the service needs are implemented: select, insert
and update on tables, and upload, download, public URL and bucket creation on
Storage.  Every call goes through a shared :class:`httpx.AsyncClient` so the
event loop is never blocked.

Any non-2xx response raises :class:`~caricature.core.errors.VendorError`;
callers decide whether that is fatal (project storage) or only logged
(prompt reloads, bucket creation).

Usage
-----
::

    client = SupabaseClient(url, key)
    rows = await client.select("styles", filters={"active": True}, order="sort_order")
    await client.upload("uploads", f"{project_id}/original.jpg", data, "image/jpeg")
    await client.aclose()
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from caricature.core.errors import VendorError

logger = logging.getLogger(__name__)


def _eq_filters(filters: dict[str, Any] | None) -> dict[str, str]:
    """Translate ``{"col": value}`` into PostgREST ``col=eq.value`` params."""
    params: dict[str, str] = {}
    for column, value in (filters or {}).items():
        if isinstance(value, bool):
            value = "true" if value else "false"
        params[column] = f"eq.{value}"
    return params


def _is_missing_object(response: httpx.Response) -> bool:
    """Whether a Storage error response means the object does not exist.

    Storage answers a missing object with 404, or with 400 (older releases),
    and an ``error`` of ``"not_found"`` or an "Object not found" message.
    An unknown bucket or a bad key is a real failure even when it comes back
    with the same status.
    """
    if response.status_code not in (400, 404):
        return False
    try:
        body = response.json()
    except ValueError:
        return response.status_code == 404
    if not isinstance(body, dict):
        return response.status_code == 404
    error = str(body.get("error") or "")
    message = str(body.get("message") or "")
    return error == "not_found" or "object not found" in message.lower()


class SupabaseClient:
    """Async REST client for one Supabase project.

    Args:
        url: Project URL, e.g. ``https://xyz.supabase.co``.
        key: Service-role key; sent both as ``apikey`` and bearer token.
        transport: Optional httpx transport, used by tests to stub the
            network.
    """

    def __init__(
        self,
        url: str,
        key: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url.rstrip("/")
        self._http = httpx.AsyncClient(
            base_url=self.url,
            headers={"apikey": key, "Authorization": f"Bearer {key}"},
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    # -- Tables -------------------------------------------------------------

    async def select(
        self,
        table: str,
        *,
        columns: str = "*",
        filters: dict[str, Any] | None = None,
        order: str | None = None,
    ) -> list[dict]:
        """Return rows of *table* matching all equality *filters*."""
        params = {"select": columns, **_eq_filters(filters)}
        if order:
            params["order"] = order
        response = await self._http.get(f"/rest/v1/{table}", params=params)
        self._raise_for_status(response, f"select from {table}")
        return response.json()

    async def insert(self, table: str, row: dict) -> dict:
        """Insert a single row and return it as stored."""
        response = await self._http.post(
            f"/rest/v1/{table}",
            json=row,
            headers={"Prefer": "return=representation"},
        )
        self._raise_for_status(response, f"insert into {table}")
        rows = response.json()
        return rows[0] if rows else row

    async def update(self, table: str, values: dict, *, filters: dict[str, Any]) -> list[dict]:
        """Update rows matching *filters* and return them."""
        response = await self._http.patch(
            f"/rest/v1/{table}",
            params=_eq_filters(filters),
            json=values,
            headers={"Prefer": "return=representation"},
        )
        self._raise_for_status(response, f"update {table}")
        return response.json()

    # -- Storage ------------------------------------------------------------

    async def create_bucket(self, name: str, *, public: bool, file_size_limit: int) -> None:
        """Create a storage bucket; an existing bucket is not an error."""
        response = await self._http.post(
            "/storage/v1/bucket",
            json={
                "id": name,
                "name": name,
                "public": public,
                "file_size_limit": file_size_limit,
            },
        )
        if response.is_success or "already exists" in response.text:
            return
        self._raise_for_status(response, f"create bucket {name}")

    async def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> None:
        """Upload (or overwrite) an object."""
        response = await self._http.post(
            f"/storage/v1/object/{bucket}/{path}",
            content=data,
            headers={"Content-Type": content_type, "x-upsert": "true"},
        )
        self._raise_for_status(response, f"upload {bucket}/{path}")

    async def download(self, bucket: str, path: str) -> bytes | None:
        """Return the object's bytes, or ``None`` if it does not exist."""
        response = await self._http.get(f"/storage/v1/object/{bucket}/{path}")
        if _is_missing_object(response):
            return None
        self._raise_for_status(response, f"download {bucket}/{path}")
        return response.content

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.url}/storage/v1/object/public/{bucket}/{path}"

    # -- Helpers ------------------------------------------------------------

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        if response.is_success:
            return
        logger.error("Supabase %s failed (%d): %s", action, response.status_code, response.text)
        raise VendorError(f"Supabase {action} failed with status {response.status_code}")
