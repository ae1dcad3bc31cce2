# SPDX-License-Identifier: MIT
"""Airtable-backed durable record store client."""

import asyncio
from typing import Any
from urllib.parse import quote

import aiohttp

from ..constants import DEFAULT_RECORD_STORE_TIMEOUT, DEFAULT_RECORD_STORE_URL
from ..enums import DataSourceName
from ..exceptions import (
    AuthenticationError,
    RateLimitError,
    RecordNotFoundError,
    TransportConnectionError,
    TransportError,
    TransportTimeoutError,
)
from ..logging_config import get_detail_logger


detail_logger = get_detail_logger()

SOURCE_NAME = DataSourceName.RECORD_STORE.value


class AirtableRecordStore:
    """Record store client speaking the Airtable REST API.

    Entities travel as ``{"id": ..., **fields}``. The ``id`` is the record id
    assigned by Airtable and is never sent as a field.
    """

    def __init__(
        self,
        api_key: str,
        base_id: str,
        base_url: str = DEFAULT_RECORD_STORE_URL,
        timeout: int = DEFAULT_RECORD_STORE_TIMEOUT,
    ) -> None:
        self.api_key = api_key
        self.base_id = base_id
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _table_url(self, table: str, record_id: str | None = None) -> str:
        url = f"{self.base_url}/{self.base_id}/{quote(table, safe='')}"
        if record_id is not None:
            url = f"{url}/{quote(record_id, safe='')}"
        return url

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _to_fields(entity: dict[str, Any]) -> dict[str, Any]:
        return {key: value for key, value in entity.items() if key != "id"}

    @staticmethod
    def _to_entity(record: dict[str, Any]) -> dict[str, Any]:
        entity = dict(record.get("fields") or {})
        entity["id"] = record.get("id")
        return entity

    async def _raise_for_status(
        self, response: aiohttp.ClientResponse, description: str
    ) -> None:
        """Translate a non-success response into a transport exception.

        Raises:
            RecordNotFoundError: HTTP 404
            AuthenticationError: HTTP 401/403
            RateLimitError: HTTP 429
            TransportError: Any other non-2xx status
        """
        if response.status < 400:
            return

        if response.status == 404:
            raise RecordNotFoundError(
                f"{description}: record not found", status=404, source_name=SOURCE_NAME
            )
        if response.status in (401, 403):
            raise AuthenticationError(
                f"{description}: credentials rejected (HTTP {response.status})",
                status=response.status,
                source_name=SOURCE_NAME,
            )
        if response.status == 429:
            retry_after = response.headers.get("Retry-After", "")
            raise RateLimitError(
                retry_after=int(retry_after) if retry_after.isdigit() else None,
                source_name=SOURCE_NAME,
            )

        error_text = await response.text()
        raise TransportError(
            f"{description}: HTTP {response.status}. Response: {error_text[:200]}",
            status=response.status,
            source_name=SOURCE_NAME,
        )

    async def _request(
        self,
        method: str,
        url: str,
        description: str,
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        missing_ok: bool = False,
    ) -> dict[str, Any] | None:
        detail_logger.debug(f"Record store {method} {url}")
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(
                    method, url, headers=self._headers(), json=body, params=params
                ) as response:
                    if missing_ok and response.status == 404:
                        return None
                    await self._raise_for_status(response, description)
                    result: dict[str, Any] = await response.json()
                    return result
        except asyncio.TimeoutError as e:
            raise TransportTimeoutError(
                f"{description}: timed out after {self.timeout}s",
                source_name=SOURCE_NAME,
            ) from e
        except aiohttp.ClientConnectionError as e:
            raise TransportConnectionError(
                f"{description}: connection failed: {e}", source_name=SOURCE_NAME
            ) from e
        except aiohttp.ClientError as e:
            raise TransportError(
                f"{description}: {e}", source_name=SOURCE_NAME
            ) from e

    async def create(self, table: str, fields: dict[str, Any]) -> dict[str, Any]:
        """Create a record; the returned entity carries the new record id."""
        result = await self._request(
            "POST",
            self._table_url(table),
            f"Create in '{table}'",
            body={"fields": self._to_fields(fields)},
        )
        return self._to_entity(result or {})

    async def update(
        self, table: str, record_id: str, fields: dict[str, Any]
    ) -> dict[str, Any]:
        """Patch fields of an existing record (other fields are kept)."""
        result = await self._request(
            "PATCH",
            self._table_url(table, record_id),
            f"Update of {record_id} in '{table}'",
            body={"fields": self._to_fields(fields)},
        )
        return self._to_entity(result or {})

    async def get(self, table: str, record_id: str) -> dict[str, Any] | None:
        result = await self._request(
            "GET",
            self._table_url(table, record_id),
            f"Fetch of {record_id} from '{table}'",
            missing_ok=True,
        )
        return self._to_entity(result) if result is not None else None

    async def delete(self, table: str, record_id: str) -> None:
        await self._request(
            "DELETE",
            self._table_url(table, record_id),
            f"Delete of {record_id} from '{table}'",
        )

    async def check_connection(self, table: str) -> bool:
        """Read a single record from ``table`` to verify credentials and reachability.

        Returns:
            True when the store answered successfully

        Raises:
            TransportError: When the store is unreachable or rejects the request
        """
        await self._request(
            "GET",
            self._table_url(table),
            f"Connection check on '{table}'",
            params={"maxRecords": 1},
        )
        return True
