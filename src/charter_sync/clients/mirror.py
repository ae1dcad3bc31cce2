# SPDX-License-Identifier: MIT
"""HTTP client for the real-time collaborative storage mirror."""

import asyncio
from typing import Any
from urllib.parse import quote

import aiohttp

from ..constants import DEFAULT_MIRROR_TIMEOUT, DEFAULT_MIRROR_URL
from ..enums import DataSourceName
from ..exceptions import MirrorError
from ..logging_config import get_detail_logger


detail_logger = get_detail_logger()

SOURCE_NAME = DataSourceName.MIRROR.value


class HttpMirrorClient:
    """Publishes entity state into a room's shared storage over REST."""

    def __init__(
        self,
        secret_key: str,
        base_url: str = DEFAULT_MIRROR_URL,
        timeout: int = DEFAULT_MIRROR_TIMEOUT,
    ) -> None:
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _storage_url(self, room_key: str) -> str:
        return f"{self.base_url}/rooms/{quote(room_key, safe='')}/storage"

    async def mirror(self, room_key: str, entity: dict[str, Any] | None) -> None:
        """Replace (or with ``entity=None`` remove) the room's entity state.

        Raises:
            MirrorError: On any transport failure or non-success response
        """
        url = self._storage_url(room_key)
        method = "DELETE" if entity is None else "POST"
        body = (
            None if entity is None else {"liveblocksType": "LiveObject", "data": entity}
        )
        headers = {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

        detail_logger.debug(f"Mirror {method} {url}")
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(
                    method, url, headers=headers, json=body
                ) as response:
                    if response.status >= 400:
                        error_text = await response.text()
                        raise MirrorError(
                            f"Mirror of room {room_key} failed: HTTP {response.status}. "
                            f"Response: {error_text[:200]}",
                            source_name=SOURCE_NAME,
                        )
        except asyncio.TimeoutError as e:
            raise MirrorError(
                f"Mirror of room {room_key} timed out after {self.timeout}s",
                source_name=SOURCE_NAME,
            ) from e
        except aiohttp.ClientError as e:
            raise MirrorError(
                f"Mirror of room {room_key} failed: {e}", source_name=SOURCE_NAME
            ) from e
