"""
Fetch monster data from the Nimble Nexus API.

This module handles online fetching (search, single monster, pagination)
and local file reading of saved Nimble Nexus API responses.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, urljoin, urlparse

import httpx

from ..base import ImportError
from .schema import DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT, NIMBLE_NEXUS_API_URL, NIMBLE_NEXUS_MONSTER_URL_PATTERN

logger = logging.getLogger("nimble-effects")


class NimbleNexusApiError(ImportError):
    """Raised when a Nimble Nexus request fails.

    Attributes:
        status: HTTP status code, or 0 for network failures.
        status_text: HTTP reason phrase, or "Network Error".
    """

    def __init__(self, message: str, status: int, status_text: str):
        super().__init__(message)
        self.status = status
        self.status_text = status_text


def extract_monster_id(url_or_id: str) -> str:
    """
    Extract a monster ID from a Nimble Nexus URL or a bare ID.

    Accepts:
    - Monster URL: https://nimble.nexus/monsters/abc123
    - API URL: https://nimble.nexus/api/monsters/abc123
    - Bare ID: "abc123"

    Raises:
        ImportError: If the input is empty or not a monster URL
    """
    value = (url_or_id or "").strip()
    match = NIMBLE_NEXUS_MONSTER_URL_PATTERN.search(value)
    if match:
        return match.group(1)
    if not value or "/" in value:
        raise ImportError(
            f"Invalid Nimble Nexus monster URL or ID: '{url_or_id}'. "
            "Expected format: https://nimble.nexus/monsters/<id> or just the ID."
        )
    return value


def extract_cursor_from_next_link(next_link: str | None, base_url: str = NIMBLE_NEXUS_API_URL) -> str | None:
    """Return the ``cursor`` query parameter of a pagination link."""
    if not next_link:
        return None
    query = parse_qs(urlparse(urljoin(f"{base_url}/", next_link)).query)
    values = query.get("cursor")
    return values[0] if values else None


class NimbleNexusClient:
    """Async client for the Nimble Nexus monster API.

    Each request opens its own ``httpx.AsyncClient``; the client object
    itself holds only configuration.

    Attributes:
        base_url: API root, without a trailing slash.
        timeout: Request timeout in seconds.
    """

    def __init__(self, base_url: str = NIMBLE_NEXUS_API_URL, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def _get(self, endpoint: str, params: dict[str, Any] | None = None) -> dict:
        url = f"{self.base_url}{endpoint}"
        query = {k: str(v) for k, v in (params or {}).items() if v is not None and v != ""}

        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(url, params=query, timeout=self.timeout)

                if response.status_code < 200 or response.status_code >= 300:
                    raise NimbleNexusApiError(
                        f"API request failed: {response.reason_phrase}",
                        response.status_code,
                        response.reason_phrase,
                    )

                data = response.json()

        except NimbleNexusApiError:
            raise
        except httpx.TimeoutException:
            raise NimbleNexusApiError(
                "Nimble Nexus is not responding. Try again later.", 0, "Network Error"
            ) from None
        except httpx.RequestError as e:
            raise NimbleNexusApiError(
                f"Failed to connect to Nimble Nexus: {e}", 0, "Network Error"
            ) from None
        except ValueError as e:
            raise NimbleNexusApiError(
                f"Invalid JSON from Nimble Nexus: {e}", 0, "Network Error"
            ) from None

        if not isinstance(data, dict):
            raise NimbleNexusApiError("Invalid response from Nimble Nexus: expected JSON object", 0, "Network Error")

        logger.debug(f"Fetched {url}")
        return data

    async def search(
        self,
        search: str | None = None,
        level: str | None = None,
        limit: int = DEFAULT_PAGE_LIMIT,
        cursor: str | None = None,
        sort: str | None = None,
        include: str | None = None,
        monster_type: str = "all",
        role: str = "all",
    ) -> dict:
        """Search monsters.

        Args:
            search: Free-text name search.
            level: Level filter, e.g. "3" or "1/2".
            limit: Page size, capped at the API maximum.
            cursor: Pagination cursor from a previous response.
            sort: name, -name, createdAt, -createdAt, level or -level.
            include: Related resources to include, e.g. "families".
            monster_type: all, standard, legendary or minion.
            role: all or a monster role such as striker or controller.

        Returns:
            The API response: ``{"data": [...], "links": {...}}``.
        """
        params = {
            "search": search,
            "level": level,
            "limit": min(limit or DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT),
            "cursor": cursor,
            "sort": sort,
            "include": include,
            "type": monster_type if monster_type != "all" else None,
            "role": role if role != "all" else None,
        }
        return await self._get("/monsters", params)

    async def get_by_id(self, url_or_id: str) -> dict:
        """Fetch a single monster resource by ID or URL."""
        monster_id = extract_monster_id(url_or_id)
        response = await self._get(f"/monsters/{monster_id}")
        data = response.get("data")
        if not isinstance(data, dict) or "attributes" not in data:
            raise NimbleNexusApiError(
                f"Invalid monster data for '{monster_id}': missing attributes", 0, "Network Error"
            )
        return data

    async def paginate(
        self,
        cursor: str | None = None,
        limit: int = DEFAULT_PAGE_LIMIT,
        sort: str | None = None,
    ) -> dict:
        return await self.search(cursor=cursor, limit=limit, sort=sort)

    def get_next_cursor(self, response: dict) -> str | None:
        return extract_cursor_from_next_link((response.get("links") or {}).get("next"), self.base_url)


def read_monster_file(file_path: str) -> dict:
    """
    Read a monster saved from the Nimble Nexus API.

    Accepts either the full single-monster response (``{"data": {...}}``)
    or the bare monster resource.

    Raises:
        ImportError: If the file is missing, not JSON, or not a monster
    """
    path = Path(file_path)

    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ImportError(f"Monster file not found: {file_path}") from None
    except json.JSONDecodeError as e:
        raise ImportError(f"Invalid JSON in monster file: {e}") from None
    except OSError as e:
        raise ImportError(f"Failed to read monster file: {e}") from None

    if isinstance(data, dict) and isinstance(data.get("data"), dict):
        data = data["data"]

    if not isinstance(data, dict) or not isinstance(data.get("attributes"), dict):
        raise ImportError(
            "Unrecognized monster file format: missing 'attributes'. "
            "Ensure this is a saved Nimble Nexus monster response."
        )

    return data


__all__ = [
    "NimbleNexusApiError",
    "NimbleNexusClient",
    "extract_monster_id",
    "extract_cursor_from_next_link",
    "read_monster_file",
]
