"""Authentik API client.

This module implements the SourceDirectory protocol on top of the Authentik
core REST API (``/api/v3/core``). Authentik is the system of record for
users and groups; this client only reads from it.
"""

import logging
from typing import Any

import httpx

from config import settings
from integrations.directory_protocol import SourceGroup, SourceUser
from integrations.exceptions import UpstreamAuthError, UpstreamFetchError

logger = logging.getLogger(__name__)

_PAGE_SIZE = 1000


class AuthentikClient:
    """Read-only wrapper around the Authentik core API."""

    def __init__(
        self,
        base_url: str | None = None,
        api_token: str | None = None,
        timeout: float | None = None,
    ):
        """Initialize the client with credentials.

        Args:
            base_url: Authentik base URL (defaults to settings)
            api_token: API token sent as a bearer token (defaults to settings)
            timeout: Request timeout in seconds (defaults to settings)
        """
        self._base_url = (base_url or settings.AUTHENTIK_URL).rstrip("/")
        self._api_token = api_token if api_token is not None else settings.AUTHENTIK_TOKEN
        self._client = httpx.Client(
            base_url=self._base_url,
            headers={
                "Authorization": f"Bearer {self._api_token}",
                "Accept": "application/json",
            },
            timeout=timeout or settings.AUTHENTIK_TIMEOUT,
        )

    @property
    def directory_name(self) -> str:
        return "Authentik"

    def is_configured(self) -> bool:
        """Check if an API token is configured."""
        return bool(self._api_token)

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    def _get(self, path: str, params: dict[str, Any] | None = None) -> dict:
        """GET a JSON document, mapping failures to typed upstream errors."""
        if not self._api_token:
            raise UpstreamAuthError(
                "AUTHENTIK_TOKEN is not configured",
                directory_name=self.directory_name,
            )
        try:
            response = self._client.get(path, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status in (401, 403):
                raise UpstreamAuthError(
                    f"Authentik authentication failed (HTTP {status})",
                    directory_name=self.directory_name,
                    status_code=status,
                ) from exc
            raise UpstreamFetchError(
                f"Authentik API error (HTTP {status}) for {path}",
                directory_name=self.directory_name,
                status_code=status,
            ) from exc
        except httpx.HTTPError as exc:
            raise UpstreamFetchError(
                f"Authentik connection failed: {exc}",
                directory_name=self.directory_name,
            ) from exc
        except ValueError as exc:
            raise UpstreamFetchError(
                f"Authentik returned invalid JSON for {path}",
                directory_name=self.directory_name,
            ) from exc

    def _get_all(self, path: str) -> list[dict]:
        """Collect every page of a paginated list endpoint."""
        results: list[dict] = []
        page = 1
        while True:
            data = self._get(path, params={"page_size": _PAGE_SIZE, "page": page})
            results.extend(data.get("results", []))
            next_page = (data.get("pagination") or {}).get("next")
            if not next_page:
                break
            page = next_page
        return results

    @staticmethod
    def _to_source_user(raw: dict) -> SourceUser:
        return SourceUser(
            id=str(raw.get("pk", "")),
            identifier=raw["username"],
            email=raw.get("email") or None,
            display_name=raw.get("name") or None,
            active=bool(raw.get("is_active", True)),
            has_credential=bool(raw.get("password_change_date")),
            attributes=raw.get("attributes") or {},
        )

    def list_users(self) -> list[SourceUser]:
        """Fetch all users.

        Returns:
            List of SourceUser records.
        """
        raw_users = self._get_all("/api/v3/core/users/")
        users = [self._to_source_user(raw) for raw in raw_users]
        logger.info("Authentik: fetched %d users", len(users))
        return users

    def list_groups(self) -> list[SourceGroup]:
        """Fetch all groups."""
        raw_groups = self._get_all("/api/v3/core/groups/")
        groups = [
            SourceGroup(
                id=str(raw["pk"]),
                name=raw["name"],
                description=(raw.get("attributes") or {}).get("description"),
            )
            for raw in raw_groups
        ]
        logger.info("Authentik: fetched %d groups", len(groups))
        return groups

    def list_group_members(self, group_id: str) -> list[str]:
        """Fetch the usernames of a group's members."""
        data = self._get(f"/api/v3/core/groups/{group_id}/")
        return [u["username"] for u in data.get("users_obj") or [] if u.get("username")]
