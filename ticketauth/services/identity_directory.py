"""Identity directory client.

The directory (Keycloak) owns identities, passwords and coarse realm roles.
Everything here is a remote call that may fail; every failure surfaces as
`DirectoryOperationError` and callers must not assume partial success.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any, Protocol, TypeVar
from uuid import UUID

import httpx

from ticketauth.core.config import Settings
from ticketauth.core.exceptions import DirectoryOperationError
from ticketauth.core.security import is_internal_role
from ticketauth.core.structured_logging import log_json

logger = logging.getLogger(__name__)

T = TypeVar("T")


class IdentityDirectory(Protocol):
    async def create_identity(self, email: str, password: str, display_name: str | None) -> UUID: ...

    async def delete_identity(self, identity_id: UUID) -> None: ...

    async def assign_role(self, identity_id: UUID, role: str) -> None: ...

    async def revoke_role(self, identity_id: UUID, role: str) -> None: ...

    async def get_roles(self, identity_id: UUID) -> set[str]: ...

    async def has_role(self, identity_id: UUID, role: str) -> bool: ...

    async def find_id_by_email(self, email: str) -> UUID | None: ...

    async def set_enabled(self, identity_id: UUID, enabled: bool) -> None: ...

    async def list_available_roles(self) -> set[str]: ...


def _parse_payload(operation: str, response: httpx.Response, parse: Callable[[Any], T]) -> T:
    """Decode and interpret a directory response body.

    A body that is not JSON, or JSON of the wrong shape, is a directory fault.
    """
    try:
        return parse(response.json())
    except (ValueError, KeyError, TypeError, AttributeError) as exc:
        log_json(
            logger,
            logging.ERROR,
            "directory_response_malformed",
            operation=operation,
            status_code=response.status_code,
            exception=exc.__class__.__name__,
        )
        raise DirectoryOperationError(f"Directory {operation} returned a malformed response") from exc


def _role_names(items: list[dict]) -> set[str]:
    return {
        item["name"].upper()
        for item in items
        if item.get("name") and not is_internal_role(item["name"])
    }


def _split_display_name(display_name: str | None) -> tuple[str, str]:
    if not display_name:
        return "", ""
    first, _, last = display_name.strip().partition(" ")
    return first, last.strip()


class KeycloakDirectory:
    """Keycloak admin REST client authenticated with client credentials."""

    def __init__(
        self,
        *,
        base_url: str,
        realm: str,
        client_id: str,
        client_secret: str | None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.realm = realm
        self.client_id = client_id
        self.client_secret = client_secret
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
        )
        self._access_token: str | None = None
        self._token_expires_at = 0.0

    @classmethod
    def from_settings(cls, settings: Settings) -> KeycloakDirectory:
        return cls(
            base_url=settings.directory_base_url,
            realm=settings.directory_realm,
            client_id=settings.directory_client_id,
            client_secret=settings.directory_client_secret,
            timeout=settings.directory_timeout_seconds,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    @property
    def _admin_path(self) -> str:
        return f"/admin/realms/{self.realm}"

    async def _token(self) -> str:
        if self._access_token and time.monotonic() < self._token_expires_at:
            return self._access_token

        try:
            response = await self._client.post(
                f"/realms/{self.realm}/protocol/openid-connect/token",
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret or "",
                },
            )
        except httpx.HTTPError as exc:
            raise DirectoryOperationError(f"Directory token request failed: {exc}") from exc

        if response.status_code != 200:
            raise DirectoryOperationError(
                f"Directory token request rejected with status {response.status_code}"
            )

        access_token, expires_in = _parse_payload(
            "token",
            response,
            lambda body: (str(body["access_token"]), int(body.get("expires_in", 60))),
        )
        self._access_token = access_token
        # Refresh a little early so a token never expires mid-request.
        self._token_expires_at = time.monotonic() + max(expires_in - 30, 0)
        return self._access_token

    async def _request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        allow_statuses: tuple[int, ...] = (),
        **kwargs,
    ) -> httpx.Response:
        token = await self._token()
        headers = {"Authorization": f"Bearer {token}"}
        started = time.perf_counter()
        try:
            response = await self._client.request(
                method, f"{self._admin_path}{path}", headers=headers, **kwargs
            )
        except httpx.HTTPError as exc:
            log_json(
                logger,
                logging.ERROR,
                "directory_request_failed",
                operation=operation,
                error=str(exc),
                exception=exc.__class__.__name__,
            )
            raise DirectoryOperationError(f"Directory {operation} failed: {exc}") from exc

        duration_ms = (time.perf_counter() - started) * 1000
        if response.status_code >= 400 and response.status_code not in allow_statuses:
            log_json(
                logger,
                logging.ERROR,
                "directory_request_rejected",
                operation=operation,
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
            )
            raise DirectoryOperationError(
                f"Directory {operation} failed with status {response.status_code}"
            )

        log_json(
            logger,
            logging.DEBUG,
            "directory_request",
            operation=operation,
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
        )
        return response

    async def create_identity(self, email: str, password: str, display_name: str | None) -> UUID:
        first_name, last_name = _split_display_name(display_name)
        payload = {
            "username": email,
            "email": email,
            "firstName": first_name,
            "lastName": last_name,
            "enabled": True,
            "emailVerified": False,
            "credentials": [{"type": "password", "value": password, "temporary": False}],
        }
        response = await self._request("POST", "/users", operation="create_identity", json=payload)

        location = response.headers.get("Location", "")
        identity = location.rstrip("/").rsplit("/", 1)[-1]
        try:
            return UUID(identity)
        except ValueError:
            # Some deployments omit Location; fall back to a lookup.
            found = await self.find_id_by_email(email)
            if found is None:
                raise DirectoryOperationError("Directory did not return the created identity id") from None
            return found

    async def delete_identity(self, identity_id: UUID) -> None:
        # 404 means it is already gone.
        await self._request(
            "DELETE",
            f"/users/{identity_id}",
            operation="delete_identity",
            allow_statuses=(404,),
        )

    async def _role_representation(self, role: str) -> dict:
        response = await self._request("GET", f"/roles/{role}", operation="get_role")
        return _parse_payload("get_role", response, lambda body: {"id": body["id"], "name": body["name"]})

    async def assign_role(self, identity_id: UUID, role: str) -> None:
        representation = await self._role_representation(role)
        await self._request(
            "POST",
            f"/users/{identity_id}/role-mappings/realm",
            operation="assign_role",
            json=[representation],
        )

    async def revoke_role(self, identity_id: UUID, role: str) -> None:
        representation = await self._role_representation(role)
        await self._request(
            "DELETE",
            f"/users/{identity_id}/role-mappings/realm",
            operation="revoke_role",
            json=[representation],
        )

    async def get_roles(self, identity_id: UUID) -> set[str]:
        response = await self._request(
            "GET",
            f"/users/{identity_id}/role-mappings/realm",
            operation="get_roles",
        )
        return _parse_payload("get_roles", response, _role_names)

    async def has_role(self, identity_id: UUID, role: str) -> bool:
        return role.upper() in await self.get_roles(identity_id)

    async def find_id_by_email(self, email: str) -> UUID | None:
        response = await self._request(
            "GET",
            "/users",
            operation="find_id_by_email",
            params={"email": email, "exact": "true"},
        )
        wanted = email.strip().lower()

        def _match(users: list[dict]) -> UUID | None:
            for user in users:
                if (user.get("email") or "").lower() == wanted:
                    return UUID(user["id"])
            return None

        return _parse_payload("find_id_by_email", response, _match)

    async def set_enabled(self, identity_id: UUID, enabled: bool) -> None:
        await self._request(
            "PUT",
            f"/users/{identity_id}",
            operation="set_enabled",
            json={"enabled": enabled},
        )

    async def list_available_roles(self) -> set[str]:
        """Realm roles an administrator may grant; directory built-ins are filtered out."""
        response = await self._request("GET", "/roles", operation="list_roles")
        return _parse_payload("list_roles", response, _role_names)
