"""Unit tests for the Keycloak directory client over a mocked transport."""

import json
from uuid import uuid4

import httpx
import pytest

from ticketauth.core.exceptions import DirectoryOperationError
from ticketauth.services.identity_directory import KeycloakDirectory

REALM = "event-ticket-platform"
ADMIN = f"/admin/realms/{REALM}"


class KeycloakStub:
    """Records requests and answers them from a small route table."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], httpx.Response] = {}
        self.token_requests = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == f"/realms/{REALM}/protocol/openid-connect/token":
            self.token_requests += 1
            return httpx.Response(200, json={"access_token": "admin-token", "expires_in": 300})
        response = self.routes.get((request.method, request.url.path))
        if response is None:
            return httpx.Response(500)
        return response


def _directory(stub: KeycloakStub) -> KeycloakDirectory:
    return KeycloakDirectory(
        base_url="http://keycloak.test/",
        realm=REALM,
        client_id="ticketauth-admin",
        client_secret="secret",
        transport=httpx.MockTransport(stub),
    )


@pytest.mark.asyncio
class TestKeycloakDirectory:
    async def test_create_identity_reads_id_from_location(self):
        identity_id = uuid4()
        stub = KeycloakStub()
        stub.routes[("POST", f"{ADMIN}/users")] = httpx.Response(
            201, headers={"Location": f"http://keycloak.test{ADMIN}/users/{identity_id}"}
        )
        directory = _directory(stub)

        assert await directory.create_identity("new@test.com", "TestPass123!", "New Person") == identity_id

        payload = json.loads(stub.requests[-1].content)
        assert payload["username"] == "new@test.com"
        assert payload["firstName"] == "New"
        assert payload["lastName"] == "Person"
        assert payload["credentials"][0]["temporary"] is False
        assert stub.requests[-1].headers["Authorization"] == "Bearer admin-token"
        await directory.aclose()

    async def test_admin_token_is_cached(self):
        identity_id = uuid4()
        stub = KeycloakStub()
        stub.routes[("PUT", f"{ADMIN}/users/{identity_id}")] = httpx.Response(204)
        directory = _directory(stub)

        await directory.set_enabled(identity_id, False)
        await directory.set_enabled(identity_id, True)

        assert stub.token_requests == 1
        await directory.aclose()

    async def test_delete_of_missing_identity_is_not_an_error(self):
        identity_id = uuid4()
        stub = KeycloakStub()
        stub.routes[("DELETE", f"{ADMIN}/users/{identity_id}")] = httpx.Response(404)
        directory = _directory(stub)

        await directory.delete_identity(identity_id)
        await directory.aclose()

    async def test_get_roles_drops_internal_roles(self):
        identity_id = uuid4()
        stub = KeycloakStub()
        stub.routes[("GET", f"{ADMIN}/users/{identity_id}/role-mappings/realm")] = httpx.Response(
            200,
            json=[
                {"name": "staff"},
                {"name": "offline_access"},
                {"name": f"default-roles-{REALM}"},
                {"name": "uma_authorization"},
            ],
        )
        directory = _directory(stub)

        assert await directory.get_roles(identity_id) == {"STAFF"}
        assert await directory.has_role(identity_id, "staff")
        assert not await directory.has_role(identity_id, "ADMIN")
        await directory.aclose()

    async def test_assign_role_posts_role_representation(self):
        identity_id = uuid4()
        representation = {"id": "role-1", "name": "ORGANIZER"}
        stub = KeycloakStub()
        stub.routes[("GET", f"{ADMIN}/roles/ORGANIZER")] = httpx.Response(200, json=representation)
        stub.routes[("POST", f"{ADMIN}/users/{identity_id}/role-mappings/realm")] = httpx.Response(204)
        directory = _directory(stub)

        await directory.assign_role(identity_id, "ORGANIZER")

        assert json.loads(stub.requests[-1].content) == [representation]
        await directory.aclose()

    async def test_find_id_by_email_matches_exactly(self):
        identity_id = uuid4()
        stub = KeycloakStub()
        stub.routes[("GET", f"{ADMIN}/users")] = httpx.Response(
            200,
            json=[
                {"id": str(uuid4()), "email": "someone.else@test.com"},
                {"id": str(identity_id), "email": "Person@Test.com"},
            ],
        )
        directory = _directory(stub)

        assert await directory.find_id_by_email("person@test.com") == identity_id
        assert await directory.find_id_by_email("nobody@test.com") is None
        await directory.aclose()

    async def test_error_status_is_wrapped(self):
        stub = KeycloakStub()
        directory = _directory(stub)

        with pytest.raises(DirectoryOperationError, match="status 500"):
            await directory.get_roles(uuid4())
        await directory.aclose()

    async def test_transport_error_is_wrapped(self):
        def unreachable(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        directory = KeycloakDirectory(
            base_url="http://keycloak.test",
            realm=REALM,
            client_id="ticketauth-admin",
            client_secret="secret",
            transport=httpx.MockTransport(unreachable),
        )

        with pytest.raises(DirectoryOperationError):
            await directory.find_id_by_email("person@test.com")
        await directory.aclose()

    async def test_rejected_token_request(self):
        def forbidden(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401)

        directory = KeycloakDirectory(
            base_url="http://keycloak.test",
            realm=REALM,
            client_id="ticketauth-admin",
            client_secret="wrong",
            transport=httpx.MockTransport(forbidden),
        )

        with pytest.raises(DirectoryOperationError, match="token request rejected"):
            await directory.set_enabled(uuid4(), True)
        await directory.aclose()

    async def test_non_json_role_body_is_a_directory_fault(self):
        stub = KeycloakStub()
        stub.routes[("GET", f"{ADMIN}/roles/ATTENDEE")] = httpx.Response(
            200, text="<html>login</html>", headers={"Content-Type": "text/html"}
        )
        directory = _directory(stub)

        with pytest.raises(DirectoryOperationError, match="malformed"):
            await directory.assign_role(uuid4(), "ATTENDEE")
        await directory.aclose()

    async def test_token_body_without_access_token_is_a_directory_fault(self):
        def tokenless(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"token_type": "Bearer"})

        directory = KeycloakDirectory(
            base_url="http://keycloak.test",
            realm=REALM,
            client_id="ticketauth-admin",
            client_secret="secret",
            transport=httpx.MockTransport(tokenless),
        )

        with pytest.raises(DirectoryOperationError, match="malformed"):
            await directory.set_enabled(uuid4(), True)
        await directory.aclose()

    async def test_unparseable_user_id_is_a_directory_fault(self):
        stub = KeycloakStub()
        stub.routes[("GET", f"{ADMIN}/users")] = httpx.Response(
            200, json=[{"id": "not-a-uuid", "email": "person@test.com"}]
        )
        directory = _directory(stub)

        with pytest.raises(DirectoryOperationError):
            await directory.find_id_by_email("person@test.com")
        await directory.aclose()

    async def test_role_list_of_wrong_shape_is_a_directory_fault(self):
        identity_id = uuid4()
        stub = KeycloakStub()
        stub.routes[("GET", f"{ADMIN}/users/{identity_id}/role-mappings/realm")] = httpx.Response(
            200, json={"error": "unexpected"}
        )
        directory = _directory(stub)

        with pytest.raises(DirectoryOperationError):
            await directory.get_roles(identity_id)
        await directory.aclose()

    async def test_available_roles_exclude_directory_builtins(self):
        stub = KeycloakStub()
        stub.routes[("GET", f"{ADMIN}/roles")] = httpx.Response(
            200,
            json=[
                {"id": "1", "name": "ADMIN"},
                {"id": "2", "name": "ORGANIZER"},
                {"id": "3", "name": "offline_access"},
                {"id": "4", "name": f"default-roles-{REALM}"},
            ],
        )
        directory = _directory(stub)

        assert await directory.list_available_roles() == {"ADMIN", "ORGANIZER"}
        await directory.aclose()
