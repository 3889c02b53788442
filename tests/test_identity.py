"""Unit tests for corporate identity provisioning (Graph client + provisioner)."""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import MagicMock
from uuid import uuid4

import httpx
import pytest

from app.core.config import IdentityConfig
from app.core.errors import IdentityProvisioningFailed
from app.models.enums import PractitionerStatus
from app.models.practitioner import Practitioner
from app.services.identity import (
    GraphIdentityClient,
    GraphUser,
    IdentityProvisioner,
    corporate_address,
)
from app.services.oauth import ClientCredentialsTokenProvider
from conftest import FakeGraph

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _practitioner(**overrides: Any) -> Practitioner:
    data: dict[str, Any] = {
        "id": uuid4(),
        "first_name": "Ana",
        "last_name": "Lee",
        "email": "a@x.com",
        "status": PractitionerStatus.onboarding_in_progress,
    }
    data.update(overrides)
    return Practitioner(**data)


def _graph_client(
    handler: Any, config: IdentityConfig, tokens: Any = None
) -> GraphIdentityClient:
    tokens = tokens or MagicMock(get_token=MagicMock(return_value="graph-token"))
    http = httpx.Client(transport=httpx.MockTransport(handler))
    return GraphIdentityClient(config, http=http, tokens=tokens)


# ---------------------------------------------------------------------------
# Address derivation
# ---------------------------------------------------------------------------


class TestCorporateAddress:
    """first.last@domain derivation."""

    def test_simple_name(self) -> None:
        """Given a plain name, the address is first.last@domain."""
        assert corporate_address("Ana", "Lee", "corp.com") == "ana.lee@corp.com"

    def test_strips_non_letters(self) -> None:
        """Given hyphens, apostrophes and spaces, they are removed."""
        assert (
            corporate_address("Mary Jane", "O'Brien-Smith", "Corp.com")
            == "maryjane.obriensmith@corp.com"
        )

    def test_name_without_letters_raises(self) -> None:
        """Given a name with no a-z letters, ValueError is raised."""
        with pytest.raises(ValueError):
            corporate_address("123", "Lee", "corp.com")


# ---------------------------------------------------------------------------
# Graph client
# ---------------------------------------------------------------------------


class TestGraphIdentityClient:
    """Graph REST calls via a mock transport."""

    def test_find_by_address_found(self, identity_config: IdentityConfig) -> None:
        """Given a matching user, find_by_address returns it with license state."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "value": [
                        {
                            "id": "aad-1",
                            "userPrincipalName": "ana.lee@corp.com",
                            "assignedLicenses": [{"skuId": "sku-e3"}],
                        }
                    ]
                },
            )

        user = _graph_client(handler, identity_config).find_by_address("ana.lee@corp.com")

        assert user == GraphUser(
            id="aad-1", user_principal_name="ana.lee@corp.com", license_assigned=True
        )
        assert seen[0].headers["Authorization"] == "Bearer graph-token"
        assert "ana.lee%40corp.com" in str(seen[0].url) or "ana.lee@corp.com" in str(seen[0].url)

    def test_find_by_address_missing(self, identity_config: IdentityConfig) -> None:
        """Given no users, find_by_address returns None."""
        client = _graph_client(lambda r: httpx.Response(200, json={"value": []}), identity_config)
        assert client.find_by_address("ana.lee@corp.com") is None

    def test_create_user_payload(self, identity_config: IdentityConfig) -> None:
        """Given a create, the personal email is stored as otherMails only."""
        bodies: list[dict[str, Any]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(201, json={"id": "aad-2", "userPrincipalName": "ana.lee@corp.com"})

        user = _graph_client(handler, identity_config).create_user(
            address="ana.lee@corp.com",
            personal_email="a@x.com",
            first_name="Ana",
            last_name="Lee",
            display_name="Dr Ana Lee",
            password="Secret123",
        )

        assert user.id == "aad-2"
        body = bodies[0]
        assert body["userPrincipalName"] == "ana.lee@corp.com"
        assert body["otherMails"] == ["a@x.com"]
        assert body["mailNickname"] == "analee"
        assert body["usageLocation"] == "AU"
        assert body["passwordProfile"]["password"] == "Secret123"

    def test_401_refreshes_token_once(self, identity_config: IdentityConfig) -> None:
        """Given a 401, the token is invalidated and the call retried once."""
        tokens = MagicMock(get_token=MagicMock(side_effect=["stale", "fresh"]))
        statuses = iter([401, 200])

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(next(statuses), json={"value": []})

        client = _graph_client(handler, identity_config, tokens=tokens)
        assert client.find_by_address("ana.lee@corp.com") is None
        tokens.invalidate.assert_called_once()

    def test_assign_license_error_raises(self, identity_config: IdentityConfig) -> None:
        """Given a Graph error, assign_license raises HTTPStatusError."""
        client = _graph_client(lambda r: httpx.Response(400, json={}), identity_config)
        with pytest.raises(httpx.HTTPStatusError):
            client.assign_license("aad-1", "sku-e3")


# ---------------------------------------------------------------------------
# Provisioner
# ---------------------------------------------------------------------------


class TestIdentityProvisioner:
    """Search-then-create semantics."""

    def test_creates_when_absent(
        self, graph: FakeGraph, identity_config: IdentityConfig
    ) -> None:
        """Given no existing account, one is created and licensed."""
        result = IdentityProvisioner(graph, identity_config).ensure_identity(
            _practitioner(), "Secret123"
        )
        assert result.created is True
        assert result.corporate_address == "ana.lee@corp.com"
        assert result.license_assigned is True
        assert len(graph.create_calls) == 1
        assert graph.create_calls[0]["personal_email"] == "a@x.com"
        assert graph.license_calls == [(result.external_id, "sku-e3")]

    def test_reuses_existing_account(
        self, graph: FakeGraph, identity_config: IdentityConfig
    ) -> None:
        """Given an existing account, it is reused without a create call."""
        graph.users["ana.lee@corp.com"] = GraphUser(
            id="aad-existing", user_principal_name="ana.lee@corp.com"
        )
        result = IdentityProvisioner(graph, identity_config).ensure_identity(
            _practitioner(), "Secret123"
        )
        assert result.external_id == "aad-existing"
        assert result.created is False
        assert graph.create_calls == []

    def test_license_failure_is_not_fatal(
        self, graph: FakeGraph, identity_config: IdentityConfig
    ) -> None:
        """Given a license error, the identity is still returned unlicensed."""
        graph.license_error = httpx.ConnectTimeout("timed out")
        result = IdentityProvisioner(graph, identity_config).ensure_identity(
            _practitioner(), "Secret123"
        )
        assert result.created is True
        assert result.license_assigned is False

    def test_no_sku_skips_licensing(
        self, graph: FakeGraph, identity_config: IdentityConfig
    ) -> None:
        """Given no SKU configured, no license call is made."""
        config = identity_config.model_copy(update={"license_sku_id": ""})
        provisioner = IdentityProvisioner(graph, config)
        result = provisioner.ensure_identity(_practitioner(), "Secret123")
        assert provisioner.licensing_enabled is False
        assert result.license_assigned is False
        assert graph.license_calls == []

    def test_provider_error_is_fatal(
        self, graph: FakeGraph, identity_config: IdentityConfig
    ) -> None:
        """Given Graph is unreachable, IdentityProvisioningFailed is raised."""
        graph.error = httpx.ConnectTimeout("timed out")
        with pytest.raises(IdentityProvisioningFailed) as exc_info:
            IdentityProvisioner(graph, identity_config).ensure_identity(
                _practitioner(), "Secret123"
            )
        assert exc_info.value.kind == "IdentityProvisioningFailed"

    def test_unusable_name_is_fatal(
        self, graph: FakeGraph, identity_config: IdentityConfig
    ) -> None:
        """Given a name without letters, IdentityProvisioningFailed is raised."""
        with pytest.raises(IdentityProvisioningFailed):
            IdentityProvisioner(graph, identity_config).ensure_identity(
                _practitioner(first_name="--"), "Secret123"
            )

    def test_create_race_adopts_winner(self, identity_config: IdentityConfig) -> None:
        """Given 'already exists' on create, the concurrent account is adopted."""
        lookups = iter(
            [
                {"value": []},
                {"value": [{"id": "aad-winner", "userPrincipalName": "ana.lee@corp.com"}]},
            ]
        )

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(200, json=next(lookups))
            return httpx.Response(
                400,
                json={"error": {"message": "Another object with the same value for property userPrincipalName already exists."}},
            )

        client = _graph_client(handler, identity_config)
        result = IdentityProvisioner(client, identity_config).ensure_identity(
            _practitioner(), "Secret123"
        )
        assert result.external_id == "aad-winner"
        assert result.created is False


# ---------------------------------------------------------------------------
# OAuth token cache
# ---------------------------------------------------------------------------


class TestClientCredentialsTokenProvider:
    """Token caching shared by all OAuth clients."""

    def test_caches_until_expiry_buffer(self) -> None:
        """Given a cached token, it is reused until 60s before expiry."""
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(
                200, json={"access_token": f"tok-{len(calls)}", "expires_in": 3600}
            )

        now = [1000.0]
        provider = ClientCredentialsTokenProvider(
            httpx.Client(transport=httpx.MockTransport(handler)),
            token_url="https://login.test/token",
            client_id="id",
            client_secret="secret",
            scope="https://graph.microsoft.com/.default",
            clock=lambda: now[0],
        )

        assert provider.get_token() == "tok-1"
        now[0] += 3500
        assert provider.get_token() == "tok-1"
        now[0] += 100
        assert provider.get_token() == "tok-2"
        assert len(calls) == 2

    def test_basic_auth_keeps_secret_out_of_body(self) -> None:
        """Given basic_auth, credentials go in the Authorization header."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"access_token": "tok", "expires_in": 600})

        provider = ClientCredentialsTokenProvider(
            httpx.Client(transport=httpx.MockTransport(handler)),
            token_url="https://halaxy.test/token",
            client_id="id",
            client_secret="secret",
            basic_auth=True,
        )
        provider.get_token()

        assert seen[0].headers["Authorization"].startswith("Basic ")
        assert b"secret" not in seen[0].content

    def test_invalidate_forces_refetch(self) -> None:
        """Given invalidate(), the next call fetches a new token."""
        count = [0]

        def handler(request: httpx.Request) -> httpx.Response:
            count[0] += 1
            return httpx.Response(200, json={"access_token": f"tok-{count[0]}"})

        provider = ClientCredentialsTokenProvider(
            httpx.Client(transport=httpx.MockTransport(handler)),
            token_url="https://login.test/token",
            client_id="id",
            client_secret="secret",
        )
        provider.get_token()
        provider.invalidate()
        assert provider.get_token() == "tok-2"
