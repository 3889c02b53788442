"""Shared test fixtures.

Provides a ``test_client`` for FastAPI, Supabase mocks for the health
endpoint, an in-memory Supabase stand-in that honours the conditional
updates the services rely on, and fakes for the external collaborators
(Graph, Halaxy, Key Vault, Resend) wired into the real provisioners.
"""

import os

os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-key")

import threading
from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from app.core.config import EmailConfig, IdentityConfig, VaultConfig
from app.models.encryption_key import KeyHandle
from app.models.enums import PractitionerStatus
from app.models.onboarding import SendResult
from app.services.identity import GraphUser, IdentityProvisioner
from app.services.key_vault import EncryptionKeyProvisioner
from app.services.notifications import NotificationDispatcher
from app.services.onboarding import OnboardingService, PracticeAdmin
from app.services.pms import PmsMatcher
from app.services.practitioners import PractitionerRepository
from app.services.saga import ProvisioningSaga
from app.services.tokens import TokenStore

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# In-memory Supabase
# ---------------------------------------------------------------------------

def _as_datetime(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return value
    return value


class FakeQuery:
    """Just enough of the PostgREST builder for the services under test."""

    def __init__(self, db: "FakeSupabase", table: str) -> None:
        self.db = db
        self.table_name = table
        self.op = "select"
        self.payload: Any = None
        self.on_conflict = ""
        self.filters: list[tuple[str, str, Any]] = []
        self.row_limit: int | None = None

    def select(self, *columns: str, **kwargs: Any) -> "FakeQuery":
        self.op = "select"
        return self

    def insert(self, payload: dict[str, Any]) -> "FakeQuery":
        self.op, self.payload = "insert", payload
        return self

    def upsert(self, payload: dict[str, Any], on_conflict: str = "") -> "FakeQuery":
        self.op, self.payload, self.on_conflict = "upsert", payload, on_conflict
        return self

    def update(self, payload: dict[str, Any]) -> "FakeQuery":
        self.op, self.payload = "update", payload
        return self

    def eq(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append((column, "eq", value))
        return self

    def is_(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append((column, "is", value))
        return self

    def gt(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append((column, "gt", value))
        return self

    def limit(self, count: int) -> "FakeQuery":
        self.row_limit = count
        return self

    def _matches(self, row: dict[str, Any]) -> bool:
        for column, op, value in self.filters:
            current = row.get(column)
            if op == "eq" and current != value:
                return False
            if op == "is" and value == "null" and current is not None:
                return False
            if op == "gt" and (current is None or not _as_datetime(current) > _as_datetime(value)):
                return False
        return True

    def execute(self) -> MagicMock:
        failure = self.db.failures.get(f"{self.table_name}.{self.op}")
        if failure is not None:
            raise failure
        with self.db.lock:
            rows = self.db.tables.setdefault(self.table_name, [])
            if self.op == "select":
                data = [dict(r) for r in rows if self._matches(r)]
                if self.row_limit is not None:
                    data = data[: self.row_limit]
            elif self.op == "insert":
                rows.append(dict(self.payload))
                data = [dict(self.payload)]
            elif self.op == "upsert":
                keys = [k for k in self.on_conflict.split(",") if k]
                existing = next(
                    (r for r in rows if all(r.get(k) == self.payload.get(k) for k in keys)),
                    None,
                )
                if existing is None:
                    rows.append(dict(self.payload))
                    data = [dict(self.payload)]
                else:
                    existing.update(self.payload)
                    data = [dict(existing)]
            else:
                data = []
                for row in rows:
                    if self._matches(row):
                        row.update(self.payload)
                        data.append(dict(row))
            self.db.calls.append((self.table_name, self.op))
        return MagicMock(data=data)


class FakeRpc:
    def __init__(self, db: "FakeSupabase", name: str, params: dict[str, Any]) -> None:
        self.db = db
        self.name = name
        self.params = params

    def execute(self) -> MagicMock:
        failure = self.db.failures.get(f"rpc.{self.name}")
        if failure is not None:
            raise failure
        assert self.name == "activate_encryption_key"
        with self.db.lock:
            keys = self.db.tables.setdefault("practitioner_encryption_keys", [])
            for row in keys:
                if row["practitioner_id"] == self.params["p_practitioner_id"] and row["is_active"]:
                    row["is_active"] = False
                    row["deactivated_at"] = NOW.isoformat()
            keys.append(
                {
                    "practitioner_id": self.params["p_practitioner_id"],
                    "external_identity_id": self.params["p_external_identity_id"],
                    "key_name": self.params["p_key_name"],
                    "key_version": self.params["p_key_version"],
                    "wrapped_dek": self.params["p_wrapped_dek"],
                    "is_active": True,
                }
            )
            self.db.calls.append(("rpc", self.name))
        return MagicMock(data=None)


class FakeSupabase:
    """Thread-safe in-memory tables; ``failures`` injects errors per ``table.op``."""

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple[str, str]] = []
        self.lock = threading.Lock()

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rpc(self, name: str, params: dict[str, Any]) -> FakeRpc:
        return FakeRpc(self, name, params)

    def add_practitioner(self, **overrides: Any) -> dict[str, Any]:
        row: dict[str, Any] = {
            "id": str(uuid4()),
            "first_name": "Ana",
            "last_name": "Lee",
            "email": "a@x.com",
            "phone": None,
            "display_name": None,
            "bio": None,
            "status": PractitionerStatus.offer_accepted.value,
            "external_identity_id": None,
            "corporate_email": None,
            "license_assigned": False,
            "pms_record_id": None,
            "pms_sub_role_id": None,
            "notes_enabled": False,
        }
        row.update(overrides)
        self.tables.setdefault("practitioners", []).append(row)
        return row

    def practitioner(self, practitioner_id: Any) -> dict[str, Any]:
        return next(
            r for r in self.tables["practitioners"] if r["id"] == str(practitioner_id)
        )

    def active_keys(self, practitioner_id: Any) -> list[dict[str, Any]]:
        return [
            r
            for r in self.tables.get("practitioner_encryption_keys", [])
            if r["practitioner_id"] == str(practitioner_id) and r["is_active"]
        ]


# ---------------------------------------------------------------------------
# External collaborator fakes
# ---------------------------------------------------------------------------

class FakeGraph:
    """Graph client double keyed by corporate address."""

    def __init__(self) -> None:
        self.users: dict[str, GraphUser] = {}
        self.create_calls: list[dict[str, Any]] = []
        self.license_calls: list[tuple[str, str]] = []
        self.error: Exception | None = None
        self.license_error: Exception | None = None

    @property
    def calls(self) -> int:
        return len(self.create_calls) + len(self.license_calls)

    def find_by_address(self, address: str) -> GraphUser | None:
        if self.error is not None:
            raise self.error
        return self.users.get(address)

    def create_user(self, **kwargs: Any) -> GraphUser:
        self.create_calls.append(kwargs)
        user = GraphUser(
            id=f"aad-{len(self.create_calls):04d}",
            user_principal_name=kwargs["address"],
        )
        self.users[kwargs["address"]] = user
        return user

    def assign_license(self, user_id: str, sku_id: str) -> None:
        if self.license_error is not None:
            raise self.license_error
        self.license_calls.append((user_id, sku_id))


class FakeHalaxy:
    """Halaxy client double."""

    def __init__(self) -> None:
        self.by_email: dict[str, dict[str, Any]] = {}
        self.by_name: dict[tuple[str, str], dict[str, Any]] = {}
        self.roles: dict[str, list[dict[str, Any]]] = {}
        self.error: Exception | None = None
        self.role_error: Exception | None = None
        self.lookups = 0

    def find_by_email(self, email: str) -> dict[str, Any] | None:
        self.lookups += 1
        if self.error is not None:
            raise self.error
        return self.by_email.get(email)

    def find_by_name(self, first_name: str, last_name: str) -> dict[str, Any] | None:
        self.lookups += 1
        return self.by_name.get((first_name.lower(), last_name.lower()))

    def list_sub_roles(self, record_id: str) -> list[dict[str, Any]]:
        if self.role_error is not None:
            raise self.role_error
        return self.roles.get(record_id, [])


class FakeVault:
    """Key Vault double; wrapping reverses the bytes."""

    def __init__(self) -> None:
        self.keys: dict[str, KeyHandle] = {}
        self.wrap_calls = 0
        self.error: Exception | None = None

    def create_or_get_rsa_key(self, name: str, tags: dict[str, str]) -> KeyHandle:
        if self.error is not None:
            raise self.error
        return self.keys.setdefault(
            name,
            KeyHandle(kid=f"https://vault.test/keys/{name}/v1", name=name, version="v1"),
        )

    def wrap_key(self, handle: KeyHandle, plaintext: bytes) -> bytes:
        self.wrap_calls += 1
        return plaintext[::-1]


class FakeSender:
    """Email sender double recording every message."""

    def __init__(self) -> None:
        self.sent: list[tuple[Any, str, dict[str, Any]]] = []
        self.fail = False
        self.fail_to: set[str] = set()

    def send(self, template: Any, recipient: str, variables: dict[str, Any]) -> SendResult:
        if self.fail or recipient in self.fail_to:
            return SendResult(success=False, error="Resend unavailable")
        self.sent.append((template, recipient, variables))
        return SendResult(success=True, message_id=f"msg-{len(self.sent)}")

    def templates_to(self, recipient: str) -> list[Any]:
        return [t for t, r, _ in self.sent if r == recipient]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def identity_config() -> IdentityConfig:
    return IdentityConfig(
        tenant_id="tenant-1",
        client_id="client-1",
        client_secret="secret-1",
        corporate_domain="corp.com",
        license_sku_id="sku-e3",
    )


@pytest.fixture()
def vault_config() -> VaultConfig:
    return VaultConfig(
        vault_url="https://vault.test",
        tenant_id="tenant-1",
        client_id="client-1",
        client_secret="secret-1",
    )


@pytest.fixture()
def email_config() -> EmailConfig:
    return EmailConfig(
        api_key="re_test",
        sender="Bloom <donotreply@corp.com>",
        admin_recipient="admin@corp.com",
        onboarding_base_url="https://bloom.test",
        portal_url="https://bloom.test/portal",
    )


@pytest.fixture()
def fake_db() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture()
def graph() -> FakeGraph:
    return FakeGraph()


@pytest.fixture()
def halaxy() -> FakeHalaxy:
    return FakeHalaxy()


@pytest.fixture()
def vault() -> FakeVault:
    return FakeVault()


@pytest.fixture()
def sender() -> FakeSender:
    return FakeSender()


@pytest.fixture()
def repository(fake_db: FakeSupabase) -> PractitionerRepository:
    return PractitionerRepository(client=fake_db)


@pytest.fixture()
def token_store(fake_db: FakeSupabase) -> TokenStore:
    return TokenStore(client=fake_db, clock=lambda: NOW)


@pytest.fixture()
def notifier(sender: FakeSender, email_config: EmailConfig) -> NotificationDispatcher:
    return NotificationDispatcher(sender, email_config)


@pytest.fixture()
def saga(
    repository: PractitionerRepository,
    graph: FakeGraph,
    halaxy: FakeHalaxy,
    vault: FakeVault,
    notifier: NotificationDispatcher,
    identity_config: IdentityConfig,
    vault_config: VaultConfig,
) -> ProvisioningSaga:
    return ProvisioningSaga(
        repository=repository,
        identity=IdentityProvisioner(graph, identity_config),
        pms=PmsMatcher(halaxy),
        keys=EncryptionKeyProvisioner(vault, repository, vault_config),
        notifier=notifier,
        password_factory=lambda: "TempPass123",
    )


@pytest.fixture()
def onboarding_service(
    token_store: TokenStore,
    repository: PractitionerRepository,
    saga: ProvisioningSaga,
    notifier: NotificationDispatcher,
) -> OnboardingService:
    return OnboardingService(
        tokens=token_store,
        repository=repository,
        saga=saga,
        notifier=notifier,
        onboarding_ttl=timedelta(days=7),
    )


@pytest.fixture()
def practice_admin(
    token_store: TokenStore,
    repository: PractitionerRepository,
    saga: ProvisioningSaga,
    notifier: NotificationDispatcher,
) -> PracticeAdmin:
    return PracticeAdmin(
        tokens=token_store,
        repository=repository,
        saga=saga,
        notifier=notifier,
        onboarding_ttl=timedelta(days=7),
    )


@pytest.fixture()
def mock_supabase_module() -> Generator[MagicMock, None, None]:
    """Patch the Supabase client at module level in the health router."""
    mock_client = MagicMock()
    # Mock the select -> limit -> execute chain
    mock_table = MagicMock()
    mock_select = MagicMock()
    mock_limit = MagicMock()

    mock_client.table.return_value = mock_table
    mock_table.select.return_value = mock_select
    mock_select.limit.return_value = mock_limit
    mock_limit.execute.return_value = MagicMock()  # non-None result

    with patch("app.routers.health.get_supabase", return_value=mock_client):
        yield mock_client


@pytest.fixture()
def mock_supabase_disconnected() -> Generator[MagicMock, None, None]:
    """Patch ``get_supabase`` to simulate a disconnected database."""
    with patch(
        "app.routers.health.get_supabase",
        side_effect=Exception("Connection refused"),
    ):
        yield MagicMock()


@pytest.fixture()
def test_client() -> Generator[TestClient, None, None]:
    """Provide a FastAPI TestClient."""
    from app.main import app

    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
