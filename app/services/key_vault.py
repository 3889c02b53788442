"""Clinical-notes encryption keys (envelope encryption with Azure Key Vault).

Each practitioner owns an RSA key in the vault named after their external
identity id, so retries always land on the same key.  Notes are encrypted
client-side with a symmetric data-encryption key (DEK); the server only ever
stores that DEK wrapped by the practitioner's vault key.

    1. create-or-get RSA-4096 key ``notes-key-<external_id>`` (wrap/unwrap only)
    2. generate a fresh 256-bit DEK locally
    3. wrap the DEK with the vault key (RSA-OAEP-256)
    4. store base64(wrapped DEK) + key name/version as the active record

The saga only calls this step when the practitioner has no active key
record, so re-runs leave a working key alone.  Each call that does run stores
a *new* wrapped DEK and deactivates any previous record; the vault key is
stable, the DEK is never reused.
"""

from __future__ import annotations

import base64
import logging
import secrets
from datetime import datetime, timezone
from typing import Any

import httpx

from app.core.config import VaultConfig
from app.core.constants import DEK_BYTES, KEY_OPERATIONS, KEY_PURPOSE_TAG
from app.core.errors import KeyProvisioningFailed, ProvisioningPersistenceFailed
from app.models.encryption_key import EncryptionKeyRecord, KeyHandle, NotesKeyResult
from app.models.practitioner import Practitioner
from app.services.oauth import ClientCredentialsTokenProvider
from app.services.practitioners import PractitionerRepository

logger = logging.getLogger(__name__)

VAULT_SCOPE = "https://vault.azure.net/.default"


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def _handle_from_bundle(bundle: dict[str, Any]) -> KeyHandle:
    """Build a ``KeyHandle`` from a Key Vault KeyBundle.

    ``kid`` looks like ``https://<vault>/keys/<name>/<version>``.
    """
    kid = bundle["key"]["kid"]
    name, version = kid.rstrip("/").split("/")[-2:]
    return KeyHandle(kid=kid, name=name, version=version)


class KeyVaultClient:
    """Key Vault REST calls for key creation and wrapping."""

    def __init__(
        self,
        config: VaultConfig,
        http: httpx.Client | None = None,
        tokens: ClientCredentialsTokenProvider | None = None,
    ) -> None:
        self.config = config
        self._http = http or httpx.Client(timeout=config.timeout_seconds)
        self._tokens = tokens or ClientCredentialsTokenProvider(
            self._http,
            token_url=config.token_url_template.format(tenant_id=config.tenant_id),
            client_id=config.client_id,
            client_secret=config.client_secret,
            scope=VAULT_SCOPE,
        )

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        return self._http.request(
            method,
            url,
            params={"api-version": self.config.api_version},
            headers={"Authorization": f"Bearer {self._tokens.get_token()}"},
            **kwargs,
        )

    def create_or_get_rsa_key(self, name: str, tags: dict[str, str]) -> KeyHandle:
        base = self.config.vault_url.rstrip("/")
        response = self._request(
            "POST",
            f"{base}/keys/{name}/create",
            json={
                "kty": "RSA",
                "key_size": self.config.key_size,
                "key_ops": KEY_OPERATIONS,
                "tags": tags,
            },
        )
        if response.status_code == 409:
            logger.info("vault_key_exists", extra={"key_name": name})
            response = self._request("GET", f"{base}/keys/{name}")
        response.raise_for_status()
        return _handle_from_bundle(response.json())

    def wrap_key(self, handle: KeyHandle, plaintext: bytes) -> bytes:
        response = self._request(
            "POST",
            f"{handle.kid}/wrapkey",
            json={
                "alg": self.config.wrap_algorithm,
                "value": _b64url_encode(plaintext),
            },
        )
        response.raise_for_status()
        return _b64url_decode(response.json()["value"])


class EncryptionKeyProvisioner:
    """Ensure a practitioner has an active wrapped notes key."""

    def __init__(
        self,
        vault: KeyVaultClient,
        repository: PractitionerRepository,
        config: VaultConfig,
    ) -> None:
        self.vault = vault
        self.repository = repository
        self.config = config

    def key_name(self, external_id: str) -> str:
        return f"{self.config.key_prefix}{external_id}"

    def ensure_notes_key(
        self, practitioner: Practitioner, external_id: str
    ) -> NotesKeyResult:
        """Provision the notes key and mark notes enabled.

        Raises ``KeyProvisioningFailed`` on any failure.
        """
        name = self.key_name(external_id)
        try:
            handle = self.vault.create_or_get_rsa_key(
                name,
                tags={
                    "purpose": KEY_PURPOSE_TAG,
                    "practitioner": external_id,
                    "created": datetime.now(timezone.utc).isoformat(),
                },
            )
            wrapped = self.vault.wrap_key(handle, secrets.token_bytes(DEK_BYTES))
            self.repository.activate_encryption_key(
                EncryptionKeyRecord(
                    practitioner_id=practitioner.id,
                    external_identity_id=external_id,
                    key_name=handle.name,
                    key_version=handle.version,
                    wrapped_dek=base64.b64encode(wrapped).decode("ascii"),
                )
            )
            self.repository.set_notes_enabled(practitioner.id, True)
        except (httpx.HTTPError, KeyError, ValueError, ProvisioningPersistenceFailed) as exc:
            logger.error(
                "notes_key_provisioning_failed",
                extra={
                    "practitioner_id": str(practitioner.id),
                    "key_name": name,
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                },
            )
            raise KeyProvisioningFailed(f"Could not provision {name}: {exc}") from exc

        logger.info(
            "notes_key_provisioned",
            extra={
                "practitioner_id": str(practitioner.id),
                "key_name": handle.name,
                "key_version": handle.version,
            },
        )
        return NotesKeyResult(key_name=handle.name, key_version=handle.version)
