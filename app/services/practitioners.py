"""Practitioner persistence.

Every write is a single PostgREST ``UPDATE`` scoped by practitioner id and,
where it changes lifecycle status, by the expected current status.  A
conditional update that matches zero rows means another request got there
first; callers decide whether that is fatal.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from supabase import Client

from app.core.constants import CONTRACT_VERSION
from app.core.errors import ProvisioningPersistenceFailed
from app.db.supabase import get_supabase
from app.models.encryption_key import EncryptionKeyRecord
from app.models.enums import PractitionerStatus
from app.models.onboarding import IdentityResult, PmsMatch, ProfileFields
from app.models.practitioner import Practitioner

logger = logging.getLogger(__name__)

PRACTITIONERS_TABLE = "practitioners"
ENCRYPTION_KEYS_TABLE = "practitioner_encryption_keys"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class PractitionerRepository:
    """Reads and conditional writes against the ``practitioners`` table."""

    def __init__(self, client: Client | None = None) -> None:
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase()
        return self._client

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, practitioner_id: UUID) -> Practitioner | None:
        result = (
            self.client.table(PRACTITIONERS_TABLE)
            .select("*")
            .eq("id", str(practitioner_id))
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        return Practitioner(**result.data[0])

    def has_active_key(self, practitioner_id: UUID) -> bool:
        result = (
            self.client.table(ENCRYPTION_KEYS_TABLE)
            .select("key_name")
            .eq("practitioner_id", str(practitioner_id))
            .eq("is_active", True)
            .limit(1)
            .execute()
        )
        return bool(result.data)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _update(
        self,
        practitioner_id: UUID,
        values: dict[str, Any],
        expected_status: PractitionerStatus | None = None,
    ) -> list[dict[str, Any]]:
        """Run one conditional update and return the affected rows."""
        values = {**values, "updated_at": _now_iso()}
        query = (
            self.client.table(PRACTITIONERS_TABLE)
            .update(values)
            .eq("id", str(practitioner_id))
        )
        if expected_status is not None:
            query = query.eq("status", expected_status.value)
        try:
            result = query.execute()
        except Exception as exc:
            logger.error(
                "practitioner_update_failed",
                extra={
                    "practitioner_id": str(practitioner_id),
                    "columns": sorted(values),
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                },
            )
            raise ProvisioningPersistenceFailed(
                f"Could not update practitioner {practitioner_id}: {exc}"
            ) from exc
        return result.data or []

    def transition_status(
        self,
        practitioner_id: UUID,
        expected: PractitionerStatus,
        new: PractitionerStatus,
    ) -> Practitioner | None:
        """Move ``expected -> new``; return ``None`` if the row was not in ``expected``."""
        rows = self._update(
            practitioner_id, {"status": new.value}, expected_status=expected
        )
        if not rows:
            return None
        logger.info(
            "practitioner_status_changed",
            extra={
                "practitioner_id": str(practitioner_id),
                "from_status": expected.value,
                "to_status": new.value,
            },
        )
        return Practitioner(**rows[0])

    def record_identity(self, practitioner_id: UUID, identity: IdentityResult) -> None:
        rows = self._update(
            practitioner_id,
            {
                "external_identity_id": identity.external_id,
                "corporate_email": identity.corporate_address,
                "license_assigned": identity.license_assigned,
            },
        )
        if not rows:
            raise ProvisioningPersistenceFailed(
                f"Practitioner {practitioner_id} vanished while recording identity"
            )

    def record_pms_match(self, practitioner_id: UUID, match: PmsMatch) -> None:
        values: dict[str, Any] = {"pms_record_id": match.record_id}
        if match.sub_role_id:
            values["pms_sub_role_id"] = match.sub_role_id
        rows = self._update(practitioner_id, values)
        if not rows:
            raise ProvisioningPersistenceFailed(
                f"Practitioner {practitioner_id} vanished while recording PMS match"
            )

    def complete_provisioning(
        self,
        practitioner_id: UUID,
        identity: IdentityResult,
        match: PmsMatch,
        profile: ProfileFields | None = None,
    ) -> Practitioner:
        """Write identity, PMS and profile fields together with ``status = onboarded``.

        Only succeeds from ``onboarding_in_progress``.
        """
        now = _now_iso()
        values: dict[str, Any] = {
            "external_identity_id": identity.external_id,
            "corporate_email": identity.corporate_address,
            "license_assigned": identity.license_assigned,
            "pms_record_id": match.record_id,
            "status": PractitionerStatus.onboarded.value,
            "onboarding_completed_at": now,
        }
        if match.sub_role_id:
            values["pms_sub_role_id"] = match.sub_role_id
        if profile is not None:
            for field in ("display_name", "bio", "phone"):
                value = getattr(profile, field)
                if value:
                    values[field] = value
            if profile.contract_accepted:
                values["contract_accepted_at"] = now
                values["contract_version"] = CONTRACT_VERSION

        rows = self._update(
            practitioner_id,
            values,
            expected_status=PractitionerStatus.onboarding_in_progress,
        )
        if not rows:
            raise ProvisioningPersistenceFailed(
                f"Practitioner {practitioner_id} was no longer onboarding_in_progress"
            )
        return Practitioner(**rows[0])

    def set_notes_enabled(self, practitioner_id: UUID, enabled: bool) -> None:
        self._update(practitioner_id, {"notes_enabled": enabled})

    def activate_encryption_key(self, record: EncryptionKeyRecord) -> None:
        """Deactivate the current key record and insert ``record`` in one transaction."""
        try:
            self.client.rpc(
                "activate_encryption_key",
                {
                    "p_practitioner_id": str(record.practitioner_id),
                    "p_external_identity_id": record.external_identity_id,
                    "p_key_name": record.key_name,
                    "p_key_version": record.key_version,
                    "p_wrapped_dek": record.wrapped_dek,
                },
            ).execute()
        except Exception as exc:
            raise ProvisioningPersistenceFailed(
                f"Could not store encryption key for {record.practitioner_id}: {exc}"
            ) from exc
