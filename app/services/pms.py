"""Practice-management (Halaxy FHIR-R4) record matching.

Onboarding never creates PMS records.  An admin registers the practitioner
in Halaxy beforehand; onboarding only finds that record, by personal email
first and then by name.  Not finding it is a setup gap a human has to fix,
which is different from Halaxy being unreachable.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from app.core.config import PmsConfig
from app.core.constants import FHIR_MIN_ID_LENGTH, FHIR_PSEUDO_IDS
from app.core.errors import PmsLookupTransientError, PmsRecordNotFound
from app.models.onboarding import PmsMatch
from app.models.practitioner import Practitioner
from app.services.oauth import ClientCredentialsTokenProvider

logger = logging.getLogger(__name__)

FHIR_JSON = "application/fhir+json"


def _is_valid_resource(resource: dict[str, Any] | None) -> bool:
    """Filter OperationOutcome pseudo-entries out of search bundles."""
    if not resource:
        return False
    resource_id = resource.get("id")
    return (
        isinstance(resource_id, str)
        and resource_id not in FHIR_PSEUDO_IDS
        and not resource_id.startswith("outcome")
        and len(resource_id) >= FHIR_MIN_ID_LENGTH
    )


def _bundle_resources(bundle: dict[str, Any]) -> list[dict[str, Any]]:
    return [
        entry["resource"]
        for entry in bundle.get("entry") or []
        if _is_valid_resource(entry.get("resource"))
    ]


def _name_matches(resource: dict[str, Any], first: str, last: str) -> bool:
    """True if any HumanName on the resource is ``first last`` (case-insensitive)."""
    for name in resource.get("name") or []:
        family = (name.get("family") or "").strip().lower()
        given = [g.strip().lower() for g in name.get("given") or []]
        if family == last and first in given:
            return True
    return False


class HalaxyClient:
    """Read-only subset of the Halaxy FHIR API."""

    def __init__(
        self,
        config: PmsConfig,
        http: httpx.Client | None = None,
        tokens: ClientCredentialsTokenProvider | None = None,
    ) -> None:
        self.config = config
        self._http = http or httpx.Client(timeout=config.timeout_seconds)
        self._tokens = tokens or ClientCredentialsTokenProvider(
            self._http,
            token_url=config.token_url,
            client_id=config.client_id,
            client_secret=config.client_secret,
            basic_auth=True,
        )

    def _search(self, resource_type: str, params: dict[str, str]) -> list[dict[str, Any]]:
        url = f"{self.config.fhir_base_url}/{resource_type}"
        headers = {
            "Authorization": f"Bearer {self._tokens.get_token()}",
            "Accept": FHIR_JSON,
        }
        response = self._http.get(url, params=params, headers=headers)
        if response.status_code == 401:
            self._tokens.invalidate()
            headers["Authorization"] = f"Bearer {self._tokens.get_token()}"
            response = self._http.get(url, params=params, headers=headers)
        response.raise_for_status()
        return _bundle_resources(response.json())

    def find_by_email(self, email: str) -> dict[str, Any] | None:
        results = self._search("Practitioner", {"email": email, "_count": "1"})
        return results[0] if results else None

    def find_by_name(self, first_name: str, last_name: str) -> dict[str, Any] | None:
        first = first_name.strip().lower()
        last = last_name.strip().lower()
        results = self._search(
            "Practitioner", {"given": first, "family": last, "_count": "10"}
        )
        for resource in results:
            if _name_matches(resource, first, last):
                return resource
        return None

    def list_sub_roles(self, record_id: str) -> list[dict[str, Any]]:
        return self._search(
            "PractitionerRole", {"practitioner": f"Practitioner/{record_id}"}
        )


class PmsMatcher:
    """Resolve a practitioner to their pre-registered PMS record."""

    def __init__(self, client: HalaxyClient) -> None:
        self.client = client

    def find_existing_record(self, practitioner: Practitioner) -> PmsMatch:
        """Return the matching PMS record.

        Raises ``PmsRecordNotFound`` when neither lookup matches and
        ``PmsLookupTransientError`` when Halaxy cannot be queried.
        """
        matched_by = "email"
        try:
            record = self.client.find_by_email(practitioner.email.strip().lower())
            if record is None:
                matched_by = "name"
                record = self.client.find_by_name(
                    practitioner.first_name, practitioner.last_name
                )
        except (httpx.HTTPError, ValueError) as exc:
            logger.error(
                "pms_lookup_failed",
                extra={
                    "practitioner_id": str(practitioner.id),
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                },
            )
            raise PmsLookupTransientError(f"Halaxy lookup failed: {exc}") from exc

        if record is None:
            logger.warning(
                "pms_record_not_found",
                extra={"practitioner_id": str(practitioner.id)},
            )
            raise PmsRecordNotFound(
                f"Practitioner \"{practitioner.full_name}\" not found in Halaxy. "
                "Please create the practitioner in Halaxy first."
            )

        record_id = record["id"]
        logger.info(
            "pms_record_matched",
            extra={
                "practitioner_id": str(practitioner.id),
                "pms_record_id": record_id,
                "matched_by": matched_by,
            },
        )
        return PmsMatch(
            record_id=record_id,
            sub_role_id=self._find_sub_role(practitioner, record_id),
            matched_by=matched_by,
        )

    def _find_sub_role(self, practitioner: Practitioner, record_id: str) -> str | None:
        """Best-effort PractitionerRole lookup; the id is optional metadata."""
        try:
            roles = self.client.list_sub_roles(record_id)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "pms_sub_role_lookup_failed",
                extra={
                    "practitioner_id": str(practitioner.id),
                    "pms_record_id": record_id,
                    "error_message": str(exc),
                },
            )
            return None
        return roles[0]["id"] if roles else None
