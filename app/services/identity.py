"""Corporate identity provisioning via Microsoft Graph.

Every practitioner gets a corporate mailbox identity ``first.last@<domain>``.
The address is derived deterministically from the name so a retry after a
crash looks up the same account instead of creating a second one: the
provisioner always searches first and only creates when nothing is found.

The personal email the practitioner applied with is stored as a contact
address (``otherMails``); it is never the sign-in identity.
"""

from __future__ import annotations

import logging
import re
from typing import Any

import httpx
from pydantic import BaseModel

from app.core.config import IdentityConfig
from app.core.errors import IdentityProvisioningFailed
from app.models.onboarding import IdentityResult
from app.models.practitioner import Practitioner
from app.services.oauth import ClientCredentialsTokenProvider

logger = logging.getLogger(__name__)

GRAPH_SCOPE = "https://graph.microsoft.com/.default"
_USER_FIELDS = "id,userPrincipalName,mail,assignedLicenses"

_NON_ALPHA = re.compile(r"[^a-z]")


def _name_part(value: str) -> str:
    return _NON_ALPHA.sub("", value.lower())


def corporate_address(first_name: str, last_name: str, domain: str) -> str:
    """Return ``first.last@domain`` with everything but a-z stripped.

    Raises ``ValueError`` if either name has no usable letters.
    """
    first = _name_part(first_name)
    last = _name_part(last_name)
    if not first or not last:
        raise ValueError(
            f"Cannot derive a corporate address from {first_name!r} {last_name!r}"
        )
    return f"{first}.{last}@{domain.lower()}"


def _odata_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class GraphUser(BaseModel):
    id: str
    user_principal_name: str
    license_assigned: bool = False

    @classmethod
    def from_graph(cls, payload: dict[str, Any]) -> GraphUser:
        return cls(
            id=payload["id"],
            user_principal_name=payload.get("userPrincipalName") or payload.get("mail") or "",
            license_assigned=bool(payload.get("assignedLicenses")),
        )


class GraphIdentityClient:
    """The three Graph calls onboarding needs."""

    def __init__(
        self,
        config: IdentityConfig,
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
            scope=GRAPH_SCOPE,
        )

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        url = f"{self.config.graph_base_url}{path}"
        headers = {
            "Authorization": f"Bearer {self._tokens.get_token()}",
            "Content-Type": "application/json",
        }
        response = self._http.request(method, url, headers=headers, **kwargs)
        if response.status_code == 401:
            # Cached token was revoked or expired early
            self._tokens.invalidate()
            headers["Authorization"] = f"Bearer {self._tokens.get_token()}"
            response = self._http.request(method, url, headers=headers, **kwargs)
        return response

    def find_by_address(self, address: str) -> GraphUser | None:
        literal = _odata_literal(address)
        response = self._request(
            "GET",
            "/users",
            params={
                "$filter": f"userPrincipalName eq {literal} or mail eq {literal}",
                "$select": _USER_FIELDS,
            },
        )
        response.raise_for_status()
        users = response.json().get("value") or []
        if not users:
            return None
        return GraphUser.from_graph(users[0])

    def create_user(
        self,
        address: str,
        personal_email: str,
        first_name: str,
        last_name: str,
        display_name: str,
        password: str,
    ) -> GraphUser:
        payload = {
            "accountEnabled": True,
            "displayName": display_name,
            "givenName": first_name,
            "surname": last_name,
            "mailNickname": address.split("@", 1)[0].replace(".", ""),
            "userPrincipalName": address,
            "otherMails": [personal_email],
            "usageLocation": self.config.usage_location,
            "passwordProfile": {
                "password": password,
                "forceChangePasswordNextSignIn": False,
            },
            "passwordPolicies": "DisablePasswordExpiration",
        }
        response = self._request("POST", "/users", json=payload)
        response.raise_for_status()
        return GraphUser.from_graph(response.json())

    def assign_license(self, user_id: str, sku_id: str) -> None:
        response = self._request(
            "POST",
            f"/users/{user_id}/assignLicense",
            json={
                "addLicenses": [{"skuId": sku_id, "disabledPlans": []}],
                "removeLicenses": [],
            },
        )
        response.raise_for_status()


def _already_exists(exc: httpx.HTTPStatusError) -> bool:
    return exc.response.status_code == 400 and "already exists" in exc.response.text


class IdentityProvisioner:
    """Ensure a corporate identity exists for a practitioner."""

    def __init__(self, graph: GraphIdentityClient, config: IdentityConfig) -> None:
        self.graph = graph
        self.config = config

    @property
    def licensing_enabled(self) -> bool:
        return bool(self.config.license_sku_id)

    def ensure_identity(
        self,
        practitioner: Practitioner,
        password: str,
        display_name: str | None = None,
    ) -> IdentityResult:
        """Return the practitioner's corporate identity, creating it if absent.

        Raises ``IdentityProvisioningFailed`` on any error.
        """
        try:
            address = corporate_address(
                practitioner.first_name,
                practitioner.last_name,
                self.config.corporate_domain,
            )
        except ValueError as exc:
            raise IdentityProvisioningFailed(str(exc)) from exc

        try:
            existing = self.graph.find_by_address(address)
            if existing is not None:
                logger.info(
                    "identity_reused",
                    extra={
                        "practitioner_id": str(practitioner.id),
                        "external_id": existing.id,
                    },
                )
                return IdentityResult(
                    external_id=existing.id,
                    corporate_address=existing.user_principal_name or address,
                    license_assigned=existing.license_assigned,
                    created=False,
                )

            try:
                user = self.graph.create_user(
                    address=address,
                    personal_email=practitioner.email,
                    first_name=practitioner.first_name,
                    last_name=practitioner.last_name,
                    display_name=display_name
                    or practitioner.display_name
                    or practitioner.full_name,
                    password=password,
                )
            except httpx.HTTPStatusError as exc:
                # Lost a race with a concurrent create; adopt the winner
                if not _already_exists(exc):
                    raise
                raced = self.graph.find_by_address(address)
                if raced is None:
                    raise
                return IdentityResult(
                    external_id=raced.id,
                    corporate_address=raced.user_principal_name or address,
                    license_assigned=raced.license_assigned,
                    created=False,
                )
        except (httpx.HTTPError, KeyError, ValueError) as exc:
            logger.error(
                "identity_provisioning_failed",
                extra={
                    "practitioner_id": str(practitioner.id),
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                },
            )
            raise IdentityProvisioningFailed(
                f"Could not provision identity {address}: {exc}"
            ) from exc

        logger.info(
            "identity_created",
            extra={"practitioner_id": str(practitioner.id), "external_id": user.id},
        )
        return IdentityResult(
            external_id=user.id,
            corporate_address=user.user_principal_name or address,
            license_assigned=self._assign_license(practitioner, user.id),
            created=True,
        )

    def _assign_license(self, practitioner: Practitioner, user_id: str) -> bool:
        """Best-effort license assignment; a failure leaves the account usable."""
        if not self.config.license_sku_id:
            return False
        try:
            self.graph.assign_license(user_id, self.config.license_sku_id)
        except httpx.HTTPError as exc:
            logger.warning(
                "license_assignment_failed",
                extra={
                    "practitioner_id": str(practitioner.id),
                    "external_id": user_id,
                    "error_message": str(exc),
                },
            )
            return False
        return True
