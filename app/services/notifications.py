"""Transactional email for onboarding outcomes.

Email is always best-effort: ``EmailSender.send`` reports failure in its
return value and the dispatcher never raises, so a mail outage can neither
roll back nor block provisioning.  Messages go through the Resend HTTP API.
"""

from __future__ import annotations

import html
import logging
from string import Template
from typing import Any

import httpx

from app.core.config import EmailConfig
from app.core.constants import CAPABILITY_PASSWORD_RESET
from app.models.enums import EmailTemplate, SagaOutcome
from app.models.onboarding import SagaResult, SendResult
from app.models.practitioner import Practitioner
from app.models.token import IssuedToken

logger = logging.getLogger(__name__)

COMPANY_NAME = "Life Psychology Australia"

SIGN_IN_CHOSEN_PASSWORD = "Sign in with this address and the password you chose."
SIGN_IN_RESET_PASSWORD = (
    "Your account was set up by our team, so you have no password yet. "
    'Use "Forgot password" on the sign-in page to set one before signing in.'
)

_LAYOUT = Template(
    '<div style="font-family: -apple-system, BlinkMacSystemFont, \'Segoe UI\', '
    'Roboto, sans-serif; max-width: 560px; margin: 0 auto; padding: 32px 20px;">'
    "$body"
    '<hr style="border: none; border-top: 1px solid #e0e0e0; margin: 32px 0;" />'
    f'<p style="color: #8a8a9a; font-size: 12px;">{COMPANY_NAME}</p>'
    "</div>"
)

# template -> (subject, html body, plain text)
TEMPLATES: dict[EmailTemplate, tuple[Template, Template, Template]] = {
    EmailTemplate.onboarding_invitation: (
        Template("Welcome aboard, $first_name! Complete your onboarding"),
        Template(
            "<h2>Welcome, $first_name!</h2>"
            "<p>Your offer has been accepted. Set your password and complete your "
            "profile using the link below. The link expires on $expires_on.</p>"
            '<p><a href="$onboarding_link">Complete onboarding</a></p>'
        ),
        Template(
            "Welcome, $first_name!\n\n"
            "Your offer has been accepted. Complete your onboarding here "
            "(expires $expires_on):\n$onboarding_link\n"
        ),
    ),
    EmailTemplate.welcome: (
        Template("Welcome to $company! Your account is ready"),
        Template(
            "<h2>Welcome, $first_name!</h2>"
            "<p>Your onboarding is complete and your account is ready to use.</p>"
            "<p>Your new email address: <strong>$corporate_email</strong></p>"
            "<p>$sign_in_note</p>"
            '<p><a href="$portal_url">Open the practitioner portal</a></p>'
        ),
        Template(
            "Welcome, $first_name!\n\n"
            "Your onboarding is complete and your account is ready to use.\n\n"
            "Your new email address: $corporate_email\n"
            "$sign_in_note\n\n"
            "$portal_url\n"
        ),
    ),
    EmailTemplate.admin_attention: (
        Template("[Onboarding] $practitioner_name needs attention ($outcome)"),
        Template(
            "<h2>Onboarding $outcome</h2>"
            "<p>Practitioner: $practitioner_name ($practitioner_id)</p>"
            "<p>Needs follow-up: $follow_up</p>"
            "<p>Error: $error</p>"
        ),
        Template(
            "Onboarding $outcome\n\n"
            "Practitioner: $practitioner_name ($practitioner_id)\n"
            "Needs follow-up: $follow_up\n"
            "Error: $error\n"
        ),
    ),
}


def render(template: EmailTemplate, variables: dict[str, Any]) -> tuple[str, str, str]:
    """Return ``(subject, html, text)``; raises ``KeyError`` on a missing variable."""
    subject_t, html_t, text_t = TEMPLATES[template]
    values = {"company": COMPANY_NAME, **{k: str(v) for k, v in variables.items()}}
    escaped = {k: html.escape(v) for k, v in values.items()}
    return (
        subject_t.substitute(values),
        _LAYOUT.substitute(body=html_t.substitute(escaped)),
        text_t.substitute(values),
    )


class EmailSender:
    """Send rendered templates through Resend."""

    def __init__(self, config: EmailConfig, http: httpx.Client | None = None) -> None:
        self.config = config
        self._http = http or httpx.Client(timeout=config.timeout_seconds)

    def send(
        self,
        template: EmailTemplate,
        recipient: str,
        variables: dict[str, Any],
    ) -> SendResult:
        if not self.config.api_key:
            logger.warning("email_not_configured", extra={"template": template.value})
            return SendResult(success=False, error="Email service not configured")

        try:
            subject, html_body, text_body = render(template, variables)
            response = self._http.post(
                self.config.api_url,
                headers={"Authorization": f"Bearer {self.config.api_key}"},
                json={
                    "from": self.config.sender,
                    "to": [recipient],
                    "subject": subject,
                    "html": html_body,
                    "text": text_body,
                },
            )
            response.raise_for_status()
            message_id = response.json().get("id")
        except (httpx.HTTPError, KeyError, ValueError) as exc:
            logger.error(
                "email_send_failed",
                extra={
                    "template": template.value,
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                },
            )
            return SendResult(success=False, error=str(exc))

        logger.info(
            "email_sent",
            extra={"template": template.value, "message_id": message_id},
        )
        return SendResult(success=True, message_id=message_id)


class NotificationDispatcher:
    """Pick the right template for an outcome and send it."""

    def __init__(self, sender: EmailSender, config: EmailConfig) -> None:
        self.sender = sender
        self.config = config

    def onboarding_link(self, raw_token: str) -> str:
        return f"{self.config.onboarding_base_url.rstrip('/')}/onboarding/{raw_token}"

    def send_onboarding_invitation(
        self, practitioner: Practitioner, token: IssuedToken
    ) -> SendResult:
        return self._safe_send(
            EmailTemplate.onboarding_invitation,
            practitioner.email,
            {
                "first_name": practitioner.first_name,
                "onboarding_link": self.onboarding_link(token.raw_value),
                "expires_on": token.expires_at.strftime("%d %B %Y"),
            },
        )

    def send_outcome_email(self, practitioner: Practitioner, result: SagaResult) -> bool:
        """Send the practitioner's welcome email; returns whether it was sent.

        Failed runs get no email.  Admin alerts are sent separately through
        ``send_admin_alert`` once the outcome is final.
        """
        if result.outcome == SagaOutcome.failed:
            return False

        if CAPABILITY_PASSWORD_RESET in result.degraded:
            sign_in_note = SIGN_IN_RESET_PASSWORD
        else:
            sign_in_note = SIGN_IN_CHOSEN_PASSWORD

        sent = self._safe_send(
            EmailTemplate.welcome,
            practitioner.email,
            {
                "first_name": practitioner.first_name,
                "corporate_email": result.corporate_email or "",
                "sign_in_note": sign_in_note,
                "portal_url": self.config.portal_url,
            },
        )
        return sent.success

    def send_admin_alert(self, practitioner: Practitioner, result: SagaResult) -> bool:
        if not self.config.admin_recipient:
            return False
        sent = self._safe_send(
            EmailTemplate.admin_attention,
            self.config.admin_recipient,
            {
                "practitioner_name": practitioner.full_name,
                "practitioner_id": practitioner.id,
                "outcome": result.outcome.value,
                "follow_up": ", ".join(result.degraded) or "none",
                "error": result.error.message if result.error else "none",
            },
        )
        return sent.success

    def _safe_send(
        self, template: EmailTemplate, recipient: str, variables: dict[str, Any]
    ) -> SendResult:
        try:
            return self.sender.send(template, recipient, variables)
        except Exception as exc:
            logger.error(
                "email_dispatch_unexpected_error",
                extra={
                    "template": template.value,
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                },
            )
            return SendResult(success=False, error=str(exc))
