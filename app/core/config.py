"""Application configuration via pydantic-settings.

Loads all settings from environment variables with sensible defaults.
A global `settings` singleton is available for import throughout the app.

The external collaborators never read ``settings`` themselves: each one is
constructed with its own frozen config object (``IdentityConfig``,
``PmsConfig``, ``VaultConfig``, ``EmailConfig``) built from these settings.
"""

from pydantic import BaseModel, ConfigDict
from pydantic_settings import BaseSettings, SettingsConfigDict


class IdentityConfig(BaseModel):
    """Microsoft Graph connection used to provision corporate identities."""
    model_config = ConfigDict(frozen=True)

    tenant_id: str
    client_id: str
    client_secret: str
    corporate_domain: str
    graph_base_url: str = "https://graph.microsoft.com/v1.0"
    token_url_template: str = "https://login.microsoftonline.com/{tenant_id}/oauth2/v2.0/token"
    usage_location: str = "AU"
    license_sku_id: str = ""
    timeout_seconds: float = 15.0


class PmsConfig(BaseModel):
    """Halaxy FHIR-R4 connection used to match practitioners."""
    model_config = ConfigDict(frozen=True)

    client_id: str
    client_secret: str
    fhir_base_url: str = "https://au-api.halaxy.com/fhir"
    token_url: str = "https://au-api.halaxy.com/oauth2/token"
    timeout_seconds: float = 30.0


class VaultConfig(BaseModel):
    """Azure Key Vault connection used for clinical-notes keys."""
    model_config = ConfigDict(frozen=True)

    vault_url: str
    tenant_id: str
    client_id: str
    client_secret: str
    api_version: str = "7.4"
    key_prefix: str = "notes-key-"
    key_size: int = 4096
    wrap_algorithm: str = "RSA-OAEP-256"
    token_url_template: str = "https://login.microsoftonline.com/{tenant_id}/oauth2/v2.0/token"
    timeout_seconds: float = 15.0


class EmailConfig(BaseModel):
    """Resend API connection used for transactional email."""
    model_config = ConfigDict(frozen=True)

    api_key: str
    sender: str
    admin_recipient: str = ""
    api_url: str = "https://api.resend.com/emails"
    onboarding_base_url: str = ""
    portal_url: str = ""
    timeout_seconds: float = 10.0


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Supabase
    SUPABASE_URL: str
    SUPABASE_KEY: str
    DATABASE_TIMEOUT_SECONDS: int = 10

    # Identity provider (Microsoft Entra ID via Graph)
    AZURE_TENANT_ID: str = ""
    AZURE_CLIENT_ID: str = ""
    AZURE_CLIENT_SECRET: str = ""
    CORPORATE_EMAIL_DOMAIN: str = "life-psychology.com.au"
    IDENTITY_USAGE_LOCATION: str = "AU"
    IDENTITY_LICENSE_SKU_ID: str = ""
    IDENTITY_TIMEOUT_SECONDS: float = 15.0

    # Practice management system (Halaxy)
    HALAXY_CLIENT_ID: str = ""
    HALAXY_CLIENT_SECRET: str = ""
    HALAXY_FHIR_URL: str = "https://au-api.halaxy.com/fhir"
    HALAXY_TOKEN_URL: str = "https://au-api.halaxy.com/oauth2/token"
    PMS_TIMEOUT_SECONDS: float = 30.0

    # Key vault
    KEY_VAULT_URL: str = ""
    NOTES_KEY_PREFIX: str = "notes-key-"
    NOTES_KEY_SIZE: int = 4096
    KEY_VAULT_TIMEOUT_SECONDS: float = 15.0

    # Email
    RESEND_API_KEY: str = ""
    EMAIL_FROM: str = "Bloom <donotreply@life-psychology.com.au>"
    ADMIN_NOTIFICATION_EMAIL: str = ""
    EMAIL_TIMEOUT_SECONDS: float = 10.0

    # Links
    ONBOARDING_BASE_URL: str = "https://bloom.life-psychology.com.au"
    PORTAL_URL: str = "https://bloom.life-psychology.com.au"

    # Token lifetimes
    ONBOARDING_TOKEN_TTL_DAYS: int = 7

    # Admin API
    ADMIN_API_KEY: str = ""

    # CORS
    ALLOWED_ORIGINS: str = "*"

    # Logging
    LOG_LEVEL: str = "INFO"

    def identity_config(self) -> IdentityConfig:
        return IdentityConfig(
            tenant_id=self.AZURE_TENANT_ID,
            client_id=self.AZURE_CLIENT_ID,
            client_secret=self.AZURE_CLIENT_SECRET,
            corporate_domain=self.CORPORATE_EMAIL_DOMAIN,
            usage_location=self.IDENTITY_USAGE_LOCATION,
            license_sku_id=self.IDENTITY_LICENSE_SKU_ID,
            timeout_seconds=self.IDENTITY_TIMEOUT_SECONDS,
        )

    def pms_config(self) -> PmsConfig:
        return PmsConfig(
            client_id=self.HALAXY_CLIENT_ID,
            client_secret=self.HALAXY_CLIENT_SECRET,
            fhir_base_url=self.HALAXY_FHIR_URL,
            token_url=self.HALAXY_TOKEN_URL,
            timeout_seconds=self.PMS_TIMEOUT_SECONDS,
        )

    def vault_config(self) -> VaultConfig:
        return VaultConfig(
            vault_url=self.KEY_VAULT_URL,
            tenant_id=self.AZURE_TENANT_ID,
            client_id=self.AZURE_CLIENT_ID,
            client_secret=self.AZURE_CLIENT_SECRET,
            key_prefix=self.NOTES_KEY_PREFIX,
            key_size=self.NOTES_KEY_SIZE,
            timeout_seconds=self.KEY_VAULT_TIMEOUT_SECONDS,
        )

    def email_config(self) -> EmailConfig:
        return EmailConfig(
            api_key=self.RESEND_API_KEY,
            sender=self.EMAIL_FROM,
            admin_recipient=self.ADMIN_NOTIFICATION_EMAIL,
            onboarding_base_url=self.ONBOARDING_BASE_URL,
            portal_url=self.PORTAL_URL,
            timeout_seconds=self.EMAIL_TIMEOUT_SECONDS,
        )


settings = Settings()  # type: ignore[call-arg]
