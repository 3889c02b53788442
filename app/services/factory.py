"""Wiring of services from ``settings``; used as FastAPI dependencies.

Each builder is cached so HTTP clients and OAuth token caches are shared
across requests.  Tests override these with ``app.dependency_overrides``.
"""

from datetime import timedelta
from functools import lru_cache

from app.core.config import settings
from app.services.identity import GraphIdentityClient, IdentityProvisioner
from app.services.key_vault import EncryptionKeyProvisioner, KeyVaultClient
from app.services.notifications import EmailSender, NotificationDispatcher
from app.services.onboarding import OnboardingService, PracticeAdmin
from app.services.pms import HalaxyClient, PmsMatcher
from app.services.practitioners import PractitionerRepository
from app.services.saga import ProvisioningSaga
from app.services.tokens import TokenStore


@lru_cache
def get_repository() -> PractitionerRepository:
    return PractitionerRepository()


@lru_cache
def get_token_store() -> TokenStore:
    return TokenStore()


@lru_cache
def get_notifier() -> NotificationDispatcher:
    email_config = settings.email_config()
    return NotificationDispatcher(EmailSender(email_config), email_config)


@lru_cache
def get_saga() -> ProvisioningSaga:
    identity_config = settings.identity_config()
    vault_config = settings.vault_config()
    repository = get_repository()
    return ProvisioningSaga(
        repository=repository,
        identity=IdentityProvisioner(GraphIdentityClient(identity_config), identity_config),
        pms=PmsMatcher(HalaxyClient(settings.pms_config())),
        keys=EncryptionKeyProvisioner(KeyVaultClient(vault_config), repository, vault_config),
        notifier=get_notifier(),
    )


def get_onboarding_service() -> OnboardingService:
    return OnboardingService(
        tokens=get_token_store(),
        repository=get_repository(),
        saga=get_saga(),
        notifier=get_notifier(),
        onboarding_ttl=timedelta(days=settings.ONBOARDING_TOKEN_TTL_DAYS),
    )


def get_practice_admin() -> PracticeAdmin:
    return PracticeAdmin(
        tokens=get_token_store(),
        repository=get_repository(),
        saga=get_saga(),
        notifier=get_notifier(),
        onboarding_ttl=timedelta(days=settings.ONBOARDING_TOKEN_TTL_DAYS),
    )
